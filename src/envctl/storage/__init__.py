"""Environment blob storage."""
from __future__ import annotations

from .base import (
    EMPTY_STORAGE,
    NotFoundError,
    Storage,
    StorageError,
    StorageReader,
    StorageWriter,
    VerificationError,
    get,
    get_bytes,
    list_names,
    put_bytes,
)
from .filestorage import FileStorage
from .httpstorage import HTTPStorage
from .memory import MemoryStorage
from .verify import VERIFICATION_CONTENT, VERIFICATION_FILENAME, verify_storage

__all__ = [
    "EMPTY_STORAGE",
    "FileStorage",
    "HTTPStorage",
    "MemoryStorage",
    "NotFoundError",
    "Storage",
    "StorageError",
    "StorageReader",
    "StorageWriter",
    "VERIFICATION_CONTENT",
    "VERIFICATION_FILENAME",
    "VerificationError",
    "get",
    "get_bytes",
    "list_names",
    "put_bytes",
    "verify_storage",
]
