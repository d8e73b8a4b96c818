"""Storage contract shared by every environment backend.

A storage is a flat namespace of named blobs. Names use ``/`` separators but
carry no directory semantics. Remote object stores may lag behind writes, so
reads issued through :func:`get` and :func:`list_names` are repeated according
to the storage's retry policy before a failure is reported.
"""
from __future__ import annotations

import io
from typing import BinaryIO, Protocol, runtime_checkable

from ..utils.retry import RetryPolicy


class StorageError(RuntimeError):
    """Raised when a storage operation fails."""


class NotFoundError(StorageError):
    """Raised when a named object does not exist in storage."""


class VerificationError(StorageError):
    """Raised when storage accepted a write but cannot be trusted to keep it."""


@runtime_checkable
class StorageReader(Protocol):
    """Read side of a storage."""

    def get(self, name: str) -> BinaryIO:
        """Open the named object for reading, raising :class:`NotFoundError`."""

    def list(self, prefix: str) -> list[str]:
        """Return object names starting with *prefix*, sorted lexicographically."""

    def url(self, name: str) -> str:
        """Return a URL from which an instance may fetch the named object."""

    def default_retry_policy(self) -> RetryPolicy:
        """Return the retry policy used to mask read-after-write lag."""


@runtime_checkable
class StorageWriter(Protocol):
    """Write side of a storage."""

    def put(self, name: str, stream: BinaryIO, size: int) -> None:
        """Store *size* bytes read from *stream* under *name*."""

    def remove(self, name: str) -> None:
        """Remove the named object; missing objects are not an error."""

    def remove_all(self) -> None:
        """Remove every object in the storage."""


@runtime_checkable
class Storage(StorageReader, StorageWriter, Protocol):
    """Full read/write storage."""


def get(
    stor: StorageReader,
    name: str,
    *,
    policy: RetryPolicy | None = None,
) -> BinaryIO:
    """Open *name*, retrying while the object is missing or unreadable."""
    retry = policy or stor.default_retry_policy()
    return retry.call(lambda: stor.get(name), retry_on=(StorageError,))


def get_bytes(
    stor: StorageReader,
    name: str,
    *,
    policy: RetryPolicy | None = None,
) -> bytes:
    """Return the full contents of *name*."""
    handle = get(stor, name, policy=policy)
    try:
        return handle.read()
    finally:
        handle.close()


def list_names(
    stor: StorageReader,
    prefix: str = "",
    *,
    policy: RetryPolicy | None = None,
) -> list[str]:
    """List names under *prefix*, retrying transient failures."""
    retry = policy or stor.default_retry_policy()
    names = retry.call(lambda: stor.list(prefix), retry_on=(StorageError,))
    return sorted(names)


def put_bytes(stor: StorageWriter, name: str, data: bytes) -> None:
    """Store *data* under *name*."""
    stor.put(name, io.BytesIO(data), len(data))


def read_stream(stream: BinaryIO, size: int) -> bytes:
    """Read exactly *size* bytes from *stream* (all remaining when negative)."""
    data = stream.read() if size < 0 else stream.read(size)
    if size >= 0 and len(data) != size:
        raise StorageError(f"short read: expected {size} bytes, got {len(data)}")
    return data


class _EmptyStorage:
    """A storage reader that contains nothing."""

    def get(self, name: str) -> BinaryIO:
        raise NotFoundError(f'file "{name}" not found')

    def list(self, prefix: str) -> list[str]:
        return []

    def url(self, name: str) -> str:
        raise NotFoundError(f'file "{name}" not found')

    def default_retry_policy(self) -> RetryPolicy:
        return RetryPolicy(attempts=1, delay=0.0)


EMPTY_STORAGE: StorageReader = _EmptyStorage()


__all__ = [
    "EMPTY_STORAGE",
    "NotFoundError",
    "Storage",
    "StorageError",
    "StorageReader",
    "StorageWriter",
    "VerificationError",
    "get",
    "get_bytes",
    "list_names",
    "put_bytes",
    "read_stream",
]
