"""In-process storage used by the dummy backend and tests."""
from __future__ import annotations

import io
import threading
from typing import BinaryIO

from ..utils.retry import RetryPolicy
from .base import NotFoundError, read_stream


class MemoryStorage:
    """Thread-safe storage keeping every object in a dictionary."""

    def __init__(self, namespace: str = "local", *, policy: RetryPolicy | None = None) -> None:
        """Create an empty storage addressed as ``mem://<namespace>/``."""
        self.namespace = namespace
        self._policy = policy or RetryPolicy(attempts=1, delay=0.0)
        self._objects: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def default_retry_policy(self) -> RetryPolicy:
        """Return the configured retry policy."""
        return self._policy

    def get(self, name: str) -> BinaryIO:
        with self._lock:
            try:
                data = self._objects[name]
            except KeyError:
                raise NotFoundError(f'file "{name}" not found') from None
        return io.BytesIO(data)

    def list(self, prefix: str) -> list[str]:
        with self._lock:
            return sorted(name for name in self._objects if name.startswith(prefix))

    def url(self, name: str) -> str:
        return f"mem://{self.namespace}/{name}"

    def put(self, name: str, stream: BinaryIO, size: int) -> None:
        data = read_stream(stream, size)
        with self._lock:
            self._objects[name] = data

    def remove(self, name: str) -> None:
        with self._lock:
            self._objects.pop(name, None)

    def remove_all(self) -> None:
        with self._lock:
            self._objects.clear()


__all__ = ["MemoryStorage"]
