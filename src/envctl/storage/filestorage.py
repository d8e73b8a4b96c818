"""Storage backed by a local directory."""
from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path
from typing import BinaryIO

from ..utils.retry import RetryPolicy
from .base import NotFoundError, StorageError, read_stream


class FileStorage:
    """Read/write storage rooted at a directory on the local filesystem.

    Writes are staged in a private temporary directory next to the root and
    renamed into place, so readers never observe a partially written object.
    """

    def __init__(self, root: Path, *, policy: RetryPolicy | None = None) -> None:
        """Bind the storage to *root*, creating it when necessary."""
        self.root = root.expanduser().absolute()
        self._policy = policy or RetryPolicy(attempts=1, delay=0.0)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"cannot create storage directory {self.root}: {exc}") from exc

    def default_retry_policy(self) -> RetryPolicy:
        """Local files are immediately consistent; retry only as configured."""
        return self._policy

    # Reader ---------------------------------------------------------
    def get(self, name: str) -> BinaryIO:
        """Open the named file for reading."""
        path = self._path(name)
        if not path.is_file():
            raise NotFoundError(f'file "{name}" not found')
        try:
            return path.open("rb")
        except FileNotFoundError as exc:
            raise NotFoundError(f'file "{name}" not found') from exc
        except OSError as exc:
            raise StorageError(f'cannot read "{name}": {exc}') from exc

    def list(self, prefix: str) -> list[str]:
        """Return stored names beginning with *prefix*."""
        names: list[str] = []
        for dirpath, _dirnames, filenames in os.walk(self.root):
            for filename in filenames:
                full = Path(dirpath) / filename
                name = full.relative_to(self.root).as_posix()
                if name.startswith(prefix):
                    names.append(name)
        names.sort()
        return names

    def url(self, name: str) -> str:
        """Return a ``file://`` URL for *name*."""
        return self._path(name).as_uri()

    # Writer ---------------------------------------------------------
    def put(self, name: str, stream: BinaryIO, size: int) -> None:
        """Atomically store *size* bytes from *stream* under *name*."""
        path = self._path(name)
        data = read_stream(stream, size)
        staging = Path(tempfile.mkdtemp(prefix=f".{self.root.name}.tmp-", dir=str(self.root.parent)))
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = staging / path.name
            tmp_path.write_bytes(data)
            os.chmod(tmp_path, 0o644)
            os.replace(tmp_path, path)
        except OSError as exc:
            raise StorageError(f'cannot write "{name}": {exc}') from exc
        finally:
            shutil.rmtree(staging, ignore_errors=True)

    def remove(self, name: str) -> None:
        """Remove *name* if present."""
        path = self._path(name)
        try:
            path.unlink(missing_ok=True)
        except IsADirectoryError as exc:
            raise StorageError(f'cannot remove "{name}": is a directory') from exc
        except OSError as exc:
            raise StorageError(f'cannot remove "{name}": {exc}') from exc

    def remove_all(self) -> None:
        """Remove every stored object, keeping the root directory."""
        for child in self.root.iterdir():
            try:
                if child.is_dir() and not child.is_symlink():
                    shutil.rmtree(child)
                else:
                    child.unlink()
            except OSError as exc:
                raise StorageError(f"cannot remove {child}: {exc}") from exc

    # Internal helpers -----------------------------------------------
    def _path(self, name: str) -> Path:
        if not name or name.startswith("/"):
            raise StorageError(f"invalid storage name {name!r}")
        candidate = (self.root / name).resolve()
        try:
            candidate.relative_to(self.root.resolve())
        except ValueError as exc:
            raise StorageError(f"storage name {name!r} escapes the storage root") from exc
        return candidate


__all__ = ["FileStorage"]
