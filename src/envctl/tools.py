"""Packaging and distribution of agent tools archives.

Tools are gzip compressed tar archives stored under
``tools/juju-<version>-<series>-<arch>.tgz``. Every entry must be a regular
file executable by its owner; entries are written with mode ``0755`` and owner
``ubuntu`` so archives are reproducible regardless of the local umask.
"""
from __future__ import annotations

import hashlib
import os
import stat
import tarfile
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from .logging import get_logger
from .storage.base import Storage, StorageReader, get, list_names
from .version import Binary, VersionError

logger = get_logger(__name__)

TOOLS_PREFIX = "tools/juju-"
TOOLS_SUFFIX = ".tgz"
ARCHIVE_OWNER = "ubuntu"
ARCHIVE_MODE = 0o755


class ToolsArchiveError(RuntimeError):
    """Raised when a tools archive cannot be built or unpacked."""


@dataclass(frozen=True)
class Tools:
    """A tools archive available from storage."""

    binary: Binary
    url: str
    size: int = 0
    sha256: str = ""


def storage_name(binary: Binary) -> str:
    """Return the storage key holding the tools for *binary*."""
    return f"{TOOLS_PREFIX}{binary}{TOOLS_SUFFIX}"


def _is_executable(mode: int) -> bool:
    return stat.S_ISREG(mode) and bool(mode & stat.S_IXUSR)


def archive(fileobj: BinaryIO, directory: Path) -> None:
    """Write the executables found in *directory* to *fileobj* as a gzip tar."""
    entries = sorted(os.scandir(directory), key=lambda entry: entry.name)
    with tarfile.open(fileobj=fileobj, mode="w:gz") as tar:
        for entry in entries:
            info = entry.stat(follow_symlinks=False)
            path = Path(directory) / entry.name
            if not _is_executable(info.st_mode):
                raise ToolsArchiveError(f'archive: found non-executable file "{path}"')
            header = tarfile.TarInfo(name=entry.name)
            header.size = info.st_size
            header.mtime = int(info.st_mtime)
            header.mode = ARCHIVE_MODE
            header.uname = ARCHIVE_OWNER
            header.gname = ARCHIVE_OWNER
            with path.open("rb") as handle:
                tar.addfile(header, handle)


def put_tools(stor: Storage, directory: Path, binary: Binary) -> Tools:
    """Archive *directory* and upload it as the tools for *binary*.

    The whole archive is built before the upload starts so a packaging error
    never leaves a partial object in storage.
    """
    name = storage_name(binary)
    with tempfile.TemporaryFile(prefix="envctl-tools-") as handle:
        archive(handle, directory)
        size = handle.tell()
        handle.seek(0)
        digest = hashlib.sha256()
        for chunk in iter(lambda: handle.read(1024 * 1024), b""):
            digest.update(chunk)
        handle.seek(0)
        logger.info("uploading tools %s (%d bytes)", binary, size)
        stor.put(name, handle, size)
    return Tools(binary=binary, url=stor.url(name), size=size, sha256=digest.hexdigest())


def extract(fileobj: BinaryIO, directory: Path) -> list[str]:
    """Unpack a tools archive into *directory*, returning the extracted names."""
    root = Path(directory).resolve()
    root.mkdir(parents=True, exist_ok=True)
    extracted: list[str] = []
    try:
        with tarfile.open(fileobj=fileobj, mode="r|gz") as tar:
            for member in tar:
                target = _safe_target(root, member.name)
                if member.isdir():
                    target.mkdir(parents=True, exist_ok=True)
                    continue
                if not member.isfile():
                    raise ToolsArchiveError(
                        f'bad file type {member.type!r} for "{member.name}" in tools archive'
                    )
                source = tar.extractfile(member)
                if source is None:  # pragma: no cover - isfile() guarantees a stream
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, member.mode & 0o777)
                with os.fdopen(fd, "wb") as handle:
                    for chunk in iter(lambda: source.read(1024 * 1024), b""):
                        handle.write(chunk)
                os.chmod(target, member.mode & 0o777)
                extracted.append(member.name)
    except tarfile.TarError as exc:
        raise ToolsArchiveError(f"cannot read tools archive: {exc}") from exc
    return extracted


def _safe_target(root: Path, name: str) -> Path:
    if "/\\" in name:
        raise ToolsArchiveError(f'bad name "{name}" in tools archive')
    target = (root / name).resolve()
    if target == root or not target.is_relative_to(root):
        raise ToolsArchiveError(f'bad name "{name}" in tools archive')
    return target


def unpack_tools(stor: StorageReader, binary: Binary, directory: Path) -> list[str]:
    """Fetch the tools for *binary* from storage and unpack them."""
    handle = get(stor, storage_name(binary))
    try:
        return extract(handle, directory)
    finally:
        handle.close()


def parse_storage_name(name: str) -> Binary | None:
    """Return the binary encoded in a tools storage key, or ``None``."""
    if not (name.startswith(TOOLS_PREFIX) and name.endswith(TOOLS_SUFFIX)):
        return None
    try:
        return Binary.parse(name[len(TOOLS_PREFIX) : -len(TOOLS_SUFFIX)])
    except VersionError:
        return None


def find_tools(
    stor: StorageReader,
    major: int,
    *,
    series: str | None = None,
    arch: str | None = None,
) -> list[Tools]:
    """List the tools in storage whose version has the given major number."""
    found: list[Tools] = []
    for name in list_names(stor, TOOLS_PREFIX):
        binary = parse_storage_name(name)
        if binary is None:
            logger.debug("ignoring unrecognised tools name %s", name)
            continue
        if binary.major != major:
            continue
        if series is not None and binary.series != series:
            continue
        if arch is not None and binary.arch != arch:
            continue
        found.append(Tools(binary=binary, url=stor.url(name)))
    found.sort(key=lambda tools: tools.binary)
    return found


__all__ = [
    "Tools",
    "ToolsArchiveError",
    "archive",
    "extract",
    "find_tools",
    "parse_storage_name",
    "put_tools",
    "storage_name",
    "unpack_tools",
]
