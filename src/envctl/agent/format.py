"""On-disk format handling for agent configuration directories.

A ``format`` marker in the agent directory names the serialisation used for
the rest of the directory. Only the current format and the format of the
previous stable release are understood; a directory without a marker predates
markers and is read as the previous format. Once released, a format is frozen:
changes require a new format rather than edits to an existing one.
"""
from __future__ import annotations

import os
import tempfile
from collections.abc import Callable
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

from ..utils import sh_quote

FORMAT_FILENAME = "format"
FORMAT_FILE_MODE = 0o644
DIR_MODE = 0o755

ConfigData = dict[str, Any]
"""Format-agnostic agent configuration, keyed by :class:`AgentConfig` field name."""


class AgentConfigError(RuntimeError):
    """Raised when an agent configuration is invalid or cannot be read."""


class Format(str, Enum):
    """Known agent configuration formats."""

    CURRENT = "format 1.16"
    PREVIOUS = "format 1.12"


class Formatter(Protocol):
    """Reader/writer for one on-disk format."""

    format: Format

    def read(self, directory: Path) -> ConfigData:
        """Load the configuration stored in *directory*."""

    def write(self, data: ConfigData) -> None:
        """Persist *data* into its agent directory."""

    def write_commands(self, data: ConfigData) -> list[str]:
        """Return shell commands that produce the same files as :meth:`write`."""


Migration = Callable[[ConfigData], ConfigData]


def format_file(directory: Path) -> Path:
    """Return the marker path inside *directory*."""
    return Path(directory) / FORMAT_FILENAME


def read_format(directory: Path) -> Format:
    """Return the format recorded in *directory*.

    A missing marker means the directory was written before markers existed.
    """
    try:
        contents = format_file(directory).read_text(encoding="utf-8")
    except FileNotFoundError:
        return Format.PREVIOUS
    except OSError as exc:
        raise AgentConfigError(f"cannot read agent config format: {exc}") from exc
    value = contents.strip()
    try:
        return Format(value)
    except ValueError:
        raise AgentConfigError(f'unknown agent config format "{value}"') from None


def write_file_atomic(path: Path, content: str, mode: int) -> None:
    """Write *content* to *path* through a temporary file and rename."""
    path.parent.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
    tmp_fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
            handle.write(content)
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    finally:
        tmp_path.unlink(missing_ok=True)


def write_format_file(directory: Path, fmt: Format) -> None:
    """Atomically record *fmt* as the format of *directory*."""
    write_file_atomic(format_file(directory), fmt.value + "\n", FORMAT_FILE_MODE)


def write_file_commands(filename: Path, contents: str, permission: int) -> list[str]:
    """Return commands creating *filename* with *contents* and a trailing newline."""
    quoted = sh_quote(str(filename))
    return [
        f"install -m {permission:o} /dev/null {quoted}",
        f"printf '%s\\n' {sh_quote(contents)} > {quoted}",
    ]


def write_commands_for_format(directory: Path, fmt: Format) -> list[str]:
    """Return commands creating *directory* and its format marker."""
    commands = [f"mkdir -p {sh_quote(str(directory))}"]
    commands.extend(write_file_commands(format_file(directory), fmt.value, FORMAT_FILE_MODE))
    return commands


__all__ = [
    "AgentConfigError",
    "ConfigData",
    "FORMAT_FILENAME",
    "Format",
    "Formatter",
    "Migration",
    "format_file",
    "read_format",
    "write_commands_for_format",
    "write_file_atomic",
    "write_file_commands",
    "write_format_file",
]
