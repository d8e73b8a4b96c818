"""Agent binary versions."""
from __future__ import annotations

import re
from dataclasses import dataclass

from packaging.version import InvalidVersion, Version

CURRENT_NUMBER = Version("1.16.0")

_BINARY_RE = re.compile(r"^(?P<number>\d+(?:\.\d+){1,3})-(?P<series>[^-]+)-(?P<arch>[^-]+)$")


class VersionError(RuntimeError):
    """Raised when a version string cannot be parsed."""


@dataclass(frozen=True, order=True)
class Binary:
    """A tools build: version number, OS series and architecture."""

    number: Version
    series: str
    arch: str

    @classmethod
    def parse(cls, text: str) -> Binary:
        """Parse ``1.16.0-precise-amd64``."""
        match = _BINARY_RE.match(text.strip())
        if match is None:
            raise VersionError(f'invalid binary version "{text}"')
        try:
            number = Version(match.group("number"))
        except InvalidVersion as exc:  # pragma: no cover - regex already filters
            raise VersionError(f'invalid binary version "{text}"') from exc
        return cls(number=number, series=match.group("series"), arch=match.group("arch"))

    @classmethod
    def current(cls, series: str, arch: str) -> Binary:
        """Return the binary for this release on *series*/*arch*."""
        return cls(number=CURRENT_NUMBER, series=series, arch=arch)

    @property
    def major(self) -> int:
        """Return the major version component."""
        return self.number.major

    def __str__(self) -> str:
        return f"{self.number}-{self.series}-{self.arch}"


__all__ = ["Binary", "CURRENT_NUMBER", "VersionError"]
