"""Machine constraints expressed as ``key=value`` strings.

Sizes (``mem``, ``root-disk``) are stored in megabytes and accept the
suffixes ``M``, ``G``, ``T`` and ``P``; a bare number means megabytes.
"""
from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, fields, replace

KNOWN_ARCHES = ("amd64", "i386", "arm", "arm64", "ppc64")
KNOWN_CONTAINERS = ("none", "lxc", "kvm")

_SIZE_SUFFIXES = {"M": 1, "G": 1024, "T": 1024 * 1024, "P": 1024 * 1024 * 1024}
_SIZE_KEYS = {"mem", "root-disk"}
_COUNT_KEYS = {"cpu-cores", "cpu-power"}


class ConstraintsError(RuntimeError):
    """Raised when a constraints expression is malformed."""


def parse_size(text: str) -> int:
    """Return *text* (``512M``, ``2T``, ``1.5G``) as a number of megabytes."""
    value = text.strip()
    multiplier = 1
    if value and value[-1].upper() in _SIZE_SUFFIXES:
        multiplier = _SIZE_SUFFIXES[value[-1].upper()]
        value = value[:-1]
    try:
        number = float(value)
    except ValueError as exc:
        raise ConstraintsError("must be a non-negative float with optional M/G/T/P suffix") from exc
    if number < 0 or math.isnan(number):
        raise ConstraintsError("must be a non-negative float with optional M/G/T/P suffix")
    return math.ceil(number * multiplier)


def format_size(megabytes: int) -> str:
    """Return *megabytes* with the largest suffix that represents it exactly."""
    for suffix in ("P", "T", "G"):
        unit = _SIZE_SUFFIXES[suffix]
        if megabytes and megabytes % unit == 0:
            return f"{megabytes // unit}{suffix}"
    return f"{megabytes}M"


def _parse_count(text: str) -> int:
    try:
        number = int(text.strip())
    except ValueError as exc:
        raise ConstraintsError("must be a non-negative integer") from exc
    if number < 0:
        raise ConstraintsError("must be a non-negative integer")
    return number


def parse_fields(
    args: Iterable[str],
    allowed: Iterable[str],
) -> dict[str, object]:
    """Split ``key=value`` words into a mapping keyed by attribute name."""
    allowed_keys = set(allowed)
    values: dict[str, object] = {}
    for arg in args:
        for word in arg.split():
            key, sep, raw = word.partition("=")
            if not sep:
                raise ConstraintsError(f'malformed constraint "{word}"')
            if key not in allowed_keys:
                raise ConstraintsError(f'unknown constraint "{key}"')
            attr = key.replace("-", "_")
            if attr in values:
                raise ConstraintsError(f'bad "{key}" constraint: already set')
            values[attr] = _parse_value(key, raw)
    return values


def _parse_value(key: str, raw: str) -> object:
    if raw == "":
        return None
    try:
        if key in _SIZE_KEYS:
            return parse_size(raw)
        if key in _COUNT_KEYS:
            return _parse_count(raw)
    except ConstraintsError as exc:
        raise ConstraintsError(f'bad "{key}" constraint: {exc}') from exc
    if key == "arch" and raw not in KNOWN_ARCHES:
        raise ConstraintsError(f'bad "arch" constraint: "{raw}" not recognized')
    if key == "container" and raw not in KNOWN_CONTAINERS:
        raise ConstraintsError(f'bad "container" constraint: invalid container type "{raw}"')
    return raw


def format_fields(obj: object) -> str:
    """Render the non-empty dataclass fields of *obj* as ``key=value`` words."""
    words = []
    for field in fields(obj):  # type: ignore[arg-type]
        value = getattr(obj, field.name)
        if value is None:
            continue
        key = field.name.replace("_", "-")
        if key in _SIZE_KEYS:
            value = format_size(int(value))
        words.append(f"{key}={value}")
    return " ".join(words)


@dataclass(frozen=True)
class Constraints:
    """Requirements a started machine must satisfy."""

    arch: str | None = None
    container: str | None = None
    cpu_cores: int | None = None
    cpu_power: int | None = None
    mem: int | None = None
    root_disk: int | None = None

    KEYS = ("arch", "container", "cpu-cores", "cpu-power", "mem", "root-disk")

    @classmethod
    def parse(cls, *args: str) -> Constraints:
        """Parse one or more constraint expressions such as ``mem=8G arch=amd64``."""
        return cls(**parse_fields(args, cls.KEYS))  # type: ignore[arg-type]

    def with_fallbacks(self, fallbacks: Constraints) -> Constraints:
        """Return a copy with unset values taken from *fallbacks*."""
        updates = {
            field.name: getattr(fallbacks, field.name)
            for field in fields(self)
            if getattr(self, field.name) is None
        }
        return replace(self, **updates)

    def to_dict(self) -> dict[str, object]:
        """Return the set values keyed by their constraint names."""
        return {
            field.name.replace("_", "-"): getattr(self, field.name)
            for field in fields(self)
            if getattr(self, field.name) is not None
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Constraints:
        """Build constraints from :meth:`to_dict` output."""
        return cls(**{key.replace("-", "_"): value for key, value in data.items()})  # type: ignore[arg-type]

    def __str__(self) -> str:
        return format_fields(self)


__all__ = [
    "Constraints",
    "ConstraintsError",
    "KNOWN_ARCHES",
    "format_fields",
    "format_size",
    "parse_fields",
    "parse_size",
]
