"""Provider instances and their hardware."""
from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, fields
from typing import Protocol, TypeVar, runtime_checkable

from .constraints import format_fields, parse_fields

InstanceId = str

HARDWARE_KEYS = ("arch", "cpu-cores", "cpu-power", "mem", "root-disk")


class InstancesError(RuntimeError):
    """Base class for instance lookup failures."""


class NoInstancesError(InstancesError):
    """Raised when none of the requested instances exist."""

    def __init__(self, message: str = "no instances found") -> None:
        super().__init__(message)


class PartialInstancesError(InstancesError):
    """Raised when only some of the requested instances exist.

    ``instances`` has one slot per requested id, ``None`` where the id did not
    match.
    """

    def __init__(self, instances: Sequence[Instance | None]) -> None:
        super().__init__("some instance ids not found")
        self.instances: list[Instance | None] = list(instances)


@runtime_checkable
class Instance(Protocol):
    """A machine started by a provider."""

    def id(self) -> InstanceId:
        """Return the provider-specific instance id."""

    def status(self) -> str:
        """Return the provider-specific status text."""

    def dns_name(self) -> str:
        """Return the DNS name, or an empty string when not yet known."""


@dataclass(frozen=True)
class HardwareCharacteristics:
    """Hardware reported by a provider for a started instance."""

    arch: str | None = None
    cpu_cores: int | None = None
    cpu_power: int | None = None
    mem: int | None = None
    root_disk: int | None = None

    @classmethod
    def parse(cls, *args: str) -> HardwareCharacteristics:
        """Parse ``mem=2T arch=amd64`` style expressions."""
        return cls(**parse_fields(args, HARDWARE_KEYS))  # type: ignore[arg-type]

    def to_dict(self) -> dict[str, object]:
        """Return the set values keyed by their hyphenated names."""
        return {
            field.name.replace("_", "-"): getattr(self, field.name)
            for field in fields(self)
            if getattr(self, field.name) is not None
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> HardwareCharacteristics:
        """Build characteristics from :meth:`to_dict` output."""
        allowed = {key.replace("-", "_") for key in HARDWARE_KEYS}
        values = {}
        for key, value in data.items():
            attr = str(key).replace("-", "_")
            if attr not in allowed:
                raise ValueError(f'unknown hardware characteristic "{key}"')
            values[attr] = value
        return cls(**values)  # type: ignore[arg-type]

    def __str__(self) -> str:
        return format_fields(self)


@dataclass(frozen=True, order=True)
class Port:
    """A network port opened on an instance."""

    protocol: str
    number: int

    @classmethod
    def parse(cls, text: str) -> Port:
        """Parse ``80/tcp``; a bare number means TCP."""
        number, _, protocol = text.partition("/")
        try:
            value = int(number)
        except ValueError:
            raise ValueError(f'invalid port "{text}"') from None
        if not 1 <= value <= 65535:
            raise ValueError(f'invalid port "{text}"')
        return cls(protocol=protocol or "tcp", number=value)

    def __str__(self) -> str:
        return f"{self.number}/{self.protocol}"


_InstanceT = TypeVar("_InstanceT", bound=Instance)


def select_instances(
    ids: Sequence[InstanceId] | None,
    known: Mapping[InstanceId, _InstanceT],
) -> list[_InstanceT]:
    """Look up *ids* in *known*, applying the shared lookup rules.

    Raises :class:`NoInstancesError` when *ids* is empty or nothing matches,
    and :class:`PartialInstancesError` when only some ids match.
    """
    if not ids:
        raise NoInstancesError()
    found: list[_InstanceT | None] = [known.get(instance_id) for instance_id in ids]
    matched = sum(1 for inst in found if inst is not None)
    if matched == 0:
        raise NoInstancesError()
    if matched < len(found):
        raise PartialInstancesError(found)
    return [inst for inst in found if inst is not None]


__all__ = [
    "HardwareCharacteristics",
    "Instance",
    "InstanceId",
    "InstancesError",
    "NoInstancesError",
    "PartialInstancesError",
    "Port",
    "select_instances",
]
