"""Validated environment configuration.

An :class:`EnvironConfig` wraps the attribute mapping describing one
environment. Attributes common to every backend are checked and defaulted on
construction; anything else is kept as an *unknown* attribute for the backend
to validate through :meth:`EnvironConfig.validate_unknown_attrs`.
"""
from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from packaging.version import InvalidVersion, Version

from ..cert import CertError, generate_server, load_certificate, load_private_key

DEFAULT_STATE_PORT = 37017
DEFAULT_API_PORT = 17070
DEFAULT_SERIES = "precise"
FIREWALL_MODES = ("instance", "global")

IMMUTABLE_ATTRS = ("name", "type", "state-port", "api-port")

DEFAULTS: dict[str, object] = {
    "authorized-keys": "",
    "admin-secret": "",
    "state-port": DEFAULT_STATE_PORT,
    "api-port": DEFAULT_API_PORT,
    "default-series": DEFAULT_SERIES,
    "firewall-mode": "instance",
    "ssl-hostname-verification": True,
    "development": False,
}

KNOWN_ATTRS = frozenset(
    {
        "name",
        "type",
        "authorized-keys",
        "admin-secret",
        "ca-cert",
        "ca-private-key",
        "state-port",
        "api-port",
        "default-series",
        "firewall-mode",
        "ssl-hostname-verification",
        "agent-version",
        "development",
    }
)


class EnvironConfigError(RuntimeError):
    """Raised when an environment configuration is invalid."""


# Attribute checkers -------------------------------------------------------
OMIT = object()
"""Default marker: leave the attribute unset when it is not supplied."""


@dataclass(frozen=True)
class FieldType:
    """Coercion applied to one attribute."""

    kind: str
    coerce: Callable[[object], object]

    def check(self, key: str, value: object) -> object:
        """Return the coerced value or raise :class:`EnvironConfigError`."""
        try:
            return self.coerce(value)
        except (TypeError, ValueError):
            raise EnvironConfigError(
                f"{key}: expected {self.kind}, got {_describe(value)}"
            ) from None


def _describe(value: object) -> str:
    if value is None:
        return "nothing"
    return f"{type(value).__name__}({value!r})"


def _coerce_string(value: object) -> str:
    if not isinstance(value, str):
        raise TypeError(value)
    return value


def _coerce_int(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(value)
    return value


def _coerce_force_int(value: object) -> int:
    if isinstance(value, bool):
        raise TypeError(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        return int(value.strip())
    raise TypeError(value)


def _coerce_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    raise TypeError(value)


STRING = FieldType("string", _coerce_string)
INT = FieldType("int", _coerce_int)
FORCE_INT = FieldType("int", _coerce_force_int)
BOOL = FieldType("bool", _coerce_bool)

_KNOWN_FIELDS: dict[str, FieldType] = {
    "name": STRING,
    "type": STRING,
    "authorized-keys": STRING,
    "admin-secret": STRING,
    "ca-cert": STRING,
    "ca-private-key": STRING,
    "state-port": FORCE_INT,
    "api-port": FORCE_INT,
    "default-series": STRING,
    "firewall-mode": STRING,
    "ssl-hostname-verification": BOOL,
    "agent-version": STRING,
    "development": BOOL,
}


class EnvironConfig:
    """Immutable, validated configuration for one environment."""

    def __init__(self, attrs: Mapping[str, object]) -> None:
        """Validate *attrs*, filling in defaults for the common attributes."""
        merged: dict[str, object] = dict(DEFAULTS)
        merged.update({str(key): value for key, value in attrs.items()})
        for key, field_type in _KNOWN_FIELDS.items():
            if merged.get(key) is None:
                if key in DEFAULTS:
                    merged[key] = DEFAULTS[key]
                else:
                    merged.pop(key, None)
                continue
            merged[key] = field_type.check(key, merged[key])
        self._attrs = merged
        self._check()

    # Construction helpers ---------------------------------------------
    def _check(self) -> None:
        name = self._attrs.get("name")
        if not name:
            raise EnvironConfigError("empty name in environment configuration")
        if any(char in str(name) for char in "/\\"):
            raise EnvironConfigError(f'environment name contains unsafe characters: "{name}"')
        if not self._attrs.get("type"):
            raise EnvironConfigError("empty type in environment configuration")

        mode = self._attrs["firewall-mode"]
        if mode not in FIREWALL_MODES:
            raise EnvironConfigError(f'invalid firewall mode in environment configuration: "{mode}"')

        agent_version = self._attrs.get("agent-version")
        if agent_version is not None:
            try:
                Version(str(agent_version))
            except InvalidVersion:
                raise EnvironConfigError(
                    f'invalid agent version in environment configuration: "{agent_version}"'
                ) from None

        ca_cert = self._attrs.get("ca-cert")
        ca_key = self._attrs.get("ca-private-key")
        if ca_key and not ca_cert:
            raise EnvironConfigError("ca-private-key specified without ca-cert")
        try:
            if ca_cert:
                load_certificate(str(ca_cert))
            if ca_key:
                load_private_key(str(ca_key))
        except CertError as exc:
            raise EnvironConfigError(f"bad CA certificate/key in configuration: {exc}") from exc

    # Accessors ---------------------------------------------------------
    @property
    def name(self) -> str:
        return str(self._attrs["name"])

    @property
    def type(self) -> str:
        return str(self._attrs["type"])

    @property
    def authorized_keys(self) -> str:
        return str(self._attrs["authorized-keys"])

    @property
    def admin_secret(self) -> str:
        return str(self._attrs["admin-secret"])

    @property
    def ca_cert(self) -> str | None:
        value = self._attrs.get("ca-cert")
        return str(value) if value else None

    @property
    def ca_private_key(self) -> str | None:
        value = self._attrs.get("ca-private-key")
        return str(value) if value else None

    @property
    def state_port(self) -> int:
        return int(self._attrs["state-port"])  # type: ignore[arg-type]

    @property
    def api_port(self) -> int:
        return int(self._attrs["api-port"])  # type: ignore[arg-type]

    @property
    def default_series(self) -> str:
        return str(self._attrs["default-series"])

    @property
    def firewall_mode(self) -> str:
        return str(self._attrs["firewall-mode"])

    @property
    def ssl_hostname_verification(self) -> bool:
        return bool(self._attrs["ssl-hostname-verification"])

    @property
    def development(self) -> bool:
        return bool(self._attrs["development"])

    @property
    def agent_version(self) -> Version | None:
        value = self._attrs.get("agent-version")
        return Version(str(value)) if value is not None else None

    def get(self, key: str, default: Any = None) -> Any:
        """Return the raw value of *key*."""
        return self._attrs.get(key, default)

    def all_attrs(self) -> dict[str, object]:
        """Return a copy of every attribute."""
        return dict(self._attrs)

    def unknown_attrs(self) -> dict[str, object]:
        """Return the attributes not understood by the common layer."""
        return {key: value for key, value in self._attrs.items() if key not in KNOWN_ATTRS}

    # Derivation --------------------------------------------------------
    def apply(self, updates: Mapping[str, object]) -> EnvironConfig:
        """Return a new configuration with *updates* applied."""
        merged = self.all_attrs()
        merged.update(updates)
        return EnvironConfig(merged)

    def without(self, keys: Iterable[str]) -> EnvironConfig:
        """Return a new configuration lacking *keys*."""
        drop = set(keys)
        return EnvironConfig({key: value for key, value in self._attrs.items() if key not in drop})

    def validate_unknown_attrs(
        self,
        fields: Mapping[str, FieldType],
        defaults: Mapping[str, object],
    ) -> dict[str, object]:
        """Check backend attributes against *fields*, applying *defaults*.

        Attributes not named in *fields* are preserved unchanged. A default of
        :data:`OMIT` leaves the attribute unset when it is missing.
        """
        result = self.unknown_attrs()
        for key, field_type in fields.items():
            if key in result and result[key] is not None:
                value = result[key]
            elif key in defaults:
                value = defaults[key]
                if value is OMIT:
                    result.pop(key, None)
                    continue
            else:
                raise EnvironConfigError(f"{key}: expected {field_type.kind}, got nothing")
            result[key] = field_type.check(key, value)
        return result

    def generate_state_server_cert_and_key(self) -> tuple[str, str]:
        """Return a state server certificate and key signed by the environment CA."""
        if self.ca_cert is None:
            raise EnvironConfigError("environment configuration has no ca-cert")
        if self.ca_private_key is None:
            raise EnvironConfigError("environment configuration has no ca-private-key")
        try:
            return generate_server(self.ca_cert, self.ca_private_key, ("localhost", "juju-apiserver"))
        except CertError as exc:
            raise EnvironConfigError(str(exc)) from exc

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, EnvironConfig):
            return NotImplemented
        return self._attrs == other._attrs

    def __repr__(self) -> str:
        return f"EnvironConfig(name={self.name!r}, type={self.type!r})"


def _quoted(value: object) -> str:
    return f'"{value}"' if isinstance(value, str) else str(value)


def validate(new: EnvironConfig, old: EnvironConfig | None) -> None:
    """Reject changes to attributes that are fixed once an environment exists."""
    if old is None:
        return
    for key in IMMUTABLE_ATTRS:
        before, after = old.get(key), new.get(key)
        if before != after:
            raise EnvironConfigError(
                f"cannot change {key} from {_quoted(before)} to {_quoted(after)}"
            )
    if old.get("agent-version") is not None and new.get("agent-version") is None:
        raise EnvironConfigError("cannot clear agent-version")


__all__ = [
    "BOOL",
    "DEFAULT_API_PORT",
    "DEFAULT_SERIES",
    "DEFAULT_STATE_PORT",
    "EnvironConfig",
    "EnvironConfigError",
    "FORCE_INT",
    "FieldType",
    "INT",
    "OMIT",
    "STRING",
    "validate",
]
