"""Configuration loader for envctl.

Sources are layered, later ones winning:

1. Built-in defaults.
2. ``/etc/envctl/config.yml``, or the file named by ``ENVCTL_CONFIG_FILE`` or
   passed explicitly.
3. ``ENVCTL_*`` environment variables; ``__`` separates nested keys::

    export ENVCTL_STORAGE__ATTEMPTS=3
    export ENVCTL_DATA_DIR=/srv/juju

4. Programmatic overrides.

Environment values go through ``yaml.safe_load`` so numbers and booleans come
out typed. Nothing in the core reads the result implicitly: callers pass
``AppConfig.data_dir`` and the storage retry policy to whatever needs them.
"""
from __future__ import annotations

import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path

import yaml

from .utils.retry import RetryPolicy

ENV_PREFIX = "ENVCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
DEFAULT_CONFIG_FILE = "/etc/envctl/config.yml"

PATH_KEYS = ("config_file", "data_dir", "logs_dir", "home_dir")


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class StorageConfig:
    """Retry behaviour applied to environment storage reads."""

    attempts: int = 25
    delay: float = 0.2

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(attempts=self.attempts, delay=self.delay)

    def to_dict(self) -> dict[str, object]:
        return {"attempts": self.attempts, "delay": self.delay}


@dataclass(frozen=True)
class ToolsConfig:
    """Series and architecture assumed when packaging agent tools."""

    series: str = "precise"
    arch: str = "amd64"

    def to_dict(self) -> dict[str, object]:
        return {"series": self.series, "arch": self.arch}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for envctl."""

    config_file: Path
    data_dir: Path
    logs_dir: Path
    home_dir: Path
    storage: StorageConfig
    tools: ToolsConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        result: dict[str, object] = {key: str(getattr(self, key)) for key in PATH_KEYS}
        result["storage"] = self.storage.to_dict()
        result["tools"] = self.tools.to_dict()
        return result


DEFAULTS: dict[str, object] = {
    "config_file": DEFAULT_CONFIG_FILE,
    "data_dir": "/var/lib/juju",
    "logs_dir": "/var/log/envctl",
    "home_dir": "~/.juju",
    "storage": StorageConfig().to_dict(),
    "tools": ToolsConfig().to_dict(),
}


# Value checks ----------------------------------------------------------
def _attempts(value: object, label: str) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    try:
        number = int(value, 0) if isinstance(value, str) else int(value)  # type: ignore[call-overload]
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    if number < 1:
        raise ConfigError(f"{label} must be at least 1.")
    return number


def _delay(value: object, label: str) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    if number < 0:
        raise ConfigError(f"{label} must not be negative. Got {number}.")
    return number


def _word(value: object, label: str) -> str:
    text = "" if value is None else str(value).strip()
    if not text:
        raise ConfigError(f"{label} must be a non-empty string.")
    return text


# Known keys of each nested section, with the check applied to each.
SECTIONS: dict[str, dict[str, Callable[[object, str], object]]] = {
    "storage": {"attempts": _attempts, "delay": _delay},
    "tools": {"series": _word, "arch": _word},
}


# Loading ---------------------------------------------------------------
def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    environ = dict(os.environ if env is None else env)
    path = Path(config_file or environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_FILE)

    merged = _copy_tree(DEFAULTS)
    for layer in (_read_file(path), _env_layer(environ), dict(overrides or {})):
        _merge(merged, layer)
    merged["config_file"] = str(path)
    return _build(merged)


def _read_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Failed to read config file {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _mapping(data, f"file:{path}")


def _env_layer(environ: Mapping[str, str]) -> dict[str, object]:
    layer: dict[str, object] = {}
    for key, raw in environ.items():
        if key == CONFIG_ENV_VAR or not key.startswith(ENV_PREFIX):
            continue
        path = [part.lower() for part in key[len(ENV_PREFIX) :].split("__") if part]
        if not path:
            continue
        try:
            value = yaml.safe_load(raw.strip())
        except yaml.YAMLError:
            value = raw.strip()
        node = layer
        for part in path[:-1]:
            child = node.setdefault(part, {})
            if not isinstance(child, dict):
                raise ConfigError(f"Environment overrides conflict at {'.'.join(path)}")
            node = child
        node[path[-1]] = value
    return layer


def _merge(target: dict[str, object], layer: Mapping[str, object]) -> None:
    for key, value in layer.items():
        current = target.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            _merge(current, _mapping(value, key))
        else:
            target[key] = value


def _copy_tree(source: Mapping[str, object]) -> dict[str, object]:
    return {
        key: _copy_tree(value) if isinstance(value, Mapping) else value
        for key, value in source.items()
    }


def _build(raw: Mapping[str, object]) -> AppConfig:
    unknown = set(raw) - set(DEFAULTS)
    if unknown:
        raise ConfigError(f"Unknown configuration keys: {', '.join(sorted(unknown))}.")

    sections: dict[str, dict[str, object]] = {}
    for section, checks in SECTIONS.items():
        values = _mapping(raw.get(section), section)
        extra = set(values) - set(checks)
        if extra:
            raise ConfigError(f"Unknown {section} configuration keys: {', '.join(sorted(extra))}.")
        sections[section] = {key: check(values.get(key), f"{section}.{key}") for key, check in checks.items()}

    paths = {key: _path(raw.get(key), key) for key in PATH_KEYS}
    return AppConfig(
        storage=StorageConfig(**sections["storage"]),  # type: ignore[arg-type]
        tools=ToolsConfig(**sections["tools"]),  # type: ignore[arg-type]
        **paths,
    )


def _path(value: object, label: str) -> Path:
    if isinstance(value, (str, Path)) and str(value):
        return Path(value).expanduser()
    raise ConfigError(f"Expected {label} to be a filesystem path. Got {value!r}.")


def _mapping(value: object, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    for key in value:
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
    return dict(value)


__all__ = [
    "AppConfig",
    "ConfigError",
    "StorageConfig",
    "ToolsConfig",
    "load_config",
]
