"""Agent configuration format introduced with the 1.16 release.

The directory holds the ``format`` marker and a YAML ``agent.conf``. The
configuration file is written with mode ``0600`` because it carries the
agent's credentials.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from .format import (
    AgentConfigError,
    ConfigData,
    Format,
    write_commands_for_format,
    write_file_atomic,
    write_file_commands,
    write_format_file,
)

CONFIG_FILENAME = "agent.conf"
CONFIG_FILE_MODE = 0o600

# Field name -> YAML key. Order is the serialisation order.
_KEYS = {
    "tag": "tag",
    "nonce": "nonce",
    "ca_cert": "cacert",
    "state_addresses": "stateaddresses",
    "api_addresses": "apiaddresses",
    "password": "password",
    "old_password": "oldpassword",
    "values": "values",
    "state_server_cert": "stateservercert",
    "state_server_key": "stateserverkey",
    "api_port": "apiport",
}


def agent_dir(data: ConfigData) -> Path:
    """Return ``<data_dir>/agents/<tag>`` for *data*."""
    return Path(data["data_dir"]) / "agents" / str(data["tag"])


def render(data: ConfigData) -> str:
    """Return the YAML body of ``agent.conf`` without its final newline."""
    payload: dict[str, Any] = {}
    for field, key in _KEYS.items():
        value = data.get(field)
        if value in (None, "", [], {}) and field not in ("tag", "password"):
            continue
        payload[key] = list(value) if isinstance(value, tuple) else value
    return yaml.safe_dump(payload, sort_keys=False, default_flow_style=False).rstrip("\n")


class Formatter116:
    """Reader and writer for ``format 1.16``."""

    format = Format.CURRENT

    def read(self, directory: Path) -> ConfigData:
        path = Path(directory) / CONFIG_FILENAME
        try:
            raw = yaml.safe_load(path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise AgentConfigError(f"cannot read agent config {path}: file not found") from exc
        except (OSError, yaml.YAMLError) as exc:
            raise AgentConfigError(f"cannot read agent config {path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise AgentConfigError(f"agent config {path} does not contain a mapping")
        data: ConfigData = {field: raw.get(key) for field, key in _KEYS.items()}
        data["state_addresses"] = list(data["state_addresses"] or [])
        data["api_addresses"] = list(data["api_addresses"] or [])
        data["values"] = dict(data["values"] or {})
        for field in ("nonce", "ca_cert", "password", "old_password"):
            data[field] = data[field] or ""
        return data

    def write(self, data: ConfigData) -> None:
        directory = agent_dir(data)
        write_format_file(directory, self.format)
        write_file_atomic(directory / CONFIG_FILENAME, render(data) + "\n", CONFIG_FILE_MODE)

    def write_commands(self, data: ConfigData) -> list[str]:
        directory = agent_dir(data)
        commands = write_commands_for_format(directory, self.format)
        commands.extend(
            write_file_commands(directory / CONFIG_FILENAME, render(data), CONFIG_FILE_MODE)
        )
        return commands


FORMATTER = Formatter116()

__all__ = ["CONFIG_FILENAME", "FORMATTER", "Formatter116", "agent_dir", "render"]
