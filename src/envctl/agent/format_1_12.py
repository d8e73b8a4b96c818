"""Agent configuration format of the 1.12 release.

Directories written by 1.12 carry no ``format`` marker. Their ``agent.conf``
nests connection details under ``stateinfo`` and ``apiinfo``, each with its
own tag and password, and has no free-form values map.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from ..logging import get_logger
from ..utils import sh_quote
from .format import AgentConfigError, ConfigData, Format, write_file_atomic, write_file_commands
from .format_1_16 import CONFIG_FILE_MODE, CONFIG_FILENAME, agent_dir

logger = get_logger(__name__)

DEFAULT_API_PORT = 17070


def _info(raw: dict[str, Any], key: str) -> dict[str, Any]:
    value = raw.get(key)
    return value if isinstance(value, dict) else {}


def render(data: ConfigData) -> str:
    """Return the legacy YAML body without its final newline."""
    payload: dict[str, Any] = {}
    if data.get("old_password"):
        payload["oldpassword"] = data["old_password"]
    if data.get("nonce"):
        payload["machinenonce"] = data["nonce"]
    for key, addresses in (("stateinfo", "state_addresses"), ("apiinfo", "api_addresses")):
        if data.get(addresses):
            payload[key] = {
                "addrs": list(data[addresses]),
                "cacert": data.get("ca_cert", ""),
                "tag": data["tag"],
                "password": data.get("password", ""),
            }
    if data.get("state_server_cert"):
        payload["stateservercert"] = data["state_server_cert"]
    if data.get("state_server_key"):
        payload["stateserverkey"] = data["state_server_key"]
    if data.get("api_port"):
        payload["apiport"] = data["api_port"]
    return yaml.safe_dump(payload, sort_keys=False, default_flow_style=False).rstrip("\n")


class Formatter112:
    """Reader and writer for ``format 1.12``."""

    format = Format.PREVIOUS

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

        state_info = _info(raw, "stateinfo")
        api_info = _info(raw, "apiinfo")
        return {
            "tag": state_info.get("tag") or api_info.get("tag") or "",
            "nonce": raw.get("machinenonce") or "",
            "ca_cert": state_info.get("cacert") or api_info.get("cacert") or "",
            "state_addresses": list(state_info.get("addrs") or []),
            "api_addresses": list(api_info.get("addrs") or []),
            "password": state_info.get("password") or api_info.get("password") or "",
            "old_password": raw.get("oldpassword") or "",
            "values": None,
            "state_server_cert": raw.get("stateservercert"),
            "state_server_key": raw.get("stateserverkey"),
            "api_port": raw.get("apiport"),
        }

    def write(self, data: ConfigData) -> None:
        directory = agent_dir(data)
        write_file_atomic(directory / CONFIG_FILENAME, render(data) + "\n", CONFIG_FILE_MODE)

    def write_commands(self, data: ConfigData) -> list[str]:
        directory = agent_dir(data)
        commands = [f"mkdir -p {sh_quote(str(directory))}"]
        commands.extend(
            write_file_commands(directory / CONFIG_FILENAME, render(data), CONFIG_FILE_MODE)
        )
        return commands


def migrate_1_12(data: ConfigData) -> ConfigData:
    """Upgrade configuration read from a 1.12 directory to the current shape."""
    migrated = dict(data)
    logger.info("migrating agent config for %s from %s", data.get("tag"), Format.PREVIOUS.value)
    if migrated.get("values") is None:
        migrated["values"] = {}
    if migrated.get("state_server_cert") and not migrated.get("api_port"):
        migrated["api_port"] = DEFAULT_API_PORT
    return migrated


FORMATTER = Formatter112()

__all__ = ["FORMATTER", "Formatter112", "migrate_1_12", "render"]
