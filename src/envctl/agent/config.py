"""Per-machine agent configuration."""
from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from ..connection import APIInfo, StateInfo, is_host_port
from ..logging import get_logger
from ..utils import random_password
from . import format_1_12, format_1_16
from .format import AgentConfigError, ConfigData, Format, Formatter, Migration, read_format

logger = get_logger(__name__)

FORMATTERS: dict[Format, Formatter] = {
    Format.CURRENT: format_1_16.FORMATTER,
    Format.PREVIOUS: format_1_12.FORMATTER,
}

# One hop only: formats older than the previous release are not readable.
MIGRATIONS: dict[Format, Migration] = {
    Format.PREVIOUS: format_1_12.migrate_1_12,
}


@dataclass
class AgentConfigParams:
    """Values needed to build an :class:`AgentConfig`."""

    data_dir: str | Path = ""
    tag: str = ""
    password: str = ""
    ca_cert: str = ""
    state_addresses: Sequence[str] = ()
    api_addresses: Sequence[str] = ()
    nonce: str = ""
    values: Mapping[str, str] | None = None


@dataclass
class StateMachineConfigParams(AgentConfigParams):
    """Parameters for an agent that also runs the state server."""

    state_server_cert: str = ""
    state_server_key: str = ""
    api_port: int | None = None


@dataclass
class AgentConfig:
    """Credentials and addresses an agent uses to reach the control plane."""

    data_dir: Path
    tag: str
    password: str
    ca_cert: str
    state_addresses: list[str] = field(default_factory=list)
    api_addresses: list[str] = field(default_factory=list)
    nonce: str = ""
    old_password: str = ""
    values: dict[str, str] = field(default_factory=dict)
    state_server_cert: str | None = None
    state_server_key: str | None = None
    api_port: int | None = None

    @property
    def dir(self) -> Path:
        """Return the directory holding this agent's files."""
        return self.data_dir / "agents" / self.tag

    @property
    def is_state_server(self) -> bool:
        """Return True when the agent also serves state."""
        return bool(self.state_server_cert)

    def value(self, key: str) -> str:
        """Return the free-form value stored under *key* (empty when unset)."""
        return self.values.get(key, "")

    def set_value(self, key: str, value: str | None) -> None:
        """Store *value* under *key*; ``None`` removes the key."""
        if value is None:
            self.values.pop(key, None)
        else:
            self.values[key] = value

    def state_info(self) -> StateInfo | None:
        """Return state connection details, or ``None`` without state addresses."""
        if not self.state_addresses:
            return None
        return StateInfo(
            addrs=list(self.state_addresses),
            ca_cert=self.ca_cert,
            tag=self.tag,
            password=self.password,
        )

    def api_info(self) -> APIInfo | None:
        """Return API connection details, or ``None`` without API addresses."""
        if not self.api_addresses:
            return None
        return APIInfo(
            addrs=list(self.api_addresses),
            ca_cert=self.ca_cert,
            tag=self.tag,
            password=self.password,
        )

    def to_data(self) -> ConfigData:
        """Return the format-agnostic representation used by formatters."""
        return {
            "data_dir": str(self.data_dir),
            "tag": self.tag,
            "nonce": self.nonce,
            "ca_cert": self.ca_cert,
            "state_addresses": list(self.state_addresses),
            "api_addresses": list(self.api_addresses),
            "password": self.password,
            "old_password": self.old_password,
            "values": dict(self.values),
            "state_server_cert": self.state_server_cert,
            "state_server_key": self.state_server_key,
            "api_port": self.api_port,
        }

    def write(self) -> None:
        """Atomically write the configuration in the current format."""
        try:
            FORMATTERS[Format.CURRENT].write(self.to_data())
        except OSError as exc:
            raise AgentConfigError(f"cannot write agent config for {self.tag}: {exc}") from exc

    def write_commands(self) -> list[str]:
        """Return shell commands that write the same files as :meth:`write`."""
        return FORMATTERS[Format.CURRENT].write_commands(self.to_data())


# Validation -----------------------------------------------------------
def _check_agent_params(params: AgentConfigParams) -> None:
    if not str(params.data_dir):
        raise AgentConfigError("data directory not found in configuration")
    if not params.tag:
        raise AgentConfigError("entity tag not found in configuration")
    if not params.password:
        raise AgentConfigError("password not found in configuration")
    if not params.ca_cert:
        raise AgentConfigError("CA certificate not found in configuration")
    if not params.state_addresses and not params.api_addresses:
        raise AgentConfigError("state or API addresses not found in configuration")
    for address in params.state_addresses:
        if not is_host_port(address):
            raise AgentConfigError(f'invalid state server address "{address}"')
    for address in params.api_addresses:
        if not is_host_port(address):
            raise AgentConfigError(f'invalid API server address "{address}"')


def _check_state_machine_params(params: StateMachineConfigParams) -> None:
    if not params.state_server_cert:
        raise AgentConfigError("state server cert not found in configuration")
    if not params.state_server_key:
        raise AgentConfigError("state server key not found in configuration")
    _check_agent_params(params)


def _build(params: AgentConfigParams, **extra: Any) -> AgentConfig:
    return AgentConfig(
        data_dir=Path(params.data_dir),
        tag=params.tag,
        password=params.password,
        ca_cert=params.ca_cert,
        state_addresses=list(params.state_addresses),
        api_addresses=list(params.api_addresses),
        nonce=params.nonce,
        values=dict(params.values or {}),
        **extra,
    )


# Public helpers -------------------------------------------------------
def new_agent_config(params: AgentConfigParams) -> AgentConfig:
    """Validate *params* and return a new :class:`AgentConfig`."""
    _check_agent_params(params)
    return _build(params)


def new_state_machine_config(params: StateMachineConfigParams) -> AgentConfig:
    """Validate *params* and return a config for a state server machine."""
    _check_state_machine_params(params)
    return _build(
        params,
        state_server_cert=params.state_server_cert,
        state_server_key=params.state_server_key,
        api_port=params.api_port,
    )


def read_conf(data_dir: str | Path, tag: str) -> AgentConfig:
    """Read the configuration of *tag* from *data_dir*.

    Configurations written in the previous format are migrated in memory; the
    directory is left as it is until the next :meth:`AgentConfig.write`.
    """
    directory = Path(data_dir) / "agents" / tag
    fmt = read_format(directory)
    formatter = FORMATTERS.get(fmt)
    if formatter is None:  # pragma: no cover - read_format only yields known formats
        raise AgentConfigError("unknown agent config format")
    data = formatter.read(directory)
    if fmt is not Format.CURRENT:
        data = MIGRATIONS[fmt](data)
    data["data_dir"] = str(data_dir)
    logger.debug("read agent config for %s (%s)", tag, fmt.value)

    if data.get("state_server_cert"):
        params: AgentConfigParams = StateMachineConfigParams(
            state_server_cert=data.get("state_server_cert") or "",
            state_server_key=data.get("state_server_key") or "",
            api_port=data.get("api_port"),
        )
    else:
        params = AgentConfigParams()
    params.data_dir = data["data_dir"]
    params.tag = data.get("tag") or ""
    params.password = data.get("password") or ""
    params.ca_cert = data.get("ca_cert") or ""
    params.state_addresses = list(data.get("state_addresses") or [])
    params.api_addresses = list(data.get("api_addresses") or [])
    params.nonce = data.get("nonce") or ""
    params.values = dict(data.get("values") or {})

    if isinstance(params, StateMachineConfigParams):
        conf = new_state_machine_config(params)
    else:
        conf = new_agent_config(params)
    conf.old_password = data.get("old_password") or ""
    if not isinstance(params, StateMachineConfigParams) and data.get("api_port"):
        conf.api_port = data["api_port"]
    return conf


def write_new_password(conf: AgentConfig) -> str:
    """Rotate the agent password, returning it only once it is on disk.

    The previous password is kept as ``old_password`` so an agent can still
    authenticate if the control plane has not yet seen the new one.
    """
    new_password = random_password()
    candidate = replace(
        conf,
        password=new_password,
        old_password=conf.password,
        values=dict(conf.values),
        state_addresses=list(conf.state_addresses),
        api_addresses=list(conf.api_addresses),
    )
    candidate.write()
    conf.old_password = candidate.old_password
    conf.password = new_password
    logger.info("rotated password for %s", conf.tag)
    return new_password


__all__ = [
    "AgentConfig",
    "AgentConfigParams",
    "FORMATTERS",
    "MIGRATIONS",
    "StateMachineConfigParams",
    "new_agent_config",
    "new_state_machine_config",
    "read_conf",
    "write_new_password",
]
