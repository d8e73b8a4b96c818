"""Assembly of the parameters a newly started machine needs.

A :class:`MachineConfig` is built fresh for every started instance and never
persisted: for state servers it carries the freshly generated server key.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path

from ..agent import (
    AgentConfig,
    AgentConfigParams,
    StateMachineConfigParams,
    new_agent_config,
    new_state_machine_config,
)
from ..connection import APIInfo, StateInfo
from ..constraints import Constraints
from ..tools import Tools
from ..utils import user_password_hash
from .config import EnvironConfig, EnvironConfigError

DEFAULT_DATA_DIR = Path("/var/lib/juju")
BOOTSTRAP_MACHINE_ID = "0"
BOOTSTRAP_NONCE = "user-admin:bootstrap"

# Keys of MachineConfig.agent_environment.
PROVIDER_TYPE_KEY = "PROVIDER_TYPE"
CONTAINER_TYPE_KEY = "CONTAINER_TYPE"
STORAGE_DIR_KEY = "STORAGE_DIR"
STORAGE_ADDR_KEY = "STORAGE_ADDR"
SHARED_STORAGE_DIR_KEY = "SHARED_STORAGE_DIR"
SHARED_STORAGE_ADDR_KEY = "SHARED_STORAGE_ADDR"
STORAGE_AUTH_KEY_KEY = "STORAGE_AUTH_KEY"

_MACHINE_ID_RE = re.compile(r"^(?:0|[1-9]\d*)(?:/[a-z]+/(?:0|[1-9]\d*))*$")


class MachineConfigError(RuntimeError):
    """Raised when a machine configuration is incomplete or inconsistent."""


@dataclass
class MachineConfig:
    """Everything needed to initialise one new machine."""

    machine_id: str
    machine_nonce: str
    data_dir: Path = DEFAULT_DATA_DIR
    state_info: StateInfo | None = None
    api_info: APIInfo | None = None
    tools: Tools | None = None
    authorized_keys: str = ""
    agent_environment: dict[str, str] = field(default_factory=dict)
    state_server: bool = False
    state_server_cert: str = ""
    state_server_key: str = ""
    state_port: int = 0
    api_port: int = 0
    state_info_url: str = ""
    machine_container_type: str = ""
    disable_ssl_hostname_verification: bool = False
    constraints: Constraints = field(default_factory=Constraints)
    config: EnvironConfig | None = None


def is_valid_machine_id(machine_id: str) -> bool:
    """Return True for ids such as ``0`` or ``1/lxc/2``."""
    return bool(_MACHINE_ID_RE.match(machine_id))


def machine_tag(machine_id: str) -> str:
    """Return the entity tag of a machine."""
    return "machine-" + machine_id.replace("/", "-")


def new_machine_config(
    machine_id: str,
    nonce: str,
    state_info: StateInfo | None,
    api_info: APIInfo | None,
    *,
    data_dir: Path = DEFAULT_DATA_DIR,
) -> MachineConfig:
    """Return a machine config for a machine joining an existing environment."""
    return MachineConfig(
        machine_id=machine_id,
        machine_nonce=nonce,
        data_dir=Path(data_dir),
        state_info=state_info,
        api_info=api_info,
    )


def new_bootstrap_machine_config(
    state_info_url: str,
    *,
    data_dir: Path = DEFAULT_DATA_DIR,
) -> MachineConfig:
    """Return the machine config for the first state server.

    Connection details are filled in later by :func:`finish_machine_config`.
    """
    mcfg = new_machine_config(BOOTSTRAP_MACHINE_ID, BOOTSTRAP_NONCE, None, None, data_dir=data_dir)
    mcfg.state_server = True
    mcfg.state_info_url = state_info_url
    return mcfg


def populate_machine_config(
    mcfg: MachineConfig,
    provider_type: str,
    authorized_keys: str,
    ssl_hostname_verification: bool,
) -> None:
    """Fill in the settings every machine gets regardless of its role."""
    if not authorized_keys:
        raise MachineConfigError("environment configuration has no authorized-keys")
    mcfg.authorized_keys = authorized_keys
    mcfg.agent_environment[PROVIDER_TYPE_KEY] = provider_type
    mcfg.agent_environment[CONTAINER_TYPE_KEY] = mcfg.machine_container_type
    mcfg.disable_ssl_hostname_verification = not ssl_hostname_verification


def bootstrap_config(cfg: EnvironConfig) -> EnvironConfig:
    """Return *cfg* without the secrets that must not leave the client."""
    return cfg.without(("admin-secret", "ca-private-key"))


def finish_machine_config(mcfg: MachineConfig, cfg: EnvironConfig, cons: Constraints) -> None:
    """Complete *mcfg* from the environment configuration.

    State servers additionally receive the hashed admin secret, the CA
    certificate, the configured ports and a new server certificate.
    """
    try:
        _finish(mcfg, cfg, cons)
    except MachineConfigError as exc:
        raise MachineConfigError(f"cannot complete machine configuration: {exc}") from exc


def _finish(mcfg: MachineConfig, cfg: EnvironConfig, cons: Constraints) -> None:
    populate_machine_config(mcfg, cfg.type, cfg.authorized_keys, cfg.ssl_hostname_verification)
    if not mcfg.state_server:
        return
    if mcfg.api_info is not None or mcfg.state_info is not None:
        raise MachineConfigError("machine configuration already has api/state info")
    ca_cert = cfg.ca_cert
    if ca_cert is None:
        raise MachineConfigError("environment configuration has no ca-cert")
    password = cfg.admin_secret
    if not password:
        raise MachineConfigError("environment configuration has no admin-secret")
    password_hash = user_password_hash(password)
    mcfg.api_info = APIInfo(password=password_hash, ca_cert=ca_cert)
    mcfg.state_info = StateInfo(password=password_hash, ca_cert=ca_cert)
    mcfg.state_port = cfg.state_port
    mcfg.api_port = cfg.api_port
    mcfg.constraints = cons
    mcfg.config = bootstrap_config(cfg)
    try:
        cert, key = cfg.generate_state_server_cert_and_key()
    except EnvironConfigError as exc:
        raise MachineConfigError(f"cannot generate state server certificate: {exc}") from exc
    mcfg.state_server_cert = cert
    mcfg.state_server_key = key


def verify_machine_config(mcfg: MachineConfig) -> None:
    """Refuse to use a machine config with missing or inconsistent fields."""
    problem = _verify(mcfg)
    if problem:
        raise MachineConfigError(f"invalid machine configuration: {problem}")


def _verify(mcfg: MachineConfig) -> str | None:
    if not is_valid_machine_id(mcfg.machine_id):
        return "invalid machine id"
    if not str(mcfg.data_dir):
        return "missing var directory"
    if mcfg.tools is None:
        return "missing tools"
    if not mcfg.tools.url:
        return "missing tools URL"
    if mcfg.state_info is None:
        return "missing state info"
    if not mcfg.state_info.ca_cert:
        return "missing CA certificate"
    if mcfg.api_info is None:
        return "missing API info"
    if not mcfg.api_info.ca_cert:
        return "missing API CA certificate"
    if mcfg.state_server:
        if mcfg.config is None:
            return "missing environment configuration"
        if mcfg.state_info.tag:
            return "entity tag must be blank when starting a state server"
        if mcfg.api_info.tag:
            return "entity tag must be blank when starting a state server"
        if not mcfg.state_server_cert:
            return "missing state server certificate"
        if not mcfg.state_server_key:
            return "missing state server private key"
        if not mcfg.state_port:
            return "missing state port"
        if not mcfg.api_port:
            return "missing API port"
    else:
        if not mcfg.state_info.addrs:
            return "missing state hosts"
        if mcfg.state_info.tag != machine_tag(mcfg.machine_id):
            return "entity tag must match started machine"
        if not mcfg.api_info.addrs:
            return "missing API hosts"
        if mcfg.api_info.tag != machine_tag(mcfg.machine_id):
            return "entity tag must match started machine"
    if not mcfg.machine_nonce:
        return "missing machine nonce"
    return None


def machine_agent_config(mcfg: MachineConfig, *, host: str = "localhost") -> AgentConfig:
    """Return the agent configuration the started machine will run with.

    State servers reach their own state and API servers on *host*.
    """
    if mcfg.state_info is None or mcfg.api_info is None:
        raise MachineConfigError("machine configuration has no state or API info")
    values = dict(mcfg.agent_environment)
    if mcfg.state_server:
        params = StateMachineConfigParams(
            data_dir=mcfg.data_dir,
            tag=machine_tag(mcfg.machine_id),
            password=mcfg.state_info.password,
            ca_cert=mcfg.state_info.ca_cert,
            state_addresses=[f"{host}:{mcfg.state_port}"],
            api_addresses=[f"{host}:{mcfg.api_port}"],
            nonce=mcfg.machine_nonce,
            values=values,
            state_server_cert=mcfg.state_server_cert,
            state_server_key=mcfg.state_server_key,
            api_port=mcfg.api_port,
        )
        return new_state_machine_config(params)
    return new_agent_config(
        AgentConfigParams(
            data_dir=mcfg.data_dir,
            tag=machine_tag(mcfg.machine_id),
            password=mcfg.state_info.password,
            ca_cert=mcfg.state_info.ca_cert,
            state_addresses=list(mcfg.state_info.addrs),
            api_addresses=list(mcfg.api_info.addrs),
            nonce=mcfg.machine_nonce,
            values=values,
        )
    )


__all__ = [
    "BOOTSTRAP_MACHINE_ID",
    "BOOTSTRAP_NONCE",
    "CONTAINER_TYPE_KEY",
    "DEFAULT_DATA_DIR",
    "MachineConfig",
    "MachineConfigError",
    "PROVIDER_TYPE_KEY",
    "SHARED_STORAGE_ADDR_KEY",
    "SHARED_STORAGE_DIR_KEY",
    "STORAGE_ADDR_KEY",
    "STORAGE_AUTH_KEY_KEY",
    "STORAGE_DIR_KEY",
    "bootstrap_config",
    "finish_machine_config",
    "is_valid_machine_id",
    "machine_agent_config",
    "machine_tag",
    "new_bootstrap_machine_config",
    "new_machine_config",
    "populate_machine_config",
    "verify_machine_config",
]
