"""Tests for machine configuration assembly and verification."""
from __future__ import annotations

from pathlib import Path

import pytest

from envctl.cert import load_certificate
from envctl.connection import APIInfo, StateInfo
from envctl.constraints import Constraints
from envctl.environs.config import EnvironConfig
from envctl.environs.machineconfig import (
    BOOTSTRAP_NONCE,
    CONTAINER_TYPE_KEY,
    PROVIDER_TYPE_KEY,
    MachineConfig,
    MachineConfigError,
    bootstrap_config,
    finish_machine_config,
    is_valid_machine_id,
    machine_agent_config,
    machine_tag,
    new_bootstrap_machine_config,
    new_machine_config,
    verify_machine_config,
)
from envctl.tools import Tools
from envctl.utils import user_password_hash
from envctl.version import Binary

TOOLS = Tools(
    binary=Binary.parse("1.16.0-precise-amd64"),
    url="mem://sample/tools/juju-1.16.0-precise-amd64.tgz",
    size=3,
    sha256="abc",
)


def _finished(environ_attrs: dict[str, object], tmp_path: Path) -> MachineConfig:
    mcfg = new_bootstrap_machine_config("mem://sample/provider-state", data_dir=tmp_path)
    finish_machine_config(mcfg, EnvironConfig(environ_attrs), Constraints(mem=2048))
    mcfg.tools = TOOLS
    return mcfg


def _worker(**overrides: object) -> MachineConfig:
    mcfg = new_machine_config(
        "1/lxc/2",
        "a-nonce",
        StateInfo(addrs=["10.0.0.1:37017"], ca_cert="ca", tag="machine-1-lxc-2", password="pw"),
        APIInfo(addrs=["10.0.0.1:17070"], ca_cert="ca", tag="machine-1-lxc-2", password="pw"),
    )
    mcfg.tools = TOOLS
    for key, value in overrides.items():
        setattr(mcfg, key, value)
    return mcfg


@pytest.mark.parametrize(
    ("machine_id", "valid"),
    [("0", True), ("12", True), ("1/lxc/2", True), ("01", False), ("1/lxc", False), ("", False)],
)
def test_machine_ids(machine_id: str, valid: bool) -> None:
    """Ids are numbers optionally nested under container types."""
    assert is_valid_machine_id(machine_id) is valid


def test_machine_tag() -> None:
    assert machine_tag("0") == "machine-0"
    assert machine_tag("1/lxc/2") == "machine-1-lxc-2"


def test_bootstrap_machine_config_defaults(tmp_path: Path) -> None:
    """The bootstrap machine is machine 0 and a state server."""
    mcfg = new_bootstrap_machine_config("mem://sample/provider-state", data_dir=tmp_path)
    assert mcfg.machine_id == "0"
    assert mcfg.machine_nonce == BOOTSTRAP_NONCE
    assert mcfg.state_server
    assert mcfg.state_info is None and mcfg.api_info is None
    assert mcfg.data_dir == tmp_path


def test_finish_bootstrap_config(environ_attrs: dict[str, object], tmp_path: Path) -> None:
    """State servers receive hashed credentials, ports and a server certificate."""
    mcfg = _finished(environ_attrs, tmp_path)

    expected_hash = user_password_hash("fancy-secret")
    assert mcfg.state_info == StateInfo(password=expected_hash, ca_cert=environ_attrs["ca-cert"])
    assert mcfg.api_info == APIInfo(password=expected_hash, ca_cert=environ_attrs["ca-cert"])
    assert (mcfg.state_port, mcfg.api_port) == (37017, 17070)
    assert mcfg.constraints == Constraints(mem=2048)
    assert mcfg.authorized_keys == environ_attrs["authorized-keys"]
    assert mcfg.agent_environment[PROVIDER_TYPE_KEY] == "dummy"
    assert mcfg.agent_environment[CONTAINER_TYPE_KEY] == ""
    assert mcfg.disable_ssl_hostname_verification is False
    assert load_certificate(mcfg.state_server_cert) is not None
    assert "PRIVATE KEY" in mcfg.state_server_key

    assert mcfg.config is not None
    assert mcfg.config.get("admin-secret") is None
    assert mcfg.config.get("ca-private-key") is None
    verify_machine_config(mcfg)


def test_bootstrap_config_drops_secrets(environ_attrs: dict[str, object]) -> None:
    """Only the admin secret and CA key are removed."""
    cfg = bootstrap_config(EnvironConfig(environ_attrs))
    assert cfg.admin_secret == ""
    assert cfg.ca_private_key is None
    assert cfg.ca_cert == environ_attrs["ca-cert"]


def test_finish_leaves_workers_alone(environ_attrs: dict[str, object]) -> None:
    """Non state servers only get the common settings."""
    mcfg = _worker()
    finish_machine_config(mcfg, EnvironConfig(environ_attrs), Constraints())
    assert mcfg.state_info is not None and mcfg.state_info.password == "pw"
    assert mcfg.config is None
    assert mcfg.authorized_keys == environ_attrs["authorized-keys"]


@pytest.mark.parametrize(
    ("drop", "message"),
    [
        ("authorized-keys", "environment configuration has no authorized-keys"),
        ("admin-secret", "environment configuration has no admin-secret"),
    ],
)
def test_finish_requires_settings(
    environ_attrs: dict[str, object], tmp_path: Path, drop: str, message: str
) -> None:
    """Missing environment settings are reported with a common prefix."""
    environ_attrs.pop(drop)
    mcfg = new_bootstrap_machine_config("mem://x", data_dir=tmp_path)
    with pytest.raises(MachineConfigError, match=f"^cannot complete machine configuration: {message}$"):
        finish_machine_config(mcfg, EnvironConfig(environ_attrs), Constraints())


def test_finish_requires_ca_cert(environ_attrs: dict[str, object], tmp_path: Path) -> None:
    """Without a CA certificate no state server can be configured."""
    environ_attrs.pop("ca-cert")
    environ_attrs.pop("ca-private-key")
    mcfg = new_bootstrap_machine_config("mem://x", data_dir=tmp_path)
    with pytest.raises(MachineConfigError, match="has no ca-cert"):
        finish_machine_config(mcfg, EnvironConfig(environ_attrs), Constraints())


def test_finish_rejects_preset_info(environ_attrs: dict[str, object], tmp_path: Path) -> None:
    mcfg = new_bootstrap_machine_config("mem://x", data_dir=tmp_path)
    mcfg.api_info = APIInfo()
    with pytest.raises(MachineConfigError, match="already has api/state info"):
        finish_machine_config(mcfg, EnvironConfig(environ_attrs), Constraints())


def test_finish_without_ca_key(environ_attrs: dict[str, object], tmp_path: Path) -> None:
    """A CA certificate without its key cannot sign the server certificate."""
    environ_attrs.pop("ca-private-key")
    mcfg = new_bootstrap_machine_config("mem://x", data_dir=tmp_path)
    with pytest.raises(MachineConfigError, match="cannot generate state server certificate"):
        finish_machine_config(mcfg, EnvironConfig(environ_attrs), Constraints())


@pytest.mark.parametrize(
    ("overrides", "problem"),
    [
        ({"machine_id": "x"}, "invalid machine id"),
        ({"tools": None}, "missing tools"),
        ({"state_info": None}, "missing state info"),
        ({"api_info": None}, "missing API info"),
        ({"machine_nonce": ""}, "missing machine nonce"),
    ],
)
def test_verify_worker_problems(overrides: dict[str, object], problem: str) -> None:
    """Each missing piece is named in the error."""
    with pytest.raises(MachineConfigError, match=f"invalid machine configuration: {problem}"):
        verify_machine_config(_worker(**overrides))


def test_verify_worker_tags_and_hosts() -> None:
    """Workers need hosts and tags matching their machine id."""
    verify_machine_config(_worker())

    mcfg = _worker()
    mcfg.state_info.addrs = []  # type: ignore[union-attr]
    with pytest.raises(MachineConfigError, match="missing state hosts"):
        verify_machine_config(mcfg)

    mcfg = _worker()
    mcfg.api_info.tag = "machine-9"  # type: ignore[union-attr]
    with pytest.raises(MachineConfigError, match="entity tag must match started machine"):
        verify_machine_config(mcfg)


def test_verify_tools_url(environ_attrs: dict[str, object], tmp_path: Path) -> None:
    mcfg = _finished(environ_attrs, tmp_path)
    mcfg.tools = Tools(binary=TOOLS.binary, url="", size=0, sha256="")
    with pytest.raises(MachineConfigError, match="missing tools URL"):
        verify_machine_config(mcfg)


def test_verify_state_server_problems(environ_attrs: dict[str, object], tmp_path: Path) -> None:
    """State servers must start untagged and with their certificate."""
    mcfg = _finished(environ_attrs, tmp_path)
    mcfg.state_info.tag = "machine-0"  # type: ignore[union-attr]
    with pytest.raises(MachineConfigError, match="entity tag must be blank"):
        verify_machine_config(mcfg)

    mcfg = _finished(environ_attrs, tmp_path)
    mcfg.state_server_key = ""
    with pytest.raises(MachineConfigError, match="missing state server private key"):
        verify_machine_config(mcfg)

    mcfg = _finished(environ_attrs, tmp_path)
    mcfg.config = None
    with pytest.raises(MachineConfigError, match="missing environment configuration"):
        verify_machine_config(mcfg)


def test_state_server_agent_config(environ_attrs: dict[str, object], tmp_path: Path) -> None:
    """The bootstrap agent talks to its own servers on the given host."""
    mcfg = _finished(environ_attrs, tmp_path)
    conf = machine_agent_config(mcfg)

    assert conf.tag == "machine-0"
    assert conf.is_state_server
    assert conf.state_addresses == ["localhost:37017"]
    assert conf.api_addresses == ["localhost:17070"]
    assert conf.password == user_password_hash("fancy-secret")
    assert conf.value(PROVIDER_TYPE_KEY) == "dummy"
    assert conf.dir == tmp_path / "agents" / "machine-0"


def test_worker_agent_config() -> None:
    """Worker agents keep the addresses they were given."""
    conf = machine_agent_config(_worker())
    assert conf.tag == "machine-1-lxc-2"
    assert not conf.is_state_server
    assert conf.state_addresses == ["10.0.0.1:37017"]


def test_agent_config_needs_connection_info() -> None:
    with pytest.raises(MachineConfigError, match="no state or API info"):
        machine_agent_config(_worker(state_info=None))
