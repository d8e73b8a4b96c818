"""Tests for agent configuration construction, persistence and rotation."""
from __future__ import annotations

import stat
from dataclasses import replace
from pathlib import Path

import pytest

from envctl.agent import (
    AgentConfigError,
    AgentConfigParams,
    StateMachineConfigParams,
    new_agent_config,
    new_state_machine_config,
    read_conf,
    write_new_password,
)
from envctl.agent.format import Format


def _params(data_dir: Path, /, **overrides: object) -> AgentConfigParams:
    params = AgentConfigParams(
        data_dir=data_dir,
        tag="machine-1",
        password="sekrit",
        ca_cert="ca cert",
        state_addresses=["localhost:37017"],
        api_addresses=["localhost:17070"],
        nonce="a nonce",
        values={"PROVIDER_TYPE": "dummy"},
    )
    return replace(params, **overrides)  # type: ignore[arg-type]


@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"data_dir": ""}, "data directory not found in configuration"),
        ({"tag": ""}, "entity tag not found in configuration"),
        ({"password": ""}, "password not found in configuration"),
        ({"ca_cert": ""}, "CA certificate not found in configuration"),
        ({"state_addresses": [], "api_addresses": []}, "state or API addresses not found in configuration"),
        ({"state_addresses": ["localhost"]}, 'invalid state server address "localhost"'),
        ({"api_addresses": ["localhost"]}, 'invalid API server address "localhost"'),
    ],
)
def test_new_agent_config_validation(tmp_path: Path, overrides: dict[str, object], message: str) -> None:
    """Missing or malformed values are reported in a fixed order."""
    with pytest.raises(AgentConfigError, match=message):
        new_agent_config(_params(tmp_path, **overrides))


def test_validation_order_reports_first_problem(tmp_path: Path) -> None:
    """With several problems, the earliest check wins."""
    with pytest.raises(AgentConfigError, match="entity tag not found"):
        new_agent_config(_params(tmp_path, tag="", password="", ca_cert=""))


def test_api_addresses_alone_are_enough(tmp_path: Path) -> None:
    """Either address list satisfies the address requirement."""
    conf = new_agent_config(_params(tmp_path, state_addresses=[]))
    assert conf.state_info() is None
    api = conf.api_info()
    assert api is not None
    assert api.addrs == ["localhost:17070"]
    assert api.tag == "machine-1"


def test_addresses_without_host_are_local(tmp_path: Path) -> None:
    """An address with an empty host is accepted as the local machine."""
    conf = new_agent_config(_params(tmp_path, state_addresses=[":37017"], api_addresses=[":17070"]))
    assert conf.state_addresses == [":37017"]
    assert conf.api_addresses == [":17070"]


def test_state_machine_requires_cert_and_key_first(tmp_path: Path) -> None:
    """Server cert and key are checked before the common fields."""
    base = _params(tmp_path, tag="")
    params = StateMachineConfigParams(**vars(base), state_server_cert="", state_server_key="key")
    with pytest.raises(AgentConfigError, match="state server cert not found"):
        new_state_machine_config(params)

    params = StateMachineConfigParams(**vars(base), state_server_cert="cert", state_server_key="")
    with pytest.raises(AgentConfigError, match="state server key not found"):
        new_state_machine_config(params)


def test_write_then_read(tmp_path: Path) -> None:
    """A written configuration reads back equal, with secure permissions."""
    conf = new_agent_config(_params(tmp_path))
    conf.write()

    directory = tmp_path / "agents" / "machine-1"
    assert conf.dir == directory
    assert (directory / "format").read_text() == "format 1.16\n"
    assert stat.S_IMODE((directory / "format").stat().st_mode) == 0o644
    assert stat.S_IMODE((directory / "agent.conf").stat().st_mode) == 0o600

    loaded = read_conf(tmp_path, "machine-1")
    assert loaded == conf
    assert loaded.value("PROVIDER_TYPE") == "dummy"
    assert loaded.value("missing") == ""


def test_state_server_config_round_trip(tmp_path: Path) -> None:
    """State server fields survive a write and read."""
    params = StateMachineConfigParams(
        **vars(_params(tmp_path, tag="machine-0")),
        state_server_cert="server cert",
        state_server_key="server key",
        api_port=17070,
    )
    conf = new_state_machine_config(params)
    conf.write()

    loaded = read_conf(tmp_path, "machine-0")
    assert loaded.is_state_server
    assert loaded.state_server_key == "server key"
    assert loaded.api_port == 17070


def test_set_value(tmp_path: Path) -> None:
    """Values can be replaced and removed."""
    conf = new_agent_config(_params(tmp_path))
    conf.set_value("STORAGE_DIR", "/var/lib/juju/storage")
    conf.set_value("PROVIDER_TYPE", None)
    assert conf.values == {"STORAGE_DIR": "/var/lib/juju/storage"}


def test_read_missing_config(tmp_path: Path) -> None:
    """A directory without agent.conf cannot be read."""
    with pytest.raises(AgentConfigError, match="file not found"):
        read_conf(tmp_path, "machine-7")


def test_write_new_password_keeps_old_one(tmp_path: Path) -> None:
    """Rotation persists the new password and remembers the previous one."""
    conf = new_agent_config(_params(tmp_path))
    conf.write()

    new_password = write_new_password(conf)

    assert new_password != "sekrit"
    assert conf.password == new_password
    assert conf.old_password == "sekrit"
    loaded = read_conf(tmp_path, "machine-1")
    assert loaded.password == new_password
    assert loaded.old_password == "sekrit"


def test_write_new_password_failure_leaves_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """When the write fails the in-memory password is untouched."""
    conf = new_agent_config(_params(tmp_path))

    def refuse(path: Path, content: str, mode: int) -> None:
        raise OSError("read-only file system")

    monkeypatch.setattr("envctl.agent.format_1_16.write_file_atomic", refuse)

    with pytest.raises(AgentConfigError, match="read-only file system"):
        write_new_password(conf)
    assert conf.password == "sekrit"
    assert conf.old_password == ""


def test_read_conf_uses_given_data_dir(tmp_path: Path) -> None:
    """The data directory comes from the caller, not the file."""
    conf = new_agent_config(_params(tmp_path / "one"))
    conf.write()
    moved = tmp_path / "two"
    (tmp_path / "one").rename(moved)

    assert read_conf(moved, "machine-1").data_dir == moved
    assert Format.CURRENT.value == "format 1.16"
