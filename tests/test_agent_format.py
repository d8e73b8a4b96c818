"""Tests for agent configuration formats and migration."""
from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest
import yaml

from envctl.agent import (
    AgentConfigError,
    AgentConfigParams,
    StateMachineConfigParams,
    new_agent_config,
    new_state_machine_config,
    read_conf,
)
from envctl.agent import format_1_12
from envctl.agent.format import Format, read_format

LEGACY_STATE_SERVER = """\
oldpassword: previous
machinenonce: user-admin:bootstrap
stateinfo:
  addrs:
  - localhost:37017
  cacert: legacy ca
  tag: machine-0
  password: current
apiinfo:
  addrs:
  - localhost:17070
  cacert: legacy ca
  tag: machine-0
  password: current
stateservercert: server cert
stateserverkey: server key
"""


def _write_legacy(data_dir: Path, tag: str, body: str) -> Path:
    directory = data_dir / "agents" / tag
    directory.mkdir(parents=True)
    (directory / "agent.conf").write_text(body)
    return directory


def test_missing_marker_means_previous_format(tmp_path: Path) -> None:
    """Directories predating markers are read as the previous format."""
    directory = _write_legacy(tmp_path, "machine-0", LEGACY_STATE_SERVER)
    assert read_format(directory) is Format.PREVIOUS


def test_unknown_marker_is_rejected(tmp_path: Path) -> None:
    """A marker naming an unknown format is an error."""
    directory = tmp_path / "agents" / "machine-3"
    directory.mkdir(parents=True)
    (directory / "format").write_text("format 9.99\n")

    with pytest.raises(AgentConfigError, match='unknown agent config format "format 9.99"'):
        read_conf(tmp_path, "machine-3")


def test_legacy_config_is_migrated_in_memory(tmp_path: Path) -> None:
    """Reading a 1.12 directory yields a current config without touching disk."""
    directory = _write_legacy(tmp_path, "machine-0", LEGACY_STATE_SERVER)

    conf = read_conf(tmp_path, "machine-0")

    assert conf.tag == "machine-0"
    assert conf.password == "current"
    assert conf.old_password == "previous"
    assert conf.nonce == "user-admin:bootstrap"
    assert conf.ca_cert == "legacy ca"
    assert conf.state_addresses == ["localhost:37017"]
    assert conf.api_addresses == ["localhost:17070"]
    assert conf.is_state_server
    assert conf.api_port == 17070
    assert conf.values == {}
    assert not (directory / "format").exists()


def test_write_after_migration_upgrades_directory(tmp_path: Path) -> None:
    """The next write stores the current format and marker."""
    _write_legacy(tmp_path, "machine-0", LEGACY_STATE_SERVER)
    conf = read_conf(tmp_path, "machine-0")
    conf.set_value("PROVIDER_TYPE", "ec2")
    conf.write()

    directory = tmp_path / "agents" / "machine-0"
    assert read_format(directory) is Format.CURRENT
    raw = yaml.safe_load((directory / "agent.conf").read_text())
    assert raw["stateaddresses"] == ["localhost:37017"]
    assert raw["values"] == {"PROVIDER_TYPE": "ec2"}
    assert read_conf(tmp_path, "machine-0") == conf


def test_legacy_agent_without_state_server(tmp_path: Path) -> None:
    """Plain machine agents migrate without gaining an API port."""
    body = "apiinfo:\n  addrs:\n  - 10.0.0.1:17070\n  cacert: ca\n  tag: machine-4\n  password: pw\n"
    _write_legacy(tmp_path, "machine-4", body)

    conf = read_conf(tmp_path, "machine-4")
    assert not conf.is_state_server
    assert conf.api_port is None
    assert conf.state_addresses == []


@pytest.mark.parametrize("state_server", [True, False])
def test_migrated_config_matches_direct_construction(tmp_path: Path, state_server: bool) -> None:
    """A config stored in the previous format reads back equal to a fresh one."""
    params = AgentConfigParams(
        data_dir=tmp_path,
        tag="machine-0",
        password="pw",
        ca_cert="ca",
        state_addresses=["localhost:37017"] if state_server else [],
        api_addresses=["localhost:17070"],
        nonce="user-admin:bootstrap",
    )
    if state_server:
        params = StateMachineConfigParams(
            **vars(params), state_server_cert="cert", state_server_key="key", api_port=17070
        )
        direct = new_state_machine_config(params)
    else:
        direct = new_agent_config(params)
    format_1_12.FORMATTER.write(direct.to_data())

    migrated = read_conf(tmp_path, "machine-0")

    assert read_format(direct.dir) is Format.PREVIOUS
    assert migrated == direct
    assert migrated.write_commands() == direct.write_commands()


def _run_commands(commands: list[str]) -> None:
    subprocess.run(["sh", "-ec", "\n".join(commands)], check=True)


@pytest.mark.skipif(shutil.which("install") is None, reason="coreutils install not available")
def test_write_commands_match_write(tmp_path: Path) -> None:
    """Shell commands produce byte-identical files to a direct write."""
    params = StateMachineConfigParams(
        data_dir=tmp_path / "direct",
        tag="machine-0",
        password="pw with 'quotes'",
        ca_cert="-----BEGIN CERTIFICATE-----\nabc\n-----END CERTIFICATE-----\n",
        state_addresses=["localhost:37017"],
        api_addresses=["localhost:17070"],
        nonce="user-admin:bootstrap",
        values={"PROVIDER_TYPE": "ec2"},
        state_server_cert="cert",
        state_server_key="key",
        api_port=17070,
    )
    direct = new_state_machine_config(params)
    direct.write()

    params.data_dir = tmp_path / "scripted"
    _run_commands(new_state_machine_config(params).write_commands())

    for name in ("format", "agent.conf"):
        written = (tmp_path / "direct" / "agents" / "machine-0" / name).read_bytes()
        scripted = (tmp_path / "scripted" / "agents" / "machine-0" / name).read_bytes()
        assert scripted == written


def test_write_commands_layout(tmp_path: Path) -> None:
    """Commands create the directory, marker and config with their modes."""
    conf = new_agent_config(
        AgentConfigParams(
            data_dir=tmp_path,
            tag="machine-2",
            password="pw",
            ca_cert="ca",
            api_addresses=["10.0.0.1:17070"],
        )
    )
    commands = conf.write_commands()
    directory = tmp_path / "agents" / "machine-2"

    assert commands[0] == f"mkdir -p {directory}"
    assert commands[1] == f"install -m 644 /dev/null {directory / 'format'}"
    assert commands[2] == f"printf '%s\\n' 'format 1.16' > {directory / 'format'}"
    assert commands[3] == f"install -m 600 /dev/null {directory / 'agent.conf'}"
    assert commands[4].startswith("printf '%s\\n' ")
