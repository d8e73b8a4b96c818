"""Configuration loader tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from envctl.config import AppConfig, ConfigError, load_config
from envctl.utils.retry import RetryPolicy


def test_load_config_defaults_when_file_missing(tmp_path: Path) -> None:
    """Defaults apply when no config file is present."""
    config = load_config(config_file=tmp_path / "missing.yml", env={})

    assert isinstance(config, AppConfig)
    assert config.data_dir == Path("/var/lib/juju")
    assert config.logs_dir == Path("/var/log/envctl")
    assert config.home_dir == Path("~/.juju").expanduser()
    assert config.storage.attempts == 25
    assert config.storage.delay == pytest.approx(0.2)
    assert config.tools.series == "precise"
    assert config.tools.arch == "amd64"


def test_load_config_reads_yaml_file(tmp_path: Path) -> None:
    """Values are loaded from the YAML config file."""
    cfg = tmp_path / "envctl.yml"
    cfg.write_text(
        f"data_dir: {tmp_path / 'data'}\n"
        "storage:\n"
        "  attempts: 3\n"
        "  delay: 0\n"
        "tools:\n"
        "  series: trusty\n"
    )

    config = load_config(config_file=cfg, env={})

    assert config.config_file == cfg
    assert config.data_dir == tmp_path / "data"
    assert config.storage.retry_policy() == RetryPolicy(attempts=3, delay=0.0)
    assert config.tools.series == "trusty"
    assert config.tools.arch == "amd64"


def test_env_overrides_take_precedence(tmp_path: Path) -> None:
    """Environment variables override defaults and file settings."""
    cfg = tmp_path / "envctl.yml"
    cfg.write_text("storage:\n  attempts: 3\n")
    env = {
        "ENVCTL_STORAGE__ATTEMPTS": "7",
        "ENVCTL_DATA_DIR": str(tmp_path / "juju"),
        "ENVCTL_TOOLS__ARCH": "arm64",
        "UNRELATED": "ignored",
    }

    config = load_config(config_file=cfg, env=env)

    assert config.storage.attempts == 7
    assert config.data_dir == tmp_path / "juju"
    assert config.tools.arch == "arm64"


def test_programmatic_overrides_win(tmp_path: Path) -> None:
    """Explicit overrides beat the environment."""
    config = load_config(
        config_file=tmp_path / "missing.yml",
        env={"ENVCTL_DATA_DIR": "/from/env"},
        overrides={"data_dir": str(tmp_path)},
    )
    assert config.data_dir == tmp_path


def test_env_can_select_config_file(tmp_path: Path) -> None:
    """Environment variable selects an alternate config file."""
    cfg = tmp_path / "override.yml"
    cfg.write_text("logs_dir: /tmp/envctl-logs\n")

    config = load_config(env={"ENVCTL_CONFIG_FILE": str(cfg)})

    assert config.config_file == cfg
    assert config.logs_dir == Path("/tmp/envctl-logs")
    assert config.to_dict()["logs_dir"] == "/tmp/envctl-logs"


def test_invalid_config_file_raises(tmp_path: Path) -> None:
    """A file that is not a mapping raises a ConfigError."""
    cfg = tmp_path / "bad.yml"
    cfg.write_text("- not-a-mapping\n")

    with pytest.raises(ConfigError):
        load_config(config_file=cfg, env={})


def test_unknown_top_level_key_raises(tmp_path: Path) -> None:
    """Unexpected top-level keys trigger ConfigError."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("unknown: value\n")

    with pytest.raises(ConfigError, match="Unknown configuration keys"):
        load_config(config_file=cfg, env={})


def test_unknown_storage_keys_raise(tmp_path: Path) -> None:
    """Extra storage keys produce ConfigError for clarity."""
    cfg = tmp_path / "config.yml"
    cfg.write_text("storage:\n  attempts: 2\n  backoff: exponential\n")

    with pytest.raises(ConfigError, match="Unknown storage configuration keys"):
        load_config(config_file=cfg, env={})


@pytest.mark.parametrize(
    ("content", "message"),
    [
        ("storage:\n  attempts: 0\n", "at least 1"),
        ("storage:\n  delay: -1\n", "must not be negative"),
        ("storage:\n  attempts: true\n", "integer"),
        ("tools:\n  series: ''\n", "non-empty"),
    ],
)
def test_invalid_values_raise(tmp_path: Path, content: str, message: str) -> None:
    """Out-of-range values are rejected with a pointed message."""
    cfg = tmp_path / "config.yml"
    cfg.write_text(content)

    with pytest.raises(ConfigError, match=message):
        load_config(config_file=cfg, env={})
