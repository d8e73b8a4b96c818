"""Tests for environment configuration validation."""
from __future__ import annotations

import pytest
from packaging.version import Version

from envctl.environs.config import (
    INT,
    OMIT,
    STRING,
    EnvironConfig,
    EnvironConfigError,
    validate,
)


def _config(**attrs: object) -> EnvironConfig:
    base: dict[str, object] = {"name": "sample", "type": "dummy"}
    base.update({key.replace("_", "-"): value for key, value in attrs.items()})
    return EnvironConfig(base)


def test_defaults_are_filled_in() -> None:
    """Common attributes get their defaults."""
    cfg = _config()
    assert cfg.state_port == 37017
    assert cfg.api_port == 17070
    assert cfg.default_series == "precise"
    assert cfg.firewall_mode == "instance"
    assert cfg.ssl_hostname_verification is True
    assert cfg.development is False
    assert cfg.agent_version is None
    assert cfg.ca_cert is None
    assert cfg.admin_secret == ""


def test_string_values_are_coerced() -> None:
    """Ports and booleans given as strings are accepted."""
    cfg = _config(state_port="1234", ssl_hostname_verification="false", agent_version="1.16.0")
    assert cfg.state_port == 1234
    assert cfg.ssl_hostname_verification is False
    assert cfg.agent_version == Version("1.16.0")


@pytest.mark.parametrize(
    ("attrs", "message"),
    [
        ({"name": ""}, "empty name in environment configuration"),
        ({"name": "a/b"}, 'environment name contains unsafe characters: "a/b"'),
        ({"type": ""}, "empty type in environment configuration"),
        ({"firewall-mode": "none"}, 'invalid firewall mode in environment configuration: "none"'),
        ({"agent-version": "not.a.version!"}, "invalid agent version in environment configuration"),
        ({"state-port": "many"}, "state-port: expected int"),
        ({"development": "maybe"}, "development: expected bool"),
        ({"ca-private-key": "key"}, "ca-private-key specified without ca-cert"),
        ({"ca-cert": "not a certificate"}, "bad CA certificate/key in configuration"),
    ],
)
def test_invalid_attributes(attrs: dict[str, object], message: str) -> None:
    """Invalid common attributes are rejected on construction."""
    base: dict[str, object] = {"name": "sample", "type": "dummy"}
    base.update(attrs)
    with pytest.raises(EnvironConfigError, match=message):
        EnvironConfig(base)


def test_ca_pair_is_accepted(ca_pair: tuple[str, str]) -> None:
    cert, key = ca_pair
    cfg = _config(ca_cert=cert, ca_private_key=key)
    assert cfg.ca_cert == cert
    assert cfg.ca_private_key == key


def test_apply_and_without_return_new_configs() -> None:
    """Derivations leave the original untouched."""
    cfg = _config(admin_secret="secret")
    changed = cfg.apply({"admin-secret": "other", "region": "us-east-1"})
    trimmed = changed.without(["admin-secret"])

    assert cfg.admin_secret == "secret"
    assert changed.admin_secret == "other"
    assert changed.unknown_attrs() == {"region": "us-east-1"}
    assert trimmed.admin_secret == ""
    assert trimmed != changed


def test_validate_unknown_attrs() -> None:
    """Backend fields are checked, defaulted, or omitted."""
    cfg = _config(region="us-east-1", extra="kept")
    attrs = cfg.validate_unknown_attrs(
        {"region": STRING, "port": INT, "bucket": STRING},
        {"port": 8040, "bucket": OMIT},
    )
    assert attrs == {"region": "us-east-1", "port": 8040, "extra": "kept"}


def test_validate_unknown_attrs_missing_value() -> None:
    """A field with no value and no default is an error."""
    with pytest.raises(EnvironConfigError, match="^access-key: expected string, got nothing$"):
        _config().validate_unknown_attrs({"access-key": STRING}, {})


def test_validate_unknown_attrs_wrong_type() -> None:
    with pytest.raises(EnvironConfigError, match="port: expected int"):
        _config(port="8040").validate_unknown_attrs({"port": INT}, {})


@pytest.mark.parametrize(
    ("key", "before", "after"),
    [
        ("name", "sample", "other"),
        ("type", "dummy", "ec2"),
        ("state-port", 37017, 1234),
        ("api-port", 17070, 1234),
    ],
)
def test_validate_immutable(key: str, before: object, after: object) -> None:
    """Identity and ports cannot change once the environment exists."""
    old = _config()
    new = old.apply({key: after})
    with pytest.raises(EnvironConfigError, match=f"cannot change {key} from"):
        validate(new, old)


def test_validate_agent_version() -> None:
    """Agent versions may change but not be cleared."""
    old = _config(agent_version="1.16.0")
    validate(old.apply({"agent-version": "1.16.2"}), old)
    with pytest.raises(EnvironConfigError, match="cannot clear agent-version"):
        validate(old.without(["agent-version"]), old)
    validate(_config(), None)


def test_generate_state_server_cert_requires_key(ca_pair: tuple[str, str]) -> None:
    cert, _ = ca_pair
    with pytest.raises(EnvironConfigError, match="no ca-private-key"):
        _config(ca_cert=cert).generate_state_server_cert_and_key()
