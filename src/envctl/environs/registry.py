"""The table of environment backends and the helpers that pick from it.

Environment attributes come either from a file holding a single attribute
mapping, or from an ``environments.yaml`` style file::

    default: amazon
    environments:
        amazon:
            type: ec2
            ...
"""
from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path

import yaml

from ..cert import generate_ca
from ..providers import dummy, ec2, local, maas, null, openstack
from ..templates import TemplateEngine
from ..utils import random_password
from .config import EnvironConfig, EnvironConfigError
from .interface import Environ, EnvironProvider, ProviderError

PROVIDERS: dict[str, EnvironProvider] = {
    "ec2": ec2.PROVIDER,
    "openstack": openstack.PROVIDER,
    "maas": maas.PROVIDER,
    "null": null.PROVIDER,
    "local": local.PROVIDER,
    "dummy": dummy.PROVIDER,
}

# Order of the sample environments in the generated environments file.
BOILERPLATE_ORDER = ("ec2", "openstack", "maas", "null", "local")
BOILERPLATE_DEFAULT = "amazon"


def provider(name: str) -> EnvironProvider:
    """Return the provider registered as *name*."""
    try:
        return PROVIDERS[name]
    except KeyError:
        raise ProviderError(f'no registered provider for "{name}"') from None


def prepare(config: EnvironConfig) -> Environ:
    """Prepare a new environment, generating its admin secret and CA if missing."""
    updates: dict[str, object] = {}
    if not config.admin_secret:
        updates["admin-secret"] = random_password()
    if config.ca_cert is None:
        cert, key = generate_ca(config.name)
        updates["ca-cert"] = cert
        updates["ca-private-key"] = key
    elif config.ca_private_key is None:
        raise EnvironConfigError("environment configuration with a certificate but no CA private key")
    if updates:
        config = config.apply(updates)
    return provider(config.type).prepare(config)


def open(config: EnvironConfig) -> Environ:  # noqa: A001
    """Open an environment that has already been prepared."""
    return provider(config.type).open(config)


def boilerplate_config(templates: TemplateEngine | None = None) -> str:
    """Return a sample environments file covering every real backend."""
    engine = templates or TemplateEngine.with_overrides(None)
    blocks = [PROVIDERS[name].boilerplate_config().rstrip("\n") for name in BOILERPLATE_ORDER]
    return engine.render_to_string(
        "boilerplate/environments.yaml.j2",
        {"default": BOILERPLATE_DEFAULT, "blocks": blocks},
    )


# Environment files -----------------------------------------------------
def read_environ_attrs(path: Path, name: str | None = None) -> dict[str, object]:
    """Return the attributes of one environment described in *path*."""
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise EnvironConfigError(f"cannot read environment file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise EnvironConfigError(f"cannot parse environment file {path}: {exc}") from exc
    if not isinstance(raw, Mapping):
        raise EnvironConfigError(f"environment file {path} must contain a mapping")
    return select_environ(raw, name)


def select_environ(raw: Mapping[str, object], name: str | None = None) -> dict[str, object]:
    """Pick one environment's attributes out of a parsed environment file."""
    environments = raw.get("environments")
    if environments is None:
        if name is not None and raw.get("name") not in (None, name):
            raise EnvironConfigError(f'environment "{name}" not found')
        return {str(key): value for key, value in raw.items()}
    if not isinstance(environments, Mapping):
        raise EnvironConfigError("environments must be a mapping")
    chosen = name or raw.get("default")
    if chosen is None:
        if len(environments) != 1:
            raise EnvironConfigError("no default environment found")
        chosen = next(iter(environments))
    attrs = environments.get(chosen)
    if attrs is None:
        raise EnvironConfigError(f'environment "{chosen}" not found')
    if not isinstance(attrs, Mapping):
        raise EnvironConfigError(f'environment "{chosen}" must be a mapping')
    result = {str(key): value for key, value in attrs.items()}
    result.setdefault("name", str(chosen))
    return result


__all__ = [
    "BOILERPLATE_DEFAULT",
    "PROVIDERS",
    "boilerplate_config",
    "open",
    "prepare",
    "provider",
    "read_environ_attrs",
    "select_environ",
]
