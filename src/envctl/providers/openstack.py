"""OpenStack backend."""
from __future__ import annotations

import os
import secrets
from dataclasses import dataclass
from urllib.parse import urlparse

from ..environs.config import BOOL, STRING, EnvironConfig, EnvironConfigError
from ..environs.interface import Environ
from .common.provider import CloudProvider

AUTH_MODES = ("userpass", "keypair")

# Attribute -> environment variable consulted when the attribute is empty.
_ENV_FALLBACKS = {
    "username": "OS_USERNAME",
    "password": "OS_PASSWORD",
    "tenant-name": "OS_TENANT_NAME",
    "auth-url": "OS_AUTH_URL",
    "region": "OS_REGION_NAME",
    "access-key": "OS_ACCESS_KEY",
    "secret-key": "OS_SECRET_KEY",
}


@dataclass(slots=True)
class OpenStackProvider(CloudProvider):
    """Environments on an OpenStack cloud with Swift storage."""

    type_name = "openstack"
    fields = {
        "username": STRING,
        "password": STRING,
        "tenant-name": STRING,
        "auth-url": STRING,
        "auth-mode": STRING,
        "access-key": STRING,
        "secret-key": STRING,
        "region": STRING,
        "control-bucket": STRING,
        "use-floating-ip": BOOL,
    }
    defaults = {
        "username": "",
        "password": "",
        "tenant-name": "",
        "auth-url": "",
        "auth-mode": "userpass",
        "access-key": "",
        "secret-key": "",
        "region": "",
        "use-floating-ip": False,
    }
    immutable = ("control-bucket",)
    secret_keys = ("password", "secret-key")

    def prepare(self, config: EnvironConfig) -> Environ:
        if not config.get("control-bucket"):
            config = config.apply({"control-bucket": secrets.token_hex(16)})
        return self.open(config)

    def _check_attrs(
        self,
        attrs: dict[str, object],
        new: EnvironConfig,
        old: EnvironConfig | None,
    ) -> dict[str, object]:
        for key, variable in _ENV_FALLBACKS.items():
            if not attrs.get(key):
                attrs[key] = os.environ.get(variable, "")

        mode = attrs["auth-mode"]
        if mode not in AUTH_MODES:
            raise EnvironConfigError(f'invalid authorization mode: "{mode}"')

        auth_url = str(attrs["auth-url"])
        parsed = urlparse(auth_url)
        if not auth_url:
            raise EnvironConfigError("required environment variable not set for credentials attribute: auth-url")
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise EnvironConfigError(f'invalid auth-url value "{auth_url}"')

        required = ("username", "password", "tenant-name") if mode == "userpass" else (
            "access-key",
            "secret-key",
            "tenant-name",
        )
        for key in (*required, "region"):
            if not attrs[key]:
                raise EnvironConfigError(
                    f"required environment variable not set for credentials attribute: {key}"
                )
        return attrs


PROVIDER = OpenStackProvider()

__all__ = ["AUTH_MODES", "OpenStackProvider", "PROVIDER"]
