"""Amazon EC2 backend."""
from __future__ import annotations

import os
import secrets
from dataclasses import dataclass

from ..environs.config import OMIT, STRING, EnvironConfig, EnvironConfigError
from ..environs.interface import Environ
from .common.provider import CloudProvider

REGIONS = (
    "ap-northeast-1",
    "ap-southeast-1",
    "ap-southeast-2",
    "eu-west-1",
    "sa-east-1",
    "us-east-1",
    "us-west-1",
    "us-west-2",
)
DEFAULT_REGION = "us-east-1"


@dataclass(slots=True)
class EC2Provider(CloudProvider):
    """Environments on Amazon EC2 with S3 storage."""

    type_name = "ec2"
    fields = {
        "access-key": STRING,
        "secret-key": STRING,
        "region": STRING,
        "control-bucket": STRING,
        "public-bucket": STRING,
    }
    defaults = {
        "access-key": "",
        "secret-key": "",
        "region": DEFAULT_REGION,
        "public-bucket": OMIT,
    }
    immutable = ("control-bucket",)
    secret_keys = ("access-key", "secret-key")

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
        region = attrs["region"]
        if region not in REGIONS:
            raise EnvironConfigError(f'invalid region name "{region}"')
        if not attrs["access-key"] and not attrs["secret-key"]:
            attrs["access-key"] = os.environ.get("AWS_ACCESS_KEY_ID", "")
            attrs["secret-key"] = os.environ.get("AWS_SECRET_ACCESS_KEY", "")
        if not attrs["access-key"]:
            raise EnvironConfigError("environment has no access-key or secret-key")
        if not attrs["secret-key"]:
            raise EnvironConfigError("environment has access-key but no secret-key")
        return attrs


PROVIDER = EC2Provider()

__all__ = ["DEFAULT_REGION", "EC2Provider", "PROVIDER", "REGIONS"]
