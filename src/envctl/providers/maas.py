"""MAAS bare-metal backend."""
from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlparse

from ..environs.config import STRING, EnvironConfig, EnvironConfigError
from .common.provider import CloudProvider


@dataclass(slots=True)
class MAASProvider(CloudProvider):
    """Environments allocated from a MAAS server.

    ``maas-oauth`` is the ``consumer-key:resource-token:resource-secret``
    triplet. ``maas-agent-name`` groups the nodes acquired for one
    environment; it is empty for environments created before it existed.
    """

    type_name = "maas"
    fields = {
        "maas-server": STRING,
        "maas-oauth": STRING,
        "maas-agent-name": STRING,
    }
    defaults = {"maas-agent-name": ""}
    secret_keys = ("maas-oauth",)

    def _check_attrs(
        self,
        attrs: dict[str, object],
        new: EnvironConfig,
        old: EnvironConfig | None,
    ) -> dict[str, object]:
        if old is not None:
            previous = old.unknown_attrs().get("maas-agent-name", "")
            if attrs["maas-agent-name"] != previous:
                raise EnvironConfigError("cannot change maas-agent-name")
        server = str(attrs["maas-server"])
        try:
            parsed = urlparse(server)
        except ValueError as exc:
            raise EnvironConfigError(f"malformed maas-server URL '{server}': {exc}") from exc
        if not parsed.scheme or not parsed.netloc:
            raise EnvironConfigError(f"malformed maas-server URL '{server}'")
        if str(attrs["maas-oauth"]).count(":") != 2:
            raise EnvironConfigError("malformed maas-oauth (3 items separated by colons)")
        return attrs


PROVIDER = MAASProvider()

__all__ = ["MAASProvider", "PROVIDER"]
