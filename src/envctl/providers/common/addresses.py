"""Discovery of the addresses of the machine running envctl."""
from __future__ import annotations

import subprocess

import httpx

from ...environs.interface import ProviderError
from ...logging import get_logger

logger = get_logger(__name__)

METADATA_URL = "http://169.254.169.254/latest/meta-data/"
_METADATA_TIMEOUT = 5.0


def fetch_metadata(
    key: str,
    *,
    base_url: str = METADATA_URL,
    client: httpx.Client | None = None,
) -> str:
    """Return the value of *key* from the instance metadata service."""
    owned = client is None
    http = client or httpx.Client(timeout=_METADATA_TIMEOUT)
    try:
        response = http.get(base_url.rstrip("/") + "/" + key)
        response.raise_for_status()
    except httpx.HTTPError as exc:
        raise ProviderError(f"cannot fetch metadata {key}: {exc}") from exc
    finally:
        if owned:
            http.close()
    value = response.text.strip()
    if not value:
        raise ProviderError(f"metadata {key} is empty")
    return value


def public_address(*, base_url: str = METADATA_URL, client: httpx.Client | None = None) -> str:
    """Return the public host name, falling back to the private address."""
    try:
        return fetch_metadata("public-hostname", base_url=base_url, client=client)
    except ProviderError as exc:
        logger.info("public address unavailable, using private address: %s", exc)
    return private_address(base_url=base_url, client=client)


def private_address(*, base_url: str = METADATA_URL, client: httpx.Client | None = None) -> str:
    """Return the private IPv4 address reported by the metadata service."""
    return fetch_metadata("local-ipv4", base_url=base_url, client=client)


def interface_address(interface: str, *, ip_bin: str = "ip") -> str:
    """Return the first IPv4 address assigned to *interface*."""
    args = [ip_bin, "-4", "-o", "addr", "show", "dev", interface]
    try:
        result = subprocess.run(  # noqa: S603
            args,
            capture_output=True,
            text=True,
            check=False,
        )
    except FileNotFoundError as exc:
        raise ProviderError(f"{ip_bin} not found: {exc}") from exc
    if result.returncode != 0:
        message = result.stderr.strip() or result.stdout.strip() or "no output"
        raise ProviderError(f"{ip_bin} addr show {interface} failed (exit {result.returncode}): {message}")
    for line in result.stdout.splitlines():
        fields = line.split()
        if "inet" in fields:
            cidr = fields[fields.index("inet") + 1]
            return cidr.split("/", 1)[0]
    raise ProviderError(f"cannot find address for interface {interface!r}")


__all__ = [
    "METADATA_URL",
    "fetch_metadata",
    "interface_address",
    "private_address",
    "public_address",
]
