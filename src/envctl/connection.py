"""Connection details handed to agents for the state and API servers."""
from __future__ import annotations

import ipaddress
from collections.abc import Sequence
from dataclasses import dataclass, field


def split_host_port(address: str) -> tuple[str, int]:
    """Split ``host:port`` (or ``[v6]:port``), raising ``ValueError`` if malformed.

    An empty host (``":37017"``) is accepted and names the local machine.
    """
    if address.startswith("["):
        host, sep, rest = address[1:].partition("]")
        if not sep or not rest.startswith(":"):
            raise ValueError(f"missing port in address {address!r}")
        port_text = rest[1:]
        ipaddress.IPv6Address(host)
    else:
        host, sep, port_text = address.rpartition(":")
        if not sep:
            raise ValueError(f"missing port in address {address!r}")
        if ":" in host:
            raise ValueError(f"too many colons in address {address!r}")
    if not port_text.isdigit():
        raise ValueError(f"invalid port in address {address!r}")
    port = int(port_text)
    if port > 65535:
        raise ValueError(f"invalid port in address {address!r}")
    return host, port


def is_host_port(address: str) -> bool:
    """Return True when *address* parses as ``host:port``."""
    try:
        split_host_port(address)
    except ValueError:
        return False
    return True


def join_addresses(hosts: Sequence[str], port: int) -> list[str]:
    """Return ``host:port`` strings for every host."""
    return [f"[{host}]:{port}" if ":" in host else f"{host}:{port}" for host in hosts]


@dataclass(slots=True)
class StateInfo:
    """How to reach the state server."""

    addrs: list[str] = field(default_factory=list)
    ca_cert: str = ""
    tag: str = ""
    password: str = ""


@dataclass(slots=True)
class APIInfo:
    """How to reach the API server."""

    addrs: list[str] = field(default_factory=list)
    ca_cert: str = ""
    tag: str = ""
    password: str = ""


__all__ = ["APIInfo", "StateInfo", "is_host_port", "join_addresses", "split_host_port"]
