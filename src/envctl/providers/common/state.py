"""Durable record of the instances running the environment's state servers."""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import unquote, urlparse

import httpx
import yaml

from ...connection import APIInfo, StateInfo, join_addresses
from ...instance import HardwareCharacteristics, InstanceId, InstancesError, PartialInstancesError
from ...storage import (
    NotFoundError,
    Storage,
    StorageError,
    StorageReader,
    StorageWriter,
    get_bytes,
    put_bytes,
)
from ...utils.retry import RetryPolicy

if TYPE_CHECKING:
    from ...environs.interface import Environ

STATE_FILE = "provider-state"
_URL_TIMEOUT = 30.0


class StateFileError(RuntimeError):
    """Raised when the bootstrap state cannot be read or parsed."""


@dataclass
class BootstrapState:
    """Which instances host the state servers and what they run on."""

    state_instances: list[InstanceId] = field(default_factory=list)
    characteristics: list[HardwareCharacteristics] = field(default_factory=list)

    def to_yaml(self) -> str:
        payload = {
            "state-instances": list(self.state_instances),
            "characteristics": [hw.to_dict() for hw in self.characteristics],
        }
        return yaml.safe_dump(payload, sort_keys=False, default_flow_style=False)

    @classmethod
    def from_yaml(cls, text: str | bytes) -> BootstrapState:
        try:
            raw = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise StateFileError(f"error unmarshalling state data: {exc}") from exc
        if raw is None:
            return cls()
        if not isinstance(raw, Mapping):
            raise StateFileError("error unmarshalling state data: expected a mapping")
        instances = raw.get("state-instances") or []
        characteristics = raw.get("characteristics") or []
        if not isinstance(instances, list) or not isinstance(characteristics, list):
            raise StateFileError("error unmarshalling state data: expected lists")
        try:
            hardware = [HardwareCharacteristics.from_dict(item or {}) for item in characteristics]
        except (TypeError, ValueError) as exc:
            raise StateFileError(f"error unmarshalling state data: {exc}") from exc
        return cls(state_instances=[str(item) for item in instances], characteristics=hardware)


def create_state_file(stor: Storage) -> str:
    """Store an empty state record and return the URL instances fetch it from."""
    try:
        put_bytes(stor, STATE_FILE, BootstrapState().to_yaml().encode("utf-8"))
    except StorageError as exc:
        raise StorageError(f"cannot create initial state file: {exc}") from exc
    return stor.url(STATE_FILE)


def save_state(stor: StorageWriter, state: BootstrapState) -> None:
    """Replace the stored state record with *state*."""
    put_bytes(stor, STATE_FILE, state.to_yaml().encode("utf-8"))


def load_state(stor: StorageReader, *, policy: RetryPolicy | None = None) -> BootstrapState:
    """Read the stored state record.

    A missing record raises :class:`~envctl.storage.NotFoundError`, meaning
    the environment has not been bootstrapped.
    """
    try:
        data = get_bytes(stor, STATE_FILE, policy=policy)
    except NotFoundError as exc:
        raise NotFoundError(f"environment is not bootstrapped: {exc}") from exc
    return BootstrapState.from_yaml(data)


def load_state_from_url(url: str, *, client: httpx.Client | None = None) -> BootstrapState:
    """Read a state record from the URL handed to the bootstrap instance."""
    parsed = urlparse(url)
    if parsed.scheme == "file":
        path = Path(unquote(parsed.path))
        try:
            return BootstrapState.from_yaml(path.read_bytes())
        except OSError as exc:
            raise StateFileError(f"cannot read state from {url}: {exc}") from exc
    if parsed.scheme not in ("http", "https"):
        raise StateFileError(f'unsupported state URL scheme in "{url}"')
    owned = client is None
    http = client or httpx.Client(timeout=_URL_TIMEOUT)
    try:
        response = http.get(url)
        response.raise_for_status()
    except httpx.HTTPError as exc:
        raise StateFileError(f"cannot read state from {url}: {exc}") from exc
    finally:
        if owned:
            http.close()
    return BootstrapState.from_yaml(response.content)


def provider_state_instances(environ: Environ) -> list[InstanceId]:
    """Return the ids of the recorded state server instances."""
    return list(load_state(environ.storage()).state_instances)


def state_info(environ: Environ) -> tuple[StateInfo, APIInfo]:
    """Return connection details for the recorded state servers.

    Instances that are missing or have no DNS name yet are skipped; if none
    remain a :class:`StateFileError` is raised.
    """
    cfg = environ.config()
    ca_cert = cfg.ca_cert
    if ca_cert is None:
        raise StateFileError("environment configuration has no CA certificate")
    ids = provider_state_instances(environ)
    try:
        instances = list(environ.instances(ids))
    except PartialInstancesError as exc:
        instances = [inst for inst in exc.instances if inst is not None]
    except InstancesError as exc:
        raise StateFileError(f"cannot find state server instances: {exc}") from exc
    hosts = [inst.dns_name() for inst in instances if inst.dns_name()]
    if not hosts:
        raise StateFileError("no state server instance has a DNS name yet")
    return (
        StateInfo(addrs=join_addresses(hosts, cfg.state_port), ca_cert=ca_cert),
        APIInfo(addrs=join_addresses(hosts, cfg.api_port), ca_cert=ca_cert),
    )


__all__ = [
    "STATE_FILE",
    "BootstrapState",
    "StateFileError",
    "create_state_file",
    "load_state",
    "load_state_from_url",
    "provider_state_instances",
    "save_state",
    "state_info",
]
