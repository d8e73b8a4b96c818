"""Backend for machines provisioned by hand.

The bootstrap host already exists and is reached over SSH; it serves the
environment storage over HTTP itself. Nothing can be started or stopped.
"""
from __future__ import annotations

import socket
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

from ..constraints import Constraints
from ..environs.config import INT, STRING, EnvironConfig, EnvironConfigError
from ..environs.interface import ProviderError
from ..environs.machineconfig import (
    DEFAULT_DATA_DIR,
    STORAGE_ADDR_KEY,
    STORAGE_AUTH_KEY_KEY,
    STORAGE_DIR_KEY,
    MachineConfig,
)
from ..instance import HardwareCharacteristics, Instance, InstanceId
from ..logging import get_logger
from ..storage import HTTPStorage, Storage
from ..tools import Tools
from . import manual
from .common.environ import BaseEnviron
from .common.provider import BaseProvider

logger = get_logger(__name__)

DEFAULT_STORAGE_PORT = 8040

StorageFactory = Callable[[str, str], Storage]


def _http_storage(base_url: str, auth_key: str) -> Storage:
    return HTTPStorage(base_url, auth_key=auth_key)


@dataclass(frozen=True)
class BootstrapInstance:
    """The hand-provisioned bootstrap machine."""

    host: str

    def id(self) -> InstanceId:
        return manual.BOOTSTRAP_INSTANCE_ID

    def status(self) -> str:
        return ""

    def dns_name(self) -> str:
        return self.host


class NullEnviron(BaseEnviron):
    """An environment whose only machine is the bootstrap host."""

    def __init__(
        self,
        provider: NullProvider,
        config: EnvironConfig,
        storage: Storage,
    ) -> None:
        super().__init__(provider, config)
        self._storage = storage
        self._null = provider

    @property
    def bootstrap_host(self) -> str:
        return str(self.config().get("bootstrap-host"))

    @property
    def ssh_host(self) -> str:
        """Return ``[user@]host`` for the bootstrap machine."""
        user = str(self.config().get("bootstrap-user") or "")
        return f"{user}@{self.bootstrap_host}" if user else self.bootstrap_host

    @property
    def storage_addr(self) -> str:
        return f"{self.bootstrap_host}:{self.config().get('storage-port')}"

    def storage_listen_addr(self) -> str:
        return f"{self.config().get('storage-listen-ip') or ''}:{self.config().get('storage-port')}"

    def storage_dir(self, data_dir: Path) -> Path:
        return Path(data_dir) / "storage"

    def storage_config(self, data_dir: Path) -> dict[str, str]:
        """Return the agent settings the bootstrap machine serves storage with."""
        return {
            STORAGE_DIR_KEY: str(self.storage_dir(data_dir)),
            STORAGE_ADDR_KEY: self.storage_listen_addr(),
            STORAGE_AUTH_KEY_KEY: str(self.config().get("storage-auth-key")),
        }

    def storage(self) -> Storage:
        return self._storage

    def bootstrap(
        self,
        cons: Constraints,
        possible_tools: Sequence[Tools],
        *,
        data_dir: Path = DEFAULT_DATA_DIR,
    ) -> None:
        manual.bootstrap(
            manual.BootstrapArgs(
                host=self.ssh_host,
                data_dir=data_dir,
                environ=self,
                possible_tools=possible_tools,
                runner=self._null.runner,
            )
        )

    def start_instance(
        self,
        cons: Constraints,
        possible_tools: Sequence[Tools],
        mcfg: MachineConfig,
    ) -> tuple[Instance, HardwareCharacteristics | None]:
        raise ProviderError("null provider cannot start instances")

    def stop_instances(self, instances: Sequence[Instance]) -> None:
        raise ProviderError("null provider cannot stop instances")

    def all_instances(self) -> list[Instance]:
        return [BootstrapInstance(self.bootstrap_host)]

    def destroy(self) -> None:
        raise ProviderError("null provider destruction is not implemented")


@dataclass(slots=True)
class NullProvider(BaseProvider):
    """Provider for environments built from existing machines."""

    type_name = "null"
    fields = {
        "bootstrap-host": STRING,
        "bootstrap-user": STRING,
        "storage-listen-ip": STRING,
        "storage-port": INT,
        "storage-auth-key": STRING,
    }
    defaults = {
        "bootstrap-user": "",
        "storage-listen-ip": "",
        "storage-port": DEFAULT_STORAGE_PORT,
    }
    secret_keys = ("storage-auth-key",)

    storage_factory: StorageFactory = _http_storage
    runner: manual.CommandRunner | None = None

    def _check_attrs(
        self,
        attrs: dict[str, object],
        new: EnvironConfig,
        old: EnvironConfig | None,
    ) -> dict[str, object]:
        if not attrs["bootstrap-host"]:
            raise EnvironConfigError("bootstrap-host must be specified")
        return attrs

    def open(self, config: EnvironConfig) -> NullEnviron:
        validated = self.validate(config, None)
        host = validated.get("bootstrap-host")
        port = validated.get("storage-port")
        storage = self.storage_factory(f"http://{host}:{port}", str(validated.get("storage-auth-key")))
        return NullEnviron(self, validated, storage)

    def public_address(self) -> str:
        return socket.getfqdn()

    def private_address(self) -> str:
        return self.public_address()


PROVIDER = NullProvider()

__all__ = [
    "BootstrapInstance",
    "DEFAULT_STORAGE_PORT",
    "NullEnviron",
    "NullProvider",
    "PROVIDER",
]
