"""In-process backend keeping instances and storage in memory.

Environments are shared per name for the life of the process, so an
environment opened twice sees the same instances; :func:`reset` forgets them
all. The ``broken`` attribute lists operations (``Bootstrap``,
``StartInstance``, ``StopInstances``, ``Destroy``) that should fail.
"""
from __future__ import annotations

import threading
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from ..constraints import Constraints
from ..environs.config import STRING, EnvironConfig
from ..environs.interface import ProviderError
from ..environs.machineconfig import DEFAULT_DATA_DIR, MachineConfig
from ..instance import HardwareCharacteristics, Instance, InstanceId, Port
from ..storage import MemoryStorage, Storage
from ..tools import Tools
from .common.environ import CloudEnviron, CloudInstance, LaunchRequest
from .common.provider import ClientFactory, CloudProvider, with_agent_version

PUBLIC_ADDRESS = "public.dummy.address.example.com"
PRIVATE_ADDRESS = "private.dummy.address.example.com"
DEFAULT_MEM = 1024


class DummyComputeClient:
    """A cloud whose machines exist only in this process."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._storage = MemoryStorage(namespace=name)
        self._instances: dict[InstanceId, CloudInstance] = {}
        self._ports: set[Port] = set()
        self._next_id = 0
        self._lock = threading.Lock()
        self.launched: list[LaunchRequest] = []

    def launch(self, request: LaunchRequest) -> tuple[CloudInstance, HardwareCharacteristics | None]:
        with self._lock:
            instance_id = f"i-{self._next_id}"
            self._next_id += 1
            inst = CloudInstance(instance_id=instance_id, state="running", dns=f"{instance_id}.dns")
            self._instances[instance_id] = inst
            self.launched.append(request)
        cons = request.constraints
        hardware = HardwareCharacteristics(
            arch=request.tools.binary.arch,
            mem=cons.mem or DEFAULT_MEM,
            cpu_cores=cons.cpu_cores or 1,
            cpu_power=cons.cpu_power or 100,
        )
        return inst, hardware

    def terminate(self, ids: Sequence[InstanceId]) -> None:
        with self._lock:
            for instance_id in ids:
                self._instances.pop(instance_id, None)

    def describe(self, ids: Sequence[InstanceId] | None = None) -> list[CloudInstance]:
        with self._lock:
            if ids is None:
                return [self._instances[key] for key in sorted(self._instances)]
            return [self._instances[key] for key in ids if key in self._instances]

    def open_ports(self, ports: Sequence[Port]) -> None:
        with self._lock:
            self._ports.update(ports)

    def close_ports(self, ports: Sequence[Port]) -> None:
        with self._lock:
            self._ports.difference_update(ports)

    def ports(self) -> list[Port]:
        with self._lock:
            return sorted(self._ports)

    def storage(self) -> Storage:
        return self._storage


_CLIENTS: dict[str, DummyComputeClient] = {}
_CLIENTS_LOCK = threading.Lock()


def shared_client(config: EnvironConfig) -> DummyComputeClient:
    """Return the process-wide client for the environment named in *config*."""
    with _CLIENTS_LOCK:
        client = _CLIENTS.get(config.name)
        if client is None:
            client = _CLIENTS[config.name] = DummyComputeClient(config.name)
        return client


def reset() -> None:
    """Forget every dummy environment."""
    with _CLIENTS_LOCK:
        _CLIENTS.clear()


class DummyEnviron(CloudEnviron):
    """A cloud environ that can be told to fail."""

    def _check_broken(self, operation: str) -> None:
        broken = str(self.config().get("broken", "")).split()
        if operation in broken:
            raise ProviderError(f"dummy.{operation} is broken")

    def bootstrap(
        self,
        cons: Constraints,
        possible_tools: Sequence[Tools],
        *,
        data_dir: Path = DEFAULT_DATA_DIR,
    ) -> None:
        self._check_broken("Bootstrap")
        super().bootstrap(cons, possible_tools, data_dir=data_dir)

    def start_instance(
        self,
        cons: Constraints,
        possible_tools: Sequence[Tools],
        mcfg: MachineConfig,
    ) -> tuple[Instance, HardwareCharacteristics | None]:
        self._check_broken("StartInstance")
        return super().start_instance(cons, possible_tools, mcfg)

    def stop_instances(self, instances: Sequence[Instance]) -> None:
        self._check_broken("StopInstances")
        super().stop_instances(instances)

    def destroy(self) -> None:
        self._check_broken("Destroy")
        super().destroy()


@dataclass(slots=True)
class DummyProvider(CloudProvider):
    """Provider for in-process environments."""

    type_name = "dummy"
    fields = {"secret": STRING, "broken": STRING}
    defaults = {"secret": "pork", "broken": ""}
    secret_keys = ("secret",)

    client_factory: ClientFactory | None = shared_client

    def open(self, config: EnvironConfig) -> DummyEnviron:
        validated = self.validate(with_agent_version(config), None)
        if self.client_factory is None:
            raise ProviderError("no compute client configured for dummy environments")
        return DummyEnviron(self, validated, self.client_factory(validated))

    def public_address(self) -> str:
        return PUBLIC_ADDRESS

    def private_address(self) -> str:
        return PRIVATE_ADDRESS


PROVIDER = DummyProvider()

__all__ = [
    "DummyComputeClient",
    "DummyEnviron",
    "DummyProvider",
    "PRIVATE_ADDRESS",
    "PROVIDER",
    "PUBLIC_ADDRESS",
    "reset",
    "shared_client",
]
