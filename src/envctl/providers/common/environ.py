"""Environ building blocks shared by the backends.

:class:`BaseEnviron` owns the configuration and the behaviour every backend
has in common. :class:`CloudEnviron` drives a cloud through a
:class:`ComputeClient`, the narrow interface envctl needs from a cloud API.
"""
from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from ...connection import APIInfo, StateInfo
from ...constraints import Constraints
from ...environs.config import EnvironConfig
from ...environs.interface import ProviderError
from ...environs.machineconfig import (
    DEFAULT_DATA_DIR,
    MachineConfig,
    MachineConfigError,
    finish_machine_config,
    verify_machine_config,
)
from ...instance import HardwareCharacteristics, Instance, InstanceId, Port, select_instances
from ...logging import get_logger
from ...storage import Storage
from ...tools import Tools
from . import state as common_state
from .bootstrap import bootstrap as common_bootstrap
from .userdata import compose_user_data

if TYPE_CHECKING:
    from ...environs.interface import EnvironProvider

logger = get_logger(__name__)


@dataclass(frozen=True)
class CloudInstance:
    """An instance as reported by a :class:`ComputeClient`."""

    instance_id: InstanceId
    state: str = "pending"
    dns: str = ""

    def id(self) -> InstanceId:
        return self.instance_id

    def status(self) -> str:
        return self.state

    def dns_name(self) -> str:
        return self.dns


@dataclass(frozen=True)
class LaunchRequest:
    """Everything a cloud needs to start one machine."""

    environ_name: str
    machine_id: str
    constraints: Constraints
    tools: Tools
    user_data: bytes
    state_server: bool = False


@runtime_checkable
class ComputeClient(Protocol):
    """The calls envctl makes against a cloud API."""

    def launch(self, request: LaunchRequest) -> tuple[CloudInstance, HardwareCharacteristics | None]:
        """Start a machine."""

    def terminate(self, ids: Sequence[InstanceId]) -> None:
        """Stop the machines with the given ids; unknown ids are ignored."""

    def describe(self, ids: Sequence[InstanceId] | None = None) -> list[CloudInstance]:
        """Return the environment's machines, restricted to *ids* when given."""

    def open_ports(self, ports: Sequence[Port]) -> None:
        """Open *ports* in the environment-wide firewall group."""

    def close_ports(self, ports: Sequence[Port]) -> None:
        """Close *ports* in the environment-wide firewall group."""

    def ports(self) -> list[Port]:
        """Return the ports open in the environment-wide firewall group."""

    def storage(self) -> Storage:
        """Return the environment's blob storage."""


def select_tools(possible_tools: Sequence[Tools], *, series: str, arch: str | None) -> Tools:
    """Return the newest tools built for *series* (and *arch* when given)."""
    candidates = [
        tools
        for tools in possible_tools
        if tools.binary.series == series and (arch is None or tools.binary.arch == arch)
    ]
    if not candidates:
        raise ProviderError("no matching tools available")
    return max(candidates, key=lambda tools: tools.binary)


class BaseEnviron(ABC):
    """Configuration handling and defaults shared by every environ."""

    def __init__(self, provider: EnvironProvider, config: EnvironConfig) -> None:
        self._provider = provider
        self._config = config
        self._lock = threading.Lock()

    # Configuration ---------------------------------------------------
    @property
    def name(self) -> str:
        return self.config().name

    def config(self) -> EnvironConfig:
        with self._lock:
            return self._config

    def set_config(self, config: EnvironConfig) -> None:
        """Validate and install *config*; storage already handed out is kept."""
        validated = self._provider.validate(config, self.config())
        with self._lock:
            self._config = validated

    def provider(self) -> EnvironProvider:
        return self._provider

    # Lifecycle -------------------------------------------------------
    def bootstrap(
        self,
        cons: Constraints,
        possible_tools: Sequence[Tools],
        *,
        data_dir: Path = DEFAULT_DATA_DIR,
    ) -> None:
        common_bootstrap(self, cons, possible_tools, data_dir=data_dir)  # type: ignore[arg-type]

    def state_info(self) -> tuple[StateInfo, APIInfo]:
        return common_state.state_info(self)  # type: ignore[arg-type]

    def instances(self, ids: Sequence[InstanceId] | None) -> list[Instance]:
        if not ids:
            return select_instances(ids, {})
        known = {inst.id(): inst for inst in self.all_instances()}
        return select_instances(ids, known)

    @abstractmethod
    def all_instances(self) -> list[Instance]:
        ...

    @abstractmethod
    def stop_instances(self, instances: Sequence[Instance]) -> None:
        ...

    @abstractmethod
    def storage(self) -> Storage:
        ...

    def destroy(self) -> None:
        """Stop every instance, then empty the environment storage."""
        instances = self.all_instances()
        logger.info("destroying environment %s (%d instances)", self.name, len(instances))
        if instances:
            self.stop_instances(instances)
        self.storage().remove_all()

    # Ports -----------------------------------------------------------
    def open_ports(self, ports: Sequence[Port]) -> None:
        raise ProviderError("open ports not implemented")

    def close_ports(self, ports: Sequence[Port]) -> None:
        raise ProviderError("close ports not implemented")

    def ports(self) -> list[Port]:
        return []


class CloudEnviron(BaseEnviron):
    """An environ whose machines live in a cloud reached via *client*."""

    def __init__(
        self,
        provider: EnvironProvider,
        config: EnvironConfig,
        client: ComputeClient,
    ) -> None:
        super().__init__(provider, config)
        self._client = client
        self._storage = client.storage()

    def storage(self) -> Storage:
        return self._storage

    def start_instance(
        self,
        cons: Constraints,
        possible_tools: Sequence[Tools],
        mcfg: MachineConfig,
    ) -> tuple[Instance, HardwareCharacteristics | None]:
        cfg = self.config()
        mcfg.tools = select_tools(possible_tools, series=cfg.default_series, arch=cons.arch)
        try:
            finish_machine_config(mcfg, cfg, cons)
            verify_machine_config(mcfg)
        except MachineConfigError as exc:
            raise ProviderError(str(exc)) from exc
        request = LaunchRequest(
            environ_name=cfg.name,
            machine_id=mcfg.machine_id,
            constraints=cons,
            tools=mcfg.tools,
            user_data=compose_user_data(mcfg),
            state_server=mcfg.state_server,
        )
        inst, hardware = self._client.launch(request)
        logger.info("started instance %s for machine %s", inst.id(), mcfg.machine_id)
        return inst, hardware

    def stop_instances(self, instances: Sequence[Instance]) -> None:
        ids = [inst.id() for inst in instances]
        if ids:
            self._client.terminate(ids)

    def all_instances(self) -> list[Instance]:
        return list(self._client.describe(None))

    def instances(self, ids: Sequence[InstanceId] | None) -> list[Instance]:
        if not ids:
            return select_instances(ids, {})
        wanted = [instance_id for instance_id in ids if instance_id]
        known = {inst.id(): inst for inst in self._client.describe(wanted)}
        return select_instances(ids, known)

    def open_ports(self, ports: Sequence[Port]) -> None:
        self._require_global_firewall("opening ports on")
        self._client.open_ports(ports)

    def close_ports(self, ports: Sequence[Port]) -> None:
        self._require_global_firewall("closing ports on")
        self._client.close_ports(ports)

    def ports(self) -> list[Port]:
        self._require_global_firewall("retrieving ports from")
        return sorted(self._client.ports())

    def _require_global_firewall(self, action: str) -> None:
        mode = self.config().firewall_mode
        if mode != "global":
            raise ProviderError(f'invalid firewall mode "{mode}" for {action} environment')


__all__ = [
    "BaseEnviron",
    "CloudEnviron",
    "CloudInstance",
    "ComputeClient",
    "LaunchRequest",
    "select_tools",
]
