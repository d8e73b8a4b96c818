"""Contracts implemented by every environment backend."""
from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import Protocol, runtime_checkable

from ..connection import APIInfo, StateInfo
from ..constraints import Constraints
from ..instance import HardwareCharacteristics, Instance, InstanceId, Port
from ..storage import Storage
from ..tools import Tools
from .config import EnvironConfig
from .machineconfig import DEFAULT_DATA_DIR, MachineConfig


class ProviderError(RuntimeError):
    """Raised when a backend cannot perform an operation."""


@runtime_checkable
class EnvironProvider(Protocol):
    """Stateless factory and validator for one kind of environment."""

    def prepare(self, config: EnvironConfig) -> Environ:
        """Prepare a new environment, recording any generated attributes."""

    def open(self, config: EnvironConfig) -> Environ:
        """Open an environment whose configuration has already been prepared."""

    def validate(self, new: EnvironConfig, old: EnvironConfig | None) -> EnvironConfig:
        """Return *new* with backend defaults applied, rejecting bad changes."""

    def boilerplate_config(self) -> str:
        """Return a commented configuration template for this backend."""

    def secret_attrs(self, config: EnvironConfig) -> dict[str, str]:
        """Return the attributes that must not be shared with instances."""

    def public_address(self) -> str:
        """Return the public address of the machine running this code."""

    def private_address(self) -> str:
        """Return the private address of the machine running this code."""


@runtime_checkable
class Environ(Protocol):
    """A live handle on one environment."""

    @property
    def name(self) -> str:
        """Return the environment name."""

    def config(self) -> EnvironConfig:
        """Return the current configuration."""

    def set_config(self, config: EnvironConfig) -> None:
        """Replace the configuration; storage handles already returned are unaffected."""

    def bootstrap(
        self,
        cons: Constraints,
        possible_tools: Sequence[Tools],
        *,
        data_dir: Path = DEFAULT_DATA_DIR,
    ) -> None:
        """Start and record the first state server."""

    def state_info(self) -> tuple[StateInfo, APIInfo]:
        """Return how to reach the bootstrapped state and API servers."""

    def start_instance(
        self,
        cons: Constraints,
        possible_tools: Sequence[Tools],
        mcfg: MachineConfig,
    ) -> tuple[Instance, HardwareCharacteristics | None]:
        """Start a machine, returning it with any hardware it reported."""

    def stop_instances(self, instances: Sequence[Instance]) -> None:
        """Stop the given machines."""

    def instances(self, ids: Sequence[InstanceId] | None) -> list[Instance]:
        """Return the instances with the given ids, in order."""

    def all_instances(self) -> list[Instance]:
        """Return every instance belonging to the environment."""

    def storage(self) -> Storage:
        """Return the environment storage."""

    def destroy(self) -> None:
        """Stop every instance and remove the environment storage."""

    def open_ports(self, ports: Sequence[Port]) -> None:
        """Open *ports* environment-wide (global firewall mode only)."""

    def close_ports(self, ports: Sequence[Port]) -> None:
        """Close *ports* environment-wide (global firewall mode only)."""

    def ports(self) -> list[Port]:
        """Return the ports opened environment-wide."""

    def provider(self) -> EnvironProvider:
        """Return the provider that created this environment."""


__all__ = ["Environ", "EnvironProvider", "ProviderError"]
