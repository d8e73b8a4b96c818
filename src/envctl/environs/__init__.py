"""Environment configuration and the contracts backends implement.

Backends and the provider table live in :mod:`envctl.environs.registry`,
which is imported on demand.
"""
from __future__ import annotations

from .config import EnvironConfig, EnvironConfigError
from .interface import Environ, EnvironProvider, ProviderError
from .machineconfig import (
    DEFAULT_DATA_DIR,
    MachineConfig,
    MachineConfigError,
    finish_machine_config,
    new_bootstrap_machine_config,
    new_machine_config,
)

__all__ = [
    "DEFAULT_DATA_DIR",
    "Environ",
    "EnvironConfig",
    "EnvironConfigError",
    "EnvironProvider",
    "MachineConfig",
    "MachineConfigError",
    "ProviderError",
    "finish_machine_config",
    "new_bootstrap_machine_config",
    "new_machine_config",
]
