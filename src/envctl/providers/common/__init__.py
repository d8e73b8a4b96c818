"""Behaviour shared by the environment backends."""
from __future__ import annotations

from .bootstrap import BootstrapError, bootstrap
from .environ import (
    BaseEnviron,
    CloudEnviron,
    CloudInstance,
    ComputeClient,
    LaunchRequest,
    select_tools,
)
from .state import (
    STATE_FILE,
    BootstrapState,
    StateFileError,
    create_state_file,
    load_state,
    load_state_from_url,
    provider_state_instances,
    save_state,
    state_info,
)

__all__ = [
    "STATE_FILE",
    "BaseEnviron",
    "BootstrapError",
    "BootstrapState",
    "CloudEnviron",
    "CloudInstance",
    "ComputeClient",
    "LaunchRequest",
    "StateFileError",
    "bootstrap",
    "create_state_file",
    "load_state",
    "load_state_from_url",
    "provider_state_instances",
    "save_state",
    "select_tools",
    "state_info",
]
