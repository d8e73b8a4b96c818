"""Agent configuration and its on-disk formats."""
from __future__ import annotations

from .config import (
    FORMATTERS,
    MIGRATIONS,
    AgentConfig,
    AgentConfigParams,
    StateMachineConfigParams,
    new_agent_config,
    new_state_machine_config,
    read_conf,
    write_new_password,
)
from .format import AgentConfigError, Format, read_format

__all__ = [
    "AgentConfig",
    "AgentConfigError",
    "AgentConfigParams",
    "FORMATTERS",
    "Format",
    "MIGRATIONS",
    "StateMachineConfigParams",
    "new_agent_config",
    "new_state_machine_config",
    "read_conf",
    "read_format",
    "write_new_password",
]
