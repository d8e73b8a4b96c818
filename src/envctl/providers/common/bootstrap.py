"""Bootstrap orchestration shared by the backends.

The sequence is: reserve the state file, start the first state server,
record it in the state file. If recording fails the instance is stopped
again; a failure of that stop is logged and never replaces the original
error.

Two bootstraps racing on the same environment are not guarded against.
"""
from __future__ import annotations

from collections.abc import Callable, Sequence
from pathlib import Path
from typing import TYPE_CHECKING

from ...constraints import Constraints
from ...environs.machineconfig import DEFAULT_DATA_DIR, new_bootstrap_machine_config
from ...instance import Instance
from ...logging import OperationScope, get_logger
from ...storage import StorageError
from ...tools import Tools
from .state import BootstrapState, create_state_file, save_state

if TYPE_CHECKING:
    from ...environs.interface import Environ

logger = get_logger(__name__)


class BootstrapError(RuntimeError):
    """Raised when the first state server cannot be started and recorded."""


def bootstrap(
    environ: Environ,
    cons: Constraints,
    possible_tools: Sequence[Tools],
    *,
    data_dir: Path = DEFAULT_DATA_DIR,
    op: OperationScope | None = None,
) -> None:
    """Start the bootstrap instance of *environ* and record it in storage."""
    stor = environ.storage()
    try:
        state_file_url = create_state_file(stor)
    except StorageError as exc:
        raise BootstrapError(str(exc)) from exc
    _step(op, "state-file.create", state_file_url)

    mcfg = new_bootstrap_machine_config(state_file_url, data_dir=data_dir)
    try:
        inst, hardware = environ.start_instance(cons, possible_tools, mcfg)
    except Exception as exc:
        raise BootstrapError(f"cannot start bootstrap instance: {exc}") from exc
    _step(op, "instance.start", inst.id())

    rollback = _stop_on_failure(environ, inst)
    state = BootstrapState(
        state_instances=[inst.id()],
        characteristics=[hardware] if hardware is not None else [],
    )
    try:
        save_state(stor, state)
    except Exception as exc:
        rollback()
        raise BootstrapError(f"cannot save state: {exc}") from exc
    _step(op, "state-file.save", inst.id())
    logger.info("bootstrap instance %s recorded in %s", inst.id(), state_file_url)


def _stop_on_failure(environ: Environ, inst: Instance) -> Callable[[], None]:
    """Return the compensation for a started bootstrap instance."""

    def rollback() -> None:
        try:
            environ.stop_instances([inst])
        except Exception as exc:  # noqa: BLE001
            logger.error('cannot stop failed bootstrap instance "%s": %s', inst.id(), exc)

    return rollback


def _step(op: OperationScope | None, name: str, detail: str) -> None:
    if op is not None:
        op.add_step(name, detail=detail)


__all__ = ["BootstrapError", "bootstrap"]
