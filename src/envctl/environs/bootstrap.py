"""Entry point for bootstrapping an opened environment."""
from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

from ..constraints import Constraints
from ..logging import OperationScope, get_logger
from ..providers.common.bootstrap import BootstrapError
from ..providers.common.state import STATE_FILE
from ..storage import Storage, list_names
from ..tools import Tools, find_tools, put_tools
from ..version import CURRENT_NUMBER, Binary
from .interface import Environ
from .machineconfig import DEFAULT_DATA_DIR

logger = get_logger(__name__)


def check_bootstrap_config(environ: Environ) -> None:
    """Refuse to bootstrap without the secrets the state server needs."""
    cfg = environ.config()
    if not cfg.admin_secret:
        raise BootstrapError("environment configuration has no admin-secret")
    if not cfg.authorized_keys:
        raise BootstrapError("environment configuration has no authorized-keys")
    if cfg.ca_cert is None:
        raise BootstrapError("environment configuration has no ca-cert")
    if cfg.ca_private_key is None:
        raise BootstrapError("environment configuration has no ca-private-key")


def is_bootstrapped(environ: Environ) -> bool:
    """Return True when the environment storage already holds a state file."""
    return STATE_FILE in list_names(environ.storage(), STATE_FILE)


def bootstrap(
    environ: Environ,
    cons: Constraints,
    *,
    data_dir: Path = DEFAULT_DATA_DIR,
    op: OperationScope | None = None,
) -> list[Tools]:
    """Bootstrap *environ* with tools found in its own storage.

    Returns the candidate tools handed to the backend.
    """
    check_bootstrap_config(environ)
    if is_bootstrapped(environ):
        raise BootstrapError("environment is already bootstrapped")

    cfg = environ.config()
    possible = find_tools(environ.storage(), CURRENT_NUMBER.major, series=cfg.default_series, arch=cons.arch)
    if not possible:
        raise BootstrapError(
            f"cannot find bootstrap tools: no tools available for {cfg.default_series}/{cons.arch or 'any'}"
        )
    if op is not None:
        op.add_step("tools.find", detail=", ".join(str(tools.binary) for tools in possible))
    logger.info("bootstrapping environment %s", cfg.name)
    environ.bootstrap(cons, possible, data_dir=data_dir)
    if op is not None:
        op.add_step("environ.bootstrap", detail=cfg.name)
    return possible


def upload_tools(
    stor: Storage,
    directory: Path,
    *,
    series: str,
    arch: str,
    extra_series: Sequence[str] = (),
) -> list[Tools]:
    """Upload the executables in *directory* as this release's tools.

    The same archive is stored once per series so machines running any of
    them find tools.
    """
    uploaded = [put_tools(stor, directory, Binary.current(series, arch))]
    for other in extra_series:
        if other != series:
            uploaded.append(put_tools(stor, directory, Binary.current(other, arch)))
    return uploaded


__all__ = ["bootstrap", "check_bootstrap_config", "is_bootstrapped", "upload_tools"]
