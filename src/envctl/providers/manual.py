"""Bootstrap of an existing machine reached over SSH.

Nothing is started: the target host already exists, so bootstrapping means
recording it in the state file, detecting what it runs, and running the
provisioning script on it with ``sudo``.
"""
from __future__ import annotations

import base64
import re
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Protocol

from ..constraints import Constraints
from ..environs.config import EnvironConfig
from ..environs.interface import ProviderError
from ..environs.machineconfig import (
    PROVIDER_TYPE_KEY,
    MachineConfigError,
    finish_machine_config,
    new_bootstrap_machine_config,
)
from ..instance import HardwareCharacteristics
from ..logging import OperationScope, get_logger
from ..storage import Storage, StorageError
from ..tools import Tools, storage_name
from .common.environ import select_tools
from .common.state import STATE_FILE, BootstrapState, save_state
from .common.userdata import provisioning_script

logger = get_logger(__name__)

MANUAL_INSTANCE_PREFIX = "manual:"
BOOTSTRAP_INSTANCE_ID = MANUAL_INSTANCE_PREFIX
PROVIDER_TYPE = "null"

CHECK_PROVISIONED_SCRIPT = "ls /etc/init/ | grep juju.*\\.conf || exit 0"
DETECTION_SCRIPT = "; ".join(
    [
        "lsb_release -cs",
        "uname -m",
        "grep MemTotal /proc/meminfo",
        "grep -c ^processor /proc/cpuinfo",
    ]
)

_ARCHES = (
    (re.compile(r"^(amd64|x86_64)$"), "amd64"),
    (re.compile(r"^i?[3-9]86$"), "i386"),
    (re.compile(r"^(arm64|aarch64)$"), "arm64"),
    (re.compile(r"^arm.*$"), "arm"),
    (re.compile(r"^ppc64(le)?$"), "ppc64"),
)
_MEMTOTAL_RE = re.compile(r"^MemTotal:\s*(\d+)\s*kB", re.IGNORECASE)


class ManualError(RuntimeError):
    """Raised when a machine cannot be provisioned over SSH."""


class ProvisionedError(ManualError):
    """Raised when the target machine already runs a machine agent."""

    def __init__(self) -> None:
        super().__init__("machine is already provisioned")


class CommandRunner(Protocol):
    """Runs a shell command on a remote host."""

    def run(
        self,
        host: str,
        command: str,
        *,
        check: bool = True,
        tty: bool = False,
    ) -> subprocess.CompletedProcess[str]:
        """Run *command* on *host*, raising :class:`ManualError` on failure when *check*."""


@dataclass(slots=True)
class SSHRunner:
    """Run commands through the ``ssh`` client."""

    ssh_bin: str = "ssh"
    options: tuple[str, ...] = ("-o", "StrictHostKeyChecking no")

    def run(
        self,
        host: str,
        command: str,
        *,
        check: bool = True,
        tty: bool = False,
    ) -> subprocess.CompletedProcess[str]:
        args = [self.ssh_bin, *self.options]
        if tty:
            args.append("-t")
        args.extend([host, "--", command])
        return self._run_command(args, check=check, error_prefix=f"{self.ssh_bin} {host}", capture_output=not tty)

    def _run_command(
        self,
        args: Sequence[str],
        *,
        check: bool,
        error_prefix: str,
        capture_output: bool,
    ) -> subprocess.CompletedProcess[str]:
        try:
            if capture_output:
                result = subprocess.run(  # noqa: S603
                    list(args),
                    capture_output=True,
                    text=True,
                    check=False,
                )
            else:
                result = subprocess.run(  # noqa: S603
                    list(args),
                    text=True,
                    check=False,
                )
        except FileNotFoundError as exc:
            raise ManualError(f"{args[0]} not found: {exc}") from exc
        if check and result.returncode != 0:
            stdout = getattr(result, "stdout", "") or ""
            stderr = getattr(result, "stderr", "") or ""
            message = stderr.strip() or stdout.strip() or "no output"
            raise ManualError(f"{error_prefix} failed (exit {result.returncode}): {message}")
        return result


class LocalStorageEnviron(Protocol):
    """An environ whose bootstrap machine serves the environment storage itself."""

    def config(self) -> EnvironConfig:
        """Return the environment configuration."""

    def storage(self) -> Storage:
        """Return the environment storage."""

    def storage_dir(self, data_dir: Path) -> Path:
        """Return the directory the bootstrap machine keeps storage in."""

    def storage_config(self, data_dir: Path) -> Mapping[str, str]:
        """Return the agent settings describing the local storage."""


# Detection -------------------------------------------------------------
def check_provisioned(runner: CommandRunner, host: str) -> bool:
    """Return True when *host* already has a machine agent job installed."""
    result = runner.run(host, CHECK_PROVISIONED_SCRIPT)
    output = (result.stdout or "").strip()
    if output:
        logger.info("%s has existing agent jobs: %s", host, output)
    return bool(output)


def normalize_arch(raw: str) -> str:
    """Map ``uname -m`` output to a tools architecture."""
    value = raw.strip()
    for pattern, arch in _ARCHES:
        if pattern.match(value):
            return arch
    raise ManualError(f"unrecognised architecture: {value}")


def parse_detection_output(output: str) -> tuple[HardwareCharacteristics, str]:
    """Parse the output of :data:`DETECTION_SCRIPT`."""
    lines = [line.strip() for line in output.splitlines() if line.strip()]
    if len(lines) < 4:
        raise ManualError(f"unexpected detection output: {output!r}")
    series = lines[0]
    arch = normalize_arch(lines[1])
    match = _MEMTOTAL_RE.match(lines[2])
    if match is None:
        raise ManualError(f"unexpected meminfo output: {lines[2]!r}")
    mem = int(match.group(1)) // 1024
    try:
        cores = int(lines[3])
    except ValueError:
        raise ManualError(f"unexpected processor count: {lines[3]!r}") from None
    return HardwareCharacteristics(arch=arch, mem=mem, cpu_cores=cores), series


def detect_series_and_hardware(runner: CommandRunner, host: str) -> tuple[HardwareCharacteristics, str]:
    """Return the hardware and OS series of *host*."""
    result = runner.run(host, DETECTION_SCRIPT)
    return parse_detection_output(result.stdout or "")


# Provisioning ----------------------------------------------------------
def remote_script_command(script: str) -> str:
    """Return a command that runs *script* as root without quoting hazards."""
    encoded = base64.b64encode(script.encode("utf-8")).decode("ascii")
    return f"sudo bash -c 'F=$(mktemp); echo {encoded} | base64 -d > $F; . $F'"


def bootstrap_script(
    cfg: EnvironConfig,
    tools: Tools,
    *,
    state_file_url: str,
    data_dir: Path,
    agent_env: Mapping[str, str],
) -> str:
    """Return the provisioning script for a manually bootstrapped state server."""
    mcfg = new_bootstrap_machine_config(state_file_url, data_dir=data_dir)
    mcfg.tools = tools
    try:
        finish_machine_config(mcfg, cfg, Constraints())
    except MachineConfigError as exc:
        raise ManualError(str(exc)) from exc
    mcfg.agent_environment[PROVIDER_TYPE_KEY] = PROVIDER_TYPE
    mcfg.agent_environment.update(agent_env)
    return provisioning_script(mcfg)


@dataclass
class BootstrapArgs:
    """Inputs to :func:`bootstrap`."""

    host: str
    data_dir: Path | str
    environ: LocalStorageEnviron | None
    possible_tools: Sequence[Tools] = ()
    runner: CommandRunner | None = None


def bootstrap(args: BootstrapArgs, *, op: OperationScope | None = None) -> None:
    """Provision the state server on an existing host.

    The state file is written before provisioning starts and removed again
    if anything after that fails.
    """
    if not args.host:
        raise ManualError("host argument is empty")
    if args.environ is None:
        raise ManualError("environ argument is None")
    if not str(args.data_dir):
        raise ManualError("data-dir argument is empty")
    runner = args.runner or SSHRunner()
    environ = args.environ
    data_dir = Path(args.data_dir)

    try:
        provisioned = check_provisioned(runner, args.host)
    except ManualError as exc:
        raise ManualError(f"failed to check provisioned status: {exc}") from exc
    if provisioned:
        raise ProvisionedError()

    try:
        hardware, series = detect_series_and_hardware(runner, args.host)
    except ManualError as exc:
        raise ManualError(f"error detecting hardware characteristics: {exc}") from exc
    if op is not None:
        op.add_step("host.detect", detail=f"{series} {hardware}")

    logger.info("filtering possible tools for %s/%s", series, hardware.arch)
    try:
        chosen = select_tools(args.possible_tools, series=series, arch=hardware.arch)
    except ProviderError as exc:
        raise ManualError(str(exc)) from exc

    stor = environ.storage()
    logger.info("saving bootstrap state file to bootstrap storage")
    save_state(stor, BootstrapState(state_instances=[BOOTSTRAP_INSTANCE_ID], characteristics=[hardware]))
    try:
        storage_dir = environ.storage_dir(data_dir)
        tools = replace(chosen, url=f"file://{storage_dir}/{storage_name(chosen.binary)}")
        script = bootstrap_script(
            environ.config(),
            tools,
            state_file_url=f"file://{storage_dir}/{STATE_FILE}",
            data_dir=data_dir,
            agent_env=environ.storage_config(data_dir),
        )
        logger.info("provisioning machine agent on %s", args.host)
        runner.run(args.host, remote_script_command(script), tty=True)
    except Exception as exc:
        logger.error("bootstrapping failed, removing state file: %s", exc)
        try:
            stor.remove(STATE_FILE)
        except StorageError as remove_exc:
            logger.error("cannot remove state file: %s", remove_exc)
        raise
    if op is not None:
        op.add_step("host.provision", detail=args.host)


__all__ = [
    "BOOTSTRAP_INSTANCE_ID",
    "BootstrapArgs",
    "CommandRunner",
    "LocalStorageEnviron",
    "ManualError",
    "ProvisionedError",
    "SSHRunner",
    "bootstrap",
    "bootstrap_script",
    "check_provisioned",
    "detect_series_and_hardware",
    "normalize_arch",
    "parse_detection_output",
    "remote_script_command",
]
