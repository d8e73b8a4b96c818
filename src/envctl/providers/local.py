"""Backend running the environment on the machine envctl runs on.

The state server is machine 0 on this host; every other machine is a
container started through an injected container manager. Everything the
environment owns lives under ``root-dir``:

``storage/``         environment storage
``shared-storage/``  storage shared with containers
``db/``              state database
``log/``             machine agent logs
``server.pem``       state server certificate and key
"""
from __future__ import annotations

import os
import shutil
import socket
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

from ..agent import AgentConfigError, StateMachineConfigParams, new_state_machine_config
from ..agent.format import write_file_atomic
from ..constraints import Constraints
from ..environs.config import FORCE_INT, OMIT, STRING, EnvironConfig, EnvironConfigError
from ..environs.interface import ProviderError
from ..environs.machineconfig import (
    BOOTSTRAP_MACHINE_ID,
    BOOTSTRAP_NONCE,
    DEFAULT_DATA_DIR,
    PROVIDER_TYPE_KEY,
    SHARED_STORAGE_ADDR_KEY,
    SHARED_STORAGE_DIR_KEY,
    STORAGE_ADDR_KEY,
    STORAGE_DIR_KEY,
    MachineConfig,
    MachineConfigError,
    finish_machine_config,
    machine_tag,
)
from ..instance import HardwareCharacteristics, Instance
from ..logging import get_logger
from ..storage import FileStorage, Storage, StorageError
from ..tools import Tools, ToolsArchiveError, unpack_tools
from ..utils import user_password_hash
from .common.addresses import interface_address
from .common.environ import BaseEnviron, CloudInstance, ComputeClient, LaunchRequest, select_tools
from .common.provider import BaseProvider, check_immutable, with_agent_version
from .common.state import BootstrapState, save_state
from .common.userdata import compose_user_data

logger = get_logger(__name__)

BOOTSTRAP_INSTANCE_ID = "localhost"
DEFAULT_STORAGE_PORT = 8040
DEFAULT_SHARED_STORAGE_PORT = 8041
DEFAULT_NETWORK_BRIDGE = "lxcbr0"
PUBLIC_INTERFACE = "eth0"
SERVER_PEM = "server.pem"
_DIR_MODE = 0o755
_IMMUTABLE = ("root-dir", "network-bridge", "storage-port", "shared-storage-port")

ContainerFactory = Callable[[EnvironConfig], ComputeClient]


def port_in_use(port: int, *, host: str = "localhost") -> bool:
    """Return True when something accepts connections on *host*:*port*."""
    try:
        with socket.create_connection((host, port), timeout=1.0):
            return True
    except ConnectionRefusedError:
        return False
    except OSError as exc:
        raise ProviderError(f"cannot check port {port}: {exc}") from exc


class LocalEnviron(BaseEnviron):
    """An environment rooted in a directory on this machine."""

    def __init__(
        self,
        provider: LocalProvider,
        config: EnvironConfig,
        containers: ComputeClient | None,
    ) -> None:
        super().__init__(provider, config)
        self._containers = containers
        try:
            self._storage = FileStorage(self.storage_dir)
        except StorageError as exc:
            raise ProviderError(str(exc)) from exc

    # Layout ----------------------------------------------------------
    @property
    def root_dir(self) -> Path:
        return Path(str(self.config().get("root-dir")))

    @property
    def storage_dir(self) -> Path:
        return self.root_dir / "storage"

    @property
    def shared_storage_dir(self) -> Path:
        return self.root_dir / "shared-storage"

    @property
    def mongo_dir(self) -> Path:
        return self.root_dir / "db"

    @property
    def log_dir(self) -> Path:
        return self.root_dir / "log"

    @property
    def storage_addr(self) -> str:
        cfg = self.config()
        return f"{cfg.get('bootstrap-ip', '')}:{cfg.get('storage-port')}"

    @property
    def shared_storage_addr(self) -> str:
        cfg = self.config()
        return f"{cfg.get('bootstrap-ip', '')}:{cfg.get('shared-storage-port')}"

    def create_dirs(self) -> None:
        for directory in (self.shared_storage_dir, self.storage_dir, self.mongo_dir, self.log_dir):
            directory.mkdir(mode=_DIR_MODE, parents=True, exist_ok=True)

    def storage(self) -> Storage:
        return self._storage

    # Lifecycle -------------------------------------------------------
    def bootstrap(
        self,
        cons: Constraints,
        possible_tools: Sequence[Tools],
        *,
        data_dir: Path = DEFAULT_DATA_DIR,
    ) -> None:
        """Set up machine 0 on this host.

        The agent data directory is always ``root-dir``; *data_dir* only
        applies to machines started elsewhere.
        """
        if not possible_tools:
            raise ProviderError("no tools available")
        try:
            self.create_dirs()
        except OSError as exc:
            logger.error("failed to create necessary directories: %s", exc)
            raise ProviderError(f"cannot create environment directories: {exc}") from exc

        cfg = self.config()
        try:
            cert, key = cfg.generate_state_server_cert_and_key()
        except EnvironConfigError as exc:
            raise ProviderError(f"cannot generate state server certificate: {exc}") from exc
        try:
            write_file_atomic(self.root_dir / SERVER_PEM, cert + key, 0o600)
        except OSError as exc:
            raise ProviderError(f"cannot write {SERVER_PEM}: {exc}") from exc

        save_state(self.storage(), BootstrapState(state_instances=[BOOTSTRAP_INSTANCE_ID]))
        self._write_bootstrap_agent_config(cfg, cert, key)

        tools = max(possible_tools, key=lambda item: item.binary)
        target = self.root_dir / "tools" / str(tools.binary)
        try:
            unpack_tools(self.storage(), tools.binary, target)
        except (StorageError, ToolsArchiveError) as exc:
            raise ProviderError(f"cannot unpack bootstrap tools: {exc}") from exc
        logger.info("bootstrapped local environment %s in %s", cfg.name, self.root_dir)

    def _write_bootstrap_agent_config(self, cfg: EnvironConfig, cert: str, key: str) -> None:
        ca_cert = cfg.ca_cert or ""
        params = StateMachineConfigParams(
            data_dir=self.root_dir,
            tag=machine_tag(BOOTSTRAP_MACHINE_ID),
            password=user_password_hash(cfg.admin_secret),
            ca_cert=ca_cert,
            # The state server only accepts its initialising connection from localhost.
            state_addresses=[f"localhost:{cfg.state_port}"],
            api_addresses=[f"localhost:{cfg.api_port}"],
            nonce=BOOTSTRAP_NONCE,
            values={
                PROVIDER_TYPE_KEY: cfg.type,
                STORAGE_DIR_KEY: str(self.storage_dir),
                STORAGE_ADDR_KEY: self.storage_addr,
                SHARED_STORAGE_DIR_KEY: str(self.shared_storage_dir),
                SHARED_STORAGE_ADDR_KEY: self.shared_storage_addr,
            },
            state_server_cert=cert,
            state_server_key=key,
            api_port=cfg.api_port,
        )
        try:
            new_state_machine_config(params).write()
        except AgentConfigError as exc:
            logger.error("failed to write bootstrap agent file: %s", exc)
            raise ProviderError(str(exc)) from exc

    def start_instance(
        self,
        cons: Constraints,
        possible_tools: Sequence[Tools],
        mcfg: MachineConfig,
    ) -> tuple[Instance, HardwareCharacteristics | None]:
        containers = self._require_containers()
        cfg = self.config()
        mcfg.tools = select_tools(possible_tools, series=cfg.default_series, arch=cons.arch)
        mcfg.machine_container_type = "lxc"
        try:
            finish_machine_config(mcfg, cfg, cons)
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
        inst, _hardware = containers.launch(request)
        return inst, None

    def stop_instances(self, instances: Sequence[Instance]) -> None:
        for inst in instances:
            if inst.id() == BOOTSTRAP_INSTANCE_ID:
                raise ProviderError("cannot stop the bootstrap instance")
            self._require_containers().terminate([inst.id()])

    def all_instances(self) -> list[Instance]:
        found: list[Instance] = [
            CloudInstance(instance_id=BOOTSTRAP_INSTANCE_ID, state="running", dns=BOOTSTRAP_INSTANCE_ID)
        ]
        if self._containers is not None:
            found.extend(self._containers.describe(None))
        return found

    def destroy(self) -> None:
        """Stop every container, then remove ``root-dir``."""
        if self._containers is not None:
            containers = self._containers.describe(None)
            if containers:
                self._containers.terminate([inst.id() for inst in containers])
        logger.info("removing state dir %s", self.root_dir)
        try:
            shutil.rmtree(self.root_dir)
        except FileNotFoundError:
            return
        except OSError as exc:
            logger.error("could not remove local state dir: %s", exc)
            raise ProviderError(f"cannot remove {self.root_dir}: {exc}") from exc

    def _require_containers(self) -> ComputeClient:
        if self._containers is None:
            raise ProviderError("local environment has no container manager")
        return self._containers


@dataclass(slots=True)
class LocalProvider(BaseProvider):
    """Provider for environments on this machine."""

    type_name = "local"
    fields = {
        "root-dir": STRING,
        "bootstrap-ip": STRING,
        "network-bridge": STRING,
        "storage-port": FORCE_INT,
        "shared-storage-port": FORCE_INT,
    }
    defaults = {
        "root-dir": "",
        "bootstrap-ip": OMIT,
        "network-bridge": DEFAULT_NETWORK_BRIDGE,
        "storage-port": DEFAULT_STORAGE_PORT,
        "shared-storage-port": DEFAULT_SHARED_STORAGE_PORT,
    }

    home_dir: Path = Path("~/.juju")
    container_factory: ContainerFactory | None = None
    address_lookup: Callable[[str], str] = interface_address
    port_checker: Callable[[int], bool] = port_in_use

    def prepare(self, config: EnvironConfig) -> LocalEnviron:
        for port, description in ((config.state_port, "state port"), (config.api_port, "API port")):
            logger.info("checking %s", description)
            if self.port_checker(port):
                raise ProviderError(f"cannot use {port} as {description}, already in use")
        return self.open(config)

    def open(self, config: EnvironConfig) -> LocalEnviron:
        logger.info('opening environment "%s"', config.name)
        validated = self.validate(with_agent_version(config), None)
        if validated.get("bootstrap-ip") is None:
            bridge = str(validated.get("network-bridge"))
            try:
                address = self.address_lookup(bridge)
            except ProviderError as exc:
                logger.info("configure a different bridge using 'network-bridge' in the config file")
                raise ProviderError(f'cannot find address of network-bridge: "{bridge}"') from exc
            validated = validated.apply({"bootstrap-ip": address})
        containers = self.container_factory(validated) if self.container_factory is not None else None
        return LocalEnviron(self, validated, containers)

    def _check_attrs(
        self,
        attrs: dict[str, object],
        new: EnvironConfig,
        old: EnvironConfig | None,
    ) -> dict[str, object]:
        root = str(attrs.get("root-dir") or "")
        if root:
            resolved = Path(os.path.normpath(os.path.expanduser(root)))
        else:
            resolved = (self.home_dir / new.name).expanduser()
        attrs["root-dir"] = str(resolved)
        for key in _IMMUTABLE:
            check_immutable(key, attrs, old)
        return attrs

    def public_address(self) -> str:
        return self.address_lookup(PUBLIC_INTERFACE)

    def private_address(self) -> str:
        return self.address_lookup(PUBLIC_INTERFACE)


PROVIDER = LocalProvider()

__all__ = [
    "BOOTSTRAP_INSTANCE_ID",
    "LocalEnviron",
    "LocalProvider",
    "PROVIDER",
    "port_in_use",
]
