"""Provider behaviour shared by the backends."""
from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import ClassVar

from ...environs.config import EnvironConfig, EnvironConfigError, FieldType
from ...environs.config import validate as validate_base
from ...environs.interface import Environ, ProviderError
from ...templates import TemplateEngine
from ...version import CURRENT_NUMBER
from . import addresses
from .environ import CloudEnviron, ComputeClient

ClientFactory = Callable[[EnvironConfig], ComputeClient]


def _default_templates() -> TemplateEngine:
    return TemplateEngine.with_overrides(None)


def check_immutable(
    key: str,
    new_attrs: Mapping[str, object],
    old: EnvironConfig | None,
) -> None:
    """Reject a change of *key* relative to the *old* configuration."""
    if old is None:
        return
    before = old.get(key)
    after = new_attrs.get(key)
    if before != after:
        raise EnvironConfigError(f"cannot change {key} from {_quote(before)} to {_quote(after)}")


def _quote(value: object) -> str:
    if value is None:
        return '""'
    return f'"{value}"' if isinstance(value, str) else str(value)


def with_agent_version(config: EnvironConfig) -> EnvironConfig:
    """Return *config* with an agent version, defaulting to this release."""
    if config.agent_version is not None:
        return config
    return config.apply({"agent-version": str(CURRENT_NUMBER)})


@dataclass(slots=True)
class BaseProvider(ABC):
    """Validation, boilerplate and address lookup common to the backends.

    Subclasses name their backend in ``type_name`` and describe their own
    attributes in ``fields``/``defaults``; ``_check_attrs`` adds any rules the
    field types cannot express.
    """

    type_name: ClassVar[str] = ""
    fields: ClassVar[Mapping[str, FieldType]] = {}
    defaults: ClassVar[Mapping[str, object]] = {}
    immutable: ClassVar[tuple[str, ...]] = ()
    secret_keys: ClassVar[tuple[str, ...]] = ()

    templates: TemplateEngine = field(default_factory=_default_templates)

    def prepare(self, config: EnvironConfig) -> Environ:
        return self.open(config)

    @abstractmethod
    def open(self, config: EnvironConfig) -> Environ:
        ...

    def validate(self, new: EnvironConfig, old: EnvironConfig | None) -> EnvironConfig:
        validate_base(new, old)
        attrs = new.validate_unknown_attrs(self.fields, self.defaults)
        for key in self.immutable:
            check_immutable(key, attrs, old)
        attrs = self._check_attrs(attrs, new, old)
        return new.apply(attrs)

    def _check_attrs(
        self,
        attrs: dict[str, object],
        new: EnvironConfig,
        old: EnvironConfig | None,
    ) -> dict[str, object]:
        return attrs

    def boilerplate_config(self) -> str:
        return self.templates.render_to_string(f"boilerplate/{self.type_name}.yaml.j2")

    def secret_attrs(self, config: EnvironConfig) -> dict[str, str]:
        validated = self.validate(config, None)
        return {key: str(validated.get(key, "")) for key in self.secret_keys}


@dataclass(slots=True)
class CloudProvider(BaseProvider):
    """A provider whose environs reach their cloud through a compute client."""

    client_factory: ClientFactory | None = None
    metadata_url: str = addresses.METADATA_URL

    def open(self, config: EnvironConfig) -> Environ:
        validated = self.validate(with_agent_version(config), None)
        if self.client_factory is None:
            raise ProviderError(f"no compute client configured for {self.type_name} environments")
        return CloudEnviron(self, validated, self.client_factory(validated))

    def public_address(self) -> str:
        return addresses.public_address(base_url=self.metadata_url)

    def private_address(self) -> str:
        return addresses.private_address(base_url=self.metadata_url)


__all__ = [
    "BaseProvider",
    "ClientFactory",
    "CloudProvider",
    "check_immutable",
    "with_agent_version",
]
