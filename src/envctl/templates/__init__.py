"""Jinja2 rendering for envctl's built-in text templates."""
from __future__ import annotations

import os
import secrets
import tempfile
from collections.abc import Mapping
from pathlib import Path

from jinja2 import ChoiceLoader, Environment, FileSystemLoader, StrictUndefined, TemplateError

BUILTIN_DIR = Path(__file__).resolve().parent


class TemplateRenderError(RuntimeError):
    """Raised when a template is missing or fails to render."""


def rand() -> str:
    """Return a random hex string, exposed to templates as ``rand()``."""
    return secrets.token_hex(16)


class TemplateEngine:
    """Render built-in templates, optionally shadowed by an override directory."""

    def __init__(self, search_paths: list[Path]) -> None:
        loaders = [FileSystemLoader(str(path)) for path in search_paths]
        self._env = Environment(
            loader=ChoiceLoader(loaders),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False,
        )
        self._env.globals["rand"] = rand

    @classmethod
    def with_overrides(cls, override_dir: Path | None) -> TemplateEngine:
        """Return an engine searching *override_dir* before the built-ins."""
        paths = [BUILTIN_DIR]
        if override_dir is not None:
            paths.insert(0, Path(override_dir).expanduser())
        return cls(paths)

    def render_to_string(self, name: str, context: Mapping[str, object] | None = None) -> str:
        """Render template *name* with *context*."""
        try:
            template = self._env.get_template(name)
            return template.render(**dict(context or {}))
        except TemplateError as exc:
            raise TemplateRenderError(f"cannot render template {name}: {exc}") from exc

    def render_to_path(
        self,
        name: str,
        destination: Path,
        context: Mapping[str, object] | None = None,
        *,
        mode: int = 0o644,
    ) -> bool:
        """Render *name* to *destination*; return False when nothing changed."""
        content = self.render_to_string(name, context)
        if destination.exists() and destination.read_text(encoding="utf-8") == content:
            return False
        destination.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=destination.parent, prefix=f".{destination.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(content)
            os.chmod(tmp_path, mode)
            os.replace(tmp_path, destination)
        finally:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
        return True


__all__ = ["BUILTIN_DIR", "TemplateEngine", "TemplateRenderError", "rand"]
