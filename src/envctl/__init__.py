"""envctl: environment provisioning and bootstrap toolkit."""
from __future__ import annotations

__all__ = ["__version__"]

# Hatch reads the version from this module (see ``pyproject.toml``).
__version__ = "0.1.0a0"
