"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from logging.handlers import RotatingFileHandler
from pathlib import Path

import pytest

from envctl.cert import generate_ca
from envctl.logging import ROOT_LOGGER_NAME
from envctl.providers import dummy


@pytest.fixture(scope="session")
def ca_pair() -> tuple[str, str]:
    """A CA certificate and key shared by the whole session."""
    return generate_ca("sample")


@pytest.fixture
def environ_attrs(ca_pair: tuple[str, str]) -> dict[str, object]:
    """Attributes of a complete, bootstrappable dummy environment."""
    cert, key = ca_pair
    return {
        "name": "sample",
        "type": "dummy",
        "authorized-keys": "ssh-rsa AAAAB3NzaC1yc2E test@example",
        "admin-secret": "fancy-secret",
        "ca-cert": cert,
        "ca-private-key": key,
        "default-series": "precise",
    }


@pytest.fixture
def tools_dir(tmp_path: Path) -> Path:
    """A directory holding fake jujud and jujuc executables."""
    directory = tmp_path / "tools-src"
    directory.mkdir()
    for name in ("jujud", "jujuc"):
        path = directory / name
        path.write_text(f"#!/bin/sh\necho {name}\n")
        path.chmod(0o755)
    return directory


@pytest.fixture(autouse=True)
def _reset_dummy() -> Iterator[None]:
    """Give every test a fresh set of in-process dummy environments."""
    dummy.reset()
    yield
    dummy.reset()


@pytest.fixture(autouse=True)
def _detach_log_files() -> Iterator[None]:
    """Drop file handlers StructuredLogger attached during a test."""
    root = logging.getLogger(ROOT_LOGGER_NAME)
    before = list(root.handlers)
    yield
    for handler in list(root.handlers):
        if handler not in before and isinstance(handler, RotatingFileHandler):
            root.removeHandler(handler)
            handler.close()
