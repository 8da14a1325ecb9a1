"""Shared pytest fixtures for residentml tests."""

import json
import logging
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pytest

from residentml.core.ir.template import CompiledTemplate
from residentml.core.markup import compile_template


@pytest.fixture
def fixtures_dir() -> Path:
    """Return path to the fixtures directory."""
    return Path(__file__).parent / "fixtures"


@pytest.fixture
def profile_markup(fixtures_dir: Path) -> str:
    """A profile page mixing resident components and template islands."""
    return (fixtures_dir / "profile.rml").read_text(encoding="utf-8")


@pytest.fixture
def profile_template(profile_markup: str) -> CompiledTemplate:
    return compile_template(profile_markup).unwrap()


@pytest.fixture
def resident_data(fixtures_dir: Path) -> dict[str, Any]:
    """Owner/viewer/posts as a host page would supply them (viewer is a visitor)."""
    return json.loads((fixtures_dir / "resident.json").read_text(encoding="utf-8"))


@pytest.fixture
def restore_loggers() -> Iterator[None]:
    """Undo logger changes made by setup_logging or the CLI callback."""
    saved = {}
    for name in ("residentml", "residentml_ui"):
        logger = logging.getLogger(name)
        saved[name] = (logger.level, list(logger.handlers))
    yield
    for name, (level, handlers) in saved.items():
        logger = logging.getLogger(name)
        for handler in logger.handlers:
            if handler not in handlers:
                handler.close()
        logger.setLevel(level)
        logger.handlers[:] = handlers
