"""Tests for residentml logging setup."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from residentml.core.logging import (
    ConsoleFormatter,
    JSONLFormatter,
    log_with_context,
    setup_logging,
)


def _record(level: int = logging.WARNING, **extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        "residentml_ui.runtime.hydration", level, "hydration.py", 42, "Island %s", ("a",), None
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestFormatters:
    def test_jsonl_entry(self) -> None:
        entry = json.loads(JSONLFormatter().format(_record(context={"island_id": "a"})))
        assert entry["level"] == "WARNING"
        assert entry["logger"] == "residentml_ui.runtime.hydration"
        assert entry["message"] == "Island a"
        assert entry["context"] == {"island_id": "a"}
        assert entry["source"]["line"] == 42
        assert entry["timestamp"].endswith("Z")

    def test_jsonl_info_has_no_source(self) -> None:
        entry = json.loads(JSONLFormatter().format(_record(logging.INFO)))
        assert "source" not in entry
        assert "context" not in entry

    def test_console_line(self) -> None:
        line = ConsoleFormatter().format(_record())
        assert "[hydration]" in line
        assert "WARNING" in line
        assert line.endswith("Island a")


@pytest.mark.usefixtures("restore_loggers")
class TestSetupLogging:
    def test_level_names(self) -> None:
        setup_logging("debug")
        assert logging.getLogger("residentml").level == logging.DEBUG
        assert logging.getLogger("residentml_ui").level == logging.DEBUG

    def test_json_file_receives_context(self, tmp_path: Path) -> None:
        log_file = tmp_path / "logs" / "residentml.jsonl"
        setup_logging(logging.INFO, log_file)
        logger = logging.getLogger("residentml.core.state.store")
        log_with_context(logger, logging.INFO, "Persisted value", island_id="x")
        for handler in logging.getLogger("residentml").handlers:
            handler.flush()

        [line] = log_file.read_text(encoding="utf-8").splitlines()
        entry = json.loads(line)
        assert entry["context"] == {"island_id": "x"}

    def test_repeated_setup_replaces_handlers(self) -> None:
        setup_logging()
        setup_logging()
        assert len(logging.getLogger("residentml").handlers) == 1
