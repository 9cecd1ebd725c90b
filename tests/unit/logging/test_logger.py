# tests/unit/logging/test_logger.py - v2
"""Tests for logging/logger.py - logger factory and formatters."""

from __future__ import annotations

import json
import logging
import sys

from runmanifest.logging.context import clear_context, set_run_context, set_step_context
from runmanifest.logging.logger import JsonFormatter, TextFormatter, get_logger, setup_logging


def _record(msg: str, level: int = logging.INFO) -> logging.LogRecord:
    return logging.LogRecord(
        name="test", level=level, pathname="", lineno=0,
        msg=msg, args=(), exc_info=None,
    )


class TestJsonFormatter:
    def setup_method(self):
        clear_context()

    def teardown_method(self):
        clear_context()

    def test_format_basic(self):
        parsed = json.loads(JsonFormatter().format(_record("Hello")))
        assert parsed["level"] == "INFO"
        assert parsed["message"] == "Hello"
        assert "timestamp" in parsed
        assert "context" not in parsed

    def test_format_with_context(self):
        set_run_context("run-42", "seed:tenant")
        set_step_context("PLAN")
        parsed = json.loads(JsonFormatter().format(_record("test msg")))
        assert parsed["context"] == {
            "run_id": "run-42", "command": "seed:tenant", "step": "PLAN",
        }

    def test_format_extra_data(self):
        record = _record("with data")
        record.data = {"count": 3}
        parsed = json.loads(JsonFormatter().format(record))
        assert parsed["data"] == {"count": 3}


class TestTextFormatter:
    def teardown_method(self):
        clear_context()

    def test_format_basic(self):
        output = TextFormatter().format(_record("Hello text"))
        assert "Hello text" in output
        assert "INFO" in output

    def test_format_with_command_and_step(self):
        set_run_context("run-42", "seed:tenant")
        set_step_context("EXECUTE")
        output = TextFormatter().format(_record("running"))
        assert "[seed:tenant]" in output
        assert "(EXECUTE)" in output
        assert output.endswith("- running")


class TestGetLogger:
    def test_returns_namespaced_logger(self):
        logger = get_logger("test_module")
        assert logger.name == "runmanifest.test_module"


class TestSetupLogging:
    def test_setup_json(self):
        setup_logging(level="DEBUG", log_format="json")
        root = logging.getLogger("runmanifest")
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JsonFormatter)

    def test_setup_text_targets_stderr(self):
        setup_logging(level="INFO", log_format="text")
        root = logging.getLogger("runmanifest")
        assert root.level == logging.INFO
        assert isinstance(root.handlers[0].formatter, TextFormatter)
        assert root.handlers[0].stream is sys.stderr

    def test_reinit_does_not_duplicate(self):
        setup_logging()
        setup_logging()
        assert len(logging.getLogger("runmanifest").handlers) == 1

    def test_with_log_file(self, tmp_path):
        log_file = tmp_path / "logs" / "toolkit.log"
        setup_logging(log_file=str(log_file), rotation="1MB", retention=2)
        root = logging.getLogger("runmanifest")
        try:
            assert len(root.handlers) == 2
            root.warning("to file")
            for handler in root.handlers:
                handler.flush()
            assert "to file" in log_file.read_text()
        finally:
            for handler in root.handlers[1:]:
                handler.close()
            root.handlers.clear()


class TestExceptionOutput:
    def _record_with_exc(self) -> logging.LogRecord:
        try:
            raise ConnectionError("lost postgres://app:hunter2@db/app")
        except ConnectionError:
            return logging.LogRecord(
                name="test", level=logging.ERROR, pathname="", lineno=0,
                msg="failed", args=(), exc_info=sys.exc_info(),
            )

    def test_text_shows_scrubbed_exception(self):
        output = TextFormatter().format(self._record_with_exc())
        assert "[ConnectionError: lost postgres://***:***@db/app]" in output
        assert "Traceback" not in output

    def test_json_exception_scrubbed(self):
        parsed = json.loads(JsonFormatter().format(self._record_with_exc()))
        assert "ConnectionError" in parsed["exception"]
        assert "hunter2" not in parsed["exception"]
