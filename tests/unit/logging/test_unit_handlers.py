# tests/unit/logging/test_unit_handlers.py - v2
"""Tests for logging/handlers.py - size parsing and file rotation handler."""

from __future__ import annotations

import logging

import pytest

from runmanifest.logging.handlers import (
    ScrubCredentialsFilter,
    create_rotating_handler,
    parse_size,
)


class TestParseSize:
    def test_mb(self):
        assert parse_size("10MB") == 10 * 1024 * 1024

    def test_kb(self):
        assert parse_size("512KB") == 512 * 1024

    def test_gb(self):
        assert parse_size("1GB") == 1024 * 1024 * 1024

    def test_case_insensitive_with_space(self):
        assert parse_size(" 10 mb ") == 10 * 1024 * 1024

    def test_bare_bytes(self):
        assert parse_size("2048") == 2048
        assert parse_size("512B") == 512

    def test_invalid_format(self):
        with pytest.raises(ValueError, match="Invalid size"):
            parse_size("10bytes")

    def test_empty_string(self):
        with pytest.raises(ValueError):
            parse_size("")


class TestCreateRotatingHandler:
    def test_creates_handler(self, tmp_path):
        log_file = str(tmp_path / "toolkit.log")
        handler = create_rotating_handler(log_file, rotation="1MB", retention=5)
        try:
            assert handler.maxBytes == 1024 * 1024
            assert handler.backupCount == 5
        finally:
            handler.close()

    def test_creates_parent_dirs(self, tmp_path):
        log_file = str(tmp_path / "logs" / "deep" / "toolkit.log")
        handler = create_rotating_handler(log_file)
        handler.close()
        assert (tmp_path / "logs" / "deep").is_dir()

    def test_has_scrub_filter(self, tmp_path):
        handler = create_rotating_handler(str(tmp_path / "toolkit.log"))
        handler.close()
        assert any(isinstance(f, ScrubCredentialsFilter) for f in handler.filters)


class TestScrubCredentialsFilter:
    def test_masks_formatted_message(self):
        record = logging.LogRecord(
            name="test", level=logging.WARNING, pathname="", lineno=0,
            msg="cannot reach %s", args=("postgres://app:hunter2@db/app",), exc_info=None,
        )
        assert ScrubCredentialsFilter().filter(record) is True
        assert record.getMessage() == "cannot reach postgres://***:***@db/app"

    def test_leaves_clean_record_untouched(self):
        record = logging.LogRecord(
            name="test", level=logging.INFO, pathname="", lineno=0,
            msg="%d rows", args=(3,), exc_info=None,
        )
        ScrubCredentialsFilter().filter(record)
        assert record.msg == "%d rows"
        assert record.args == (3,)
