"""Tests for convertkit.utils.logging module."""

from __future__ import annotations

import io
import logging
import sys

import pytest
import structlog

from convertkit.utils.logging import (
    _mark_context,
    _scrub_values,
    create_task_log_path,
    get_logger,
    set_log_output,
    setup_logging,
    setup_task_logging,
)


@pytest.fixture
def restore_logging():
    """Put the root logger back the way the test found it."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    set_log_output(sys.stderr)
    structlog.contextvars.clear_contextvars()


class TestProcessors:
    """Tests for the structlog processors."""

    def test_base64_runs_replaced(self):
        """Test that long base64 runs are replaced by their length."""
        blob = "QUJD" * 200
        event = _scrub_values(None, "info", {"event": "sent", "line": f'{{"file":"{blob}"}}'})

        assert event["line"] == '{"file":"[BASE64:800 chars]"}'

    def test_short_values_untouched(self):
        event = _scrub_values(None, "info", {"event": "x", "value": "QUJD" * 10})
        assert event["value"] == "QUJD" * 10

    def test_long_strings_cut(self):
        event = _scrub_values(None, "info", {"text": "a b " * 150})

        assert event["text"].startswith("a b a b")
        assert event["text"].endswith("... [600 chars total]")

    def test_bytes_summarized(self):
        event = _scrub_values(None, "info", {"data": b"\x00" * 12})
        assert event["data"] == "[BINARY DATA: 12 bytes]"

    def test_separator_only_with_context(self):
        assert _mark_context(None, "info", {"event": "Done", "level": "info"})["event"] == "Done"
        assert _mark_context(None, "info", {"event": "Done", "file": "a"})["event"] == "Done |"


class TestSetupLogging:
    """Tests for logging setup."""

    def test_console_output_respects_level(self, restore_logging):  # noqa: ARG002
        stream = io.StringIO()
        set_log_output(stream)
        setup_logging(level="INFO", colors=False)

        log = get_logger("convertkit.test")
        log.debug("hidden message")
        log.info("Converted file", name="a.png")

        output = stream.getvalue()
        assert "hidden message" not in output
        assert "Converted file |" in output
        assert "name=a.png" in output

    def test_file_handler_gets_debug(self, restore_logging, tmp_path):  # noqa: ARG002
        stream = io.StringIO()
        set_log_output(stream)
        log_file = tmp_path / "logs" / "run.log"
        setup_logging(level="DEBUG", log_file=str(log_file), console_level="WARNING")

        get_logger("convertkit.test").debug("details only in file")
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert "details only in file" in log_file.read_text(encoding="utf-8")
        assert "details only in file" not in stream.getvalue()

    def test_noisy_loggers_quieted(self, restore_logging):  # noqa: ARG002
        set_log_output(io.StringIO())
        setup_logging(level="DEBUG")
        assert logging.getLogger("PIL").level == logging.WARNING

    def test_json_format(self, restore_logging):  # noqa: ARG002
        stream = io.StringIO()
        set_log_output(stream)
        setup_logging(level="INFO", json_format=True)

        get_logger("convertkit.test").info("Batch finished", count=3)

        assert '"count": 3' in stream.getvalue()


class TestTaskLogs:
    """Tests for per-task log files."""

    def test_create_task_log_path(self, tmp_path):
        task_id, path = create_task_log_path(tmp_path / ".logs", "convert")

        assert len(task_id) == 8
        assert path.parent.is_dir()
        assert path.name.startswith("convert_")
        assert path.name.endswith(f"_{task_id}.log")

    def test_setup_task_logging_writes_file(self, restore_logging, tmp_path):  # noqa: ARG002
        set_log_output(io.StringIO())
        _, path = setup_task_logging(tmp_path, "batch")

        get_logger("convertkit.test").debug("task started")
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert "task started" in path.read_text(encoding="utf-8")
