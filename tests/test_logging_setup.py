"""Tests for the logging helpers."""

import logging

from shared.logging.logging_setup import ColoredFormatter, ColorLogger, CustomFormatter


def make_record(level: int, msg: str, *args, color: str | None = None) -> logging.LogRecord:
    record = logging.LogRecord("context_rag", level, __file__, 1, msg, args, None)
    if color:
        record.color = color
    return record


class TestFormatters:
    """Tests for CustomFormatter and ColoredFormatter."""

    def test_errors_and_warnings_get_a_marker(self):
        formatter = CustomFormatter("UTC", "%(message)s")

        assert formatter.format(make_record(logging.ERROR, "failed %s", "ctx-1")) == "⛔ failed ctx-1"
        assert formatter.format(make_record(logging.WARNING, "skipped")) == "⚠️ skipped"
        assert formatter.format(make_record(logging.INFO, "done")) == "done"

    def test_color_is_applied_only_when_requested(self):
        formatter = ColoredFormatter("UTC", "%(message)s")

        assert formatter.format(make_record(logging.INFO, "ready", color="green")) == "\033[32mready\033[0m"
        assert formatter.format(make_record(logging.INFO, "ready")) == "ready"


class TestColorLogger:
    """Tests for the color= keyword of ColorLogger."""

    def test_color_travels_in_extra(self, caplog):
        logger = ColorLogger(logging.getLogger("context_rag.color_test"))

        with caplog.at_level(logging.INFO, logger="context_rag.color_test"):
            logger.info("Contexts: %d processed", 3, color="green")

        [record] = caplog.records
        assert record.getMessage() == "Contexts: 3 processed"
        assert record.color == "green"

    def test_unknown_attributes_are_delegated(self):
        inner = logging.getLogger("context_rag.delegate_test")

        assert ColorLogger(inner).name == "context_rag.delegate_test"
