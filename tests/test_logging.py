"""Tests for structured log formatting."""

import logging

from study_engine.logging import StructuredFormatter, configure_logging, get_logger, log_with_context


def test_formatter_renders_key_values_and_context():
    record = logging.LogRecord("study_engine.x", logging.INFO, __file__, 1, "Processed chunks", None, None)
    record.extra_data = {"set_id": "abc", "embedded": 3}
    line = StructuredFormatter().format(record)
    assert "level=INFO" in line
    assert "message=Processed chunks" in line
    assert "set_id=abc" in line
    assert "embedded=3" in line


def test_get_logger_adds_one_handler():
    logger = get_logger("study_engine.test_logging")
    get_logger("study_engine.test_logging")
    assert len(logger.handlers) == 1
    assert logger.propagate is False


def test_configure_logging_sets_engine_levels():
    logger = get_logger("study_engine.test_levels")
    configure_logging("WARNING")
    assert logger.level == logging.WARNING
    configure_logging("INFO")


def test_log_with_context_attaches_extra(caplog):
    logger = logging.getLogger("plain.test_context")
    with caplog.at_level(logging.INFO, logger="plain.test_context"):
        log_with_context(logger, logging.INFO, "hello", model="m1")
    assert caplog.records[0].extra_data == {"model": "m1"}
