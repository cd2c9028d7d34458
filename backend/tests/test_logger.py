"""
Tests for the TokRelay logging helpers.
"""

import json
import logging
import sys

import pytest

from tokrelay.utils.logger import (
    JSONFormatter,
    StandardFormatter,
    add_log_context,
    setup_logging,
)


def make_record(**extra) -> logging.LogRecord:
    record = logging.LogRecord(
        "tokrelay.test", logging.INFO, __file__, 10, "fetched %s", ("x",), None
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    """One JSON object per record."""

    def test_core_fields(self) -> None:
        entry = json.loads(JSONFormatter().format(make_record()))

        assert entry["level"] == "INFO"
        assert entry["logger"] == "tokrelay.test"
        assert entry["message"] == "fetched x"
        assert "extra" not in entry

    def test_extra_fields_are_collected(self) -> None:
        entry = json.loads(
            JSONFormatter().format(make_record(request_id="r1", cache_key={"a", "b"}))
        )

        assert entry["extra"]["request_id"] == "r1"
        assert sorted(entry["extra"]["cache_key"]) == ["a", "b"]

    def test_source_location(self) -> None:
        entry = json.loads(JSONFormatter(include_source_location=True).format(make_record()))

        assert entry["source"]["lineno"] == 10

    def test_exception_details(self) -> None:
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.LogRecord(
                "tokrelay.test", logging.ERROR, __file__, 1, "failed", (), sys.exc_info()
            )

        entry = json.loads(JSONFormatter().format(record))

        assert entry["exception"]["type"] == "RuntimeError"
        assert entry["exception"]["message"] == "boom"


class TestContextAdapter:
    """add_log_context merges context with per-call extra."""

    def test_context_and_call_extra_are_merged(self, caplog: pytest.LogCaptureFixture) -> None:
        logger = logging.getLogger("tokrelay.test.context")
        log = add_log_context(logger, request_id="abc")

        with caplog.at_level(logging.INFO, logger="tokrelay.test.context"):
            log.info("download request", extra={"type": "nowm"})

        record = caplog.records[-1]
        assert record.request_id == "abc"
        assert record.type == "nowm"

    def test_call_extra_wins_over_context(self, caplog: pytest.LogCaptureFixture) -> None:
        logger = logging.getLogger("tokrelay.test.context")
        log = add_log_context(logger, request_id="abc")

        with caplog.at_level(logging.INFO, logger="tokrelay.test.context"):
            log.info("override", extra={"request_id": "xyz"})

        assert caplog.records[-1].request_id == "xyz"


class TestSetupLogging:
    """Root and third-party logger configuration."""

    def test_json_mode_installs_single_root_handler(self) -> None:
        root = logging.getLogger()
        saved_handlers, saved_level = list(root.handlers), root.level
        try:
            setup_logging(log_level="debug", json_logs=True)
            setup_logging(log_level="debug", json_logs=True)

            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, JSONFormatter)
            assert root.level == logging.DEBUG
            assert logging.getLogger("httpx").level == logging.WARNING
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)

    def test_text_mode(self) -> None:
        root = logging.getLogger()
        saved_handlers, saved_level = list(root.handlers), root.level
        try:
            setup_logging(log_level="info", json_logs=False)

            assert isinstance(root.handlers[0].formatter, StandardFormatter)
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
