"""Tests for CLI log formatting and handler setup."""

import logging

import pytest

from carchive_harness._logging import (
    LIBRARY_LOGGER_NAME,
    ScenarioFormatter,
    _NonBlockingHandler,
    configure_logging,
)


def _record(msg: str, level: int = logging.INFO, **extra: object) -> logging.LogRecord:
    record = logging.LogRecord("carchive_harness.build", level, __file__, 1, msg, None, None)
    record.__dict__.update(extra)
    return record


class TestScenarioFormatter:
    def test_tags_scenario(self) -> None:
        text = ScenarioFormatter().format(_record("build: go build", context_id="pie"))
        assert text.startswith("INFO [")
        assert text.endswith("carchive_harness.build [pie] - build: go build")

    def test_untagged_record(self) -> None:
        text = ScenarioFormatter().format(_record("resolved config"))
        assert text.endswith("carchive_harness.build - resolved config")
        assert "[]" not in text

    def test_continuation_lines_tagged(self) -> None:
        text = ScenarioFormatter().format(
            _record("# libgo4\n./libgo4.go:12: undefined: C.foo", logging.ERROR, context_id="extar")
        )
        first, second = text.split("\n")
        assert first.endswith("[extar] - # libgo4")
        assert second == "[extar] ./libgo4.go:12: undefined: C.foo"

    def test_untagged_multiline_unchanged(self) -> None:
        text = ScenarioFormatter().format(_record("a\nb"))
        assert text.endswith(" - a\nb")


class TestConfigureLogging:
    @pytest.fixture(autouse=True)
    def _restore(self):
        lib_logger = logging.getLogger(LIBRARY_LOGGER_NAME)
        handlers, level = list(lib_logger.handlers), lib_logger.level
        yield
        for h in lib_logger.handlers:
            if h not in handlers:
                lib_logger.removeHandler(h)
                h.close()
        lib_logger.setLevel(level)

    def test_idempotent(self) -> None:
        configure_logging(level=logging.DEBUG)
        configure_logging(level=logging.DEBUG)
        lib_logger = logging.getLogger(LIBRARY_LOGGER_NAME)
        assert sum(isinstance(h, _NonBlockingHandler) for h in lib_logger.handlers) == 1
        assert lib_logger.level == logging.DEBUG

    def test_quiet_wins(self) -> None:
        configure_logging(level=logging.DEBUG, quiet=True)
        assert logging.getLogger(LIBRARY_LOGGER_NAME).level == logging.ERROR
