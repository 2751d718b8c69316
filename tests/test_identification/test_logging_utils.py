"""Tests for the TRACE logging helpers."""

import logging

import pytest

from birdcall_id.identification.logging_utils import (
    NOISY_LOGGERS,
    TRACE_LEVEL,
    configure_logging,
    get_logger,
    install_trace_level,
)


@pytest.fixture
def restore_noisy_loggers():
    levels = {name: logging.getLogger(name).level for name in NOISY_LOGGERS}
    yield
    for name, level in levels.items():
        logging.getLogger(name).setLevel(level)


@pytest.mark.unit
class TestTraceLevel:
    """Test cases for the TRACE level."""

    def test_trace_is_logged_when_enabled(self, caplog) -> None:
        """Test logger.trace emits a TRACE record."""
        logger = get_logger("birdcall_id.tests.trace")

        with caplog.at_level(TRACE_LEVEL, logger="birdcall_id.tests.trace"):
            logger.trace("frame %d", 3)

        assert [(r.levelname, r.getMessage()) for r in caplog.records] == [("TRACE", "frame 3")]

    def test_trace_is_filtered_at_debug(self, caplog) -> None:
        """Test TRACE records are dropped at DEBUG."""
        logger = get_logger("birdcall_id.tests.trace_filtered")

        with caplog.at_level(logging.DEBUG, logger="birdcall_id.tests.trace_filtered"):
            logger.trace("hidden")

        assert caplog.records == []

    def test_install_is_idempotent(self) -> None:
        """Test installing twice keeps the same trace method."""
        install_trace_level()
        method = logging.Logger.__dict__["trace"]
        install_trace_level()

        assert logging.Logger.__dict__["trace"] is method
        assert logging.getLevelName(TRACE_LEVEL) == "TRACE"


@pytest.mark.unit
class TestConfigureLogging:
    """Test cases for CLI logging setup."""

    @pytest.mark.parametrize(
        ("verbose", "trace", "expected"),
        [
            (False, False, logging.WARNING),
            (True, False, logging.DEBUG),
            (False, True, TRACE_LEVEL),
            (True, True, TRACE_LEVEL),
        ],
    )
    def test_level_selection(self, restore_noisy_loggers, verbose, trace, expected) -> None:
        """Test the flags select the root level."""
        assert configure_logging(verbose=verbose, trace=trace) == expected

    def test_noisy_loggers_quietened(self, restore_noisy_loggers) -> None:
        """Test chatty third-party loggers stay at INFO when verbose."""
        configure_logging(verbose=True)

        for name in NOISY_LOGGERS:
            assert logging.getLogger(name).level == logging.INFO
