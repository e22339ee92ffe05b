"""Tests for the logging setup module."""

import logging

import pytest

from loan_ocr.utils.logger import get_logger, log_stage, setup_logging


class TestSetupLogging:
    """Tests for the setup_logging function."""

    def test_setup_creates_handler(self) -> None:
        root = logging.getLogger()
        root.handlers.clear()

        setup_logging("DEBUG")
        assert len(root.handlers) >= 1
        assert root.level == logging.DEBUG

        root.handlers.clear()

    def test_setup_idempotent(self) -> None:
        root = logging.getLogger()
        root.handlers.clear()

        setup_logging("INFO")
        count = len(root.handlers)
        setup_logging("INFO")
        assert len(root.handlers) == count

        root.handlers.clear()

    def test_setup_invalid_level_defaults_to_info(self) -> None:
        root = logging.getLogger()
        root.handlers.clear()

        setup_logging("NONEXISTENT")
        assert root.level == logging.INFO

        root.handlers.clear()

    def test_second_call_changes_level(self) -> None:
        root = logging.getLogger()
        root.handlers.clear()

        setup_logging("INFO")
        setup_logging("WARNING")
        assert root.level == logging.WARNING
        assert len(root.handlers) == 1

        root.handlers.clear()

    def test_quiets_http_client_loggers(self) -> None:
        root = logging.getLogger()
        root.handlers.clear()

        setup_logging("DEBUG")
        assert logging.getLogger("httpx").level == logging.WARNING

        root.handlers.clear()


class TestGetLogger:
    """Tests for the get_logger function."""

    def test_returns_named_logger(self) -> None:
        logger = get_logger("loan_ocr.test")
        assert logger.name == "loan_ocr.test"
        assert isinstance(logger, logging.Logger)

    def test_same_name_returns_same_logger(self) -> None:
        assert get_logger("loan_ocr.same") is get_logger("loan_ocr.same")


class TestLogStage:
    """Tests for the log_stage timer."""

    def test_logs_duration(self, caplog: pytest.LogCaptureFixture) -> None:
        logger = get_logger("loan_ocr.stage")
        with caplog.at_level(logging.DEBUG, logger="loan_ocr.stage"):
            with log_stage(logger, "segment"):
                pass
        assert "segment took" in caplog.text

    def test_failure_propagates(self, caplog: pytest.LogCaptureFixture) -> None:
        logger = get_logger("loan_ocr.stage")
        with caplog.at_level(logging.DEBUG, logger="loan_ocr.stage"):
            with pytest.raises(ValueError):
                with log_stage(logger, "normalize"):
                    raise ValueError("boom")
        assert "normalize failed after" in caplog.text
