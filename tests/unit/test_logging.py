"""Unit tests for structured logging utilities.

This module tests the logging configuration and utilities including:
- Logging setup with different levels, formats and outputs
- Third-party logger quieting
- Structured logging helpers
"""

from __future__ import annotations

import logging
from unittest.mock import MagicMock, patch

import pytest
import structlog

from kte.utils.logging import get_logger, log_error, log_operation, setup_logging


class TestSetupLogging:
    """Test setup_logging function."""

    @pytest.fixture(autouse=True)
    def reset_logging(self):
        """Reset logging configuration before each test."""
        logging.root.handlers = []
        structlog.reset_defaults()
        yield
        logging.root.handlers = []
        structlog.reset_defaults()

    def test_setup_logging_default_parameters(self):
        """Test setup_logging with default parameters."""
        setup_logging()

        assert len(logging.root.handlers) > 0

    @pytest.mark.parametrize("level", ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    def test_setup_logging_levels(self, level: str):
        """Test setup_logging accepts every standard level."""
        setup_logging(level=level)

        assert len(logging.root.handlers) > 0

    def test_setup_logging_json_format(self):
        """Test setup_logging with JSON format uses the JSON renderer."""
        setup_logging(format="json")

        processors = structlog.get_config()["processors"]
        assert any(isinstance(p, structlog.processors.JSONRenderer) for p in processors)

    def test_setup_logging_console_format(self):
        """Test setup_logging with console format uses the console renderer."""
        setup_logging(format="console")

        processors = structlog.get_config()["processors"]
        assert any(isinstance(p, structlog.dev.ConsoleRenderer) for p in processors)

    def test_setup_logging_quiets_noisy_loggers(self):
        """Test HTTP client loggers stay at WARNING even in DEBUG mode."""
        setup_logging(level="DEBUG")

        assert logging.getLogger("urllib3").level == logging.WARNING
        assert logging.getLogger("kubernetes.client.rest").level == logging.WARNING

    def test_setup_logging_invalid_level_falls_back_to_info(self):
        """Test an unknown level does not raise."""
        setup_logging(level="CHATTY")

        assert len(logging.root.handlers) > 0


class TestGetLogger:
    """Test get_logger function."""

    def test_get_logger_with_name(self):
        """Test get_logger returns a usable logger."""
        logger = get_logger("kte.test")

        assert logger is not None
        assert hasattr(logger, "info")

    def test_get_logger_without_name(self):
        """Test get_logger without name."""
        assert get_logger() is not None


class TestLogHelpers:
    """Test log_operation and log_error helpers."""

    def test_log_operation_emits_completed_event(self):
        """Test log_operation emits <operation>_completed with context."""
        logger = MagicMock()

        log_operation(logger, "install_addons", objects=3)

        logger.info.assert_called_once_with("install_addons_completed", objects=3)

    def test_log_operation_with_start_time(self):
        """Test a start time adds the elapsed duration."""
        logger = MagicMock()

        with patch("kte.utils.logging.time.monotonic", return_value=112.34):
            log_operation(logger, "create_cluster", started=100.0, cluster_name="kte-1")

        logger.info.assert_called_once_with(
            "create_cluster_completed", cluster_name="kte-1", duration_seconds=12.3
        )

    def test_log_error_includes_error_context(self):
        """Test log_error records the event with error type and message."""
        logger = MagicMock()

        log_error(logger, "cluster_leaked", ValueError("bad value"), cluster_name="kte-1")

        logger.error.assert_called_once_with(
            "cluster_leaked",
            error_type="ValueError",
            error="bad value",
            cluster_name="kte-1",
        )
