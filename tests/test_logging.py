import logging
from unittest.mock import MagicMock, patch

import pytest
from event_detector.core.logging import (
    DEFAULT_LOG_LEVEL,
    NOISY_LIBRARIES,
    _get_loki_handler,
    log_invocation_summary,
    log_job_execution,
    setup_logging,
)
from event_detector.core.results import DetectionResult, InvocationResult, JobExecutionResult


# Ensure clean logging state between tests
@pytest.fixture(autouse=True)
def reset_logging():
    # Force reconfiguration by removing existing handlers
    root = logging.getLogger()
    original_handlers = root.handlers[:]
    original_level = root.level
    root.handlers.clear()

    yield

    # Clean up after test
    root.handlers.clear()
    root.handlers.extend(original_handlers)
    root.setLevel(original_level)


@patch("event_detector.core.logging.Settings")
def test_setup_logging_default_level(MockSettings):
    """Test setup_logging configures logging with default level and works correctly."""
    # Arrange
    mock_settings_instance = MockSettings.return_value
    mock_settings_instance.get_log_level.return_value = DEFAULT_LOG_LEVEL

    # Act
    setup_logging()

    # Assert
    root_logger = logging.getLogger()
    assert root_logger.level == logging.INFO
    assert len(root_logger.handlers) >= 1  # At least console handler

    # Test that noisy libraries are suppressed
    for lib_name in NOISY_LIBRARIES:
        lib_logger = logging.getLogger(lib_name)
        assert lib_logger.level == logging.WARNING

    assert isinstance(root_logger.handlers[0], logging.StreamHandler)


@patch("event_detector.core.logging.Settings")
def test_setup_logging_specific_level(MockSettings):
    """Test setup_logging uses the level provided by settings."""
    mock_settings_instance = MockSettings.return_value
    mock_settings_instance.get_log_level.return_value = "DEBUG"

    setup_logging()

    assert logging.getLogger().level == logging.DEBUG


@patch("event_detector.core.logging.Settings")
def test_setup_logging_invalid_level(MockSettings, capsys):
    """Test setup_logging defaults to INFO and warns on invalid level."""
    invalid_level = "LOUD"
    mock_settings_instance = MockSettings.return_value
    mock_settings_instance.get_log_level.return_value = invalid_level

    setup_logging()

    captured = capsys.readouterr()
    assert f"WARNING: Invalid LOG_LEVEL '{invalid_level}'" in captured.err
    assert logging.getLogger().level == logging.INFO


# --- Loki ---


def test_get_loki_handler_success():
    """Test _get_loki_handler creates a handler pointed at the push endpoint."""
    mock_handler = MagicMock()
    with patch("logging_loki.LokiHandler", return_value=mock_handler) as MockLokiHandler:
        handler = _get_loki_handler("http://localhost:3100", "test_app")

        assert handler == mock_handler
        MockLokiHandler.assert_called_once_with(
            url="http://localhost:3100/loki/api/v1/push",
            tags={"application": "test_app", "environment": "development"},
            version="1",
        )
        assert mock_handler.setFormatter.call_count == 1


def test_get_loki_handler_invalid_url():
    """Test _get_loki_handler returns None for invalid URLs."""
    with patch("logging_loki.LokiHandler"):
        assert _get_loki_handler("localhost:3100") is None
        assert _get_loki_handler("") is None


def test_get_loki_handler_exception():
    """Test _get_loki_handler returns None on unexpected exceptions."""
    with patch("logging_loki.LokiHandler", side_effect=Exception("Test error")):
        assert _get_loki_handler("http://localhost:3100") is None


@patch("event_detector.core.logging.Settings")
def test_setup_logging_with_loki(MockSettings, monkeypatch):
    """Test setup_logging adds the Loki handler when LOKI_URL is set."""
    MockSettings.return_value.get_log_level.return_value = DEFAULT_LOG_LEVEL
    monkeypatch.setenv("LOKI_URL", "http://localhost:3100")

    mock_loki_handler = MagicMock()
    mock_loki_handler.level = logging.INFO
    with patch("event_detector.core.logging._get_loki_handler", return_value=mock_loki_handler):
        setup_logging()

    assert mock_loki_handler in logging.getLogger().handlers


# --- Invocation and job logging ---


def test_log_job_execution_levels(caplog):
    with caplog.at_level(logging.INFO, logger="event_detector.job"):
        log_job_execution("cid-1", "refund", "completed", duration_ms=12.5)
        log_job_execution("cid-1", "notify", "aborted", error="late")

    completed, aborted = caplog.records
    assert completed.levelno == logging.INFO
    assert completed.getMessage() == "[cid-1] Job refund completed"
    assert completed.duration_ms == "12.5"
    assert aborted.levelno == logging.ERROR
    assert aborted.error == "late"


def test_log_invocation_summary(caplog):
    result = InvocationResult(
        correlation_id="cid-1",
        events=[
            DetectionResult(
                event_name="orders.cancelled",
                detected=True,
                jobs=[
                    JobExecutionResult(name="refund", job_execution_id="j1", correlation_id="cid-1", completed=True),
                    JobExecutionResult(
                        name="notify", job_execution_id="j2", correlation_id="cid-1", aborted=True, error="late"
                    ),
                ],
            ),
            DetectionResult(event_name="users.activated", detected=True),
            DetectionResult(event_name="orders.shipped"),
        ],
        timed_out=True,
    )

    with caplog.at_level(logging.INFO, logger="event_detector.invocation"):
        log_invocation_summary(result)

    assert "Detected 2 of 3 events" in caplog.text
    assert "(timed out)" in caplog.text
    assert "[ok] refund" in caplog.text
    assert "[aborted] notify" in caplog.text
    assert "No jobs" in caplog.text
    assert "orders.shipped" not in caplog.text
