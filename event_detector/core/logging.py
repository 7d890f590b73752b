# Centralized logging configuration for the event_detector package.

import logging
import os
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Dict, Optional
from urllib.parse import urlparse

from event_detector.settings import Settings

if TYPE_CHECKING:
    from event_detector.core.results import InvocationResult

# Recommended format
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Default level if LOG_LEVEL env var is not set
DEFAULT_LOG_LEVEL = "INFO"

# Valid log levels
VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

# Libraries known to be noisy that we might want to quiet down
NOISY_LIBRARIES = ["httpx", "httpcore", "uvicorn.access"]


def _get_loki_handler(loki_url: str, app_name: str = "event_detector"):
    """
    Create a Loki handler if python-logging-loki is available.

    Args:
        loki_url: URL of the Loki service
        app_name: Application name to use in Loki labels

    Returns:
        LokiHandler instance or None if not available
    """
    try:
        from logging_loki import LokiHandler

        # Parse URL to ensure it's valid
        parsed = urlparse(loki_url)
        if not parsed.scheme or not parsed.netloc:
            logging.getLogger(__name__).warning(f"Invalid Loki URL: {loki_url}")
            return None

        # Create handler with basic labels
        handler = LokiHandler(
            url=f"{loki_url}/loki/api/v1/push",
            tags={"application": app_name, "environment": os.getenv("ENVIRONMENT", "development")},
            version="1",
        )
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        return handler
    except ImportError:
        logging.getLogger(__name__).debug("python-logging-loki not available, skipping Loki handler")
        return None
    except Exception as e:
        logging.getLogger(__name__).warning(f"Failed to create Loki handler: {e}")
        return None


def setup_logging():
    """
    Configures logging for the application.

    Reads the desired log level from the LOG_LEVEL environment variable.
    Defaults to INFO if not set or invalid.
    Sets a standard format and directs logs to stderr.
    Sets louder libraries to WARNING level.
    Optionally configures Loki handler if LOKI_URL is set.
    """
    settings = Settings()
    log_level_name = settings.get_log_level(default=DEFAULT_LOG_LEVEL)

    if log_level_name not in VALID_LOG_LEVELS:
        print(
            f"WARNING: Invalid LOG_LEVEL '{log_level_name}'. "
            f"Defaulting to {DEFAULT_LOG_LEVEL}. "
            f"Valid levels are: {', '.join(VALID_LOG_LEVELS)}",
            file=sys.stderr,
        )
        log_level_name = DEFAULT_LOG_LEVEL

    log_level = logging.getLevelName(log_level_name)

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Clear any existing handlers
    root_logger.handlers.clear()

    # Console handler
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(console_handler)

    # Loki handler if configured
    loki_url = os.getenv("LOKI_URL")
    if loki_url:
        loki_handler = _get_loki_handler(loki_url)
        if loki_handler:
            root_logger.addHandler(loki_handler)
            logging.getLogger(__name__).info(f"Loki logging configured for {loki_url}")

    # Quiet down noisy libraries
    for lib_name in NOISY_LIBRARIES:
        logging.getLogger(lib_name).setLevel(logging.WARNING)

    # Log that configuration is complete (useful for debugging setup issues)
    logging.getLogger(__name__).info(f"Logging configured with level {log_level_name}.")


# Invocation and Job Logging Utilities


def log_invocation_state(correlation_id: str, stage: str, details: Dict[str, Any]) -> None:
    """Log invocation state at various stages of processing."""
    logger = logging.getLogger("event_detector.invocation")
    logger.debug(
        f"[{correlation_id}] Invocation state at {stage}",
        extra={"stage": stage, "timestamp": datetime.now(UTC).isoformat(), **details},
    )


def log_job_execution(
    correlation_id: str,
    job_name: str,
    status: str,
    duration_ms: Optional[float] = None,
    error: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> None:
    """Log job execution details."""
    logger = logging.getLogger("event_detector.job")
    log_data = {
        "correlation_id": correlation_id,
        "job_name": job_name,
        "status": status,
    }

    if duration_ms is not None:
        log_data["duration_ms"] = str(duration_ms)

    if error:
        log_data["error"] = error

    if details:
        log_data.update(details)

    if status in ("error", "aborted"):
        logger.error(f"[{correlation_id}] Job {job_name} {status}", extra=log_data)
    else:
        logger.info(f"[{correlation_id}] Job {job_name} {status}", extra=log_data)


def log_invocation_summary(result: "InvocationResult") -> None:
    """Write out which events were detected and what their jobs produced."""
    logger = logging.getLogger("event_detector.invocation")
    detected = result.detected_events
    logger.info(
        f"[{result.correlation_id}] Detected {len(detected)} of {len(result.events)} events "
        f"in {result.total_duration_ms:.0f} ms" + (" (timed out)" if result.timed_out else "")
    )

    for event in detected:
        logger.info(f"[{result.correlation_id}]    {event.event_name}")
        if not event.jobs:
            logger.info(f"[{result.correlation_id}]       No jobs")
            continue
        for job in event.jobs:
            status = "ok" if job.completed else ("aborted" if job.aborted else "failed")
            logger.info(f"[{result.correlation_id}]       [{status}] {job.name} {job.duration_ms:.0f} ms")
            if job.error:
                logger.info(f"[{result.correlation_id}]             {job.error}")
