import os
from typing import Optional

from dotenv import load_dotenv

# Load .env file variables into environment
load_dotenv(verbose=True)


def _get_int(name: str, default: Optional[int]) -> Optional[int]:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} environment variable must be an integer.")


class Settings:
    """Application configuration settings loaded from environment variables."""

    # --- Timeout Defaults ---
    DEFAULT_SAFETY_MARGIN_MS: int = 2000
    DEFAULT_MAX_EXECUTION_TIME_MS: int = 10000

    # --- Timeout Settings ---
    def get_timeouts_enabled(self) -> bool:
        """Returns True unless EVENT_DETECTOR_TIMEOUTS_ENABLED is explicitly false."""
        return os.getenv("EVENT_DETECTOR_TIMEOUTS_ENABLED", "true").lower() not in ("false", "0", "no")

    def get_safety_margin_ms(self) -> int:
        """Milliseconds kept in reserve before the host execution limit."""
        return _get_int("EVENT_DETECTOR_SAFETY_MARGIN_MS", self.DEFAULT_SAFETY_MARGIN_MS)

    def get_max_execution_time_ms(self) -> int:
        """Upper bound for one invocation when the host provides no live remaining-time callback."""
        return _get_int("EVENT_DETECTOR_MAX_EXECUTION_TIME_MS", self.DEFAULT_MAX_EXECUTION_TIME_MS)

    def get_max_job_execution_time_ms(self) -> Optional[int]:
        """Default per-job timeout, if set."""
        return _get_int("EVENT_DETECTOR_MAX_JOB_EXECUTION_TIME_MS", None)

    # --- Event Module Settings ---
    def get_event_modules(self) -> list[str]:
        """Returns the comma-separated list of dotted event module paths to load at startup."""
        raw = os.getenv("EVENT_DETECTOR_EVENT_MODULES", "")
        return [part.strip() for part in raw.split(",") if part.strip()]

    # --- Server Settings ---
    def get_host(self) -> str:
        return os.getenv("HOST", "0.0.0.0")  # nosec B104

    def get_port(self) -> int:
        """Returns the port for the webhook server."""
        try:
            return int(os.getenv("PORT", "8000"))
        except ValueError:
            raise ValueError(f"Invalid PORT value: {os.getenv('PORT')}")

    # --- Logging Settings ---
    def get_log_level(self, default: str = "INFO") -> str:
        """Gets the configured log level, defaulting if not set."""
        return os.getenv("LOG_LEVEL", default).upper()

    def get_run_mode(self) -> str:
        """Returns the run mode, defaulting to 'prod' if not set."""
        return os.getenv("RUN_MODE", "prod")

    def dev_mode(self) -> bool:
        """Returns True if the run mode is 'dev', False otherwise."""
        return self.get_run_mode() == "dev"
