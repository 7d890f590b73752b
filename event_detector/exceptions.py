# Event detector exceptions.

from typing import Any, Optional


class EventDetectorError(Exception):
    """Base exception for all event detector errors."""

    def __init__(self, *args, event_name: str | None = None, detail: str | None = None):
        super().__init__(*args)
        self.event_name = event_name
        # Use the first arg as detail if detail kwarg is not provided and args exist
        self.detail = detail or (args[0] if args else None)


class PayloadParseError(ValueError, EventDetectorError):
    """Raised when a webhook payload is missing required fields or is malformed.

    This is the only fatal error of an invocation: nothing downstream runs.
    """

    def __init__(self, *args, errors: Optional[list[dict[str, Any]]] = None, detail: str | None = None):
        EventDetectorError.__init__(self, *args, detail=detail)
        self.errors = errors or []


class ConfigurationError(EventDetectorError):
    """Raised when invocation options are invalid."""

    pass


class PreConfigureError(ConfigurationError):
    """Raised when a plugin's on_pre_configure hook fails before dispatch begins."""

    def __init__(self, *args, plugin_name: str | None = None, detail: str | None = None):
        super().__init__(*args, detail=detail)
        self.plugin_name = plugin_name


class EventRegistrationError(ValueError, EventDetectorError):
    """Raised when an event definition cannot be registered (e.g. duplicate name)."""

    def __init__(self, *args, event_name: str | None = None, detail: str | None = None):
        EventDetectorError.__init__(self, *args, event_name=event_name, detail=detail)


class EventModuleLoadError(EventDetectorError):
    """Raised when a single event module fails to load.

    The registry logs it as a warning and skips that definition.
    """

    def __init__(self, *args, event_name: str | None = None, module_path: str | None = None, detail: str | None = None):
        super().__init__(*args, event_name=event_name, detail=detail)
        self.module_path = module_path


class DetectorError(EventDetectorError):
    """A detector predicate raised. Isolated to its DetectionResult."""

    pass


class HandlerError(EventDetectorError):
    """An event handler raised while building its job list. Isolated to its DetectionResult."""

    pass


class JobError(EventDetectorError):
    """A job raised. Isolated to its JobExecutionResult."""

    def __init__(self, *args, job_name: str | None = None, event_name: str | None = None, detail: str | None = None):
        super().__init__(*args, event_name=event_name, detail=detail)
        self.job_name = job_name


class JobCancelledError(JobError):
    """Raised by a job that observed its cancellation token."""

    def __init__(self, reason: str = "Job cancelled", job_name: str | None = None):
        super().__init__(reason, job_name=job_name, detail=reason)
        self.reason = reason


class TrackingTokenFormatError(ValueError, EventDetectorError):
    """Raised when a tracking token string fails format validation."""

    def __init__(self, *args, token: Any = None, detail: str | None = None):
        EventDetectorError.__init__(self, *args, detail=detail)
        self.token = token
