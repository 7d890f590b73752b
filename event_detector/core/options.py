# Options accepted by Engine.process_event.

from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from event_detector.core.deadline import TimeoutConfig
from event_detector.core.plugins import BasePlugin


def _reject_callables(value: Any, path: str) -> None:
    if callable(value) and not isinstance(value, type):
        raise ValueError(f"context must not contain functions (found one at {path})")
    if isinstance(value, Mapping):
        for key, item in value.items():
            _reject_callables(item, f"{path}.{key}")
    elif isinstance(value, (list, tuple, set)):
        for index, item in enumerate(value):
            _reject_callables(item, f"{path}[{index}]")


class ProcessOptions(BaseModel):
    """Per-invocation options.

    Attributes:
        auto_load_event_modules: Ask `event_module_loader` to load definitions before dispatch.
        event_modules_directory: Location handed to the loader.
        event_module_loader: External collaborator that discovers event modules.
        listened_events: Optional allow-list of event names to evaluate.
        context: Opaque metadata passed through to detectors, handlers and jobs.
        correlation_id: Caller-supplied correlation id, used (lowercased) when it is a UUID.
        plugins: Extra plugins for this invocation, run after the engine's plugins.
        source_tracking_token: Token of the job whose mutation caused this change.
        timeout_config: Execution-time budget. No config means no deadline.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    auto_load_event_modules: bool = False
    event_modules_directory: Optional[str] = None
    event_module_loader: Optional[Any] = None
    listened_events: Optional[List[str]] = None
    context: Dict[str, Any] = Field(default_factory=dict)
    correlation_id: Optional[str] = None
    plugins: List[BasePlugin] = Field(default_factory=list)
    source_tracking_token: Optional[str] = None
    timeout_config: Optional[TimeoutConfig] = None

    @field_validator("context", mode="after")
    @classmethod
    def _context_is_data_only(cls, value: Dict[str, Any]) -> Dict[str, Any]:
        _reject_callables(value, "context")
        return value

    @field_validator("event_module_loader", mode="after")
    @classmethod
    def _loader_is_complete(cls, value: Any) -> Any:
        if value is not None and not all(callable(getattr(value, attr, None)) for attr in ("discover", "load_module")):
            raise ValueError("event_module_loader must provide discover() and load_module() methods")
        return value

    @classmethod
    def coerce(cls, options: Union["ProcessOptions", Mapping[str, Any], None]) -> "ProcessOptions":
        """Accept a ProcessOptions, a plain mapping, or None."""
        if options is None:
            return cls()
        if isinstance(options, cls):
            return options
        return cls.model_validate(dict(options))

    def merged(self, update: Union["ProcessOptions", Mapping[str, Any]]) -> "ProcessOptions":
        """Return new options with `update` applied and re-validated."""
        if isinstance(update, ProcessOptions):
            return update
        if not isinstance(update, Mapping):
            raise TypeError(f"Expected ProcessOptions or a mapping, got {type(update).__name__}")
        values = {name: getattr(self, name) for name in type(self).model_fields}
        values.update(update)
        return type(self).model_validate(values)
