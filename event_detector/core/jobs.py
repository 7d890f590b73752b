# Job descriptors and the contexts handed to detectors, handlers and jobs.

import asyncio
import functools
import inspect
import logging
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Mapping, Optional, Set, Union

from pydantic import BaseModel, ConfigDict, Field

from event_detector.core.cancellation import CancellationToken
from event_detector.core.change_event import ChangeEvent
from event_detector.core.correlation import CorrelationManager
from event_detector.core.tracking_token import TrackingToken

if TYPE_CHECKING:
    from event_detector.core.deadline import DeadlineManager
    from event_detector.core.plugins import PluginBus

logger = logging.getLogger(__name__)

ANONYMOUS_JOB_NAME = "anonymous"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

JobFunction = Callable[[str, ChangeEvent, "JobContext"], Union[Any, Awaitable[Any]]]


class JobOptions(BaseModel):
    """Static options of one job.

    Unknown keys are kept as free-form job parameters (e.g. `message`, `delay`).
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    name: Optional[str] = None
    timeout_ms: Optional[float] = Field(default=None, gt=0)
    retries: int = Field(default=0, ge=0)


class JobDescriptor(BaseModel):
    """A job function plus its static options, as returned by an event handler."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    func: Callable[..., Any]
    options: JobOptions = Field(default_factory=JobOptions)

    @property
    def name(self) -> str:
        return resolve_job_name(self.func, self.options)


def job(func: Callable[..., Any], **options: Any) -> JobDescriptor:
    """Describe a job for an event handler's job list.

    Example:
        return [job(send_email, name="notify", timeout_ms=3000, template="cancelled")]
    """
    return JobDescriptor(func=func, options=JobOptions(**options))


def as_job_descriptor(item: Union[JobDescriptor, Callable[..., Any]]) -> JobDescriptor:
    if isinstance(item, JobDescriptor):
        return item
    if callable(item):
        return JobDescriptor(func=item)
    raise TypeError(f"Handler returned {type(item).__name__}, expected a JobDescriptor or callable")


def resolve_job_name(func: Callable[..., Any], options: Optional[JobOptions] = None) -> str:
    if options is not None and options.name:
        return options.name
    while isinstance(func, functools.partial):
        func = func.func
    name = getattr(func, "__name__", None)
    if not name or name == "<lambda>":
        return ANONYMOUS_JOB_NAME
    return name


class JobLogger:
    """Structured logger injected into detectors, handlers and jobs.

    Messages go to the standard logging module and are forwarded to every plugin's
    `on_log` hook. Hook calls are scheduled on the running loop; `drain()` waits for them.
    """

    def __init__(
        self,
        correlation_id: str,
        job_name: Optional[str] = None,
        plugin_bus: Optional["PluginBus"] = None,
        target: Optional[logging.Logger] = None,
    ):
        self.correlation_id = correlation_id
        self.job_name = job_name
        self._plugin_bus = plugin_bus
        self._logger = target or logging.getLogger("event_detector.job")
        self._pending: Set[asyncio.Task] = set()

    def log(self, level: str, message: str, data: Optional[Dict[str, Any]] = None) -> None:
        level = level.lower()
        prefix = f"[{self.correlation_id}]" + (f" [{self.job_name}]" if self.job_name else "")
        self._logger.log(
            _LEVELS.get(level, logging.INFO),
            f"{prefix} {message}",
            extra={"correlation_id": self.correlation_id, "job_name": self.job_name, "data": data},
        )
        if self._plugin_bus is None or not self._plugin_bus.plugins:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(
            self._plugin_bus.on_log(level, message, data or {}, self.job_name, self.correlation_id)
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def debug(self, message: str, data: Optional[Dict[str, Any]] = None) -> None:
        self.log("debug", message, data)

    def info(self, message: str, data: Optional[Dict[str, Any]] = None) -> None:
        self.log("info", message, data)

    def warning(self, message: str, data: Optional[Dict[str, Any]] = None) -> None:
        self.log("warning", message, data)

    def error(self, message: str, data: Optional[Dict[str, Any]] = None) -> None:
        self.log("error", message, data)

    def child(self, job_name: str) -> "JobLogger":
        return JobLogger(self.correlation_id, job_name=job_name, plugin_bus=self._plugin_bus, target=self._logger)

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


class InvocationContext:
    """What detectors and handlers receive besides the event name and the change.

    Attributes:
        correlation_id: Correlation id of the invocation.
        context: Opaque user metadata from ProcessOptions.
        log: Structured logger tagged with the correlation id.
        deadline: The invocation's DeadlineManager.
        correlation: The invocation's CorrelationManager.
        source_tracking_token: Token of the job that caused this change, if known.
    """

    def __init__(
        self,
        correlation: CorrelationManager,
        deadline: "DeadlineManager",
        log: JobLogger,
        context: Optional[Mapping[str, Any]] = None,
        source_tracking_token: Optional[str] = None,
    ):
        self.correlation = correlation
        self.deadline = deadline
        self.log = log
        self.context = MappingProxyType(dict(context or {}))
        self.source_tracking_token = source_tracking_token

    @property
    def correlation_id(self) -> str:
        return self.correlation.correlation_id

    @property
    def cancellation_token(self) -> CancellationToken:
        return self.deadline.token

    def remaining_ms(self) -> float:
        return self.deadline.remaining_ms()


class JobContext:
    """Per-job context: the third argument of every job function."""

    def __init__(
        self,
        invocation: InvocationContext,
        change_event: ChangeEvent,
        event_name: str,
        job_name: str,
        job_execution_id: str,
        options: Mapping[str, Any],
        cancellation_token: CancellationToken,
        timeout_ms: Optional[float] = None,
        log: Optional[JobLogger] = None,
    ):
        self._invocation = invocation
        self._change_event = change_event
        self.event_name = event_name
        self.job_name = job_name
        self.job_execution_id = job_execution_id
        self.options = MappingProxyType(dict(options))
        self.cancellation_token = cancellation_token
        self.timeout_ms = timeout_ms
        self.log = log or invocation.log.child(job_name)

    @property
    def correlation_id(self) -> str:
        return self._invocation.correlation_id

    @property
    def context(self) -> Mapping[str, Any]:
        return self._invocation.context

    @property
    def is_cancelled(self) -> bool:
        return self.cancellation_token.is_cancelled

    def get(self, key: str, default: Any = None) -> Any:
        return self.options.get(key, default)

    def tracking_token(self, fallback_source: Optional[str] = None) -> TrackingToken:
        """Token to stamp into rows this job writes, continuing any existing lineage."""
        return self._invocation.correlation.for_job(
            self._change_event, self.options, fallback_source=fallback_source, job_execution_id=self.job_execution_id
        )


def merge_job_options(descriptor: JobDescriptor, invocation: InvocationContext) -> Dict[str, Any]:
    """Options passed to a job: invocation-level lineage plus the job's own options."""
    merged: Dict[str, Any] = {}
    if invocation.source_tracking_token:
        merged["source_tracking_token"] = invocation.source_tracking_token
    merged.update(descriptor.options.model_dump(exclude_none=True))
    return merged


async def call_maybe_async(func: Callable[..., Any], *args: Any) -> Any:
    """Call a sync or async user function and return its result."""
    result = func(*args)
    if inspect.isawaitable(result):
        result = await result
    return result
