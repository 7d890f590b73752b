"""Database change-event webhook engine: detect business events, run their jobs."""

from event_detector.core.cancellation import CancellationToken
from event_detector.core.change_event import ActorIdentity, ChangeEvent, Operation, TableIdentity, parse_change_event
from event_detector.core.correlation import CorrelationManager
from event_detector.core.deadline import DeadlineManager, TimeoutConfig
from event_detector.core.engine import Engine, process_event
from event_detector.core.jobs import InvocationContext, JobContext, JobDescriptor, JobOptions, job
from event_detector.core.loader import EventModuleLoader, ImportEventModuleLoader
from event_detector.core.options import ProcessOptions
from event_detector.core.plugins import BasePlugin, PluginBus
from event_detector.core.registry import EventDefinition, EventRegistry
from event_detector.core.results import DetectionResult, InvocationResult, JobExecutionResult
from event_detector.core.tracking_token import TrackingToken
from event_detector.exceptions import (
    ConfigurationError,
    DetectorError,
    EventDetectorError,
    EventModuleLoadError,
    EventRegistrationError,
    HandlerError,
    JobCancelledError,
    JobError,
    PayloadParseError,
    PreConfigureError,
    TrackingTokenFormatError,
)

__all__ = [
    "ActorIdentity",
    "BasePlugin",
    "CancellationToken",
    "ChangeEvent",
    "ConfigurationError",
    "CorrelationManager",
    "DeadlineManager",
    "DetectionResult",
    "DetectorError",
    "Engine",
    "EventDefinition",
    "EventDetectorError",
    "EventModuleLoadError",
    "EventModuleLoader",
    "EventRegistrationError",
    "EventRegistry",
    "HandlerError",
    "ImportEventModuleLoader",
    "InvocationContext",
    "InvocationResult",
    "JobCancelledError",
    "JobContext",
    "JobDescriptor",
    "JobError",
    "JobExecutionResult",
    "JobOptions",
    "Operation",
    "PayloadParseError",
    "PluginBus",
    "PreConfigureError",
    "ProcessOptions",
    "TableIdentity",
    "TimeoutConfig",
    "TrackingToken",
    "TrackingTokenFormatError",
    "job",
    "parse_change_event",
    "process_event",
]
