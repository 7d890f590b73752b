# Result models returned by one invocation.

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_serializer, model_validator

from event_detector.helpers.serialization import to_serializable


class JobExecutionResult(BaseModel):
    """Outcome of one job.

    Attributes:
        name: Job name (explicit option, function name, or "anonymous").
        job_execution_id: Unique id of this execution.
        correlation_id: Correlation id of the invocation that ran the job.
        started: False when the job was never admitted because the budget ran out.
        completed: True only when the job returned before its deadline.
        aborted: True when the job was not admitted, observed cancellation, or
            resolved after its deadline.
        result: Return value of the job, kept even when it resolved late.
        error: Error message when the job failed or was aborted.
        attempts: Number of times the job function was called.
    """

    name: str
    job_execution_id: str
    correlation_id: str
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    duration_ms: float = Field(default=0.0, ge=0)
    started: bool = True
    completed: bool = False
    aborted: bool = False
    result: Any = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    attempts: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _aborted_is_never_completed(self) -> "JobExecutionResult":
        if self.aborted and self.completed:
            raise ValueError("An aborted job cannot be completed")
        return self

    @field_serializer("result")
    def _serialize_result(self, value: Any) -> Any:
        return to_serializable(value)


class DetectionResult(BaseModel):
    """Outcome of one event definition: detection plus the jobs it triggered."""

    event_name: str
    detected: bool = False
    detection_duration_ms: float = Field(default=0.0, ge=0)
    error: Optional[str] = None
    error_type: Optional[str] = None
    skipped: bool = False
    handler_duration_ms: Optional[float] = Field(default=None, ge=0)
    jobs: List[JobExecutionResult] = Field(default_factory=list)


class InvocationResult(BaseModel):
    """The single result of one `process_event` call."""

    correlation_id: str = Field(min_length=1)
    events: List[DetectionResult] = Field(default_factory=list)
    total_duration_ms: float = Field(default=0.0, ge=0)
    timed_out: bool = False
    started_at: Optional[datetime] = None

    @property
    def detected_events(self) -> List[DetectionResult]:
        return [event for event in self.events if event.detected]

    @property
    def jobs(self) -> List[JobExecutionResult]:
        return [job for event in self.events for job in event.jobs]
