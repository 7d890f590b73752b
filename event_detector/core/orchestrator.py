# Runs the jobs of detected events under per-job and invocation-wide deadlines.

import asyncio
import logging
import math
import time
from datetime import UTC, datetime
from typing import Any, Dict, List, Optional, Sequence, Set

from event_detector.core.cancellation import CancellationToken
from event_detector.core.change_event import ChangeEvent
from event_detector.core.correlation import generate_job_execution_id
from event_detector.core.jobs import (
    InvocationContext,
    JobContext,
    JobDescriptor,
    as_job_descriptor,
    call_maybe_async,
    merge_job_options,
)
from event_detector.core.logging import log_job_execution
from event_detector.core.plugins import PluginBus
from event_detector.core.registry import EventDefinition
from event_detector.core.results import DetectionResult, JobExecutionResult
from event_detector.exceptions import HandlerError, JobCancelledError, JobError

logger = logging.getLogger(__name__)

NOT_ADMITTED_ERROR = "Job not started: invocation time budget exhausted"
HARD_DEADLINE_ERROR = "Job still running at the invocation's hard deadline"

# Jobs left running past the hard deadline; held until they finish.
_abandoned_tasks: Set[asyncio.Task] = set()


def _reap_abandoned(task: asyncio.Task) -> None:
    _abandoned_tasks.discard(task)
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error(f"Abandoned job task {task.get_name()} failed after the hard deadline: {error!r}", exc_info=error)


class _JobRun:
    """Bookkeeping for one admitted job, readable even if its task never finishes."""

    def __init__(self, descriptor: JobDescriptor, token: CancellationToken):
        self.descriptor = descriptor
        self.name = descriptor.name
        self.job_execution_id = generate_job_execution_id()
        self.token = token
        self.started_at = datetime.now(UTC)
        self.start = time.perf_counter()
        self.attempts = 0
        self.task: Optional[asyncio.Task] = None

    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self.start) * 1000


class JobOrchestrator:
    """
    Turns detected events into job executions.

    For each detected event the handler is called for its job list; all jobs of one
    event start together as tasks, and the job batches of different events run
    concurrently. Every job gets its own CancellationToken, linked to the invocation
    token and cancelled when the job's effective timeout elapses. Cancellation is
    advisory: the orchestrator never cancels tasks. It waits for jobs until the hard
    deadline and records any job still running then as aborted.
    """

    def __init__(self, plugin_bus: PluginBus):
        self.plugin_bus = plugin_bus

    async def run(
        self,
        detections: Sequence[DetectionResult],
        definitions: Dict[str, EventDefinition],
        change_event: ChangeEvent,
        invocation: InvocationContext,
    ) -> bool:
        """
        Run the jobs of every detected event, filling in `DetectionResult.jobs`.

        Args:
            detections: Results from the dispatcher; only detected ones are run.
            definitions: Event definitions by name.
            change_event: The change being processed.
            invocation: Context shared by every call of this invocation.

        Returns:
            True if any job could not be started or had to be abandoned for lack of time.
        """
        detected = [d for d in detections if d.detected]
        if not detected:
            return False

        outcomes = await asyncio.gather(
            *(self._run_event(definitions[d.event_name], d, change_event, invocation) for d in detected)
        )
        return any(outcomes)

    async def _call_handler(
        self,
        definition: EventDefinition,
        detection: DetectionResult,
        change_event: ChangeEvent,
        invocation: InvocationContext,
    ) -> Optional[List[JobDescriptor]]:
        correlation_id = invocation.correlation_id
        start = time.perf_counter()
        try:
            returned = await call_maybe_async(definition.handler, definition.name, change_event, invocation)
            descriptors = [as_job_descriptor(item) for item in (returned or [])]
        except Exception as e:
            detection.handler_duration_ms = (time.perf_counter() - start) * 1000
            detection.error = str(e)
            detection.error_type = type(e).__name__
            logger.error(
                f"[{correlation_id}] Handler for {definition.name} failed: {e}",
                exc_info=True,
                extra={"correlation_id": correlation_id, "event_name": definition.name},
            )
            error = HandlerError(f"Handler for {definition.name} failed: {e}", event_name=definition.name)
            error.__cause__ = e
            await self.plugin_bus.on_error(error, "handler", correlation_id)
            return None

        detection.handler_duration_ms = (time.perf_counter() - start) * 1000
        return descriptors

    async def _run_event(
        self,
        definition: EventDefinition,
        detection: DetectionResult,
        change_event: ChangeEvent,
        invocation: InvocationContext,
    ) -> bool:
        correlation_id = invocation.correlation_id
        descriptors = await self._call_handler(definition, detection, change_event, invocation)
        if not descriptors:
            return False

        if not invocation.deadline.has_budget():
            logger.warning(
                f"[{correlation_id}] Time budget exhausted; not starting {len(descriptors)} jobs of {definition.name}",
                extra={"correlation_id": correlation_id, "event_name": definition.name},
            )
            detection.jobs = [self._not_admitted(d, correlation_id) for d in descriptors]
            return True

        logger.info(
            f"[{correlation_id}] Starting {len(descriptors)} jobs for {definition.name}",
            extra={"correlation_id": correlation_id, "event_name": definition.name},
        )

        runs: List[Optional[_JobRun]] = []
        for descriptor in descriptors:
            if not invocation.deadline.has_budget():
                runs.append(None)
                continue
            run = _JobRun(descriptor, CancellationToken(parent=invocation.cancellation_token))
            run.task = asyncio.create_task(
                self._run_job(run, definition.name, change_event, invocation), name=f"job:{definition.name}:{run.name}"
            )
            runs.append(run)

        tasks = [run.task for run in runs if run is not None]
        hard_remaining_ms = invocation.deadline.hard_remaining_ms()
        timeout = None if math.isinf(hard_remaining_ms) else hard_remaining_ms / 1000
        if tasks:
            await asyncio.wait(tasks, timeout=timeout)

        results: List[JobExecutionResult] = []
        timed_out = False
        for descriptor, run in zip(descriptors, runs):
            if run is None:
                results.append(self._not_admitted(descriptor, correlation_id))
                timed_out = True
            elif run.task.done():
                results.append(self._collect(run, correlation_id))
            else:
                results.append(self._abandoned(run, correlation_id))
                timed_out = True
        detection.jobs = results
        return timed_out

    async def _run_job(
        self,
        run: _JobRun,
        event_name: str,
        change_event: ChangeEvent,
        invocation: InvocationContext,
    ) -> JobExecutionResult:
        correlation_id = invocation.correlation_id
        descriptor = run.descriptor
        options = merge_job_options(descriptor, invocation)
        timeout_ms = invocation.deadline.job_timeout_ms(descriptor.options.timeout_ms)

        timer: Optional[asyncio.TimerHandle] = None
        if timeout_ms is not None:
            timer = asyncio.get_running_loop().call_later(
                timeout_ms / 1000, run.token.cancel, f"Job {run.name} exceeded its {timeout_ms:.0f} ms timeout"
            )

        job_context = JobContext(
            invocation=invocation,
            change_event=change_event,
            event_name=event_name,
            job_name=run.name,
            job_execution_id=run.job_execution_id,
            options=options,
            cancellation_token=run.token,
            timeout_ms=timeout_ms,
        )

        await self.plugin_bus.on_job_start(run.name, job_context.options, event_name, change_event, correlation_id)
        log_job_execution(correlation_id, run.name, "started", details={"event_name": event_name})

        value: Any = None
        error: Optional[Exception] = None
        try:
            while True:
                run.attempts += 1
                try:
                    value = await call_maybe_async(descriptor.func, event_name, change_event, job_context)
                    error = None
                    break
                except JobCancelledError as e:
                    error = e
                    break
                except Exception as e:
                    error = e
                    if run.attempts > descriptor.options.retries or run.token.is_cancelled:
                        break
                    logger.warning(
                        f"[{correlation_id}] Job {run.name} failed on attempt {run.attempts}, retrying: {e}",
                        extra={"correlation_id": correlation_id, "job_name": run.name},
                    )
        finally:
            if timer is not None:
                timer.cancel()
            run.token.detach()

        result = self._build_result(run, correlation_id, value, error)

        status = "completed" if result.completed else ("aborted" if result.aborted else "error")
        log_job_execution(correlation_id, run.name, status, duration_ms=result.duration_ms, error=result.error)
        if isinstance(error, Exception) and not isinstance(error, JobCancelledError):
            job_error = JobError(f"Job {run.name} failed: {error}", job_name=run.name, event_name=event_name)
            job_error.__cause__ = error
            await self.plugin_bus.on_error(job_error, "job", correlation_id)

        await job_context.log.drain()
        await self.plugin_bus.on_job_end(run.name, result, event_name, change_event, correlation_id)
        return result

    @staticmethod
    def _build_result(
        run: _JobRun, correlation_id: str, value: Any, error: Optional[Exception]
    ) -> JobExecutionResult:
        common = dict(
            name=run.name,
            job_execution_id=run.job_execution_id,
            correlation_id=correlation_id,
            started_at=run.started_at,
            ended_at=datetime.now(UTC),
            duration_ms=run.elapsed_ms(),
            attempts=run.attempts,
        )
        if isinstance(error, JobCancelledError):
            return JobExecutionResult(
                **common, aborted=True, error=f"Job aborted: {error.reason}", error_type=type(error).__name__
            )
        if error is not None:
            return JobExecutionResult(**common, error=str(error), error_type=type(error).__name__)
        if run.token.is_cancelled:
            # Resolved, but only after its deadline passed.
            return JobExecutionResult(
                **common, aborted=True, result=value, error=f"Job finished after cancellation: {run.token.reason}"
            )
        return JobExecutionResult(**common, completed=True, result=value)

    @staticmethod
    def _collect(run: _JobRun, correlation_id: str) -> JobExecutionResult:
        if run.task.cancelled():
            return JobOrchestrator._build_result(run, correlation_id, None, JobCancelledError("Job task was cancelled"))
        exc = run.task.exception()
        if exc is not None:
            logger.error(f"[{correlation_id}] Job {run.name} crashed outside its own error handling: {exc}")
            return JobOrchestrator._build_result(run, correlation_id, None, exc)
        return run.task.result()

    @staticmethod
    def _not_admitted(descriptor: JobDescriptor, correlation_id: str) -> JobExecutionResult:
        return JobExecutionResult(
            name=descriptor.name,
            job_execution_id=generate_job_execution_id(),
            correlation_id=correlation_id,
            started=False,
            aborted=True,
            error=NOT_ADMITTED_ERROR,
        )

    @staticmethod
    def _abandoned(run: _JobRun, correlation_id: str) -> JobExecutionResult:
        run.token.cancel(HARD_DEADLINE_ERROR)
        if run.task is not None:
            _abandoned_tasks.add(run.task)
            run.task.add_done_callback(_reap_abandoned)
        logger.error(
            f"[{correlation_id}] Job {run.name} did not finish before the hard deadline; leaving it running",
            extra={"correlation_id": correlation_id, "job_name": run.name},
        )
        return JobExecutionResult(
            name=run.name,
            job_execution_id=run.job_execution_id,
            correlation_id=correlation_id,
            started_at=run.started_at,
            ended_at=datetime.now(UTC),
            duration_ms=run.elapsed_ms(),
            aborted=True,
            error=HARD_DEADLINE_ERROR,
            attempts=run.attempts,
        )
