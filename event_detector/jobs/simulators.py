# Stand-in jobs for trying out event definitions without real side effects.

from typing import Any

from event_detector.core.change_event import ChangeEvent
from event_detector.core.jobs import JobContext
from event_detector.exceptions import JobCancelledError

DEFAULT_MESSAGE = "Job simulator"
DEFAULT_DELAY_MS = 0


async def job_simulator(event_name: str, change_event: ChangeEvent, job_context: JobContext) -> str:
    """Wait `delay` ms (stopping early on cancellation) and return "<message> complete!".

    Options:
        message: Text to return. Default "Job simulator".
        delay: Milliseconds to wait. Default 0.

    Raises:
        JobCancelledError: If the job was cancelled while waiting.
    """
    message = job_context.get("message", DEFAULT_MESSAGE)
    delay_ms = float(job_context.get("delay", DEFAULT_DELAY_MS))
    job_context.log.debug(f"{message} waiting {delay_ms:.0f} ms", {"event_name": event_name})

    if delay_ms > 0 and not await job_context.cancellation_token.sleep(delay_ms / 1000):
        raise JobCancelledError(job_context.cancellation_token.reason or "Job cancelled", job_name=job_context.job_name)

    job_context.log.info(f"{message} complete!")
    return f"{message} complete!"


async def failed_job_simulator(event_name: str, change_event: ChangeEvent, job_context: JobContext) -> Any:
    """Wait `delay` ms, then fail with "failed_job_simulator failed!"."""
    delay_ms = float(job_context.get("delay", DEFAULT_DELAY_MS))
    if delay_ms > 0:
        await job_context.cancellation_token.sleep(delay_ms / 1000)
    raise RuntimeError("failed_job_simulator failed!")
