# Evaluates event detectors against a change event.

import logging
import time
from typing import List, Sequence, Tuple

from event_detector.core.change_event import ChangeEvent
from event_detector.core.jobs import InvocationContext, call_maybe_async
from event_detector.core.plugins import PluginBus
from event_detector.core.registry import EventDefinition
from event_detector.core.results import DetectionResult
from event_detector.exceptions import DetectorError

logger = logging.getLogger(__name__)


class DetectionDispatcher:
    """
    Runs each candidate's detector, one after another, in registration order.

    A detector that raises is recorded on its own DetectionResult and does not stop
    the others. Before each detector the invocation's deadline is consulted; once the
    budget is gone the remaining candidates are recorded as skipped.

    Attributes:
        plugin_bus (PluginBus): Receives on_detection_end and on_error notifications.
    """

    def __init__(self, plugin_bus: PluginBus):
        self.plugin_bus = plugin_bus

    async def dispatch(
        self,
        candidates: Sequence[EventDefinition],
        change_event: ChangeEvent,
        invocation: InvocationContext,
    ) -> Tuple[List[DetectionResult], bool]:
        """
        Evaluate every candidate.

        Args:
            candidates: Event definitions in registration order.
            change_event: The change being evaluated.
            invocation: Context shared by every call of this invocation.

        Returns:
            The DetectionResults in candidate order, and whether the budget ran out.
        """
        correlation_id = invocation.correlation_id
        results: List[DetectionResult] = []
        timed_out = False

        for i, definition in enumerate(candidates):
            if not invocation.deadline.has_budget():
                skipped = [DetectionResult(event_name=d.name, skipped=True) for d in candidates[i:]]
                logger.warning(
                    f"[{correlation_id}] Time budget exhausted; skipping detection of "
                    f"{len(skipped)} remaining events",
                    extra={"correlation_id": correlation_id, "skipped": [r.event_name for r in skipped]},
                )
                results.extend(skipped)
                timed_out = True
                break

            result = await self._detect(definition, change_event, invocation)
            results.append(result)
            await self.plugin_bus.on_detection_end(definition.name, result, change_event, correlation_id)

        detected = [r.event_name for r in results if r.detected]
        logger.info(
            f"[{correlation_id}] Detected {len(detected)} of {len(candidates)} events: {detected}",
            extra={"correlation_id": correlation_id, "detected": detected},
        )
        return results, timed_out

    async def _detect(
        self, definition: EventDefinition, change_event: ChangeEvent, invocation: InvocationContext
    ) -> DetectionResult:
        correlation_id = invocation.correlation_id
        start = time.perf_counter()
        try:
            detected = bool(await call_maybe_async(definition.detector, definition.name, change_event, invocation))
        except Exception as e:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.error(
                f"[{correlation_id}] Detector for {definition.name} failed: {e}",
                exc_info=True,
                extra={"correlation_id": correlation_id, "event_name": definition.name},
            )
            error = DetectorError(f"Detector for {definition.name} failed: {e}", event_name=definition.name)
            error.__cause__ = e
            await self.plugin_bus.on_error(error, "detector", correlation_id)
            return DetectionResult(
                event_name=definition.name,
                detected=False,
                detection_duration_ms=duration_ms,
                error=str(e),
                error_type=type(e).__name__,
            )

        duration_ms = (time.perf_counter() - start) * 1000
        logger.debug(
            f"[{correlation_id}] Detector {definition.name}: {'detected' if detected else 'not detected'} "
            f"({duration_ms:.1f} ms)",
            extra={"correlation_id": correlation_id, "event_name": definition.name, "duration_ms": duration_ms},
        )
        return DetectionResult(event_name=definition.name, detected=detected, detection_duration_ms=duration_ms)
