# Entry point: one change event in, one InvocationResult out.

import logging
import time
from datetime import UTC, datetime
from typing import Any, Iterable, Mapping, Optional, Union

from pydantic import ValidationError

from event_detector.core.change_event import RawPayload, parse_change_event
from event_detector.core.correlation import CorrelationManager
from event_detector.core.deadline import DeadlineManager
from event_detector.core.dispatcher import DetectionDispatcher
from event_detector.core.jobs import InvocationContext, JobLogger
from event_detector.core.loader import EventModuleLoader
from event_detector.core.logging import log_invocation_state, log_invocation_summary
from event_detector.core.options import ProcessOptions
from event_detector.core.orchestrator import JobOrchestrator
from event_detector.core.plugins import BasePlugin, PluginBus
from event_detector.core.registry import Detector, EventDefinition, EventRegistry, Handler
from event_detector.core.results import InvocationResult
from event_detector.exceptions import ConfigurationError, PreConfigureError

logger = logging.getLogger(__name__)

OptionsInput = Union[ProcessOptions, Mapping[str, Any], None]


class Engine:
    """Owns an event registry and a plugin list, and processes change events against them.

    Register definitions and plugins once at startup; both are treated as read-only
    while invocations are running.

    Typical usage:
        engine = Engine()
        engine.register("orders.cancelled", detect_cancelled, handle_cancelled)
        result = await engine.process_event(payload, {"timeout_config": TimeoutConfig()})

    Args:
        plugins: Plugins notified on every invocation.
        module_loader: Loader used when an invocation sets `auto_load_event_modules`
            without its own `event_module_loader`.
        registry: Registry to use instead of a new empty one.
    """

    def __init__(
        self,
        plugins: Optional[Iterable[BasePlugin]] = None,
        module_loader: Optional[EventModuleLoader] = None,
        registry: Optional[EventRegistry] = None,
    ):
        self.registry = registry if registry is not None else EventRegistry()
        self.plugin_bus = PluginBus(plugins)
        self.module_loader = module_loader

    def register(self, name: str, detector: Detector, handler: Handler) -> EventDefinition:
        return self.registry.register(name, detector, handler)

    def use(self, plugin: BasePlugin) -> "Engine":
        self.plugin_bus.register(plugin)
        return self

    def load_event_modules(
        self, loader: Optional[EventModuleLoader] = None, directory: Optional[str] = None
    ) -> list[EventDefinition]:
        """Register the definitions discovered by `loader` (or the engine's module loader)."""
        loader = loader or self.module_loader
        if loader is None:
            raise ConfigurationError("Loading event modules requires an event module loader")
        return self.registry.load(loader, directory)

    async def process_event(self, raw_payload: RawPayload, options: OptionsInput = None) -> InvocationResult:
        """
        Detect the business events in one change and run their jobs.

        Args:
            raw_payload: The webhook body (dict, or its JSON text).
            options: ProcessOptions, or a mapping validated into one.

        Returns:
            The InvocationResult. Detector, handler and job failures and running out of
            time are reported in it rather than raised.

        Raises:
            PayloadParseError: If the payload is malformed.
            ConfigurationError: If the options are invalid or a plugin's
                on_pre_configure hook fails.
        """
        started_at = datetime.now(UTC)
        start = time.perf_counter()

        change_event = parse_change_event(raw_payload)
        options = self._coerce_options(options)

        plugin_bus = self.plugin_bus.extended(options.plugins)
        try:
            options = await plugin_bus.pre_configure(change_event, options)
        except PreConfigureError as e:
            logger.error(f"Invocation aborted before detection: {e}")
            await plugin_bus.on_error(e, "pre_configure", options.correlation_id)
            raise
        # Plugins supplied by on_pre_configure join for the rest of the invocation.
        plugin_bus = self.plugin_bus.extended(options.plugins)

        if options.auto_load_event_modules:
            self.load_event_modules(options.event_module_loader, options.event_modules_directory)

        correlation = CorrelationManager(options.correlation_id)
        correlation_id = correlation.correlation_id
        deadline = DeadlineManager(options.timeout_config)
        invocation = InvocationContext(
            correlation=correlation,
            deadline=deadline,
            log=JobLogger(correlation_id, plugin_bus=plugin_bus),
            context=options.context,
            source_tracking_token=options.source_tracking_token,
        )

        candidates = self.registry.candidates(options.listened_events)
        log_invocation_state(
            correlation_id,
            "start",
            {
                "operation": str(change_event.operation),
                "table": change_event.table.qualified_name,
                "source_id": change_event.source_id,
                "candidates": len(candidates),
                "plugins": len(plugin_bus),
            },
        )
        await plugin_bus.on_invocation_start(change_event, options, correlation_id)

        if not deadline.has_budget():
            logger.warning(
                f"[{correlation_id}] No execution time left at invocation start",
                extra={"correlation_id": correlation_id},
            )

        deadline.arm()
        try:
            detections, detection_timed_out = await DetectionDispatcher(plugin_bus).dispatch(
                candidates, change_event, invocation
            )
            jobs_timed_out = await JobOrchestrator(plugin_bus).run(
                detections, {d.name: d for d in candidates}, change_event, invocation
            )
        finally:
            deadline.disarm()
        await invocation.log.drain()

        result = InvocationResult(
            correlation_id=correlation_id,
            events=detections,
            total_duration_ms=(time.perf_counter() - start) * 1000,
            timed_out=detection_timed_out or jobs_timed_out or deadline.exhausted,
            started_at=started_at,
        )
        log_invocation_summary(result)
        await plugin_bus.on_invocation_complete(change_event, result, correlation_id)
        return result

    @staticmethod
    def _coerce_options(options: OptionsInput) -> ProcessOptions:
        try:
            return ProcessOptions.coerce(options)
        except (ValidationError, TypeError) as e:
            raise ConfigurationError(f"Invalid process options: {e}") from e


async def process_event(
    raw_payload: RawPayload, options: OptionsInput = None, engine: Optional[Engine] = None
) -> InvocationResult:
    """Process one change event with `engine`, or with a fresh Engine when none is given."""
    return await (engine or Engine()).process_event(raw_payload, options)

