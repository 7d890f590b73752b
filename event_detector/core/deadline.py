# Execution-time budget tracking for serverless invocations.

import asyncio
import logging
import math
import time
from datetime import timedelta
from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict, Field

from event_detector.core.cancellation import CancellationToken
from event_detector.settings import Settings

logger = logging.getLogger(__name__)

BUDGET_EXHAUSTED_REASON = "Invocation execution budget exhausted"


class TimeoutConfig(BaseModel):
    """Timeout settings for one invocation.

    Attributes:
        enabled: When False the invocation runs without any deadline.
        get_remaining_time_in_millis: Live callback from the host (e.g. a Lambda
            context) reporting how long the function may still run. When absent, the
            remaining runtime is derived from `max_execution_time_ms`.
        safety_margin_ms: Buffer kept before the host limit; no new work starts inside it.
        max_execution_time_ms: Upper bound on the invocation's own budget.
        max_job_execution_time_ms: Default per-job timeout for jobs that declare none.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    enabled: bool = True
    get_remaining_time_in_millis: Optional[Callable[[], float]] = Field(default=None, exclude=True)
    safety_margin_ms: float = Field(default=Settings.DEFAULT_SAFETY_MARGIN_MS, ge=0)
    max_execution_time_ms: float = Field(default=Settings.DEFAULT_MAX_EXECUTION_TIME_MS, gt=0)
    max_job_execution_time_ms: Optional[float] = Field(default=None, gt=0)

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        get_remaining_time_in_millis: Optional[Callable[[], float]] = None,
    ) -> "TimeoutConfig":
        settings = settings or Settings()
        return cls(
            enabled=settings.get_timeouts_enabled(),
            get_remaining_time_in_millis=get_remaining_time_in_millis,
            safety_margin_ms=settings.get_safety_margin_ms(),
            max_execution_time_ms=settings.get_max_execution_time_ms(),
            max_job_execution_time_ms=settings.get_max_job_execution_time_ms(),
        )


class DeadlineManager:
    """Tracks the shrinking time budget of one invocation.

    The budget is `min(max_execution_time - elapsed, remaining_runtime - safety_margin)`,
    re-evaluated on every query so a live host callback is always honoured. Once the
    budget reaches zero the manager latches into the exhausted state and cancels its
    invocation-wide token; in-flight work is only signalled, never interrupted.
    """

    def __init__(self, config: Optional[TimeoutConfig] = None, clock: Callable[[], float] = time.monotonic):
        self.config = config
        self._clock = clock
        self._started = clock()
        self._exhausted = False
        self._timer: Optional[asyncio.TimerHandle] = None
        self.token = CancellationToken()

        if self.enabled:
            mode = "host callback" if config.get_remaining_time_in_millis else "fallback timer"
            logger.info(f"Timeout protection enabled using {mode} (budget: {self.remaining_ms():.0f} ms)")

    @property
    def enabled(self) -> bool:
        return self.config is not None and self.config.enabled

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    def elapsed_ms(self) -> float:
        return max(0.0, (self._clock() - self._started) * 1000)

    def remaining_runtime_ms(self) -> float:
        """Time left before the host stops the invocation, without any safety margin."""
        if not self.enabled:
            return math.inf
        if self.config.get_remaining_time_in_millis is not None:
            try:
                return float(self.config.get_remaining_time_in_millis())
            except Exception as e:
                logger.exception(f"get_remaining_time_in_millis failed, using fallback timer: {e}")
        return max(0.0, self.config.max_execution_time_ms - self.elapsed_ms())

    def remaining_ms(self) -> float:
        """Budget left for starting new work, in milliseconds (0 when exhausted)."""
        if not self.enabled:
            return math.inf
        if self._exhausted:
            return 0.0
        own_budget = self.config.max_execution_time_ms - self.elapsed_ms()
        host_budget = self.remaining_runtime_ms() - self.config.safety_margin_ms
        return max(0.0, min(own_budget, host_budget))

    def remaining(self) -> timedelta:
        remaining_ms = self.remaining_ms()
        if math.isinf(remaining_ms):
            return timedelta.max
        return timedelta(milliseconds=remaining_ms)

    def hard_remaining_ms(self) -> float:
        """How long in-flight work may still be awaited before the host limit."""
        return self.remaining_runtime_ms()

    def has_budget(self) -> bool:
        """Whether new work may start. Latches and cancels the token on first exhaustion."""
        if self._exhausted:
            return False
        if self.remaining_ms() > 0:
            return True
        self._exhausted = True
        logger.warning(
            f"{BUDGET_EXHAUSTED_REASON} after {self.elapsed_ms():.0f} ms; no new work will be started",
            extra={"elapsed_ms": self.elapsed_ms()},
        )
        self.token.cancel(BUDGET_EXHAUSTED_REASON)
        return False

    def job_timeout_ms(self, declared_timeout_ms: Optional[float]) -> Optional[float]:
        """Effective timeout for a job: its own (or the default) timeout capped by the remaining budget."""
        candidates = [self.remaining_ms()]
        if declared_timeout_ms is not None:
            candidates.append(declared_timeout_ms)
        elif self.enabled and self.config.max_job_execution_time_ms is not None:
            candidates.append(self.config.max_job_execution_time_ms)
        timeout_ms = min(candidates)
        return None if math.isinf(timeout_ms) else max(0.0, timeout_ms)

    def arm(self) -> None:
        """Schedule the invocation token to be cancelled when the budget runs out."""
        if not self.enabled or self._exhausted:
            return
        self.disarm()
        delay_ms = self.remaining_ms()
        if math.isinf(delay_ms):
            return
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(delay_ms / 1000, self._on_timer)

    def disarm(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self) -> None:
        self._timer = None
        if self.has_budget():
            # A live callback may report more time than first estimated.
            self.arm()
