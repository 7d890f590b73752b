# Cooperative cancellation tokens handed to jobs.

import asyncio
import logging
from typing import Optional

from psygnal import Signal

from event_detector.exceptions import JobCancelledError

logger = logging.getLogger(__name__)


class CancellationToken:
    """Advisory cancellation signal for in-flight work.

    Cancelling a token never interrupts running code. Jobs are expected to check
    `is_cancelled`, call `raise_if_cancelled()`, await `wait()` or connect a
    callback to the `cancelled` signal, and stop on their own. A job that ignores
    the token may legitimately run past its deadline.

    A token created with a parent is cancelled whenever the parent is.

    Attributes:
        cancelled: Signal emitted once with the cancellation reason.
    """

    cancelled = Signal(str)

    def __init__(self, parent: Optional["CancellationToken"] = None) -> None:
        self._reason: Optional[str] = None
        self._event = asyncio.Event()
        self._parent = parent
        if parent is not None:
            if parent.is_cancelled:
                self.cancel(parent.reason or "Parent cancelled")
            else:
                parent.cancelled.connect(self._on_parent_cancelled)

    @property
    def is_cancelled(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "Cancelled") -> bool:
        """Cancel the token.

        Returns:
            True if this call cancelled the token, False if it was already cancelled.
        """
        if self._reason is not None:
            return False
        self._reason = reason
        self._event.set()
        logger.debug(f"Cancellation requested: {reason}")
        try:
            self.cancelled.emit(reason)
        except Exception as e:
            logger.exception(f"Error notifying cancellation listeners: {e}")
        return True

    def raise_if_cancelled(self, job_name: Optional[str] = None) -> None:
        """Raise JobCancelledError if the token has been cancelled."""
        if self._reason is not None:
            raise JobCancelledError(self._reason, job_name=job_name)

    async def wait(self) -> str:
        """Wait until the token is cancelled and return the reason."""
        await self._event.wait()
        return self._reason or ""

    async def sleep(self, seconds: float) -> bool:
        """Sleep up to `seconds`, waking early on cancellation.

        Returns:
            True if the full delay elapsed, False if the token was cancelled first.
        """
        if self.is_cancelled:
            return False
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return True
        return False

    def detach(self) -> None:
        """Stop following the parent token."""
        if self._parent is not None:
            self._parent.cancelled.disconnect(self._on_parent_cancelled)
            self._parent = None

    def _on_parent_cancelled(self, reason: str) -> None:
        self.cancel(reason)

    def __repr__(self) -> str:
        state = f"cancelled: {self._reason}" if self.is_cancelled else "active"
        return f"<CancellationToken {state}>"
