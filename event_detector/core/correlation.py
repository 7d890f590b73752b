# Correlation ids and lineage token derivation.

import logging
import uuid
from typing import Any, Mapping, Optional

from event_detector.core.change_event import ChangeEvent
from event_detector.core.tracking_token import TrackingToken, is_uuid

logger = logging.getLogger(__name__)

SOURCE_TRACKING_TOKEN_KEY = "source_tracking_token"
DEFAULT_SOURCE = "system"


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


def is_correlation_id(value: Any) -> bool:
    return is_uuid(value)


def generate_job_execution_id() -> str:
    return str(uuid.uuid4())


class CorrelationManager:
    """Issues the correlation id of one invocation and derives tracking tokens from it.

    Args:
        requested_id: Caller-supplied correlation id. Reused (lowercased) when it is a UUID,
            otherwise a fresh id is generated.
    """

    def __init__(self, requested_id: Optional[str] = None):
        self.correlation_id = self.start(requested_id)

    @staticmethod
    def start(requested_id: Optional[str] = None) -> str:
        if requested_id is not None:
            if is_correlation_id(requested_id):
                return requested_id.lower()
            logger.warning(f"Ignoring malformed correlation id {requested_id!r}; generating a new one")
        return generate_correlation_id()

    def for_job(
        self,
        change_event: Optional[ChangeEvent],
        job_options: Optional[Mapping[str, Any]] = None,
        fallback_source: Optional[str] = None,
        job_execution_id: Optional[str] = None,
    ) -> TrackingToken:
        """Tracking token for a job's downstream mutations.

        If `job_options["source_tracking_token"]` decodes, the lineage continues: its
        source and correlation id are kept and only the job execution id is replaced.
        Otherwise a new lineage root is created from this invocation's correlation id.

        Args:
            change_event: The change being processed, used to pick a default source.
            job_options: The job's merged options.
            fallback_source: Source to use for a new lineage root.
            job_execution_id: Id of the current job execution.

        Returns:
            The validated TrackingToken.
        """
        job_options = job_options or {}
        raw_token = job_options.get(SOURCE_TRACKING_TOKEN_KEY)
        if raw_token is not None:
            source_token = raw_token if isinstance(raw_token, TrackingToken) else TrackingToken.try_decode(raw_token)
            if source_token is not None:
                return source_token.with_job_execution_id(job_execution_id)
            logger.warning(
                f"[{self.correlation_id}] Ignoring invalid source tracking token {raw_token!r}",
                extra={"correlation_id": self.correlation_id},
            )

        return TrackingToken(
            source=self._pick_source(change_event, fallback_source),
            correlation_id=self.correlation_id,
            job_execution_id=job_execution_id,
        )

    @staticmethod
    def _pick_source(change_event: Optional[ChangeEvent], fallback_source: Optional[str]) -> str:
        if fallback_source:
            return fallback_source
        if change_event is not None:
            return change_event.actor.user or change_event.actor.role or DEFAULT_SOURCE
        return DEFAULT_SOURCE
