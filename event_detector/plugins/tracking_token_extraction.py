# Recovers lineage (correlation id, source tracking token) from the change itself.

import logging
import re
from typing import Any, Dict, Mapping, Optional

from event_detector.core.change_event import ChangeEvent, Operation
from event_detector.core.correlation import is_correlation_id
from event_detector.core.plugins import BasePlugin
from event_detector.core.tracking_token import TrackingToken

logger = logging.getLogger(__name__)

# "<anything>.<uuid>" or "<anything>.<uuid>.<job id>"
DEFAULT_UPDATED_BY_PATTERN = re.compile(
    r"^[^.]+\.([0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12})(?:\.[^.]+)?$", re.IGNORECASE
)
UPDATED_BY_COLUMNS = ("updated_by", "updatedby")
JSON_CONTAINER_COLUMNS = ("metadata", "data", "properties", "attributes")


class TrackingTokenExtractionPlugin(BasePlugin):
    """Continues the lineage of a change that was written by an earlier job.

    Jobs stamp their tracking token into an `updated_by` column. When that row change
    comes back as a new webhook, this plugin reads the token in `on_pre_configure` and
    sets `correlation_id` and `source_tracking_token`, so the new invocation shares the
    correlation id of the job that caused it.

    Strategies, tried in order until a correlation id is found:
        1. `updated_by`/`updatedby` of an UPDATE: a tracking token, the configured
           pattern, or a bare UUID.
        2. A custom column named by `custom_field`.
        3. `metadata_keys` in the new record or in its JSON columns.
        4. `session_variables` of the request.
    """

    name = "tracking-token-extraction"

    def __init__(self, config: Optional[Mapping[str, Any]] = None, enabled: bool = True):
        defaults = {
            "extract_from_updated_by": True,
            "extract_from_metadata": True,
            "extract_from_session": True,
            "custom_field": None,
            "updated_by_pattern": DEFAULT_UPDATED_BY_PATTERN,
            "session_variables": ["x-correlation-id", "x-request-id", "x-trace-id"],
            "metadata_keys": ["correlation_id", "trace_id", "request_id", "workflow_id"],
        }
        super().__init__(config={**defaults, **(config or {})}, enabled=enabled)

    def on_pre_configure(self, change_event: ChangeEvent, options: Any) -> Optional[Dict[str, Any]]:
        update: Dict[str, Any] = {}

        if self.config["extract_from_updated_by"]:
            update = self._from_updated_by(change_event)

        strategies = []
        if self.config["custom_field"]:
            strategies.append(lambda: self._from_record(change_event, [self.config["custom_field"]]))
        if self.config["extract_from_metadata"]:
            strategies.append(lambda: self._from_metadata(change_event))
        if self.config["extract_from_session"]:
            session_variables = change_event.actor.session_variables
            strategies.append(lambda: self._from_record(session_variables, self.config["session_variables"]))

        for strategy in strategies:
            if "correlation_id" in update:
                break
            correlation_id = strategy()
            if correlation_id:
                update["correlation_id"] = correlation_id

        if not update:
            logger.debug("No tracking token components found in payload")
            return None
        logger.info(f"Extracted lineage from change: {update}")
        return update

    def _from_updated_by(self, change_event: ChangeEvent) -> Dict[str, Any]:
        if change_event.operation != Operation.UPDATE:
            return {}
        updated_by = next(
            (change_event.after.get(c) for c in UPDATED_BY_COLUMNS if isinstance(change_event.after.get(c), str)),
            None,
        )
        if not updated_by:
            return {}

        token = TrackingToken.try_decode(updated_by)
        if token is not None:
            return {"correlation_id": token.correlation_id, "source_tracking_token": token.encode()}

        pattern = self.config["updated_by_pattern"]
        if pattern is not None:
            match = re.match(pattern, updated_by)
            if match and is_correlation_id(match.group(1).lower()):
                return {"correlation_id": match.group(1).lower()}

        if is_correlation_id(updated_by):
            return {"correlation_id": updated_by.lower()}
        return {}

    def _from_metadata(self, change_event: ChangeEvent) -> Optional[str]:
        record = change_event.after or {}
        found = self._from_record(record, self.config["metadata_keys"])
        if found:
            return found
        for column in JSON_CONTAINER_COLUMNS:
            container = record.get(column)
            if isinstance(container, Mapping):
                found = self._from_record(container, self.config["metadata_keys"])
                if found:
                    return found
        return None

    @staticmethod
    def _from_record(record: Optional[Mapping[str, Any]], keys) -> Optional[str]:
        for key in keys or []:
            value = (record or {}).get(key)
            if isinstance(value, str) and is_correlation_id(value):
                return value.lower()
            if isinstance(value, str) and value:
                logger.debug(f"Ignoring {key}={value!r}: not a UUID")
        return None
