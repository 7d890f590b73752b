import copy
from typing import Any, Dict, Optional

import pytest
from event_detector.core.change_event import ChangeEvent, parse_change_event
from event_detector.core.correlation import CorrelationManager
from event_detector.core.deadline import DeadlineManager, TimeoutConfig
from event_detector.core.engine import Engine
from event_detector.core.jobs import InvocationContext, JobLogger
from event_detector.core.plugins import PluginBus

ORDER_CANCELLED_PAYLOAD: Dict[str, Any] = {
    "event": {
        "op": "UPDATE",
        "data": {
            "old": {"id": 42, "status": "pending", "total": 99.5, "updated_by": "admin@example.com"},
            "new": {"id": 42, "status": "cancelled", "total": 99.5, "updated_by": "admin@example.com"},
        },
        "session_variables": {"x-hasura-role": "admin", "x-hasura-user-id": "7"},
        "trace_context": {"trace_id": "abc", "span_id": "def"},
    },
    "table": {"schema": "public", "name": "orders"},
    "id": "1f4e8f35-63b4-4bcd-9bb8-2c4e6cf0c001",
    "created_at": "2025-05-14T10:15:00.000Z",
    "trigger": {"name": "db_orders"},
    "delivery_info": {"max_retries": 3, "current_retry": 0},
}

USER_INSERT_PAYLOAD: Dict[str, Any] = {
    "event": {
        "op": "INSERT",
        "data": {"old": None, "new": {"id": 1, "email": "new.user@example.com", "active": True}},
        "session_variables": {"x-hasura-role": "user", "x-hasura-user-email": "new.user@example.com"},
    },
    "table": {"schema": "public", "name": "users"},
    "id": "5a0c3e7d-6a0b-4f3e-8f0f-1b2c3d4e5f60",
    "created_at": "2025-05-14T10:16:00Z",
}


def _build_payload(
    op: str,
    table: str,
    old: Optional[Dict[str, Any]] = None,
    new: Optional[Dict[str, Any]] = None,
    session_variables: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """Build a minimal wire payload."""
    payload: Dict[str, Any] = {
        "event": {"op": op, "data": {"old": old, "new": new}},
        "table": {"schema": "public", "name": table},
        "id": "evt-1",
        "created_at": "2025-05-14T10:15:00Z",
    }
    if session_variables is not None:
        payload["event"]["session_variables"] = session_variables
    return payload


@pytest.fixture(autouse=True)
def clean_event_detector_env(monkeypatch):
    """AUTOUSE: Keep a developer's .env from leaking timeout or module settings into tests."""
    for name in (
        "EVENT_DETECTOR_TIMEOUTS_ENABLED",
        "EVENT_DETECTOR_SAFETY_MARGIN_MS",
        "EVENT_DETECTOR_MAX_EXECUTION_TIME_MS",
        "EVENT_DETECTOR_MAX_JOB_EXECUTION_TIME_MS",
        "EVENT_DETECTOR_EVENT_MODULES",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def order_cancelled_payload() -> Dict[str, Any]:
    return copy.deepcopy(ORDER_CANCELLED_PAYLOAD)


@pytest.fixture
def user_insert_payload() -> Dict[str, Any]:
    return copy.deepcopy(USER_INSERT_PAYLOAD)


@pytest.fixture
def order_cancelled_event(order_cancelled_payload) -> ChangeEvent:
    return parse_change_event(order_cancelled_payload)


@pytest.fixture
def user_insert_event(user_insert_payload) -> ChangeEvent:
    return parse_change_event(user_insert_payload)


@pytest.fixture
def make_payload():
    return _build_payload


@pytest.fixture
def engine() -> Engine:
    return Engine()


@pytest.fixture
def make_invocation():
    """Factory for InvocationContexts outside of Engine.process_event."""

    def _make(
        timeout_config: Optional[TimeoutConfig] = None,
        correlation_id: Optional[str] = None,
        plugin_bus: Optional[PluginBus] = None,
        context: Optional[Dict[str, Any]] = None,
        source_tracking_token: Optional[str] = None,
    ) -> InvocationContext:
        correlation = CorrelationManager(correlation_id)
        return InvocationContext(
            correlation=correlation,
            deadline=DeadlineManager(timeout_config),
            log=JobLogger(correlation.correlation_id, plugin_bus=plugin_bus),
            context=context,
            source_tracking_token=source_tracking_token,
        )

    return _make
