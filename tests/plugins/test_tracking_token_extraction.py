import re

import pytest
from event_detector.core.change_event import parse_change_event
from event_detector.core.options import ProcessOptions
from event_detector.core.tracking_token import TrackingToken
from event_detector.plugins import TrackingTokenExtractionPlugin

CID = "0b8e4f8e-3a44-4a53-9f0a-6d1f0d7f2c11"
OTHER_CID = "7d2c1b0a-1111-4222-8333-944455556666"


@pytest.fixture
def plugin():
    return TrackingTokenExtractionPlugin()


@pytest.fixture
def order_update(make_payload):
    def _make(new_fields=None, session_variables=None):
        new = {"id": 42, "status": "shipped", **(new_fields or {})}
        return parse_change_event(
            make_payload("UPDATE", "orders", old={"id": 42, "status": "paid"}, new=new, session_variables=session_variables)
        )

    return _make


def test_tracking_token_in_updated_by(plugin, order_update):
    token = TrackingToken(source="orders-worker", correlation_id=CID, job_execution_id="job-7")

    update = plugin.on_pre_configure(order_update({"updated_by": token.encode()}), ProcessOptions())

    assert update == {"correlation_id": CID, "source_tracking_token": token.encode()}


def test_legacy_token_in_updatedby(plugin, order_update):
    update = plugin.on_pre_configure(order_update({"updatedby": f"orders-worker|{CID}"}), ProcessOptions())

    assert update["correlation_id"] == CID
    assert update["source_tracking_token"] == f"tt1|orders-worker|{CID}|"


def test_updated_by_pattern(plugin, order_update):
    update = plugin.on_pre_configure(order_update({"updated_by": f"worker.{CID.upper()}.job-3"}), ProcessOptions())
    assert update == {"correlation_id": CID}


def test_bare_uppercase_uuid_is_lowercased(plugin, order_update):
    update = plugin.on_pre_configure(order_update({"updated_by": CID.upper()}), ProcessOptions())
    assert update == {"correlation_id": CID}


def test_custom_pattern(order_update):
    plugin = TrackingTokenExtractionPlugin({"updated_by_pattern": re.compile(r"^cid:(.+)$")})
    assert plugin.on_pre_configure(order_update({"updated_by": f"cid:{CID}"}), ProcessOptions()) == {"correlation_id": CID}


def test_bare_uuid_in_updated_by(plugin, order_update):
    assert plugin.on_pre_configure(order_update({"updated_by": CID}), ProcessOptions()) == {"correlation_id": CID}


def test_updated_by_takes_precedence(plugin, order_update):
    event = order_update({"updated_by": CID, "correlation_id": OTHER_CID})
    assert plugin.on_pre_configure(event, ProcessOptions()) == {"correlation_id": CID}


def test_custom_field(order_update):
    plugin = TrackingTokenExtractionPlugin({"custom_field": "request_ref"})
    event = order_update({"request_ref": CID, "correlation_id": OTHER_CID})

    assert plugin.on_pre_configure(event, ProcessOptions()) == {"correlation_id": CID}


def test_metadata_column(plugin, order_update):
    assert plugin.on_pre_configure(order_update({"trace_id": CID}), ProcessOptions()) == {"correlation_id": CID}


def test_nested_metadata(plugin, order_update):
    event = order_update({"metadata": {"workflow_id": CID}})
    assert plugin.on_pre_configure(event, ProcessOptions()) == {"correlation_id": CID}


def test_session_variables(plugin, order_update):
    event = order_update(session_variables={"x-hasura-role": "user", "x-request-id": CID})
    assert plugin.on_pre_configure(event, ProcessOptions()) == {"correlation_id": CID}


def test_non_uuid_values_are_ignored(plugin, order_update):
    event = order_update({"updated_by": "alice", "correlation_id": "req-123"}, {"x-trace-id": "abc"})
    assert plugin.on_pre_configure(event, ProcessOptions()) is None


def test_strategies_can_be_disabled(order_update):
    plugin = TrackingTokenExtractionPlugin(
        {"extract_from_updated_by": False, "extract_from_metadata": False, "extract_from_session": False}
    )
    event = order_update({"updated_by": CID, "correlation_id": CID}, {"x-request-id": CID})

    assert plugin.on_pre_configure(event, ProcessOptions()) is None


def test_insert_uses_metadata_only(plugin, make_payload):
    event = parse_change_event(make_payload("INSERT", "orders", new={"id": 1, "updated_by": CID, "request_id": OTHER_CID}))
    assert plugin.on_pre_configure(event, ProcessOptions()) == {"correlation_id": OTHER_CID}


@pytest.mark.asyncio
async def test_lineage_reaches_jobs(engine, order_update, make_payload):
    token = TrackingToken(source="orders-worker", correlation_id=CID, job_execution_id="job-7")
    seen = {}

    def capture(name, change_event, context):
        seen["token"] = context.tracking_token()

    engine.register("orders.shipped", lambda *args: True, lambda *args: [capture])
    engine.use(TrackingTokenExtractionPlugin())
    payload = make_payload(
        "UPDATE", "orders", old={"id": 42, "status": "paid"}, new={"id": 42, "status": "shipped", "updated_by": token.encode()}
    )

    result = await engine.process_event(payload)

    assert result.correlation_id == CID
    assert seen["token"].correlation_id == CID
    assert seen["token"].source == "orders-worker"
    assert seen["token"].job_execution_id == result.jobs[0].job_execution_id
