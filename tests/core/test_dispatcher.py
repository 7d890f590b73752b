from unittest.mock import AsyncMock, MagicMock

import pytest
from event_detector.core.deadline import TimeoutConfig
from event_detector.core.dispatcher import DetectionDispatcher
from event_detector.core.plugins import PluginBus
from event_detector.core.registry import EventRegistry
from event_detector.exceptions import DetectorError

pytestmark = pytest.mark.asyncio


def no_jobs(name, change_event, invocation):
    return []


@pytest.fixture
def plugin_bus():
    bus = PluginBus()
    bus.on_detection_end = AsyncMock()
    bus.on_error = AsyncMock()
    return bus


async def test_detects_in_registration_order(order_cancelled_event, make_invocation, plugin_bus):
    registry = EventRegistry()
    registry.register("orders.cancelled", lambda n, e, i: e.after["status"] == "cancelled", no_jobs)
    registry.register("orders.created", lambda n, e, i: e.operation == "INSERT", no_jobs)

    async def async_detector(name, change_event, invocation):
        return change_event.table_name == "orders"

    registry.register("orders.any", async_detector, no_jobs)
    invocation = make_invocation()

    results, timed_out = await DetectionDispatcher(plugin_bus).dispatch(
        registry.candidates(), order_cancelled_event, invocation
    )

    assert [r.event_name for r in results] == ["orders.cancelled", "orders.created", "orders.any"]
    assert [r.detected for r in results] == [True, False, True]
    assert timed_out is False
    assert all(r.detection_duration_ms >= 0 for r in results)
    assert plugin_bus.on_detection_end.await_count == 3
    plugin_bus.on_detection_end.assert_any_await(
        "orders.cancelled", results[0], order_cancelled_event, invocation.correlation_id
    )


async def test_detector_receives_name_event_and_invocation(order_cancelled_event, make_invocation, plugin_bus):
    detector = MagicMock(return_value=True)
    registry = EventRegistry()
    registry.register("orders.cancelled", detector, no_jobs)
    invocation = make_invocation()

    await DetectionDispatcher(plugin_bus).dispatch(registry.candidates(), order_cancelled_event, invocation)

    detector.assert_called_once_with("orders.cancelled", order_cancelled_event, invocation)


async def test_truthy_values_are_coerced(order_cancelled_event, make_invocation, plugin_bus):
    registry = EventRegistry()
    registry.register("truthy", lambda n, e, i: "yes", no_jobs)
    registry.register("falsy", lambda n, e, i: None, no_jobs)

    results, _ = await DetectionDispatcher(plugin_bus).dispatch(
        registry.candidates(), order_cancelled_event, make_invocation()
    )

    assert [r.detected for r in results] == [True, False]


async def test_failing_detector_is_isolated(order_cancelled_event, make_invocation, plugin_bus):
    def broken(name, change_event, invocation):
        raise KeyError("status")

    async def broken_async(name, change_event, invocation):
        raise RuntimeError("lookup failed")

    registry = EventRegistry()
    registry.register("broken", broken, no_jobs)
    registry.register("broken.async", broken_async, no_jobs)
    registry.register("works", lambda n, e, i: True, no_jobs)
    invocation = make_invocation()

    results, timed_out = await DetectionDispatcher(plugin_bus).dispatch(
        registry.candidates(), order_cancelled_event, invocation
    )

    assert [r.detected for r in results] == [False, False, True]
    assert results[0].error == "'status'"
    assert results[0].error_type == "KeyError"
    assert results[1].error == "lookup failed"
    assert results[2].error is None
    assert timed_out is False

    assert plugin_bus.on_error.await_count == 2
    error, stage, correlation_id = plugin_bus.on_error.await_args_list[0].args
    assert isinstance(error, DetectorError)
    assert error.event_name == "broken"
    assert stage == "detector"
    assert correlation_id == invocation.correlation_id


async def test_exhausted_budget_skips_remaining(order_cancelled_event, make_invocation, plugin_bus):
    remaining = {"ms": 60000}
    invocation = make_invocation(
        TimeoutConfig(get_remaining_time_in_millis=lambda: remaining["ms"], safety_margin_ms=2000)
    )

    def slow_detector(name, change_event, invocation):
        # Uses up the host's remaining time.
        remaining["ms"] = 1000
        return True

    third = MagicMock(return_value=True)
    registry = EventRegistry()
    registry.register("first", slow_detector, no_jobs)
    registry.register("second", lambda n, e, i: True, no_jobs)
    registry.register("third", third, no_jobs)

    results, timed_out = await DetectionDispatcher(plugin_bus).dispatch(
        registry.candidates(), order_cancelled_event, invocation
    )

    assert timed_out is True
    assert [r.event_name for r in results] == ["first", "second", "third"]
    assert results[0].detected is True
    assert [(r.detected, r.skipped) for r in results[1:]] == [(False, True), (False, True)]
    third.assert_not_called()


async def test_no_budget_at_start_skips_everything(order_cancelled_event, make_invocation, plugin_bus):
    detector = MagicMock(return_value=True)
    registry = EventRegistry()
    registry.register("only", detector, no_jobs)
    invocation = make_invocation(TimeoutConfig(get_remaining_time_in_millis=lambda: 0))

    results, timed_out = await DetectionDispatcher(plugin_bus).dispatch(
        registry.candidates(), order_cancelled_event, invocation
    )

    assert timed_out is True
    assert results[0].skipped
    detector.assert_not_called()
    plugin_bus.on_detection_end.assert_not_awaited()
