import pytest
from event_detector.core.options import ProcessOptions
from event_detector.core.plugins import BasePlugin, PluginBus
from event_detector.exceptions import PreConfigureError


class RecordingPlugin(BasePlugin):
    def __init__(self, name, calls, **kwargs):
        super().__init__(name=name, **kwargs)
        self.calls = calls

    def on_invocation_start(self, change_event, options, correlation_id):
        self.calls.append((self.name, "on_invocation_start"))

    async def on_error(self, error, stage, correlation_id):
        self.calls.append((self.name, "on_error", stage))


class FaultyPlugin(BasePlugin):
    name = "faulty"

    def on_invocation_start(self, change_event, options, correlation_id):
        raise RuntimeError("Boom!")


class OverridePlugin(BasePlugin):
    def __init__(self, update, **kwargs):
        super().__init__(**kwargs)
        self.update = update

    async def on_pre_configure(self, change_event, options):
        return self.update


@pytest.mark.asyncio
class TestDispatch:
    async def test_hooks_run_in_registration_order(self, order_cancelled_event):
        calls = []
        bus = PluginBus([RecordingPlugin("first", calls), RecordingPlugin("second", calls)])

        await bus.on_invocation_start(order_cancelled_event, ProcessOptions(), "cid")
        await bus.on_error(ValueError("x"), "job", "cid")

        assert calls == [
            ("first", "on_invocation_start"),
            ("second", "on_invocation_start"),
            ("first", "on_error", "job"),
            ("second", "on_error", "job"),
        ]

    async def test_hook_failure_is_logged_and_swallowed(self, order_cancelled_event, caplog):
        calls = []
        bus = PluginBus([FaultyPlugin(), RecordingPlugin("after", calls)])

        await bus.on_invocation_start(order_cancelled_event, ProcessOptions(), "cid")

        assert calls == [("after", "on_invocation_start")]
        assert "Error in on_invocation_start hook of plugin faulty" in caplog.text

    async def test_disabled_plugins_are_skipped(self, order_cancelled_event):
        calls = []
        bus = PluginBus([RecordingPlugin("off", calls, enabled=False), RecordingPlugin("on", calls)])

        await bus.on_invocation_start(order_cancelled_event, ProcessOptions(), "cid")

        assert calls == [("on", "on_invocation_start")]
        assert len(bus) == 2
        assert [p.name for p in bus.plugins] == ["on"]

    async def test_missing_hooks_are_ignored(self, order_cancelled_event):
        class Minimal:
            name = "minimal"
            enabled = True

        await PluginBus([Minimal()]).on_job_end("job", None, "event", order_cancelled_event, "cid")


class TestRegistration:
    def test_unregister(self):
        bus = PluginBus([BasePlugin(name="a"), BasePlugin(name="b")])
        bus.unregister("a")
        assert [p.name for p in bus.plugins] == ["b"]

    def test_unregister_unknown_raises(self):
        with pytest.raises(KeyError):
            PluginBus().unregister("missing")

    def test_extended_does_not_mutate(self):
        bus = PluginBus([BasePlugin(name="engine")])
        extended = bus.extended([BasePlugin(name="invocation")])

        assert [p.name for p in extended.plugins] == ["engine", "invocation"]
        assert len(bus) == 1

    def test_repr(self):
        assert repr(BasePlugin(name="quiet", enabled=False)) == "<BasePlugin quiet (disabled)>"


@pytest.mark.asyncio
class TestPreConfigure:
    async def test_updates_are_applied_in_order(self, order_cancelled_event):
        bus = PluginBus(
            [
                OverridePlugin({"listened_events": ["orders.cancelled"], "context": {"a": 1}}),
                OverridePlugin({"context": {"a": 2}}),
                OverridePlugin(None),
            ]
        )

        options = await bus.pre_configure(order_cancelled_event, ProcessOptions(correlation_id="keep"))

        assert options.listened_events == ["orders.cancelled"]
        assert options.context == {"a": 2}
        assert options.correlation_id == "keep"

    async def test_replacement_options(self, order_cancelled_event):
        replacement = ProcessOptions(listened_events=[])
        bus = PluginBus([OverridePlugin(replacement)])

        assert await bus.pre_configure(order_cancelled_event, ProcessOptions()) is replacement

    async def test_invalid_update_raises(self, order_cancelled_event):
        bus = PluginBus([OverridePlugin({"context": {"callback": print}}, name="bad-context")])

        with pytest.raises(PreConfigureError) as exc_info:
            await bus.pre_configure(order_cancelled_event, ProcessOptions())
        assert exc_info.value.plugin_name == "bad-context"

    async def test_hook_exception_raises(self, order_cancelled_event):
        class Exploding(BasePlugin):
            name = "exploding"

            def on_pre_configure(self, change_event, options):
                raise RuntimeError("cannot configure")

        with pytest.raises(PreConfigureError, match="cannot configure") as exc_info:
            await PluginBus([Exploding()]).pre_configure(order_cancelled_event, ProcessOptions())
        assert isinstance(exc_info.value.__cause__, RuntimeError)
