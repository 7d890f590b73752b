# Plugin hook bus: fan-out of lifecycle notifications to observers.

import inspect
import logging
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Optional

from pydantic import ValidationError

from event_detector.core.change_event import ChangeEvent
from event_detector.exceptions import PreConfigureError

if TYPE_CHECKING:
    from event_detector.core.options import ProcessOptions
    from event_detector.core.results import DetectionResult, InvocationResult, JobExecutionResult

logger = logging.getLogger(__name__)


class BasePlugin:
    """Base class for observers of the event pipeline.

    Override only the hooks you need; each may be a plain method or a coroutine.
    Except for `on_pre_configure`, hook return values are ignored and hook failures
    are logged without affecting the invocation.

    Attributes:
        name: Name used in logs and for unregistering.
        config: Free-form plugin configuration.
        enabled: Disabled plugins receive no hook calls.
    """

    name: str = "plugin"

    def __init__(self, name: Optional[str] = None, config: Optional[Mapping[str, Any]] = None, enabled: bool = True):
        if name:
            self.name = name
        self.config: Dict[str, Any] = dict(config or {})
        self.enabled = enabled

    def on_pre_configure(self, change_event: ChangeEvent, options: "ProcessOptions") -> Any:
        """Return a dict of option overrides, a replacement ProcessOptions, or None."""
        return None

    def on_invocation_start(self, change_event: ChangeEvent, options: "ProcessOptions", correlation_id: str) -> None:
        pass

    def on_detection_end(
        self, event_name: str, detection_result: "DetectionResult", change_event: ChangeEvent, correlation_id: str
    ) -> None:
        pass

    def on_job_start(
        self,
        job_name: str,
        job_options: Mapping[str, Any],
        event_name: str,
        change_event: ChangeEvent,
        correlation_id: str,
    ) -> None:
        pass

    def on_job_end(
        self,
        job_name: str,
        job_result: "JobExecutionResult",
        event_name: str,
        change_event: ChangeEvent,
        correlation_id: str,
    ) -> None:
        pass

    def on_log(
        self,
        level: str,
        message: str,
        data: Mapping[str, Any],
        job_name: Optional[str],
        correlation_id: str,
    ) -> None:
        pass

    def on_error(self, error: BaseException, stage: str, correlation_id: Optional[str]) -> None:
        pass

    def on_invocation_complete(
        self, change_event: ChangeEvent, result: "InvocationResult", correlation_id: str
    ) -> None:
        pass

    def __repr__(self) -> str:
        state = "" if self.enabled else " (disabled)"
        return f"<{type(self).__name__} {self.name}{state}>"


class PluginBus:
    """Ordered list of plugins and the dispatch of hook calls to them.

    Hooks run one plugin at a time in registration order.
    """

    def __init__(self, plugins: Optional[Iterable[BasePlugin]] = None) -> None:
        self._plugins: List[BasePlugin] = []
        for plugin in plugins or []:
            self.register(plugin)

    @property
    def plugins(self) -> List[BasePlugin]:
        """Enabled plugins in registration order."""
        return [plugin for plugin in self._plugins if getattr(plugin, "enabled", True)]

    def register(self, plugin: BasePlugin) -> None:
        self._plugins.append(plugin)
        logger.debug(f"Registered plugin {getattr(plugin, 'name', type(plugin).__name__)}")

    def unregister(self, name: str) -> None:
        """Remove every plugin registered under `name`.

        Raises:
            KeyError: If no plugin with the given name exists
        """
        remaining = [plugin for plugin in self._plugins if getattr(plugin, "name", None) != name]
        if len(remaining) == len(self._plugins):
            raise KeyError(name)
        self._plugins = remaining

    def extended(self, plugins: Optional[Iterable[BasePlugin]]) -> "PluginBus":
        """A new bus with this bus's plugins followed by `plugins`."""
        return PluginBus([*self._plugins, *(plugins or [])])

    def __len__(self) -> int:
        return len(self._plugins)

    async def _call(self, plugin: BasePlugin, hook_name: str, *args: Any) -> Any:
        hook = getattr(plugin, hook_name, None)
        if hook is None:
            return None
        result = hook(*args)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def dispatch(self, hook_name: str, *args: Any) -> None:
        """Call `hook_name` on every enabled plugin, logging and swallowing hook failures."""
        for plugin in self.plugins:
            try:
                await self._call(plugin, hook_name, *args)
            except Exception as e:
                logger.exception(f"Error in {hook_name} hook of plugin {getattr(plugin, 'name', plugin)}: {e}")

    async def pre_configure(self, change_event: ChangeEvent, options: "ProcessOptions") -> "ProcessOptions":
        """Let each plugin transform the options before dispatch begins.

        Raises:
            PreConfigureError: If a plugin's hook raises or returns options that fail validation.
        """
        for plugin in self.plugins:
            plugin_name = getattr(plugin, "name", type(plugin).__name__)
            try:
                update = await self._call(plugin, "on_pre_configure", change_event, options)
                if update is None:
                    continue
                options = options.merged(update)
            except ValidationError as e:
                raise PreConfigureError(
                    f"Plugin {plugin_name} returned invalid options: {e}", plugin_name=plugin_name
                ) from e
            except Exception as e:
                raise PreConfigureError(
                    f"on_pre_configure failed in plugin {plugin_name}: {e}", plugin_name=plugin_name
                ) from e
        return options

    async def on_invocation_start(self, change_event: ChangeEvent, options: "ProcessOptions", correlation_id: str):
        await self.dispatch("on_invocation_start", change_event, options, correlation_id)

    async def on_detection_end(
        self, event_name: str, detection_result: "DetectionResult", change_event: ChangeEvent, correlation_id: str
    ):
        await self.dispatch("on_detection_end", event_name, detection_result, change_event, correlation_id)

    async def on_job_start(
        self, job_name: str, job_options: Mapping[str, Any], event_name: str, change_event: ChangeEvent, correlation_id: str
    ):
        await self.dispatch("on_job_start", job_name, job_options, event_name, change_event, correlation_id)

    async def on_job_end(
        self,
        job_name: str,
        job_result: "JobExecutionResult",
        event_name: str,
        change_event: ChangeEvent,
        correlation_id: str,
    ):
        await self.dispatch("on_job_end", job_name, job_result, event_name, change_event, correlation_id)

    async def on_log(
        self, level: str, message: str, data: Mapping[str, Any], job_name: Optional[str], correlation_id: str
    ):
        await self.dispatch("on_log", level, message, data, job_name, correlation_id)

    async def on_error(self, error: BaseException, stage: str, correlation_id: Optional[str]):
        await self.dispatch("on_error", error, stage, correlation_id)

    async def on_invocation_complete(self, change_event: ChangeEvent, result: "InvocationResult", correlation_id: str):
        await self.dispatch("on_invocation_complete", change_event, result, correlation_id)
