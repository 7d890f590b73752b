# Ordered registry of event definitions (detector + handler pairs).

import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable, Iterator, List, Optional, Set, Union

from pydantic import BaseModel, ConfigDict, Field

from event_detector.exceptions import EventModuleLoadError, EventRegistrationError

if TYPE_CHECKING:
    from event_detector.core.loader import EventModuleLoader

logger = logging.getLogger(__name__)

Detector = Callable[..., Union[bool, Awaitable[bool]]]
Handler = Callable[..., Union[List[Any], Awaitable[List[Any]]]]


class EventDefinition(BaseModel):
    """A named business event: a detector predicate and the handler producing its jobs."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    name: str = Field(min_length=1)
    detector: Detector
    handler: Handler
    module_path: Optional[str] = None


class EventRegistry:
    """Append-only, ordered collection of EventDefinitions.

    Registration order is the order in which detectors are evaluated and in which
    results are reported. The registry never runs detectors itself and never
    touches the filesystem; discovery is delegated to an EventModuleLoader.
    """

    def __init__(self, definitions: Optional[Iterable[EventDefinition]] = None) -> None:
        self._definitions: List[EventDefinition] = []
        self._loaded_sources: Set[Optional[str]] = set()
        for definition in definitions or []:
            self.add(definition)

    def register(self, name: str, detector: Detector, handler: Handler) -> EventDefinition:
        """Register an event definition.

        Raises:
            EventRegistrationError: If the name is already registered or the detector
                or handler is not callable.
        """
        if not callable(detector) or not callable(handler):
            raise EventRegistrationError(
                f"Event '{name}' needs a callable detector and handler", event_name=name
            )
        return self.add(EventDefinition(name=name, detector=detector, handler=handler))

    def add(self, definition: EventDefinition) -> EventDefinition:
        if definition.name in self:
            raise EventRegistrationError(
                f"Event '{definition.name}' is already registered", event_name=definition.name
            )
        self._definitions.append(definition)
        logger.debug(f"Registered event definition: {definition.name}")
        return definition

    def candidates(self, allow_list: Optional[Iterable[str]] = None) -> List[EventDefinition]:
        """Definitions to evaluate, in registration order.

        Args:
            allow_list: If given, only definitions with these names are returned.
                Unknown names are logged and ignored.
        """
        if allow_list is None:
            return list(self._definitions)

        allowed = list(allow_list)
        unknown = [name for name in allowed if name not in self]
        if unknown:
            logger.warning(f"Listened events not found in registry: {unknown}")
        allowed_set = set(allowed)
        return [definition for definition in self._definitions if definition.name in allowed_set]

    def names(self) -> List[str]:
        return [definition.name for definition in self._definitions]

    def get(self, name: str) -> Optional[EventDefinition]:
        for definition in self._definitions:
            if definition.name == name:
                return definition
        return None

    def reload(self, definitions: Iterable[EventDefinition]) -> None:
        """Replace all definitions at once. Must not be called while an invocation is running."""
        fresh = EventRegistry(definitions)
        self._definitions = fresh._definitions
        self._loaded_sources = set()
        logger.info(f"Event registry reloaded with {len(self._definitions)} definitions")

    def load(self, loader: "EventModuleLoader", directory: Optional[str] = None) -> List[EventDefinition]:
        """Run a one-time discovery pass through `loader`.

        Modules that fail to load are logged as warnings and skipped. Calling this again
        for a source that was already loaded does nothing.

        Returns:
            The definitions added by this call.
        """
        if directory in self._loaded_sources:
            return []
        self._loaded_sources.add(directory)

        added: List[EventDefinition] = []
        try:
            module_paths = loader.discover(directory)
        except Exception as e:
            logger.warning(f"Event module discovery failed for {directory or 'configured modules'}: {e}")
            return added
        for module_path in module_paths:
            try:
                definition = self._load_one(loader, module_path)
                added.append(self.add(definition))
            except (EventModuleLoadError, EventRegistrationError) as e:
                logger.warning(f"Skipping event module {module_path}: {e}")
        logger.info(f"Loaded {len(added)} event definitions from {directory or 'configured modules'}")
        return added

    @staticmethod
    def _load_one(loader: "EventModuleLoader", module_path: str) -> EventDefinition:
        try:
            return loader.load_module(module_path)
        except EventModuleLoadError:
            raise
        except Exception as e:
            raise EventModuleLoadError(
                f"Event module {module_path} failed to load: {e}", module_path=module_path
            ) from e

    def __len__(self) -> int:
        return len(self._definitions)

    def __contains__(self, name: object) -> bool:
        return any(definition.name == name for definition in self._definitions)

    def __iter__(self) -> Iterator[EventDefinition]:
        return iter(list(self._definitions))
