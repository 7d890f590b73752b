# Event module loading: the interface for discovery and an importlib-based implementation.

import importlib
import logging
import pkgutil
from typing import Iterable, List, Optional, Protocol

from event_detector.core.registry import EventDefinition
from event_detector.exceptions import EventModuleLoadError

logger = logging.getLogger(__name__)


class EventModuleLoader(Protocol):
    """Discovers event modules and turns each into an EventDefinition."""

    def discover(self, directory: Optional[str]) -> List[str]:
        """Return the module paths to load, in the order they should be registered."""
        ...

    def load_module(self, module_path: str) -> EventDefinition:
        """Load one module.

        Raises:
            EventModuleLoadError: If the module cannot be imported or lacks a callable
                `detector` or `handler`.
        """
        ...


class ImportEventModuleLoader:
    """Loads event modules by dotted import path.

    An event module defines module-level `detector` and `handler` callables. The event
    name is the module's `EVENT_NAME` attribute if present, otherwise the last
    component of its path (`myapp.events.orders_cancelled` -> `orders_cancelled`).

    Args:
        module_paths: Modules to load regardless of the directory argument.
    """

    def __init__(self, module_paths: Optional[Iterable[str]] = None):
        self.module_paths = list(module_paths or [])

    def discover(self, directory: Optional[str]) -> List[str]:
        """List configured modules plus the submodules of package `directory`, sorted by name."""
        found = list(self.module_paths)
        if directory:
            try:
                package = importlib.import_module(directory)
            except ImportError as e:
                logger.warning(f"Event module package {directory} could not be imported: {e}")
                return found
            package_path = getattr(package, "__path__", None)
            if package_path is None:
                logger.warning(f"{directory} is a module, not a package; nothing to discover")
                return found
            names = sorted(info.name for info in pkgutil.iter_modules(package_path) if not info.ispkg)
            found.extend(f"{directory}.{name}" for name in names if not name.startswith("_"))
        return found

    def load_module(self, module_path: str) -> EventDefinition:
        try:
            module = importlib.import_module(module_path)
        except Exception as e:
            raise EventModuleLoadError(
                f"Could not import event module {module_path}: {e}", module_path=module_path
            ) from e

        name = getattr(module, "EVENT_NAME", None) or module_path.rsplit(".", 1)[-1]
        if not isinstance(name, str):
            raise EventModuleLoadError(
                f"EVENT_NAME in {module_path} must be a string, got {type(name).__name__}", module_path=module_path
            )
        detector = getattr(module, "detector", None)
        handler = getattr(module, "handler", None)
        if not callable(detector) or not callable(handler):
            raise EventModuleLoadError(
                f"Event module {module_path} must define callable 'detector' and 'handler'",
                event_name=name,
                module_path=module_path,
            )

        logger.info(f"Successfully loaded event module: {name}")
        return EventDefinition(name=name, detector=detector, handler=handler, module_path=module_path)
