"""
Dev server plugin contract

A plugin is installed exactly once, synchronously, against the server
context. Installation may only append handlers to the pipeline.
"""

import importlib
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Iterable, List

from ..core.context import ServerContext
from ..exceptions.base import ConfigurationError


class PluginKind(str, Enum):
    """Role a plugin plays in the pipeline"""
    HEADERS = "headers"
    LAZY_COMPILATION = "lazy-compilation"
    HMR = "hmr"
    CORS = "cors"
    RESOURCES = "resources"
    RECORDS = "records"
    PROXY = "proxy"
    USER = "user"


class DevServerPlugin(ABC):
    """Base class for everything installed into the server context"""

    kind: PluginKind = PluginKind.USER

    @property
    def name(self) -> str:
        return self.kind.value

    @abstractmethod
    def install(self, context: ServerContext) -> None:
        """Register handlers on the context"""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class FunctionPlugin(DevServerPlugin):
    """User plugin given as a plain ``install(context)`` callable"""

    def __init__(self, install: Callable[[ServerContext], Any], name: str = None):
        self._install = install
        self._name = name or getattr(install, "__name__", "user-plugin")

    @property
    def name(self) -> str:
        return self._name

    def install(self, context: ServerContext) -> None:
        self._install(context)


def _import_plugin(path: str) -> Any:
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ConfigurationError(f"Plugin import path must look like 'module:attribute': {path}", "plugins")
    try:
        module = importlib.import_module(module_name)
        return getattr(module, attr)
    except (ImportError, AttributeError) as e:
        raise ConfigurationError(f"Cannot load plugin {path}: {e}", "plugins") from e


def as_plugin(candidate: Any) -> DevServerPlugin:
    """
    Coerce a user supplied plugin.

    Accepts plugin instances, plugin classes, ``install(context)`` callables
    and ``"module:attribute"`` import strings naming any of those.
    """
    if isinstance(candidate, str):
        candidate = _import_plugin(candidate)
    if isinstance(candidate, type) and issubclass(candidate, DevServerPlugin):
        candidate = candidate()
    if isinstance(candidate, DevServerPlugin):
        return candidate
    if callable(candidate):
        return FunctionPlugin(candidate)
    raise ConfigurationError(f"Not a dev server plugin: {candidate!r}", "plugins")


def install_plugins(context: ServerContext, plugins: Iterable[DevServerPlugin]) -> List[str]:
    """Install plugins one after another, recording the order on the context"""
    for plugin in plugins:
        plugin.install(context)
        context.installed_plugins.append(plugin.name)
        context.logger.debug(f"Installed plugin {plugin.name}")
    return list(context.installed_plugins)
