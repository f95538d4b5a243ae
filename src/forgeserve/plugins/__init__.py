"""
Dev server plugins

User plugins are installed first, in the order given, followed by the
fixed infrastructure sequence.
"""

from typing import Any, Iterable, List

from .base import DevServerPlugin, FunctionPlugin, PluginKind, as_plugin, install_plugins
from .headers import HeadersPlugin
from .lazy_compilation import LazyCompilationPlugin
from .hmr import HmrPlugin
from .cors import CorsPlugin
from .resources import ResourcesPlugin
from .records import RecordsPlugin
from .proxy import ProxyPlugin

INFRASTRUCTURE_PLUGINS = (
    HeadersPlugin,
    LazyCompilationPlugin,
    HmrPlugin,
    CorsPlugin,
    ResourcesPlugin,
    RecordsPlugin,
    ProxyPlugin,
)


def resolve_plugins(user_plugins: Iterable[Any] = ()) -> List[DevServerPlugin]:
    """User plugins, then the infrastructure plugins in their fixed order"""
    resolved = [as_plugin(plugin) for plugin in user_plugins]
    resolved.extend(plugin_cls() for plugin_cls in INFRASTRUCTURE_PLUGINS)
    return resolved


__all__ = [
    "DevServerPlugin",
    "FunctionPlugin",
    "PluginKind",
    "INFRASTRUCTURE_PLUGINS",
    "as_plugin",
    "install_plugins",
    "resolve_plugins",
    "HeadersPlugin",
    "LazyCompilationPlugin",
    "HmrPlugin",
    "CorsPlugin",
    "ResourcesPlugin",
    "RecordsPlugin",
    "ProxyPlugin",
]
