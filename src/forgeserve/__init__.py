"""
ForgeServe - development server core for web build tools

Turns a compiler into a live, browsable, hot-reloading HTTP endpoint.
"""

from .version import __version__
from .dev import DevServer, HmrEngine, run_dev_server
from .core.config import UserConfig, UserServerConfig, ServerConfiguration, normalize_dev_server_options
from .core.compiler import Compiler, StaticDirectoryCompiler
from .core.ports import PortConflictResolver, resolve_port_conflict
from .plugins import DevServerPlugin, resolve_plugins
from .exceptions.base import (
    ForgeServeError,
    ConfigurationError,
    PortUnavailable,
    BindError,
    CompileError,
    LifecycleError,
)

__author__ = "ForgeServe Contributors"

__all__ = [
    # Server
    "DevServer",
    "HmrEngine",
    "run_dev_server",

    # Configuration
    "UserConfig",
    "UserServerConfig",
    "ServerConfiguration",
    "normalize_dev_server_options",
    "PortConflictResolver",
    "resolve_port_conflict",

    # Collaborators
    "Compiler",
    "StaticDirectoryCompiler",
    "DevServerPlugin",
    "resolve_plugins",

    # Exceptions
    "ForgeServeError",
    "ConfigurationError",
    "PortUnavailable",
    "BindError",
    "CompileError",
    "LifecycleError",

    # Version info
    "__version__",
]
