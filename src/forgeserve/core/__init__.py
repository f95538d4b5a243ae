"""
Core components: configuration, ports, context, compiler contract
"""

from .config import (
    HmrOptions,
    ServerConfiguration,
    UserConfig,
    UserServerConfig,
    load_user_config,
    normalize_dev_server_options,
    runtime_public_path,
)
from .compiler import Compiler, StaticDirectoryCompiler
from .context import MiddlewarePipeline, ServerContext
from .ports import PortConflictResolver, PortProbeResult, resolve_port_conflict
from .schemas import UpdateResult

__all__ = [
    "HmrOptions",
    "ServerConfiguration",
    "UserConfig",
    "UserServerConfig",
    "load_user_config",
    "normalize_dev_server_options",
    "runtime_public_path",
    "Compiler",
    "StaticDirectoryCompiler",
    "MiddlewarePipeline",
    "ServerContext",
    "PortConflictResolver",
    "PortProbeResult",
    "resolve_port_conflict",
    "UpdateResult",
]
