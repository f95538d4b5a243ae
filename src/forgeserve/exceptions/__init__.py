"""
ForgeServe Exceptions
"""

from .base import (
    ForgeServeError,
    ConfigurationError,
    PortUnavailable,
    BindError,
    BindErrorKind,
    CompileError,
    LifecycleError,
    classify_os_error,
)

__all__ = [
    "ForgeServeError",
    "ConfigurationError",
    "PortUnavailable",
    "BindError",
    "BindErrorKind",
    "CompileError",
    "LifecycleError",
    "classify_os_error",
]
