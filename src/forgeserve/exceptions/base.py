"""
Base exceptions for the ForgeServe dev server
"""

import errno
import socket
from enum import Enum
from typing import Optional, Dict, Any, Union


class ForgeServeError(Exception):
    """Base exception for all ForgeServe errors"""
    
    def __init__(
        self, 
        message: str, 
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context or {}
    
    def __str__(self) -> str:
        if self.error_code:
            return f"[{self.error_code}] {self.message}"
        return self.message


class ConfigurationError(ForgeServeError):
    """Raised when server options are malformed"""
    
    def __init__(
        self,
        message: str = "Configuration error", 
        config_key: Optional[str] = None
    ):
        super().__init__(message, "CONFIGURATION_ERROR", {"config_key": config_key})
        self.config_key = config_key


class PortUnavailable(ForgeServeError):
    """Raised when no usable port could be resolved"""
    
    def __init__(self, port: int, attempts: int = 1, message: Optional[str] = None):
        super().__init__(
            message or f"Port {port} is already in use",
            "PORT_UNAVAILABLE",
            {"port": port, "attempts": attempts}
        )
        self.port = port
        self.attempts = attempts


class BindErrorKind(str, Enum):
    """Closed set of socket bind failures"""
    ADDRESS_IN_USE = "address_in_use"
    PERMISSION_DENIED = "permission_denied"
    ADDRESS_UNAVAILABLE = "address_unavailable"
    OTHER = "other"


_ADDRESS_IN_USE_CODES = {errno.EADDRINUSE, getattr(errno, "WSAEADDRINUSE", errno.EADDRINUSE)}
_PERMISSION_CODES = {errno.EACCES, getattr(errno, "WSAEACCES", errno.EACCES)}
_UNAVAILABLE_CODES = {errno.EADDRNOTAVAIL, getattr(errno, "WSAEADDRNOTAVAIL", errno.EADDRNOTAVAIL)}


def classify_os_error(error: OSError) -> BindErrorKind:
    """Map an OS-level bind failure onto a BindErrorKind"""
    if isinstance(error, socket.gaierror):
        return BindErrorKind.ADDRESS_UNAVAILABLE
    if error.errno in _ADDRESS_IN_USE_CODES:
        return BindErrorKind.ADDRESS_IN_USE
    if error.errno in _PERMISSION_CODES:
        return BindErrorKind.PERMISSION_DENIED
    if error.errno in _UNAVAILABLE_CODES:
        return BindErrorKind.ADDRESS_UNAVAILABLE
    return BindErrorKind.OTHER


class BindError(ForgeServeError):
    """Raised when the server socket cannot be bound"""
    
    def __init__(
        self,
        kind: BindErrorKind,
        port: int,
        host: Union[str, None] = None,
        original_error: Optional[BaseException] = None
    ):
        self.kind = kind
        self.port = port
        self.host = host
        self.original_error = original_error
        super().__init__(self.describe(), "BIND_FAILED", {"kind": kind.value, "port": port, "host": host})
    
    @classmethod
    def from_os_error(cls, error: OSError, port: int, host: Optional[str] = None) -> "BindError":
        return cls(classify_os_error(error), port, host, error)
    
    def describe(self) -> str:
        """Human readable message for the failure"""
        if self.kind is BindErrorKind.ADDRESS_IN_USE:
            return f"Port {self.port} is already in use"
        elif self.kind is BindErrorKind.PERMISSION_DENIED:
            return f"Permission denied to use port {self.port}"
        elif self.kind is BindErrorKind.ADDRESS_UNAVAILABLE:
            return f"The IP address {self.host} is not available on this machine."
        elif self.kind is BindErrorKind.OTHER:
            return f"An error occurred: {self.original_error}"
        raise AssertionError(f"Unhandled bind error kind: {self.kind!r}")


class CompileError(ForgeServeError):
    """Raised when the compiler fails during startup"""
    
    def __init__(
        self,
        message: str = "Compilation failed",
        original_error: Optional[BaseException] = None
    ):
        super().__init__(message, "COMPILE_FAILED")
        self.original_error = original_error


class LifecycleError(ForgeServeError):
    """Raised for operations attempted in the wrong server state"""
    
    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message, "LIFECYCLE_ERROR", {"operation": operation})
        self.operation = operation
