"""
kvmctl Common Utilities

Shared exceptions, decorators and logging setup.
"""

from .exceptions import (
    KvmctlError, ConnectError, DefineError, InvalidSpecError,
    EmulatorNotFoundError, DefinitionRejectedError, LifecycleError,
    VMNotFoundError, AlreadyRunningError, NotShutOffError,
    ControlPlaneRejectedError, ConnectionLostError, NotConnectedError,
    StaleHandleError,
)
from .decorators import ensure_connected, timed
from .logging_config import setup_logging, LogContext

__all__ = [
    # Exceptions
    "KvmctlError", "ConnectError", "DefineError", "InvalidSpecError",
    "EmulatorNotFoundError", "DefinitionRejectedError", "LifecycleError",
    "VMNotFoundError", "AlreadyRunningError", "NotShutOffError",
    "ControlPlaneRejectedError", "ConnectionLostError", "NotConnectedError",
    "StaleHandleError",
    # Decorators
    "ensure_connected", "timed",
    # Logging
    "setup_logging", "LogContext",
]
