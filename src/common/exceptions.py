"""
kvmctl Exception Hierarchy

Provides clear, actionable error messages with structured information
for logging, user feedback, and programmatic error handling.
"""

from typing import Optional, Dict, Any, Iterable


class KvmctlError(Exception):
    """
    Base exception for all kvmctl errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context as key-value pairs
        cause: Original exception that caused this error
        recoverable: Whether the error is recoverable
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        self.cause = cause
        self.recoverable = recoverable

    def __str__(self):
        s = f"[{self.code}] {self.message}"
        if self.details:
            s += f" (details: {self.details})"
        if self.cause:
            s += f" caused by: {self.cause}"
        return s

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# Connection errors
# =============================================================================

class ConnectError(KvmctlError):
    """Control plane endpoint unreachable, permission denied or malformed URI."""
    def __init__(self, uri: str, reason: str, cause: Optional[Exception] = None):
        super().__init__(
            f"Cannot connect to {uri}: {reason}",
            code="CONNECT_FAILED",
            details={"uri": uri, "reason": reason},
            cause=cause,
        )
        self.uri = uri
        self.reason = reason


# =============================================================================
# Definition errors
# =============================================================================

class DefineError(KvmctlError):
    """Base for errors raised while defining a VM."""
    pass


class InvalidSpecError(DefineError):
    """VM parameters cannot be rendered into a definition."""
    def __init__(self, field: str, value: Any, reason: str):
        super().__init__(
            f"Invalid VM spec: {field}={value!r}: {reason}",
            code="INVALID_SPEC",
            details={"field": field, "value": repr(value), "reason": reason},
            recoverable=False,
        )
        self.field = field


class EmulatorNotFoundError(DefineError):
    """No emulator binary found on the host."""
    def __init__(self, searched: Iterable[str] = ()):
        searched = [str(p) for p in searched]
        super().__init__(
            "QEMU binary not found. Install QEMU "
            "(macOS: brew install qemu, Debian/Ubuntu: apt-get install qemu-system-x86)",
            code="EMULATOR_NOT_FOUND",
            details={"searched": searched},
            recoverable=False,
        )


class DefinitionRejectedError(DefineError):
    """The control plane refused the hardware description."""
    def __init__(self, vm_name: str, reason: str, cause: Optional[Exception] = None):
        super().__init__(
            f"Failed to define VM '{vm_name}': {reason}",
            code="DEFINITION_REJECTED",
            details={"vm_name": vm_name, "reason": reason},
            cause=cause,
        )


# =============================================================================
# Lifecycle errors
# =============================================================================

class LifecycleError(KvmctlError):
    """Base for errors raised by lifecycle operations."""
    pass


class VMNotFoundError(LifecycleError):
    """VM does not exist."""
    def __init__(self, vm_name: str):
        super().__init__(
            f"Virtual machine '{vm_name}' not found",
            code="VM_NOT_FOUND",
            details={"vm_name": vm_name},
            recoverable=False,
        )


class AlreadyRunningError(LifecycleError):
    """VM is already running."""
    def __init__(self, vm_name: str):
        super().__init__(
            f"Virtual machine '{vm_name}' is already running",
            code="VM_ALREADY_RUNNING",
            details={"vm_name": vm_name},
        )


class NotShutOffError(LifecycleError):
    """Operation requires the VM to be shut off."""
    def __init__(self, vm_name: str, current_state: str):
        super().__init__(
            f"VM '{vm_name}' is in state '{current_state}', requires 'Shutoff'",
            code="VM_NOT_SHUT_OFF",
            details={"vm_name": vm_name, "current_state": current_state},
        )
        self.current_state = current_state


class ControlPlaneRejectedError(LifecycleError):
    """The control plane refused a lifecycle operation."""
    def __init__(
        self,
        vm_name: str,
        operation: str,
        reason: str,
        cause: Optional[Exception] = None,
    ):
        super().__init__(
            f"Failed to {operation} VM '{vm_name}': {reason}",
            code="CONTROL_PLANE_REJECTED",
            details={"vm_name": vm_name, "operation": operation, "reason": reason},
            cause=cause,
        )


class ConnectionLostError(LifecycleError):
    """Connection to the control plane dropped during an operation."""
    def __init__(self, uri: str, operation: str, cause: Optional[Exception] = None):
        super().__init__(
            f"Connection to {uri} lost during {operation}; reconnect required",
            code="CONNECTION_LOST",
            details={"uri": uri, "operation": operation},
            cause=cause,
        )


class NotConnectedError(LifecycleError):
    """No open connection to the control plane."""
    def __init__(self, operation: str):
        super().__init__(
            f"Connection not established. Call connect() before {operation}()",
            code="NOT_CONNECTED",
            details={"operation": operation},
        )


class StaleHandleError(LifecycleError):
    """VM handle was released or belongs to a closed connection."""
    def __init__(self, vm_name: str):
        super().__init__(
            f"Handle for VM '{vm_name}' is no longer valid",
            code="STALE_HANDLE",
            details={"vm_name": vm_name},
            recoverable=False,
        )
