"""
Control Plane Interface

The narrow set of hypervisor calls the lifecycle manager depends on, and
the libvirt implementation of it.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, List, Optional

try:
    import libvirt
    LIBVIRT_AVAILABLE = True
except ImportError:
    LIBVIRT_AVAILABLE = False
    libvirt = None

from common.decorators import timed

logger = logging.getLogger(__name__)


class ControlPlaneError(Exception):
    """Raised when a control plane call fails."""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code


class ControlPlaneUnavailable(ControlPlaneError):
    """Endpoint unreachable or the connection dropped."""
    pass


class NoSuchDomain(ControlPlaneError):
    """Domain lookup found nothing."""
    pass


class OperationInvalid(ControlPlaneError):
    """Operation not valid in the domain's current state."""
    pass


@dataclass(frozen=True)
class DomainInfo:
    """Subset of a domain's runtime info."""
    state_code: int
    max_memory_kib: int
    memory_kib: int
    vcpus: int


class ControlPlane(ABC):
    """
    Capability interface to the hypervisor control plane.

    ``handle`` values come from ``open``; ``ref`` values are domain
    references from ``define_domain``, ``lookup_domain_by_name`` or
    ``list_all_domains``. Calls raise ControlPlaneError subclasses.
    """

    @abstractmethod
    def open(self, uri: str) -> Any:
        """Open a connection; raises ControlPlaneUnavailable."""

    @abstractmethod
    def close(self, handle: Any) -> None:
        """Close a connection."""

    @abstractmethod
    def define_domain(self, handle: Any, xml: str) -> Any:
        """Define (or redefine) a domain from its XML description."""

    @abstractmethod
    def lookup_domain_by_name(self, handle: Any, name: str) -> Any:
        """Look up a domain; raises NoSuchDomain."""

    @abstractmethod
    def list_all_domains(self, handle: Any, flags: int = 0) -> List[Any]:
        """All domains, active and inactive."""

    @abstractmethod
    def domain_name(self, ref: Any) -> str:
        """Name of a domain."""

    @abstractmethod
    def create(self, ref: Any) -> None:
        """Start a defined domain."""

    @abstractmethod
    def shutdown(self, ref: Any) -> None:
        """Request graceful shutdown."""

    @abstractmethod
    def destroy(self, ref: Any) -> None:
        """Force the domain off."""

    @abstractmethod
    def undefine(self, ref: Any) -> None:
        """Remove the domain's persistent definition."""

    @abstractmethod
    def get_info(self, ref: Any) -> DomainInfo:
        """Current state and memory of a domain."""

    @abstractmethod
    def free_ref(self, ref: Any) -> None:
        """Release a domain reference."""


class LibvirtControlPlane(ControlPlane):
    """
    ControlPlane backed by libvirt-python.

    libvirt's default error handler prints to stderr; it is replaced with
    one that logs at DEBUG, since every error is also raised as an exception.
    """

    def __init__(self):
        if not LIBVIRT_AVAILABLE:
            raise RuntimeError(
                "libvirt-python is not installed. "
                "Install with: pip install libvirt-python"
            )
        libvirt.registerErrorHandler(self._error_handler, None)

    @staticmethod
    def _error_handler(ctx, error):
        """Handle libvirt errors."""
        logger.debug(f"LibVirt: {error}")

    @contextmanager
    def _translate(self, conn=None):
        """Map libvirtError onto ControlPlaneError subclasses."""
        try:
            yield
        except libvirt.libvirtError as e:
            raise self._classify(e, conn) from e

    def _classify(self, error, conn) -> ControlPlaneError:
        code = error.get_error_code()
        message = error.get_error_message() or str(error)

        if code == libvirt.VIR_ERR_NO_DOMAIN:
            return NoSuchDomain(message, code)

        connection_codes = {
            libvirt.VIR_ERR_NO_CONNECT,
            libvirt.VIR_ERR_INVALID_CONN,
            libvirt.VIR_ERR_RPC,
            libvirt.VIR_ERR_AUTH_FAILED,
        }
        if code in connection_codes or not self._is_alive(conn):
            return ControlPlaneUnavailable(message, code)

        if code == libvirt.VIR_ERR_OPERATION_INVALID:
            return OperationInvalid(message, code)

        return ControlPlaneError(message, code)

    @staticmethod
    def _is_alive(conn) -> bool:
        if conn is None:
            return True
        try:
            return bool(conn.isAlive())
        except libvirt.libvirtError:
            return False

    @timed
    def open(self, uri: str):
        try:
            conn = libvirt.open(uri)
        except libvirt.libvirtError as e:
            raise ControlPlaneUnavailable(
                e.get_error_message() or str(e), e.get_error_code()
            ) from e
        if conn is None:
            raise ControlPlaneUnavailable(f"Failed to connect to {uri}")
        return conn

    def close(self, handle) -> None:
        with self._translate():
            handle.close()

    @timed
    def define_domain(self, handle, xml: str):
        with self._translate(handle):
            return handle.defineXML(xml)

    def lookup_domain_by_name(self, handle, name: str):
        with self._translate(handle):
            return handle.lookupByName(name)

    @timed
    def list_all_domains(self, handle, flags: int = 0):
        with self._translate(handle):
            return list(handle.listAllDomains(flags))

    def domain_name(self, ref) -> str:
        return ref.name()

    @timed
    def create(self, ref) -> None:
        with self._translate(ref.connect()):
            ref.create()

    @timed
    def shutdown(self, ref) -> None:
        with self._translate(ref.connect()):
            ref.shutdown()

    @timed
    def destroy(self, ref) -> None:
        with self._translate(ref.connect()):
            ref.destroy()

    @timed
    def undefine(self, ref) -> None:
        with self._translate(ref.connect()):
            ref.undefine()

    def get_info(self, ref) -> DomainInfo:
        with self._translate(ref.connect()):
            state, max_mem, mem, vcpus, _cpu_time = ref.info()
        return DomainInfo(
            state_code=state,
            max_memory_kib=max_mem,
            memory_kib=mem,
            vcpus=vcpus,
        )

    def free_ref(self, ref) -> None:
        # No public free in the bindings; the virDomainPtr is freed when the
        # last Python reference goes, which callers drop on release.
        del ref
