"""
Managed VM handle.
"""

from __future__ import annotations

import logging
from typing import Any

from .connection import ConnectionHandle
from .control_plane import ControlPlaneError

logger = logging.getLogger(__name__)


class ManagedVM:
    """
    Local proxy for one control plane domain.

    The control plane owns the VM itself; whoever receives a ManagedVM owns
    the proxy and must ``release()`` it (or use it as a context manager).
    Lifecycle operations re-resolve the domain by name, so the stored
    reference is only kept to be released.
    """

    def __init__(self, name: str, ref: Any, connection: ConnectionHandle):
        self._name = name
        self._ref = ref
        self._connection = connection
        self._released = False

    @property
    def name(self) -> str:
        return self._name

    @property
    def connection(self) -> ConnectionHandle:
        return self._connection

    @property
    def released(self) -> bool:
        return self._released

    @property
    def valid(self) -> bool:
        """False once released or once its connection has closed."""
        return not self._released and not self._connection.closed

    def release(self) -> None:
        """
        Release the domain reference. Safe to call more than once.

        libvirt-python has no public call to free a virDomainPtr; the binding
        frees it when its Python object is collected. Release therefore drops
        every reference this handle holds, so on CPython the pointer is freed
        as soon as the caller lets go of it too.
        """
        if self._released:
            return
        self._released = True
        ref, self._ref = self._ref, None
        if self._connection.closed:
            # Closing the connection already invalidated the reference
            return
        try:
            self._connection.control_plane.free_ref(ref)
        except ControlPlaneError as e:
            logger.warning(f"Failed to release handle for {self._name}: {e}")

    def __enter__(self) -> "ManagedVM":
        return self

    def __exit__(self, *args) -> None:
        self.release()

    def __repr__(self) -> str:
        state = "valid" if self.valid else "invalid"
        return f"<ManagedVM {self._name!r} ({state})>"
