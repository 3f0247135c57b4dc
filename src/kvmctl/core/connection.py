"""
Connection Handle

A single open session to the control plane, closed exactly once.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Optional
from urllib.parse import urlsplit

from common.exceptions import ConnectError

from .control_plane import ControlPlane, ControlPlaneError

logger = logging.getLogger(__name__)


class ConnectionHandle:
    """
    Owns one control plane session.

    ``close()`` may be called any number of times; the session is released
    on the first call only.
    """

    def __init__(self, control_plane: ControlPlane, uri: str, raw: Any):
        self._control_plane = control_plane
        self._uri = uri
        self._raw: Optional[Any] = raw
        self._lock = threading.Lock()

    @classmethod
    def open(cls, control_plane: ControlPlane, uri: str) -> "ConnectionHandle":
        """
        Open a session to ``uri``.

        Raises:
            ConnectError: If the URI is malformed or the endpoint refuses
        """
        if not uri or not urlsplit(uri).scheme:
            raise ConnectError(uri, "malformed URI")

        try:
            raw = control_plane.open(uri)
        except ControlPlaneError as e:
            raise ConnectError(uri, str(e), cause=e) from e

        logger.info(f"Connected to libvirt: {uri}")
        return cls(control_plane, uri, raw)

    @property
    def uri(self) -> str:
        return self._uri

    @property
    def closed(self) -> bool:
        return self._raw is None

    @property
    def raw(self) -> Any:
        """The control plane's connection object."""
        if self._raw is None:
            raise RuntimeError(f"Connection to {self._uri} is closed")
        return self._raw

    @property
    def control_plane(self) -> ControlPlane:
        return self._control_plane

    def close(self) -> None:
        """Release the session. Errors from the control plane are logged."""
        with self._lock:
            raw, self._raw = self._raw, None
        if raw is None:
            return
        try:
            self._control_plane.close(raw)
        except ControlPlaneError as e:
            # The session is gone either way
            logger.warning(f"Error closing connection to {self._uri}: {e}")
        logger.info(f"Disconnected from libvirt: {self._uri}")

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"<ConnectionHandle {self._uri} ({state})>"
