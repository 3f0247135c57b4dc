"""
Decorators

Connection guards and timing helpers shared across kvmctl.
"""

from __future__ import annotations

import functools
import logging
import time
from typing import Callable, Optional

from .exceptions import NotConnectedError

logger = logging.getLogger(__name__)


def ensure_connected(
    connection_attr: str = "_connection",
    lock_attr: Optional[str] = None,
):
    """
    Decorator to ensure a connection is established before calling method.

    The attribute is treated as connected when it is not None and, if it
    exposes a ``closed`` flag, that flag is false. With ``lock_attr`` the
    check and the call both run while holding that lock, so a concurrent
    disconnect cannot land between them.

    Args:
        connection_attr: Name of the connection attribute on self
        lock_attr: Name of a (reentrant) lock attribute on self

    Example:
        @ensure_connected("_connection", lock_attr="_lock")
        def list_vms(self):
            ...
    """
    def decorator(func: Callable) -> Callable:
        def check(self):
            conn = getattr(self, connection_attr, None)
            if conn is None or getattr(conn, "closed", False):
                raise NotConnectedError(func.__name__)

        @functools.wraps(func)
        def wrapper(self, *args, **kwargs):
            if lock_attr is None:
                check(self)
                return func(self, *args, **kwargs)
            with getattr(self, lock_attr):
                check(self)
                return func(self, *args, **kwargs)
        return wrapper
    return decorator


def timed(func: Callable) -> Callable:
    """
    Decorator to log function execution time.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start = time.perf_counter()
        try:
            return func(*args, **kwargs)
        finally:
            elapsed = time.perf_counter() - start
            logger.debug(f"{func.__name__} completed in {elapsed:.3f}s")
    return wrapper
