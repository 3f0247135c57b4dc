"""
Emulator Locator

Finds the QEMU system emulator on the host.
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)


class EmulatorLocator:
    """
    Locates the emulator binary.

    Search order:
    1. Fixed install locations (Homebrew on Apple Silicon and Intel, Linux)
    2. PATH lookup
    """

    BINARY_NAME = "qemu-system-x86_64"
    SEARCH_DIRS = [
        Path("/opt/homebrew/bin"),
        Path("/usr/local/bin"),
        Path("/usr/bin"),
        Path("/usr/libexec"),
    ]

    def __init__(
        self,
        binary_name: Optional[str] = None,
        search_dirs: Optional[Sequence[Path]] = None,
    ):
        self.binary_name = binary_name or self.BINARY_NAME
        self._search_dirs = list(search_dirs) if search_dirs is not None else list(self.SEARCH_DIRS)

    @property
    def candidates(self) -> List[Path]:
        """Fixed candidate paths, in search order."""
        return [d / self.binary_name for d in self._search_dirs]

    def find(self) -> Optional[Path]:
        """
        Find the emulator.

        Returns:
            Path of the first existing executable, or None
        """
        for path in self.candidates:
            if path.is_file() and os.access(path, os.X_OK):
                logger.debug(f"Found emulator: {path}")
                return path

        found = shutil.which(self.binary_name)
        if found:
            logger.debug(f"Found emulator on PATH: {found}")
            return Path(found)

        logger.warning(f"{self.binary_name} not found")
        return None
