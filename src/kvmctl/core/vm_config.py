"""
VM Configuration - Value types for VM specs, definitions and state.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

# Default connection URIs
SYSTEM_URI = "qemu:///system"
SESSION_URI = "qemu:///session"

SYSTEM_IMAGES_PATH = Path("/var/lib/libvirt/images")
USER_IMAGES_SUBDIR = Path(".local/share/libvirt/images")
DISK_IMAGE_SUFFIX = ".qcow2"


class Backend(Enum):
    """Virtualization backend, declared as the domain type."""
    QEMU = "qemu"
    KVM = "kvm"


class VMState(Enum):
    """Virtual machine states matching libvirt domain state codes."""
    UNKNOWN = 0
    RUNNING = 1
    BLOCKED = 2
    PAUSED = 3
    SHUTTING_DOWN = 4
    SHUT_OFF = 5
    CRASHED = 6

    @classmethod
    def from_code(cls, code: int) -> "VMState":
        """Map a control plane state code; unrecognized codes are UNKNOWN."""
        try:
            return cls(code)
        except ValueError:
            return cls.UNKNOWN

    @property
    def label(self) -> str:
        return _STATE_LABELS[self]


_STATE_LABELS = {
    VMState.RUNNING: "Running",
    VMState.BLOCKED: "Blocked",
    VMState.PAUSED: "Paused",
    VMState.SHUTTING_DOWN: "Shutdown",
    VMState.SHUT_OFF: "Shutoff",
    VMState.CRASHED: "Crashed",
    VMState.UNKNOWN: "Unknown",
}


@dataclass(frozen=True)
class VMSpec:
    """
    User-supplied parameters for a VM.

    ``backend`` of None means the manager's backend is used.
    """
    name: str
    memory_mib: int
    vcpu_count: int
    backend: Optional[Backend] = None


@dataclass(frozen=True)
class VMDefinition:
    """A rendered domain XML document and the facts it was rendered from."""
    name: str
    backend: Backend
    emulator_path: str
    disk_path: str
    xml: str


@dataclass(frozen=True)
class VMSummary:
    """One entry of a domain listing."""
    name: str
    state: VMState
    memory_mib: int

    def __str__(self) -> str:
        return f"{self.name} (State: {self.state.label}, Memory: {self.memory_mib}MB)"


def default_image_dir() -> Path:
    """Per-user libvirt image directory when HOME is set, else the system one."""
    home = os.environ.get("HOME")
    if home:
        return Path(home) / USER_IMAGES_SUBDIR
    return SYSTEM_IMAGES_PATH


def disk_path_for(name: str, image_dir: Path) -> Path:
    """Disk image path for a VM; the image itself is provisioned elsewhere."""
    return image_dir / f"{name}{DISK_IMAGE_SUFFIX}"
