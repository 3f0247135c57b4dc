"""
kvmctl

Single-host VM lifecycle management over libvirt.
"""

from .core.vm_lifecycle import LifecycleManager, ShutdownMethod
from .core.vm_config import Backend, VMSpec, VMState, VMSummary, VMDefinition
from .core.managed_vm import ManagedVM
from .core.domain_xml import build_definition
from .core.emulator import EmulatorLocator

__version__ = "0.1.0"

__all__ = [
    "LifecycleManager",
    "ShutdownMethod",
    "ManagedVM",
    "Backend",
    "VMSpec",
    "VMState",
    "VMSummary",
    "VMDefinition",
    "build_definition",
    "EmulatorLocator",
]
