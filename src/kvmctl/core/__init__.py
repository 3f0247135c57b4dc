"""
kvmctl Core - control plane access, domain definitions and VM lifecycle.
"""

from .vm_lifecycle import LifecycleManager, ShutdownMethod
from .vm_config import Backend, VMSpec, VMState, VMSummary, VMDefinition
from .managed_vm import ManagedVM

__all__ = [
    "LifecycleManager",
    "ShutdownMethod",
    "ManagedVM",
    "Backend",
    "VMSpec",
    "VMState",
    "VMSummary",
    "VMDefinition",
]
