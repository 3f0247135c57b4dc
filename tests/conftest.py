"""
Pytest configuration and shared fixtures for kvmctl tests.

Provides an in-memory control plane and a static emulator locator so the
lifecycle manager can be exercised without a libvirt daemon.
"""

import pytest
from pathlib import Path
from typing import Dict, List, Optional
from xml.etree import ElementTree as ET
import sys

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from kvmctl.core.control_plane import (  # noqa: E402
    ControlPlane, ControlPlaneUnavailable, DomainInfo, NoSuchDomain, OperationInvalid,
)
from kvmctl.core.emulator import EmulatorLocator  # noqa: E402
from kvmctl.core.vm_config import VMState  # noqa: E402
from kvmctl.core.vm_lifecycle import LifecycleManager  # noqa: E402


QEMU_PATH = Path("/usr/bin/qemu-system-x86_64")


# ============ Fakes ============

class FakeHandle:
    """Connection object returned by FakeControlPlane.open."""

    def __init__(self, uri: str):
        self.uri = uri
        self.closed = False


class FakeDomainRef:
    """Domain reference handed out by FakeControlPlane."""

    def __init__(self, name: str):
        self.name = name
        self.freed = False


class FakeControlPlane(ControlPlane):
    """
    In-memory control plane.

    Records every call in ``calls``; an exception placed in ``fail`` under a
    method name is raised by the next call to that method.
    """

    def __init__(self, reachable=("qemu:///system", "qemu:///session", "test:///default")):
        self.reachable = set(reachable)
        self.domains: Dict[str, dict] = {}
        self.calls: List[tuple] = []
        self.fail: Dict[str, Exception] = {}
        self.refs: List[FakeDomainRef] = []

    def _record(self, method, *args):
        self.calls.append((method,) + args)
        exc = self.fail.pop(method, None)
        if exc is not None:
            raise exc

    def calls_to(self, method) -> List[tuple]:
        return [c for c in self.calls if c[0] == method]

    def _ref(self, name) -> FakeDomainRef:
        ref = FakeDomainRef(name)
        self.refs.append(ref)
        return ref

    def _dom(self, ref) -> dict:
        if ref.name not in self.domains:
            raise NoSuchDomain(f"Domain not found: no domain with matching name '{ref.name}'")
        return self.domains[ref.name]

    # test helpers

    def add_domain(self, name, memory_mib=1024, vcpus=1, state=VMState.SHUT_OFF):
        self.domains[name] = {
            "xml": None,
            "memory_kib": memory_mib * 1024,
            "vcpus": vcpus,
            "state": state.value,
        }

    def state_of(self, name) -> VMState:
        return VMState(self.domains[name]["state"])

    def set_state(self, name, state: VMState):
        self.domains[name]["state"] = state.value

    # ControlPlane

    def open(self, uri):
        self._record("open", uri)
        if uri not in self.reachable:
            raise ControlPlaneUnavailable(f"Failed to connect to {uri}")
        return FakeHandle(uri)

    def close(self, handle):
        self._record("close", handle)
        handle.closed = True

    def define_domain(self, handle, xml):
        self._record("define_domain", handle, xml)
        root = ET.fromstring(xml)
        name = root.findtext("name")
        previous = self.domains.get(name)
        self.domains[name] = {
            "xml": xml,
            "memory_kib": int(root.findtext("memory")) * 1024,
            "vcpus": int(root.findtext("vcpu")),
            "state": previous["state"] if previous else VMState.SHUT_OFF.value,
        }
        return self._ref(name)

    def lookup_domain_by_name(self, handle, name):
        self._record("lookup_domain_by_name", handle, name)
        if name not in self.domains:
            raise NoSuchDomain(f"Domain not found: no domain with matching name '{name}'")
        return self._ref(name)

    def list_all_domains(self, handle, flags=0):
        self._record("list_all_domains", handle, flags)
        return [self._ref(name) for name in self.domains]

    def domain_name(self, ref):
        return ref.name

    def create(self, ref):
        self._record("create", ref)
        dom = self._dom(ref)
        if dom["state"] == VMState.RUNNING.value:
            raise OperationInvalid("Requested operation is not valid: domain is already running")
        dom["state"] = VMState.RUNNING.value

    def shutdown(self, ref):
        self._record("shutdown", ref)
        dom = self._dom(ref)
        if dom["state"] != VMState.RUNNING.value:
            raise OperationInvalid("Requested operation is not valid: domain is not running")
        dom["state"] = VMState.SHUTTING_DOWN.value

    def destroy(self, ref):
        self._record("destroy", ref)
        dom = self._dom(ref)
        if dom["state"] == VMState.SHUT_OFF.value:
            raise OperationInvalid("Requested operation is not valid: domain is not running")
        dom["state"] = VMState.SHUT_OFF.value

    def undefine(self, ref):
        self._record("undefine", ref)
        self._dom(ref)
        del self.domains[ref.name]

    def get_info(self, ref):
        self._record("get_info", ref)
        dom = self._dom(ref)
        return DomainInfo(
            state_code=dom["state"],
            max_memory_kib=dom["memory_kib"],
            memory_kib=dom["memory_kib"],
            vcpus=dom["vcpus"],
        )

    def free_ref(self, ref):
        self._record("free_ref", ref)
        ref.freed = True


class StaticLocator(EmulatorLocator):
    """Locator that returns a fixed answer."""

    def __init__(self, path: Optional[Path]):
        super().__init__(search_dirs=[])
        self.path = path

    def find(self):
        return self.path


# ============ Fixtures ============

@pytest.fixture
def control_plane() -> FakeControlPlane:
    return FakeControlPlane()


@pytest.fixture
def make_manager(control_plane, tmp_path):
    """Factory for managers bound to the fake control plane (not connected)."""
    managers = []

    def factory(emulator: Optional[Path] = QEMU_PATH, **kwargs):
        kwargs.setdefault("image_dir", tmp_path / "images")
        manager = LifecycleManager(
            control_plane=control_plane,
            locator=StaticLocator(emulator),
            **kwargs,
        )
        managers.append(manager)
        return manager

    yield factory

    for manager in managers:
        manager.disconnect()


@pytest.fixture
def manager(make_manager):
    """Manager connected to qemu:///system on the fake control plane."""
    manager = make_manager()
    manager.connect("qemu:///system")
    return manager


# ============ Marker Configuration ============

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line(
        "markers", "requires_libvirt: marks tests that need libvirt-python and its test driver"
    )
    config.addinivalue_line(
        "markers", "unit: fast unit tests with no external deps"
    )


def pytest_collection_modifyitems(config, items):
    """Skip tests based on environment."""
    skip_libvirt = pytest.mark.skip(reason="Requires libvirt-python")

    for item in items:
        if "requires_libvirt" in item.keywords:
            try:
                import libvirt
                conn = libvirt.open("test:///default")
                if conn:
                    conn.close()
            except Exception:
                item.add_marker(skip_libvirt)
