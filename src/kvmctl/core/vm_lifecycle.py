"""
VM Lifecycle Manager

Owns one control plane connection and drives VMs through
define, start, stop, destroy and undefine.

State preconditions are checked by querying the control plane right before
acting. Another client can still change the VM between the query and the
call; the control plane remains the only source of truth.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Iterator, List, Optional

from common.decorators import ensure_connected
from common.exceptions import (
    AlreadyRunningError,
    ConnectionLostError,
    ControlPlaneRejectedError,
    DefinitionRejectedError,
    EmulatorNotFoundError,
    NotShutOffError,
    StaleHandleError,
    VMNotFoundError,
)

from .connection import ConnectionHandle
from .control_plane import (
    ControlPlane,
    ControlPlaneError,
    ControlPlaneUnavailable,
    LibvirtControlPlane,
    NoSuchDomain,
)
from .domain_xml import build_definition, validate_spec
from .emulator import EmulatorLocator
from .managed_vm import ManagedVM
from .vm_config import (
    Backend,
    VMSpec,
    VMState,
    VMSummary,
    default_image_dir,
    disk_path_for,
)

logger = logging.getLogger(__name__)


class ShutdownMethod(Enum):
    """Methods for shutting down a VM."""
    GRACEFUL = "graceful"   # ACPI shutdown signal
    FORCE = "force"         # Immediate power off


class LifecycleManager:
    """
    Manages VM lifecycle operations over a single connection.

    Nothing is retried: every failure surfaces as a typed exception. The
    only absorbed case is destroying a VM that is already shut off.
    Operations are serialized on an internal lock because one connection
    cannot carry concurrent calls.
    """

    def __init__(
        self,
        backend: Backend = Backend.QEMU,
        control_plane: Optional[ControlPlane] = None,
        locator: Optional[EmulatorLocator] = None,
        image_dir: Optional[Path] = None,
    ):
        """
        Initialize LifecycleManager.

        Args:
            backend: Domain type declared in new definitions
            control_plane: Control plane client (default: libvirt)
            locator: Emulator locator (default: fixed paths then PATH)
            image_dir: Directory holding <name>.qcow2 disk images
        """
        self.backend = backend
        self._control_plane = control_plane
        self._locator = locator or EmulatorLocator()
        self.image_dir = Path(image_dir) if image_dir else default_image_dir()
        self._connection: Optional[ConnectionHandle] = None
        self._lock = threading.RLock()

    @property
    def control_plane(self) -> ControlPlane:
        if self._control_plane is None:
            self._control_plane = LibvirtControlPlane()
        return self._control_plane

    @property
    def connected(self) -> bool:
        return self._connection is not None and not self._connection.closed

    @property
    def uri(self) -> Optional[str]:
        return self._connection.uri if self._connection else None

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    def connect(self, uri: str) -> None:
        """
        Connect to a control plane endpoint, replacing any open connection.

        Raises:
            ConnectError: If the endpoint cannot be reached
        """
        with self._lock:
            if self._connection is not None:
                self.disconnect()
            self._connection = ConnectionHandle.open(self.control_plane, uri)

    def disconnect(self) -> None:
        """Close the connection. Outstanding VM handles become invalid."""
        with self._lock:
            conn, self._connection = self._connection, None
            if conn is not None:
                conn.close()

    close = disconnect

    def __enter__(self) -> "LifecycleManager":
        return self

    def __exit__(self, *args) -> None:
        self.disconnect()

    def _mark_disconnected(self, operation: str) -> None:
        logger.error(
            f"Lost connection to {self.uri} during {operation}; "
            "reconnect before further operations"
        )
        self.disconnect()

    @contextmanager
    def _control_plane_call(self, operation: str, vm_name: str) -> Iterator[None]:
        """Translate control plane errors into lifecycle errors."""
        uri = self.uri
        try:
            yield
        except ControlPlaneUnavailable as e:
            self._mark_disconnected(operation)
            raise ConnectionLostError(uri, operation, cause=e) from e
        except NoSuchDomain as e:
            raise VMNotFoundError(vm_name) from e
        except ControlPlaneError as e:
            raise ControlPlaneRejectedError(vm_name, operation, str(e), cause=e) from e

    def _free(self, ref) -> None:
        if not self.connected:
            return
        try:
            self.control_plane.free_ref(ref)
        except ControlPlaneError as e:
            logger.warning(f"Failed to free domain reference: {e}")

    def _check_handle(self, vm: ManagedVM) -> None:
        if not vm.valid or vm.connection is not self._connection:
            raise StaleHandleError(vm.name)

    @contextmanager
    def _domain(self, name: str, operation: str):
        """Resolve a domain by name for the duration of one operation."""
        with self._control_plane_call(operation, name):
            ref = self.control_plane.lookup_domain_by_name(self._connection.raw, name)
        try:
            yield ref
        finally:
            self._free(ref)

    def _state_of(self, ref, name: str, operation: str) -> VMState:
        with self._control_plane_call(operation, name):
            info = self.control_plane.get_info(ref)
        return VMState.from_code(info.state_code)

    # ------------------------------------------------------------------
    # Definition
    # ------------------------------------------------------------------

    @ensure_connected(lock_attr="_lock")
    def define_vm(self, spec: VMSpec) -> ManagedVM:
        """
        Define a VM, or redefine it if the name already exists.

        Args:
            spec: VM parameters

        Returns:
            Handle owned by the caller

        Raises:
            InvalidSpecError: If the spec cannot be rendered
            EmulatorNotFoundError: If no emulator binary is found
            DefinitionRejectedError: If the control plane refuses the XML
            ConnectionLostError: If the connection drops
        """
        with self._lock:
            validate_spec(spec)

            emulator = self._locator.find()
            if emulator is None:
                raise EmulatorNotFoundError(self._locator.candidates)

            disk = disk_path_for(spec.name, self.image_dir)
            if not disk.exists():
                logger.warning(
                    f"Disk image {disk} does not exist yet; "
                    f"create it with: qemu-img create -f qcow2 {disk} 10G"
                )

            definition = build_definition(spec, emulator, disk, backend=self.backend)

            conn = self._connection
            try:
                ref = self.control_plane.define_domain(conn.raw, definition.xml)
            except ControlPlaneUnavailable as e:
                self._mark_disconnected("define")
                raise ConnectionLostError(conn.uri, "define", cause=e) from e
            except ControlPlaneError as e:
                raise DefinitionRejectedError(spec.name, str(e), cause=e) from e

            logger.info(f"VM '{spec.name}' defined successfully")
            return ManagedVM(spec.name, ref, conn)

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    @ensure_connected(lock_attr="_lock")
    def start_vm(self, vm: ManagedVM) -> None:
        """
        Start a defined VM.

        Raises:
            AlreadyRunningError: If the VM is observed running
            ControlPlaneRejectedError: If the control plane refuses
        """
        with self._lock:
            self._check_handle(vm)
            with self._domain(vm.name, "start") as ref:
                if self._state_of(ref, vm.name, "start") == VMState.RUNNING:
                    raise AlreadyRunningError(vm.name)
                with self._control_plane_call("start", vm.name):
                    self.control_plane.create(ref)
            logger.info(f"Started VM: {vm.name}")

    @ensure_connected(lock_attr="_lock")
    def stop_graceful(self, vm: ManagedVM) -> None:
        """
        Send a shutdown request.

        Returns once the request is accepted; the guest shuts down on its
        own schedule. Poll ``query_state`` (or ``wait_for_state``) to
        confirm the VM reached Shutoff.
        """
        with self._lock:
            self._check_handle(vm)
            with self._domain(vm.name, "stop") as ref:
                with self._control_plane_call("stop", vm.name):
                    self.control_plane.shutdown(ref)
            logger.info(f"Sent shutdown signal to: {vm.name}")

    @ensure_connected(lock_attr="_lock")
    def destroy_vm(self, vm: ManagedVM) -> None:
        """
        Force a VM off. Succeeds without effect if it is already shut off.

        Raises:
            ControlPlaneRejectedError: On a genuine control plane failure
        """
        with self._lock:
            self._check_handle(vm)
            with self._domain(vm.name, "destroy") as ref:
                if self._state_of(ref, vm.name, "destroy") == VMState.SHUT_OFF:
                    logger.info(f"VM {vm.name} is already stopped")
                    return
                try:
                    with self._control_plane_call("destroy", vm.name):
                        self.control_plane.destroy(ref)
                except ControlPlaneRejectedError:
                    # It may have stopped between the query and the call
                    if self._state_of(ref, vm.name, "destroy") == VMState.SHUT_OFF:
                        logger.info(f"VM {vm.name} stopped before destroy")
                        return
                    raise
            logger.info(f"Force stopped VM: {vm.name}")

    def stop_forced(self, vm: ManagedVM) -> None:
        """Immediate power off; same as ``destroy_vm``."""
        self.destroy_vm(vm)

    def stop_vm(
        self,
        vm: ManagedVM,
        method: ShutdownMethod = ShutdownMethod.GRACEFUL,
    ) -> None:
        """Stop a VM gracefully (default) or by force."""
        if method == ShutdownMethod.FORCE:
            self.stop_forced(vm)
        else:
            self.stop_graceful(vm)

    @ensure_connected(lock_attr="_lock")
    def undefine_vm(self, vm: ManagedVM) -> None:
        """
        Remove a VM's definition. The VM must be shut off.

        Raises:
            NotShutOffError: If the VM is in any other state
        """
        with self._lock:
            self._check_handle(vm)
            with self._domain(vm.name, "undefine") as ref:
                state = self._state_of(ref, vm.name, "undefine")
                if state != VMState.SHUT_OFF:
                    raise NotShutOffError(vm.name, state.label)
                with self._control_plane_call("undefine", vm.name):
                    self.control_plane.undefine(ref)
            logger.info(f"VM '{vm.name}' undefined successfully")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @ensure_connected(lock_attr="_lock")
    def lookup_vm(self, name: str) -> Optional[ManagedVM]:
        """
        Find a VM by name.

        Returns:
            Handle owned by the caller, or None if no such VM exists
        """
        with self._lock:
            conn = self._connection
            try:
                with self._control_plane_call("lookup", name):
                    ref = self.control_plane.lookup_domain_by_name(conn.raw, name)
            except VMNotFoundError:
                logger.info(f"VM '{name}' not found")
                return None
            return ManagedVM(name, ref, conn)

    @ensure_connected(lock_attr="_lock")
    def list_vms(self) -> List[VMSummary]:
        """
        Snapshot of all domains, active and inactive.

        Order is whatever the control plane returns. Every enumerated
        reference is freed before this returns.
        """
        with self._lock:
            with self._control_plane_call("list", "*"):
                pending = list(
                    self.control_plane.list_all_domains(self._connection.raw, 0)
                )

            summaries = []
            try:
                while pending:
                    ref = pending.pop(0)
                    try:
                        summary = self._summarize(ref)
                    except VMNotFoundError as e:
                        # Undefined between enumeration and the info call
                        logger.warning(f"Skipping vanished domain: {e.message}")
                        continue
                    finally:
                        self._free(ref)
                    summaries.append(summary)
            finally:
                for ref in pending:
                    self._free(ref)

            logger.debug(f"Found {len(summaries)} domains")
            return summaries

    def _summarize(self, ref) -> VMSummary:
        name = "<unknown>"
        with self._control_plane_call("list", name):
            name = self.control_plane.domain_name(ref)
        with self._control_plane_call("list", name):
            info = self.control_plane.get_info(ref)
        return VMSummary(
            name=name,
            state=VMState.from_code(info.state_code),
            memory_mib=info.max_memory_kib // 1024,
        )

    @ensure_connected(lock_attr="_lock")
    def query_state(self, vm: ManagedVM) -> VMState:
        """Fetch the VM's current state from the control plane."""
        with self._lock:
            self._check_handle(vm)
            with self._domain(vm.name, "query") as ref:
                return self._state_of(ref, vm.name, "query")

    @ensure_connected(lock_attr="_lock")
    def get_memory_mib(self, vm: ManagedVM) -> int:
        """Configured memory of a VM, as reported by the control plane."""
        with self._lock:
            self._check_handle(vm)
            with self._domain(vm.name, "query") as ref:
                with self._control_plane_call("query", vm.name):
                    info = self.control_plane.get_info(ref)
            return info.max_memory_kib // 1024

    def wait_for_state(
        self,
        vm: ManagedVM,
        target: VMState,
        timeout: float = 60,
        interval: float = 1.0,
    ) -> bool:
        """
        Poll ``query_state`` until the VM reaches ``target``.

        Returns:
            True if the state was observed before the timeout
        """
        deadline = time.monotonic() + timeout
        while True:
            if self.query_state(vm) == target:
                return True
            if time.monotonic() >= deadline:
                logger.warning(f"VM {vm.name} did not reach {target.label} in {timeout}s")
                return False
            time.sleep(interval)
