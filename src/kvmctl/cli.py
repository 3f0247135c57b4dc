#!/usr/bin/env python3
"""
kvmctl CLI

Command-line interface for defining, starting, stopping and removing VMs.
Each command maps onto one LifecycleManager operation.
"""

import argparse
import logging
import sys
from pathlib import Path

from common.exceptions import ConnectError, KvmctlError, VMNotFoundError
from common.logging_config import LogContext, setup_logging

from kvmctl.core.vm_config import SESSION_URI, SYSTEM_URI, Backend, VMSpec, VMState
from kvmctl.core.vm_lifecycle import LifecycleManager, ShutdownMethod

logger = logging.getLogger(__name__)

STATE_CHOICES = {
    "running": VMState.RUNNING,
    "paused": VMState.PAUSED,
    "shutoff": VMState.SHUT_OFF,
    "crashed": VMState.CRASHED,
}


def build_manager(args) -> LifecycleManager:
    """Create the manager for this invocation."""
    return LifecycleManager(
        backend=Backend(args.backend),
        image_dir=args.image_dir,
    )


def connect(manager: LifecycleManager, uri=None) -> None:
    """Connect to ``uri``, or to the system URI falling back to the session URI."""
    if uri:
        manager.connect(uri)
        return

    try:
        manager.connect(SYSTEM_URI)
    except ConnectError as e:
        logger.warning(f"{e.message}; trying session connection instead")
        manager.connect(SESSION_URI)


def require_vm(manager: LifecycleManager, name: str):
    vm = manager.lookup_vm(name)
    if vm is None:
        raise VMNotFoundError(name)
    return vm


def cmd_connect(manager, args):
    """Connect and report the endpoint."""
    print(f"Connected to {manager.uri}")
    return 0


def cmd_list(manager, args):
    """List all VMs."""
    vms = manager.list_vms()
    print(f"Found {len(vms)} domains:")
    for vm in vms:
        print(f"  - {vm}")
    return 0


def cmd_define(manager, args):
    """Define a VM."""
    spec = VMSpec(
        name=args.name,
        memory_mib=args.memory,
        vcpu_count=args.vcpus,
        backend=Backend(args.vm_backend) if args.vm_backend else None,
    )
    with manager.define_vm(spec) as vm:
        print(f"VM '{vm.name}' defined successfully")
    return 0


def cmd_start(manager, args):
    """Start a VM."""
    with require_vm(manager, args.name) as vm:
        manager.start_vm(vm)
    print(f"VM '{args.name}' started successfully")
    return 0


def cmd_stop(manager, args):
    """Stop a VM."""
    method = ShutdownMethod.FORCE if args.force else ShutdownMethod.GRACEFUL
    with require_vm(manager, args.name) as vm:
        manager.stop_vm(vm, method=method)
    if args.force:
        print(f"VM '{args.name}' stopped")
    else:
        print(f"Shutdown requested for VM '{args.name}'")
    return 0


def cmd_destroy(manager, args):
    """Force a VM off."""
    with require_vm(manager, args.name) as vm:
        manager.destroy_vm(vm)
    print(f"VM '{args.name}' destroyed successfully")
    return 0


def cmd_undefine(manager, args):
    """Remove a VM definition."""
    with require_vm(manager, args.name) as vm:
        manager.undefine_vm(vm)
    print(f"VM '{args.name}' undefined successfully")
    return 0


def cmd_status(manager, args):
    """Show a VM's state."""
    with require_vm(manager, args.name) as vm:
        state = manager.query_state(vm)
    print(f"VM '{args.name}' state: {state.label}")
    return 0


def cmd_wait(manager, args):
    """Wait for a VM to reach a state."""
    target = STATE_CHOICES[args.state]
    with require_vm(manager, args.name) as vm:
        reached = manager.wait_for_state(vm, target, timeout=args.timeout)
    if not reached:
        print(
            f"VM '{args.name}' did not reach {target.label} within {args.timeout}s",
            file=sys.stderr,
        )
        return 1
    print(f"VM '{args.name}' state: {target.label}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kvmctl",
        description="Manage libvirt virtual machines",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable verbose output"
    )
    parser.add_argument(
        "--uri",
        help=f"Connection URI (default: {SYSTEM_URI}, falling back to {SESSION_URI})",
    )
    parser.add_argument(
        "--image-dir", type=Path, help="Directory holding <name>.qcow2 disk images"
    )
    parser.add_argument(
        "--backend",
        choices=[b.value for b in Backend],
        default=Backend.QEMU.value,
        help="Domain type for new definitions",
    )
    parser.add_argument("--log-file", type=Path, help="Also log to this file")
    parser.add_argument(
        "--json-logs", action="store_true", help="Write the log file as JSON lines"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    connect_p = subparsers.add_parser("connect", help="Check the connection")
    connect_p.set_defaults(func=cmd_connect)

    list_p = subparsers.add_parser("list", help="List VMs")
    list_p.set_defaults(func=cmd_list)

    define_p = subparsers.add_parser("define", aliases=["create"], help="Define a VM")
    define_p.add_argument("name", help="VM name")
    define_p.add_argument("--memory", type=int, default=1024, help="Memory in MiB")
    define_p.add_argument("--vcpus", type=int, default=2, help="Number of vCPUs")
    define_p.add_argument(
        "--backend",
        dest="vm_backend",
        choices=[b.value for b in Backend],
        help="Domain type for this VM (default: the global --backend)",
    )
    define_p.set_defaults(func=cmd_define)

    for name, func, help_text in (
        ("start", cmd_start, "Start a VM"),
        ("destroy", cmd_destroy, "Force a VM off"),
        ("undefine", cmd_undefine, "Remove a VM definition"),
        ("status", cmd_status, "Show VM state"),
    ):
        p = subparsers.add_parser(name, help=help_text)
        p.add_argument("name", help="VM name")
        p.set_defaults(func=func)

    stop_p = subparsers.add_parser("stop", help="Shut a VM down")
    stop_p.add_argument("name", help="VM name")
    stop_p.add_argument(
        "--force", action="store_true", help="Power off immediately instead"
    )
    stop_p.set_defaults(func=cmd_stop)

    wait_p = subparsers.add_parser("wait", help="Wait for a VM state")
    wait_p.add_argument("name", help="VM name")
    wait_p.add_argument("--state", choices=sorted(STATE_CHOICES), default="shutoff")
    wait_p.add_argument("--timeout", type=float, default=60, help="Seconds to wait")
    wait_p.set_defaults(func=cmd_wait)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    setup_logging(
        verbose=args.verbose,
        log_file=args.log_file,
        json_logs=args.json_logs,
    )

    try:
        with build_manager(args) as manager:
            connect(manager, args.uri)
            with LogContext(
                command=args.command,
                uri=manager.uri,
                vm=getattr(args, "name", None),
            ):
                return args.func(manager, args)
    except ConnectError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Is libvirtd running? On macOS: brew services start libvirt", file=sys.stderr)
        return 1
    except KvmctlError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except RuntimeError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
