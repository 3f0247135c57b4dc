"""
Tests for the kvmctl CLI
"""

import logging
from xml.etree import ElementTree as ET

import pytest

from kvmctl import cli
from kvmctl.core.vm_config import Backend, VMState


@pytest.fixture(autouse=True)
def restore_root_logger():
    """main() reconfigures the root logger; put it back afterwards."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def run(make_manager, monkeypatch):
    """Run the CLI against the fake control plane."""
    monkeypatch.setattr(cli, "build_manager", lambda args: make_manager())

    def runner(*argv):
        return cli.main(list(argv))

    return runner


class TestCLI:
    """Tests for CLI commands."""

    def test_no_command_prints_help(self, run, capsys):
        assert run() == 1
        assert "usage:" in capsys.readouterr().out

    def test_connect(self, run, capsys):
        assert run("connect") == 0
        assert "Connected to qemu:///system" in capsys.readouterr().out

    def test_list_empty(self, run, capsys):
        assert run("list") == 0
        assert "Found 0 domains:" in capsys.readouterr().out

    def test_list(self, run, control_plane, capsys):
        control_plane.add_domain("web", memory_mib=2048, state=VMState.RUNNING)

        assert run("list") == 0

        out = capsys.readouterr().out
        assert "Found 1 domains:" in out
        assert "  - web (State: Running, Memory: 2048MB)" in out

    def test_define_then_status(self, run, control_plane, capsys):
        assert run("define", "vm1", "--memory", "512", "--vcpus", "1") == 0
        assert "VM 'vm1' defined successfully" in capsys.readouterr().out
        assert control_plane.domains["vm1"]["memory_kib"] == 512 * 1024

        assert run("status", "vm1") == 0
        assert "VM 'vm1' state: Shutoff" in capsys.readouterr().out

    def test_define_with_backend(self, run, control_plane):
        assert run("define", "vm1", "--backend", "kvm") == 0

        root = ET.fromstring(control_plane.domains["vm1"]["xml"])
        assert root.get("type") == "kvm"

    def test_define_uses_global_backend(self, make_manager, control_plane, monkeypatch):
        """Test the global --backend applies when define does not name one."""
        monkeypatch.setattr(
            cli, "build_manager", lambda args: make_manager(backend=Backend(args.backend))
        )

        assert cli.main(["--backend", "kvm", "define", "vm1"]) == 0

        root = ET.fromstring(control_plane.domains["vm1"]["xml"])
        assert root.get("type") == "kvm"

    def test_define_default_backend(self, run, control_plane):
        assert run("define", "vm1") == 0

        root = ET.fromstring(control_plane.domains["vm1"]["xml"])
        assert root.get("type") == "qemu"

    def test_create_alias(self, run, control_plane):
        assert run("create", "vm1") == 0
        assert "vm1" in control_plane.domains

    def test_start_stop_undefine(self, run, control_plane, capsys):
        control_plane.add_domain("vm1")

        assert run("start", "vm1") == 0
        assert control_plane.state_of("vm1") == VMState.RUNNING

        assert run("stop", "vm1") == 0
        assert "Shutdown requested" in capsys.readouterr().out
        assert control_plane.state_of("vm1") == VMState.SHUTTING_DOWN

        assert run("stop", "--force", "vm1") == 0
        assert control_plane.state_of("vm1") == VMState.SHUT_OFF

        assert run("undefine", "vm1") == 0
        assert "vm1" not in control_plane.domains

    def test_undefine_running_fails(self, run, control_plane, capsys):
        control_plane.add_domain("vm1", state=VMState.RUNNING)

        assert run("undefine", "vm1") == 1
        assert "VM_NOT_SHUT_OFF" in capsys.readouterr().err
        assert "vm1" in control_plane.domains

    def test_missing_vm(self, run, capsys):
        assert run("status", "ghost") == 1
        assert "Error: [VM_NOT_FOUND]" in capsys.readouterr().err

    def test_wait_reached(self, run, control_plane, capsys):
        control_plane.add_domain("vm1")

        assert run("wait", "vm1", "--state", "shutoff", "--timeout", "0") == 0
        assert "VM 'vm1' state: Shutoff" in capsys.readouterr().out

    def test_wait_timeout(self, run, control_plane, capsys):
        control_plane.add_domain("vm1", state=VMState.RUNNING)

        assert run("wait", "vm1", "--state", "shutoff", "--timeout", "0") == 1
        assert "did not reach Shutoff" in capsys.readouterr().err

    def test_explicit_uri(self, run, control_plane, capsys):
        assert run("--uri", "test:///default", "connect") == 0
        assert "Connected to test:///default" in capsys.readouterr().out
        assert [c[1] for c in control_plane.calls_to("open")] == ["test:///default"]

    def test_falls_back_to_session(self, run, control_plane, capsys):
        """Test the session URI is tried when the system one is unreachable."""
        control_plane.reachable.discard("qemu:///system")

        assert run("connect") == 0

        assert "Connected to qemu:///session" in capsys.readouterr().out
        assert [c[1] for c in control_plane.calls_to("open")] == [
            "qemu:///system", "qemu:///session",
        ]

    def test_unreachable(self, run, control_plane, capsys):
        control_plane.reachable.clear()

        assert run("list") == 1

        err = capsys.readouterr().err
        assert "CONNECT_FAILED" in err
        assert "Is libvirtd running?" in err
