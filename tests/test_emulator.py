"""
Tests for emulator discovery
"""

import pytest
from pathlib import Path

from kvmctl.core.emulator import EmulatorLocator


def make_binary(directory: Path, name="qemu-system-x86_64", executable=True) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_text("#!/bin/sh\n")
    path.chmod(0o755 if executable else 0o644)
    return path


@pytest.fixture
def no_path_lookup(monkeypatch):
    monkeypatch.setattr("kvmctl.core.emulator.shutil.which", lambda name: None)


class TestEmulatorLocator:
    """Tests for EmulatorLocator."""

    def test_default_search_order(self):
        """Test the fixed locations are searched in order."""
        locator = EmulatorLocator()

        assert locator.candidates[:3] == [
            Path("/opt/homebrew/bin/qemu-system-x86_64"),
            Path("/usr/local/bin/qemu-system-x86_64"),
            Path("/usr/bin/qemu-system-x86_64"),
        ]

    def test_first_match_wins(self, tmp_path, no_path_lookup):
        """Test the earliest existing candidate is returned."""
        first = make_binary(tmp_path / "a")
        make_binary(tmp_path / "b")

        locator = EmulatorLocator(search_dirs=[tmp_path / "missing", tmp_path / "a", tmp_path / "b"])

        assert locator.find() == first

    def test_non_executable_skipped(self, tmp_path, no_path_lookup):
        """Test files without the execute bit are ignored."""
        make_binary(tmp_path / "a", executable=False)
        second = make_binary(tmp_path / "b")

        locator = EmulatorLocator(search_dirs=[tmp_path / "a", tmp_path / "b"])

        assert locator.find() == second

    def test_directory_is_not_a_match(self, tmp_path, no_path_lookup):
        """Test a directory named like the binary is skipped."""
        (tmp_path / "a" / "qemu-system-x86_64").mkdir(parents=True)

        locator = EmulatorLocator(search_dirs=[tmp_path / "a"])

        assert locator.find() is None

    def test_falls_back_to_path(self, tmp_path, monkeypatch):
        """Test PATH lookup when no fixed location matches."""
        monkeypatch.setattr(
            "kvmctl.core.emulator.shutil.which",
            lambda name: f"/nix/store/bin/{name}",
        )

        locator = EmulatorLocator(search_dirs=[tmp_path])

        assert locator.find() == Path("/nix/store/bin/qemu-system-x86_64")

    def test_not_found(self, tmp_path, no_path_lookup):
        """Test None when nothing matches."""
        locator = EmulatorLocator(search_dirs=[tmp_path])

        assert locator.find() is None

    def test_custom_binary_name(self, tmp_path, no_path_lookup):
        """Test locating a different emulator."""
        path = make_binary(tmp_path, name="qemu-system-aarch64")

        locator = EmulatorLocator(binary_name="qemu-system-aarch64", search_dirs=[tmp_path])

        assert locator.find() == path
