"""
Pytest configuration and shared fixtures for disk-provisioner tests.

This module provides a fake sysfs tree and a recording command executor so
enumeration, topology and provisioning can be tested without real disks.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional, Union

import pytest
from loguru import logger

from disk_provisioner.storage.command import CommandExecutor, CommandResult
from disk_provisioner.storage.exceptions import MissingCommandError

SECTOR = 512
GiB = 1024**3


# ==============================================================================
# Fake sysfs
# ==============================================================================


class FakeSysfs:
    """Builds a minimal sysfs layout under ``root``.

    Mirrors the real structure: device directories live under ``devices/``
    and ``block/<name>``, ``class/block/<name>`` and ``dev/block/<MAJ:MIN>`` are
    symlinks into them. Each disk's ``subsystem`` link points at
    ``class/block``.
    """

    def __init__(self, root: Path):
        self.root = root
        self.devices_dir = root / "devices" / "pci0000:00" / "block"
        for path in (
            self.devices_dir,
            root / "block",
            root / "dev" / "block",
            root / "class" / "block",
        ):
            path.mkdir(parents=True, exist_ok=True)

    def add_disk(
        self,
        name: str,
        size_bytes: int,
        dev: str,
        *,
        hidden: bool = False,
        declared_size_bytes: Optional[int] = None,
        authoritative_size_bytes: Optional[int] = None,
        omit: tuple[str, ...] = (),
    ) -> Path:
        disk_dir = self.devices_dir / name
        disk_dir.mkdir(parents=True)
        attributes = {
            "hidden": "1" if hidden else "0",
            "size": str(
                (declared_size_bytes if declared_size_bytes is not None else size_bytes)
                // SECTOR
            ),
            "dev": dev,
        }
        for attribute, value in attributes.items():
            if attribute not in omit:
                (disk_dir / attribute).write_text(f"{value}\n")

        (self.root / "block" / name).symlink_to(disk_dir)
        (self.root / "class" / "block" / name).symlink_to(disk_dir)
        (disk_dir / "subsystem").symlink_to(self.root / "class" / "block")

        if authoritative_size_bytes is None:
            (self.root / "dev" / "block" / dev).symlink_to(disk_dir)
        else:
            alias_dir = self.root / "devices" / "alias" / dev.replace(":", "_")
            alias_dir.mkdir(parents=True)
            (alias_dir / "size").write_text(f"{authoritative_size_bytes // SECTOR}\n")
            (self.root / "dev" / "block" / dev).symlink_to(alias_dir)
        return disk_dir

    def add_partition(
        self,
        disk: str,
        index: int,
        dev: str,
        *,
        name: Optional[str] = None,
        size_bytes: int = GiB,
    ) -> Path:
        separator = "p" if disk[-1].isdigit() else ""
        part_name = name or f"{disk}{separator}{index}"
        part_dir = self.devices_dir / disk / part_name
        part_dir.mkdir(parents=True)
        (part_dir / "partition").write_text(f"{index}\n")
        (part_dir / "dev").write_text(f"{dev}\n")
        (part_dir / "size").write_text(f"{size_bytes // SECTOR}\n")
        (self.root / "class" / "block" / part_name).symlink_to(part_dir)
        return part_dir

    def remove_partition(self, disk: str, part_name: str) -> None:
        (self.root / "class" / "block" / part_name).unlink()

    def enable_efi(self) -> None:
        (self.root / "firmware" / "efi" / "efivars").mkdir(parents=True)


@pytest.fixture
def fake_sysfs(tmp_path) -> FakeSysfs:
    """Fixture providing an empty fake sysfs tree."""
    return FakeSysfs(tmp_path / "sys")


@pytest.fixture
def sysfs_with_disk(fake_sysfs) -> FakeSysfs:
    """Fixture providing a 100GiB ``sda`` with the three-partition layout."""
    fake_sysfs.add_disk("sda", 100 * GiB, "8:0")
    for index in (1, 2, 3):
        fake_sysfs.add_partition("sda", index, f"8:{index}")
    fake_sysfs.enable_efi()
    return fake_sysfs


# ==============================================================================
# Fake command executor
# ==============================================================================


Outcome = Union[CommandResult, Exception, Callable[[list[str]], CommandResult]]


class FakeExecutor(CommandExecutor):
    """Records every command and answers from configured responses.

    Commands without a matching response succeed with empty output.
    """

    def __init__(self):
        super().__init__()
        self.calls: list[list[str]] = []
        self._responses: list[tuple[list[str], Outcome]] = []

    def respond(self, prefix, outcome: Outcome) -> None:
        # Later responses take priority over earlier ones
        self._responses.insert(0, (list(prefix), outcome))

    def fail(self, prefix, returncode: int = 1, stderr: str = "boom") -> None:
        self.respond(
            prefix,
            lambda argv: CommandResult(argv, returncode, "", stderr),
        )

    def run(self, argv, input_text=None) -> CommandResult:
        argv = [str(arg) for arg in argv]
        if not argv:
            raise MissingCommandError()
        self.calls.append(argv)
        for prefix, outcome in self._responses:
            if argv[: len(prefix)] == prefix:
                if isinstance(outcome, Exception):
                    raise outcome
                if isinstance(outcome, CommandResult):
                    return outcome
                return outcome(argv)
        return CommandResult(argv, 0, "", "")

    def commands(self) -> list[str]:
        """Return recorded commands as space-joined strings."""
        return [" ".join(call) for call in self.calls]

    def called(self, prefix) -> bool:
        prefix = list(prefix)
        return any(call[: len(prefix)] == prefix for call in self.calls)


@pytest.fixture
def fake_executor() -> FakeExecutor:
    """Fixture providing a recording executor where every command succeeds."""
    return FakeExecutor()


# ==============================================================================
# Host environment
# ==============================================================================


@pytest.fixture
def all_tools_available(mocker):
    """Fixture pretending every external tool is on PATH."""
    return mocker.patch(
        "disk_provisioner.services.preconditions.shutil.which",
        side_effect=lambda tool: f"/usr/bin/{tool}",
    )


@pytest.fixture
def nothing_mounted(mocker):
    """Fixture reporting every mountpoint as inactive."""
    return mocker.patch(
        "disk_provisioner.storage.filesystems.base.is_mountpoint_active",
        return_value=False,
    )


@pytest.fixture
def everything_mounted(mocker):
    """Fixture reporting every mountpoint as active."""
    return mocker.patch(
        "disk_provisioner.storage.filesystems.base.is_mountpoint_active",
        return_value=True,
    )


@pytest.fixture
def no_sleep(mocker):
    """Fixture disabling the partition settle delay."""
    return mocker.patch("disk_provisioner.storage.partitions.time.sleep")


@pytest.fixture(autouse=True)
def reset_logging():
    """Drop sinks added by a test so they do not outlive its tmp_path."""
    yield
    logger.remove()
