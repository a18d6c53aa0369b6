"""
Tests for disk_provisioner.services.provisioning module.

This test suite covers:
- Device selection
- The full command sequence for ZFS and ext4 roots
- Fail-fast behavior and what is left untouched after a failure
- Recovery by re-running with clean_first
- Optional mounting and best-effort kernel notification
"""

import pytest

from disk_provisioner.config.settings import ProvisionerSettings
from disk_provisioner.domain.models import Device, ProvisioningPlan, ProvisioningStep
from disk_provisioner.services.provisioning import (
    ProvisioningOrchestrator,
    select_device,
)
from disk_provisioner.storage.command import CommandResult
from disk_provisioner.storage.devices import DeviceCatalog
from disk_provisioner.storage.exceptions import (
    CommandError,
    DependencyError,
    EnumerationError,
    PreconditionError,
    ResolutionError,
)
from disk_provisioner.storage.filesystems import ZFS, Ext4

GiB = 1024**3

PARTED = (
    "parted --script /dev/sda -- mklabel gpt "
    "mkpart ESP fat32 1MiB 2GiB set 1 boot on "
    "mkpart persistent ext4 2GiB 3GiB "
    "mkpart root{hint} 3GiB 100%"
)


@pytest.fixture
def device():
    return Device("sda", 100 * GiB)


@pytest.fixture
def orchestrator(sysfs_with_disk, fake_executor, all_tools_available, no_sleep):
    settings = ProvisionerSettings(sysfs_root=str(sysfs_with_disk.root))
    return ProvisioningOrchestrator(fake_executor, settings=settings)


class TestSelectDevice:
    """Tests for select_device()."""

    def test_picks_largest(self, fake_sysfs):
        fake_sysfs.add_disk("sda", 16 * GiB, "8:0")
        fake_sysfs.add_disk("sdb", 500 * GiB, "8:16")

        assert select_device(DeviceCatalog(fake_sysfs.root)) == Device("sdb", 500 * GiB)

    def test_explicit_path_wins(self, fake_sysfs):
        fake_sysfs.add_disk("sda", 16 * GiB, "8:0")
        fake_sysfs.add_disk("sdb", 500 * GiB, "8:16")

        device = select_device(DeviceCatalog(fake_sysfs.root), "/dev/sda")

        assert device == Device("sda", 16 * GiB)

    def test_no_candidates_raises(self, fake_sysfs):
        with pytest.raises(EnumerationError, match="No candidate"):
            select_device(DeviceCatalog(fake_sysfs.root))


class TestRun:
    """Tests for ProvisioningOrchestrator.run()."""

    def test_zfs_command_sequence(self, orchestrator, fake_executor, device):
        result = orchestrator.run(ProvisioningPlan(device, ZFS(fake_executor)))

        assert fake_executor.commands() == [
            "modprobe zfs",
            PARTED.format(hint=""),
            "sync",
            "partprobe /dev/sda",
            "udevadm settle --timeout=10",
            "wipefs --all /dev/sda1",
            "wipefs --all /dev/sda3",
            "mkfs.vfat -F 32 /dev/sda1",
            "dd if=/dev/urandom of=/dev/sda3 bs=512 count=20480",
            "zpool create -f -m none zroot /dev/sda3",
        ]
        assert result.steps == [
            ProvisioningStep.ASSERT_PRECONDITIONS,
            ProvisioningStep.PARTITION_DISK,
            ProvisioningStep.RESOLVE_PARTITIONS,
            ProvisioningStep.WIPE_PARTITIONS,
            ProvisioningStep.FORMAT_BOOT,
            ProvisioningStep.FORMAT_ROOT,
            ProvisioningStep.DONE,
        ]
        assert result.boot_partition.device_path == "/dev/sda1"
        assert result.root_partition.device_path == "/dev/sda3"
        assert [partition.index for partition in result.partitions] == [1, 2, 3]

    def test_ext4_root_partition_hint(self, orchestrator, fake_executor, device):
        orchestrator.run(ProvisioningPlan(device, Ext4(fake_executor)))

        commands = fake_executor.commands()
        assert commands[0] == PARTED.format(hint=" ext4")
        assert commands[-1] == "mkfs.ext4 -F /dev/sda3"
        assert not fake_executor.called(["modprobe"])

    def test_partition_two_is_left_alone(self, orchestrator, fake_executor, device):
        orchestrator.run(ProvisioningPlan(device, Ext4(fake_executor)))

        assert not any("/dev/sda2" in command for command in fake_executor.commands())

    def test_clean_first_runs_cleanup_before_partitioning(
        self, orchestrator, fake_executor, device, everything_mounted
    ):
        result = orchestrator.run(
            ProvisioningPlan(device, ZFS(fake_executor), clean_first=True)
        )

        commands = fake_executor.commands()
        assert commands[1:5] == [
            "umount /mnt/boot",
            "zfs umount -a",
            "zpool list -H -o name zroot",
            "zpool destroy zroot",
        ]
        assert commands[5].startswith("parted")
        assert result.steps[:3] == [
            ProvisioningStep.ASSERT_PRECONDITIONS,
            ProvisioningStep.CLEANUP,
            ProvisioningStep.PARTITION_DISK,
        ]

    def test_mount_step(self, orchestrator, fake_executor, device):
        result = orchestrator.run(ProvisioningPlan(device, Ext4(fake_executor), mount=True))

        assert fake_executor.commands()[-4:] == [
            "mkdir -p /mnt",
            "mount /dev/sda3 /mnt",
            "mkdir -p /mnt/boot",
            "mount /dev/sda1 /mnt/boot",
        ]
        assert result.steps[-2:] == [ProvisioningStep.MOUNT, ProvisioningStep.DONE]

    def test_zfs_mount_imports_under_mount_root(self, orchestrator, fake_executor, device):
        orchestrator.run(ProvisioningPlan(device, ZFS(fake_executor), mount=True))

        commands = fake_executor.commands()
        assert "zpool import -d /dev/disk/by-id -R /mnt zroot" in commands
        assert "cp /etc/zfs/zpool.cache /mnt/etc/zfs/zpool.cache" in commands
        assert commands[-1] == "mount /dev/sda1 /mnt/boot"


class TestFailures:
    """Tests for fail-fast behavior."""

    def test_missing_zfs_module_touches_nothing(self, orchestrator, fake_executor, device):
        fake_executor.fail(["modprobe", "zfs"], stderr="Module zfs not found")

        with pytest.raises(DependencyError):
            orchestrator.run(ProvisioningPlan(device, ZFS(fake_executor)))

        assert fake_executor.commands() == ["modprobe zfs"]

    def test_missing_tool_touches_nothing(
        self, sysfs_with_disk, fake_executor, device, mocker
    ):
        mocker.patch(
            "disk_provisioner.services.preconditions.shutil.which",
            side_effect=lambda tool: None if tool == "parted" else f"/usr/bin/{tool}",
        )
        orchestrator = ProvisioningOrchestrator(
            fake_executor, settings=ProvisionerSettings(sysfs_root=str(sysfs_with_disk.root))
        )

        with pytest.raises(DependencyError, match="parted"):
            orchestrator.run(ProvisioningPlan(device, Ext4(fake_executor)))

        assert fake_executor.calls == []

    def test_legacy_boot_touches_nothing(
        self, fake_sysfs, fake_executor, all_tools_available, device
    ):
        fake_sysfs.add_disk("sda", 100 * GiB, "8:0")
        orchestrator = ProvisioningOrchestrator(
            fake_executor, settings=ProvisionerSettings(sysfs_root=str(fake_sysfs.root))
        )

        with pytest.raises(PreconditionError):
            orchestrator.run(ProvisioningPlan(device, Ext4(fake_executor)))

        assert fake_executor.calls == []

    def test_partitioning_failure_stops_run(self, orchestrator, fake_executor, device):
        fake_executor.fail(["parted"], stderr="Error: Partition(s) on /dev/sda are being used.")

        with pytest.raises(CommandError) as excinfo:
            orchestrator.run(ProvisioningPlan(device, Ext4(fake_executor)))

        assert excinfo.value.target == "/dev/sda"
        assert not fake_executor.called(["wipefs"])

    def test_missing_partitions_stop_before_formatting(
        self, fake_sysfs, fake_executor, all_tools_available, no_sleep, device
    ):
        fake_sysfs.add_disk("sda", 100 * GiB, "8:0")
        fake_sysfs.add_partition("sda", 1, "8:1")
        fake_sysfs.add_partition("sda", 2, "8:2")
        fake_sysfs.enable_efi()
        settings = ProvisionerSettings(
            sysfs_root=str(fake_sysfs.root), partition_settle_timeout_seconds=0
        )
        orchestrator = ProvisioningOrchestrator(fake_executor, settings=settings)

        with pytest.raises(ResolutionError, match="expected 3 partitions, found 2"):
            orchestrator.run(ProvisioningPlan(device, ZFS(fake_executor)))

        assert not fake_executor.called(["wipefs"])
        assert not fake_executor.called(["mkfs.vfat"])
        assert not fake_executor.called(["zpool"])

    def test_format_root_failure_then_clean_rerun(
        self, orchestrator, fake_executor, device, everything_mounted
    ):
        attempts = []

        def mkfs(argv):
            attempts.append(argv)
            if len(attempts) == 1:
                return CommandResult(argv, 1, "", "mkfs.ext4: Device or resource busy")
            return CommandResult(argv, 0, "", "")

        fake_executor.respond(["mkfs.ext4"], mkfs)
        backend = Ext4(fake_executor)

        with pytest.raises(CommandError) as excinfo:
            orchestrator.run(ProvisioningPlan(device, backend))
        assert excinfo.value.target == "/dev/sda3"
        # The boot partition was already formatted and is not rolled back
        assert fake_executor.called(["mkfs.vfat"])

        fake_executor.calls.clear()
        result = orchestrator.run(ProvisioningPlan(device, backend, clean_first=True))

        assert fake_executor.commands()[:2] == ["umount /mnt/boot", "umount /mnt"]
        assert result.steps[-1] is ProvisioningStep.DONE


class TestNotifyKernel:
    """Tests for the best-effort kernel notification after partitioning."""

    def test_missing_tools_are_skipped(self, sysfs_with_disk, fake_executor, device, mocker):
        mocker.patch(
            "disk_provisioner.services.preconditions.shutil.which",
            side_effect=lambda tool: None
            if tool in ("partprobe", "udevadm")
            else f"/usr/bin/{tool}",
        )
        orchestrator = ProvisioningOrchestrator(
            fake_executor, settings=ProvisionerSettings(sysfs_root=str(sysfs_with_disk.root))
        )

        orchestrator.run(ProvisioningPlan(device, Ext4(fake_executor)))

        assert not fake_executor.called(["partprobe"])
        assert not fake_executor.called(["udevadm"])
        assert fake_executor.called(["sync"])

    def test_partprobe_failure_is_not_fatal(self, orchestrator, fake_executor, device):
        fake_executor.fail(["partprobe"], stderr="Error: could not inform the kernel")

        result = orchestrator.run(ProvisioningPlan(device, Ext4(fake_executor)))

        assert result.steps[-1] is ProvisioningStep.DONE
