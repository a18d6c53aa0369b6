"""Destructive provisioning workflow.

Steps run strictly in order, each blocking until its tools finish:

    AssertPreconditions -> [Cleanup] -> PartitionDisk -> ResolvePartitions
        -> WipePartitions -> FormatBoot -> FormatRoot -> [Mount] -> Done

The first failure aborts the run and nothing already applied is rolled back:
a failed run can leave a fresh partition table with an unformatted or
half-initialized root. Recovery is re-running with ``clean_first`` set, which
tears down mounts and pools from the earlier attempt before partitioning again.

Signatures are wiped before formatting so stale magic bytes that survive the
table rewrite cannot confuse mkfs or zpool.
"""

from __future__ import annotations

import shutil
from contextlib import contextmanager
from typing import Optional

from disk_provisioner.config.settings import ProvisionerSettings
from disk_provisioner.domain.models import (
    Device,
    Partition,
    ProvisioningPlan,
    ProvisioningResult,
    ProvisioningStep,
)
from disk_provisioner.logging import LoggerFactory, operation_context
from disk_provisioner.storage.command import CommandExecutor
from disk_provisioner.storage.devices import DeviceCatalog, format_device_label
from disk_provisioner.storage.exceptions import EnumerationError
from disk_provisioner.storage.filesystems import FAT32, FilesystemBackend
from disk_provisioner.storage.layout import (
    BOOT_PARTITION_INDEX,
    DEFAULT_LAYOUT,
    ROOT_PARTITION_INDEX,
    parted_command,
    root_layout,
)
from disk_provisioner.storage.partitions import PartitionTopology

from .preconditions import BASE_TOOLS, assert_efi_boot, assert_tools_available

log = LoggerFactory.for_provisioning(job_id="-")


def select_device(
    catalog: DeviceCatalog, device_path: Optional[str] = None
) -> Device:
    """Pick the target device.

    An explicit path wins and only has its size resolved; otherwise the
    largest enumerated device is chosen.
    """
    if device_path:
        device = catalog.resolve(catalog.from_path(device_path))
        log.info(f"Using requested device {format_device_label(device)}")
        return device

    candidates = catalog.enumerate()
    if not candidates:
        raise EnumerationError("No candidate block devices found")
    device = candidates[0]
    log.info(
        f"Selected largest device {format_device_label(device)} "
        f"out of {len(candidates)} candidate(s)"
    )
    return device


class ProvisioningOrchestrator:
    """Runs the provisioning workflow against one device.

    Args:
        executor: Runs every external tool.
        catalog: Device enumeration, used by ``select_device``.
        topology: Partition resolution after the table is written.
        settings: Paths, pool name and settle timings.
    """

    def __init__(
        self,
        executor: CommandExecutor,
        catalog: Optional[DeviceCatalog] = None,
        topology: Optional[PartitionTopology] = None,
        settings: Optional[ProvisionerSettings] = None,
    ):
        self.settings = settings or ProvisionerSettings()
        self.executor = executor
        self.catalog = catalog or DeviceCatalog(
            self.settings.sysfs_root, self.settings.device_exclude_pattern
        )
        self.topology = topology or PartitionTopology(self.settings.sysfs_root)
        self.boot_backend = FAT32(
            executor=executor, mount_root=self.settings.mount_root
        )

    def run(self, plan: ProvisioningPlan) -> ProvisioningResult:
        device = plan.target_device
        backend = plan.filesystem
        result = ProvisioningResult(device=device)

        with operation_context(
            "provision",
            device=device.device_path,
            filesystem=backend.name,
            clean_first=plan.clean_first,
        ) as run_log:
            with self._step(result, ProvisioningStep.ASSERT_PRECONDITIONS, run_log):
                self.assert_preconditions(backend)

            if plan.clean_first:
                with self._step(result, ProvisioningStep.CLEANUP, run_log):
                    backend.cleanup()

            with self._step(result, ProvisioningStep.PARTITION_DISK, run_log):
                self.partition_disk(device, backend)

            with self._step(result, ProvisioningStep.RESOLVE_PARTITIONS, run_log):
                result.partitions = self.resolve_partitions(device)

            boot = _partition(result.partitions, BOOT_PARTITION_INDEX)
            root = _partition(result.partitions, ROOT_PARTITION_INDEX)

            with self._step(result, ProvisioningStep.WIPE_PARTITIONS, run_log):
                self.wipe_partitions([boot, root])

            with self._step(result, ProvisioningStep.FORMAT_BOOT, run_log):
                self.boot_backend.init(boot)

            with self._step(result, ProvisioningStep.FORMAT_ROOT, run_log):
                backend.init(root)

            if plan.mount:
                with self._step(result, ProvisioningStep.MOUNT, run_log):
                    self.mount(backend, boot, root)

            result.steps.append(ProvisioningStep.DONE)
        return result

    def assert_preconditions(self, backend: FilesystemBackend) -> None:
        assert_efi_boot(self.settings.sysfs_root)
        assert_tools_available(
            BASE_TOOLS + self.boot_backend.required_tools + backend.required_tools
        )
        backend.assert_dependencies()

    def partition_disk(self, device: Device, backend: FilesystemBackend) -> None:
        layout = root_layout(backend.parted_fs_hint, DEFAULT_LAYOUT)
        self.executor.run_checked(
            parted_command(device.device_path, layout), target=device.device_path
        )
        log.info(f"Wrote {len(layout)}-partition GPT table to {device.device_path}")
        self._notify_kernel(device)

    def resolve_partitions(self, device: Device) -> list[Partition]:
        partitions = self.topology.wait_for_partitions(
            device,
            len(DEFAULT_LAYOUT),
            timeout=self.settings.partition_settle_timeout_seconds,
            interval=self.settings.partition_settle_interval_seconds,
        )
        log.info(
            "Resolved partitions: "
            + ", ".join(partition.device_path for partition in partitions)
        )
        return partitions

    def wipe_partitions(self, partitions: list[Partition]) -> None:
        for partition in partitions:
            self.executor.run_checked(
                ["wipefs", "--all", partition.device_path],
                target=partition.device_path,
            )
            log.info(f"Wiped signatures from {partition.device_path}")

    def mount(
        self, backend: FilesystemBackend, boot: Partition, root: Partition
    ) -> None:
        backend.mount(root, self.settings.mount_root)
        self.boot_backend.mount(boot, self.boot_backend.boot_mountpoint)

    def _notify_kernel(self, device: Device) -> None:
        """Ask the kernel and udev to pick up the new table; best effort."""
        for command in (
            ["sync"],
            ["partprobe", device.device_path],
            ["udevadm", "settle", "--timeout=10"],
        ):
            if not shutil.which(command[0]):
                log.debug(f"{command[0]} not available, skipping")
                continue
            result = self.executor.run(command)
            if not result.success:
                log.warning(
                    f"{' '.join(command)} exited {result.returncode}: "
                    f"{result.stderr.strip()}"
                )

    @contextmanager
    def _step(self, result: ProvisioningResult, step: ProvisioningStep, run_log):
        run_log.info(f"Step {step.value}")
        yield
        result.steps.append(step)


def _partition(partitions: list[Partition], index: int) -> Partition:
    return partitions[index - 1]
