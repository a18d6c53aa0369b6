"""Partition topology resolution from sysfs.

A device's partitions are found through the kernel's view of the block
class rather than by parsing the partition table:

    /sys/block/<name>/dev                  "MAJ:MIN" of the whole device
    /sys/class/block/<name>/subsystem   -> /sys/class/block
    /sys/class/block/<part>             -> .../block/<name>/<part>
    .../<name>/<part>/partition            1-based partition index

Only entries carrying a ``partition`` attribute whose parent directory has the
device's identifier belong to the device. The kernel publishes partitions
asynchronously after the table is rewritten, so ``wait_for_partitions`` polls
with a bounded timeout instead of trusting one read.
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Union

from disk_provisioner.config.settings import (
    DEFAULT_PARTITION_SETTLE_INTERVAL,
    DEFAULT_PARTITION_SETTLE_TIMEOUT,
    DEFAULT_SYSFS_ROOT,
)
from disk_provisioner.domain.models import Device, Partition
from disk_provisioner.logging import LoggerFactory

from .exceptions import ResolutionError

log = LoggerFactory.for_storage()
settle_log = log.bind(tags=["storage", "settle"])


class PartitionTopology:
    def __init__(self, sysfs_root: Union[str, Path] = DEFAULT_SYSFS_ROOT):
        self.sysfs_root = Path(sysfs_root)

    def resolve(self, device: Device) -> list[Partition]:
        """Return the partitions of ``device`` ordered by index.

        Raises:
            ResolutionError: device metadata is unreadable, or the indices are
                not exactly 1..n
        """
        partitions = self._scan(device)
        _check_dense(device, partitions)
        log.debug(
            f"{device.name} has {len(partitions)} partitions: "
            + ", ".join(partition.device_path for partition in partitions)
        )
        return partitions

    def wait_for_partitions(
        self,
        device: Device,
        count: int,
        timeout: float = DEFAULT_PARTITION_SETTLE_TIMEOUT,
        interval: float = DEFAULT_PARTITION_SETTLE_INTERVAL,
    ) -> list[Partition]:
        """Poll until exactly partitions 1..``count`` are visible.

        While the kernel re-reads a rewritten table it can briefly show an
        index gap, or stale partitions from the old table; both count as not
        settled yet.

        Raises:
            ResolutionError: the partitions did not settle before the timeout,
                or device metadata is unreadable
        """
        deadline = time.monotonic() + timeout
        attempt = 0
        while True:
            attempt += 1
            partitions = self._scan(device)
            indices = [partition.index for partition in partitions]
            if indices == list(range(1, count + 1)):
                settle_log.debug(
                    f"{device.name}: {count} partitions visible after {attempt} attempt(s)"
                )
                return partitions
            if time.monotonic() >= deadline:
                if len(partitions) == count:
                    _check_dense(device, partitions)
                raise ResolutionError(
                    device.name,
                    f"expected {count} partitions, found {len(partitions)} "
                    f"after waiting {timeout:g}s",
                )
            settle_log.debug(
                f"{device.name}: partitions {indices} visible, expected 1..{count}, "
                f"retrying in {interval:g}s"
            )
            time.sleep(interval)

    def _scan(self, device: Device) -> list[Partition]:
        identifier = self._device_identifier(device)
        class_dir = self._subsystem_dir(device)

        try:
            siblings = sorted(class_dir.iterdir(), key=lambda path: path.name)
        except OSError as error:
            raise ResolutionError(
                device.name, f"cannot list {class_dir}: {error}"
            ) from error

        partitions = []
        for sibling in siblings:
            if sibling.name == device.name:
                continue
            try:
                partition = self._read_partition(device, identifier, sibling)
            except FileNotFoundError:
                # Entry vanished or is still being populated by the kernel
                log.trace(f"Skipping transient entry {sibling.name}")
                continue
            except (OSError, ValueError) as error:
                raise ResolutionError(
                    device.name, f"cannot read {sibling.name}: {error}"
                ) from error
            if partition is not None:
                partitions.append(partition)

        partitions.sort(key=lambda partition: partition.index)
        return partitions

    def _device_identifier(self, device: Device) -> str:
        path = self.sysfs_root / "block" / device.name / "dev"
        try:
            return path.read_text(encoding="utf-8").strip()
        except OSError as error:
            raise ResolutionError(
                device.name, f"cannot read device identifier: {error}"
            ) from error

    def _subsystem_dir(self, device: Device) -> Path:
        link = self.sysfs_root / "class" / "block" / device.name / "subsystem"
        try:
            return link.resolve(strict=True)
        except OSError as error:
            raise ResolutionError(
                device.name, f"cannot follow subsystem link: {error}"
            ) from error

    def _read_partition(
        self, device: Device, identifier: str, sibling: Path
    ) -> Partition | None:
        entry = sibling.resolve(strict=True)
        index_file = entry / "partition"
        if not index_file.exists():
            # Whole devices have no partition attribute
            return None
        parent_identifier = (entry.parent / "dev").read_text(encoding="utf-8").strip()
        if parent_identifier != identifier:
            return None
        index = int(index_file.read_text(encoding="utf-8").strip())
        return Partition(
            parent=device,
            index=index,
            device_path=f"/dev/{sibling.name}",
        )


def _check_dense(device: Device, partitions: list[Partition]) -> None:
    indices = [partition.index for partition in partitions]
    expected = list(range(1, len(partitions) + 1))
    if indices != expected:
        raise ResolutionError(
            device.name,
            f"partition indices {indices} are not contiguous from 1",
        )
