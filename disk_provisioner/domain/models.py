"""Domain values for storage provisioning.

``Device`` and ``Partition`` are snapshots taken when sysfs was read. They are
never cached: after the partition table changes, resolve them again.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    from disk_provisioner.storage.filesystems import FilesystemBackend


# ==============================================================================
# Device Domain
# ==============================================================================


@dataclass(frozen=True)
class Device:
    """A block device visible to the system."""

    name: str  # e.g., "sda", "nvme0n1"
    byte_size: int = 0  # 0 means "not resolved yet"

    @property
    def device_path(self) -> str:
        """Device node path (e.g., /dev/sda)."""
        return f"/dev/{self.name}"

    @property
    def size_gib(self) -> float:
        return self.byte_size / (1024**3)

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> Device:
        """Build a device from a path such as ``/dev/sda``.

        The size stays unresolved; callers that need it must ask the catalog.
        """
        name = Path(path).name
        if not name:
            raise ValueError(f"Cannot derive a device name from {path!r}")
        return cls(name=name, byte_size=0)


@dataclass(frozen=True)
class Partition:
    """One addressable partition of a device."""

    parent: Device
    index: int  # 1-based, on-disk order
    device_path: str  # e.g., /dev/sda1, /dev/nvme0n1p1

    @property
    def name(self) -> str:
        return Path(self.device_path).name


# ==============================================================================
# Provisioning Domain
# ==============================================================================


class ProvisioningStep(str, Enum):
    """States of the provisioning workflow, in execution order."""

    ASSERT_PRECONDITIONS = "assert_preconditions"
    CLEANUP = "cleanup"
    PARTITION_DISK = "partition_disk"
    RESOLVE_PARTITIONS = "resolve_partitions"
    WIPE_PARTITIONS = "wipe_partitions"
    FORMAT_BOOT = "format_boot"
    FORMAT_ROOT = "format_root"
    MOUNT = "mount"
    DONE = "done"


@dataclass(frozen=True)
class ProvisioningPlan:
    """What to provision, resolved by the configuration layer."""

    target_device: Device
    filesystem: FilesystemBackend
    clean_first: bool = False
    mount: bool = False


@dataclass
class ProvisioningResult:
    """Outcome of a completed provisioning run."""

    device: Device
    partitions: list[Partition] = field(default_factory=list)
    steps: list[ProvisioningStep] = field(default_factory=list)

    @property
    def boot_partition(self) -> Partition:
        return self.partitions[0]

    @property
    def root_partition(self) -> Partition:
        return self.partitions[-1]
