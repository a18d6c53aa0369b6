from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Optional

from disk_provisioner.domain.models import Partition

from .base import FilesystemBackend


@dataclass(frozen=True)
class FAT32(FilesystemBackend):
    """FAT32, used for the EFI system partition."""

    name: ClassVar[str] = "FAT32"
    key: ClassVar[str] = "fat32"
    required_tools: ClassVar[tuple[str, ...]] = ("mkfs.vfat",)
    parted_fs_hint: ClassVar[Optional[str]] = "fat32"

    def init(self, partition: Partition) -> FAT32:
        self._run(
            ["mkfs.vfat", "-F", "32", partition.device_path],
            target=partition.device_path,
        )
        self.log.info(f"Created FAT32 filesystem on {partition.device_path}")
        return self
