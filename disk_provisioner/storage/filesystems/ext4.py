from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Optional

from disk_provisioner.domain.models import Partition

from .base import FilesystemBackend


@dataclass(frozen=True)
class Ext4(FilesystemBackend):
    name: ClassVar[str] = "ext4"
    key: ClassVar[str] = "ext4"
    required_tools: ClassVar[tuple[str, ...]] = ("mkfs.ext4", "mount", "umount")
    parted_fs_hint: ClassVar[Optional[str]] = "ext4"

    def init(self, partition: Partition) -> Ext4:
        # -F: do not stop to ask when the partition already holds a filesystem
        self._run(["mkfs.ext4", "-F", partition.device_path], target=partition.device_path)
        self.log.info(f"Created ext4 filesystem on {partition.device_path}")
        return self

    def cleanup(self) -> None:
        self._unmount_if_active(self.boot_mountpoint)
        self._unmount_if_active(self.mount_root)
