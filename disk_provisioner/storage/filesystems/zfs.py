"""ZFS root pool backend.

The root partition becomes a single-vdev pool (``zroot`` by default) created
without a mountpoint. Mounting lays out the dataset tree and re-imports the
pool with the install root as altroot, so every dataset lands under it:

    zroot/ROOT                    /          atime=off, compression=on
    zroot/ROOT/home               /home
    zroot/ROOT/var                /var
    zroot/ROOT/var/log            /var/log
    zroot/ROOT/var/log/journal    /var/log/journal   acltype=posixacl, xattr=sa
    zroot/ROOT/etc                /etc
    zroot/ROOT/data               /data
    zroot/ROOT/docker             /docker

The pool cache file is then copied into the new root so the installed system
can import the pool at boot.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import ClassVar

from disk_provisioner.config.settings import DEFAULT_ZFS_POOL_NAME
from disk_provisioner.domain.models import Partition
from disk_provisioner.storage.exceptions import CommandError, DependencyError

from .base import FilesystemBackend

# 512-byte blocks of random data written over the start of the partition;
# 10MiB covers the front vdev labels and any leftover filesystem superblock
WIPE_BLOCK_SIZE = 512
WIPE_BLOCK_COUNT = 20480

ROOT_DATASET_OPTIONS = ("atime=off", "compression=on")
CHILD_DATASETS = (
    "/home",
    "/var",
    "/var/log",
    "/var/log/journal",
    "/etc",
    "/data",
    "/docker",
)
JOURNAL_DATASET = "/var/log/journal"
JOURNAL_PROPERTIES = ("acltype=posixacl", "xattr=sa")
IMPORT_DEVICE_DIR = "/dev/disk/by-id"
CACHE_FILE = "/etc/zfs/zpool.cache"


@dataclass(frozen=True)
class ZFS(FilesystemBackend):
    pool_name: str = DEFAULT_ZFS_POOL_NAME

    name: ClassVar[str] = "ZFS"
    key: ClassVar[str] = "zfs"
    required_tools: ClassVar[tuple[str, ...]] = ("modprobe", "dd", "zpool", "zfs", "umount", "cp")

    @property
    def root_dataset(self) -> str:
        return f"{self.pool_name}/ROOT"

    def assert_dependencies(self) -> None:
        try:
            result = self.executor.run(["modprobe", "zfs"])
        except CommandError as error:
            raise DependencyError("zfs kernel module", error.reason) from error
        if not result.success:
            raise DependencyError(
                "zfs kernel module",
                (result.stderr or result.stdout).strip() or "modprobe zfs failed",
            )
        self.log.debug("zfs kernel module loaded")

    def init(self, partition: Partition) -> ZFS:
        device_path = partition.device_path
        self._run(
            [
                "dd",
                "if=/dev/urandom",
                f"of={device_path}",
                f"bs={WIPE_BLOCK_SIZE}",
                f"count={WIPE_BLOCK_COUNT}",
            ],
            target=device_path,
        )
        self._run(
            ["zpool", "create", "-f", "-m", "none", self.pool_name, device_path],
            target=device_path,
        )
        self.log.info(f"Created pool {self.pool_name} on {device_path}")
        return self

    def mount(self, partition: Partition, target: str) -> None:
        device_path = partition.device_path
        root_options = [arg for option in ROOT_DATASET_OPTIONS for arg in ("-o", option)]
        self._run(
            ["zfs", "create", "-u", *root_options, "-o", "mountpoint=/", self.root_dataset],
            target=device_path,
        )
        for path in CHILD_DATASETS:
            self._run(
                ["zfs", "create", "-u", "-o", f"mountpoint={path}", f"{self.root_dataset}{path}"],
                target=device_path,
            )
        for prop in JOURNAL_PROPERTIES:
            self._run(
                ["zfs", "set", prop, f"{self.root_dataset}{JOURNAL_DATASET}"],
                target=device_path,
            )
        self._run(
            ["zpool", "set", f"bootfs={self.root_dataset}", self.pool_name],
            target=device_path,
        )

        # Re-import by id so the pool mounts under the altroot consistently
        self._run(["zpool", "export", self.pool_name], target=device_path)
        self._run(
            ["zpool", "import", "-d", IMPORT_DEVICE_DIR, "-R", target, self.pool_name],
            target=device_path,
        )
        self.log.info(f"Imported pool {self.pool_name} with altroot {target}")

        target_cache = f"{target.rstrip('/')}{CACHE_FILE}"
        self._run(
            ["zpool", "set", f"cachefile={CACHE_FILE}", self.pool_name],
            target=device_path,
        )
        self._run(["mkdir", "-p", os.path.dirname(target_cache)], target=target)
        self._run(["cp", CACHE_FILE, target_cache], target=target_cache)
        self.log.info(f"Copied pool cache file to {target_cache}")

    def cleanup(self) -> None:
        self._unmount_if_active(self.boot_mountpoint)
        self._run(["zfs", "umount", "-a"])
        if not self.pool_exists():
            self.log.debug(f"Pool {self.pool_name} does not exist, nothing to destroy")
            return
        self._run(["zpool", "destroy", self.pool_name], target=self.pool_name)
        self.log.info(f"Destroyed pool {self.pool_name}")

    def pool_exists(self) -> bool:
        result = self.executor.run(["zpool", "list", "-H", "-o", "name", self.pool_name])
        return result.success
