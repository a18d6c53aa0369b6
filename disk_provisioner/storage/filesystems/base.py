"""Common contract for filesystem backends.

Each backend wraps one family of external tools behind the same lifecycle:

    assert_dependencies()  fail fast with DependencyError before anything is touched
    init(partition)        create the filesystem or pool; returns the backend
    mount(partition, dir)  attach the new filesystem under the install root
    cleanup()              undo mounts and pools left by an earlier run

``init`` is not idempotent. Running it twice on the same partition without a
``cleanup`` in between is undefined: mkfs tools overwrite silently, zpool
refuses a vdev that belongs to an active pool. Always ``cleanup`` before
re-running ``init``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar, Optional, Sequence

from disk_provisioner.config.settings import DEFAULT_MOUNT_ROOT
from disk_provisioner.domain.models import Partition
from disk_provisioner.logging import LoggerFactory
from disk_provisioner.storage.command import CommandExecutor, CommandResult
from disk_provisioner.storage.mounts import is_mountpoint_active


@dataclass(frozen=True)
class FilesystemBackend:
    executor: CommandExecutor = field(repr=False, compare=False)
    mount_root: str = DEFAULT_MOUNT_ROOT

    name: ClassVar[str] = ""
    key: ClassVar[str] = ""
    required_tools: ClassVar[tuple[str, ...]] = ()
    # filesystem type given to parted mkpart; None when parted has no name for it
    parted_fs_hint: ClassVar[Optional[str]] = None

    def __str__(self) -> str:
        return self.name

    @property
    def log(self):
        return LoggerFactory.for_filesystem(self.key or self.name)

    @property
    def boot_mountpoint(self) -> str:
        return f"{self.mount_root.rstrip('/')}/boot"

    def assert_dependencies(self) -> None:
        return None

    def init(self, partition: Partition) -> FilesystemBackend:
        raise NotImplementedError

    def cleanup(self) -> None:
        return None

    def mount(self, partition: Partition, target: str) -> None:
        self._run(["mkdir", "-p", target], target=target)
        self._run(["mount", partition.device_path, target], target=partition.device_path)
        self.log.info(f"Mounted {partition.device_path} at {target}")

    def _run(
        self, argv: Sequence[str], target: Optional[str] = None
    ) -> CommandResult:
        return self.executor.run_checked(argv, target=target)

    def _unmount_if_active(self, mountpoint: str) -> None:
        if not is_mountpoint_active(mountpoint):
            self.log.debug(f"{mountpoint} is not mounted, nothing to unmount")
            return
        self._run(["umount", mountpoint], target=mountpoint)
        self.log.info(f"Unmounted {mountpoint}")
