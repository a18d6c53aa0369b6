"""Filesystem backends for boot and root partitions.

Backends:
    - Ext4: root filesystem formatted with mkfs.ext4
    - FAT32: EFI system partition formatted with mkfs.vfat
    - ZFS: root pool created with zpool, datasets with zfs

``backend_from_name`` is the only place that maps a configured filesystem name
to a backend class.
"""

from __future__ import annotations

from dataclasses import fields
from typing import Any

from disk_provisioner.storage.command import CommandExecutor
from disk_provisioner.storage.exceptions import UnknownFilesystemError

from .base import FilesystemBackend
from .ext4 import Ext4
from .fat import FAT32
from .zfs import ZFS

BACKENDS: dict[str, type[FilesystemBackend]] = {
    Ext4.key: Ext4,
    FAT32.key: FAT32,
    ZFS.key: ZFS,
}

# Filesystems that may hold the root partition
ROOT_FILESYSTEMS = (Ext4.key, ZFS.key)


def backend_from_name(
    name: str, executor: CommandExecutor, **options: Any
) -> FilesystemBackend:
    """Build the backend registered under ``name``.

    Options that the backend does not take (e.g. ``pool_name`` for ext4) are
    ignored, so callers can pass every configured option unconditionally.
    """
    key = (name or "").strip().lower()
    backend_cls = BACKENDS.get(key)
    if backend_cls is None:
        raise UnknownFilesystemError(name, known=sorted(BACKENDS))
    accepted = {f.name for f in fields(backend_cls)}
    kwargs = {
        option: value
        for option, value in options.items()
        if option in accepted and value is not None
    }
    return backend_cls(executor=executor, **kwargs)


__all__ = [
    "BACKENDS",
    "ROOT_FILESYSTEMS",
    "Ext4",
    "FAT32",
    "FilesystemBackend",
    "ZFS",
    "backend_from_name",
]
