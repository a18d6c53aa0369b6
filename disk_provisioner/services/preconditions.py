"""Host checks run before any storage is touched."""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Iterable, Union

from disk_provisioner.config.settings import DEFAULT_SYSFS_ROOT
from disk_provisioner.logging import LoggerFactory
from disk_provisioner.storage.exceptions import DependencyError, PreconditionError

log = LoggerFactory.for_system()

# Tools the workflow itself needs, independent of the root filesystem
BASE_TOOLS = ("parted", "wipefs", "mkfs.vfat", "mkdir", "mount")


def assert_efi_boot(sysfs_root: Union[str, Path] = DEFAULT_SYSFS_ROOT) -> None:
    """Raise ``PreconditionError`` unless the host booted through EFI."""
    efivars = Path(sysfs_root) / "firmware" / "efi" / "efivars"
    if not efivars.is_dir():
        raise PreconditionError(
            "efi boot mode", f"{efivars} not found; the system was not booted in EFI mode"
        )
    log.debug("Host booted in EFI mode")


def assert_tools_available(tools: Iterable[str]) -> None:
    """Raise ``DependencyError`` naming every tool missing from PATH."""
    missing = sorted({tool for tool in tools if shutil.which(tool) is None})
    if missing:
        raise DependencyError(", ".join(missing), "not found in PATH")
