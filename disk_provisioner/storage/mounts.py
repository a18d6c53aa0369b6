"""Mount table lookups used by filesystem cleanup."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Union

PROC_MOUNTS = Path("/proc/mounts")


def _unescape(field: str) -> str:
    # /proc/mounts escapes whitespace and backslashes as octal
    return (
        field.replace("\\040", " ")
        .replace("\\011", "\t")
        .replace("\\012", "\n")
        .replace("\\134", "\\")
    )


def active_mountpoints(mounts_file: Union[str, Path] = PROC_MOUNTS) -> list[str]:
    with open(mounts_file, "r", encoding="utf-8") as handle:
        mountpoints = []
        for line in handle:
            parts = line.split()
            if len(parts) > 1:
                mountpoints.append(_unescape(parts[1]))
        return mountpoints


def is_mountpoint_active(
    mountpoint: str, mounts_file: Union[str, Path] = PROC_MOUNTS
) -> bool:
    """Check if a mountpoint is currently active."""
    normalized = os.path.normpath(mountpoint)
    try:
        return normalized in active_mountpoints(mounts_file)
    except FileNotFoundError:
        return os.path.ismount(normalized)
