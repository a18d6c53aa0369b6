"""Settings for the provisioning engine.

Settings are loaded once by the caller and passed explicitly to the
orchestrator; nothing here is stored at module level.
"""

from __future__ import annotations

import json
import os
import re
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Optional

from loguru import logger


SETTINGS_PATH = Path(
    os.environ.get(
        "DISK_PROVISIONER_SETTINGS_PATH",
        Path.home() / ".config" / "disk-provisioner" / "settings.json",
    )
)

# Default values - use these constants instead of hardcoding values elsewhere
DEFAULT_SYSFS_ROOT = "/sys"
DEFAULT_MOUNT_ROOT = "/mnt"
DEFAULT_ZFS_POOL_NAME = "zroot"
DEFAULT_DEVICE_EXCLUDE_PATTERN = r"boot|rpmb|loop"
DEFAULT_PARTITION_SETTLE_TIMEOUT = 10.0
DEFAULT_PARTITION_SETTLE_INTERVAL = 0.5

DEFAULT_SETTINGS: dict[str, Any] = {
    "sysfs_root": DEFAULT_SYSFS_ROOT,
    "mount_root": DEFAULT_MOUNT_ROOT,
    "zfs_pool_name": DEFAULT_ZFS_POOL_NAME,
    "device_exclude_pattern": DEFAULT_DEVICE_EXCLUDE_PATTERN,
    "command_timeout_seconds": None,
    "partition_settle_timeout_seconds": DEFAULT_PARTITION_SETTLE_TIMEOUT,
    "partition_settle_interval_seconds": DEFAULT_PARTITION_SETTLE_INTERVAL,
}


@dataclass(frozen=True)
class ProvisionerSettings:
    sysfs_root: str = DEFAULT_SYSFS_ROOT
    mount_root: str = DEFAULT_MOUNT_ROOT
    zfs_pool_name: str = DEFAULT_ZFS_POOL_NAME
    device_exclude_pattern: Optional[str] = DEFAULT_DEVICE_EXCLUDE_PATTERN
    command_timeout_seconds: Optional[float] = None
    partition_settle_timeout_seconds: float = DEFAULT_PARTITION_SETTLE_TIMEOUT
    partition_settle_interval_seconds: float = DEFAULT_PARTITION_SETTLE_INTERVAL

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProvisionerSettings:
        """Build settings from a dict, ignoring keys this version does not know."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning(f"Ignoring unknown settings: {', '.join(unknown)}")
        values = dict(DEFAULT_SETTINGS)
        values.update({key: value for key, value in data.items() if key in known})
        pattern = values["device_exclude_pattern"]
        if pattern is not None:
            try:
                re.compile(pattern)
            except (re.error, TypeError) as error:
                logger.warning(
                    f"Invalid device_exclude_pattern {pattern!r} ({error}), "
                    f"using {DEFAULT_DEVICE_EXCLUDE_PATTERN!r}"
                )
                values["device_exclude_pattern"] = DEFAULT_DEVICE_EXCLUDE_PATTERN
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def load_settings(path: Path | None = None) -> ProvisionerSettings:
    settings_path = Path(path) if path is not None else SETTINGS_PATH
    if not settings_path.exists():
        return ProvisionerSettings()
    try:
        data = json.loads(settings_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as error:
        logger.warning(f"Could not read settings from {settings_path}: {error}")
        return ProvisionerSettings()
    if not isinstance(data, dict):
        logger.warning(f"Settings file {settings_path} does not hold an object")
        return ProvisionerSettings()
    return ProvisionerSettings.from_dict(data)

