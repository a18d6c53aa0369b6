"""Block device enumeration from sysfs.

The catalog reads ``/sys/block`` directly instead of parsing lsblk output, so
it sees exactly what the kernel exposes:

    /sys/block/<name>/hidden     1 for hidden entries (e.g. multipath members)
    /sys/block/<name>/size       declared size in 512-byte sectors
    /sys/block/<name>/dev        "MAJ:MIN" identifier
    /sys/dev/block/<MAJ:MIN>/size  authoritative size for the identifier

Filtering Logic:
    1. Hidden entries are skipped
    2. Entries with a zero declared or authoritative size are skipped
       (empty loop devices, placeholders for composite devices)
    3. Entries whose name matches the exclusion pattern are skipped
       (boot/rpmb hardware partitions of eMMC, loop devices)
    4. Entries missing any attribute are not block disks we can use and are
       skipped; any other read failure aborts with EnumerationError

Example:
    >>> from disk_provisioner.storage.devices import DeviceCatalog
    >>> for device in DeviceCatalog().enumerate():
    ...     print(format_device_label(device))
    nvme0n1 476.9GB
    sda 14.9GB
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Optional, Union

from disk_provisioner.config.settings import (
    DEFAULT_DEVICE_EXCLUDE_PATTERN,
    DEFAULT_SYSFS_ROOT,
)
from disk_provisioner.domain.models import Device
from disk_provisioner.logging import LoggerFactory

from .exceptions import EnumerationError

SECTOR_SIZE = 512

log = LoggerFactory.for_storage()


def human_size(size_bytes):
    if size_bytes is None:
        return "0B"
    size = float(size_bytes)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size < 1024.0:
            return f"{size:.1f}{unit}"
        size /= 1024.0
    return f"{size:.1f}PB"


def format_device_label(device: Device) -> str:
    if not device.byte_size:
        return device.name
    size_label = re.sub(r"\.0([A-Z])", r"\1", human_size(device.byte_size))
    return f"{device.name} {size_label}"


class _AttributeMissing(Exception):
    pass


class DeviceCatalog:
    """Lists the block devices an install could target.

    Args:
        sysfs_root: Root of the sysfs tree (``/sys``); tests point this at a
            fake tree.
        exclude_pattern: Regex matched against device names; matching devices
            are never offered. ``None`` disables the filter.
    """

    def __init__(
        self,
        sysfs_root: Union[str, Path] = DEFAULT_SYSFS_ROOT,
        exclude_pattern: Optional[str] = DEFAULT_DEVICE_EXCLUDE_PATTERN,
    ):
        self.sysfs_root = Path(sysfs_root)
        self._exclude = re.compile(exclude_pattern) if exclude_pattern else None

    @property
    def block_dir(self) -> Path:
        return self.sysfs_root / "block"

    @property
    def dev_block_dir(self) -> Path:
        return self.sysfs_root / "dev" / "block"

    def enumerate(self) -> list[Device]:
        """Return visible, non-empty devices sorted by size, largest first."""
        try:
            entries = sorted(self.block_dir.iterdir(), key=lambda path: path.name)
        except OSError as error:
            raise EnumerationError(
                f"Cannot list block devices: {error}", path=str(self.block_dir)
            ) from error

        devices = []
        for entry in entries:
            name = entry.name
            if self._exclude is not None and self._exclude.search(name):
                log.trace(f"Skipping {name}: excluded by name")
                continue
            try:
                device = self._read_device(entry)
            except _AttributeMissing as missing:
                log.trace(f"Skipping {name}: {missing}")
                continue
            if device is not None:
                devices.append(device)

        # sort() is stable, so equal sizes keep discovery order
        devices.sort(key=lambda device: device.byte_size, reverse=True)
        if devices:
            log.debug(
                f"Found {len(devices)} devices: "
                + ", ".join(format_device_label(device) for device in devices)
            )
        else:
            log.debug("No block devices found")
        return devices

    def from_path(self, path: Union[str, Path]) -> Device:
        return Device.from_path(path)

    def size_of(self, device: Device) -> int:
        """Resolve the byte size of a device, e.g. one built by ``from_path``."""
        try:
            identifier = _read_attribute(self.block_dir / device.name / "dev")
            sectors = _read_int(self.dev_block_dir / identifier / "size")
        except _AttributeMissing as missing:
            raise EnumerationError(
                f"Device {device.name} has no size: {missing}"
            ) from None
        return sectors * SECTOR_SIZE

    def resolve(self, device: Device) -> Device:
        """Return ``device`` with its byte size filled in."""
        if device.byte_size:
            return device
        return Device(name=device.name, byte_size=self.size_of(device))

    def _read_device(self, entry: Path) -> Optional[Device]:
        name = entry.name
        if _read_attribute(entry / "hidden") == "1":
            log.trace(f"Skipping {name}: hidden")
            return None

        if _read_int(entry / "size") == 0:
            log.trace(f"Skipping {name}: zero declared size")
            return None

        identifier = _read_attribute(entry / "dev")
        sectors = _read_int(self.dev_block_dir / identifier / "size")
        if sectors < 1:
            log.trace(f"Skipping {name}: zero size for {identifier}")
            return None

        return Device(name=name, byte_size=sectors * SECTOR_SIZE)


def _read_attribute(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        raise _AttributeMissing(f"{path.name} attribute missing") from None
    except OSError as error:
        raise EnumerationError(f"Cannot read attribute: {error}", path=str(path)) from error


def _read_int(path: Path) -> int:
    value = _read_attribute(path)
    try:
        return int(value)
    except ValueError:
        raise EnumerationError(
            f"Attribute is not an integer: {value!r}", path=str(path)
        ) from None
