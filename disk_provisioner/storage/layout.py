"""Fixed GPT layout written to the target device.

    1  ESP         FAT32   1MiB - 2GiB   boot flag
    2  persistent  ext4    2GiB - 3GiB
    3  root        (plan)  3GiB - 100%

The whole table is created with a single scripted parted call so a failure
leaves either the old table or the complete new one.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Sequence

_SIZE_UNITS = {
    "B": 1,
    "KiB": 1024,
    "MiB": 1024**2,
    "GiB": 1024**3,
    "TiB": 1024**4,
}
_SIZE_RE = re.compile(r"^(\d+(?:\.\d+)?)(B|KiB|MiB|GiB|TiB|%)$")

BOOT_PARTITION_INDEX = 1
PERSISTENT_PARTITION_INDEX = 2
ROOT_PARTITION_INDEX = 3


@dataclass(frozen=True)
class PartitionSpec:
    index: int
    name: str
    fs_hint: Optional[str]  # parted filesystem type, None when parted has no name for it
    start: str
    end: str
    flags: tuple[str, ...] = ()

    def byte_range(self, device_size: int) -> tuple[int, int]:
        """Approximate byte range of this partition on a device of ``device_size``."""
        return parse_size(self.start, device_size), parse_size(self.end, device_size)


DEFAULT_LAYOUT: tuple[PartitionSpec, ...] = (
    PartitionSpec(BOOT_PARTITION_INDEX, "ESP", "fat32", "1MiB", "2GiB", ("boot",)),
    PartitionSpec(PERSISTENT_PARTITION_INDEX, "persistent", "ext4", "2GiB", "3GiB"),
    PartitionSpec(ROOT_PARTITION_INDEX, "root", None, "3GiB", "100%"),
)


def parse_size(value: str, device_size: int) -> int:
    match = _SIZE_RE.match(value)
    if not match:
        raise ValueError(f"Unsupported size: {value!r}")
    number, unit = float(match.group(1)), match.group(2)
    if unit == "%":
        return int(device_size * number / 100)
    return int(number * _SIZE_UNITS[unit])


def root_layout(
    root_fs_hint: Optional[str], layout: Sequence[PartitionSpec] = DEFAULT_LAYOUT
) -> tuple[PartitionSpec, ...]:
    """Return ``layout`` with the root partition's filesystem hint replaced."""
    return tuple(
        PartitionSpec(
            spec.index, spec.name, root_fs_hint, spec.start, spec.end, spec.flags
        )
        if spec.index == ROOT_PARTITION_INDEX
        else spec
        for spec in layout
    )


def parted_command(
    device_path: str, layout: Sequence[PartitionSpec] = DEFAULT_LAYOUT
) -> list[str]:
    """Build the scripted parted invocation that writes ``layout``."""
    command = ["parted", "--script", device_path, "--", "mklabel", "gpt"]
    for spec in layout:
        command += ["mkpart", spec.name]
        if spec.fs_hint:
            command.append(spec.fs_hint)
        command += [spec.start, spec.end]
        for flag in spec.flags:
            command += ["set", str(spec.index), flag, "on"]
    return command
