"""Domain model for disk image assembly.

Partition layouts are declared with ``PartitionSpec``/``PartitionLayout``,
realized as ``Partition`` records on a ``DiskImage`` and carried through
the partition -> map -> mount -> unmount -> unmap lifecycle.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Union


SECTOR_SIZE = 512  # bytes per sector used by the partitioning session
FIRST_SECTOR = 8192  # first partition starts 4 MiB in
SECTOR_ALIGNMENT = 4  # partition sizes must be a multiple of this many sectors
REMAINING = "remaining"  # size of a partition that fills the rest of the device
MAPPER_DIR = Path("/dev/mapper")

SizeMiB = Union[int, float, str]


# ==============================================================================
# Layout Domain
# ==============================================================================


class Filesystem(Enum):
    """Filesystem created on a partition."""

    NONE = ""  # raw partition, e.g. the GRUB BIOS boot partition
    FAT32 = "fat32"
    EXT4 = "ext4"

    @property
    def mountable(self) -> bool:
        return self is not Filesystem.NONE


class PartitionTable(Enum):
    GPT = "gpt"
    MSDOS = "msdos"


MSDOS_MAX_PARTITIONS = 4


@dataclass(frozen=True)
class PartitionSpec:
    """One declared partition of a layout."""

    label: str  # e.g., "system-boot"
    mount_dir: str  # relative to the mountpoint root, "" when never mounted
    filesystem: Filesystem
    size_mib: SizeMiB  # MiB, or REMAINING for the rest of the device

    @property
    def is_remaining(self) -> bool:
        return self.size_mib == REMAINING


@dataclass(frozen=True)
class PartitionLayout:
    """Ordered partitions plus the partition table flags.

    ``boot_partition`` and ``bios_grub_partition`` are 1-based indices.
    """

    table: str
    partitions: tuple[PartitionSpec, ...]
    boot_partition: int | None = None
    bios_grub_partition: int | None = None

    def __len__(self) -> int:
        return len(self.partitions)


@dataclass
class Partition:
    """A partition realized on the backing file.

    ``end`` is -1 for a partition that extends to the end of the device.
    ``loop`` is the device-mapper name assigned by the mapper, None while
    unmapped.
    """

    begin: int
    end: int
    filesystem: Filesystem
    label: str
    mount_dir: str
    loop: str | None = None

    @property
    def is_remaining(self) -> bool:
        return self.end == -1

    @property
    def device_path(self) -> Path:
        """Device node path (e.g., /dev/mapper/loop0p1)."""
        if self.loop is None:
            raise ValueError(f"Partition {self.label} is not mapped")
        return MAPPER_DIR / self.loop


# ==============================================================================
# Disk Image Domain
# ==============================================================================


class ImageState(Enum):
    """Lifecycle state of a disk image."""

    UNPARTITIONED = "unpartitioned"
    PARTITIONED = "partitioned"
    MAPPED = "mapped"
    MOUNTED = "mounted"


@dataclass
class DiskImage:
    """A backing file and everything currently attached to it."""

    path: Path
    size_bytes: int = 0
    label: str = ""
    partitions: list[Partition] = field(default_factory=list)
    mountpoint_root: Path | None = None
    mounts: list[Path] = field(default_factory=list)  # active mounts, in mount order

    @property
    def name(self) -> str:
        return self.label or self.path.name

    @property
    def is_mapped(self) -> bool:
        return any(part.loop is not None for part in self.partitions)

    @property
    def is_mounted(self) -> bool:
        return self.mountpoint_root is not None

    @property
    def state(self) -> ImageState:
        if self.is_mounted:
            return ImageState.MOUNTED
        if self.is_mapped:
            return ImageState.MAPPED
        if self.partitions:
            return ImageState.PARTITIONED
        return ImageState.UNPARTITIONED

    def mountable_partitions(self) -> list[Partition]:
        return [part for part in self.partitions if part.filesystem.mountable]


# ==============================================================================
# Boot Asset Domain
# ==============================================================================


@dataclass(frozen=True)
class FileAsset:
    """A file copied into the mounted boot partition.

    ``dst`` is relative to the boot partition, ``target`` to the
    bootloader directory. Without either the file keeps its basename.
    """

    path: str
    target: str | None = None
    dst: str | None = None


@dataclass(frozen=True)
class RawAsset:
    """A file written straight into the backing file at ``offset`` bytes."""

    path: str
    offset: int


@dataclass(frozen=True)
class BootAssets:
    files: tuple[FileAsset, ...] = ()
    raw_files: tuple[RawAsset, ...] = ()

    def __bool__(self) -> bool:
        return bool(self.files or self.raw_files)
