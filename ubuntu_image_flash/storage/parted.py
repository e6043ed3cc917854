"""Partition planning and the scripted ``parted`` session.

The planner turns a declarative ``PartitionLayout`` into sector ranges and
feeds the matching commands to ``parted <file>`` on stdin:

    mklabel gpt
    mkpart grub 8192s 16383s
    mkpart system-boot fat32 16384s 147455s
    mkpart writable ext4 147456s -1M
    set 2 boot on
    set 1 bios_grub on
    unit s print
    quit

Partition 1 starts at sector 8192; every later partition starts on the
sector after its predecessor ends. A partition sized ``REMAINING`` runs to
the end of the device (``-1M``) and must be the last one.

All validation (table type, msdos partition count, sector alignment, flag
indices) happens before ``parted`` is spawned. Once it has run, a failure
leaves the backing file in an unknown state and the caller is expected to
discard it.
"""

from __future__ import annotations

from pathlib import Path, PurePosixPath
from typing import Iterable

from ubuntu_image_flash.config.settings import ToolPaths
from ubuntu_image_flash.domain.models import (
    FIRST_SECTOR,
    MSDOS_MAX_PARTITIONS,
    SECTOR_ALIGNMENT,
    SECTOR_SIZE,
    Partition,
    PartitionLayout,
    PartitionSpec,
    PartitionTable,
)
from ubuntu_image_flash.logging import LoggerFactory

from .commands import CommandRunner
from .exceptions import (
    CommandError,
    LayoutError,
    MisalignedSizeError,
    PartitionCountError,
    PartitionIndexError,
    PartitioningError,
    UnsupportedPartitioningError,
)


log = LoggerFactory.for_partition()


def mib_to_sectors(size_mib) -> int:
    """Convert a size in MiB to 512-byte sectors.

    Raises:
        MisalignedSizeError: the sector count is fractional or not a
            multiple of the block alignment.
    """
    if isinstance(size_mib, bool) or not isinstance(size_mib, (int, float)):
        raise LayoutError(f"partition size must be a number of MiB, got {size_mib!r}")
    if size_mib <= 0:
        raise LayoutError(f"partition size must be positive, got {size_mib}")
    sectors = size_mib * 1024 * 1024 / SECTOR_SIZE
    if not float(sectors).is_integer() or int(sectors) % SECTOR_ALIGNMENT:
        raise MisalignedSizeError(size_mib, SECTOR_ALIGNMENT)
    return int(sectors)


def _is_nested(child: str, parent: str) -> bool:
    if not child or not parent or child == parent:
        return False
    return PurePosixPath(parent) in PurePosixPath(child).parents


class PartitionPlanner:
    """Computes partition boundaries and drives ``parted``."""

    def __init__(
        self,
        table: str,
        tools: ToolPaths | None = None,
        runner: CommandRunner | None = None,
    ):
        try:
            self.table = PartitionTable(table)
        except ValueError as error:
            raise UnsupportedPartitioningError(str(table)) from error
        self.tools = tools or ToolPaths.from_settings()
        self.runner = runner or CommandRunner.from_settings()
        self.partitions: list[Partition] = []
        self.boot_partition: int | None = None
        self.bios_grub_partition: int | None = None

    @classmethod
    def from_layout(
        cls,
        layout: PartitionLayout,
        tools: ToolPaths | None = None,
        runner: CommandRunner | None = None,
    ) -> PartitionPlanner:
        planner = cls(layout.table, tools=tools, runner=runner)
        planner.add_all(layout.partitions)
        if layout.boot_partition is not None:
            planner.set_boot(layout.boot_partition)
        if layout.bios_grub_partition is not None:
            planner.set_bios_grub(layout.bios_grub_partition)
        return planner

    def add(self, spec: PartitionSpec) -> Partition:
        """Append a partition directly after the previous one."""
        if self.partitions and self.partitions[-1].is_remaining:
            raise LayoutError(
                f"{spec.label} follows {self.partitions[-1].label}, "
                "which already fills the rest of the device"
            )
        for earlier in self.partitions:
            if _is_nested(earlier.mount_dir, spec.mount_dir):
                raise LayoutError(
                    f"{spec.label} ({spec.mount_dir}) must come before "
                    f"{earlier.label} mounted below it ({earlier.mount_dir})"
                )

        begin = self.partitions[-1].end + 1 if self.partitions else FIRST_SECTOR
        if spec.is_remaining:
            end = -1
        else:
            end = mib_to_sectors(spec.size_mib) + begin - 1

        partition = Partition(
            begin=begin,
            end=end,
            filesystem=spec.filesystem,
            label=spec.label,
            mount_dir=spec.mount_dir,
        )
        self.partitions.append(partition)
        return partition

    def add_all(self, specs: Iterable[PartitionSpec]) -> list[Partition]:
        return [self.add(spec) for spec in specs]

    def set_boot(self, index: int) -> None:
        self.boot_partition = index

    def set_bios_grub(self, index: int) -> None:
        self.bios_grub_partition = index

    def validate(self) -> None:
        count = len(self.partitions)
        if count == 0:
            raise LayoutError("no partitions defined")
        if self.table is PartitionTable.MSDOS and count > MSDOS_MAX_PARTITIONS:
            raise PartitionCountError(self.table.value, count, MSDOS_MAX_PARTITIONS)
        for flag, index in (
            ("boot", self.boot_partition),
            ("bios_grub", self.bios_grub_partition),
        ):
            if index is not None and not 1 <= index <= count:
                raise PartitionIndexError(flag, index, count)

    def _mkpart(self, partition: Partition) -> str:
        end = "-1M" if partition.is_remaining else f"{partition.end}s"
        if self.table is PartitionTable.GPT:
            name = partition.label
        else:
            name = "primary"
        words = ["mkpart", name, partition.filesystem.value, f"{partition.begin}s", end]
        return " ".join(word for word in words if word)

    def script(self) -> list[str]:
        """The command lines fed to ``parted``, validated first."""
        self.validate()
        lines = [f"mklabel {self.table.value}"]
        lines.extend(self._mkpart(partition) for partition in self.partitions)
        if self.boot_partition is not None:
            lines.append(f"set {self.boot_partition} boot on")
        if self.bios_grub_partition is not None:
            lines.append(f"set {self.bios_grub_partition} bios_grub on")
        lines.append("unit s print")
        lines.append("quit")
        return lines

    def create(self, target: Path) -> list[Partition]:
        """Partition ``target`` and return the realized partitions."""
        script = self.script()
        log.info(
            f"Partitioning {target} ({self.table.value}, {len(self.partitions)} partitions)"
        )
        for line in script:
            log.debug(f"parted> {line}")
        command = [self.tools.parted, str(target)]
        try:
            self.runner.run(command, input_text="\n".join(script) + "\n")
        except CommandError as error:
            log.error(f"Partitioning {target} failed")
            raise PartitioningError.wrap(error, "issues while partitioning") from error
        return list(self.partitions)
