"""Filesystem creation on image partitions.

Supported Filesystems:
    fat32:  ``mkfs.vfat -F 32 -n <label> [-s 1] -S <sector size> <dev>``;
            the logical sector size comes from ``blockdev --getss`` and
            devices with non-512 byte sectors get one sector per cluster
    ext4:   ``mkfs.ext4 -F -L <label> <dev>``
    none:   skipped (GRUB BIOS boot partition)

Operations:
    - Formatter.format(): map the image, create every filesystem, unmap
    - Formatter.create_ext4() / create_vfat(): filesystem on a whole file
"""

from __future__ import annotations

from pathlib import Path

from ubuntu_image_flash.config.settings import ToolPaths
from ubuntu_image_flash.domain.models import DiskImage, Filesystem, Partition
from ubuntu_image_flash.logging import LoggerFactory

from .commands import CommandRunner
from .exceptions import CommandError, FormatError, attach_cleanup_errors
from .loop import LoopMapper


log = LoggerFactory.for_partition()

DEFAULT_SECTOR_SIZE = "512"


class Formatter:
    def __init__(
        self,
        tools: ToolPaths | None = None,
        runner: CommandRunner | None = None,
        mapper: LoopMapper | None = None,
    ):
        self.tools = tools or ToolPaths.from_settings()
        self.runner = runner or CommandRunner.from_settings()
        self.mapper = mapper or LoopMapper(self.tools, self.runner)

    def sector_size(self, device: Path) -> str:
        command = [self.tools.blockdev, "--getss", str(device)]
        try:
            result = self.runner.run(command, separate_stderr=True)
        except CommandError as error:
            raise FormatError.wrap(error, f"unable to determine block size of {device}") from error
        return result.output.strip()

    def _mkfs_command(self, partition: Partition) -> list[str] | None:
        device = partition.device_path
        if partition.filesystem is Filesystem.FAT32:
            command = [self.tools.mkfs_vfat, "-F", "32", "-n", partition.label]
            size = self.sector_size(device)
            if size != DEFAULT_SECTOR_SIZE:
                command += ["-s", "1"]
            return command + ["-S", size, str(device)]
        if partition.filesystem is Filesystem.EXT4:
            return [self.tools.mkfs_ext4, "-F", "-L", partition.label, str(device)]
        return None

    def format_partition(self, partition: Partition) -> None:
        command = self._mkfs_command(partition)
        if command is None:
            log.debug(f"Skipping {partition.label}: no filesystem")
            return
        log.info(f"Creating {partition.filesystem.value} on {partition.label}")
        try:
            self.runner.run(command)
        except CommandError as error:
            raise FormatError.wrap(error, "unable to create filesystem") from error

    def format(self, image: DiskImage) -> None:
        """Create the filesystems of every partition.

        The image is mapped for the duration and always unmapped again; an
        unmap failure is attached to a formatting error already in flight.
        """
        self.mapper.map(image)
        try:
            for partition in image.partitions:
                self.format_partition(partition)
        except Exception as error:
            try:
                self.mapper.unmap(image)
            except Exception as unmap_error:
                log.warning(f"Could not unmap {image.name} after error: {unmap_error}")
                attach_cleanup_errors(error, [unmap_error])
            raise
        self.mapper.unmap(image)

    def create_ext4(self, path: Path, label: str) -> None:
        self._run_mkfs([self.tools.mkfs_ext4, "-F", "-L", label, str(path)])

    def create_vfat(self, path: Path, label: str) -> None:
        self._run_mkfs([self.tools.mkfs_vfat, "-n", label, str(path)])

    def _run_mkfs(self, command: list[str]) -> None:
        log.info(f"Creating filesystem on {command[-1]}")
        try:
            self.runner.run(command)
        except CommandError as error:
            raise FormatError.wrap(error, "unable to create filesystem") from error
