"""U-Boot booted core image (msdos, or gpt on arm64)."""

from __future__ import annotations

from pathlib import Path

from ubuntu_image_flash.boot.flash import BootloaderFlasher
from ubuntu_image_flash.boot.uboot import UBootInstaller
from ubuntu_image_flash.domain.descriptions import SYSTEM_AB
from ubuntu_image_flash.domain.models import (
    REMAINING,
    Filesystem,
    PartitionLayout,
    PartitionSpec,
    PartitionTable,
)

from .base import BOOT_DIR, SYSTEM_A_DIR, SYSTEM_B_DIR, WRITABLE_DIR, CoreImage


class CoreUBootImage(CoreImage):
    bootloader = "u-boot"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.installer = UBootInstaller()
        self.flasher = BootloaderFlasher(self.tools, self.runner)

    def partition_table(self) -> PartitionTable:
        if self.gadget.architecture == "arm64":
            return PartitionTable.GPT
        return PartitionTable.MSDOS

    def build_layout(self, name: str) -> PartitionLayout:
        sizes = self.sizes()
        if name == SYSTEM_AB:
            partitions = (
                PartitionSpec("system-boot", BOOT_DIR, Filesystem.FAT32, sizes["boot"]),
                PartitionSpec("system-a", SYSTEM_A_DIR, Filesystem.EXT4, sizes["root"]),
                PartitionSpec("system-b", SYSTEM_B_DIR, Filesystem.EXT4, sizes["root"]),
                PartitionSpec("writable", WRITABLE_DIR, Filesystem.EXT4, REMAINING),
            )
        else:
            partitions = (
                PartitionSpec("system-boot", BOOT_DIR, Filesystem.FAT32, sizes["minimal_boot"]),
                PartitionSpec("writable", WRITABLE_DIR, Filesystem.EXT4, REMAINING),
            )
        return PartitionLayout(
            table=self.partition_table().value,
            partitions=partitions,
            boot_partition=1,
        )

    def boot_path(self) -> Path:
        return self.boot()

    def install_bootloader(self) -> None:
        self.installer.install(self.base_mount(), self.boot(), self.hardware, self.gadget)

    def flash_extra(self, device_archive: Path) -> list[list[str]]:
        """Run the platform's ``flash.yaml`` bootloader commands on the image file."""
        return self.flasher.flash(device_archive, self.gadget.platform, self.image.path)
