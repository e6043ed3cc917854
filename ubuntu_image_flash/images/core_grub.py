"""GRUB booted core image (gpt, BIOS boot partition plus EFI)."""

from __future__ import annotations

from pathlib import Path

from ubuntu_image_flash.boot.grub import EFI_GRUB_DIR, GrubInstaller, efi_target
from ubuntu_image_flash.domain.descriptions import SYSTEM_AB
from ubuntu_image_flash.domain.models import (
    REMAINING,
    Filesystem,
    PartitionLayout,
    PartitionSpec,
    PartitionTable,
)

from .base import BOOT_DIR, SYSTEM_A_DIR, SYSTEM_B_DIR, WRITABLE_DIR, CoreImage


GRUB_PARTITION_MIB = 4


class CoreGrubImage(CoreImage):
    bootloader = "grub"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        # fail before anything touches the disk
        efi_target(self.gadget.architecture)
        self.installer = GrubInstaller(self.tools, self.runner, self.mounts)

    def build_layout(self, name: str) -> PartitionLayout:
        sizes = self.sizes()
        partitions = [
            PartitionSpec("grub", "", Filesystem.NONE, GRUB_PARTITION_MIB),
            PartitionSpec("system-boot", BOOT_DIR, Filesystem.FAT32, sizes["boot"]),
        ]
        if name == SYSTEM_AB:
            partitions += [
                PartitionSpec("system-a", SYSTEM_A_DIR, Filesystem.EXT4, sizes["root"]),
                PartitionSpec("system-b", SYSTEM_B_DIR, Filesystem.EXT4, sizes["root"]),
            ]
        partitions.append(PartitionSpec("writable", WRITABLE_DIR, Filesystem.EXT4, REMAINING))
        return PartitionLayout(
            table=PartitionTable.GPT.value,
            partitions=tuple(partitions),
            boot_partition=2,
            bios_grub_partition=1,
        )

    def boot_path(self) -> Path:
        return self.boot() / EFI_GRUB_DIR

    def install_bootloader(self) -> None:
        self.installer.install(
            self.system(), self.boot(), self.image.path, self.gadget.architecture
        )
