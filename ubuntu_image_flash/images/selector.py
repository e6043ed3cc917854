"""Choosing the image strategy from hardware and gadget metadata."""

from __future__ import annotations

from pathlib import Path

from ubuntu_image_flash.domain.descriptions import GadgetDescription, HardwareDescription
from ubuntu_image_flash.logging import LoggerFactory
from ubuntu_image_flash.storage.exceptions import UnsupportedBootloaderError

from .base import CoreImage
from .core_grub import CoreGrubImage
from .core_uboot import CoreUBootImage


log = LoggerFactory.for_build()

IMAGE_TYPES: dict[str, type[CoreImage]] = {
    CoreGrubImage.bootloader: CoreGrubImage,
    CoreUBootImage.bootloader: CoreUBootImage,
}


def image_type_for(bootloader: str) -> type[CoreImage]:
    try:
        return IMAGE_TYPES[bootloader]
    except KeyError:
        raise UnsupportedBootloaderError(bootloader) from None


def select_image(
    path: Path,
    size: int,
    hardware: HardwareDescription,
    gadget: GadgetDescription,
    **kwargs,
) -> CoreImage:
    """Build the image strategy for the declared bootloader and layout.

    Raises:
        UnsupportedBootloaderError: the bootloader is not grub or u-boot
        UnknownPartitionLayoutError: the partition layout is not recognised
        UnsupportedArchitectureError: grub has no target for the architecture
    """
    merged = gadget.merged_with(hardware)
    image_type = image_type_for(merged.bootloader)
    log.info(
        f"Selected {image_type.__name__} for {merged.bootloader} "
        f"({merged.partition_layout}, {merged.architecture or 'unknown arch'})"
    )
    return image_type(path, size, hardware, gadget, **kwargs)
