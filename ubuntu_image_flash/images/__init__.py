"""Image strategies: GRUB and U-Boot core images, flat emulator images."""

from __future__ import annotations

from .base import CoreImage
from .core_grub import CoreGrubImage
from .core_uboot import CoreUBootImage
from .flat import FlatImage
from .selector import select_image


__all__ = [
    "CoreGrubImage",
    "CoreImage",
    "CoreUBootImage",
    "FlatImage",
    "select_image",
]
