"""Domain models for disk image assembly.

This package contains the layout, partition, image and boot asset types
shared by the storage, boot and image modules.
"""

from __future__ import annotations

from .descriptions import FlashInstructions, GadgetDescription, HardwareDescription
from .models import (
    REMAINING,
    BootAssets,
    DiskImage,
    FileAsset,
    Filesystem,
    ImageState,
    Partition,
    PartitionLayout,
    PartitionSpec,
    PartitionTable,
    RawAsset,
)


__all__ = [
    "REMAINING",
    "BootAssets",
    "DiskImage",
    "FileAsset",
    "Filesystem",
    "FlashInstructions",
    "GadgetDescription",
    "HardwareDescription",
    "ImageState",
    "Partition",
    "PartitionLayout",
    "PartitionSpec",
    "PartitionTable",
    "RawAsset",
]
