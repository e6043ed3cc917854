"""Boot asset installation.

File assets are copied into the mounted boot partition; raw assets are
written into the backing file itself, below the first partition.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable

from ubuntu_image_flash.domain.descriptions import GadgetDescription, HardwareDescription
from ubuntu_image_flash.domain.models import FIRST_SECTOR, SECTOR_SIZE, FileAsset, RawAsset
from ubuntu_image_flash.logging import LoggerFactory
from ubuntu_image_flash.storage.exceptions import InvalidOffsetError
from ubuntu_image_flash.storage.files import copy_file


log = LoggerFactory.for_boot()

HARDWARE_FILE_NAME = "hardware.yaml"
KERNEL_FILE_NAME = "vmlinuz"
INITRD_FILE_NAME = "initrd.img"

RAW_AREA_END = FIRST_SECTOR * SECTOR_SIZE


def file_asset_destination(asset: FileAsset, boot_mount: Path, boot_path: Path) -> Path:
    """Where a file asset lands.

    ``dst`` is relative to the boot partition mount, ``target`` to the
    bootloader directory; otherwise the basename goes in the bootloader
    directory.
    """
    if asset.dst:
        return Path(boot_mount) / asset.dst
    if asset.target:
        return Path(boot_path) / asset.target
    return Path(boot_path) / Path(asset.path).name


def install_file_assets(
    files: Iterable[FileAsset], boot_mount: Path, boot_path: Path, source_root: Path
) -> list[Path]:
    installed = []
    for asset in files:
        destination = file_asset_destination(asset, boot_mount, boot_path)
        source = Path(source_root) / asset.path
        log.debug(f"Copying {source} to {destination}")
        copy_file(source, destination)
        installed.append(destination)
    return installed


def write_raw_assets(image_path: Path, raw_files: Iterable[RawAsset], source_root: Path) -> None:
    """Write raw assets at their byte offsets in the backing file.

    Raises:
        InvalidOffsetError: an asset would overlap the first partition
    """
    raw_files = list(raw_files)
    if not raw_files:
        return
    for asset in raw_files:
        size = (Path(source_root) / asset.path).stat().st_size
        if asset.offset + size > RAW_AREA_END:
            raise InvalidOffsetError(
                asset.path,
                asset.offset,
                f"{size} bytes would overlap the first partition at byte {RAW_AREA_END}",
            )

    log.info(f"Writing {len(raw_files)} raw boot asset(s) to {image_path}")
    with open(image_path, "r+b") as image:
        for asset in raw_files:
            source = Path(source_root) / asset.path
            log.debug(f"Writing {source} at offset {asset.offset}")
            image.seek(asset.offset)
            with open(source, "rb") as handle:
                image.write(handle.read())
        image.flush()
        os.fsync(image.fileno())


def install_boot_payload(
    mount_root: Path,
    boot_path: Path,
    hardware: HardwareDescription,
    gadget: GadgetDescription,
) -> list[Path]:
    """Copy hardware.yaml, kernel and initrd into each system part directory."""
    mount_root = Path(mount_root)
    sources = {
        HARDWARE_FILE_NAME: mount_root / HARDWARE_FILE_NAME,
        KERNEL_FILE_NAME: mount_root / hardware.kernel,
        INITRD_FILE_NAME: mount_root / hardware.initrd,
    }
    part_dirs = []
    for part in gadget.system_parts():
        part_dir = Path(boot_path) / part
        log.info(f"Setting up {part_dir}")
        part_dir.mkdir(parents=True, exist_ok=True)
        for name, source in sources.items():
            copy_file(source, part_dir / name)
        part_dirs.append(part_dir)
    return part_dirs
