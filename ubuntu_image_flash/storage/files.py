"""Backing file helpers."""

from __future__ import annotations

import shutil
from pathlib import Path

from ubuntu_image_flash.logging import LoggerFactory


log = LoggerFactory.for_system()

GIB = "GiB"
GB = "GB"


def image_size_bytes(size: int, unit: str = GIB) -> int:
    """Size in bytes for ``size`` units.

    ``GB`` sizes are cut to 97.5% and rounded down to a multiple of 512 so
    the image fits drives that are smaller than advertised.
    """
    if unit == GIB:
        return size * 1024 * 1024 * 1024
    if unit == GB:
        return size * 1000 * 1000 * 975 // 512 * 512
    raise ValueError(f"Improper sizing unit: {unit!r}")


def create_empty_file(path: Path, size: int, unit: str = GIB) -> int:
    """Create a sparse file of the given size, removing it on failure."""
    size_bytes = image_size_bytes(size, unit)
    path = Path(path)
    log.debug(f"Creating {path} ({size_bytes} bytes)")
    try:
        with open(path, "wb") as handle:
            handle.truncate(size_bytes)
    except OSError:
        path.unlink(missing_ok=True)
        raise
    return size_bytes


def copy_file(source: Path, destination: Path) -> None:
    """Copy file contents, creating the destination directory."""
    Path(destination).parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(source, destination)
