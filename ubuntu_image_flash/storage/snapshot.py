"""qcow2 conversion and snapshots with qemu-img."""

from __future__ import annotations

import os
from pathlib import Path

from ubuntu_image_flash.config.settings import ToolPaths
from ubuntu_image_flash.logging import LoggerFactory

from .commands import CommandRunner
from .exceptions import CommandError, SnapshotError


log = LoggerFactory.for_system()

BASE_SNAPSHOT = "pristine"


class SnapshotManager:
    def __init__(self, tools: ToolPaths | None = None, runner: CommandRunner | None = None):
        self.tools = tools or ToolPaths.from_settings()
        self.runner = runner or CommandRunner.from_settings()

    def _qemu_img(self, path: Path, *args: str) -> None:
        command = [self.tools.qemu_img, *args]
        try:
            self.runner.run(command)
        except CommandError as error:
            raise SnapshotError.wrap(error, f"Error while converting {path}") from error

    def convert_qcow2(self, path: Path) -> None:
        """Replace a raw image with a qcow2 copy holding a pristine snapshot."""
        path = Path(path)
        converted = path.with_name(path.name + ".qcow2")
        log.info(f"Converting {path} to qcow2")
        self._qemu_img(
            path,
            "convert", "-f", "raw", str(path),
            "-O", "qcow2", "-o", "compat=0.10", str(converted),
        )
        try:
            self._qemu_img(path, "check", str(converted))
        except SnapshotError:
            converted.unlink(missing_ok=True)
            raise
        os.replace(converted, path)
        self.snapshot(path, BASE_SNAPSHOT)

    def snapshot(self, path: Path, label: str) -> None:
        log.debug(f"Creating snapshot {label} of {path}")
        self._qemu_img(path, "snapshot", "-c", label, str(path))

    def revert_snapshot(self, path: Path, label: str) -> None:
        log.debug(f"Reverting {path} to snapshot {label}")
        self._qemu_img(path, "snapshot", "-a", label, str(path))
