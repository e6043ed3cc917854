"""Bootloader flashing from the device tarball's flash instructions.

Some U-Boot platforms ship ``flashtool-assets/<platform>/flash.yaml``
whose ``bootloader`` commands write SPL/U-Boot binaries straight into the
finished image file (usually with ``dd``). The commands run after the
image is unmapped and unmounted, as the invoking user.
"""

from __future__ import annotations

import tempfile
from pathlib import Path

from ubuntu_image_flash.config.settings import ToolPaths
from ubuntu_image_flash.domain.descriptions import FlashInstructions
from ubuntu_image_flash.logging import LoggerFactory
from ubuntu_image_flash.provision import PayloadExtractor
from ubuntu_image_flash.storage.commands import CommandRunner
from ubuntu_image_flash.storage.exceptions import CommandError, FlashError

from .uboot import FLASH_ASSETS_DIR


log = LoggerFactory.for_boot("flash")

FLASH_FILE = "flash.yaml"


class BootloaderFlasher:
    def __init__(self, tools: ToolPaths | None = None, runner: CommandRunner | None = None):
        self.tools = tools or ToolPaths.from_settings()
        self.runner = runner or CommandRunner.from_settings()
        self.extractor = PayloadExtractor(self.tools, self.runner)

    def run_instructions(
        self, instructions: FlashInstructions, assets_dir: Path, image_path: Path
    ) -> list[list[str]]:
        """Run every bootloader command in order; stop at the first failure."""
        commands = instructions.commands(assets_dir, image_path)
        for command in commands:
            log.info(f"Flashing: {' '.join(command)}")
            try:
                self.runner.run(command)
            except CommandError as error:
                raise FlashError.wrap(
                    error, f"Failed to run flash command {' '.join(command)}"
                ) from error
        return commands

    def flash(self, device_archive: Path, platform: str, image_path: Path) -> list[list[str]]:
        """Run the platform's flash instructions against ``image_path``.

        Nothing happens without a platform or when the platform ships no
        ``flash.yaml``. The device archive must contain ``flashtool-assets``.

        Returns:
            The commands that were run.
        """
        if not platform:
            return []
        with tempfile.TemporaryDirectory(prefix="device") as tmp:
            self.extractor.extract(device_archive, Path(tmp), members=(FLASH_ASSETS_DIR,))
            assets_dir = Path(tmp) / FLASH_ASSETS_DIR / platform
            flash_file = assets_dir / FLASH_FILE
            if not flash_file.is_file():
                log.debug(f"No {FLASH_FILE} for {platform}")
                return []
            instructions = FlashInstructions.from_yaml(flash_file)
            return self.run_instructions(instructions, assets_dir, image_path)
