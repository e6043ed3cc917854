"""Payload extraction into a mounted image."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Sequence

from ubuntu_image_flash.config.settings import ToolPaths
from ubuntu_image_flash.logging import LoggerFactory
from ubuntu_image_flash.storage.commands import CommandRunner
from ubuntu_image_flash.storage.exceptions import CommandError, ExtractionError


log = LoggerFactory.for_build()

WRITABLE_DIRS = ("system-data", "cache")


class PayloadExtractor:
    def __init__(self, tools: ToolPaths | None = None, runner: CommandRunner | None = None):
        self.tools = tools or ToolPaths.from_settings()
        self.runner = runner or CommandRunner.from_settings()

    def extract(
        self,
        archive: Path,
        destination: Path,
        excludes: Sequence[str] = (),
        members: Sequence[str] = (),
    ) -> None:
        """Unpack ``archive`` into ``destination``, or only ``members`` of it."""
        command = [self.tools.tar, "--numeric-owner"]
        for pattern in excludes:
            command += ["--exclude", pattern]
        command += ["-xf", str(archive), "-C", str(destination), *members]
        log.info(f"Extracting {archive} to {destination}")
        try:
            self.runner.run(command)
        except CommandError as error:
            raise ExtractionError.wrap(
                error, f"Unable to extract {archive} to {destination}"
            ) from error

    def extract_all(
        self, archives: Iterable[Path], destination: Path, excludes: Sequence[str] = ()
    ) -> None:
        for archive in archives:
            self.extract(archive, destination, excludes)


def prepare_writable(writable: Path) -> list[Path]:
    """Create the directories the system expects on the writable partition."""
    created = []
    for name in WRITABLE_DIRS:
        path = Path(writable) / name
        path.mkdir(parents=True, exist_ok=True, mode=0o755)
        created.append(path)
    return created
