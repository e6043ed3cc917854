"""Loop device mapping of image partitions with kpartx/dmsetup."""

from __future__ import annotations

from ubuntu_image_flash.config.settings import ToolPaths
from ubuntu_image_flash.domain.models import DiskImage
from ubuntu_image_flash.logging import EventLogger, LoggerFactory

from .commands import CommandRunner
from .exceptions import (
    AlreadyMappedError,
    CommandError,
    MapCountError,
    MappingError,
    MappingParseError,
    NotSetUpError,
    StillMountedError,
    attach_cleanup_errors,
)


log = LoggerFactory.for_loop()

# kpartx -v prints "add map loop0p1 (253:0): 0 131072 linear 7:0 8192"
LOOP_FIELD = 2


def parse_kpartx_output(command: list[str], output: str) -> list[str]:
    """Return the device-mapper names in output order.

    A non-blank line with fewer than three fields is a parse error.
    """
    loops = []
    for line in output.splitlines():
        fields = line.split()
        if not fields:
            continue
        if len(fields) <= LOOP_FIELD:
            raise MappingParseError(command, line, output)
        loops.append(fields[LOOP_FIELD])
    return loops


class LoopMapper:
    def __init__(self, tools: ToolPaths | None = None, runner: CommandRunner | None = None):
        self.tools = tools or ToolPaths.from_settings()
        self.runner = runner or CommandRunner.from_settings()

    def map(self, image: DiskImage) -> list[str]:
        """Create one loop device per partition, in partition order.

        On a parse error or a device count mismatch the mappings kpartx
        created are removed again before the error is raised.
        """
        if not image.partitions:
            raise NotSetUpError(image.name)
        if image.is_mapped:
            raise AlreadyMappedError(image.name)

        command = [self.tools.kpartx, "-avs", str(image.path)]
        try:
            # kpartx reports problems on stderr; only stdout lists mappings
            result = self.runner.run(command, separate_stderr=True)
        except CommandError as error:
            raise MappingError.wrap(error, f"Unable to map {image.path}") from error

        try:
            loops = parse_kpartx_output(command, result.output)
            if len(loops) != len(image.partitions):
                raise MapCountError(
                    command, len(image.partitions), len(loops), result.combined
                )
        except MappingError as error:
            log.error(f"Mapping {image.path} failed: {error}")
            self._rollback(image, error)
            raise

        previous = image.state.value
        for partition, loop in zip(image.partitions, loops):
            partition.loop = loop
            log.debug(f"{partition.label} -> {partition.device_path}")
        EventLogger.log_state_transition(log, image.name, previous, image.state.value)
        return loops

    def _rollback(self, image: DiskImage, error: Exception) -> None:
        command = [self.tools.kpartx, "-d", str(image.path)]
        try:
            self.runner.run(command)
        except CommandError as rollback_error:
            attach_cleanup_errors(error, [rollback_error])

    def unmap(self, image: DiskImage) -> None:
        """Clear and remove the mappings; a no-op when nothing is mapped.

        Stops at the first ``dmsetup clear`` failure and keeps the recorded
        devices so the call can be retried.
        """
        if not image.is_mapped:
            log.debug(f"{image.name} is not mapped, nothing to unmap")
            return
        if image.is_mounted:
            raise StillMountedError(image.name, str(image.mountpoint_root))

        for partition in image.partitions:
            if partition.loop is None:
                continue
            command = [self.tools.dmsetup, "clear", partition.loop]
            try:
                self.runner.run(command)
            except CommandError as error:
                raise MappingError.wrap(error, f"Unable to clear {partition.loop}") from error

        command = [self.tools.kpartx, "-d", str(image.path)]
        try:
            self.runner.run(command)
        except CommandError as error:
            raise MappingError.wrap(error, f"Unable to unmap {image.path}") from error

        previous = image.state.value
        for partition in image.partitions:
            partition.loop = None
        EventLogger.log_state_transition(log, image.name, previous, image.state.value)
