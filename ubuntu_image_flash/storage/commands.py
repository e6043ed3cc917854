"""External command execution with captured output.

stdout and stderr are captured interleaved, unless the caller parses
stdout and asks for stderr to be kept apart.
"""

from __future__ import annotations

import subprocess
from dataclasses import dataclass
from typing import Sequence

from ubuntu_image_flash.config import settings
from ubuntu_image_flash.logging import EventLogger, LoggerFactory

from .exceptions import CommandError, CommandTimeoutError


log = LoggerFactory.for_system()


def _decode(data) -> str:
    if not data:
        return ""
    if isinstance(data, bytes):
        return data.decode(errors="replace")
    return data


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one external command.

    ``output`` holds stdout and stderr interleaved, or only stdout when the
    command ran with ``separate_stderr``; ``stderr`` is then kept apart.
    """

    args: list[str]
    returncode: int
    output: str
    stderr: str = ""

    @property
    def combined(self) -> str:
        """Everything the command printed, for error messages."""
        return self.output + self.stderr

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def lines(self) -> list[str]:
        return [line for line in self.output.splitlines() if line.strip()]


class CommandRunner:
    """Runs external tools and wraps failures in ``CommandError``.

    ``trace`` tees every output line to the log, which is how the
    partitioning session is followed when ``DEBUG_DISK`` is set.
    """

    def __init__(self, timeout: float | None = None, trace: bool = False):
        self.timeout = timeout
        self.trace = trace

    @classmethod
    def from_settings(cls) -> CommandRunner:
        return cls(
            timeout=settings.get_setting("command_timeout_seconds"),
            trace=settings.trace_commands_enabled(),
        )

    def run(
        self,
        command: Sequence[str],
        *,
        input_text: str | None = None,
        check: bool = True,
        separate_stderr: bool = False,
    ) -> CommandResult:
        args = [str(part) for part in command]
        log.debug(f"Running command: {' '.join(args)}")
        try:
            completed = subprocess.run(
                args,
                input=input_text,
                text=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE if separate_stderr else subprocess.STDOUT,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as error:
            output = _decode(error.output) + _decode(error.stderr)
            EventLogger.log_command_failed(log, args, None, output)
            raise CommandTimeoutError(args, self.timeout, output) from error

        stderr = (completed.stderr or "") if separate_stderr else ""
        result = CommandResult(args, completed.returncode, completed.stdout or "", stderr)
        if self.trace:
            for line in result.combined.splitlines():
                log.bind(tags=["output"]).trace(f"{args[0]}: {line}")
        elif result.combined.strip():
            log.debug(f"output: {result.combined.strip()}")
        log.debug(f"Command completed with return code {result.returncode}")

        if check and not result.ok:
            EventLogger.log_command_failed(log, args, result.returncode, result.combined)
            raise CommandError(args, result.returncode, result.combined)
        return result
