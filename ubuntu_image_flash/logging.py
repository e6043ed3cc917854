from __future__ import annotations

import os
import sys
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Sequence

if TYPE_CHECKING:
    from loguru import Logger

from loguru import logger

DEFAULT_LOG_DIR = Path(
    os.environ.get(
        "UBUNTU_IMAGE_FLASH_LOG_DIR",
        Path.home() / ".local" / "state" / "ubuntu-image-flash" / "logs",
    )
)


def _should_log_command_output(record) -> bool:
    """Raw command output lines are only shown in TRACE mode."""
    tags = record["extra"].get("tags", [])

    if "output" in tags:
        return record["level"].no <= logger.level("TRACE").no or (
            record["level"].no >= logger.level("WARNING").no
        )

    return True


def setup_logging(
    *,
    debug: bool = False,
    trace: bool = False,
    log_dir: Path | None = None,
) -> Logger:
    """
    Setup multi-tier logging with separate sinks for different log levels.

    Logging Tiers:
    - CRITICAL/ERROR: Failed builds, failed external commands
    - SUCCESS/INFO: Build stages, image state transitions
    - DEBUG: Every external command and its captured output
    - TRACE: Line-by-line output of the partitioning session

    Log Files:
    - operations.log: INFO+ events (7 day retention)
    - debug.log: DEBUG+ events when --debug is enabled (3 day retention)
    - structured.jsonl: Structured JSON logs for analysis (7 day retention)

    Args:
        debug: Enable DEBUG level logging
        trace: Enable TRACE level logging (very verbose)
        log_dir: Custom log directory (defaults to ~/.local/state/ubuntu-image-flash/logs)
    """
    logger.remove()
    logger.configure(extra={"job_id": "-", "tags": [], "source": "APP"})

    if trace:
        console_level = "TRACE"
    elif debug:
        console_level = "DEBUG"
    else:
        console_level = "INFO"

    # SINK 1: Console (stderr)
    logger.add(
        sys.stderr,
        level=console_level,
        enqueue=True,
        backtrace=False,
        diagnose=False,
        filter=_should_log_command_output,
        colorize=True,
        format=(
            "<green>{time:HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{extra[source]: <10}</cyan> | "
            "<blue>{extra[job_id]: <15}</blue> | "
            "{message}"
        ),
    )

    log_dir = log_dir or DEFAULT_LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)

    # SINK 2: Operations Log - Important events only (INFO+)
    logger.add(
        log_dir / "operations.log",
        level="INFO",
        rotation="5 MB",
        retention="7 days",
        compression="zip",
        enqueue=True,
        backtrace=False,
        diagnose=False,
        format=(
            "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
            "{level: <8} | "
            "{extra[source]: <10} | "
            "{extra[job_id]: <15} | "
            "{message}"
        ),
    )

    # SINK 3: Debug Log - every command with its output
    if debug or trace:
        logger.add(
            log_dir / "debug.log",
            level="TRACE" if trace else "DEBUG",
            rotation="10 MB",
            retention="3 days",
            compression="zip",
            enqueue=True,
            backtrace=True,
            diagnose=True,
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
                "{level: <8} | "
                "{extra[source]: <10} | "
                "{extra[job_id]: <15} | "
                "{extra[tags]} | "
                "{message}"
            ),
        )

    # SINK 4: Structured JSON Log
    logger.add(
        log_dir / "structured.jsonl",
        level="INFO",
        rotation="10 MB",
        retention="7 days",
        compression="zip",
        enqueue=True,
        serialize=True,
        format="{message}",
    )

    return logger


def get_logger(
    *,
    job_id: str | None = None,
    tags: Iterable[str] | None = None,
    source: str | None = None,
) -> Logger:
    """
    Get a logger with bound context.

    Args:
        job_id: Job identifier for tracking a build
        tags: Tags for filtering (e.g., ["mount", "storage"])
        source: Source component (e.g., "parted", "loop", "grub")

    Returns:
        Logger with bound context
    """
    extras: dict[str, object] = {}
    if job_id is not None:
        extras["job_id"] = job_id
    if tags is not None:
        extras["tags"] = list(tags)
    if source is not None:
        extras["source"] = source
    return logger.bind(**extras)


@contextmanager
def operation_context(operation: str, **details):
    """
    Context manager for tracking long-running operations with automatic timing.

    Automatically logs operation start, completion, and failure with duration tracking.

    Args:
        operation: Operation name (e.g., "build", "convert")
        **details: Operation-specific details to log

    Yields:
        Logger bound with job_id and operation context

    Example:
        with operation_context("build", output="core.img") as log:
            log.debug("Partitioning")
    """
    job_id = f"{operation}-{uuid.uuid4().hex[:8]}"

    with logger.contextualize(
        job_id=job_id,
        operation=operation,
        **details,
    ):
        start_time = time.time()
        log = logger.bind(source=operation, job_id=job_id, tags=[operation])

        log.info(f"{operation.capitalize()} started", **details)

        try:
            yield log
            duration = time.time() - start_time
            log.success(
                f"{operation.capitalize()} completed", duration_seconds=round(duration, 2)
            )
        except Exception as e:
            duration = time.time() - start_time
            log.error(
                f"{operation.capitalize()} failed",
                error=str(e),
                error_type=type(e).__name__,
                duration_seconds=round(duration, 2),
            )
            raise


class LoggerFactory:
    """
    Factory for creating domain-specific loggers with automatic context.

    Each factory method returns a logger pre-configured with appropriate
    source and tags for the subsystem.
    """

    @staticmethod
    def for_partition() -> Logger:
        """Logger for partition planning and the parted session."""
        return logger.bind(source="parted", tags=["partition", "storage"])

    @staticmethod
    def for_loop() -> Logger:
        """Logger for loop-device mapping."""
        return logger.bind(source="loop", tags=["loop", "storage"])

    @staticmethod
    def for_mount() -> Logger:
        """Logger for mount and bind-mount handling."""
        return logger.bind(source="mount", tags=["mount", "storage"])

    @staticmethod
    def for_boot(bootloader: str = "boot") -> Logger:
        """Logger for bootloader installation."""
        return logger.bind(source=bootloader, tags=["boot", bootloader])

    @staticmethod
    def for_build(job_id: str | None = None) -> Logger:
        """Logger for end-to-end image builds."""
        if job_id is None:
            job_id = f"build-{uuid.uuid4().hex[:8]}"
        return logger.bind(job_id=job_id, source="build", tags=["build"])

    @staticmethod
    def for_system() -> Logger:
        """Logger for system operations (privileges, config, commands)."""
        return logger.bind(source="system", tags=["system"])


class EventLogger:
    """
    Structured event logger using standardized schemas.
    """

    @staticmethod
    def log_state_transition(
        log: Logger, image: str, previous: str, current: str, **extra
    ) -> None:
        """Log a disk image lifecycle transition."""
        log.info(
            f"Image {image}: {previous} -> {current}",
            event_type="image_state",
            image=image,
            previous_state=previous,
            state=current,
            **extra,
        )

    @staticmethod
    def log_command_failed(
        log: Logger, command: Sequence[str], returncode: int | None, output: str, **extra
    ) -> None:
        """Log an external command failure together with its captured output."""
        log.error(
            f"Command failed ({' '.join(command)}): rc={returncode}",
            event_type="command_failed",
            command=list(command),
            returncode=returncode,
            output=output.strip(),
            **extra,
        )
