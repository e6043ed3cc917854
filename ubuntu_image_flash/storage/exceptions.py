"""Custom exceptions for disk image assembly.

This module defines a hierarchy of exceptions for partitioning, mapping,
mounting and bootloader installation so callers can tell which step
failed and why.

Exception Hierarchy:
    DiskImageError (base)
        ├── ValidationError
        │   ├── LayoutError
        │   ├── MisalignedSizeError
        │   ├── PartitionCountError
        │   ├── PartitionIndexError
        │   ├── UnsupportedPartitioningError
        │   ├── UnsupportedArchitectureError
        │   ├── UnsupportedBootloaderError
        │   ├── UnknownPartitionLayoutError
        │   └── InvalidOffsetError
        ├── CommandError
        │   ├── CommandTimeoutError
        │   ├── PartitioningError
        │   ├── MappingError
        │   │   ├── MapCountError
        │   │   └── MappingParseError
        │   ├── MountError
        │   ├── UnmountError
        │   ├── SyncError
        │   ├── BindMountError
        │   ├── FormatError
        │   ├── GrubInstallError
        │   ├── SnapshotError
        │   ├── ExtractionError
        │   ├── OwnershipError
        │   ├── ReplicationError
        │   └── FlashError
        ├── ImageStateError
        │   ├── NotSetUpError
        │   ├── NotMappedError
        │   ├── NotMountedError
        │   ├── AlreadyMappedError
        │   ├── AlreadyMountedError
        │   └── StillMountedError
        ├── CleanupError
        └── PrivilegeError

Every error carries ``cleanup_errors``: failures raised while releasing
resources after the error occurred. They are attached to the original
error instead of replacing it.

Usage:
    from ubuntu_image_flash.storage.exceptions import NotMountedError

    if image.base_mount is None:
        raise NotMountedError(image.label)
"""

from __future__ import annotations

from typing import Iterable, Sequence


class DiskImageError(Exception):
    """Base exception for all disk image operations."""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.cleanup_errors: list[BaseException] = []

    def add_cleanup_errors(self, errors: Iterable[BaseException]) -> None:
        self.cleanup_errors.extend(errors)

    def __str__(self) -> str:
        message = super().__str__()
        if self.cleanup_errors:
            details = "; ".join(str(error) for error in self.cleanup_errors)
            message += f" (cleanup also failed: {details})"
        return message


def attach_cleanup_errors(error: BaseException, errors: Sequence[BaseException]) -> None:
    """Record cleanup failures on an in-flight error without masking it."""
    if not errors:
        return
    if isinstance(error, DiskImageError):
        error.add_cleanup_errors(errors)
        return
    # Foreign exceptions (OSError and friends) get a plain attribute and notes.
    existing = getattr(error, "cleanup_errors", None)
    if existing is None:
        error.cleanup_errors = list(errors)  # type: ignore[attr-defined]
    else:
        existing.extend(errors)
    if hasattr(error, "add_note"):
        for cleanup_error in errors:
            error.add_note(f"cleanup failed: {cleanup_error}")


# ============================================================================
# Precondition errors - raised before any external command runs
# ============================================================================


class ValidationError(DiskImageError):
    """Base exception for invalid input detected before touching the image."""


class LayoutError(ValidationError):
    """Partition layout is malformed."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid partition layout: {reason}")


class MisalignedSizeError(ValidationError):
    """Partition size does not convert to an aligned sector count."""

    def __init__(self, size_mib, alignment: int):
        self.size_mib = size_mib
        self.alignment = alignment
        super().__init__(
            f"Size {size_mib} MiB is not a multiple of {alignment} sectors"
        )


class PartitionCountError(ValidationError):
    """Too many partitions for the requested partition table type."""

    def __init__(self, table: str, count: int, maximum: int):
        self.table = table
        self.count = count
        self.maximum = maximum
        super().__init__(
            f"{table} partition tables hold at most {maximum} partitions, "
            f"{count} requested"
        )


class PartitionIndexError(ValidationError):
    """A 1-based partition index is outside the layout."""

    def __init__(self, flag: str, index: int, count: int):
        self.flag = flag
        self.index = index
        self.count = count
        super().__init__(
            f"Cannot set {flag} on partition {index}: layout has {count} partitions"
        )


class UnsupportedPartitioningError(ValidationError):
    """Partition table type is neither gpt nor msdos."""

    def __init__(self, table: str):
        self.table = table
        super().__init__(f"Unsupported partitioning type: {table}")


class UnsupportedArchitectureError(ValidationError):
    """Architecture has no known bootloader target."""

    def __init__(self, architecture: str, bootloader: str = "grub"):
        self.architecture = architecture
        self.bootloader = bootloader
        super().__init__(f"Unsupported architecture for {bootloader}: {architecture}")


class UnsupportedBootloaderError(ValidationError):
    """Bootloader flavor is not one of the supported installers."""

    def __init__(self, bootloader: str):
        self.bootloader = bootloader
        super().__init__(f"Unsupported bootloader: {bootloader!r}")


class UnknownPartitionLayoutError(ValidationError):
    """Partition layout name is not recognised."""

    def __init__(self, name: str, known: Sequence[str] = ()):
        self.name = name
        self.known = list(known)
        msg = f"Unknown partition layout: {name!r}"
        if self.known:
            msg += f" (expected one of {', '.join(self.known)})"
        super().__init__(msg)


class InvalidOffsetError(ValidationError):
    """Raw boot asset offset is unusable."""

    def __init__(self, path: str, offset, reason: str = "not a byte offset"):
        self.path = path
        self.offset = offset
        self.reason = reason
        super().__init__(f"Invalid offset {offset!r} for raw asset {path}: {reason}")


# ============================================================================
# External command failures
# ============================================================================


class CommandError(DiskImageError):
    """An external command exited unsuccessfully.

    Keeps the argv, exit status and combined stdout/stderr of the command.
    """

    def __init__(
        self,
        command: Sequence[str],
        returncode: int | None,
        output: str = "",
        message: str | None = None,
    ):
        self.command = list(command)
        self.returncode = returncode
        self.output = output
        if message is None:
            message = f"Command failed ({' '.join(self.command)})"
        msg = f"{message}: exit status {returncode}"
        if output.strip():
            msg += f"\n{output.strip()}"
        super().__init__(msg)

    @classmethod
    def wrap(cls, error: CommandError, message: str | None = None):
        """Re-raise a generic command failure as a more specific one."""
        wrapped = cls(error.command, error.returncode, error.output, message=message)
        wrapped.add_cleanup_errors(error.cleanup_errors)
        return wrapped


class CommandTimeoutError(CommandError):
    """An external command did not finish within its timeout."""

    def __init__(self, command: Sequence[str], timeout: float, output: str = ""):
        self.timeout = timeout
        super().__init__(
            command,
            None,
            output,
            message=f"Command timed out after {timeout}s ({' '.join(command)})",
        )


class PartitioningError(CommandError):
    """The partitioning session failed; the backing file is indeterminate."""


class MappingError(CommandError):
    """Creating or removing loop device mappings failed."""


class MapCountError(MappingError):
    """Number of mapped devices differs from the number of partitions."""

    def __init__(self, command: Sequence[str], expected: int, found: int, output: str = ""):
        self.expected = expected
        self.found = found
        super().__init__(
            command,
            0,
            output,
            message=f"Expected {expected} loop devices, kpartx mapped {found}",
        )


class MappingParseError(MappingError):
    """A mapping tool output line has too few fields."""

    def __init__(self, command: Sequence[str], line: str, output: str = ""):
        self.line = line
        super().__init__(
            command, 0, output, message=f"Cannot parse mapping line {line!r}"
        )


class MountError(CommandError):
    """Mounting a partition failed."""


class UnmountError(CommandError):
    """Unmounting a partition failed."""


class SyncError(CommandError):
    """Flushing filesystem buffers failed."""


class BindMountError(CommandError):
    """Setting up or removing a bind mount failed."""


class FormatError(CommandError):
    """Creating a filesystem failed."""


class GrubInstallError(CommandError):
    """grub-install or update-grub failed inside the chroot."""


class SnapshotError(CommandError):
    """qemu-img conversion or snapshot failed."""


class ExtractionError(CommandError):
    """Unpacking a payload archive failed."""


class OwnershipError(CommandError):
    """Handing the mounted tree back to root failed."""


class ReplicationError(CommandError):
    """Copying system-a into system-b failed."""


class FlashError(CommandError):
    """A bootloader flash instruction failed."""


# ============================================================================
# Lifecycle errors - the image is in the wrong state for the request
# ============================================================================


class ImageStateError(DiskImageError):
    """Base exception for operations requested in the wrong image state."""

    def __init__(self, image: str, message: str):
        self.image = image
        super().__init__(f"{image}: {message}")


class NotSetUpError(ImageStateError):
    """The image has no partitions defined."""

    def __init__(self, image: str):
        super().__init__(image, "image is not set up (no partitions)")


class NotMappedError(ImageStateError):
    """The partitions have no loop devices."""

    def __init__(self, image: str):
        super().__init__(image, "image is not mapped")


class NotMountedError(ImageStateError):
    """The filesystems are not mounted."""

    def __init__(self, image: str):
        super().__init__(image, "image is not mounted")


class AlreadyMappedError(ImageStateError):
    """Loop devices are already assigned."""

    def __init__(self, image: str):
        super().__init__(image, "image is already mapped")


class AlreadyMountedError(ImageStateError):
    """Filesystems are already mounted."""

    def __init__(self, image: str, mountpoint: str):
        self.mountpoint = mountpoint
        super().__init__(image, f"image is already mounted at {mountpoint}")


class StillMountedError(ImageStateError):
    """Loop devices cannot be released while filesystems are mounted."""

    def __init__(self, image: str, mountpoint: str):
        self.mountpoint = mountpoint
        super().__init__(image, f"cannot unmap while mounted at {mountpoint}")


# ============================================================================
# Cleanup and privilege errors
# ============================================================================


class CleanupError(DiskImageError):
    """One or more resources could not be released."""

    def __init__(self, errors: Sequence[BaseException]):
        self.errors = list(errors)
        details = "; ".join(str(error) for error in self.errors)
        super().__init__(f"Cleanup failed ({len(self.errors)} error(s)): {details}")


class PrivilegeError(DiskImageError):
    """Changing the effective user or group failed."""

    def __init__(self, action: str, reason: str):
        self.action = action
        self.reason = reason
        super().__init__(f"Cannot {action} privileges: {reason}")
