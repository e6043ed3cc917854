"""Tests for storage exception classes."""

import pytest

from ubuntu_image_flash.storage.exceptions import (
    AlreadyMountedError,
    CleanupError,
    CommandError,
    CommandTimeoutError,
    DiskImageError,
    GrubInstallError,
    ImageStateError,
    InvalidOffsetError,
    LayoutError,
    MapCountError,
    MappingError,
    MappingParseError,
    MisalignedSizeError,
    MountError,
    NotMountedError,
    PartitionCountError,
    PartitioningError,
    UnknownPartitionLayoutError,
    UnmountError,
    UnsupportedArchitectureError,
    UnsupportedPartitioningError,
    ValidationError,
    attach_cleanup_errors,
)


class TestExceptionHierarchy:
    """Test exception inheritance hierarchy."""

    def test_disk_image_error_is_base_exception(self):
        """Test that DiskImageError is the base exception."""
        error = DiskImageError("test error")
        assert isinstance(error, Exception)
        assert str(error) == "test error"
        assert error.cleanup_errors == []

    def test_validation_errors(self):
        """Test precondition errors inherit from ValidationError."""
        for error in (
            LayoutError("empty"),
            MisalignedSizeError(1.5, 4),
            PartitionCountError("msdos", 5, 4),
            UnsupportedPartitioningError("mbr"),
            UnsupportedArchitectureError("s390x"),
            UnknownPartitionLayoutError("weird"),
            InvalidOffsetError("spl.bin", "0x400"),
        ):
            assert isinstance(error, ValidationError)
            assert isinstance(error, DiskImageError)

    def test_command_errors(self):
        """Test tool failures inherit from CommandError."""
        assert issubclass(PartitioningError, CommandError)
        assert issubclass(MapCountError, MappingError)
        assert issubclass(MappingParseError, MappingError)
        assert issubclass(MountError, CommandError)
        assert issubclass(UnmountError, CommandError)
        assert issubclass(GrubInstallError, CommandError)
        assert issubclass(CommandTimeoutError, CommandError)

    def test_state_errors(self):
        """Test lifecycle errors inherit from ImageStateError."""
        error = AlreadyMountedError("core", "/tmp/diskimage1")
        assert isinstance(error, ImageStateError)
        assert error.mountpoint == "/tmp/diskimage1"
        assert str(error) == "core: image is already mounted at /tmp/diskimage1"


class TestCommandError:
    """Test external command failure details."""

    def test_message_includes_status_and_output(self):
        """Test the message carries the exit status and captured output."""
        error = CommandError(["parted", "core.img"], 1, "Error: bad\n")
        assert error.command == ["parted", "core.img"]
        assert error.returncode == 1
        assert "Command failed (parted core.img): exit status 1" in str(error)
        assert str(error).endswith("Error: bad")

    def test_wrap_keeps_command_details(self):
        """Test wrap converts a generic failure into a specific one."""
        original = CommandError(["parted", "core.img"], 1, "oops")
        wrapped = PartitioningError.wrap(original, "issues while partitioning")
        assert isinstance(wrapped, PartitioningError)
        assert wrapped.command == original.command
        assert wrapped.output == "oops"
        assert str(wrapped).startswith("issues while partitioning: exit status 1")

    def test_wrap_keeps_cleanup_errors(self):
        """Test wrap carries over cleanup errors already attached."""
        original = CommandError(["kpartx"], 1)
        cleanup = OSError("busy")
        original.add_cleanup_errors([cleanup])
        wrapped = MappingError.wrap(original)
        assert wrapped.cleanup_errors == [cleanup]

    def test_timeout_has_no_exit_status(self):
        """Test timeouts record the timeout instead of a return code."""
        error = CommandTimeoutError(["sync"], 30)
        assert error.returncode is None
        assert error.timeout == 30
        assert "timed out after 30s" in str(error)

    def test_map_count_error(self):
        """Test MapCountError reports expected and found devices."""
        error = MapCountError(["kpartx", "-avs", "core.img"], 3, 2)
        assert error.expected == 3
        assert error.found == 2
        assert "Expected 3 loop devices, kpartx mapped 2" in str(error)


class TestCleanupErrors:
    """Test attaching cleanup failures to in-flight errors."""

    def test_attach_to_disk_image_error(self):
        """Test cleanup errors are listed and shown in the message."""
        error = MountError(["mount"], 32, message="Unable to mount")
        attach_cleanup_errors(error, [UnmountError(["umount", "/mnt"], 1)])
        assert len(error.cleanup_errors) == 1
        assert "cleanup also failed" in str(error)

    def test_attach_nothing(self):
        """Test attaching an empty list leaves the error untouched."""
        error = NotMountedError("core")
        attach_cleanup_errors(error, [])
        assert error.cleanup_errors == []
        assert "cleanup" not in str(error)

    def test_attach_to_foreign_exception(self):
        """Test cleanup errors are recorded on non DiskImageError exceptions."""
        error = OSError("disk full")
        cleanup = UnmountError(["umount", "/mnt"], 1)
        attach_cleanup_errors(error, [cleanup])
        assert error.cleanup_errors == [cleanup]

    def test_cleanup_error_lists_failures(self):
        """Test CleanupError keeps every failure."""
        errors = [OSError("a"), OSError("b")]
        error = CleanupError(errors)
        assert error.errors == errors
        assert "2 error(s)" in str(error)


class TestValidationMessages:
    """Test messages of precondition errors."""

    def test_unknown_layout_lists_known(self):
        """Test the known layouts are listed."""
        error = UnknownPartitionLayoutError("weird", ["system-AB", "minimal"])
        assert error.name == "weird"
        assert "expected one of system-AB, minimal" in str(error)

    def test_unsupported_architecture(self):
        """Test the bootloader and architecture are named."""
        with pytest.raises(ValidationError, match="Unsupported architecture for grub: s390x"):
            raise UnsupportedArchitectureError("s390x")
