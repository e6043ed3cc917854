"""Tests for ordered resource release."""

import pytest

from ubuntu_image_flash.storage.exceptions import CleanupError, DiskImageError
from ubuntu_image_flash.storage.resources import ResourceStack


class TestResourceStack:
    """Tests for ResourceStack."""

    def test_releases_in_reverse_order(self):
        """Test resources are released last in, first out."""
        released = []
        with ResourceStack() as stack:
            stack.push("dev", lambda: released.append("dev"))
            stack.push("proc", lambda: released.append("proc"))
            stack.push("sys", lambda: released.append("sys"))
            assert stack.names() == ["dev", "proc", "sys"]
        assert released == ["sys", "proc", "dev"]
        assert len(stack) == 0

    def test_continues_after_release_failure(self):
        """Test a failing release does not stop the others."""
        released = []

        def broken():
            raise OSError("target is busy")

        stack = ResourceStack()
        stack.push("dev", lambda: released.append("dev"))
        stack.push("proc", broken)
        stack.push("sys", lambda: released.append("sys"))

        errors = stack.unwind()

        assert released == ["sys", "dev"]
        assert len(errors) == 1
        assert "target is busy" in str(errors[0])

    def test_failures_raise_cleanup_error(self):
        """Test release failures raise CleanupError when nothing else failed."""

        def broken():
            raise OSError("target is busy")

        with pytest.raises(CleanupError) as exc_info:
            with ResourceStack() as stack:
                stack.push("proc", broken)

        assert len(exc_info.value.errors) == 1

    def test_failures_attach_to_inflight_error(self):
        """Test release failures never replace the original error."""

        def broken():
            raise OSError("target is busy")

        with pytest.raises(DiskImageError, match="grub-install failed") as exc_info:
            with ResourceStack() as stack:
                stack.push("proc", broken)
                raise DiskImageError("grub-install failed")

        assert len(exc_info.value.cleanup_errors) == 1

    def test_success_without_resources(self):
        """Test an empty stack exits cleanly."""
        with ResourceStack() as stack:
            pass
        assert stack.unwind() == []
