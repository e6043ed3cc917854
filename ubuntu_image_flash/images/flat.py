"""Single filesystem images (emulator system and userdata images).

Unlike the core images these carry no partition table: the filesystem is
created on the whole file and the file itself is mounted.
"""

from __future__ import annotations

import shutil
import tempfile
from pathlib import Path
from typing import Iterable

from ubuntu_image_flash.config.settings import ToolPaths
from ubuntu_image_flash.logging import EventLogger, LoggerFactory
from ubuntu_image_flash.provision import PayloadExtractor
from ubuntu_image_flash.storage.commands import CommandRunner
from ubuntu_image_flash.storage.exceptions import (
    AlreadyMountedError,
    CommandError,
    MountError,
    NotMountedError,
    SyncError,
    UnmountError,
    attach_cleanup_errors,
)
from ubuntu_image_flash.storage.files import GIB, copy_file, create_empty_file
from ubuntu_image_flash.storage.format import Formatter
from ubuntu_image_flash.storage.privileges import Privileges

from . import customization


log = LoggerFactory.for_build()

MOUNT_PREFIX = "ubuntu-system"
PAYLOAD_EXCLUDES = ("partitions*",)


class FlatImage:
    def __init__(
        self,
        path: Path,
        label: str = "",
        size_gib: int = 0,
        *,
        tools: ToolPaths | None = None,
        runner: CommandRunner | None = None,
        privileges: Privileges | None = None,
        tmp_dir: Path | None = None,
    ):
        self.path = Path(path)
        self.label = label
        self.size_gib = size_gib
        self.tools = tools or ToolPaths.from_settings()
        self.runner = runner or CommandRunner.from_settings()
        self.privileges = privileges or Privileges()
        self.tmp_dir = tmp_dir
        self.formatter = Formatter(self.tools, self.runner)
        self.extractor = PayloadExtractor(self.tools, self.runner)
        self.mountpoint: Path | None = None

    @property
    def name(self) -> str:
        return self.label or self.path.name

    def _require_mounted(self) -> Path:
        if self.mountpoint is None:
            raise NotMountedError(self.name)
        return self.mountpoint

    # ------------------------------------------------------------------
    # creation
    # ------------------------------------------------------------------

    def create_ext4(self) -> None:
        create_empty_file(self.path, self.size_gib, GIB)
        self.formatter.create_ext4(self.path, self.label)

    def create_vfat(self) -> None:
        create_empty_file(self.path, self.size_gib, GIB)
        self.formatter.create_vfat(self.path, self.label)

    # ------------------------------------------------------------------
    # mounting
    # ------------------------------------------------------------------

    def mount(self) -> Path:
        if self.mountpoint is not None:
            raise AlreadyMountedError(self.name, str(self.mountpoint))
        mountpoint = Path(tempfile.mkdtemp(prefix=MOUNT_PREFIX, dir=self.tmp_dir))
        try:
            self.runner.run([self.tools.mount, str(self.path), str(mountpoint)])
        except CommandError as error:
            mountpoint.rmdir()
            raise MountError.wrap(
                error, f"unable to mount {self.path} to {mountpoint}"
            ) from error
        self.mountpoint = mountpoint
        EventLogger.log_state_transition(log, self.name, "unmounted", "mounted")
        return mountpoint

    def unmount(self) -> None:
        """Unmount; a no-op when not mounted. Buffers are synced first."""
        if self.mountpoint is None:
            return
        try:
            self.runner.run([self.tools.sync])
        except CommandError as error:
            raise SyncError.wrap(error, "Failed to sync filesystems before unmounting") from error
        try:
            self.runner.run([self.tools.umount, str(self.mountpoint)])
        except CommandError as error:
            raise UnmountError.wrap(error, f"Failed to unmount {self.mountpoint}") from error
        self.mountpoint.rmdir()
        self.mountpoint = None
        EventLogger.log_state_transition(log, self.name, "mounted", "unmounted")

    # ------------------------------------------------------------------
    # content
    # ------------------------------------------------------------------

    def provision(self, archives: Iterable[Path]) -> None:
        """Unpack the payload archives and apply the emulator setup files."""
        root = self._require_mounted()
        self.extractor.extract_all(archives, root, excludes=PAYLOAD_EXCLUDES)
        self.unpack_system()
        customization.write_setup_files(root)

    def unpack_system(self) -> None:
        """Move the contents of ``system/`` one level up."""
        root = self._require_mounted()
        staging = root / "system-unpack"
        (root / "system").rename(staging)
        for entry in sorted(staging.iterdir()):
            entry.rename(root / entry.name)
        staging.rmdir()

    def mark_writable(self) -> Path:
        return customization.mark_writable(self._require_mounted())

    def override_adb_inhibit(self) -> Path:
        return customization.override_adb_inhibit(self._require_mounted())

    # ------------------------------------------------------------------
    # file handling
    # ------------------------------------------------------------------

    def copy(self, destination: Path) -> None:
        shutil.copyfile(self.path, destination)

    def move(self, destination: Path) -> None:
        self.copy(destination)
        self.path.unlink()
        self.path = Path(destination)

    def extract_file(self, relative_path: str, directory: Path) -> Path:
        """Copy one file out of the image, mounting it only for the copy.

        Mounting and unmounting run elevated; the copy runs as the
        invoking user.
        """
        directory = Path(directory)
        if directory.exists() and not directory.is_dir():
            raise NotADirectoryError(f"extract dir {directory} is not a directory")

        with self.privileges.elevated():
            root = self.mount()
        try:
            destination = directory / relative_path
            copy_file(root / relative_path, destination)
        except Exception as error:
            try:
                with self.privileges.elevated():
                    self.unmount()
            except Exception as cleanup_error:
                attach_cleanup_errors(error, [cleanup_error])
            raise
        with self.privileges.elevated():
            self.unmount()
        return destination
