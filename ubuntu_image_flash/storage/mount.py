"""Mounting image partitions under a per-image temporary root.

Module Purpose:
    Attach every mapped partition of a ``DiskImage`` below a unique
    temporary directory and detach them again, keeping the mountpoint tree
    free of leftovers on every path.

Functions:
    - MountManager.mount(): mount partitions in layout order
    - MountManager.unmount(): sync, unmount in reverse order, remove dirs
    - MountManager.hand_over(): give the mounted roots to the invoking user
    - MountManager.reclaim(): give the unpacked tree back to root
    - MountManager.bind(): bind mount a path and register its release
"""

from __future__ import annotations

import errno
import os
import tempfile
from pathlib import Path

from ubuntu_image_flash.config import settings
from ubuntu_image_flash.config.settings import ToolPaths
from ubuntu_image_flash.domain.models import DiskImage, Partition
from ubuntu_image_flash.logging import EventLogger, LoggerFactory

from .commands import CommandRunner
from .exceptions import (
    AlreadyMountedError,
    BindMountError,
    CommandError,
    MountError,
    NotMappedError,
    NotMountedError,
    NotSetUpError,
    OwnershipError,
    SyncError,
    UnmountError,
    attach_cleanup_errors,
)
from .resources import ResourceStack


log = LoggerFactory.for_mount()

MOUNT_ROOT_PREFIX = "diskimage"


def nested_mount_dirs(partitions: list[Partition]) -> set[Path]:
    """Mount dirs that sit inside another partition's mount dir."""
    dirs = {Path(part.mount_dir) for part in partitions} - {Path(".")}
    return {path for path in dirs if any(other in path.parents for other in dirs)}


def remove_empty_dirs(path: Path, stop: Path) -> None:
    """Remove ``path`` and its empty parents up to and including ``stop``.

    Only empty directories are removed; nothing is deleted recursively.
    """
    path = Path(path)
    stop = Path(stop)
    while True:
        try:
            path.rmdir()
        except FileNotFoundError:
            pass
        except OSError as error:
            if error.errno == errno.ENOTEMPTY:
                return
            raise
        if path == stop or stop not in path.parents:
            return
        path = path.parent


class MountManager:
    def __init__(
        self,
        tools: ToolPaths | None = None,
        runner: CommandRunner | None = None,
        tmp_dir: Path | None = None,
    ):
        self.tools = tools or ToolPaths.from_settings()
        self.runner = runner or CommandRunner.from_settings()
        if tmp_dir is None and settings.get_setting("mount_tmp_dir"):
            tmp_dir = Path(settings.get_setting("mount_tmp_dir"))
        self.tmp_dir = tmp_dir

    def _make_root(self) -> Path:
        root = Path(tempfile.mkdtemp(prefix=MOUNT_ROOT_PREFIX, dir=self.tmp_dir))
        root.chmod(0o755)
        return root

    def mount(self, image: DiskImage) -> Path:
        """Mount every filesystem partition, in layout order.

        Returns:
            The mountpoint root.

        Raises:
            NotSetUpError: the image has no partitions
            NotMappedError: the partitions have no loop devices
            AlreadyMountedError: the image is mounted already
            MountError: a mount failed; mounts made so far are undone
        """
        if not image.partitions:
            raise NotSetUpError(image.name)
        if image.is_mounted:
            raise AlreadyMountedError(image.name, str(image.mountpoint_root))
        if not image.is_mapped:
            raise NotMappedError(image.name)

        previous = image.state.value
        root = self._make_root()
        log.info(f"Mounting {image.name} under {root}")
        try:
            for partition in image.mountable_partitions():
                mountpoint = root / partition.mount_dir
                mountpoint.mkdir(parents=True, exist_ok=True, mode=0o755)
                device = partition.device_path
                log.debug(f"Mounting {device} ({partition.filesystem.value}) to {mountpoint}")
                try:
                    self.runner.run([self.tools.mount, str(device), str(mountpoint)])
                except CommandError as error:
                    raise MountError.wrap(
                        error, f"Unable to mount {device} to {mountpoint}"
                    ) from error
                image.mounts.append(mountpoint)
        except Exception as error:
            self._abort_mount(image, root, error)
            raise

        image.mountpoint_root = root
        EventLogger.log_state_transition(log, image.name, previous, image.state.value)
        return root

    def hand_over(self, image: DiskImage, uid: int, gid: int) -> list[Path]:
        """Give the mountpoint root and every mounted filesystem root to ``uid:gid``.

        Freshly created filesystems are owned by root, so an unprivileged
        unpack needs this before it can write anything. Must run as root.
        """
        if not image.is_mounted:
            raise NotMountedError(image.name)
        roots = [image.mountpoint_root, *image.mounts]
        for path in roots:
            log.debug(f"Handing {path} to {uid}:{gid}")
            os.chown(path, uid, gid)
        return roots

    def reclaim(self, image: DiskImage, uid: int, gid: int) -> None:
        """Give everything ``uid:gid`` owns below the mountpoint root back to root."""
        if not image.is_mounted:
            raise NotMountedError(image.name)
        root = image.mountpoint_root
        command = [self.tools.chown, "-R", f"--from={uid}:{gid}", "0:0", str(root)]
        log.debug(f"Returning {root} to root")
        try:
            self.runner.run(command)
        except CommandError as error:
            raise OwnershipError.wrap(error, f"Unable to return {root} to root") from error

    def _abort_mount(self, image: DiskImage, root: Path, error: Exception) -> None:
        errors = []
        for mountpoint in reversed(list(image.mounts)):
            try:
                self._umount(mountpoint)
            except UnmountError as unmount_error:
                errors.append(unmount_error)
            else:
                image.mounts.remove(mountpoint)

        if errors:
            # something is still attached below root, keep it for the caller
            image.mountpoint_root = root
            attach_cleanup_errors(error, errors)
            return

        nested = nested_mount_dirs(image.mountable_partitions())
        for partition in image.mountable_partitions():
            if Path(partition.mount_dir) not in nested:
                remove_empty_dirs(root / partition.mount_dir, root)
        remove_empty_dirs(root, root)

    def _umount(self, mountpoint: Path) -> None:
        try:
            self.runner.run([self.tools.umount, str(mountpoint)])
        except CommandError as error:
            lsof = self.runner.run([self.tools.lsof, "-w", str(mountpoint)], check=False)
            if lsof.output.strip():
                log.warning(f"Processes holding {mountpoint}:\n{lsof.output.strip()}")
            raise UnmountError.wrap(error, f"Unable to unmount {mountpoint}") from error

    def unmount(self, image: DiskImage) -> None:
        """Unmount everything mounted by ``mount``; a no-op when unmounted.

        Buffers are flushed with ``sync`` first, and a sync failure aborts
        before anything is unmounted. Every partition is attempted; the
        mountpoint root survives until all of them are detached.
        """
        if not image.is_mounted:
            log.debug(f"{image.name} is not mounted, nothing to unmount")
            return

        root = image.mountpoint_root
        try:
            self.runner.run([self.tools.sync])
        except CommandError as error:
            raise SyncError.wrap(error, "Failed to sync filesystems before unmounting") from error

        nested = nested_mount_dirs(image.mountable_partitions())
        errors: list[UnmountError] = []
        for mountpoint in reversed(list(image.mounts)):
            try:
                self._umount(mountpoint)
            except UnmountError as error:
                errors.append(error)
                continue
            image.mounts.remove(mountpoint)
            # nested mountpoints live inside their parent's filesystem
            if mountpoint.relative_to(root) not in nested:
                remove_empty_dirs(mountpoint, root)

        if errors:
            first, *rest = errors
            attach_cleanup_errors(first, rest)
            raise first

        previous = image.state.value
        remove_empty_dirs(root, root)
        image.mountpoint_root = None
        EventLogger.log_state_transition(log, image.name, previous, image.state.value)

    def bind(self, source: Path, target: Path, stack: ResourceStack) -> None:
        """Bind mount ``source`` on ``target``; the unmount goes on ``stack``."""
        try:
            self.runner.run([self.tools.mount, "--bind", str(source), str(target)])
        except CommandError as error:
            raise BindMountError.wrap(
                error, f"issues while bind mounting {source} on {target}"
            ) from error
        stack.push(f"bind mount {target}", lambda: self.unbind(target))

    def unbind(self, target: Path) -> None:
        try:
            self.runner.run([self.tools.umount, str(target)])
        except CommandError as error:
            raise BindMountError.wrap(error, f"issues while unmounting {target}") from error
