"""End-to-end image builds.

The build runs partition -> format -> map -> mount -> extract payload ->
setup boot -> unmount -> unmap, optionally followed by the platform's
bootloader flash instructions and a qcow2 conversion.

Privileges are dropped on entry. Steps that need root run inside
``Privileges.elevated()``. Payload extraction runs as the invoking user:
while still root the mounted filesystem roots are handed to that user,
and once unpacking is done everything the user created is handed back
to root. Unmount and unmap are attempted on every exit path, and their
failures are attached to the error that triggered them.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

from ubuntu_image_flash.images.base import CoreImage
from ubuntu_image_flash.logging import operation_context
from ubuntu_image_flash.provision import PayloadExtractor, prepare_writable
from ubuntu_image_flash.storage.exceptions import DiskImageError, attach_cleanup_errors
from ubuntu_image_flash.storage.privileges import Privileges
from ubuntu_image_flash.storage.snapshot import SnapshotManager


class ImageBuilder:
    def __init__(
        self,
        image: CoreImage,
        archives: Iterable[Path],
        *,
        privileges: Privileges | None = None,
        snapshot: bool = False,
        device_archive: Path | None = None,
        extractor: PayloadExtractor | None = None,
        snapshots: SnapshotManager | None = None,
    ):
        self.image = image
        self.archives = [Path(archive) for archive in archives]
        self.privileges = privileges or Privileges()
        self.snapshot = snapshot
        self.device_archive = Path(device_archive) if device_archive is not None else None
        self.extractor = extractor or PayloadExtractor(image.tools, image.runner)
        self.snapshots = snapshots or SnapshotManager(image.tools, image.runner)
        self._handed_over = False

    @property
    def path(self) -> Path:
        return self.image.image.path

    @property
    def _owner(self) -> tuple[int, int]:
        return self.privileges.uid, self.privileges.gid

    def build(self) -> Path:
        with operation_context(
            "build",
            image=str(self.path),
            bootloader=self.image.bootloader,
            layout=self.image.partition_layout,
        ) as log:
            self.privileges.drop()
            try:
                log.info("Partitioning")
                self.image.partition()
                with self.privileges.elevated():
                    log.info("Creating filesystems")
                    self.image.format()
                self._assemble(log)
                if self.device_archive is not None:
                    log.info("Running bootloader flash instructions")
                    self.image.flash_extra(self.device_archive)
            except Exception as error:
                self._discard(log, error)
                raise

            if self.snapshot:
                log.info("Converting to qcow2")
                self.snapshots.convert_qcow2(self.path)
        return self.path

    def _assemble(self, log) -> None:
        with self.privileges.elevated():
            self.image.map()
        try:
            with self.privileges.elevated():
                self.image.mount()
                if any(self._owner):
                    self.image.hand_over(*self._owner)
                    self._handed_over = True
            log.info(f"Extracting {len(self.archives)} payload archive(s)")
            # privileges are dropped here: archives are user supplied
            self.extractor.extract_all(self.archives, self.image.base_mount())
            prepare_writable(self.image.writable())
            with self.privileges.elevated():
                self._reclaim()
                log.info(f"Setting up {self.image.bootloader}")
                self.image.setup_boot()
                if self.image.replicate_system():
                    log.info("Replicated system-a into system-b")
        except Exception as error:
            self._release(log, error)
            raise
        self._release(log, None)

    def _reclaim(self) -> None:
        if self._handed_over:
            self.image.reclaim(*self._owner)
            self._handed_over = False

    def _release(self, log, error: BaseException | None) -> None:
        errors: list[DiskImageError] = []
        with self.privileges.elevated():
            try:
                self._reclaim()
            except DiskImageError as reclaim_error:
                errors.append(reclaim_error)
            try:
                self.image.unmount()
            except DiskImageError as unmount_error:
                log.error(f"Unmount failed, partitions stay mapped: {unmount_error}")
                errors.append(unmount_error)
            else:
                try:
                    self.image.unmap()
                except DiskImageError as unmap_error:
                    errors.append(unmap_error)

        if not errors:
            return
        if error is not None:
            attach_cleanup_errors(error, errors)
            return
        first, *rest = errors
        attach_cleanup_errors(first, rest)
        raise first

    def _discard(self, log, error: BaseException) -> None:
        """Remove a half-built backing file unless something still uses it.

        Files this build did not create are never touched.
        """
        disk = self.image.image
        if not self.image.created:
            return
        if disk.is_mapped or disk.is_mounted:
            log.warning(f"Keeping {disk.path}: still {disk.state.value}")
            return
        if disk.path.exists():
            log.warning(f"Removing incomplete image {disk.path}")
            try:
                disk.path.unlink()
            except OSError as unlink_error:
                attach_cleanup_errors(error, [unlink_error])
