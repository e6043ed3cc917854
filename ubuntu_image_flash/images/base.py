"""Common behaviour of the partitioned core images.

A ``CoreImage`` owns one ``DiskImage`` and drives it through the
partition -> format -> map -> mount -> setup boot -> unmount -> unmap
lifecycle. Variants only provide their partition layout, the bootloader
directory and the bootloader installation step.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path

from ubuntu_image_flash.boot.assets import install_file_assets, write_raw_assets
from ubuntu_image_flash.config import settings
from ubuntu_image_flash.config.settings import ToolPaths
from ubuntu_image_flash.domain.descriptions import (
    MINIMAL,
    PARTITION_LAYOUTS,
    SYSTEM_AB,
    GadgetDescription,
    HardwareDescription,
)
from ubuntu_image_flash.domain.models import DiskImage, PartitionLayout
from ubuntu_image_flash.logging import LoggerFactory
from ubuntu_image_flash.storage.commands import CommandRunner
from ubuntu_image_flash.storage.exceptions import (
    CommandError,
    NotMountedError,
    NotSetUpError,
    ReplicationError,
    UnknownPartitionLayoutError,
)
from ubuntu_image_flash.storage.files import GB, create_empty_file
from ubuntu_image_flash.storage.format import Formatter
from ubuntu_image_flash.storage.loop import LoopMapper
from ubuntu_image_flash.storage.mount import MountManager
from ubuntu_image_flash.storage.parted import PartitionPlanner


log = LoggerFactory.for_build()

BOOT_DIR = "boot"
SYSTEM_A_DIR = "system"
SYSTEM_B_DIR = "system-b"
WRITABLE_DIR = "writable"
SYSTEM_DATA_DIR = "writable/system-data"


class CoreImage(ABC):
    """Base for bootloader specific image strategies.

    The partition layout is planned and validated when the image is
    constructed, so a bad layout fails before any file or command is
    touched.
    """

    bootloader = ""

    def __init__(
        self,
        path: Path,
        size: int,
        hardware: HardwareDescription,
        gadget: GadgetDescription,
        *,
        size_unit: str = GB,
        tools: ToolPaths | None = None,
        runner: CommandRunner | None = None,
        tmp_dir: Path | None = None,
    ):
        self.hardware = hardware
        self.gadget = gadget.merged_with(hardware)
        if self.gadget.partition_layout not in PARTITION_LAYOUTS:
            raise UnknownPartitionLayoutError(self.gadget.partition_layout, PARTITION_LAYOUTS)

        self.size = size
        self.size_unit = size_unit
        self.tools = tools or ToolPaths.from_settings()
        self.runner = runner or CommandRunner.from_settings()
        self.mapper = LoopMapper(self.tools, self.runner)
        self.mounts = MountManager(self.tools, self.runner, tmp_dir=tmp_dir)
        self.formatter = Formatter(self.tools, self.runner, self.mapper)
        self.layout = self.build_layout(self.gadget.partition_layout)
        self.planner = PartitionPlanner.from_layout(self.layout, self.tools, self.runner)
        self.planner.validate()
        self.image = DiskImage(path=Path(path), label=self.gadget.name)
        # set once partition() has written the backing file
        self.created = False

    # ------------------------------------------------------------------
    # layout
    # ------------------------------------------------------------------

    @property
    def partition_layout(self) -> str:
        return self.gadget.partition_layout

    @staticmethod
    def sizes() -> dict[str, int]:
        return {
            "root": int(settings.get_setting("root_size_mib", settings.DEFAULT_ROOT_SIZE_MIB)),
            "boot": int(settings.get_setting("boot_size_mib", settings.DEFAULT_BOOT_SIZE_MIB)),
            "minimal_boot": int(
                settings.get_setting(
                    "minimal_boot_size_mib", settings.DEFAULT_MINIMAL_BOOT_SIZE_MIB
                )
            ),
        }

    @abstractmethod
    def build_layout(self, name: str) -> PartitionLayout:
        ...

    @abstractmethod
    def boot_path(self) -> Path:
        """Directory the bootloader reads its files from."""

    @abstractmethod
    def install_bootloader(self) -> None:
        ...

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    def partition(self) -> None:
        """Create the backing file and partition it.

        If partitioning fails the file is in an unknown state and should be
        discarded.
        """
        self.image.size_bytes = create_empty_file(self.image.path, self.size, self.size_unit)
        self.created = True
        self.image.partitions = self.planner.create(self.image.path)
        log.info(f"Partitioned {self.image.path} ({self.bootloader}, {self.partition_layout})")

    def format(self) -> None:
        self.formatter.format(self.image)

    def map(self) -> None:
        self.mapper.map(self.image)

    def unmap(self) -> None:
        self.mapper.unmap(self.image)

    def mount(self) -> Path:
        return self.mounts.mount(self.image)

    def unmount(self) -> None:
        self.mounts.unmount(self.image)

    def hand_over(self, uid: int, gid: int) -> list[Path]:
        return self.mounts.hand_over(self.image, uid, gid)

    def reclaim(self, uid: int, gid: int) -> None:
        self.mounts.reclaim(self.image, uid, gid)

    def setup_boot(self) -> None:
        """Install the bootloader and the gadget's boot assets."""
        assets = self.gadget.boot_assets
        self.install_bootloader()
        source_root = self.gadget.root or self.base_mount()
        install_file_assets(assets.files, self.boot(), self.boot_path(), source_root)
        write_raw_assets(self.image.path, assets.raw_files, source_root)

    def replicate_system(self) -> bool:
        """Copy system-a into system-b on armhf A/B images.

        Doing it here is faster than on the device. Other images are left
        alone and False is returned.
        """
        if self.gadget.architecture != "armhf" or self.partition_layout != SYSTEM_AB:
            return False
        source = self.system()
        destination = self._path_to_mount(SYSTEM_B_DIR)
        log.info(f"Replicating {source} into {destination}")
        command = [self.tools.cp, "-r", "--preserve=all", f"{source}/.", str(destination)]
        try:
            self.runner.run(command)
        except CommandError as error:
            raise ReplicationError.wrap(error, "Failed to replicate image contents") from error
        return True

    def flash_extra(self, device_archive: Path) -> list[list[str]]:
        """Extra bootloader steps on the finished, unmapped image file."""
        return []

    # ------------------------------------------------------------------
    # paths into the mounted image
    # ------------------------------------------------------------------

    def base_mount(self) -> Path:
        if not self.image.is_mounted:
            raise NotMountedError(self.image.name)
        return self.image.mountpoint_root

    def _path_to_mount(self, directory: str) -> Path:
        if not self.image.partitions:
            raise NotSetUpError(self.image.name)
        return self.base_mount() / directory

    def boot(self) -> Path:
        return self._path_to_mount(BOOT_DIR)

    def system(self) -> Path:
        if self.partition_layout == MINIMAL:
            return self._path_to_mount(SYSTEM_DATA_DIR)
        return self._path_to_mount(SYSTEM_A_DIR)

    def writable(self) -> Path:
        return self._path_to_mount(WRITABLE_DIR)
