"""GRUB installation inside a chroot of the mounted system partition.

The chroot gets the host's ``/dev``, ``/proc`` and ``/sys`` bind mounted,
an empty firmware directory over ``sys/firmware`` so grub does not read
the host's EFI variables, and the backing file bound onto ``/root_dev`` so
``grub-install`` can target it like a block device. The boot partition is
bound to ``/boot/efi`` and its ``EFI/ubuntu/grub`` directory to
``/boot/grub``. Every bind mount and placeholder is released in reverse
order, whether installation succeeds or not.
"""

from __future__ import annotations

from pathlib import Path

from ubuntu_image_flash.config.settings import ToolPaths
from ubuntu_image_flash.logging import LoggerFactory
from ubuntu_image_flash.storage.commands import CommandRunner
from ubuntu_image_flash.storage.exceptions import (
    CommandError,
    GrubInstallError,
    UnsupportedArchitectureError,
)
from ubuntu_image_flash.storage.mount import MountManager
from ubuntu_image_flash.storage.resources import ResourceStack


log = LoggerFactory.for_boot("grub")

EFI_TARGETS = {
    "armhf": "arm-efi",
    "arm64": "arm64-efi",
    "amd64": "x86_64-efi",
    "i386": "i386-efi",
}
BIOS_ARCHITECTURES = ("amd64", "i386")
BIOS_TARGET = "i386-pc"

ROOT_DEV = "root_dev"
EFI_GRUB_DIR = Path("EFI", "ubuntu", "grub")
PSEUDO_FILESYSTEMS = ("dev", "proc", "sys")

GRUB_DEFAULTS_FILE = Path("etc", "default", "grub.d", "50-system-image.cfg")
GRUB_DEFAULTS = """# console only, no graphics/vga
GRUB_CMDLINE_LINUX_DEFAULT="console=tty1 console=ttyS0 panic=-1"
GRUB_TERMINAL=console
# LP: #1035279
GRUB_RECORDFAIL_TIMEOUT=0
"""

STUB_CONFIG_FILE = Path("EFI", "BOOT", "grub.cfg")
STUB_CONFIG = """set prefix=($root)/EFI/ubuntu/grub
configfile $prefix/grub.cfg
"""


def efi_target(architecture: str) -> str:
    """GRUB EFI platform for a Debian architecture name."""
    try:
        return EFI_TARGETS[architecture]
    except KeyError:
        raise UnsupportedArchitectureError(architecture, "grub") from None


class GrubInstaller:
    def __init__(
        self,
        tools: ToolPaths | None = None,
        runner: CommandRunner | None = None,
        mounts: MountManager | None = None,
    ):
        self.tools = tools or ToolPaths.from_settings()
        self.runner = runner or CommandRunner.from_settings()
        self.mounts = mounts or MountManager(self.tools, self.runner)

    def _chroot(self, system: Path, *command: str) -> None:
        argv = [self.tools.chroot, str(system), *command]
        try:
            self.runner.run(argv)
        except CommandError as error:
            raise GrubInstallError.wrap(error, f"unable to run {command[0]}") from error

    def _placeholder(self, path: Path, stack: ResourceStack) -> None:
        path.touch()
        stack.push(f"placeholder {path}", lambda: path.unlink(missing_ok=True))

    def _prepare_chroot(
        self, system: Path, boot: Path, backing_file: Path, stack: ResourceStack
    ) -> None:
        for name in PSEUDO_FILESYSTEMS:
            target = system / name
            target.mkdir(exist_ok=True)
            self.mounts.bind(Path("/", name), target, stack)

        firmware = system / "mnt"
        firmware.mkdir(exist_ok=True)
        self.mounts.bind(firmware, system / "sys" / "firmware", stack)

        root_dev = system / ROOT_DEV
        self._placeholder(root_dev, stack)
        self.mounts.bind(Path(backing_file).resolve(), root_dev, stack)

        efi_dir = system / "boot" / "efi"
        efi_dir.mkdir(parents=True, exist_ok=True)
        self.mounts.bind(boot, efi_dir, stack)

        # created through the bind mount, so it lives on the boot partition
        efi_grub_dir = efi_dir / EFI_GRUB_DIR
        efi_grub_dir.mkdir(parents=True, exist_ok=True)
        boot_grub_dir = system / "boot" / "grub"
        boot_grub_dir.mkdir(parents=True, exist_ok=True)
        self.mounts.bind(efi_grub_dir, boot_grub_dir, stack)

    def write_defaults(self, system: Path) -> Path:
        path = Path(system) / GRUB_DEFAULTS_FILE
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(GRUB_DEFAULTS, encoding="utf-8")
        return path

    def write_stub_config(self, boot: Path) -> Path:
        path = Path(boot) / STUB_CONFIG_FILE
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(STUB_CONFIG, encoding="utf-8")
        return path

    def install(self, system: Path, boot: Path, backing_file: Path, architecture: str) -> None:
        """Install GRUB for ``architecture`` onto the image.

        Raises:
            UnsupportedArchitectureError: before anything is mounted
            BindMountError: a bind mount could not be set up or removed
            GrubInstallError: grub-install or update-grub failed
        """
        target = efi_target(architecture)
        system = Path(system)
        boot = Path(boot)
        log.info(f"Installing grub ({architecture}) into {system}")

        with ResourceStack() as stack:
            self._prepare_chroot(system, boot, backing_file, stack)

            if architecture in BIOS_ARCHITECTURES:
                self._chroot(system, "grub-install", f"--target={BIOS_TARGET}", f"/{ROOT_DEV}")
            self._chroot(
                system,
                "grub-install",
                f"--target={target}",
                "--efi-directory=/boot/efi",
                "--removable",
                "--no-nvram",
            )

            self.write_defaults(system)
            self._chroot(system, "update-grub")

        self.write_stub_config(boot)
        log.success(f"grub installed for {architecture}")
