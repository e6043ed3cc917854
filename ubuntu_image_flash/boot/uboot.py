"""U-Boot boot partition setup.

The boot partition gets one directory per system partition (``a`` and
``b`` for A/B layouts) holding the kernel, initrd, ``hardware.yaml`` and
the device trees, plus ``snappy-system.txt`` with the boot logic that
picks between them.
"""

from __future__ import annotations

import errno
from pathlib import Path

from ubuntu_image_flash.domain.descriptions import GadgetDescription, HardwareDescription
from ubuntu_image_flash.logging import LoggerFactory
from ubuntu_image_flash.storage.files import copy_file

from .assets import INITRD_FILE_NAME, KERNEL_FILE_NAME, install_boot_payload


log = LoggerFactory.for_boot("u-boot")

SNAPPY_SYSTEM_FILE = "snappy-system.txt"
UENV_FILE = "uEnv.txt"
FLASH_ASSETS_DIR = "flashtool-assets"

# str.format template; ${{...}} renders as a literal u-boot ${...}
SNAPPY_SYSTEM_TEMPLATE = """\
# This is a snappy variables and boot logic file and is entirely generated and managed by Snappy
# Modification can break boot
######
# functions to load kernel, initrd and fdt from various env values
loadfiles=run loadkernel; run loadinitrd; run loadfdt
loadkernel=load mmc ${{mmcdev}}:${{mmcpart}} ${{loadaddr}} ${{snappy_ab}}/${{kernel_file}}
loadinitrd=load mmc ${{mmcdev}}:${{mmcpart}} ${{initrd_addr}} ${{snappy_ab}}/${{initrd_file}}; setenv initrd_size ${{filesize}}
loadfdt=load mmc ${{mmcdev}}:${{mmcpart}} ${{fdtaddr}} ${{snappy_ab}}/dtbs/${{fdtfile}}

# standard kernel and initrd file names; NB: fdtfile is set early from bootcmd
kernel_file={kernel_file}
initrd_file={initrd_file}
{fdtfile}

# boot logic
# either "a" or "b"; target partition we want to boot
snappy_ab=a
# stamp file indicating a new version is being tried; removed by s-i after boot
snappy_stamp=snappy-stamp.txt
# either "regular" (normal boot) or "try" when trying a new version
snappy_mode=regular
# if we're trying a new version, check if stamp file is already there to revert
# to other version
snappy_boot=if test "${{snappy_mode}}" = "try"; then if fatsize ${{snappy_stamp}}; then if test "${{snappy_ab}}" = "a"; then setenv snappy_ab "b"; else setenv snappy_ab "a"; fi; else fatwrite mmc ${{mmcdev}}:${{mmcpart}} 0x0 ${{snappy_stamp}} 0; fi; fi; run loadfiles; setenv mmcroot /dev/disk/by-label/system-${{snappy_ab}} init=/lib/systemd/systemd ro panic=-1; run mmcargs; bootz ${{loadaddr}} ${{initrd_addr}}:${{initrd_size}} ${{fdtaddr}}
"""


def fdtfile_name(gadget: GadgetDescription) -> str | None:
    if gadget.dtb:
        return Path(gadget.dtb).name
    if gadget.platform:
        return f"{gadget.platform}.dtb"
    return None


def render_snappy_system(fdtfile: str | None) -> str:
    return SNAPPY_SYSTEM_TEMPLATE.format(
        kernel_file=KERNEL_FILE_NAME,
        initrd_file=INITRD_FILE_NAME,
        fdtfile=f"fdtfile={fdtfile}" if fdtfile else "",
    )


def select_dtbs(
    mount_root: Path, hardware: HardwareDescription, gadget: GadgetDescription
) -> list[Path]:
    """Device trees to install, by priority.

    1. the dtb declared by the gadget
    2. ``<platform>.dtb`` from the hardware dtbs directory
    3. every file in the hardware dtbs directory

    Raises:
        FileNotFoundError: the hardware names a dtbs directory that the
            payload does not contain
    """
    if gadget.dtb:
        root = gadget.root if gadget.root is not None else mount_root
        return [Path(root) / gadget.dtb]

    if not hardware.dtbs:
        return []
    dtbs_dir = Path(mount_root) / hardware.dtbs
    if not dtbs_dir.is_dir():
        raise FileNotFoundError(
            errno.ENOENT, "device tree directory missing from the payload", str(dtbs_dir)
        )
    if gadget.platform:
        platform_dtb = dtbs_dir / f"{gadget.platform}.dtb"
        if platform_dtb.is_file():
            return [platform_dtb]
    return sorted(path for path in dtbs_dir.iterdir() if path.is_file())


class UBootInstaller:
    def install(
        self,
        mount_root: Path,
        boot: Path,
        hardware: HardwareDescription,
        gadget: GadgetDescription,
    ) -> None:
        mount_root = Path(mount_root)
        boot = Path(boot)
        log.info(f"Setting up u-boot in {boot}")

        part_dirs = install_boot_payload(mount_root, boot, hardware, gadget)

        dtbs = select_dtbs(mount_root, hardware, gadget)
        for part_dir in part_dirs:
            for dtb in dtbs:
                copy_file(dtb, part_dir / "dtbs" / dtb.name)
        log.debug(f"Installed {len(dtbs)} device tree(s) into {len(part_dirs)} part(s)")

        (boot / SNAPPY_SYSTEM_FILE).write_text(
            render_snappy_system(fdtfile_name(gadget)), encoding="utf-8"
        )

        if gadget.platform:
            uenv = mount_root / FLASH_ASSETS_DIR / gadget.platform / UENV_FILE
            if uenv.is_file():
                log.debug(f"Using {uenv}")
                copy_file(uenv, boot / UENV_FILE)
