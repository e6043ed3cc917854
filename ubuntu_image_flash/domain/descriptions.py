"""Hardware and gadget descriptions loaded from YAML.

``hardware.yaml`` ships inside the device tarball and names the kernel,
initrd and device tree directory. The gadget (OEM) description selects
the bootloader, partition layout and boot assets::

    name: beagleboneblack
    version: 1.0
    oem:
      hardware:
        bootloader: u-boot
        partition-layout: system-AB
        architecture: armhf
        platform: am335x-boneblack
        dtb: am335x-boneblack.dtb
        boot-assets:
          files:
            - path: MLO
            - path: u-boot.img
              dst: u-boot.img
          raw-files:
            - path: spl.bin
              offset: 1024
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

from ubuntu_image_flash.storage.exceptions import InvalidOffsetError, ValidationError

from .models import BootAssets, FileAsset, RawAsset


SYSTEM_AB = "system-AB"
MINIMAL = "minimal"
PARTITION_LAYOUTS = (SYSTEM_AB, MINIMAL)


def _load_yaml(path: Path) -> dict[str, Any]:
    with open(path, encoding="utf-8") as handle:
        data = yaml.safe_load(handle)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError(f"{path}: expected a mapping, got {type(data).__name__}")
    return data


def parse_offset(path: str, offset: Any) -> int:
    """Parse a raw asset offset given as an integer or decimal string."""
    if isinstance(offset, bool):
        raise InvalidOffsetError(path, offset)
    if isinstance(offset, int):
        value = offset
    else:
        text = str(offset).strip()
        if not text.isdigit():
            raise InvalidOffsetError(path, offset)
        value = int(text)
    if value < 0:
        raise InvalidOffsetError(path, offset, "negative offset")
    return value


def boot_assets_from_dict(data: dict[str, Any] | None) -> BootAssets:
    if not data:
        return BootAssets()
    files = tuple(
        FileAsset(
            path=entry["path"],
            target=entry.get("target") or None,
            dst=entry.get("dst") or None,
        )
        for entry in data.get("files") or []
    )
    raw_files = tuple(
        RawAsset(path=entry["path"], offset=parse_offset(entry["path"], entry.get("offset")))
        for entry in data.get("raw-files") or []
    )
    return BootAssets(files=files, raw_files=raw_files)


@dataclass(frozen=True)
class HardwareDescription:
    """Contents of ``hardware.yaml``; paths are relative to the mount root."""

    kernel: str
    initrd: str
    dtbs: str = ""
    architecture: str = ""
    bootloader: str = ""
    partition_layout: str = ""
    platform: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HardwareDescription:
        try:
            return cls(
                kernel=data["kernel"],
                initrd=data["initrd"],
                dtbs=data.get("dtbs") or "",
                architecture=data.get("architecture") or "",
                bootloader=data.get("bootloader") or "",
                partition_layout=data.get("partition-layout") or "",
                platform=data.get("platform") or "",
            )
        except KeyError as error:
            raise ValidationError(f"hardware description is missing {error}") from error

    @classmethod
    def from_yaml(cls, path: Path) -> HardwareDescription:
        return cls.from_dict(_load_yaml(Path(path)))


@dataclass(frozen=True)
class GadgetDescription:
    """OEM gadget metadata.

    ``root`` is the directory boot asset paths are relative to.
    """

    name: str = ""
    version: str = ""
    bootloader: str = ""
    partition_layout: str = ""
    architecture: str = ""
    platform: str = ""
    dtb: str = ""
    boot_assets: BootAssets = field(default_factory=BootAssets)
    root: Path | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], root: Path | None = None) -> GadgetDescription:
        hardware = (data.get("oem") or {}).get("hardware") or {}
        return cls(
            name=str(data.get("name") or ""),
            version=str(data.get("version") or ""),
            bootloader=hardware.get("bootloader") or "",
            partition_layout=hardware.get("partition-layout") or "",
            architecture=hardware.get("architecture") or "",
            platform=hardware.get("platform") or "",
            dtb=hardware.get("dtb") or "",
            boot_assets=boot_assets_from_dict(hardware.get("boot-assets")),
            root=root,
        )

    @classmethod
    def from_yaml(cls, path: Path, root: Path | None = None) -> GadgetDescription:
        path = Path(path)
        return cls.from_dict(_load_yaml(path), root=root or path.parent)

    def merged_with(self, hardware: HardwareDescription) -> GadgetDescription:
        """Fill fields the gadget leaves empty from the hardware description."""
        return replace(
            self,
            bootloader=self.bootloader or hardware.bootloader,
            partition_layout=self.partition_layout or hardware.partition_layout,
            architecture=self.architecture or hardware.architecture,
            platform=self.platform or hardware.platform,
        )

    def system_parts(self) -> list[str]:
        """Boot partition subdirectories holding a kernel: A/B or flat."""
        if self.partition_layout == SYSTEM_AB:
            return ["a", "b"]
        return [""]


@dataclass(frozen=True)
class FlashInstructions:
    """Commands from ``flashtool-assets/<platform>/flash.yaml``.

    Each bootloader command is a template: the first ``%s`` is the
    platform's assets directory, the second the image file::

        bootloader:
          - dd if=%s/MLO of=%s count=1 seek=1 conv=notrunc bs=128k
    """

    bootloader: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FlashInstructions:
        commands = data.get("bootloader") or []
        if not isinstance(commands, list) or not all(isinstance(cmd, str) for cmd in commands):
            raise ValidationError("flash bootloader instructions must be a list of commands")
        return cls(bootloader=tuple(commands))

    @classmethod
    def from_yaml(cls, path: Path) -> FlashInstructions:
        return cls.from_dict(_load_yaml(Path(path)))

    def commands(self, assets_dir: Path, image_path: Path) -> list[list[str]]:
        """The bootloader commands with their placeholders filled in, as argv lists."""
        argvs = []
        for template in self.bootloader:
            command = template
            for value in (str(assets_dir), str(image_path)):
                command = command.replace("%s", value, 1)
            argv = command.split()
            if argv:
                argvs.append(argv)
        return argvs
