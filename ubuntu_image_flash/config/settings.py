"""Settings storage for image build configuration."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any


SETTINGS_PATH = Path(
    os.environ.get(
        "UBUNTU_IMAGE_FLASH_SETTINGS_PATH",
        Path.home() / ".config" / "ubuntu-image-flash" / "settings.json",
    )
)

# Default values - use these constants instead of hardcoding values elsewhere
DEFAULT_ROOT_SIZE_MIB = 1024
DEFAULT_BOOT_SIZE_MIB = 64
DEFAULT_MINIMAL_BOOT_SIZE_MIB = 128

DEFAULT_SETTINGS: dict[str, Any] = {
    "tools": {},
    "trace_commands": False,
    "command_timeout_seconds": None,
    "mount_tmp_dir": None,
    "root_size_mib": DEFAULT_ROOT_SIZE_MIB,
    "boot_size_mib": DEFAULT_BOOT_SIZE_MIB,
    "minimal_boot_size_mib": DEFAULT_MINIMAL_BOOT_SIZE_MIB,
}


@dataclass
class SettingsStore:
    values: dict[str, Any] = field(default_factory=dict)


settings_store = SettingsStore()


def load_settings() -> None:
    settings_store.values = dict(DEFAULT_SETTINGS)
    if not SETTINGS_PATH.exists():
        return
    try:
        data = json.loads(SETTINGS_PATH.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return
    if isinstance(data, dict):
        settings_store.values.update(data)


def save_settings() -> None:
    SETTINGS_PATH.parent.mkdir(parents=True, exist_ok=True)
    SETTINGS_PATH.write_text(
        json.dumps(settings_store.values, indent=2, sort_keys=True),
        encoding="utf-8",
    )


def get_setting(key: str, default: Any | None = None) -> Any:
    return settings_store.values.get(key, default)


def set_setting(key: str, value: Any) -> None:
    settings_store.values[key] = value
    save_settings()


def get_bool(key: str, default: bool = False) -> bool:
    return bool(get_setting(key, default))


def set_bool(key: str, value: bool) -> None:
    set_setting(key, bool(value))


def trace_commands_enabled() -> bool:
    """Command output tracing is on via the setting or DEBUG_DISK."""
    return get_bool("trace_commands") or bool(os.environ.get("DEBUG_DISK"))


@dataclass(frozen=True)
class ToolPaths:
    """Binaries invoked while assembling an image.

    Every component receives one of these instead of reading global names,
    so tests can point a tool at a fake and users can override a binary
    through the ``tools`` setting.
    """

    parted: str = "parted"
    kpartx: str = "kpartx"
    dmsetup: str = "dmsetup"
    mkfs_ext4: str = "mkfs.ext4"
    mkfs_vfat: str = "mkfs.vfat"
    blockdev: str = "blockdev"
    mount: str = "mount"
    umount: str = "umount"
    sync: str = "sync"
    chroot: str = "chroot"
    tar: str = "tar"
    qemu_img: str = "qemu-img"
    lsof: str = "lsof"
    chown: str = "chown"
    cp: str = "cp"

    @classmethod
    def from_settings(cls) -> ToolPaths:
        overrides = get_setting("tools") or {}
        known = {item.name for item in fields(cls)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ValueError(f"Unknown tool override(s): {', '.join(unknown)}")
        return replace(cls(), **{key: str(value) for key, value in overrides.items()})


load_settings()
