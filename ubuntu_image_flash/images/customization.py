"""Emulator customizations written into a provisioned system image."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from ubuntu_image_flash.logging import LoggerFactory


log = LoggerFactory.for_build()

NETWORK_CONFIG = """# interfaces(5) file used by ifup(8) and ifdown(8)
auto lo
iface lo inet loopback

auto eth0
iface eth0 inet static
    address 10.0.2.15
    netmask 255.255.255.0
    gateway 10.0.2.2
    dns-nameservers 10.0.2.3

iface eth1 inet manual
iface eth2 inet manual
iface eth3 inet manual
iface eth4 inet manual
iface eth5 inet manual
"""

WRITABLE_FLAG = ".writable_image"
ADB_ONLOCK_FLAG = ".adb_onlock"


@dataclass(frozen=True)
class SetupFile:
    path: str  # relative to the image root
    content: str


SETUP_FILES = (
    SetupFile("custom/custom.prop", "custom.location.fake=true"),
    SetupFile("etc/network/interfaces", NETWORK_CONFIG),
    SetupFile("etc/profile.d/hud-service.sh", "export HUD_DISABLE_VOICE=1"),
)


def write_setup_file(root: Path, setup_file: SetupFile) -> Path:
    path = Path(root) / setup_file.path
    if path.parent.exists() and not path.parent.is_dir():
        raise NotADirectoryError(f"{path.parent} is not a directory, customization failed")
    path.parent.mkdir(parents=True, exist_ok=True, mode=0o755)
    path.write_text(setup_file.content, encoding="utf-8")
    path.chmod(0o644)
    return path


def write_setup_files(root: Path) -> list[Path]:
    return [write_setup_file(root, setup_file) for setup_file in SETUP_FILES]


def _touch_flag(root: Path, name: str) -> Path:
    path = Path(root) / name
    path.write_bytes(b"")
    path.chmod(0o644)
    log.debug(f"Created {path}")
    return path


def mark_writable(root: Path) -> Path:
    """Allow writes on the running image."""
    return _touch_flag(root, WRITABLE_FLAG)


def override_adb_inhibit(root: Path) -> Path:
    """Keep adb running while the screen is locked."""
    return _touch_flag(root, ADB_ONLOCK_FLAG)
