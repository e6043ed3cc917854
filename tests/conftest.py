"""
Pytest configuration and shared fixtures for ubuntu-image-flash tests.

No test needs root, loop devices or real mounts: external commands go
through ``FakeRunner`` and privilege switches through
``RecordingPrivileges``. Filesystem side effects (mountpoint directories,
boot assets, raw writes) happen for real inside ``tmp_path``.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence

import pytest

from ubuntu_image_flash.config import settings
from ubuntu_image_flash.config.settings import ToolPaths
from ubuntu_image_flash.domain.descriptions import GadgetDescription, HardwareDescription
from ubuntu_image_flash.domain.models import DiskImage, Filesystem, Partition
from ubuntu_image_flash.storage.commands import CommandResult
from ubuntu_image_flash.storage.exceptions import CommandError
from ubuntu_image_flash.storage.privileges import Privileges


# ==============================================================================
# Command Runner Fake
# ==============================================================================


@dataclass
class Rule:
    prefix: List[str]
    output: str = ""
    returncode: int = 0
    times: Optional[int] = None  # None = unlimited
    effect: Optional[Callable[[List[str]], None]] = None
    stderr: str = ""


@dataclass
class Call:
    args: List[str]
    input_text: Optional[str]


class FakeRunner:
    """Scripted stand-in for ``CommandRunner``.

    Commands succeed with empty output unless a rule matching the start of
    their argv says otherwise. Later rules win over earlier ones.
    """

    def __init__(self) -> None:
        self.rules: List[Rule] = []
        self.calls: List[Call] = []
        self.timeout = None
        self.trace = False
        self.respond(["blockdev", "--getss"], output="512\n")

    def respond(
        self,
        prefix: Sequence[str],
        output: str = "",
        returncode: int = 0,
        times: Optional[int] = None,
        effect: Optional[Callable[[List[str]], None]] = None,
        stderr: str = "",
    ) -> None:
        self.rules.append(
            Rule([str(part) for part in prefix], output, returncode, times, effect, stderr)
        )

    def fail(
        self,
        prefix: Sequence[str],
        output: str = "command failed",
        returncode: int = 1,
        times: Optional[int] = None,
    ) -> None:
        self.respond(prefix, output, returncode, times)

    def _match(self, args: List[str]) -> Optional[Rule]:
        for rule in reversed(self.rules):
            if rule.times == 0:
                continue
            if args[: len(rule.prefix)] == rule.prefix:
                if rule.times is not None:
                    rule.times -= 1
                return rule
        return None

    def run(
        self, command, *, input_text=None, check=True, separate_stderr=False
    ) -> CommandResult:
        args = [str(part) for part in command]
        self.calls.append(Call(args, input_text))
        rule = self._match(args)
        if rule and rule.effect:
            rule.effect(args)
        output = rule.output if rule else ""
        stderr = rule.stderr if rule else ""
        returncode = rule.returncode if rule else 0
        if separate_stderr:
            result = CommandResult(args, returncode, output, stderr)
        else:
            result = CommandResult(args, returncode, output + stderr)
        if check and returncode != 0:
            raise CommandError(args, returncode, result.combined)
        return result

    @property
    def commands(self) -> List[List[str]]:
        return [call.args for call in self.calls]

    def commands_for(self, program: str) -> List[List[str]]:
        return [args for args in self.commands if args[0] == program]

    def ran(self, *prefix: str) -> bool:
        prefix_list = [str(part) for part in prefix]
        return any(args[: len(prefix_list)] == prefix_list for args in self.commands)


def kpartx_output(count: int, loop: str = "loop0") -> str:
    """Output of ``kpartx -avs`` for ``count`` partitions."""
    lines = []
    for index in range(1, count + 1):
        lines.append(
            f"add map {loop}p{index} (253:{index - 1}): 0 131072 linear 7:0 {8192 * index}"
        )
    return "\n".join(lines) + "\n"


# ==============================================================================
# Privileges Fake
# ==============================================================================


class RecordingPrivileges(Privileges):
    """Privileges that record transitions instead of calling setreuid."""

    def __init__(self) -> None:
        super().__init__(environ={"SUDO_UID": "1000", "SUDO_GID": "1000"})
        self.events: List[str] = []
        self.is_root = False

    def drop(self) -> None:
        self.events.append("drop")
        self.is_root = False

    def escalate(self) -> None:
        self.events.append("escalate")
        self.is_root = True


# ==============================================================================
# Fixtures
# ==============================================================================


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Point the settings store at a temporary file with default values."""
    monkeypatch.setattr(settings, "SETTINGS_PATH", tmp_path / "settings" / "settings.json")
    monkeypatch.delenv("DEBUG_DISK", raising=False)
    settings.settings_store.values = dict(settings.DEFAULT_SETTINGS)
    yield settings.settings_store
    settings.settings_store.values = dict(settings.DEFAULT_SETTINGS)


@pytest.fixture
def runner() -> FakeRunner:
    """Fixture providing a scripted command runner."""
    return FakeRunner()


@pytest.fixture
def tools() -> ToolPaths:
    """Fixture providing default tool names."""
    return ToolPaths()


@pytest.fixture
def privileges() -> RecordingPrivileges:
    return RecordingPrivileges()


@pytest.fixture
def mount_tmp(tmp_path) -> Path:
    """Parent directory for temporary mountpoint roots."""
    path = tmp_path / "mnt"
    path.mkdir()
    return path


@pytest.fixture
def disk_image(tmp_path) -> DiskImage:
    """A partitioned (not yet mapped) three partition image."""
    backing = tmp_path / "core.img"
    backing.write_bytes(b"")
    return DiskImage(
        path=backing,
        label="core",
        partitions=[
            Partition(8192, 139263, Filesystem.FAT32, "system-boot", "boot"),
            Partition(139264, 2236415, Filesystem.EXT4, "system-a", "system"),
            Partition(2236416, -1, Filesystem.EXT4, "writable", "writable"),
        ],
    )


@pytest.fixture
def mapped_image(disk_image) -> DiskImage:
    """The three partition image with loop devices assigned."""
    for index, partition in enumerate(disk_image.partitions, start=1):
        partition.loop = f"loop0p{index}"
    return disk_image


@pytest.fixture
def hardware() -> HardwareDescription:
    return HardwareDescription(
        kernel="assets/vmlinuz-4.4",
        initrd="assets/initrd.img-4.4",
        dtbs="assets/dtbs",
    )


@pytest.fixture
def grub_gadget() -> GadgetDescription:
    return GadgetDescription(
        name="pc",
        bootloader="grub",
        partition_layout="system-AB",
        architecture="amd64",
    )


@pytest.fixture
def uboot_gadget() -> GadgetDescription:
    return GadgetDescription(
        name="beagleboneblack",
        bootloader="u-boot",
        partition_layout="system-AB",
        architecture="armhf",
        platform="am335x-boneblack",
    )


@pytest.fixture
def payload_root(tmp_path) -> Path:
    """A mount root holding what the device tarball unpacks to."""
    root = tmp_path / "payload"
    (root / "assets" / "dtbs").mkdir(parents=True)
    (root / "hardware.yaml").write_text("kernel: assets/vmlinuz-4.4\n")
    (root / "assets" / "vmlinuz-4.4").write_bytes(b"kernel")
    (root / "assets" / "initrd.img-4.4").write_bytes(b"initrd")
    (root / "assets" / "dtbs" / "am335x-boneblack.dtb").write_bytes(b"bbb")
    (root / "assets" / "dtbs" / "am335x-bone.dtb").write_bytes(b"bone")
    return root
