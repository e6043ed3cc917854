"""Tests for bootloader flashing from flash.yaml instructions."""

from pathlib import Path

import pytest

from ubuntu_image_flash.boot.flash import BootloaderFlasher
from ubuntu_image_flash.domain.descriptions import FlashInstructions
from ubuntu_image_flash.storage.exceptions import ExtractionError, FlashError


FLASH_YAML = """\
bootloader:
  - dd if=%s/MLO of=%s count=1 seek=1 conv=notrunc bs=128k
  - dd if=%s/u-boot.img of=%s count=2 seek=1 conv=notrunc bs=384k
"""


def unpack_assets(platform, flash_yaml=FLASH_YAML):
    """A tar stand-in writing the platform's flash assets below ``-C``."""

    def effect(args):
        destination = args[args.index("-C") + 1]
        assets = Path(destination) / "flashtool-assets" / platform
        assets.mkdir(parents=True)
        if flash_yaml is not None:
            (assets / "flash.yaml").write_text(flash_yaml)

    return effect


@pytest.fixture
def flasher(tools, runner):
    return BootloaderFlasher(tools, runner)


class TestFlash:
    """Tests for BootloaderFlasher.flash()."""

    def test_no_platform(self, flasher, runner, tmp_path):
        """Test gadgets without a platform have nothing to flash."""
        assert flasher.flash(tmp_path / "device.tar.xz", "", tmp_path / "core.img") == []
        assert runner.commands == []

    def test_runs_platform_commands(self, flasher, runner, tmp_path):
        """Test each bootloader command runs with the assets dir and image filled in."""
        runner.respond(["tar"], effect=unpack_assets("am335x-boneblack"))

        commands = flasher.flash(
            tmp_path / "device.tar.xz", "am335x-boneblack", tmp_path / "core.img"
        )

        tar = runner.commands[0]
        assert tar[:4] == ["tar", "--numeric-owner", "-xf", str(tmp_path / "device.tar.xz")]
        assert tar[-1] == "flashtool-assets"
        assets = f"{tar[tar.index('-C') + 1]}/flashtool-assets/am335x-boneblack"
        assert runner.commands[1:] == commands
        assert [command[:3] for command in commands] == [
            ["dd", f"if={assets}/MLO", f"of={tmp_path / 'core.img'}"],
            ["dd", f"if={assets}/u-boot.img", f"of={tmp_path / 'core.img'}"],
        ]

    def test_platform_without_flash_file(self, flasher, runner, tmp_path):
        """Test platforms that ship no flash.yaml are left alone."""
        runner.respond(["tar"], effect=unpack_assets("am335x-boneblack", flash_yaml=None))

        result = flasher.flash(
            tmp_path / "device.tar.xz", "am335x-boneblack", tmp_path / "core.img"
        )

        assert result == []
        assert runner.commands_for("dd") == []

    def test_missing_assets_in_archive(self, flasher, runner, tmp_path):
        """Test a device archive without flashtool-assets is an extraction error."""
        runner.fail(["tar"], output="tar: flashtool-assets: Not found in archive")

        with pytest.raises(ExtractionError, match="Not found in archive"):
            flasher.flash(tmp_path / "device.tar.xz", "am335x-boneblack", tmp_path / "core.img")

    def test_temporary_assets_removed(self, flasher, runner, tmp_path):
        """Test the unpacked assets do not outlive the flash step."""
        runner.respond(["tar"], effect=unpack_assets("am335x-boneblack"))

        flasher.flash(tmp_path / "device.tar.xz", "am335x-boneblack", tmp_path / "core.img")

        destination = runner.commands[0][runner.commands[0].index("-C") + 1]
        assert not Path(destination).exists()


class TestRunInstructions:
    """Tests for BootloaderFlasher.run_instructions()."""

    def test_stops_at_first_failure(self, flasher, runner, tmp_path):
        """Test a failing command raises FlashError and later ones do not run."""
        runner.fail(["dd"], output="dd: failed to open", times=1)
        instructions = FlashInstructions(
            bootloader=("dd if=%s/MLO of=%s", "dd if=%s/u-boot of=%s")
        )

        with pytest.raises(FlashError, match="failed to open"):
            flasher.run_instructions(instructions, tmp_path, tmp_path / "core.img")

        assert len(runner.commands_for("dd")) == 1
