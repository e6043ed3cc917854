"""
Tests for ubuntu_image_flash.config.settings module.

This test suite covers:
- Settings loading and saving
- Default settings initialization
- Type conversion helpers (get_bool, set_bool)
- Error handling for corrupted settings files
- Tool path overrides
"""

import json

import pytest

from ubuntu_image_flash.config import settings
from ubuntu_image_flash.config.settings import ToolPaths


class TestLoadSettings:
    """Tests for load_settings() function."""

    def test_load_defaults_when_no_file(self):
        """Test that default settings are loaded when file doesn't exist."""
        settings.settings_store.values = {}
        settings.load_settings()

        assert settings.settings_store.values == settings.DEFAULT_SETTINGS

    def test_load_merges_with_defaults(self):
        """Test that loaded settings merge with defaults."""
        settings.SETTINGS_PATH.parent.mkdir(parents=True)
        settings.SETTINGS_PATH.write_text(json.dumps({"root_size_mib": 2048}))

        settings.load_settings()

        assert settings.get_setting("root_size_mib") == 2048
        assert settings.get_setting("boot_size_mib") == settings.DEFAULT_BOOT_SIZE_MIB

    def test_corrupted_file_falls_back_to_defaults(self):
        """Test that invalid JSON leaves the defaults in place."""
        settings.SETTINGS_PATH.parent.mkdir(parents=True)
        settings.SETTINGS_PATH.write_text("{not json")

        settings.load_settings()

        assert settings.settings_store.values == settings.DEFAULT_SETTINGS

    def test_non_dict_file_ignored(self):
        """Test that a JSON list is ignored."""
        settings.SETTINGS_PATH.parent.mkdir(parents=True)
        settings.SETTINGS_PATH.write_text("[1, 2]")

        settings.load_settings()

        assert settings.settings_store.values == settings.DEFAULT_SETTINGS


class TestSaveSettings:
    """Tests for save_settings() and set_setting()."""

    def test_set_setting_persists(self):
        """Test that set_setting writes the file."""
        settings.set_setting("mount_tmp_dir", "/var/tmp")

        data = json.loads(settings.SETTINGS_PATH.read_text())
        assert data["mount_tmp_dir"] == "/var/tmp"

    def test_round_trip(self):
        """Test that saved settings load again."""
        settings.set_setting("boot_size_mib", 96)
        settings.settings_store.values = {}

        settings.load_settings()

        assert settings.get_setting("boot_size_mib") == 96

    def test_bool_helpers(self):
        """Test get_bool and set_bool convert values."""
        settings.set_bool("trace_commands", 1)
        assert settings.get_setting("trace_commands") is True
        assert settings.get_bool("trace_commands") is True
        assert settings.get_bool("missing", default=False) is False


class TestTraceCommands:
    """Tests for trace_commands_enabled()."""

    def test_disabled_by_default(self):
        """Test tracing is off by default."""
        assert settings.trace_commands_enabled() is False

    def test_enabled_by_setting(self):
        """Test the setting turns tracing on."""
        settings.settings_store.values["trace_commands"] = True
        assert settings.trace_commands_enabled() is True

    def test_enabled_by_environment(self, monkeypatch):
        """Test DEBUG_DISK turns tracing on."""
        monkeypatch.setenv("DEBUG_DISK", "1")
        assert settings.trace_commands_enabled() is True


class TestToolPaths:
    """Tests for ToolPaths.from_settings()."""

    def test_defaults(self):
        """Test tools resolve through PATH by default."""
        tools = ToolPaths.from_settings()
        assert tools.parted == "parted"
        assert tools.mkfs_vfat == "mkfs.vfat"
        assert tools.qemu_img == "qemu-img"

    def test_overrides(self):
        """Test individual binaries can be overridden."""
        settings.settings_store.values["tools"] = {"parted": "/usr/sbin/parted"}
        tools = ToolPaths.from_settings()
        assert tools.parted == "/usr/sbin/parted"
        assert tools.kpartx == "kpartx"

    def test_unknown_override(self):
        """Test typos in tool names are reported."""
        settings.settings_store.values["tools"] = {"partd": "/usr/sbin/parted"}
        with pytest.raises(ValueError, match="partd"):
            ToolPaths.from_settings()
