"""Tests for external command execution."""

import subprocess
from unittest.mock import Mock, patch

import pytest

from ubuntu_image_flash.storage.commands import CommandResult, CommandRunner
from ubuntu_image_flash.storage.exceptions import CommandError, CommandTimeoutError


class TestCommandResult:
    """Tests for CommandResult helpers."""

    def test_ok(self):
        """Test ok reflects the return code."""
        assert CommandResult(["true"], 0, "").ok
        assert not CommandResult(["false"], 1, "").ok

    def test_lines_skips_blank_lines(self):
        """Test lines() drops empty lines."""
        result = CommandResult(["kpartx"], 0, "add map loop0p1\n\n  \nadd map loop0p2\n")
        assert result.lines() == ["add map loop0p1", "add map loop0p2"]


class TestCommandRunner:
    """Tests for CommandRunner.run()."""

    @patch("ubuntu_image_flash.storage.commands.subprocess.run")
    def test_run_captures_combined_output(self, mock_run):
        """Test stdout and stderr are captured together."""
        mock_run.return_value = Mock(returncode=0, stdout="Model: (file)\n")

        result = CommandRunner().run(["parted", "core.img"], input_text="quit\n")

        assert result.output == "Model: (file)\n"
        assert result.args == ["parted", "core.img"]
        kwargs = mock_run.call_args.kwargs
        assert kwargs["input"] == "quit\n"
        assert kwargs["stdout"] == subprocess.PIPE
        assert kwargs["stderr"] == subprocess.STDOUT
        assert kwargs["text"] is True

    @patch("ubuntu_image_flash.storage.commands.subprocess.run")
    def test_run_separate_stderr(self, mock_run):
        """Test stderr can be kept out of the parsed output."""
        mock_run.return_value = Mock(
            returncode=0, stdout="add map loop0p1\n", stderr="GPT: header mismatch\n"
        )

        result = CommandRunner().run(["kpartx", "-avs", "core.img"], separate_stderr=True)

        assert result.output == "add map loop0p1\n"
        assert result.stderr == "GPT: header mismatch\n"
        assert "GPT: header mismatch" in result.combined
        assert "add map loop0p1" in result.combined
        assert mock_run.call_args.kwargs["stderr"] == subprocess.PIPE

    @patch("ubuntu_image_flash.storage.commands.subprocess.run")
    def test_run_separate_stderr_failure(self, mock_run):
        """Test a failure still reports what went to stderr."""
        mock_run.return_value = Mock(returncode=1, stdout="", stderr="device busy\n")

        with pytest.raises(CommandError, match="device busy"):
            CommandRunner().run(["kpartx", "-avs", "core.img"], separate_stderr=True)

    @patch("ubuntu_image_flash.storage.commands.subprocess.run")
    def test_run_converts_arguments_to_strings(self, mock_run, tmp_path):
        """Test Path arguments are passed as strings."""
        mock_run.return_value = Mock(returncode=0, stdout="")

        CommandRunner().run(["kpartx", "-avs", tmp_path / "core.img"])

        assert mock_run.call_args.args[0] == ["kpartx", "-avs", str(tmp_path / "core.img")]

    @patch("ubuntu_image_flash.storage.commands.subprocess.run")
    def test_run_raises_on_failure(self, mock_run):
        """Test a non-zero exit raises CommandError with the output."""
        mock_run.return_value = Mock(returncode=32, stdout="mount: wrong fs type\n")

        with pytest.raises(CommandError, match="exit status 32") as exc_info:
            CommandRunner().run(["mount", "/dev/mapper/loop0p1", "/mnt"])

        assert exc_info.value.returncode == 32
        assert "wrong fs type" in exc_info.value.output

    @patch("ubuntu_image_flash.storage.commands.subprocess.run")
    def test_run_without_check_returns_failure(self, mock_run):
        """Test check=False returns the failed result."""
        mock_run.return_value = Mock(returncode=1, stdout="")

        result = CommandRunner().run(["lsof", "-w", "/mnt"], check=False)

        assert result.returncode == 1
        assert not result.ok

    def test_run_without_timeout(self, mocker):
        """Test no timeout is passed unless one is configured."""
        mock_run = mocker.patch(
            "ubuntu_image_flash.storage.commands.subprocess.run",
            return_value=Mock(returncode=0, stdout=""),
        )

        CommandRunner().run(["sync"])

        assert mock_run.call_args.kwargs["timeout"] is None

    @patch("ubuntu_image_flash.storage.commands.subprocess.run")
    def test_run_timeout(self, mock_run):
        """Test a timeout raises CommandTimeoutError."""
        mock_run.side_effect = subprocess.TimeoutExpired(["sync"], 5, output=b"partial")

        with pytest.raises(CommandTimeoutError) as exc_info:
            CommandRunner(timeout=5).run(["sync"])

        assert exc_info.value.timeout == 5
        assert exc_info.value.output == "partial"
        assert mock_run.call_args.kwargs["timeout"] == 5

    @patch("ubuntu_image_flash.storage.commands.subprocess.run")
    def test_trace_logs_every_line(self, mock_run):
        """Test trace mode logs each output line tagged as output."""
        from ubuntu_image_flash import logging as logging_module

        mock_run.return_value = Mock(returncode=0, stdout="line one\nline two\n")
        logging_module.logger.remove()
        records = []
        logging_module.logger.add(lambda message: records.append(message.record), level="TRACE")

        CommandRunner(trace=True).run(["parted", "core.img"])

        traced = [record for record in records if "output" in record["extra"].get("tags", [])]
        assert [record["message"] for record in traced] == [
            "parted: line one",
            "parted: line two",
        ]


class TestFromSettings:
    """Tests for CommandRunner.from_settings()."""

    def test_defaults(self):
        """Test default settings give no timeout and no tracing."""
        runner = CommandRunner.from_settings()
        assert runner.timeout is None
        assert runner.trace is False

    def test_debug_disk_enables_trace(self, monkeypatch):
        """Test DEBUG_DISK turns on output tracing."""
        monkeypatch.setenv("DEBUG_DISK", "1")
        assert CommandRunner.from_settings().trace is True

    def test_timeout_setting(self, isolated_settings):
        """Test the timeout comes from the settings store."""
        isolated_settings.values["command_timeout_seconds"] = 120
        assert CommandRunner.from_settings().timeout == 120
