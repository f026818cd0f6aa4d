"""
Tests for the zigctl CLI, run against the simulated network.
"""

import json

import pytest
from click.testing import CliRunner

from zigctl.cli import console, main

from conftest import LIGHT, PLUG


@pytest.fixture(autouse=True)
def wide_console(monkeypatch):
    monkeypatch.setattr(console, "width", 200)


def invoke(tmp_path, *args):
    runner = CliRunner()
    return runner.invoke(main, ["--data-dir", str(tmp_path), "--simulate", *args])


class TestCLI:
    """Tests for the device commands."""

    def test_devices(self, tmp_path):
        """devices lists the simulated light and plug."""
        result = invoke(tmp_path, "devices")

        assert result.exit_code == 0, result.output
        assert LIGHT in result.output
        assert PLUG in result.output

    def test_on(self, tmp_path):
        """on prints the new state."""
        result = invoke(tmp_path, "on", PLUG)

        assert result.exit_code == 0, result.output
        assert "turned on" in result.output
        assert "ON" in result.output

    def test_power(self, tmp_path):
        """power prints readings with units."""
        result = invoke(tmp_path, "power", PLUG)

        assert result.exit_code == 0, result.output
        assert "123.4 W" in result.output
        assert "45.67 kWh" in result.output

    def test_unknown_device(self, tmp_path):
        """Errors exit with status 1."""
        result = invoke(tmp_path, "on", "0x00aa00aa00aa00aa")

        assert result.exit_code == 1
        assert "Device not found" in result.output

    def test_color_on_plug(self, tmp_path):
        """Unsupported intents are reported, not raised."""
        result = invoke(tmp_path, "color", PLUG, "--hex", "#ff0000")

        assert result.exit_code == 1

    def test_color_bad_rgb(self, tmp_path):
        """Malformed RGB is reported, not raised."""
        result = invoke(tmp_path, "color", LIGHT, "--rgb", "1,2")

        assert result.exit_code == 1
        assert "Invalid RGB" in result.output

    def test_pairing_disable(self, tmp_path):
        """permit-join --disable closes the window."""
        result = invoke(tmp_path, "permit-join", "--disable")

        assert result.exit_code == 0, result.output
        assert "Pairing disabled" in result.output


class TestInit:
    """Tests for writing the configuration."""

    def test_init(self, tmp_path):
        """init saves the given settings."""
        result = CliRunner().invoke(main, [
            "--data-dir", str(tmp_path), "init", "--port", "/dev/ttyACM0", "--adapter", "ZSTACK",
        ])

        assert result.exit_code == 0, result.output
        saved = json.loads((tmp_path / "config.json").read_text())
        assert saved["serial"]["port"] == "/dev/ttyACM0"
        assert saved["serial"]["adapter"] == "zstack"

    def test_init_invalid(self, tmp_path):
        """Invalid settings are not saved."""
        result = CliRunner().invoke(main, ["--data-dir", str(tmp_path), "init", "--adapter", "xbee"])

        assert result.exit_code == 1
        assert not (tmp_path / "config.json").exists()
