"""Tests for configuration loading."""

from pathlib import Path

import pytest

from camled.config import (
    CONFIG_ENV_VAR,
    DEFAULT_CONFIG_PATH,
    CamledConfig,
    config_from_mapping,
    load_config,
    resolve_config_path,
)
from camled.core.config_manager import ConfigManager, parse_config_lines


class TestConfigManager:

    def test_parse_lines(self):
        config = parse_config_lines([
            "# comment",
            "",
            "led_pin = 22  # trailing comment",
            'log_file = "/tmp/camled.log"',
            "not a pair",
        ])

        assert config == {"led_pin": "22", "log_file": "/tmp/camled.log"}

    def test_missing_file_is_empty(self, tmp_path):
        assert ConfigManager().read_config(tmp_path / "nope.txt") == {}

    @pytest.mark.asyncio
    async def test_async_read_matches_sync(self, tmp_path):
        path = tmp_path / "config.txt"
        path.write_text("capture_fps = 30\nhardware = simulated\n")
        manager = ConfigManager()

        assert await manager.read_config_async(path) == manager.read_config(path)


class TestLoadConfig:

    def test_bundled_defaults_match_dataclass_defaults(self):
        loaded = load_config(DEFAULT_CONFIG_PATH)
        defaults = CamledConfig()

        assert loaded.capture.tools == defaults.capture.tools
        assert loaded.capture.width == 800
        assert loaded.capture.height == 600
        assert loaded.capture.freshness_window_s == 2.0
        assert loaded.capture.max_frame_bytes == 8 * 1024 * 1024
        assert loaded.monitor.interval_s == 2.0
        assert loaded.led.pin == 17
        assert loaded.hardware == "auto"
        assert loaded.logging.file is None

    def test_file_values_and_overrides(self, tmp_path):
        path = tmp_path / "camled.txt"
        path.write_text(
            "capture_tools = libcamera-jpeg, rpicam-vid\n"
            "verify_frames = yes\n"
            "led_pin = 22\n"
            f"work_dir = {tmp_path / 'work'}\n"
        )

        config = load_config(path, overrides={"led_pin": 27, "hardware": None})

        assert config.capture.tools == ("libcamera-jpeg", "rpicam-vid")
        assert config.capture.verify_frames is True
        assert config.capture.pipe_path == tmp_path / "work" / "camled_stream.mjpeg"
        assert config.led.pin == 27
        assert config.hardware == "auto"

    def test_invalid_values_fall_back(self, caplog):
        config = config_from_mapping({
            "capture_fps": "fast",
            "jpeg_quality": "150",
            "stop_timeout_s": "-1",
            "hardware": "mainframe",
            "log_level": "chatty",
        })

        assert config.capture.fps == 15
        assert config.capture.jpeg_quality == 85
        assert config.capture.stop_timeout_s == 1.0
        assert config.hardware == "auto"
        assert config.logging.level == "info"
        assert "Invalid value for capture_fps" in caplog.text

    def test_env_var_selects_file(self, tmp_path, monkeypatch):
        path = tmp_path / "env.txt"
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))

        assert resolve_config_path() == path
        assert resolve_config_path(Path("/explicit.txt")) == Path("/explicit.txt")

        monkeypatch.delenv(CONFIG_ENV_VAR)
        assert resolve_config_path() == DEFAULT_CONFIG_PATH
