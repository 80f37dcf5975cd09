"""Tests for the headless demo entry point."""

import asyncio
from unittest.mock import MagicMock

import pytest

from camled.app import demo


def test_parse_args():
    args = demo.parse_args(["--hardware", "simulated", "--duration", "1.5", "--led-pin", "27"])

    assert args.hardware == "simulated"
    assert args.duration == 1.5
    assert args.led_pin == 27
    assert args.log_level is None


def test_parse_args_rejects_bad_duration():
    with pytest.raises(SystemExit):
        demo.parse_args(["--duration", "-1"])


@pytest.mark.asyncio
async def test_poll_frames_stops_on_event():
    service = MagicMock()
    service.try_get_latest_frame.return_value = b"\xff\xd8\x00\xff\xd9"
    service.is_camera_available.return_value = True
    service.cache.get_stats.return_value = {"frame_age": 0.1}
    stop_event = asyncio.Event()
    asyncio.get_running_loop().call_later(0.25, stop_event.set)

    received = await demo.poll_frames(service, stop_event, poll_interval=0.02)

    assert received >= 3


@pytest.mark.asyncio
async def test_main_runs_simulated_demo(monkeypatch, tmp_path):
    monkeypatch.setattr(demo, "configure_from_settings", MagicMock())
    config_path = tmp_path / "camled.txt"
    config_path.write_text(
        f"work_dir = {tmp_path / 'work'}\n"
        "capture_width = 160\n"
        "capture_height = 120\n"
    )

    code = await demo.main([
        "--config", str(config_path),
        "--hardware", "simulated",
        "--duration", "0.5",
    ])

    assert code == 0
