"""Headless camera + LED demo.

Starts the hardware service, switches the LED on, runs capture and polls
the latest frame every 100 ms until the duration elapses or a signal
arrives. Shutdown always switches the LED off and releases the camera.
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
import time
from typing import Optional, Sequence

from camled.cli.common import add_common_cli_arguments, non_negative_int, positive_float
from camled.config import load_config
from camled.core.logging_config import configure_from_settings
from camled.core.logging_utils import get_module_logger
from camled.hardware.service import HardwareService, create_hardware_service

logger = get_module_logger("Demo")

POLL_INTERVAL_S = 0.1
REPORT_INTERVAL_S = 2.0


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="camled",
        description="Camera feed + LED demo (headless)",
    )
    add_common_cli_arguments(parser)
    parser.add_argument(
        "--duration",
        type=positive_float,
        default=None,
        help="Seconds to run before shutting down (default: until Ctrl+C)",
    )
    parser.add_argument(
        "--led-pin",
        type=non_negative_int,
        default=None,
        help="BCM GPIO pin driving the LED (default: from config, else 17)",
    )
    return parser.parse_args(list(argv) if argv is not None else None)


async def poll_frames(
    service: HardwareService,
    stop_event: asyncio.Event,
    *,
    duration: Optional[float] = None,
    poll_interval: float = POLL_INTERVAL_S,
    report_interval: float = REPORT_INTERVAL_S,
) -> int:
    """Pull frames like the UI timer would; returns how many were received."""
    started = time.monotonic()
    next_report = started
    received = 0
    last_size = 0
    camera_was_available: Optional[bool] = None

    while not stop_event.is_set():
        now = time.monotonic()
        if duration is not None and now - started >= duration:
            break

        frame = service.try_get_latest_frame()
        if frame is not None:
            received += 1
            last_size = len(frame)

        available = service.is_camera_available()
        if available != camera_was_available:
            logger.info("Camera %s", "available" if available else "not available")
            camera_was_available = available

        if now >= next_report:
            frame_age = service.cache.get_stats()["frame_age"]
            logger.info(
                "Frames received: %d (last %d bytes, age %s) | capture %s",
                received,
                last_size,
                f"{frame_age:.2f}s" if frame_age is not None else "n/a",
                service.supervisor.state.value,
            )
            next_report = now + report_interval

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=poll_interval)
        except asyncio.TimeoutError:
            pass

    return received


async def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    overrides = {
        "log_level": args.log_level,
        "log_file": args.log_file,
        "hardware": args.hardware,
        "led_pin": args.led_pin,
    }
    config = load_config(args.config, overrides)
    configure_from_settings(config.logging)

    service = create_hardware_service(config)
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def signal_handler() -> None:
        if not stop_event.is_set():
            logger.info("Shutdown requested")
            stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            pass  # Windows doesn't support add_signal_handler

    try:
        await service.start()
        await service.set_led(True)

        outcome = await service.start_capture()
        if outcome.is_failure:
            reason = "no camera" if outcome.camera_missing else "camera error"
            logger.warning("Capture did not start (%s: %s)", reason, outcome.value)
        else:
            logger.info("Capture: %s", outcome.value)

        received = await poll_frames(service, stop_event, duration=args.duration)
        logger.info("Demo finished after %d frame(s)", received)
    finally:
        await service.set_led(False)
        await service.shutdown()

    return 0


def cli(argv: Optional[Sequence[str]] = None) -> None:
    try:
        sys.exit(asyncio.run(main(argv)))
    except KeyboardInterrupt:
        sys.exit(130)


__all__ = ["cli", "main", "parse_args", "poll_frames"]
