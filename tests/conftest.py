"""Shared pytest configuration and fixtures for the camled test suite."""

from __future__ import annotations

import asyncio
import io
import sys
import time
from pathlib import Path
from typing import Callable, List, Tuple

import pytest

from camled.camera.prober import CaptureMode, CaptureTool, CommandProber
from camled.config import CaptureSettings

PROJECT_ROOT = Path(__file__).parent.parent


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "hardware: mark test as requiring a Raspberry Pi camera or GPIO"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


def pytest_addoption(parser):
    """Add custom command-line options."""
    parser.addoption(
        "--run-hardware",
        action="store_true",
        default=False,
        help="Run tests that require physical hardware",
    )


def pytest_collection_modifyitems(config, items):
    """Skip hardware tests unless --run-hardware is specified."""
    if config.getoption("--run-hardware"):
        return

    skip_hardware = pytest.mark.skip(reason="Need --run-hardware option to run")
    for item in items:
        if "hardware" in item.keywords:
            item.add_marker(skip_hardware)


# =============================================================================
# Helpers
# =============================================================================

def make_frame(payload: bytes) -> bytes:
    """Minimal SOI ... EOI byte string (payload must not contain FF D9)."""
    return b"\xff\xd8" + payload + b"\xff\xd9"


def make_jpeg(width: int = 32, height: int = 24, color=(200, 30, 30)) -> bytes:
    """A real JPEG encoded by Pillow."""
    from PIL import Image

    out = io.BytesIO()
    Image.new("RGB", (width, height), color).save(out, format="JPEG")
    return out.getvalue()


async def wait_until(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.02) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class KillRecorder:
    """Stands in for ``kill_processes``; records the patterns it was given."""

    def __init__(self) -> None:
        self.calls: List[Tuple[str, ...]] = []

    def __call__(self, patterns, timeout: float = 1.0) -> int:
        self.calls.append(tuple(patterns))
        return 0


FAKE_TOOL = CaptureTool(
    "fake-vid",
    CaptureMode.STREAM,
    "simulated",
    kill_patterns=("camled-test-fake-vid",),
    executable=sys.executable,
)
FAKE_STILL_TOOL = CaptureTool(
    "fake-jpeg",
    CaptureMode.STILL,
    "libcamera-jpeg",
    kill_patterns=("camled-test-fake-jpeg",),
    executable=sys.executable,
)


# =============================================================================
# Shared Fixtures
# =============================================================================

@pytest.fixture
def project_root() -> Path:
    return PROJECT_ROOT


@pytest.fixture
def capture_settings(tmp_path: Path) -> CaptureSettings:
    return CaptureSettings(
        work_dir=tmp_path / "work",
        stop_timeout_s=1.0,
        stream_open_timeout_s=1.0,
        still_timeout_s=2.0,
        attempt_delay_s=0.02,
        error_delay_s=0.05,
        cooldown_s=10.0,
    )


@pytest.fixture
def fake_prober() -> CommandProber:
    return CommandProber(("fake-vid",), registry={"fake-vid": FAKE_TOOL})


@pytest.fixture
def fake_still_prober() -> CommandProber:
    return CommandProber(("fake-jpeg",), registry={"fake-jpeg": FAKE_STILL_TOOL})


@pytest.fixture
def kill_recorder() -> KillRecorder:
    return KillRecorder()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()
