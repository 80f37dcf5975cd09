"""Tests for HardwareService with the simulated hardware profile."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from camled.camera.availability import HardwareState
from camled.camera.demux import verify_jpeg
from camled.camera.errors import CaptureOutcome
from camled.config import CamledConfig, CaptureSettings, LedSettings, MonitorSettings
from camled.core.platform_info import PlatformInfo
from camled.hardware.led import GpioError, SimulatedGpioBackend
from camled.hardware.service import (
    HardwareService,
    PiHardwareProfile,
    SimulatedHardwareProfile,
    select_profile,
)
from tests.conftest import wait_until


def _config(tmp_path):
    return CamledConfig(
        capture=CaptureSettings(work_dir=tmp_path / "work", width=160, height=120, fps=20),
        monitor=MonitorSettings(interval_s=60.0, debounce=2),
        led=LedSettings(pin=17),
        hardware="simulated",
    )


@pytest.fixture
def service(tmp_path):
    return HardwareService(_config(tmp_path), SimulatedHardwareProfile())


class TestSelectProfile:

    def test_explicit_modes(self):
        assert isinstance(select_profile("pi"), PiHardwareProfile)
        assert isinstance(select_profile("simulated"), SimulatedHardwareProfile)

    def test_auto_uses_platform(self):
        pi = PlatformInfo("linux", "aarch64", True, "Raspberry Pi 5")
        laptop = PlatformInfo("linux", "x86_64", False, None)

        assert isinstance(select_profile("auto", pi), PiHardwareProfile)
        assert isinstance(select_profile("auto", laptop), SimulatedHardwareProfile)


class TestSimulatedService:

    @pytest.mark.asyncio
    async def test_led_lifecycle(self, service):
        await service.start()
        try:
            backend = service.led.backend
            assert isinstance(backend, SimulatedGpioBackend)

            assert await service.set_led(True)
            assert backend.high_pins() == [17]

            assert await service.rebind_led_pin(27)
            assert backend.high_pins() == [27]
            assert service.led_pin == 27

            assert not await service.rebind_led_pin(500)
            assert service.led_pin == 27
        finally:
            await service.shutdown()

        assert backend.high_pins() == []
        assert not backend.is_open

    @pytest.mark.asyncio
    async def test_led_errors_reported_as_false(self, service):
        assert not await service.set_led(True)

        await service.start()
        try:
            service.led.set_state = MagicMock(side_effect=GpioError("bus error"))
            assert not await service.set_led(True)
        finally:
            await service.shutdown()

    @pytest.mark.asyncio
    async def test_capture_delivers_real_jpegs(self, service):
        await service.start()
        try:
            assert service.is_camera_available()
            assert service.try_get_latest_frame() is None

            assert await service.start_capture() is CaptureOutcome.STARTED
            assert await wait_until(lambda: service.try_get_latest_frame() is not None, timeout=15.0)

            verify_jpeg(service.try_get_latest_frame())

            await service.stop_capture()
            assert service.try_get_latest_frame() is None
        finally:
            await service.shutdown()

    @pytest.mark.asyncio
    async def test_unplugging_simulated_camera_stops_capture(self, service):
        await service.start()
        try:
            assert await service.start_capture() is CaptureOutcome.STARTED

            service.set_simulated_available(False)
            # One UNAVAILABLE observation is not enough to stop capture.
            assert await service.check_camera_available()
            assert service.supervisor.is_running

            assert not await service.check_camera_available()
            assert service.monitor.state is HardwareState.UNAVAILABLE
            assert not service.supervisor.is_running
            assert service.try_get_latest_frame() is None

            assert await service.start_capture() is CaptureOutcome.CAMERA_UNAVAILABLE
            assert not service.supervisor.is_running

            service.set_simulated_available(True)
            await service.check_camera_available()
            await service.check_camera_available()
            assert service.is_camera_available()
            assert not service.supervisor.is_running
        finally:
            await service.shutdown()

    @pytest.mark.asyncio
    async def test_start_refused_while_camera_unavailable(self, service):
        await service.start()
        try:
            service.set_simulated_available(False)
            await service.check_camera_available()
            await service.check_camera_available()
            assert not service.is_camera_available()

            assert await service.start_capture() is CaptureOutcome.CAMERA_UNAVAILABLE
            assert not service.supervisor.is_running
            assert service.try_get_latest_frame() is None
            assert service.get_status()["capture"]["last_outcome"] == "camera_unavailable"
        finally:
            await service.shutdown()

    @pytest.mark.asyncio
    async def test_shutdown_is_idempotent(self, service):
        await service.start()
        await service.shutdown()
        await service.shutdown()
        assert not service.is_started

    def test_status_snapshot(self, service):
        status = service.get_status()
        assert status["profile"] == "simulated"
        assert status["camera"] == "unknown"
        assert status["capture"]["state"] == "stopped"
        assert status["led_on"] is False


class TestPiProfileWithoutGpio:

    @pytest.mark.asyncio
    async def test_missing_lgpio_degrades_to_no_led(self, tmp_path, monkeypatch):
        monkeypatch.setattr("camled.hardware.led.LGPIO_AVAILABLE", False)
        profile = PiHardwareProfile()
        service = HardwareService(_config(tmp_path), profile)
        monkeypatch.setattr(service.monitor, "start", AsyncMock())

        await service.start()
        try:
            assert service.led is None
            assert not await service.set_led(True)
            assert not await service.rebind_led_pin(27)
            assert service.led_pin == 27
        finally:
            await service.shutdown()
