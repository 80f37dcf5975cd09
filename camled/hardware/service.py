"""
Hardware service: the surface the UI talks to.

Wires one ``CaptureSupervisor``, ``LatestFrameCache``,
``AvailabilityMonitor`` and ``LedController`` together for either real
Raspberry Pi hardware or the simulated stand-ins, chosen once at startup.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Sequence

from camled.camera.availability import ENUMERATORS, AvailabilityMonitor, CameraEnumerator, HardwareState
from camled.camera.errors import CaptureOutcome
from camled.camera.frame_cache import LatestFrameCache
from camled.camera.prober import SIMULATED_TOOL, SIMULATED_TOOL_NAME, CommandProber
from camled.camera.supervisor import CaptureSupervisor
from camled.config import CamledConfig, CaptureSettings, LedSettings
from camled.core.logging_utils import LoggerLike, ensure_structured_logger
from camled.core.platform_info import PlatformInfo, get_platform_info
from camled.hardware.led import (
    GpioBackend,
    GpioError,
    LedController,
    LgpioBackend,
    SimulatedGpioBackend,
)


class HardwareProfile(ABC):
    """Factory for the hardware-facing pieces of one platform."""

    name = "abstract"
    simulated = False

    @abstractmethod
    def create_prober(self, settings: CaptureSettings) -> CommandProber: ...

    @abstractmethod
    def create_gpio_backend(self, settings: LedSettings) -> GpioBackend: ...

    @property
    def enumerators(self) -> Sequence[CameraEnumerator]:
        return ()


class PiHardwareProfile(HardwareProfile):
    name = "pi"

    def create_prober(self, settings: CaptureSettings) -> CommandProber:
        return CommandProber(settings.tools)

    def create_gpio_backend(self, settings: LedSettings) -> GpioBackend:
        return LgpioBackend(settings.chip)

    @property
    def enumerators(self) -> Sequence[CameraEnumerator]:
        return ENUMERATORS


class SimulatedHardwareProfile(HardwareProfile):
    name = "simulated"
    simulated = True

    def create_prober(self, settings: CaptureSettings) -> CommandProber:
        return CommandProber((SIMULATED_TOOL_NAME,), registry={SIMULATED_TOOL_NAME: SIMULATED_TOOL})

    def create_gpio_backend(self, settings: LedSettings) -> GpioBackend:
        return SimulatedGpioBackend()


def select_profile(mode: str = "auto", platform: Optional[PlatformInfo] = None) -> HardwareProfile:
    """Pick the hardware profile; ``auto`` means real hardware only on a Pi."""
    if mode == "pi":
        return PiHardwareProfile()
    if mode == "simulated":
        return SimulatedHardwareProfile()
    info = platform or get_platform_info()
    return PiHardwareProfile() if info.is_raspberry_pi else SimulatedHardwareProfile()


class HardwareService:
    """
    Camera capture and LED control for the UI.

    Capture faults come back as ``CaptureOutcome`` values and GPIO faults
    as ``False``; none of the public methods raise for hardware trouble.
    """

    def __init__(
        self,
        config: Optional[CamledConfig] = None,
        profile: Optional[HardwareProfile] = None,
        *,
        logger: LoggerLike = None,
    ) -> None:
        self.config = config or CamledConfig()
        self.profile = profile or select_profile(self.config.hardware)
        self.logger = ensure_structured_logger(logger, fallback_name="HardwareService")

        capture = self.config.capture
        self.cache = LatestFrameCache(capture.freshness_window_s)
        self.prober = self.profile.create_prober(capture)
        self.supervisor = CaptureSupervisor(
            capture,
            self.cache,
            self.prober,
            camera_gate=self._camera_not_lost,
            logger=self.logger.getChild("Supervisor"),
        )

        monitor = self.config.monitor
        self.monitor = AvailabilityMonitor(
            self.prober,
            self.supervisor,
            interval_s=monitor.interval_s,
            debounce=monitor.debounce,
            enumerate_timeout_s=monitor.enumerate_timeout_s,
            enumerators=self.profile.enumerators,
            logger=self.logger.getChild("Availability"),
        )
        if self.profile.simulated:
            self.monitor.set_override(True)

        self.led: Optional[LedController] = None
        self._led_pin = self.config.led.pin
        self._started = False

    @property
    def is_started(self) -> bool:
        return self._started

    @property
    def simulated(self) -> bool:
        return self.profile.simulated

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        self.logger.info("Starting hardware service (%s profile)", self.profile.name)
        await asyncio.to_thread(self._init_led)
        await self.monitor.start()

    async def shutdown(self) -> None:
        """Stop capture and polling, switch the LED off and release GPIO."""
        if not self._started:
            return
        self._started = False
        self.logger.info("Shutting down hardware service")
        await self.monitor.stop()
        await self.supervisor.shutdown()
        if self.led is not None:
            await asyncio.to_thread(self._release_led, self.led)
            self.led = None

    # ------------------------------------------------------------------
    # Camera

    async def start_capture(self) -> CaptureOutcome:
        return await self.supervisor.start()

    async def stop_capture(self) -> None:
        await self.supervisor.stop()

    def try_get_latest_frame(self) -> Optional[bytes]:
        """Newest JPEG within the freshness window, else None. Never blocks on I/O."""
        self.supervisor.check_health()
        frame = self.cache.try_read()
        return frame.data if frame is not None else None

    def is_camera_available(self) -> bool:
        return self.monitor.is_available

    async def check_camera_available(self) -> bool:
        """Run one availability observation now instead of waiting for the poll."""
        state = await self.monitor.check_now()
        return state is HardwareState.AVAILABLE

    def set_simulated_available(self, available: bool) -> None:
        if not self.profile.simulated:
            self.logger.warning("Ignoring simulated availability toggle on real hardware")
            return
        self.logger.info("[MOCK] camera %s", "connected" if available else "disconnected")
        self.monitor.set_override(available)

    # ------------------------------------------------------------------
    # LED

    async def set_led(self, on: bool) -> bool:
        led = self.led
        if led is None:
            self.logger.warning("LED unavailable; cannot switch %s", "on" if on else "off")
            return False
        try:
            await asyncio.to_thread(led.set_state, on)
        except GpioError as exc:
            self.logger.error("Error setting LED state: %s", exc)
            return False
        return True

    async def rebind_led_pin(self, pin: int) -> bool:
        led = self.led
        if led is None:
            self._led_pin = pin
            self.logger.warning("LED unavailable; GPIO%s will be used once it initializes", pin)
            return False
        try:
            await asyncio.to_thread(led.rebind, pin)
        except (GpioError, ValueError) as exc:
            self.logger.error("Error changing LED pin to %s: %s", pin, exc)
            return False
        self._led_pin = led.pin
        return True

    @property
    def led_pin(self) -> int:
        return self.led.pin if self.led is not None else self._led_pin

    @property
    def led_on(self) -> bool:
        return self.led.is_on if self.led is not None else False

    def get_status(self) -> Dict[str, Any]:
        return {
            "profile": self.profile.name,
            "camera": self.monitor.state.value,
            "capture": self.supervisor.get_stats(),
            "cache": self.cache.get_stats(),
            "led_pin": self.led_pin,
            "led_on": self.led_on,
        }

    def _camera_not_lost(self) -> bool:
        # UNKNOWN still lets a start through; the probe decides.
        return self.monitor.state is not HardwareState.UNAVAILABLE

    def _init_led(self) -> None:
        try:
            backend = self.profile.create_gpio_backend(self.config.led)
            led = LedController(backend, self._led_pin, logger=self.logger.getChild("LED"))
            led.initialize()
        except (GpioError, ValueError) as exc:
            self.logger.error("Error initializing GPIO: %s", exc)
            return
        self.led = led

    def _release_led(self, led: LedController) -> None:
        try:
            if led.is_on:
                led.set_state(False)
        except GpioError as exc:
            self.logger.warning("Could not switch LED off: %s", exc)
        led.cleanup()


def create_hardware_service(config: Optional[CamledConfig] = None, *, logger: LoggerLike = None) -> HardwareService:
    return HardwareService(config, logger=logger)


__all__ = [
    "HardwareProfile",
    "HardwareService",
    "PiHardwareProfile",
    "SimulatedHardwareProfile",
    "create_hardware_service",
    "select_profile",
]
