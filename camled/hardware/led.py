"""
LED on a single GPIO output line.

``LedController`` owns the backend handle and serializes every write and
rebind behind one lock. A rebind always drives the old pin low and frees
it before the new pin is claimed, so two pins are never high together.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from camled.camera.defaults import DEFAULT_GPIO_CHIP, DEFAULT_LED_PIN
from camled.core.logging_utils import LoggerLike, ensure_structured_logger, get_module_logger

logger = get_module_logger("LedController")

try:
    import lgpio  # type: ignore
    LGPIO_AVAILABLE = True
except ImportError:
    lgpio = None
    LGPIO_AVAILABLE = False
    logger.debug("lgpio not available - real GPIO disabled")

# BCM numbering on the 40-pin header (GPIO0..27); chips expose up to 54 lines.
MAX_GPIO_LINE = 53


class GpioError(Exception):
    """A GPIO chip or line operation failed."""


class GpioBackend(ABC):
    """Minimal output-line interface the LED controller needs."""

    @abstractmethod
    def open(self) -> None: ...

    @abstractmethod
    def claim_output(self, pin: int, level: int = 0) -> None: ...

    @abstractmethod
    def write(self, pin: int, level: int) -> None: ...

    @abstractmethod
    def free(self, pin: int) -> None: ...

    @abstractmethod
    def close(self) -> None: ...


class LgpioBackend(GpioBackend):
    """GPIO through the ``lgpio`` chip interface (Raspberry Pi OS Bookworm+)."""

    def __init__(self, chip: int = DEFAULT_GPIO_CHIP) -> None:
        if not LGPIO_AVAILABLE:
            raise GpioError("lgpio is not installed")
        self.chip = chip
        self._handle: Optional[int] = None

    def open(self) -> None:
        if self._handle is None:
            self._handle = self._call(f"open gpiochip{self.chip}", lgpio.gpiochip_open, self.chip)

    def claim_output(self, pin: int, level: int = 0) -> None:
        self._call(f"claim GPIO{pin}", lgpio.gpio_claim_output, self._require_handle(), pin, level)

    def write(self, pin: int, level: int) -> None:
        self._call(f"write GPIO{pin}", lgpio.gpio_write, self._require_handle(), pin, level)

    def free(self, pin: int) -> None:
        self._call(f"free GPIO{pin}", lgpio.gpio_free, self._require_handle(), pin)

    def close(self) -> None:
        if self._handle is None:
            return
        handle, self._handle = self._handle, None
        self._call(f"close gpiochip{self.chip}", lgpio.gpiochip_close, handle)

    def _require_handle(self) -> int:
        if self._handle is None:
            raise GpioError("gpio chip is not open")
        return self._handle

    @staticmethod
    def _call(action: str, func: Callable[..., Any], *args: Any) -> Any:
        try:
            result = func(*args)
        except lgpio.error as exc:
            raise GpioError(f"{action} failed: {exc}") from exc
        if isinstance(result, int) and result < 0:
            raise GpioError(f"{action} failed: {lgpio.error_text(result)}")
        return result


class SimulatedGpioBackend(GpioBackend):
    """In-memory GPIO lines; records every write for inspection."""

    def __init__(self, logger: LoggerLike = None) -> None:
        self.logger = ensure_structured_logger(logger, fallback_name="MockGPIO")
        self.levels: Dict[int, int] = {}
        self.claimed: Set[int] = set()
        self.history: List[Tuple[int, int]] = []
        self.is_open = False

    def open(self) -> None:
        self.is_open = True
        self.logger.info("[MOCK] GPIO chip opened")

    def claim_output(self, pin: int, level: int = 0) -> None:
        self._require_open()
        self.claimed.add(pin)
        self._set(pin, level)
        self.logger.info("[MOCK] GPIO%d claimed as output", pin)

    def write(self, pin: int, level: int) -> None:
        self._require_open()
        if pin not in self.claimed:
            raise GpioError(f"GPIO{pin} is not claimed")
        self._set(pin, level)
        self.logger.info("[MOCK] GPIO%d -> %s", pin, "HIGH" if level else "LOW")

    def free(self, pin: int) -> None:
        self.claimed.discard(pin)
        self.logger.info("[MOCK] GPIO%d released", pin)

    def close(self) -> None:
        self.claimed.clear()
        self.is_open = False
        self.logger.info("[MOCK] GPIO chip closed")

    def high_pins(self) -> List[int]:
        return sorted(pin for pin, level in self.levels.items() if level)

    def _set(self, pin: int, level: int) -> None:
        self.levels[pin] = 1 if level else 0
        self.history.append((pin, self.levels[pin]))

    def _require_open(self) -> None:
        if not self.is_open:
            raise GpioError("gpio chip is not open")


def validate_pin(pin: int) -> int:
    if isinstance(pin, bool) or not isinstance(pin, int):
        raise ValueError(f"GPIO pin must be an integer, got {pin!r}")
    if not 0 <= pin <= MAX_GPIO_LINE:
        raise ValueError(f"GPIO pin {pin} out of range 0..{MAX_GPIO_LINE}")
    return pin


class LedController:
    """
    Drives one LED pin.

    ``is_on`` is the requested logical state and survives a rebind: the new
    pin comes up in whatever state the caller last asked for.
    """

    def __init__(self, backend: GpioBackend, pin: int = DEFAULT_LED_PIN, *, logger: LoggerLike = None) -> None:
        self.backend = backend
        self.logger = ensure_structured_logger(logger, fallback_name="LedController")
        self._pin = validate_pin(pin)
        self._requested_on = False
        self._initialized = False
        self._lock = threading.Lock()

    @property
    def pin(self) -> int:
        return self._pin

    @property
    def is_on(self) -> bool:
        return self._requested_on

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def initialize(self) -> None:
        with self._lock:
            if self._initialized:
                return
            self.backend.open()
            try:
                self.backend.claim_output(self._pin, 0)
            except GpioError:
                self.backend.close()
                raise
            self._initialized = True
            self.logger.info("LED ready on GPIO%d", self._pin)

    def set_state(self, on: bool) -> None:
        with self._lock:
            self._require_initialized()
            self.backend.write(self._pin, 1 if on else 0)
            self._requested_on = bool(on)
            self.logger.debug("LED %s (GPIO%d)", "on" if on else "off", self._pin)

    def rebind(self, pin: int) -> None:
        """Move the LED to ``pin``; the old pin is left low and released."""
        new_pin = validate_pin(pin)
        with self._lock:
            self._require_initialized()
            old_pin = self._pin
            if new_pin == old_pin:
                return

            self.backend.write(old_pin, 0)
            self.backend.free(old_pin)
            try:
                self.backend.claim_output(new_pin, 0)
            except GpioError:
                self.logger.error("Cannot claim GPIO%d; staying on GPIO%d", new_pin, old_pin)
                self.backend.claim_output(old_pin, 1 if self._requested_on else 0)
                raise

            self._pin = new_pin
            if self._requested_on:
                self.backend.write(new_pin, 1)
            self.logger.info("LED moved GPIO%d -> GPIO%d", old_pin, new_pin)

    def cleanup(self) -> None:
        with self._lock:
            if not self._initialized:
                return
            self._initialized = False
            try:
                self.backend.write(self._pin, 0)
                self.backend.free(self._pin)
            except GpioError as exc:
                self.logger.warning("LED cleanup on GPIO%d: %s", self._pin, exc)
            finally:
                self.backend.close()
            self.logger.info("LED released (GPIO%d)", self._pin)

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise GpioError("LED controller is not initialized")


__all__ = [
    "GpioBackend",
    "GpioError",
    "LGPIO_AVAILABLE",
    "LedController",
    "LgpioBackend",
    "SimulatedGpioBackend",
    "validate_pin",
]
