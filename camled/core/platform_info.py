"""
Platform detection used to pick real or simulated hardware.

Detection runs once and is cached for the lifetime of the process.
"""

from __future__ import annotations

import platform
import sys
from dataclasses import dataclass
from typing import Optional

from .logging_utils import get_module_logger

logger = get_module_logger("PlatformInfo")

MODEL_PATHS = (
    "/proc/device-tree/model",
    "/sys/firmware/devicetree/base/model",
)


@dataclass(frozen=True)
class PlatformInfo:
    """Immutable platform facts detected at startup.

    Attributes:
        platform: ``sys.platform`` value ('linux', 'darwin', 'win32').
        architecture: CPU architecture ('x86_64', 'aarch64', 'armv7l').
        is_raspberry_pi: True when the device-tree model names a Raspberry Pi.
        pi_model: Model string when running on a Pi.
    """

    platform: str
    architecture: str
    is_raspberry_pi: bool
    pi_model: Optional[str]

    @property
    def has_gpio(self) -> bool:
        return self.is_raspberry_pi

    def __str__(self) -> str:
        if self.is_raspberry_pi:
            return f"{self.pi_model or 'Raspberry Pi'} ({self.architecture})"
        return f"{self.platform} ({self.architecture})"


def _detect_raspberry_pi() -> tuple[bool, Optional[str]]:
    for path in MODEL_PATHS:
        try:
            with open(path, "r", encoding="utf-8") as fh:
                model = fh.read().strip().rstrip("\x00")
        except OSError:
            continue
        if "raspberry pi" in model.lower():
            return True, model
    return False, None


def detect_platform() -> PlatformInfo:
    """Probe the host. Prefer :func:`get_platform_info`, which caches."""
    is_pi, pi_model = (False, None)
    if sys.platform.startswith("linux"):
        is_pi, pi_model = _detect_raspberry_pi()

    info = PlatformInfo(
        platform=sys.platform,
        architecture=platform.machine(),
        is_raspberry_pi=is_pi,
        pi_model=pi_model,
    )
    logger.info("Platform detected: %s", info)
    return info


_platform_info: Optional[PlatformInfo] = None


def get_platform_info() -> PlatformInfo:
    global _platform_info
    if _platform_info is None:
        _platform_info = detect_platform()
    return _platform_info


def reset_platform_info() -> None:
    """Reset the cached platform info (for testing only)."""
    global _platform_info
    _platform_info = None


__all__ = [
    "PlatformInfo",
    "detect_platform",
    "get_platform_info",
    "reset_platform_info",
]
