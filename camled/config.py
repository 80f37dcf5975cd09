"""Typed configuration for camled, built from ``key = value`` files."""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from camled.camera import defaults
from camled.core.config_manager import get_config_manager
from camled.core.logging_utils import LoggerLike, ensure_structured_logger

CONFIG_ENV_VAR = "CAMLED_CONFIG"
DEFAULT_CONFIG_PATH = Path(__file__).with_name("config.txt")
HARDWARE_MODES = ("auto", "pi", "simulated")
LOG_LEVEL_NAMES = ("debug", "info", "warning", "error", "critical")


@dataclass(slots=True)
class CaptureSettings:
    tools: Tuple[str, ...] = defaults.DEFAULT_CAPTURE_TOOLS
    width: int = defaults.DEFAULT_CAPTURE_RESOLUTION[0]
    height: int = defaults.DEFAULT_CAPTURE_RESOLUTION[1]
    fps: int = defaults.DEFAULT_CAPTURE_FPS
    jpeg_quality: int = defaults.DEFAULT_JPEG_QUALITY
    max_frame_bytes: int = defaults.DEFAULT_MAX_FRAME_BYTES
    read_chunk_bytes: int = defaults.DEFAULT_READ_CHUNK_BYTES
    freshness_window_s: float = defaults.DEFAULT_FRESHNESS_WINDOW_S
    stop_timeout_s: float = defaults.DEFAULT_STOP_TIMEOUT_S
    stream_open_timeout_s: float = defaults.DEFAULT_STREAM_OPEN_TIMEOUT_S
    still_timeout_s: float = defaults.DEFAULT_STILL_TIMEOUT_S
    attempt_delay_s: float = defaults.DEFAULT_ATTEMPT_DELAY_S
    error_delay_s: float = defaults.DEFAULT_ERROR_DELAY_S
    failure_threshold: int = defaults.DEFAULT_FAILURE_THRESHOLD
    cooldown_s: float = defaults.DEFAULT_COOLDOWN_S
    verify_frames: bool = False
    work_dir: Path = field(
        default_factory=lambda: Path(tempfile.gettempdir()) / defaults.WORK_DIR_NAME
    )

    @property
    def pipe_path(self) -> Path:
        return self.work_dir / defaults.PIPE_NAME

    @property
    def script_path(self) -> Path:
        return self.work_dir / defaults.SCRIPT_NAME

    @property
    def still_path(self) -> Path:
        return self.work_dir / defaults.STILL_NAME


@dataclass(slots=True)
class MonitorSettings:
    interval_s: float = defaults.DEFAULT_MONITOR_INTERVAL_S
    debounce: int = defaults.DEFAULT_MONITOR_DEBOUNCE
    enumerate_timeout_s: float = defaults.DEFAULT_ENUMERATE_TIMEOUT_S


@dataclass(slots=True)
class LedSettings:
    pin: int = defaults.DEFAULT_LED_PIN
    chip: int = defaults.DEFAULT_GPIO_CHIP


@dataclass(slots=True)
class LoggingSettings:
    level: str = "info"
    file: Optional[Path] = None


@dataclass(slots=True)
class CamledConfig:
    capture: CaptureSettings = field(default_factory=CaptureSettings)
    monitor: MonitorSettings = field(default_factory=MonitorSettings)
    led: LedSettings = field(default_factory=LedSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    hardware: str = "auto"


# ---------------------------------------------------------------------------
# Public API


def resolve_config_path(path: Optional[Path] = None) -> Path:
    if path is not None:
        return Path(path)
    env_path = os.environ.get(CONFIG_ENV_VAR, "").strip()
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CONFIG_PATH


def load_config(
    path: Optional[Path] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    *,
    logger: LoggerLike = None,
) -> CamledConfig:
    """Build a typed config from a config file plus optional overrides."""
    config_path = resolve_config_path(path)
    raw: Dict[str, Any] = dict(get_config_manager().read_config(config_path))
    if overrides:
        raw.update({key: value for key, value in overrides.items() if value is not None})
    return config_from_mapping(raw, logger=logger)


def config_from_mapping(raw: Mapping[str, Any], *, logger: LoggerLike = None) -> CamledConfig:
    log = ensure_structured_logger(logger, fallback_name="Config")
    base = CamledConfig()

    def pick(key: str, default: Any, convert: Callable[[Any], Any]) -> Any:
        value = raw.get(key)
        if value is None or (isinstance(value, str) and not value.strip()):
            return default
        try:
            return convert(value)
        except (TypeError, ValueError):
            log.warning("Invalid value for %s: %r (using %r)", key, value, default)
            return default

    cap = base.capture
    capture = CaptureSettings(
        tools=pick("capture_tools", cap.tools, _as_tuple),
        width=pick("capture_width", cap.width, _positive(int)),
        height=pick("capture_height", cap.height, _positive(int)),
        fps=pick("capture_fps", cap.fps, _positive(int)),
        jpeg_quality=pick("jpeg_quality", cap.jpeg_quality, _bounded_int(1, 100)),
        max_frame_bytes=pick("max_frame_bytes", cap.max_frame_bytes, _positive(int)),
        read_chunk_bytes=pick("read_chunk_bytes", cap.read_chunk_bytes, _positive(int)),
        freshness_window_s=pick("freshness_window_s", cap.freshness_window_s, _positive(float)),
        stop_timeout_s=pick("stop_timeout_s", cap.stop_timeout_s, _positive(float)),
        stream_open_timeout_s=pick("stream_open_timeout_s", cap.stream_open_timeout_s, _positive(float)),
        still_timeout_s=pick("still_timeout_s", cap.still_timeout_s, _positive(float)),
        attempt_delay_s=pick("attempt_delay_s", cap.attempt_delay_s, _non_negative(float)),
        error_delay_s=pick("error_delay_s", cap.error_delay_s, _non_negative(float)),
        failure_threshold=pick("failure_threshold", cap.failure_threshold, _positive(int)),
        cooldown_s=pick("cooldown_s", cap.cooldown_s, _non_negative(float)),
        verify_frames=pick("verify_frames", cap.verify_frames, _as_bool),
        work_dir=pick("work_dir", cap.work_dir, lambda v: Path(str(v)).expanduser()),
    )
    monitor = MonitorSettings(
        interval_s=pick("monitor_interval_s", base.monitor.interval_s, _positive(float)),
        debounce=pick("monitor_debounce", base.monitor.debounce, _positive(int)),
        enumerate_timeout_s=pick(
            "monitor_enumerate_timeout_s", base.monitor.enumerate_timeout_s, _positive(float)
        ),
    )
    led = LedSettings(
        pin=pick("led_pin", base.led.pin, _bounded_int(0, 53)),
        chip=pick("gpio_chip", base.led.chip, _bounded_int(0, 16)),
    )
    logging_settings = LoggingSettings(
        level=pick("log_level", base.logging.level, _choice(LOG_LEVEL_NAMES)),
        file=pick("log_file", base.logging.file, lambda v: Path(str(v)).expanduser()),
    )
    hardware = pick("hardware", base.hardware, _choice(HARDWARE_MODES))

    return CamledConfig(
        capture=capture,
        monitor=monitor,
        led=led,
        logging=logging_settings,
        hardware=hardware,
    )


# ---------------------------------------------------------------------------
# Converters


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("true", "1", "yes", "on"):
        return True
    if text in ("false", "0", "no", "off"):
        return False
    raise ValueError(f"not a boolean: {value!r}")


def _as_tuple(value: Any) -> Tuple[str, ...]:
    if isinstance(value, (list, tuple)):
        items = [str(item).strip() for item in value]
    else:
        items = [item.strip() for item in str(value).split(",")]
    result = tuple(item for item in items if item)
    if not result:
        raise ValueError("empty tool list")
    return result


def _positive(typ: Callable[[Any], Any]) -> Callable[[Any], Any]:
    def convert(value: Any) -> Any:
        parsed = typ(value)
        if parsed <= 0:
            raise ValueError("must be positive")
        return parsed
    return convert


def _non_negative(typ: Callable[[Any], Any]) -> Callable[[Any], Any]:
    def convert(value: Any) -> Any:
        parsed = typ(value)
        if parsed < 0:
            raise ValueError("must not be negative")
        return parsed
    return convert


def _bounded_int(low: int, high: int) -> Callable[[Any], int]:
    def convert(value: Any) -> int:
        parsed = int(value)
        if not low <= parsed <= high:
            raise ValueError(f"must be within {low}..{high}")
        return parsed
    return convert


def _choice(options: Tuple[str, ...]) -> Callable[[Any], str]:
    def convert(value: Any) -> str:
        text = str(value).strip().lower()
        if text not in options:
            raise ValueError(f"expected one of {options}")
        return text
    return convert


__all__ = [
    "CONFIG_ENV_VAR",
    "CamledConfig",
    "CaptureSettings",
    "LedSettings",
    "LoggingSettings",
    "MonitorSettings",
    "config_from_mapping",
    "load_config",
    "resolve_config_path",
]
