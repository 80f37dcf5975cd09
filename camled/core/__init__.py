"""Process-wide infrastructure: logging, asyncio helpers, config, platform."""

from .asyncio_utils import cancel_and_wait, create_logged_task, sleep_or_cancel
from .logging_config import configure_logging
from .logging_utils import StructuredLogger, ensure_structured_logger, get_module_logger
from .platform_info import PlatformInfo, get_platform_info

__all__ = [
    "PlatformInfo",
    "StructuredLogger",
    "cancel_and_wait",
    "configure_logging",
    "create_logged_task",
    "ensure_structured_logger",
    "get_module_logger",
    "get_platform_info",
    "sleep_or_cancel",
]
