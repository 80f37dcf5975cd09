"""Reader for the ``key = value`` configuration files used by camled."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Dict, Iterable, Optional

import aiofiles

from .logging_utils import get_module_logger

logger = get_module_logger("ConfigManager")


def parse_config_lines(lines: Iterable[str]) -> Dict[str, str]:
    """Parse ``key = value`` lines, ignoring blanks, comments and quotes."""
    config: Dict[str, str] = {}

    for raw_line in lines:
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue

        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip()

        if "#" in value:
            value = value.split("#", 1)[0].strip()

        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]

        if key:
            config[key] = value

    return config


class ConfigManager:

    def read_config(self, config_path: Path) -> Dict[str, str]:
        """Read a config file; a missing or unreadable file yields ``{}``."""
        if not config_path.exists():
            return {}
        try:
            with open(config_path, "r", encoding="utf-8") as fh:
                return parse_config_lines(fh)
        except OSError as exc:
            logger.error("Failed to read config %s: %s", config_path, exc)
            return {}

    async def read_config_async(self, config_path: Path) -> Dict[str, str]:
        """Async variant of :meth:`read_config` that keeps file I/O off the loop."""
        if not await asyncio.to_thread(config_path.exists):
            return {}
        try:
            async with aiofiles.open(config_path, "r", encoding="utf-8") as fh:
                content = await fh.read()
        except OSError as exc:
            logger.error("Failed to read config %s: %s", config_path, exc)
            return {}
        return parse_config_lines(content.splitlines())


_config_manager: Optional[ConfigManager] = None


def get_config_manager() -> ConfigManager:
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager


__all__ = ["ConfigManager", "get_config_manager", "parse_config_lines"]
