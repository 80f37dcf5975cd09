from __future__ import annotations

import argparse
import logging
from pathlib import Path

from camled.config import HARDWARE_MODES


LOG_LEVELS: dict[str, int] = {
    "critical": logging.CRITICAL,
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


def add_common_cli_arguments(
    parser: argparse.ArgumentParser,
    *,
    include_config: bool = True,
    include_hardware: bool = True,
) -> None:
    parser.add_argument(
        "--log-level",
        choices=sorted(LOG_LEVELS.keys()),
        default=None,
        help="Logging verbosity (default: from config, else info)",
    )

    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Optional path for a rotating log file",
    )

    if include_config:
        parser.add_argument(
            "--config",
            type=Path,
            default=None,
            help="Configuration file (default: $CAMLED_CONFIG or the bundled config.txt)",
        )

    if include_hardware:
        parser.add_argument(
            "--hardware",
            choices=HARDWARE_MODES,
            default=None,
            help="Use real Raspberry Pi hardware, the simulator, or detect automatically",
        )


def _positive_number(value: str, typ: type, name: str):
    try:
        parsed = typ(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Value must be a {name}") from exc
    if parsed <= 0:
        raise argparse.ArgumentTypeError("Value must be positive")
    return parsed


def positive_float(value: str) -> float:
    return _positive_number(value, float, "number")


def non_negative_int(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("Value must be an integer") from exc
    if parsed < 0:
        raise argparse.ArgumentTypeError("Value must not be negative")
    return parsed


__all__ = [
    "LOG_LEVELS",
    "add_common_cli_arguments",
    "non_negative_int",
    "positive_float",
]
