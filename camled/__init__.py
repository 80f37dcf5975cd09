"""Camera feed + LED control core for Raspberry Pi demos."""

from __future__ import annotations

from importlib import metadata
from typing import Optional, Sequence

try:
    __version__ = metadata.version("camled")
except metadata.PackageNotFoundError:  # pragma: no cover - local dev
    __version__ = "0.0.0"


def run(argv: Optional[Sequence[str]] = None) -> None:
    """Run the headless demo."""
    from .app.demo import cli

    cli(argv)


__all__ = ["__version__", "run"]
