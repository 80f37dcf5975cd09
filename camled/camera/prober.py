"""Detection of the installed capture executable."""

from __future__ import annotations

import shutil
import sys
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, Mapping, Optional, Tuple

from camled.camera import defaults
from camled.core.logging_utils import get_module_logger

logger = get_module_logger("CommandProber")

WhichFn = Callable[[str], Optional[str]]


class CaptureMode(Enum):
    STREAM = "stream"   # tool writes MJPEG to stdout
    SCRIPT = "script"   # shell script pipes tool -> transcoder into a named pipe
    STILL = "still"     # one JPEG per invocation


@dataclass(frozen=True)
class CaptureTool:
    """Static description of a capture executable.

    Attributes:
        name: Executable name looked up on ``PATH``.
        mode: How the tool delivers frames.
        flavor: Selects the argument layout in ``invocation``.
        requires: Other executables that must also be present.
        kill_patterns: Process-name patterns for stray-process cleanup.
        executable: Fixed executable path; skips the ``PATH`` lookup.
    """

    name: str
    mode: CaptureMode
    flavor: str
    requires: Tuple[str, ...] = ()
    kill_patterns: Tuple[str, ...] = ()
    executable: Optional[str] = None

    @property
    def patterns(self) -> Tuple[str, ...]:
        return self.kill_patterns or (self.name, *self.requires)


SIMULATED_TOOL_NAME = "camled-sim"
SIMULATED_MODULE = "camled.hardware.fake_camera"

CAPTURE_TOOLS: Dict[str, CaptureTool] = {
    tool.name: tool
    for tool in (
        CaptureTool("rpicam-vid", CaptureMode.STREAM, "libcamera-vid"),
        CaptureTool("libcamera-vid", CaptureMode.STREAM, "libcamera-vid"),
        CaptureTool(
            "raspivid",
            CaptureMode.SCRIPT,
            "raspivid-ffmpeg",
            requires=("ffmpeg",),
            kill_patterns=("raspivid", defaults.SCRIPT_NAME, defaults.PIPE_NAME),
        ),
        CaptureTool("rpicam-jpeg", CaptureMode.STILL, "libcamera-jpeg"),
        CaptureTool("libcamera-jpeg", CaptureMode.STILL, "libcamera-jpeg"),
        CaptureTool("rpicam-still", CaptureMode.STILL, "libcamera-jpeg"),
        CaptureTool("libcamera-still", CaptureMode.STILL, "libcamera-jpeg"),
    )
}

SIMULATED_TOOL = CaptureTool(
    SIMULATED_TOOL_NAME,
    CaptureMode.STREAM,
    "simulated",
    kill_patterns=(SIMULATED_MODULE,),
    executable=sys.executable,
)


@dataclass(frozen=True)
class ProbeResult:
    tool: CaptureTool
    paths: Mapping[str, str] = field(default_factory=dict)

    @property
    def executable(self) -> str:
        return self.paths[self.tool.name]


class CommandProber:
    """Reports the first candidate tool whose executables are all installed.

    The prober holds no cache of its own; the supervisor probes once per
    session start because cameras and packages can change between runs.
    """

    def __init__(
        self,
        candidates: Iterable[str],
        *,
        registry: Optional[Mapping[str, CaptureTool]] = None,
        which: WhichFn = shutil.which,
    ) -> None:
        self.candidates: Tuple[str, ...] = tuple(candidates)
        self._registry: Mapping[str, CaptureTool] = registry if registry is not None else CAPTURE_TOOLS
        self._which = which

    def probe(self) -> Optional[ProbeResult]:
        for name in self.candidates:
            tool = self._registry.get(name)
            if tool is None:
                logger.warning("Unknown capture tool in preference list: %s", name)
                continue

            paths = self._resolve(tool)
            if paths is not None:
                logger.debug("Capture tool selected: %s (%s)", tool.name, tool.mode.value)
                return ProbeResult(tool=tool, paths=paths)

        logger.info("No capture tool available (tried %s)", ", ".join(self.candidates) or "nothing")
        return None

    def kill_patterns(self) -> Tuple[str, ...]:
        """Process patterns of every known candidate, for stray-process cleanup."""
        patterns: Dict[str, None] = {}
        for name in self.candidates:
            tool = self._registry.get(name)
            if tool is not None:
                patterns.update(dict.fromkeys(tool.patterns))
        return tuple(patterns)

    def is_installed(self, name: str) -> bool:
        return self._which(name) is not None

    def _resolve(self, tool: CaptureTool) -> Optional[Dict[str, str]]:
        primary = tool.executable or self._which(tool.name)
        if not primary:
            return None

        paths = {tool.name: primary}
        for dependency in tool.requires:
            found = self._which(dependency)
            if not found:
                logger.debug("%s present but %s missing", tool.name, dependency)
                return None
            paths[dependency] = found
        return paths


__all__ = [
    "CAPTURE_TOOLS",
    "CaptureMode",
    "CaptureTool",
    "CommandProber",
    "ProbeResult",
    "SIMULATED_MODULE",
    "SIMULATED_TOOL",
    "SIMULATED_TOOL_NAME",
]
