"""Command lines (and wrapper scripts) for each capture tool flavor."""

from __future__ import annotations

import contextlib
import os
import shlex
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from camled.camera.prober import SIMULATED_MODULE, CaptureMode, ProbeResult
from camled.config import CaptureSettings
from camled.core.logging_utils import get_module_logger

logger = get_module_logger("Invocation")


@dataclass(frozen=True)
class Invocation:
    """What to spawn and where its frames will appear.

    ``stream_path`` is None when frames arrive on the child's stdout.
    """

    argv: Sequence[str]
    mode: CaptureMode
    stream_path: Optional[Path] = None
    script_path: Optional[Path] = None
    still_path: Optional[Path] = None

    @property
    def uses_stdout(self) -> bool:
        return self.mode is CaptureMode.STREAM

    def describe(self) -> str:
        return shlex.join(str(arg) for arg in self.argv)


def _ffmpeg_qscale(quality: int) -> int:
    # JPEG quality 1..100 onto ffmpeg's 2 (best) .. 31 (worst)
    return max(2, min(31, round(31 - (quality / 100.0) * 29)))


def _libcamera_vid_args(exe: str, settings: CaptureSettings) -> List[str]:
    return [
        exe,
        "-t", "0",
        "-n",
        "--codec", "mjpeg",
        "--width", str(settings.width),
        "--height", str(settings.height),
        "--framerate", str(settings.fps),
        "-q", str(settings.jpeg_quality),
        "--flush",
        "-o", "-",
    ]


def _libcamera_jpeg_args(exe: str, settings: CaptureSettings) -> List[str]:
    return [
        exe,
        "-o", str(settings.still_path),
        "-n",
        "-t", "100",
        "--width", str(settings.width),
        "--height", str(settings.height),
        "--quality", str(settings.jpeg_quality),
    ]


def _simulated_args(exe: str, settings: CaptureSettings) -> List[str]:
    return [
        exe,
        "-m", SIMULATED_MODULE,
        "--width", str(settings.width),
        "--height", str(settings.height),
        "--fps", str(settings.fps),
        "--quality", str(settings.jpeg_quality),
    ]


def render_raspivid_script(probe: ProbeResult, settings: CaptureSettings) -> str:
    """Shell script piping raspivid's H.264 through ffmpeg into the named pipe."""
    raspivid = shlex.quote(probe.paths["raspivid"])
    ffmpeg = shlex.quote(probe.paths["ffmpeg"])
    pipe = shlex.quote(str(settings.pipe_path))
    return "\n".join([
        "#!/bin/sh",
        "# generated by camled; removed when the capture session stops",
        "set -e",
        f"{raspivid} -t 0 -n -w {settings.width} -h {settings.height} "
        f"-fps {settings.fps} -o - \\",
        f"  | {ffmpeg} -hide_banner -loglevel error -f h264 -i - "
        f"-f mjpeg -q:v {_ffmpeg_qscale(settings.jpeg_quality)} -y {pipe}",
        "",
    ])


def build_invocation(probe: ProbeResult, settings: CaptureSettings) -> Invocation:
    """Build the invocation; SCRIPT mode also writes the script and FIFO."""
    tool = probe.tool
    exe = probe.executable
    settings.work_dir.mkdir(parents=True, exist_ok=True)

    if tool.flavor == "libcamera-vid":
        return Invocation(_libcamera_vid_args(exe, settings), CaptureMode.STREAM)

    if tool.flavor == "simulated":
        return Invocation(_simulated_args(exe, settings), CaptureMode.STREAM)

    if tool.flavor == "libcamera-jpeg":
        return Invocation(
            _libcamera_jpeg_args(exe, settings),
            CaptureMode.STILL,
            still_path=settings.still_path,
        )

    if tool.flavor == "raspivid-ffmpeg":
        script_path = settings.script_path
        script_path.write_text(render_raspivid_script(probe, settings), encoding="utf-8")
        script_path.chmod(script_path.stat().st_mode | stat.S_IXUSR)
        make_fifo(settings.pipe_path)
        return Invocation(
            ["/bin/sh", str(script_path)],
            CaptureMode.SCRIPT,
            stream_path=settings.pipe_path,
            script_path=script_path,
        )

    raise ValueError(f"No invocation for capture tool flavor {tool.flavor!r}")


def make_fifo(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with contextlib.suppress(FileNotFoundError):
        path.unlink()
    os.mkfifo(path, 0o600)


def unblock_fifo(path: Path) -> None:
    """Release a reader stuck opening ``path`` by briefly opening the write end."""
    try:
        fd = os.open(path, os.O_WRONLY | os.O_NONBLOCK)
    except OSError:
        # ENXIO: no reader waiting; ENOENT: already gone
        return
    os.close(fd)


def remove_artifacts(settings: CaptureSettings) -> None:
    """Delete pipe, script and still-image leftovers from a previous session."""
    for path in (settings.pipe_path, settings.script_path, settings.still_path):
        try:
            path.unlink()
        except FileNotFoundError:
            continue
        except OSError as exc:
            logger.warning("Could not remove %s: %s", path, exc)
        else:
            logger.debug("Removed stale artifact %s", path)


__all__ = [
    "Invocation",
    "build_invocation",
    "make_fifo",
    "remove_artifacts",
    "render_raspivid_script",
    "unblock_fifo",
]
