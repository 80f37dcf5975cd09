"""
Simulated camera: writes numbered test frames to stdout as MJPEG.

Run as ``python -m camled.hardware.fake_camera``; the supervisor launches
it exactly like a real capture tool when no Raspberry Pi is present.
"""

from __future__ import annotations

import argparse
import io
import os
import sys
import time
from typing import BinaryIO, Iterator, Optional, Sequence

import numpy as np
from PIL import Image, ImageDraw

from camled.camera import defaults


def _background(width: int, height: int, phase: int) -> np.ndarray:
    x = np.linspace(0, 255, width, dtype=np.float32)
    y = np.linspace(0, 255, height, dtype=np.float32)
    red = np.broadcast_to((x + phase * 4) % 256, (height, width))
    green = np.broadcast_to(((y + phase * 2) % 256)[:, None], (height, width))
    blue = np.full((height, width), (phase * 8) % 256, dtype=np.float32)
    return np.dstack([red, green, blue]).astype(np.uint8)


def render_frame(index: int, width: int, height: int, quality: int) -> bytes:
    """One JPEG test card showing the frame number and wall-clock time."""
    image = Image.fromarray(_background(width, height, index), "RGB")
    draw = ImageDraw.Draw(image)
    draw.rectangle((8, 8, min(width - 8, 260), min(height - 8, 60)), fill=(0, 0, 0))
    draw.text((16, 16), f"camled sim #{index}", fill=(255, 255, 255))
    draw.text((16, 36), time.strftime("%H:%M:%S"), fill=(255, 255, 0))

    out = io.BytesIO()
    image.save(out, format="JPEG", quality=quality)
    return out.getvalue()


def generate_frames(
    width: int,
    height: int,
    quality: int,
    count: Optional[int] = None,
) -> Iterator[bytes]:
    index = 0
    while count is None or index < count:
        yield render_frame(index, width, height, quality)
        index += 1


def stream(
    output: BinaryIO,
    *,
    width: int,
    height: int,
    fps: float,
    quality: int,
    count: Optional[int] = None,
) -> int:
    """Write frames paced at ``fps``; returns the number written."""
    interval = 1.0 / fps if fps > 0 else 0.0
    next_due = time.monotonic()
    written = 0
    for frame in generate_frames(width, height, quality, count):
        output.write(frame)
        output.flush()
        written += 1
        next_due += interval
        delay = next_due - time.monotonic()
        if delay > 0:
            time.sleep(delay)
        else:
            next_due = time.monotonic()
    return written


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Simulated MJPEG camera (writes to stdout)")
    parser.add_argument("--width", type=int, default=defaults.DEFAULT_CAPTURE_RESOLUTION[0])
    parser.add_argument("--height", type=int, default=defaults.DEFAULT_CAPTURE_RESOLUTION[1])
    parser.add_argument("--fps", type=float, default=defaults.DEFAULT_CAPTURE_FPS)
    parser.add_argument("--quality", type=int, default=defaults.DEFAULT_JPEG_QUALITY)
    parser.add_argument("--count", type=int, default=None, help="Stop after N frames")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        stream(
            sys.stdout.buffer,
            width=args.width,
            height=args.height,
            fps=args.fps,
            quality=args.quality,
            count=args.count,
        )
    except BrokenPipeError:
        # Reader went away; keep the interpreter from flushing into the dead pipe.
        devnull = os.open(os.devnull, os.O_WRONLY)
        os.dup2(devnull, sys.stdout.fileno())
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
