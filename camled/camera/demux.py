"""
MJPEG demultiplexer.

An MJPEG stream is a plain concatenation of JPEG images with no container
framing, so frames are recovered by scanning for each image's
start-of-image (``FF D8``) and end-of-image (``FF D9``) markers.

``MjpegDemuxer`` is the incremental, I/O-free parser; ``iter_frames`` and
``iter_file_frames`` drive it from an async byte source (process stdout,
named pipe or regular file) and yield complete frames lazily.
"""

from __future__ import annotations

import asyncio
import contextlib
import io
from pathlib import Path
from typing import Any, AsyncIterator, Callable, List, Optional, Protocol

import aiofiles
from PIL import Image, UnidentifiedImageError

from camled.camera.defaults import DEFAULT_MAX_FRAME_BYTES, DEFAULT_READ_CHUNK_BYTES
from camled.camera.errors import FrameDecodeError, StreamOpenError
from camled.core.logging_utils import LoggerLike, ensure_structured_logger

SOI = b"\xff\xd8"
EOI = b"\xff\xd9"

FrameValidator = Callable[[bytes], None]


class ByteSource(Protocol):
    async def read(self, n: int = -1) -> bytes: ...


class MjpegDemuxer:
    """Incremental SOI/EOI scanner.

    Feed arbitrary chunks; complete frames (both markers included) come out
    in order. Memory stays bounded: outside a frame at most one byte is
    retained (a possible split marker), inside a frame the accumulator is
    dropped once it exceeds ``max_frame_bytes``.
    """

    def __init__(self, max_frame_bytes: int = DEFAULT_MAX_FRAME_BYTES) -> None:
        if max_frame_bytes < len(SOI) + len(EOI):
            raise ValueError("max_frame_bytes too small to hold a frame")
        self.max_frame_bytes = max_frame_bytes
        self._buffer = bytearray()
        self._in_frame = False
        self._scan_from = 0
        self.frames_emitted = 0
        self.frames_dropped = 0
        self.bytes_discarded = 0

    @property
    def in_frame(self) -> bool:
        return self._in_frame

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def reset(self) -> None:
        self._buffer.clear()
        self._in_frame = False
        self._scan_from = 0

    def feed(self, chunk: bytes) -> List[bytes]:
        frames: List[bytes] = []
        if not chunk:
            return frames

        self._buffer += chunk

        while True:
            if not self._in_frame:
                start = self._buffer.find(SOI)
                if start < 0:
                    # A trailing 0xFF may be the first half of a split SOI.
                    keep = 1 if self._buffer.endswith(SOI[:1]) else 0
                    self._discard(len(self._buffer) - keep)
                    break
                self._discard(start)
                self._in_frame = True
                self._scan_from = len(SOI)

            end = self._buffer.find(EOI, self._scan_from)
            if end < 0:
                if len(self._buffer) > self.max_frame_bytes:
                    self._drop_oversized()
                    continue
                # Step back one byte so an EOI split across chunks is found.
                self._scan_from = max(len(SOI), len(self._buffer) - 1)
                break

            frame_end = end + len(EOI)
            if frame_end > self.max_frame_bytes:
                self._drop_oversized(frame_end)
                continue

            frames.append(bytes(self._buffer[:frame_end]))
            del self._buffer[:frame_end]
            self._in_frame = False
            self._scan_from = 0
            self.frames_emitted += 1

        return frames

    def _discard(self, count: int) -> None:
        if count > 0:
            del self._buffer[:count]
            self.bytes_discarded += count

    def _drop_oversized(self, frame_end: Optional[int] = None) -> None:
        """Abandon the current frame and resync on the latest SOI, if any."""
        limit = len(self._buffer) if frame_end is None else frame_end
        restart = self._buffer.rfind(SOI, len(SOI), limit)
        if restart > 0:
            self._discard(restart)
        elif frame_end is None:
            keep = 1 if self._buffer.endswith(SOI[:1]) else 0
            self._discard(len(self._buffer) - keep)
        else:
            self._discard(frame_end)
        self._in_frame = False
        self._scan_from = 0
        self.frames_dropped += 1


def verify_jpeg(data: bytes) -> None:
    """Structural JPEG check without decoding pixels.

    Raises:
        FrameDecodeError: if Pillow cannot parse the image headers.
    """
    try:
        with Image.open(io.BytesIO(data)) as image:
            if image.format != "JPEG":
                raise FrameDecodeError(f"unexpected image format {image.format!r}")
            image.verify()
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as exc:
        raise FrameDecodeError(str(exc)) from exc


async def _read_or_cancel(source: ByteSource, size: int, cancel: Optional[asyncio.Event]) -> Optional[bytes]:
    """Read from ``source`` unless ``cancel`` fires first (returns None then)."""
    if cancel is None:
        return await source.read(size)
    if cancel.is_set():
        return None

    read_task = asyncio.ensure_future(source.read(size))
    cancel_task = asyncio.ensure_future(cancel.wait())
    try:
        await asyncio.wait({read_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        cancel_task.cancel()
        if not read_task.done():
            read_task.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await read_task

    if read_task.cancelled():
        return None
    return read_task.result()


async def iter_frames(
    source: ByteSource,
    *,
    cancel: Optional[asyncio.Event] = None,
    chunk_size: int = DEFAULT_READ_CHUNK_BYTES,
    max_frame_bytes: int = DEFAULT_MAX_FRAME_BYTES,
    validator: Optional[FrameValidator] = None,
    demuxer: Optional[MjpegDemuxer] = None,
    logger: LoggerLike = None,
) -> AsyncIterator[bytes]:
    """Yield complete JPEG frames read from ``source``.

    Ends at end-of-stream or when ``cancel`` is set. Frames rejected by
    ``validator`` are logged and skipped. Read errors propagate.
    """
    log = ensure_structured_logger(logger, fallback_name="Demux")
    parser = demuxer or MjpegDemuxer(max_frame_bytes)
    dropped_seen = parser.frames_dropped

    while True:
        chunk = await _read_or_cancel(source, chunk_size, cancel)
        if not chunk:
            if chunk is not None and parser.in_frame:
                log.debug("Stream ended inside a frame (%d bytes discarded)", parser.buffered)
            return

        for frame in parser.feed(chunk):
            if cancel is not None and cancel.is_set():
                return
            if validator is not None:
                try:
                    validator(frame)
                except FrameDecodeError as exc:
                    log.warning("Skipping malformed frame (%d bytes): %s", len(frame), exc)
                    continue
            yield frame

        if parser.frames_dropped != dropped_seen:
            log.warning(
                "Discarded %d oversized/unterminated frame(s) (limit %d bytes)",
                parser.frames_dropped - dropped_seen,
                parser.max_frame_bytes,
            )
            dropped_seen = parser.frames_dropped


async def open_stream(path: Path, timeout: Optional[float] = None) -> Any:
    """Open a file or named pipe for binary reading without blocking the loop.

    Opening a FIFO blocks until a writer connects, hence the timeout. The
    reader is unbuffered so each read returns whatever the writer has
    flushed instead of waiting for a full chunk.

    Raises:
        StreamOpenError: if the path cannot be opened in time.
    """
    try:
        return await asyncio.wait_for(aiofiles.open(path, "rb", buffering=0), timeout)
    except asyncio.TimeoutError as exc:
        raise StreamOpenError(f"timed out opening {path}") from exc
    except OSError as exc:
        raise StreamOpenError(f"cannot open {path}: {exc}") from exc


async def iter_file_frames(
    path: Path,
    *,
    open_timeout: Optional[float] = None,
    **kwargs: Any,
) -> AsyncIterator[bytes]:
    """Open ``path`` and yield its frames; see :func:`iter_frames` for kwargs."""
    stream = await open_stream(path, open_timeout)
    try:
        async for frame in iter_frames(stream, **kwargs):
            yield frame
    finally:
        await stream.close()


__all__ = [
    "EOI",
    "SOI",
    "ByteSource",
    "FrameValidator",
    "MjpegDemuxer",
    "iter_file_frames",
    "iter_frames",
    "open_stream",
    "verify_jpeg",
]
