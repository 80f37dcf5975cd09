"""
Single-slot, thread-safe store for the most recent camera frame.

Design:
- One writer (the capture session) calls ``publish()``
- Any number of readers (UI polling, HTTP handlers, threads) call ``try_read()``
- The slot holds an immutable ``FrameBuffer``; publishing swaps the
  reference under a lock, so a reader gets either the old frame or the new
  one, never a mix.

Usage:
    cache = LatestFrameCache()

    # Writer (capture session)
    cache.publish(jpeg_bytes)

    # Reader
    frame = cache.try_read(freshness_window=2.0)
    if frame:
        show(frame.data)
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from camled.camera.defaults import DEFAULT_FRESHNESS_WINDOW_S

Clock = Callable[[], float]


@dataclass(frozen=True, slots=True)
class FrameBuffer:
    """One complete encoded JPEG image."""

    data: bytes
    timestamp: float  # cache clock (monotonic) at publish time
    sequence: int

    def __len__(self) -> int:
        return len(self.data)

    def age(self, now: float) -> float:
        return now - self.timestamp


class LatestFrameCache:

    def __init__(
        self,
        freshness_window: float = DEFAULT_FRESHNESS_WINDOW_S,
        clock: Clock = time.monotonic,
    ) -> None:
        self.freshness_window = freshness_window
        self._clock = clock
        self._lock = threading.Lock()
        self._frame: Optional[FrameBuffer] = None
        self._sequence = 0

        self._published = 0
        self._served = 0
        self._stale = 0

    def publish(self, data: bytes, timestamp: Optional[float] = None) -> FrameBuffer:
        """Replace the held frame. The previous frame is released."""
        payload = bytes(data)
        stamp = self._clock() if timestamp is None else timestamp
        with self._lock:
            self._sequence += 1
            frame = FrameBuffer(data=payload, timestamp=stamp, sequence=self._sequence)
            self._frame = frame
            self._published += 1
        return frame

    def try_read(self, freshness_window: Optional[float] = None) -> Optional[FrameBuffer]:
        """Return the held frame if it is younger than the freshness window."""
        window = self.freshness_window if freshness_window is None else freshness_window
        with self._lock:
            frame = self._frame
            if frame is None:
                return None
            if frame.age(self._clock()) > window:
                self._stale += 1
                return None
            self._served += 1
        return frame

    def clear(self) -> None:
        with self._lock:
            self._frame = None

    @property
    def last_updated(self) -> Optional[float]:
        with self._lock:
            return self._frame.timestamp if self._frame is not None else None

    @property
    def is_empty(self) -> bool:
        with self._lock:
            return self._frame is None

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            frame = self._frame
            return {
                "frames_published": self._published,
                "reads_served": self._served,
                "stale_reads": self._stale,
                "sequence": frame.sequence if frame else None,
                "frame_bytes": len(frame.data) if frame else 0,
                "frame_age": frame.age(self._clock()) if frame else None,
            }


__all__ = ["FrameBuffer", "LatestFrameCache"]
