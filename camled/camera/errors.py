"""Capture failure taxonomy and the outcomes reported to callers."""

from __future__ import annotations

from enum import Enum


class CaptureOutcome(Enum):
    """Result of a start request or the reason a session ended."""

    STARTED = "started"
    ALREADY_RUNNING = "already_running"
    TOOL_NOT_FOUND = "tool_not_found"
    PROCESS_START_FAILURE = "process_start_failure"
    STREAM_OPEN_FAILURE = "stream_open_failure"
    UNEXPECTED_EXIT = "unexpected_exit"
    COOLING_DOWN = "cooling_down"
    CAMERA_UNAVAILABLE = "camera_unavailable"
    STOPPED = "stopped"

    @property
    def is_failure(self) -> bool:
        return self in _FAILURES

    @property
    def camera_missing(self) -> bool:
        """True when the UI should say "no camera" rather than "camera error"."""
        return self in (
            CaptureOutcome.TOOL_NOT_FOUND,
            CaptureOutcome.STREAM_OPEN_FAILURE,
            CaptureOutcome.CAMERA_UNAVAILABLE,
        )


_FAILURES = frozenset({
    CaptureOutcome.TOOL_NOT_FOUND,
    CaptureOutcome.CAMERA_UNAVAILABLE,
    CaptureOutcome.PROCESS_START_FAILURE,
    CaptureOutcome.STREAM_OPEN_FAILURE,
    CaptureOutcome.UNEXPECTED_EXIT,
})


class CaptureError(Exception):
    """Base class for recoverable capture failures."""

    outcome = CaptureOutcome.UNEXPECTED_EXIT


class ToolNotFound(CaptureError):
    outcome = CaptureOutcome.TOOL_NOT_FOUND


class ProcessStartFailure(CaptureError):
    outcome = CaptureOutcome.PROCESS_START_FAILURE


class StreamOpenError(CaptureError):
    outcome = CaptureOutcome.STREAM_OPEN_FAILURE


class FrameDecodeError(CaptureError):
    """A single frame failed verification; the stream continues."""


class ProcessTimeout(CaptureError):
    """A still-capture attempt ran past its time bound and was killed."""


class UnexpectedExit(CaptureError):
    outcome = CaptureOutcome.UNEXPECTED_EXIT

    def __init__(self, returncode: int | None, detail: str = "") -> None:
        self.returncode = returncode
        message = f"capture process exited unexpectedly (code={returncode})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


__all__ = [
    "CaptureError",
    "CaptureOutcome",
    "FrameDecodeError",
    "ProcessStartFailure",
    "ProcessTimeout",
    "StreamOpenError",
    "ToolNotFound",
    "UnexpectedExit",
]
