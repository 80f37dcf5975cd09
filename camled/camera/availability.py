"""
Camera availability monitor.

Polls independently of capture state: a camera counts as available when a
capture tool is installed and, if an enumeration tool exists, that tool
lists at least one camera. Observed changes are debounced before they are
applied. Losing the camera while capture runs stops the capture; regaining
it never restarts capture on its own.
"""

from __future__ import annotations

import asyncio
import re
import shutil
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, Optional, Sequence, Tuple

from camled.camera.defaults import (
    DEFAULT_ENUMERATE_TIMEOUT_S,
    DEFAULT_MONITOR_DEBOUNCE,
    DEFAULT_MONITOR_INTERVAL_S,
)
from camled.camera.prober import CommandProber
from camled.core.asyncio_utils import cancel_and_wait, create_logged_task
from camled.core.logging_utils import LoggerLike, ensure_structured_logger

if TYPE_CHECKING:
    from camled.camera.supervisor import CaptureSupervisor

StateChangedCallback = Callable[["HardwareState", "HardwareState"], Awaitable[None]]

_CAMERA_INDEX_LINE = re.compile(r"^\s*\d+\s*:\s*\S+")
_V4L2_SKIP = ("bcm2835-codec", "bcm2835-isp", "rpi-hevc", "pispbe", "rpivid")


class HardwareState(Enum):
    UNKNOWN = "unknown"
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"


def count_libcamera_cameras(output: str) -> int:
    """Count ``N : sensor ...`` lines from ``*-hello --list-cameras``."""
    if "No cameras available" in output:
        return 0
    return sum(1 for line in output.splitlines() if _CAMERA_INDEX_LINE.match(line))


def count_v4l2_cameras(output: str) -> int:
    """Count device groups from ``v4l2-ctl --list-devices``, ignoring codec/ISP nodes."""
    count = 0
    header: Optional[str] = None
    counted = False
    for line in output.splitlines():
        if not line.strip():
            header, counted = None, False
            continue
        if not line[0].isspace():
            header, counted = line.strip(), False
            continue
        if header is None or counted or "/dev/video" not in line:
            continue
        if any(tag in header for tag in _V4L2_SKIP):
            continue
        count += 1
        counted = True
    return count


@dataclass(frozen=True)
class CameraEnumerator:
    name: str
    args: Tuple[str, ...]
    parse: Callable[[str], int]


ENUMERATORS: Tuple[CameraEnumerator, ...] = (
    CameraEnumerator("rpicam-hello", ("--list-cameras",), count_libcamera_cameras),
    CameraEnumerator("libcamera-hello", ("--list-cameras",), count_libcamera_cameras),
    CameraEnumerator("v4l2-ctl", ("--list-devices",), count_v4l2_cameras),
)


class AvailabilityMonitor:
    """
    Periodic, debounced camera presence check.

    ``state`` starts ``UNKNOWN``. The first observation applies immediately;
    after that a different observation must repeat ``debounce`` times in a
    row before the state changes.
    """

    def __init__(
        self,
        prober: CommandProber,
        supervisor: Optional["CaptureSupervisor"] = None,
        *,
        interval_s: float = DEFAULT_MONITOR_INTERVAL_S,
        debounce: int = DEFAULT_MONITOR_DEBOUNCE,
        enumerate_timeout_s: float = DEFAULT_ENUMERATE_TIMEOUT_S,
        enumerators: Sequence[CameraEnumerator] = ENUMERATORS,
        on_change: Optional[StateChangedCallback] = None,
        logger: LoggerLike = None,
    ) -> None:
        self.prober = prober
        self.supervisor = supervisor
        self.interval_s = interval_s
        self.debounce = max(1, debounce)
        self.enumerate_timeout_s = enumerate_timeout_s
        self.enumerators = tuple(enumerators)
        self.on_change = on_change
        self.logger = ensure_structured_logger(logger, fallback_name="Availability")

        self._state = HardwareState.UNKNOWN
        self._pending: Optional[HardwareState] = None
        self._pending_count = 0
        self._override: Optional[bool] = None
        self._task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def state(self) -> HardwareState:
        return self._state

    @property
    def is_available(self) -> bool:
        return self._state is HardwareState.AVAILABLE

    @property
    def is_running(self) -> bool:
        return self._running

    def set_override(self, available: Optional[bool]) -> None:
        """Force observations to ``available`` (None restores real probing)."""
        self._override = available

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        await self.check_now()
        self._task = create_logged_task(
            self._poll_loop(), logger=self.logger, context="availability-poll"
        )
        self.logger.info("Availability monitor started (every %.1fs)", self.interval_s)

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        await cancel_and_wait(self._task)
        self._task = None
        self.logger.info("Availability monitor stopped")

    async def check_now(self) -> HardwareState:
        """Take one observation and feed it through the debounce."""
        observed = await self.observe()
        await self._apply(observed)
        return self._state

    async def observe(self) -> HardwareState:
        if self._override is not None:
            return HardwareState.AVAILABLE if self._override else HardwareState.UNAVAILABLE

        probe = await asyncio.to_thread(self.prober.probe)
        if probe is None:
            return HardwareState.UNAVAILABLE

        for enumerator in self.enumerators:
            path = await asyncio.to_thread(shutil.which, enumerator.name)
            if path is None:
                continue
            count = await self._enumerate(enumerator, path)
            if count is None:
                # Enumerator broken or hung; fall back to tool presence.
                break
            return HardwareState.AVAILABLE if count > 0 else HardwareState.UNAVAILABLE

        return HardwareState.AVAILABLE

    async def _enumerate(self, enumerator: CameraEnumerator, path: str) -> Optional[int]:
        try:
            process = await asyncio.create_subprocess_exec(
                path,
                *enumerator.args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as exc:
            self.logger.debug("Cannot run %s: %s", enumerator.name, exc)
            return None

        try:
            output, _ = await asyncio.wait_for(process.communicate(), self.enumerate_timeout_s)
        except asyncio.TimeoutError:
            self.logger.warning("%s timed out after %.1fs", enumerator.name, self.enumerate_timeout_s)
            if process.returncode is None:
                process.kill()
                await process.wait()
            return None

        count = enumerator.parse(output.decode(errors="replace"))
        self.logger.debug("%s reports %d camera(s)", enumerator.name, count)
        return count

    async def _apply(self, observed: HardwareState) -> None:
        if self._state is HardwareState.UNKNOWN:
            await self._transition(observed)
            return

        if observed is self._state:
            self._pending = None
            self._pending_count = 0
            return

        if observed is self._pending:
            self._pending_count += 1
        else:
            self._pending = observed
            self._pending_count = 1

        if self._pending_count >= self.debounce:
            await self._transition(observed)

    async def _transition(self, new_state: HardwareState) -> None:
        old_state = self._state
        self._state = new_state
        self._pending = None
        self._pending_count = 0
        if old_state is new_state:
            return

        self.logger.info("Camera %s -> %s", old_state.value, new_state.value)

        if new_state is HardwareState.UNAVAILABLE and self.supervisor is not None and self.supervisor.is_running:
            self.logger.warning("Camera lost while capturing; stopping capture")
            await self.supervisor.stop()

        if self.on_change is not None:
            try:
                await self.on_change(old_state, new_state)
            except Exception as exc:
                self.logger.error("Error in availability callback: %s", exc)

    async def _poll_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.interval_s)
            try:
                await self.check_now()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self.logger.error("Availability check failed: %s", exc)


__all__ = [
    "AvailabilityMonitor",
    "CameraEnumerator",
    "ENUMERATORS",
    "HardwareState",
    "count_libcamera_cameras",
    "count_v4l2_cameras",
]
