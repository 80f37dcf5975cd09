"""
Capture process supervisor.

Owns at most one ``CaptureSession``: the child capture process, the
session's cancellation event and the task that pumps the child's MJPEG
output through the demultiplexer into the ``LatestFrameCache``.

State machine::

    STOPPED -> STARTING -> RUNNING -> STOPPING -> STOPPED
                   \\            \\
                    FAILED ------+--> STOPPED
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import signal
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, Iterable, Optional

import aiofiles

from camled.camera.demux import MjpegDemuxer, iter_file_frames, iter_frames, verify_jpeg
from camled.camera.errors import (
    CaptureError,
    CaptureOutcome,
    FrameDecodeError,
    ProcessStartFailure,
    ProcessTimeout,
    ToolNotFound,
    UnexpectedExit,
)
from camled.camera.frame_cache import LatestFrameCache
from camled.camera.invocation import Invocation, build_invocation, remove_artifacts, unblock_fifo
from camled.camera.prober import CaptureMode, CommandProber, ProbeResult
from camled.config import CaptureSettings
from camled.core import process_cleanup
from camled.core.asyncio_utils import cancel_and_wait, create_logged_task, sleep_or_cancel
from camled.core.logging_utils import LoggerLike, ensure_structured_logger

KillFn = Callable[[Iterable[str], float], int]

STDERR_TAIL_LINES = 20
_CANCELLED = object()


class CaptureState(Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    FAILED = "failed"


@dataclass(eq=False)
class CaptureSession:
    probe: ProbeResult
    invocation: Invocation
    started_at: float
    cancel: asyncio.Event = field(default_factory=asyncio.Event)
    process: Optional[asyncio.subprocess.Process] = None
    task: Optional[asyncio.Task] = None
    watchdog_task: Optional[asyncio.Task] = None
    stderr_task: Optional[asyncio.Task] = None
    stderr_tail: Deque[str] = field(default_factory=lambda: deque(maxlen=STDERR_TAIL_LINES))
    frames: int = 0
    outcome: Optional[CaptureOutcome] = None

    @property
    def tool_name(self) -> str:
        return self.probe.tool.name


class CaptureSupervisor:

    def __init__(
        self,
        settings: CaptureSettings,
        cache: LatestFrameCache,
        prober: CommandProber,
        *,
        kill_processes: KillFn = process_cleanup.kill_processes,
        camera_gate: Optional[Callable[[], bool]] = None,
        clock: Callable[[], float] = time.monotonic,
        logger: LoggerLike = None,
    ) -> None:
        self.settings = settings
        self.cache = cache
        self.prober = prober
        self._kill_processes = kill_processes
        self._camera_gate = camera_gate
        self._clock = clock
        self.logger = ensure_structured_logger(logger, fallback_name="Supervisor")

        self._lock = asyncio.Lock()
        self._state = CaptureState.STOPPED
        self._session: Optional[CaptureSession] = None
        self._last_outcome: Optional[CaptureOutcome] = None
        self._consecutive_failures = 0
        self._last_failure_at: Optional[float] = None
        self._background: set[asyncio.Task] = set()

        self._sessions_started = 0
        self._frames_total = 0

    # ------------------------------------------------------------------
    # Public API

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is CaptureState.RUNNING

    @property
    def session(self) -> Optional[CaptureSession]:
        return self._session

    @property
    def last_outcome(self) -> Optional[CaptureOutcome]:
        return self._last_outcome

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def cooldown_remaining(self) -> float:
        if self._consecutive_failures < self.settings.failure_threshold or self._last_failure_at is None:
            return 0.0
        elapsed = self._clock() - self._last_failure_at
        return max(0.0, self.settings.cooldown_s - elapsed)

    async def start(self) -> CaptureOutcome:
        """Start a capture session; never raises for capture faults."""
        async with self._lock:
            if self._state in (CaptureState.STARTING, CaptureState.RUNNING):
                self.logger.debug("Start ignored - capture already %s", self._state.value)
                return CaptureOutcome.ALREADY_RUNNING

            if self._camera_gate is not None and not self._camera_gate():
                self.logger.warning("Start refused - camera reported unavailable")
                self._last_outcome = CaptureOutcome.CAMERA_UNAVAILABLE
                return CaptureOutcome.CAMERA_UNAVAILABLE

            remaining = self.cooldown_remaining()
            if remaining > 0:
                self.logger.warning(
                    "Start refused - cooling down %.1fs after %d consecutive failures",
                    remaining,
                    self._consecutive_failures,
                )
                self._last_outcome = CaptureOutcome.COOLING_DOWN
                return CaptureOutcome.COOLING_DOWN

            self._set_state(CaptureState.STARTING)
            session: Optional[CaptureSession] = None
            try:
                await asyncio.to_thread(self._clean_host, self.prober.kill_patterns())

                probe = await asyncio.to_thread(self.prober.probe)
                if probe is None:
                    raise ToolNotFound("no capture executable installed")

                invocation = await asyncio.to_thread(build_invocation, probe, self.settings)
                session = CaptureSession(probe=probe, invocation=invocation, started_at=self._clock())

                if invocation.mode is not CaptureMode.STILL:
                    await self._spawn(session)
                    session.watchdog_task = create_logged_task(
                        self._watch_process(session),
                        logger=self.logger,
                        context=f"capture-watchdog:{session.tool_name}",
                    )
            except CaptureError as exc:
                return await self._fail_start(exc, session)
            except OSError as exc:
                return await self._fail_start(ProcessStartFailure(str(exc)), session)

            self._session = session
            self._sessions_started += 1
            session.task = create_logged_task(
                self._run_session(session),
                logger=self.logger,
                context=f"capture-session:{session.tool_name}",
            )
            self._set_state(CaptureState.RUNNING)
            self._last_outcome = CaptureOutcome.STARTED
            self.logger.info(
                "Capture started with %s (%s mode)",
                session.tool_name,
                invocation.mode.value,
            )
            return CaptureOutcome.STARTED

    async def stop(self) -> None:
        """Stop the active session. Safe to call repeatedly."""
        async with self._lock:
            session = self._session
            if session is None:
                self.cache.clear()
                self._set_state(CaptureState.STOPPED)
                return

            self._set_state(CaptureState.STOPPING)
            try:
                await self._teardown(session)
            finally:
                self._session = None
                self.cache.clear()
                self._last_outcome = CaptureOutcome.STOPPED
                self._set_state(CaptureState.STOPPED)
                self.logger.info("Capture stopped (%d frames this session)", session.frames)

    def check_health(self) -> bool:
        """Report whether the session is alive, flagging a dead child process."""
        session = self._session
        if session is None or self._state is not CaptureState.RUNNING:
            return False
        process = session.process
        if (
            session.invocation.mode is not CaptureMode.STILL
            and process is not None
            and process.returncode is not None
            and not session.cancel.is_set()
        ):
            if not _in_event_loop():
                return False
            self._session_failed(
                session,
                CaptureOutcome.UNEXPECTED_EXIT,
                UnexpectedExit(process.returncode, self._stderr_summary(session)),
            )
            return False
        return session.outcome is None

    async def shutdown(self) -> None:
        await self.stop()
        for task in list(self._background):
            await cancel_and_wait(task, timeout=self.settings.stop_timeout_s)

    def get_stats(self) -> Dict[str, Any]:
        session = self._session
        return {
            "state": self._state.value,
            "tool": session.tool_name if session else None,
            "mode": session.invocation.mode.value if session else None,
            "pid": session.process.pid if session and session.process else None,
            "session_frames": session.frames if session else 0,
            "frames_total": self._frames_total,
            "sessions_started": self._sessions_started,
            "consecutive_failures": self._consecutive_failures,
            "cooldown_remaining": self.cooldown_remaining(),
            "last_outcome": self._last_outcome.value if self._last_outcome else None,
        }

    # ------------------------------------------------------------------
    # Session pipeline

    async def _run_session(self, session: CaptureSession) -> None:
        try:
            if session.invocation.mode is CaptureMode.STILL:
                await self._run_still_loop(session)
            else:
                await self._pump_stream(session)
        except asyncio.CancelledError:
            raise
        except CaptureError as exc:
            self._session_failed(session, exc.outcome, exc)
        except Exception as exc:
            self.logger.exception("Capture session crashed: %s", exc)
            self._session_failed(session, CaptureOutcome.UNEXPECTED_EXIT, exc)

    async def _pump_stream(self, session: CaptureSession) -> None:
        invocation = session.invocation
        options = dict(
            cancel=session.cancel,
            chunk_size=self.settings.read_chunk_bytes,
            max_frame_bytes=self.settings.max_frame_bytes,
            validator=verify_jpeg if self.settings.verify_frames else None,
            logger=self.logger,
        )

        if invocation.uses_stdout:
            assert session.process is not None and session.process.stdout is not None
            frames = iter_frames(session.process.stdout, **options)
        else:
            assert invocation.stream_path is not None
            frames = iter_file_frames(
                invocation.stream_path,
                open_timeout=self.settings.stream_open_timeout_s,
                **options,
            )

        async for frame in frames:
            self._publish(session, frame)

        if session.cancel.is_set():
            return

        returncode = None
        if session.process is not None:
            with contextlib.suppress(asyncio.TimeoutError):
                returncode = await asyncio.wait_for(
                    session.process.wait(), self.settings.stop_timeout_s
                )
        raise UnexpectedExit(returncode, "stream ended; " + self._stderr_summary(session))

    async def _run_still_loop(self, session: CaptureSession) -> None:
        demuxer = MjpegDemuxer(self.settings.max_frame_bytes)
        while not session.cancel.is_set():
            delay = self.settings.attempt_delay_s
            try:
                data = await self._capture_still(session)
                if data is None:
                    break
                demuxer.reset()
                frames = demuxer.feed(data)
                if not frames:
                    raise FrameDecodeError(f"no complete JPEG in {len(data)} bytes of still output")
                for frame in frames:
                    if self.settings.verify_frames:
                        verify_jpeg(frame)
                    self._publish(session, frame)
            except (ProcessTimeout, FrameDecodeError, UnexpectedExit) as exc:
                if session.cancel.is_set():
                    break
                self._note_failure()
                delay = self.settings.error_delay_s
                if self._consecutive_failures >= self.settings.failure_threshold:
                    delay = max(delay, self.settings.cooldown_s)
                self.logger.warning(
                    "Still capture failed (%d in a row, retry in %.1fs): %s",
                    self._consecutive_failures,
                    delay,
                    exc,
                )

            if await sleep_or_cancel(session.cancel, delay):
                break

    async def _capture_still(self, session: CaptureSession) -> Optional[bytes]:
        still_path = session.invocation.still_path
        assert still_path is not None
        with contextlib.suppress(FileNotFoundError):
            await asyncio.to_thread(still_path.unlink)

        process = await self._spawn(session)
        result = await self._await_or_cancel(
            process.communicate(),
            session.cancel,
            self.settings.still_timeout_s,
        )
        if result is _CANCELLED:
            await self._terminate(process)
            return None
        if result is None:
            await self._terminate(process)
            raise ProcessTimeout(
                f"{session.tool_name} exceeded {self.settings.still_timeout_s:.1f}s"
            )

        _, stderr = result
        if process.returncode != 0:
            detail = (stderr or b"").decode(errors="replace").strip().splitlines()
            raise UnexpectedExit(process.returncode, detail[-1] if detail else "")

        try:
            async with aiofiles.open(still_path, "rb") as fh:
                return await fh.read()
        except FileNotFoundError as exc:
            raise FrameDecodeError(f"{session.tool_name} produced no image") from exc

    def _publish(self, session: CaptureSession, frame: bytes) -> None:
        if session.outcome is not None:
            return
        self.cache.publish(frame)
        session.frames += 1
        self._frames_total += 1
        self._consecutive_failures = 0

    # ------------------------------------------------------------------
    # Process handling

    async def _spawn(self, session: CaptureSession) -> asyncio.subprocess.Process:
        invocation = session.invocation
        self.logger.debug("Launching: %s", invocation.describe())
        try:
            process = await asyncio.create_subprocess_exec(
                *invocation.argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE if invocation.uses_stdout else asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as exc:
            raise ProcessStartFailure(f"cannot launch {session.tool_name}: {exc}") from exc

        session.process = process
        if invocation.mode is not CaptureMode.STILL:
            session.stderr_task = create_logged_task(
                self._stderr_reader(session, process),
                logger=self.logger,
                context=f"capture-stderr:{session.tool_name}",
            )
        self.logger.debug("%s running with pid %d", session.tool_name, process.pid)
        return process

    async def _stderr_reader(self, session: CaptureSession, process: asyncio.subprocess.Process) -> None:
        if process.stderr is None:
            return
        while True:
            line = await process.stderr.readline()
            if not line:
                break
            text = line.decode(errors="replace").strip()
            if text:
                session.stderr_tail.append(text)
                self.logger.debug("%s stderr: %s", session.tool_name, text)

    async def _watch_process(self, session: CaptureSession) -> None:
        process = session.process
        if process is None:
            return
        returncode = await process.wait()
        if session.task is not None and not session.cancel.is_set():
            # Let the pump drain the last output and report the exit itself.
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(asyncio.shield(session.task), self.settings.stop_timeout_s)
        if session.cancel.is_set():
            return
        self._session_failed(
            session,
            CaptureOutcome.UNEXPECTED_EXIT,
            UnexpectedExit(returncode, self._stderr_summary(session)),
        )

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        _signal_group(process, signal.SIGTERM)
        try:
            await asyncio.wait_for(process.wait(), self.settings.stop_timeout_s)
            return
        except asyncio.TimeoutError:
            self.logger.warning("pid %d ignored SIGTERM, killing", process.pid)
        _signal_group(process, signal.SIGKILL)
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(process.wait(), self.settings.stop_timeout_s)

    async def _await_or_cancel(self, awaitable: Awaitable[Any], cancel: asyncio.Event, timeout: float) -> Any:
        """Await with a timeout, giving up early if ``cancel`` fires.

        Returns the result, ``_CANCELLED``, or None on timeout.
        """
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(cancel.wait())
        try:
            done, _ = await asyncio.wait(
                {work, waiter}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            waiter.cancel()
        if work in done:
            return work.result()
        work.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await work
        return _CANCELLED if cancel.is_set() else None

    # ------------------------------------------------------------------
    # Teardown & failure bookkeeping

    async def _teardown(self, session: CaptureSession) -> None:
        session.cancel.set()
        timeout = self.settings.stop_timeout_s

        if session.process is not None:
            await self._terminate(session.process)

        if session.invocation.stream_path is not None:
            await asyncio.to_thread(unblock_fifo, session.invocation.stream_path)

        current = asyncio.current_task()
        for task in (session.task, session.watchdog_task, session.stderr_task):
            if task is not None and task is not current:
                await cancel_and_wait(task, timeout=timeout)

        await asyncio.to_thread(self._clean_host, session.probe.tool.patterns)

    def _clean_host(self, patterns: Iterable[str]) -> None:
        killed = self._kill_processes(tuple(patterns), self.settings.stop_timeout_s)
        if killed:
            self.logger.info("Killed %d leftover capture process(es)", killed)
        remove_artifacts(self.settings)

    def _session_failed(self, session: CaptureSession, outcome: CaptureOutcome, exc: BaseException) -> None:
        if session.outcome is not None or session.cancel.is_set():
            return
        session.outcome = outcome
        self._note_failure()
        self.logger.error(
            "Capture session with %s failed (%s): %s",
            session.tool_name,
            outcome.value,
            exc,
        )
        create_logged_task(
            self._teardown_failed(session, outcome),
            logger=self.logger,
            context="capture-teardown",
            pending=self._background,
        )

    async def _teardown_failed(self, session: CaptureSession, outcome: CaptureOutcome) -> None:
        async with self._lock:
            if self._session is not session:
                return
            self._set_state(CaptureState.FAILED)
            try:
                await self._teardown(session)
            finally:
                self._session = None
                self.cache.clear()
                self._last_outcome = outcome
                self._set_state(CaptureState.STOPPED)

    async def _fail_start(self, exc: CaptureError, session: Optional[CaptureSession]) -> CaptureOutcome:
        self._set_state(CaptureState.FAILED)
        outcome = exc.outcome
        if outcome is CaptureOutcome.TOOL_NOT_FOUND:
            self.logger.warning("Capture not started: %s", exc)
        else:
            self._note_failure()
            self.logger.error("Capture start failed (%s): %s", outcome.value, exc)
        if session is not None:
            await self._teardown(session)
        self.cache.clear()
        self._last_outcome = outcome
        self._set_state(CaptureState.STOPPED)
        return outcome

    def _note_failure(self) -> None:
        self._consecutive_failures += 1
        self._last_failure_at = self._clock()

    def _set_state(self, state: CaptureState) -> None:
        if state is not self._state:
            self.logger.debug("State %s -> %s", self._state.value, state.value)
            self._state = state

    @staticmethod
    def _stderr_summary(session: CaptureSession) -> str:
        return session.stderr_tail[-1] if session.stderr_tail else "no diagnostics"


def _in_event_loop() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


def _signal_group(process: asyncio.subprocess.Process, sig: int) -> None:
    """Signal the child's process group (it leads its own session)."""
    killpg = getattr(os, "killpg", None)
    if killpg is not None:
        try:
            killpg(process.pid, sig)
            return
        except (ProcessLookupError, PermissionError):
            pass
    with contextlib.suppress(ProcessLookupError):
        process.send_signal(sig)


__all__ = ["CaptureSession", "CaptureState", "CaptureSupervisor"]
