"""Cleanup of capture processes that outlived their supervisor.

Capture tools are often launched through a wrapper shell script, so the
process handle held by the supervisor does not own every descendant.
These helpers find such processes by executable name or command-line
word and terminate them, escalating to SIGKILL when SIGTERM is ignored.
"""

from __future__ import annotations

import os
from typing import Iterable, List

import psutil

from .logging_utils import get_module_logger

logger = get_module_logger("ProcessCleanup")


def _matches(proc: psutil.Process, patterns: tuple[str, ...]) -> bool:
    # Whole words only: "rpicam-vid" must not match "tail rpicam-vid.log".
    words = {os.path.basename(arg) for arg in proc.info.get("cmdline") or []}
    words.add(proc.info.get("name") or "")
    return any(pattern in words for pattern in patterns)


def find_processes(patterns: Iterable[str]) -> List[psutil.Process]:
    """Return live processes matching one of ``patterns``.

    A process matches when its name, or the basename of any command-line
    argument, equals a pattern. The calling process and its parent are never returned.
    """
    wanted = tuple(p for p in patterns if p)
    if not wanted:
        return []

    excluded = {os.getpid(), os.getppid()}
    found: List[psutil.Process] = []

    for proc in psutil.process_iter(["pid", "name", "cmdline"]):
        try:
            if proc.pid in excluded:
                continue
            if _matches(proc, wanted):
                found.append(proc)
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            continue

    return found


def kill_processes(patterns: Iterable[str], timeout: float = 1.0) -> int:
    """Terminate every process matching ``patterns``.

    Args:
        patterns: Executable names, script or module names matched as whole words.
        timeout: Seconds to wait after SIGTERM before force-killing.

    Returns:
        Number of processes signalled.
    """
    targets = find_processes(patterns)
    if not targets:
        return 0

    signalled: List[psutil.Process] = []
    for proc in targets:
        try:
            logger.warning(
                "Terminating stray capture process pid=%d cmd=%s",
                proc.pid,
                " ".join(proc.info.get("cmdline") or [])[:80] or proc.info.get("name"),
            )
            proc.terminate()
            signalled.append(proc)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue

    if signalled:
        _, alive = psutil.wait_procs(signalled, timeout=timeout)
        for proc in alive:
            try:
                logger.warning("Force killing unresponsive process pid=%d", proc.pid)
                proc.kill()
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                pass
        if alive:
            psutil.wait_procs(alive, timeout=timeout)

    return len(signalled)


__all__ = ["find_processes", "kill_processes"]
