"""Asyncio helpers for background tasks that must not lose exceptions."""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any, Coroutine, Optional

from .logging_utils import LoggerLike, ensure_structured_logger


def _task_label(task: asyncio.Task[Any], context: Optional[str]) -> str:
    return context or task.get_name() or "background task"


def add_task_exception_logger(
    task: asyncio.Task[Any],
    *,
    logger: LoggerLike = None,
    context: Optional[str] = None,
) -> asyncio.Task[Any]:
    """Retrieve and log a task's exception when it finishes."""
    task_logger = ensure_structured_logger(logger, fallback_name="asyncio")

    def _done(done_task: asyncio.Task[Any]) -> None:
        if done_task.cancelled():
            return
        exc = done_task.exception()
        if exc is not None:
            task_logger.error(
                "Unhandled exception in %s: %s",
                _task_label(done_task, context),
                exc,
                exc_info=exc,
            )

    task.add_done_callback(_done)
    return task


def create_logged_task(
    coro: Coroutine[Any, Any, Any],
    *,
    logger: LoggerLike = None,
    context: Optional[str] = None,
    pending: Optional[set[asyncio.Task[Any]]] = None,
) -> asyncio.Task[Any]:
    """Create a task that won't lose exceptions, optionally tracking it."""
    task = asyncio.get_running_loop().create_task(coro, name=context)
    add_task_exception_logger(task, logger=logger, context=context)

    if pending is not None:
        pending.add(task)
        task.add_done_callback(pending.discard)

    return task


async def cancel_and_wait(task: Optional[asyncio.Task[Any]], timeout: Optional[float] = None) -> None:
    """Cancel ``task`` and wait for it to unwind, tolerating cancellation."""
    if task is None or task.done():
        return
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError, asyncio.TimeoutError):
        await asyncio.wait_for(asyncio.shield(task), timeout)


async def sleep_or_cancel(event: asyncio.Event, delay: float) -> bool:
    """Sleep for ``delay`` seconds unless ``event`` fires first.

    Returns True when the event fired (the caller should stop).
    """
    if event.is_set():
        return True
    if delay <= 0:
        return False
    try:
        await asyncio.wait_for(event.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return False
    return True


__all__ = [
    "add_task_exception_logger",
    "cancel_and_wait",
    "create_logged_task",
    "sleep_or_cancel",
]
