"""Async helper utilities."""

from __future__ import annotations

import asyncio
import contextlib
import logging


async def cancel_task(task: asyncio.Task[object] | None, *, logger: logging.Logger) -> None:
    """Cancel ``task`` and wait for it to unwind, logging anything but cancellation."""
    if task is None or task.done():
        return
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        try:
            await task
        except Exception:
            logger.exception("background_task_failed_during_cancel", extra={"task": task.get_name()})
