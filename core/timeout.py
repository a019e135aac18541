"""
core/timeout.py - Deadline and Cancellation Utilities

Bounds a whole async run by a deadline and/or a caller-held cancellation
event. When either fires, the running work is cancelled, awaited until it
has unwound, and ReconciliationCancelledError is raised in its place.
"""

import asyncio
import logging
from typing import Any, Awaitable, Optional

from core.exceptions import ReconciliationCancelledError

logger = logging.getLogger(__name__)


async def run_with_deadline(
    coro: Awaitable[Any],
    timeout: Optional[float] = None,
    cancel_event: Optional[asyncio.Event] = None,
    operation_name: str = "operation",
) -> Any:
    """
    Run a coroutine until it finishes, the deadline passes or cancel_event is set.

    Args:
        coro: Coroutine to run
        timeout: Deadline in seconds (None or 0 disables it)
        cancel_event: Event that aborts the run when set
        operation_name: Name for log messages

    Returns:
        Result of the coroutine

    Raises:
        ReconciliationCancelledError: if the deadline passed or the event fired
    """
    task = asyncio.ensure_future(coro)
    cancel_waiter = asyncio.ensure_future(cancel_event.wait()) if cancel_event else None
    waiters = {task} if cancel_waiter is None else {task, cancel_waiter}

    try:
        done, _ = await asyncio.wait(
            waiters,
            timeout=timeout or None,
            return_when=asyncio.FIRST_COMPLETED,
        )
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        if cancel_waiter is not None:
            cancel_waiter.cancel()

    if task in done:
        return task.result()

    task.cancel()
    # Wait for in-flight work to unwind; its outcome is discarded.
    await asyncio.gather(task, return_exceptions=True)

    if cancel_event is not None and cancel_event.is_set():
        logger.warning(f"{operation_name} cancelled by caller")
        raise ReconciliationCancelledError("cancelled by caller")

    logger.warning(f"{operation_name} exceeded deadline of {timeout}s")
    raise ReconciliationCancelledError("deadline exceeded", deadline_seconds=timeout)
