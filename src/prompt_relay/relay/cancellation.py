# Cooperative cancellation shared by the relay server and the relay client.

from __future__ import annotations

import asyncio
import contextlib
from typing import Awaitable, Optional, TypeVar

from .errors import OperationCancelled

T = TypeVar("T")


async def run_cancellable(work: Awaitable[T], cancel_event: Optional[asyncio.Event]) -> T:
    """Await ``work`` unless ``cancel_event`` fires first."""
    if cancel_event is None:
        return await work
    if cancel_event.is_set():
        if asyncio.iscoroutine(work):
            work.close()
        raise OperationCancelled()

    task = asyncio.ensure_future(work)
    waiter = asyncio.ensure_future(cancel_event.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        waiter.cancel()
        raise

    if task.done():
        waiter.cancel()
        return task.result()

    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task
    raise OperationCancelled()
