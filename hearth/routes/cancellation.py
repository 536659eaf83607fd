import asyncio
import logging
from typing import Any, Callable

from fastapi import Request
from starlette.concurrency import run_in_threadpool

from hearth.services.fetcher import FetchBudget

logger = logging.getLogger(__name__)

DISCONNECT_POLL_INTERVAL = 0.25


async def watch_disconnect(request: Request, budget: FetchBudget):
    """Cancel ``budget`` as soon as the client goes away."""
    while not budget.cancelled:
        if await request.is_disconnected():
            logger.info(f"Client disconnected from {request.url.path}, cancelling outbound fetches")
            budget.cancel()
            return
        await asyncio.sleep(DISCONNECT_POLL_INTERVAL)


async def run_until_disconnect(request: Request, budget: FetchBudget, func: Callable[..., Any], *args, **kwargs):
    """Run blocking ``func`` on the threadpool, cancelling ``budget`` if the client disconnects.

    ``func`` is expected to pass ``budget`` to every fetch it makes, so a
    disconnect aborts the in-flight read at the next chunk.
    """
    watcher = asyncio.create_task(watch_disconnect(request, budget))
    try:
        return await run_in_threadpool(func, *args, **kwargs)
    finally:
        watcher.cancel()
