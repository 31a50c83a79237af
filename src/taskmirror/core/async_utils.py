"""Async utilities for running blocking pipeline calls from HTTP handlers."""

import asyncio
from typing import Any, Callable, TypeVar

T = TypeVar("T")


async def run_sync(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run a synchronous function in a thread pool without blocking the event loop.

    The ClickUp and Drive clients are blocking; FastAPI handlers use this
    to call them.

    Example:
        report = await run_sync(service.run_pass)
    """
    return await asyncio.to_thread(func, *args, **kwargs)
