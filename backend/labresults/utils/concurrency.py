"""Helpers for joining concurrent remote calls."""

import asyncio
from collections.abc import Awaitable, Iterable
from typing import TypeVar

T = TypeVar("T")


async def gather_all(awaitables: Iterable[Awaitable[T]]) -> list[T]:
    """Run awaitables concurrently and return their results in order.

    Fails fast: the first exception cancels every sibling still running and
    is re-raised unchanged, so no partial result ever reaches the caller.
    """
    tasks = [asyncio.ensure_future(aw) for aw in awaitables]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        # Let cancelled siblings settle so their errors are not left unretrieved
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
