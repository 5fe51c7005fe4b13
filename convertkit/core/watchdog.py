"""Deadline combinators shared by the handshake and dispatch paths."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from convertkit.exceptions import ConversionTimeoutError

T = TypeVar("T")


async def race(operation: Awaitable[T], timeout: float, *, name: str = "Operation") -> T:
    """Await ``operation`` unless ``timeout`` seconds pass first.

    The deadline timer is owned by this call: it is cancelled as soon as the
    operation settles, and on expiry the operation is cancelled (a pending
    reply future is released; the remote worker keeps running).

    Raises:
        ConversionTimeoutError: If the deadline elapsed first.
    """
    try:
        return await asyncio.wait_for(operation, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise ConversionTimeoutError(name, timeout) from e


async def wait_for_event(event: asyncio.Event, timeout: float) -> bool:
    """Wait up to ``timeout`` seconds for ``event``; report whether it fired."""
    if event.is_set():
        return True
    if timeout <= 0:
        return False
    try:
        await race(event.wait(), timeout)
    except ConversionTimeoutError:
        return False
    return True
