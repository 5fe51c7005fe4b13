"""Per-request reply channels keyed by correlation id."""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from convertkit.utils.logging import get_logger

log = get_logger(__name__)

ProgressCallback = Callable[[int, str | None], None]


@dataclass
class _Channel:
    future: asyncio.Future[Any]
    on_progress: ProgressCallback | None = None


class ReplyCorrelator:
    """Routes asynchronous replies back to the request that caused them.

    Every request opens a one-shot channel; the returned id travels with the
    outgoing envelope and comes back on each reply. Replies are matched by
    id only, so out-of-order delivery never reaches the wrong caller, and a
    reply for a closed channel (timed out, already settled) is dropped.

    Example:
        correlation_id, reply = correlator.open()
        await transport.send(convert_message(payload, correlation_id))
        result = await reply
    """

    def __init__(self) -> None:
        self._channels: dict[str, _Channel] = {}

    def open(self, on_progress: ProgressCallback | None = None) -> tuple[str, asyncio.Future[Any]]:
        """Open a channel and return ``(correlation_id, future)``."""
        correlation_id = uuid.uuid4().hex
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._channels[correlation_id] = _Channel(future=future, on_progress=on_progress)
        return correlation_id, future

    def resolve(self, correlation_id: str, payload: Any) -> bool:
        """Settle a channel with a result; returns False if it is unknown."""
        channel = self._channels.pop(correlation_id, None)
        if channel is None:
            log.debug("Dropping reply for unknown channel", correlation_id=correlation_id)
            return False
        if not channel.future.done():
            channel.future.set_result(payload)
        return True

    def reject(self, correlation_id: str, error: BaseException) -> bool:
        """Settle a channel with an error; returns False if it is unknown."""
        channel = self._channels.pop(correlation_id, None)
        if channel is None:
            log.debug("Dropping error for unknown channel", correlation_id=correlation_id)
            return False
        if not channel.future.done():
            channel.future.set_exception(error)
        return True

    def progress(self, correlation_id: str, percent: int, message: str | None = None) -> bool:
        """Forward a progress update to the channel's callback."""
        channel = self._channels.get(correlation_id)
        if channel is None:
            return False
        if channel.on_progress is not None:
            channel.on_progress(percent, message)
        return True

    def discard(self, correlation_id: str) -> None:
        """Close a channel without settling it (the caller gave up)."""
        channel = self._channels.pop(correlation_id, None)
        if channel is not None and not channel.future.done():
            channel.future.cancel()

    def reject_all(self, error: BaseException) -> int:
        """Reject every open channel; returns how many were open."""
        channels = list(self._channels.values())
        self._channels.clear()
        for channel in channels:
            if not channel.future.done():
                channel.future.set_exception(error)
                # Callers that already gave up never retrieve this
                channel.future.add_done_callback(_consume_exception)
        return len(channels)

    def __contains__(self, correlation_id: object) -> bool:
        return correlation_id in self._channels

    def __len__(self) -> int:
        return len(self._channels)


def _consume_exception(future: asyncio.Future[Any]) -> None:
    if not future.cancelled():
        future.exception()
