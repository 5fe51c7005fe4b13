"""Tests for deadline combinators."""

import asyncio

import pytest

from convertkit.core.watchdog import race, wait_for_event
from convertkit.exceptions import ConversionTimeoutError, ErrorKind


class TestRace:
    """Tests for race()."""

    async def test_returns_result_before_deadline(self):
        async def quick():
            return "done"

        assert await race(quick(), 1.0) == "done"

    async def test_timeout_raises_conversion_timeout(self):
        """Test that an expired deadline raises a timeout-kind error."""
        future = asyncio.get_running_loop().create_future()

        with pytest.raises(ConversionTimeoutError) as exc_info:
            await race(future, 0.01, name="Image conversion")

        assert exc_info.value.kind is ErrorKind.TIMEOUT
        assert "Image conversion" in exc_info.value.message
        assert future.cancelled()

    async def test_operation_error_propagates(self):
        async def broken():
            raise ValueError("bad")

        with pytest.raises(ValueError, match="bad"):
            await race(broken(), 1.0)


class TestWaitForEvent:
    """Tests for wait_for_event()."""

    async def test_already_set(self):
        event = asyncio.Event()
        event.set()
        assert await wait_for_event(event, 0) is True

    async def test_zero_timeout_unset(self):
        assert await wait_for_event(asyncio.Event(), 0) is False

    async def test_fires_later(self):
        event = asyncio.Event()
        asyncio.get_running_loop().call_later(0.01, event.set)
        assert await wait_for_event(event, 1.0) is True

    async def test_expires(self):
        assert await wait_for_event(asyncio.Event(), 0.01) is False
