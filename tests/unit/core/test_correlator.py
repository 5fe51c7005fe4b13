"""Tests for ReplyCorrelator."""

import asyncio

import pytest

from convertkit.core.correlator import ReplyCorrelator
from convertkit.exceptions import BackendError


class TestReplyCorrelator:
    """Tests for per-request reply channels."""

    async def test_ids_are_unique(self):
        correlator = ReplyCorrelator()
        ids = {correlator.open()[0] for _ in range(50)}
        assert len(ids) == 50
        assert len(correlator) == 50

    async def test_out_of_order_replies_reach_their_callers(self):
        """Test that replies are matched by id, not by arrival order."""
        correlator = ReplyCorrelator()
        first_id, first = correlator.open()
        second_id, second = correlator.open()

        assert correlator.resolve(second_id, "second") is True
        assert correlator.resolve(first_id, "first") is True

        assert await first == "first"
        assert await second == "second"
        assert len(correlator) == 0

    async def test_unknown_reply_dropped(self):
        correlator = ReplyCorrelator()
        assert correlator.resolve("nope", 1) is False
        assert correlator.reject("nope", BackendError("x")) is False
        assert correlator.progress("nope", 10) is False

    async def test_reply_after_discard_dropped(self):
        """Test that a late reply for a closed channel is ignored."""
        correlator = ReplyCorrelator()
        correlation_id, future = correlator.open()
        correlator.discard(correlation_id)

        assert future.cancelled()
        assert correlator.resolve(correlation_id, "late") is False
        assert correlation_id not in correlator

    async def test_reject(self):
        correlator = ReplyCorrelator()
        correlation_id, future = correlator.open()
        correlator.reject(correlation_id, BackendError("failed"))

        with pytest.raises(BackendError, match="failed"):
            await future

    async def test_progress_routed_to_channel_callback(self):
        correlator = ReplyCorrelator()
        seen_a: list[tuple[int, str | None]] = []
        seen_b: list[tuple[int, str | None]] = []
        id_a, _ = correlator.open(on_progress=lambda p, m: seen_a.append((p, m)))
        id_b, _ = correlator.open(on_progress=lambda p, m: seen_b.append((p, m)))

        correlator.progress(id_b, 40, "b")
        correlator.progress(id_a, 10, None)

        assert seen_a == [(10, None)]
        assert seen_b == [(40, "b")]

    async def test_reject_all(self):
        """Test that reject_all settles every pending channel once."""
        correlator = ReplyCorrelator()
        futures = [correlator.open()[1] for _ in range(3)]

        assert correlator.reject_all(BackendError("gone")) == 3
        assert len(correlator) == 0
        for future in futures:
            assert isinstance(future.exception(), BackendError)

        assert correlator.reject_all(BackendError("again")) == 0

    async def test_reject_all_skips_cancelled(self):
        correlator = ReplyCorrelator()
        _, future = correlator.open()
        future.cancel()

        assert correlator.reject_all(BackendError("gone")) == 1
        await asyncio.sleep(0)
        assert future.cancelled()
