"""Tests for cancellation tokens, deadlines and deadline racing."""

from __future__ import annotations

import asyncio

import pytest

from dataroom_rag.exceptions import Aborted, CancellationError, PipelineTimeout
from dataroom_rag.pipeline.cancellation import CancellationToken, Deadline, run_with_deadline


def test_token_is_one_shot():
    token = CancellationToken()
    assert not token.is_cancelled
    token.cancel("first")
    token.cancel("second")
    assert token.is_cancelled
    assert token.reason == "first"


def test_raise_if_cancelled_uses_given_error():
    token = CancellationToken()
    token.raise_if_cancelled()
    token.cancel()
    with pytest.raises(Aborted):
        token.raise_if_cancelled(Aborted)


def test_deadline_cap_never_exceeds_remaining():
    deadline = Deadline(0.5)
    assert deadline.cap(10.0) <= 0.5
    assert deadline.cap(0.1) == 0.1
    assert not deadline.expired


def test_expired_deadline():
    deadline = Deadline(0.0)
    assert deadline.expired
    assert deadline.remaining_s == 0.0


async def test_returns_work_result():
    async def work():
        return 42

    assert await run_with_deadline(work(), 1.0, CancellationToken(), on_timeout=PipelineTimeout("t")) == 42


async def test_no_timeout_races_token_only():
    async def work():
        await asyncio.sleep(0.01)
        return "done"

    assert await run_with_deadline(work(), None, CancellationToken(), on_timeout=PipelineTimeout("t")) == "done"


async def test_timeout_cancels_work():
    state = {"cancelled": False}

    async def work():
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            state["cancelled"] = True
            raise

    with pytest.raises(PipelineTimeout):
        await run_with_deadline(work(), 0.05, CancellationToken(), on_timeout=PipelineTimeout("slow"))
    # the loser is awaited before the call returns
    assert state["cancelled"] is True


async def test_cancellation_wins_over_slow_work():
    token = CancellationToken()
    state = {"cancelled": False}

    async def work():
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            state["cancelled"] = True
            raise

    asyncio.get_running_loop().call_later(0.02, token.cancel)
    with pytest.raises(CancellationError):
        await run_with_deadline(work(), 5.0, token, on_timeout=PipelineTimeout("slow"))
    assert state["cancelled"] is True


async def test_pre_cancelled_token_never_starts_work():
    token = CancellationToken()
    token.cancel()
    state = {"started": False}

    async def work():
        state["started"] = True

    with pytest.raises(Aborted):
        await run_with_deadline(work(), 1.0, token, on_timeout=PipelineTimeout("t"), on_cancel=Aborted)
    assert state["started"] is False


async def test_work_errors_propagate():
    async def work():
        raise ValueError("boom")

    with pytest.raises(ValueError):
        await run_with_deadline(work(), 1.0, CancellationToken(), on_timeout=PipelineTimeout("t"))
