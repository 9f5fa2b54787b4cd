"""Cooperative cancellation and deadline racing for pipeline stages."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable
from typing import TypeVar

from dataroom_rag.exceptions import CancellationError

T = TypeVar("T")


class CancellationToken:
    """One-shot signal shared by every stage of a single request.

    Once fired it stays fired; there is no reset.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "client aborted") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self, error: type[CancellationError] = CancellationError) -> None:
        if self._event.is_set():
            raise error(self._reason or "cancelled")


class Deadline:
    """Absolute monotonic deadline for the whole request."""

    def __init__(self, timeout_s: float) -> None:
        self.timeout_s = timeout_s
        self._expires_at = time.monotonic() + timeout_s

    @property
    def remaining_s(self) -> float:
        return max(0.0, self._expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        return self.remaining_s <= 0.0

    def cap(self, timeout_s: float) -> float:
        return min(timeout_s, self.remaining_s)


async def run_with_deadline(
    work: Awaitable[T],
    timeout_s: float | None,
    token: CancellationToken,
    on_timeout: Exception,
    on_cancel: type[CancellationError] = CancellationError,
) -> T:
    """Run ``work`` until it finishes, the timer fires, or ``token`` is cancelled.

    ``timeout_s=None`` races against the token only.

    Whichever loses is cancelled and awaited before returning, so an
    abandoned stage can never write anything after this call returns.
    A result that is already available wins over a simultaneous cancel;
    callers re-check the token between stages.
    """
    if token.is_cancelled:
        close = getattr(work, "close", None)
        if close is not None:
            close()
        raise on_cancel(token.reason or "cancelled")

    work_task = asyncio.ensure_future(work)
    cancel_task = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait(
            {work_task, cancel_task},
            timeout=None if timeout_s is None else max(timeout_s, 0.0),
            return_when=asyncio.FIRST_COMPLETED,
        )
    finally:
        for task in (work_task, cancel_task):
            if not task.done():
                task.cancel()
        await asyncio.gather(work_task, cancel_task, return_exceptions=True)

    if work_task in done:
        return work_task.result()
    if cancel_task in done:
        raise on_cancel(token.reason or "cancelled")
    raise on_timeout
