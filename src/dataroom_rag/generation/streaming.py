"""Cancelable, deadline-bounded text streams handed back to the transport layer."""

from __future__ import annotations

import re
from collections.abc import AsyncIterator, Callable
from enum import Enum

from dataroom_rag.config.constants import FALLBACK_APOLOGY, FALLBACK_TIMEOUT
from dataroom_rag.exceptions import CancellationError, GenerationError, PipelineTimeout
from dataroom_rag.models.domain import Source
from dataroom_rag.observability.logger import get_logger
from dataroom_rag.pipeline.cancellation import CancellationToken, Deadline, run_with_deadline

logger = get_logger("streaming")


class StreamStatus(str, Enum):
    PENDING = "pending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ABORTED = "aborted"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


FinishCallback = Callable[["StreamedAnswer"], None]


async def _text_pieces(text: str) -> AsyncIterator[str]:
    for piece in re.findall(r"\S+\s*|\s+", text):
        yield piece


class StreamedAnswer:
    """Async-iterable answer text.

    Iterating yields text deltas. Every step races the next delta against
    the cancellation token and the request deadline:

    * cancellation raises ``CancellationError`` and the status becomes ``ABORTED``;
    * deadline expiry ends the stream with the timeout notice (``TIMED_OUT``);
    * a provider error ends the stream with an apology (``FAILED``).

    The upstream iterator is closed on every exit path and finish
    callbacks run exactly once.
    """

    def __init__(
        self,
        chunks: AsyncIterator[str],
        token: CancellationToken,
        deadline: Deadline | None = None,
        sources: tuple[Source, ...] = (),
    ) -> None:
        self._chunks = chunks
        self._token = token
        self._deadline = deadline
        self.sources = tuple(sources)
        self.status = StreamStatus.PENDING
        self._pending: list[str] = []
        self._parts: list[str] = []
        self._callbacks: list[FinishCallback] = []
        self._released = False
        self._finished = False

    @classmethod
    def from_text(cls, text: str, token: CancellationToken) -> "StreamedAnswer":
        return cls(_text_pieces(text), token)

    @property
    def text(self) -> str:
        return "".join(self._parts)

    @property
    def finished(self) -> bool:
        return self._finished

    def add_finish_callback(self, callback: FinishCallback) -> None:
        if self._finished:
            self._run_callback(callback)
        else:
            self._callbacks.append(callback)

    async def prime(self) -> bool:
        """Pull the first delta ahead of the consumer.

        Returns ``False`` when the upstream produced nothing. Any error is
        raised to the caller after the upstream has been released.
        """
        try:
            piece = await self._next()
        except CancellationError:
            await self._release()
            self._finish(StreamStatus.ABORTED)
            raise
        except BaseException:
            await self._release()
            self._finish(StreamStatus.FAILED)
            raise
        if piece is None:
            await self._release()
            self._finish(StreamStatus.COMPLETED)
            return False
        self._pending.append(piece)
        return True

    def __aiter__(self) -> AsyncIterator[str]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[str]:
        if self._finished:
            return
        self.status = StreamStatus.STREAMING
        try:
            while self._pending:
                self._token.raise_if_cancelled()
                piece = self._pending.pop(0)
                self._parts.append(piece)
                yield piece
            while True:
                piece = await self._next()
                if piece is None:
                    break
                self._parts.append(piece)
                yield piece
            await self._release()
            self._finish(StreamStatus.COMPLETED)
        except CancellationError:
            await self._release()
            self._finish(StreamStatus.ABORTED)
            raise
        except PipelineTimeout:
            await self._release()
            tail = self._tail(FALLBACK_TIMEOUT)
            self._finish(StreamStatus.TIMED_OUT)
            yield tail
        except GenerationError:
            logger.error("stream_generation_failed", exc_info=True)
            await self._release()
            tail = self._tail(FALLBACK_APOLOGY)
            self._finish(StreamStatus.FAILED)
            yield tail
        finally:
            if not self._finished:
                # consumer stopped iterating early
                await self._release()
                self._finish(StreamStatus.ABORTED)

    async def aclose(self) -> None:
        """Release the upstream without consuming it. Safe to call repeatedly."""
        if self._finished:
            await self._release()
            return
        await self._release()
        self._finish(StreamStatus.ABORTED)

    async def _next(self) -> str | None:
        timeout = self._deadline.remaining_s if self._deadline is not None else None
        try:
            return await run_with_deadline(
                self._chunks.__anext__(),
                timeout,
                self._token,
                on_timeout=PipelineTimeout("generation exceeded the request deadline"),
            )
        except StopAsyncIteration:
            return None

    def _tail(self, message: str) -> str:
        tail = f"\n\n{message}" if self._parts else message
        self._parts.append(tail)
        return tail

    async def _release(self) -> None:
        if self._released:
            return
        self._released = True
        close = getattr(self._chunks, "aclose", None)
        if close is None:
            return
        try:
            await close()
        except Exception:
            logger.warning("stream_release_failed", exc_info=True)

    def _finish(self, status: StreamStatus) -> None:
        if self._finished:
            return
        self._finished = True
        self.status = status
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            self._run_callback(callback)

    def _run_callback(self, callback: FinishCallback) -> None:
        try:
            callback(self)
        except Exception:
            logger.warning("stream_finish_callback_failed", exc_info=True)
