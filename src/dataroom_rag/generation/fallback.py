"""Always-available replies used when a pipeline stage cannot complete."""

from __future__ import annotations

from dataroom_rag.config.constants import FALLBACK_RESPONSE
from dataroom_rag.generation.streaming import StreamedAnswer, StreamStatus
from dataroom_rag.models.domain import FailureKind
from dataroom_rag.observability.logger import get_logger
from dataroom_rag.observability.tracing import MetadataTracker
from dataroom_rag.pipeline.cancellation import CancellationToken

logger = get_logger("fallback")


class FallbackResponder:
    """No external dependencies: every method returns without raising."""

    def respond(
        self,
        reason_text: str | None,
        token: CancellationToken,
        kind: FailureKind | None = None,
        session_id: str | None = None,
        tracker: MetadataTracker | None = None,
    ) -> StreamedAnswer:
        message = reason_text or FALLBACK_RESPONSE
        if tracker is not None:
            tracker.set_fallback(kind, message)
        logger.info(
            "fallback_response",
            kind=kind.value if kind else None,
            session_id=session_id,
        )
        return StreamedAnswer.from_text(message, token)

    def abort(
        self,
        stage: str,
        session_id: str | None = None,
        tracker: MetadataTracker | None = None,
    ) -> StreamStatus:
        """Client-initiated abort: no body, only a terminal status."""
        if tracker is not None:
            tracker.set_error("CancellationError", f"aborted during {stage}", is_retryable=False)
        logger.info("request_aborted", stage=stage, session_id=session_id)
        return StreamStatus.ABORTED
