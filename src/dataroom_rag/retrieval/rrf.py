"""Reciprocal Rank Fusion of ranked chunk lists."""

from __future__ import annotations

from collections.abc import Sequence

RankedList = Sequence[tuple[str, float]]


def reciprocal_rank_fusion(
    result_lists: Sequence[RankedList],
    k: int = 60,
    weights: Sequence[float] | None = None,
) -> list[tuple[str, float]]:
    """Fuse ranked lists into one ``(chunk_id, fused_score)`` ranking.

    Only ranks matter; the input scores are ignored, so BM25 and cosine
    lists can be combined directly. A chunk repeated inside one list counts
    once, at its best rank. Equal fused scores keep first-seen order.
    """
    if weights is not None and len(weights) != len(result_lists):
        raise ValueError("weights must match the number of result lists")

    fused: dict[str, float] = {}
    for i, ranked in enumerate(result_lists):
        weight = 1.0 if weights is None else weights[i]
        seen: set[str] = set()
        for rank, (chunk_id, _) in enumerate(ranked, start=1):
            if chunk_id in seen:
                continue
            seen.add(chunk_id)
            fused[chunk_id] = fused.get(chunk_id, 0.0) + weight / (k + rank)
    return sorted(fused.items(), key=lambda item: item[1], reverse=True)
