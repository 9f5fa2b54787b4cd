"""Tests for the cross-encoder reranker with a stubbed scoring model."""

from __future__ import annotations

from conftest import DEFAULT_RESULTS, make_result
from dataroom_rag.retrieval.reranker_cross_encoder import CrossEncoderReranker


class LengthModel:
    """Scores a pair by the length of its passage."""

    def __init__(self) -> None:
        self.pairs = []

    def predict(self, pairs):
        self.pairs.extend(pairs)
        return [float(len(passage)) for _, passage in pairs]


async def test_rerank_orders_by_model_score():
    model = LengthModel()
    reranker = CrossEncoderReranker(model=model)
    short = make_result("c9", "doc-lease", "Fee.", 9.0)
    ranked = await reranker.rerank("termination fee", [short, *DEFAULT_RESULTS])
    assert [r.chunk_id for r in ranked] == ["c1", "c2", "c9"]
    assert all(r.source_method == "reranked" for r in ranked)
    assert ranked[0].score == float(len(DEFAULT_RESULTS[0].content))
    assert model.pairs[0] == ("termination fee", "Fee.")


async def test_rerank_keeps_top_n():
    reranker = CrossEncoderReranker(model=LengthModel())
    ranked = await reranker.rerank("q", list(DEFAULT_RESULTS), top_n=1)
    assert [r.chunk_id for r in ranked] == ["c1"]
    assert ranked[0].page_number == 12


async def test_rerank_empty_skips_model():
    model = LengthModel()
    assert await CrossEncoderReranker(model=model).rerank("q", []) == []
    assert model.pairs == []
