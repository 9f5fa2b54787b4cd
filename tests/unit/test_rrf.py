"""Tests for Reciprocal Rank Fusion."""

import pytest

from dataroom_rag.retrieval.rrf import reciprocal_rank_fusion


def test_rrf_single_list():
    fused = reciprocal_rank_fusion([[("a", 0.9), ("b", 0.8), ("c", 0.7)]], k=60)
    assert [cid for cid, _ in fused] == ["a", "b", "c"]


def test_rrf_rewards_agreement():
    semantic = [("a", 0.9), ("b", 0.8)]
    lexical = [("b", 7.1), ("c", 2.0)]
    fused = reciprocal_rank_fusion([semantic, lexical], k=60)
    assert fused[0][0] == "b"
    assert {cid for cid, _ in fused} == {"a", "b", "c"}


def test_rrf_disjoint_lists_tie():
    fused = reciprocal_rank_fusion([[("a", 0.9)], [("b", 0.9)]], k=60)
    assert fused[0][1] == fused[1][1]
    # ties keep first-seen order
    assert fused[0][0] == "a"


def test_rrf_empty():
    assert reciprocal_rank_fusion([[]], k=60) == []


def test_rrf_counts_repeats_once_at_best_rank():
    fused = dict(reciprocal_rank_fusion([[("a", 0.9), ("b", 0.5), ("a", 0.1)]], k=60))
    assert fused["a"] == 1.0 / 61


def test_rrf_weights():
    fused = reciprocal_rank_fusion([[("a", 0.9)], [("b", 0.9)]], k=60, weights=[1.0, 2.0])
    assert fused[0][0] == "b"


def test_rrf_weights_must_match_lists():
    with pytest.raises(ValueError):
        reciprocal_rank_fusion([[("a", 0.9)]], weights=[1.0, 1.0])
