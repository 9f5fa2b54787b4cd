"""Tests for fitting retrieved context into a token budget."""

from __future__ import annotations

import pytest

from conftest import DEFAULT_RESULTS, DOCUMENTS, FakeProvider, make_result
from dataroom_rag.exceptions import GenerationError
from dataroom_rag.models.domain import ComplexityLevel
from dataroom_rag.retrieval.compression import ContextCompressor, DocumentSummary

DOCS = {d.document_id: d for d in DOCUMENTS}

LEASE_TEXT = (
    "Termination requires a fee of five percent. "
    "The building has a blue roof and many windows. "
    "Parking spaces are assigned by the landlord each year."
)


async def test_context_within_budget_is_untouched():
    provider = FakeProvider()
    compressor = ContextCompressor(provider, max_tokens=3000)
    results = list(DEFAULT_RESULTS)
    assert await compressor.compress("fee", results, DOCS, ComplexityLevel.HIGH) == results
    assert provider.structured_calls == 0


def test_mode_selection():
    compressor = ContextCompressor(FakeProvider(), max_tokens=5)
    single = [make_result("c1", "doc-lease", LEASE_TEXT, 1.0)]
    assert compressor.choose_mode(single, ComplexityLevel.LOW) == "ranked"
    assert compressor.choose_mode(single, ComplexityLevel.HIGH) == "summary"
    assert compressor.choose_mode(list(DEFAULT_RESULTS), ComplexityLevel.LOW) == "summary"


async def test_ranked_keeps_sentences_matching_the_query():
    provider = FakeProvider()
    compressor = ContextCompressor(provider, max_tokens=15)
    chunk = make_result("c1", "doc-lease", LEASE_TEXT, 1.0, 12)
    compressed = await compressor.compress("termination fee", [chunk], DOCS, ComplexityLevel.LOW)
    assert len(compressed) == 1
    assert compressed[0].content == "Termination requires a fee of five percent."
    assert (compressed[0].chunk_id, compressed[0].page_number) == ("c1", 12)
    assert provider.structured_calls == 0


async def test_ranked_keeps_original_sentence_order():
    text = (
        "Rent is payable monthly in advance. "
        "Ducks swim in the pond behind the office building every single summer afternoon. "
        "The termination fee equals rent for three months."
    )
    compressor = ContextCompressor(FakeProvider(), max_tokens=20)
    chunk = make_result("c1", "doc-lease", text, 1.0)
    compressed = await compressor.compress("termination fee rent", [chunk], DOCS, ComplexityLevel.LOW)
    content = compressed[0].content
    assert "Ducks" not in content
    assert content.index("Rent is payable") < content.index("The termination fee")


async def test_summary_replaces_each_document_with_one_excerpt():
    provider = FakeProvider(summary="Fee is 5% of rent.")
    compressor = ContextCompressor(provider, max_tokens=5)
    extra = make_result("c3", "doc-lease", "Notice must be given in writing.", 2.0, 13)
    compressed = await compressor.compress(
        "termination fee", [*DEFAULT_RESULTS, extra], DOCS, ComplexityLevel.MEDIUM
    )
    assert [(r.chunk_id, r.document_id) for r in compressed] == [("c1", "doc-lease"), ("c2", "doc-fin")]
    assert all(r.content == "Fee is 5% of rent." for r in compressed)
    assert all(r.source_method == "summary" for r in compressed)
    assert compressed[0].page_number == 12
    assert provider.structured_schemas == [DocumentSummary, DocumentSummary]
    assert "Lease Agreement.pdf" in provider.structured_prompts[0]


async def test_summary_failure_propagates():
    compressor = ContextCompressor(FakeProvider(fail_structured=(DocumentSummary,)), max_tokens=5)
    with pytest.raises(GenerationError):
        await compressor.compress("q", list(DEFAULT_RESULTS), DOCS, ComplexityLevel.LOW)
