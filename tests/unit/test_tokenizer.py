"""Tests for the keyword tokenizer and token counting."""

from dataroom_rag.keyword_search.tokenizer import count_tokens, tokenize


def test_tokenize_basic():
    tokens = tokenize("The quick brown fox jumps over the lazy dog")
    assert "quick" in tokens
    assert "fox" in tokens
    # Stopwords removed
    assert "the" not in tokens
    assert "over" not in tokens


def test_tokenize_drops_page_words():
    assert tokenize("rent on page 12") == ["rent", "12"]


def test_tokenize_punctuation():
    tokens = tokenize("Lease, rent! Who pays?")
    assert tokens == ["lease", "rent", "pays"]


def test_tokenize_empty():
    assert tokenize("") == []
    assert tokenize("the a an is are") == []


def test_count_tokens():
    assert count_tokens("") == 0
    assert count_tokens("one") == 1
    assert count_tokens("one two three") == 3


def test_count_tokens_without_whitespace():
    # Text with no spaces still costs many tokens.
    assert count_tokens("\u79df\u8d41\u5408\u540c\u6761\u6b3e" * 200) >= 400
    assert count_tokens("https://example.com/" + "x" * 4000) > 100
