"""Text preprocessing for BM25 keyword search, plus model-token counting."""

from __future__ import annotations

import re

import tiktoken

from dataroom_rag.config.constants import STOPWORDS, TIKTOKEN_ENCODING

_ENCODING = tiktoken.get_encoding(TIKTOKEN_ENCODING)


def tokenize(text: str) -> list[str]:
    """Tokenize text for BM25: lowercase, strip punctuation, remove stopwords."""
    text = text.lower()
    text = re.sub(r"[^\w\s]", " ", text)
    tokens = text.split()
    return [t for t in tokens if t not in STOPWORDS and len(t) > 1]


def count_tokens(text: str) -> int:
    """Model tokens in ``text``, for keeping prompts inside a context window."""
    if not text:
        return 0
    return len(_ENCODING.encode(text, disallowed_special=()))
