"""FAISS vector index over chunk embeddings with document/page mapping and persistence."""

from __future__ import annotations

import json
import os
from pathlib import Path

import faiss
import numpy as np

from dataroom_rag.models.domain import ChunkRecord
from dataroom_rag.observability.logger import get_logger

logger = get_logger("faiss_store")

# Candidates fetched per requested result before the document scope is applied.
OVERFETCH_FACTOR = 4


class ChunkVectorIndex:
    def __init__(self, dimensions: int, index_path: str | None = None) -> None:
        self._dimensions = dimensions
        self._index_path = index_path
        self._index = faiss.IndexIDMap(faiss.IndexFlatIP(dimensions))
        self._entries: dict[int, dict] = {}
        self._next_id: int = 0

        if index_path:
            self._try_load(index_path)

    def _try_load(self, path: str) -> None:
        index_file = os.path.join(path, "index.faiss")
        mapping_file = os.path.join(path, "chunk_mapping.json")
        if os.path.exists(index_file) and os.path.exists(mapping_file):
            self._index = faiss.read_index(index_file)
            with open(mapping_file) as f:
                data = json.load(f)
            self._entries = {int(k): v for k, v in data["entries"].items()}
            self._next_id = data["next_id"]
            logger.info("faiss_loaded", size=self._index.ntotal, path=path)

    def add(self, chunks: list[ChunkRecord], embeddings: np.ndarray) -> None:
        if len(chunks) == 0:
            return
        embeddings = np.ascontiguousarray(embeddings, dtype=np.float32)
        faiss.normalize_L2(embeddings)
        int_ids = []
        for chunk in chunks:
            self._entries[self._next_id] = {
                "chunk_id": chunk.chunk_id,
                "document_id": chunk.document_id,
                "page_number": chunk.page_number,
            }
            int_ids.append(self._next_id)
            self._next_id += 1
        self._index.add_with_ids(embeddings, np.array(int_ids, dtype=np.int64))
        logger.info("faiss_added", count=len(chunks), total=self._index.ntotal)

    def search(
        self,
        query_embedding: np.ndarray,
        document_ids: frozenset[str],
        top_k: int,
        page_numbers: frozenset[int] | None = None,
    ) -> list[tuple[str, float]]:
        """Return (chunk_id, score) pairs for chunks inside ``document_ids`` only."""
        if self._index.ntotal == 0 or not document_ids:
            return []
        query_embedding = np.ascontiguousarray(query_embedding, dtype=np.float32).reshape(1, -1)
        faiss.normalize_L2(query_embedding)
        fetch = min(top_k * OVERFETCH_FACTOR, self._index.ntotal)
        scores, indices = self._index.search(query_embedding, fetch)
        results = []
        for idx, score in zip(indices[0], scores[0]):
            idx = int(idx)
            if idx == -1:
                continue
            entry = self._entries.get(idx)
            if entry is None or entry["document_id"] not in document_ids:
                continue
            if page_numbers and entry["page_number"] not in page_numbers:
                continue
            results.append((entry["chunk_id"], float(score)))
            if len(results) >= top_k:
                break
        return results

    def save(self, path: str | None = None) -> None:
        path = path or self._index_path
        if not path:
            return
        Path(path).mkdir(parents=True, exist_ok=True)
        faiss.write_index(self._index, os.path.join(path, "index.faiss"))
        with open(os.path.join(path, "chunk_mapping.json"), "w") as f:
            json.dump({"entries": self._entries, "next_id": self._next_id}, f)
        logger.info("faiss_saved", path=path, size=self._index.ntotal)

    @property
    def size(self) -> int:
        return self._index.ntotal

    @property
    def dimensions(self) -> int:
        return self._index.d
