"""Exact-cosine vector store persisted as a single JSON snapshot."""
from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np

from .errors import DimensionMismatch, InvalidChunk, PersistenceError
from .types import Chunk, SearchResult

logger = logging.getLogger(__name__)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two equal-length vectors; 0.0 if either has zero magnitude."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise DimensionMismatch(expected=va.shape[0], actual=vb.shape[0])
    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    score = float(np.dot(va, vb) / (norm_a * norm_b))
    return max(-1.0, min(1.0, score))


class VectorStore:
    """Holds every embedded chunk in memory and answers similarity queries.

    All reads and writes of the chunk collection go through one lock, so a
    search never sees a document half way through a re-index. Snapshot writes
    copy the collection under that lock and do the file I/O outside it, under a
    separate writer lock; a snapshot older than the one already on disk is
    never written.
    """

    def __init__(self, storage_path: Path) -> None:
        self.storage_path = Path(storage_path)
        # Insertion-ordered; search ties resolve in this order.
        self._chunks: Dict[str, Chunk] = {}
        self._lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._generation = 0
        self._persisted_generation = -1
        self.load_snapshot()

    @staticmethod
    def _validate_embeddings(chunks: Sequence[Chunk], dimension: Optional[int]) -> None:
        for chunk in chunks:
            if not chunk.embedding:
                raise InvalidChunk(f"Chunk {chunk.id!r} must have a non-empty embedding")
            if dimension is None:
                dimension = len(chunk.embedding)
            elif len(chunk.embedding) != dimension:
                raise DimensionMismatch(expected=dimension, actual=len(chunk.embedding))

    def _dimension_excluding(self, chunk_ids: Iterable[str] = (), document_id: Optional[str] = None) -> Optional[int]:
        """Dimension of the chunks that survive a pending replace, if any remain."""
        skip = set(chunk_ids)
        for chunk in self._chunks.values():
            if chunk.id in skip or chunk.document_id == document_id:
                continue
            return len(chunk.embedding or [])
        return None

    def _insert(self, chunks: Sequence[Chunk]) -> None:
        for chunk in chunks:
            # Pop first so a replaced chunk moves to the end of insertion order.
            self._chunks.pop(chunk.id, None)
            self._chunks[chunk.id] = chunk

    def _drop_document(self, document_id: str) -> int:
        doomed = [chunk_id for chunk_id, chunk in self._chunks.items() if chunk.document_id == document_id]
        for chunk_id in doomed:
            del self._chunks[chunk_id]
        return len(doomed)

    def add_chunks(self, chunks: Sequence[Chunk]) -> int:
        """Insert or replace chunks by id. Nothing is stored if any chunk is invalid."""
        chunks = list(chunks)
        with self._lock:
            dimension = self._dimension_excluding(chunk_ids=[c.id for c in chunks])
            self._validate_embeddings(chunks, dimension)
            self._insert(chunks)
            self._generation += 1
        return len(chunks)

    def replace_document(self, document_id: str, chunks: Sequence[Chunk]) -> int:
        """Swap a document's chunks for a new set in one exclusive step."""
        chunks = list(chunks)
        with self._lock:
            dimension = self._dimension_excluding(chunk_ids=[c.id for c in chunks], document_id=document_id)
            self._validate_embeddings(chunks, dimension)
            removed = self._drop_document(document_id)
            self._insert(chunks)
            self._generation += 1
        logger.debug("Replaced document %s: removed %d chunks, added %d", document_id, removed, len(chunks))
        return len(chunks)

    def remove_document(self, document_id: str) -> int:
        """Delete every chunk of a document; returns how many were removed."""
        with self._lock:
            removed = self._drop_document(document_id)
            if removed:
                self._generation += 1
        return removed

    def clear(self) -> None:
        with self._lock:
            self._chunks = {}
            self._generation += 1

    def count(self) -> int:
        with self._lock:
            return len(self._chunks)

    def list_documents(self) -> List[str]:
        """Distinct document ids in the order they were first stored."""
        with self._lock:
            return list(dict.fromkeys(chunk.document_id for chunk in self._chunks.values()))

    def search(self, query_embedding: Sequence[float], top_k: int = 5) -> List[SearchResult]:
        """Return the top_k chunks by cosine similarity, best first."""
        if top_k <= 0:
            return []

        with self._lock:
            chunks = list(self._chunks.values())
        if not chunks:
            return []

        query = np.asarray(query_embedding, dtype=np.float64)
        dimension = len(chunks[0].embedding or [])
        if query.ndim != 1 or query.shape[0] != dimension:
            raise DimensionMismatch(expected=dimension, actual=int(query.size))

        vectors = np.asarray([chunk.embedding for chunk in chunks], dtype=np.float64)
        denom = np.linalg.norm(vectors, axis=1) * float(np.linalg.norm(query))
        dots = vectors @ query
        scores = np.divide(dots, denom, out=np.zeros_like(dots), where=denom != 0)
        scores = np.clip(scores, -1.0, 1.0)

        # Stable sort keeps insertion order among equal scores.
        order = np.argsort(-scores, kind="stable")[:top_k]
        return [SearchResult(chunk=chunks[int(i)], score=float(scores[int(i)])) for i in order]

    def save_snapshot(self) -> None:
        """Write the whole collection to ``storage_path``, replacing any previous file."""
        with self._lock:
            payload = [chunk.to_payload() for chunk in self._chunks.values()]
            generation = self._generation

        with self._write_lock:
            if generation < self._persisted_generation:
                logger.debug("Skipping stale snapshot (generation %d < %d)", generation, self._persisted_generation)
                return
            try:
                self.storage_path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(
                    prefix=f".{self.storage_path.name}.", suffix=".tmp", dir=str(self.storage_path.parent)
                )
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as fh:
                        json.dump(payload, fh, indent=2)
                    os.replace(tmp_name, self.storage_path)
                except BaseException:
                    Path(tmp_name).unlink(missing_ok=True)
                    raise
            except OSError as exc:
                raise PersistenceError(f"Could not write snapshot to {self.storage_path}: {exc}") from exc
            self._persisted_generation = generation
        logger.debug("Saved %d chunks to %s", len(payload), self.storage_path)

    def load_snapshot(self) -> None:
        """Replace the in-memory collection with the snapshot on disk.

        A missing file means an empty store. An unreadable or malformed file is
        logged and also leaves the store empty.
        """
        loaded: Dict[str, Chunk] = {}
        if self.storage_path.exists():
            try:
                loaded = self._read_snapshot()
            except (OSError, ValueError, KeyError, TypeError) as exc:
                logger.error("Error loading vector store from %s: %s", self.storage_path, exc)
                loaded = {}

        with self._lock:
            self._chunks = loaded
            self._generation += 1
        if loaded:
            logger.info("Loaded %d chunks from %s", len(loaded), self.storage_path)

    def _read_snapshot(self) -> Dict[str, Chunk]:
        with self.storage_path.open("r", encoding="utf-8") as fh:
            raw_data = json.load(fh)
        if not isinstance(raw_data, list):
            raise ValueError("snapshot must be a JSON array of chunks")

        chunks = [Chunk.from_payload(item) for item in raw_data]
        self._validate_embeddings(chunks, None)
        loaded: Dict[str, Chunk] = {}
        for chunk in chunks:
            loaded.pop(chunk.id, None)
            loaded[chunk.id] = chunk
        return loaded
