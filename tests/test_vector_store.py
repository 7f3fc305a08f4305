from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import List

import numpy as np
import pytest

from ger.errors import DimensionMismatch, InvalidChunk, PersistenceError
from ger.types import Chunk
from ger.vector_store import VectorStore, cosine_similarity


def _chunk(document_id: str, index: int, embedding, text: str = "") -> Chunk:
    return Chunk(
        id=f"{document_id}_chunk_{index}",
        document_id=document_id,
        text=text or f"{document_id} text {index}",
        index=index,
        embedding=embedding,
    )


def test_vector_store_similarity_search_orders_by_cosine(tmp_path: Path) -> None:
    store = VectorStore(tmp_path / "index.json")
    store.add_chunks(
        [
            _chunk("a", 0, [1.0, 0.0], "alpha content"),
            _chunk("b", 0, [0.0, 1.0], "beta content"),
            _chunk("c", 0, [-1.0, 0.0], "gamma content"),
        ]
    )

    results = store.search([1.0, 0.0], top_k=5)

    assert [r.chunk.document_id for r in results] == ["a", "b", "c"]
    assert results[0].chunk.text == "alpha content"
    assert results[0].score == pytest.approx(1.0)
    assert results[2].score == pytest.approx(-1.0)


def test_vector_store_similarity_search_handles_non_positive_k(tmp_path: Path) -> None:
    store = VectorStore(tmp_path / "index.json")
    store.add_chunks([_chunk("a", 0, [1.0, 0.0])])
    assert store.search([1.0, 0.0], top_k=0) == []
    assert store.search([1.0, 0.0], top_k=-3) == []


def test_search_on_empty_store_returns_nothing(tmp_path: Path) -> None:
    assert VectorStore(tmp_path / "index.json").search([1.0, 2.0, 3.0], top_k=3) == []


@pytest.mark.parametrize("dimension", [1, 3, 16])
def test_search_respects_top_k_and_sorts_descending(tmp_path: Path, dimension: int) -> None:
    rng = np.random.default_rng(dimension)
    store = VectorStore(tmp_path / "index.json")
    store.add_chunks([_chunk("doc", i, rng.normal(size=dimension).tolist()) for i in range(12)])

    results = store.search(rng.normal(size=dimension).tolist(), top_k=5)

    assert len(results) == 5
    scores = [r.score for r in results]
    assert scores == sorted(scores, reverse=True)
    assert all(-1.0 <= s <= 1.0 for s in scores)


def test_ties_keep_insertion_order(tmp_path: Path) -> None:
    store = VectorStore(tmp_path / "index.json")
    store.add_chunks([_chunk("first", 0, [1.0, 0.0]), _chunk("second", 0, [1.0, 0.0]), _chunk("third", 0, [1.0, 0.0])])

    results = store.search([1.0, 0.0], top_k=3)

    assert [r.chunk.document_id for r in results] == ["first", "second", "third"]


def test_add_chunks_upserts_by_id(tmp_path: Path) -> None:
    store = VectorStore(tmp_path / "index.json")
    chunks = [_chunk("doc", 0, [1.0, 0.0]), _chunk("doc", 1, [0.0, 1.0])]

    store.add_chunks(chunks)
    store.add_chunks([_chunk("doc", 0, [1.0, 0.0], "updated"), _chunk("doc", 1, [0.0, 1.0])])

    assert store.count() == 2
    top = store.search([1.0, 0.0], top_k=1)[0]
    assert top.chunk.text == "updated"


@pytest.mark.parametrize("embedding", [None, []])
def test_add_chunks_rejects_missing_embedding(tmp_path: Path, embedding) -> None:
    store = VectorStore(tmp_path / "index.json")
    with pytest.raises(InvalidChunk):
        store.add_chunks([_chunk("ok", 0, [1.0, 0.0]), _chunk("bad", 0, embedding)])
    assert store.count() == 0


def test_add_chunks_rejects_mixed_dimensions(tmp_path: Path) -> None:
    store = VectorStore(tmp_path / "index.json")
    store.add_chunks([_chunk("a", 0, [1.0, 0.0])])
    with pytest.raises(DimensionMismatch):
        store.add_chunks([_chunk("b", 0, [1.0, 0.0, 0.0])])
    assert store.count() == 1


def test_search_rejects_query_of_wrong_dimension(tmp_path: Path) -> None:
    store = VectorStore(tmp_path / "index.json")
    store.add_chunks([_chunk("a", 0, [1.0, 0.0])])
    with pytest.raises(DimensionMismatch):
        store.search([1.0, 0.0, 0.0], top_k=1)


def test_zero_vectors_score_zero(tmp_path: Path) -> None:
    assert cosine_similarity([0.0, 0.0], [1.0, 2.0]) == 0.0
    assert cosine_similarity([3.0, 4.0], [3.0, 4.0]) == pytest.approx(1.0)

    store = VectorStore(tmp_path / "index.json")
    store.add_chunks([_chunk("zero", 0, [0.0, 0.0]), _chunk("one", 0, [1.0, 0.0])])
    results = store.search([0.0, 0.0], top_k=2)
    assert [r.score for r in results] == [0.0, 0.0]


def test_remove_document_hides_its_chunks(tmp_path: Path) -> None:
    store = VectorStore(tmp_path / "index.json")
    store.add_chunks([_chunk("x", 0, [1.0, 0.0]), _chunk("x", 1, [0.9, 0.1]), _chunk("y", 0, [0.0, 1.0])])

    assert store.remove_document("x") == 2
    assert store.remove_document("missing") == 0
    results = store.search([1.0, 0.0], top_k=10)
    assert [r.chunk.document_id for r in results] == ["y"]


def test_clear_empties_store(tmp_path: Path) -> None:
    store = VectorStore(tmp_path / "index.json")
    store.add_chunks([_chunk("a", 0, [1.0]), _chunk("b", 0, [2.0])])
    store.clear()
    assert store.count() == 0
    assert store.list_documents() == []


def test_list_documents_in_first_insertion_order(tmp_path: Path) -> None:
    store = VectorStore(tmp_path / "index.json")
    store.add_chunks([_chunk("b", 0, [1.0]), _chunk("a", 0, [1.0]), _chunk("b", 1, [1.0])])
    assert store.list_documents() == ["b", "a"]


def test_snapshot_round_trip(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "dir" / "index.json"
    store = VectorStore(path)
    chunks = [_chunk("a", 0, [0.25, 0.5]), _chunk("a", 1, [1.0, -1.0]), _chunk("b", 0, [0.0, 3.0])]
    store.add_chunks(chunks)
    store.save_snapshot()

    reloaded = VectorStore(path)

    assert reloaded.count() == 3
    by_id = {r.chunk.id: r.chunk for r in reloaded.search([1.0, 1.0], top_k=10)}
    for chunk in chunks:
        assert by_id[chunk.id].text == chunk.text
        assert by_id[chunk.id].document_id == chunk.document_id
        assert by_id[chunk.id].embedding == chunk.embedding


def test_snapshot_file_layout(tmp_path: Path) -> None:
    path = tmp_path / "index.json"
    store = VectorStore(path)
    store.add_chunks([_chunk("doc", 0, [1.0, 2.0], "hello")])
    store.save_snapshot()

    data = json.loads(path.read_text(encoding="utf-8"))
    assert data == [{"id": "doc_chunk_0", "documentId": "doc", "text": "hello", "index": 0, "embedding": [1.0, 2.0]}]


def test_missing_snapshot_starts_empty(tmp_path: Path) -> None:
    store = VectorStore(tmp_path / "does-not-exist.json")
    assert store.count() == 0


@pytest.mark.parametrize(
    "content",
    [
        "{not json",
        '{"id": "x"}',
        '[{"id": "x", "documentId": "d", "text": "t", "index": 0}]',
        '[{"id": "x", "documentId": "d", "text": "t", "index": 0, "embedding": []}]',
        '[{"id": "x", "documentId": "d", "text": "   ", "index": 0, "embedding": [1.0]}]',
    ],
)
def test_corrupt_snapshot_is_logged_and_ignored(tmp_path: Path, caplog: pytest.LogCaptureFixture, content: str) -> None:
    path = tmp_path / "index.json"
    path.write_text(content, encoding="utf-8")

    with caplog.at_level(logging.ERROR, logger="ger.vector_store"):
        store = VectorStore(path)

    assert store.count() == 0
    assert any("Error loading vector store" in record.message for record in caplog.records)


def test_save_failure_raises_persistence_error(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    store = VectorStore(blocker / "index.json")
    store.add_chunks([_chunk("a", 0, [1.0])])

    with pytest.raises(PersistenceError):
        store.save_snapshot()


def test_replace_document_is_atomic_for_readers(tmp_path: Path) -> None:
    store = VectorStore(tmp_path / "index.json")
    store.replace_document("doc", [_chunk("doc", i, [1.0, float(i)]) for i in range(3)])
    seen_counts: List[int] = []
    stop = threading.Event()

    def reindex() -> None:
        for round_number in range(200):
            # Alternate chunk ids so old and new sets never overlap.
            offset = 3 * (round_number % 2)
            store.replace_document("doc", [_chunk("doc", offset + i, [1.0, float(i)]) for i in range(3)])
        stop.set()

    writer = threading.Thread(target=reindex)
    writer.start()
    while not stop.is_set():
        seen_counts.append(len(store.search([1.0, 0.0], top_k=10)))
    writer.join()

    assert set(seen_counts) <= {3}
    assert store.count() == 3


class _HeldWriteLock:
    """Stands in for the writer lock; the first writer waits until released."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._count_lock = threading.Lock()
        self.writers = 0
        self.first_waiting = threading.Event()
        self.release_first = threading.Event()

    def __enter__(self) -> "_HeldWriteLock":
        with self._count_lock:
            self.writers += 1
            position = self.writers
        if position == 1:
            self.first_waiting.set()
            self.release_first.wait(timeout=5)
        self._lock.acquire()
        return self

    def __exit__(self, *exc_info) -> None:
        self._lock.release()


def test_older_snapshot_never_overwrites_newer_file(tmp_path: Path) -> None:
    path = tmp_path / "index.json"
    store = VectorStore(path)
    gate = _HeldWriteLock()
    store._write_lock = gate

    store.add_chunks([_chunk("a", 0, [1.0, 0.0])])
    older = threading.Thread(target=store.save_snapshot)
    older.start()
    assert gate.first_waiting.wait(timeout=5)

    # The older save has captured its payload; a newer state is written first.
    store.add_chunks([_chunk("b", 0, [0.0, 1.0])])
    store.save_snapshot()
    gate.release_first.set()
    older.join(timeout=5)

    on_disk = [item["id"] for item in json.loads(path.read_text(encoding="utf-8"))]
    assert on_disk == ["a_chunk_0", "b_chunk_0"]
    assert VectorStore(path).list_documents() == ["a", "b"]


def test_snapshot_matches_memory_after_concurrent_mutations(tmp_path: Path) -> None:
    path = tmp_path / "index.json"
    store = VectorStore(path)

    def churn(worker: int) -> None:
        document_id = f"doc{worker}"
        for round_number in range(40):
            if round_number % 3 == 2:
                store.remove_document(document_id)
            else:
                store.replace_document(
                    document_id, [_chunk(document_id, i, [1.0, float(worker)]) for i in range(round_number % 4 + 1)]
                )
            store.save_snapshot()

    threads = [threading.Thread(target=churn, args=(worker,)) for worker in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    reloaded = VectorStore(path)
    assert sorted(reloaded.list_documents()) == sorted(store.list_documents())
    assert reloaded.count() == store.count()
    expected_ids = sorted(result.chunk.id for result in store.search([1.0, 0.0], top_k=1000))
    assert sorted(result.chunk.id for result in reloaded.search([1.0, 0.0], top_k=1000)) == expected_ids
