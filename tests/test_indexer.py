import pytest

from campus_rag.errors import EmbeddingDimensionError, VectorStoreError
from campus_rag.indexer import Indexer, PageChunk, content_fingerprint, point_id

from .conftest import COLLECTION, DIM, FakeEmbedder


def test_fingerprint_is_stable_and_order_sensitive() -> None:
    assert content_fingerprint(["a", "b"]) == content_fingerprint(["a", "b"])
    assert content_fingerprint(["a", "b"]) != content_fingerprint(["b", "a"])
    assert len(content_fingerprint([])) == 64


def test_point_ids_are_deterministic() -> None:
    assert point_id("https://x.edu/a", 0) == point_id("https://x.edu/a", 0)
    assert point_id("https://x.edu/a", 0) != point_id("https://x.edu/a", 1)
    assert point_id("https://x.edu/a", 0) != point_id("https://x.edu/b", 0)


def test_index_chunks_counts_positions_per_url(indexer, vector_store) -> None:
    chunks = [
        PageChunk(url="https://x.edu/a", content="first of a"),
        PageChunk(url="https://x.edu/b", content="first of b"),
        PageChunk(url="https://x.edu/a", content="second of a"),
        PageChunk(url="https://x.edu/a", content="   "),
    ]
    assert indexer.index_chunks(chunks) == 3
    assert vector_store.count(COLLECTION) == 3

    hits = vector_store.search(COLLECTION, [1.0] * DIM, limit=10)
    by_id = {h.id: h.payload for h in hits}
    assert by_id[point_id("https://x.edu/a", 1)]["content"] == "second of a"
    assert by_id[point_id("https://x.edu/b", 0)]["chunk_index"] == 0


def test_reindexing_same_page_does_not_duplicate(indexer, vector_store) -> None:
    chunks = [PageChunk(url="https://x.edu/a", content=f"chunk {i}") for i in range(3)]
    indexer.index_chunks(chunks)
    indexer.index_chunks(chunks)
    assert vector_store.count(COLLECTION) == 3


def test_reindex_url_drops_stale_points(indexer, vector_store) -> None:
    indexer.index_chunks([PageChunk(url="https://x.edu/a", content=f"old {i}") for i in range(4)])
    indexer.index_chunks([PageChunk(url="https://x.edu/b", content="other page")])

    written = indexer.reindex_url(
        "https://x.edu/a",
        [
            PageChunk(url="https://x.edu/a", content="new 0"),
            PageChunk(url="https://x.edu/b", content="ignored"),
        ],
    )
    assert written == 1
    assert vector_store.count(COLLECTION) == 2
    contents = {h.payload["content"] for h in vector_store.search(COLLECTION, [1.0] * DIM, limit=10)}
    assert contents == {"new 0", "other page"}


def test_dimension_mismatch_writes_nothing(vector_store) -> None:
    indexer = Indexer(vector_store, FakeEmbedder(dim=DIM + 1), collection=COLLECTION, vector_size=DIM)
    with pytest.raises(EmbeddingDimensionError) as exc:
        indexer.index_chunks([PageChunk(url="https://x.edu/a", content="hello")])
    assert exc.value.actual == DIM + 1
    assert exc.value.expected == DIM
    assert vector_store.count(COLLECTION) == 0


def test_search_round_trip_returns_indexed_chunk(indexer, vector_store, embedder) -> None:
    indexer.index_chunks(
        [
            PageChunk(url="https://x.edu/a", content="The dining hall opens at 7am.", title="Dining"),
            PageChunk(url="https://x.edu/b", content="Parking permits are sold online."),
        ]
    )
    query = embedder.vector_for("The dining hall opens at 7am.")
    top = vector_store.search(COLLECTION, query, limit=1)[0]
    assert top.payload["url"] == "https://x.edu/a"
    assert top.payload["title"] == "Dining"
    assert top.score == pytest.approx(1.0)


class FailingStore:
    def delete(self, collection, filter=None):
        raise VectorStoreError("store unreachable")


def test_delete_failures_are_returned(embedder) -> None:
    indexer = Indexer(FailingStore(), embedder, collection=COLLECTION, vector_size=DIM)
    result = indexer.delete_urls(["https://x.edu/a"])
    assert not result.ok
    assert "unreachable" in result.error
    assert not indexer.delete_all().ok
    # nothing to delete never touches the store
    assert indexer.delete_urls([]).ok


def test_delete_urls_removes_only_those_urls(indexer, vector_store) -> None:
    indexer.index_chunks(
        [
            PageChunk(url="https://x.edu/a", content="a"),
            PageChunk(url="https://x.edu/b", content="b"),
            PageChunk(url="https://x.edu/c", content="c"),
        ]
    )
    assert indexer.delete_urls(["https://x.edu/a", "https://x.edu/c"]).ok
    assert vector_store.count(COLLECTION) == 1
    assert indexer.delete_all().ok
    assert vector_store.count(COLLECTION) == 0
