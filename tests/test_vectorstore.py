import pytest

from campus_rag import vectorstore
from campus_rag.vectorstore import IndexPoint, InMemoryVectorStore, PgVectorStore, PointFilter


def _point(pid: str, url: str, vector):
    return IndexPoint(id=pid, vector=list(vector), payload={"url": url, "content": pid})


@pytest.fixture
def store() -> InMemoryVectorStore:
    s = InMemoryVectorStore()
    s.upsert(
        "docs",
        [
            _point("a", "https://a.edu/1", [1.0, 0.0, 0.0]),
            _point("b", "https://a.edu/2", [0.8, 0.6, 0.0]),
            _point("c", "https://b.edu/1", [0.0, 0.0, 1.0]),
        ],
    )
    return s


def test_search_ranks_by_cosine(store) -> None:
    hits = store.search("docs", [1.0, 0.0, 0.0], limit=2)
    assert [h.id for h in hits] == ["a", "b"]
    assert hits[0].score == pytest.approx(1.0)
    assert hits[1].score == pytest.approx(0.8)


def test_search_with_url_filter(store) -> None:
    hits = store.search("docs", [1.0, 0.0, 0.0], limit=10, filter=PointFilter(urls=["https://b.edu/1"]))
    assert [h.id for h in hits] == ["c"]


def test_upsert_overwrites_same_id(store) -> None:
    store.upsert("docs", [_point("a", "https://a.edu/1", [0.0, 1.0, 0.0])])
    assert store.count("docs") == 3
    hits = store.search("docs", [0.0, 1.0, 0.0], limit=1)
    assert hits[0].id == "a"


def test_delete_by_filter_and_all(store) -> None:
    store.delete("docs", PointFilter.for_url("https://a.edu/1"))
    assert store.count("docs") == 2
    store.delete("docs", None)
    assert store.count("docs") == 0
    # unknown collections are a no-op
    store.delete("missing", None)
    assert store.search("missing", [1.0, 0.0, 0.0], limit=5) == []


def test_collections_are_isolated(store) -> None:
    store.upsert("other", [_point("z", "https://a.edu/1", [1.0, 0.0, 0.0])])
    store.delete("docs", None)
    assert store.count("other") == 1


def test_get_vector_store_selects_backend(monkeypatch) -> None:
    monkeypatch.setattr(vectorstore.settings, "VECTOR_BACKEND", "memory")
    assert isinstance(vectorstore.get_vector_store(), InMemoryVectorStore)
    monkeypatch.setattr(vectorstore.settings, "VECTOR_BACKEND", "pgvector")
    assert isinstance(vectorstore.get_vector_store(), PgVectorStore)
    monkeypatch.setattr(vectorstore.settings, "VECTOR_BACKEND", "faiss")
    with pytest.raises(ValueError):
        vectorstore.get_vector_store()
