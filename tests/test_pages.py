import pytest

from campus_rag.errors import InvalidUrlError, ValidationError, VectorStoreError
from campus_rag.indexer import PageChunk
from campus_rag.models import PageStatus
from campus_rag.pages import PageService

from .conftest import COLLECTION


def test_add_pages_counts(page_service, page_store) -> None:
    result = page_service.add_pages(
        ["https://x.edu/a/", "https://x.edu/a#top", "not a url", "https://x.edu/b"]
    )
    assert (result.received, result.valid, result.unique, result.inserted) == (4, 3, 2, 2)
    assert page_store.list_urls() == ["https://x.edu/a", "https://x.edu/b"]
    assert page_store.get("https://x.edu/a").status == PageStatus.QUEUED

    again = page_service.add_pages(["https://x.edu/a"])
    assert again.inserted == 0


def test_add_pages_validation(page_service) -> None:
    with pytest.raises(ValidationError):
        page_service.add_pages([])
    with pytest.raises(InvalidUrlError):
        page_service.add_pages(["nope", "ftp://x.edu/"])
    with pytest.raises(InvalidUrlError):
        page_service.add_page("javascript:alert(1)")


def test_delete_pages_removes_rows_and_points(page_service, page_store, indexer, vector_store) -> None:
    page_service.add_pages(["https://x.edu/a", "https://x.edu/b"])
    indexer.index_chunks(
        [PageChunk(url="https://x.edu/a", content="a"), PageChunk(url="https://x.edu/b", content="b")]
    )

    result = page_service.delete_pages(["https://x.edu/a/", "https://x.edu/a", "bad"])
    assert (result.received, result.valid, result.unique, result.deleted_from_db) == (3, 2, 1, 1)
    assert result.indexer_error is None
    assert page_store.list_urls() == ["https://x.edu/b"]
    assert vector_store.count(COLLECTION) == 1


class FlakyStore:
    """Vector store whose deletes fail until ``healthy`` is set."""

    def __init__(self, inner) -> None:
        self.inner = inner
        self.healthy = False

    def upsert(self, collection, points):
        self.inner.upsert(collection, points)

    def search(self, collection, vector, limit, filter=None):
        return self.inner.search(collection, vector, limit, filter)

    def delete(self, collection, filter=None):
        if not self.healthy:
            raise VectorStoreError("store unreachable")
        self.inner.delete(collection, filter)


def test_failed_vector_delete_marks_pending_then_retry(page_store, indexer, vector_store) -> None:
    flaky = FlakyStore(vector_store)
    indexer.store = flaky
    service = PageService(page_store, indexer)

    service.add_pages(["https://x.edu/a"])
    indexer.index_chunks([PageChunk(url="https://x.edu/a", content="a")])

    result = service.delete_pages(["https://x.edu/a"])
    assert result.deleted_from_db == 0
    assert "unreachable" in result.indexer_error
    assert page_store.get("https://x.edu/a").status == PageStatus.DELETE_PENDING
    assert vector_store.count(COLLECTION) == 1

    flaky.healthy = True
    retried = service.retry_pending_deletes()
    assert retried.deleted_from_db == 1
    assert page_store.get("https://x.edu/a") is None
    assert vector_store.count(COLLECTION) == 0

    assert service.retry_pending_deletes().deleted_from_db == 0


def test_delete_all_pages(page_service, page_store, indexer, vector_store) -> None:
    page_service.add_pages(["https://x.edu/a", "https://y.edu/b"])
    indexer.index_chunks([PageChunk(url="https://x.edu/a", content="a")])

    result = page_service.delete_all_pages()
    assert result.deleted_from_db == 2
    assert page_store.list_urls() == []
    assert vector_store.count(COLLECTION) == 0


def test_crawler_add_keeps_newest(page_service, page_store) -> None:
    page_service.add_pages(["https://news.edu/old-1", "https://news.edu/old-2", "https://other.edu/x"])

    result = page_service.add_pages_crawler(
        ["https://news.edu/new-1", "https://news.edu/new-2", "https://news.edu/new-3"],
        domain_cap=10,
        keep=3,
    )
    assert result.inserted == 3
    assert not result.rotated
    assert result.trimmed == 2

    urls = page_store.list_urls()
    assert "https://news.edu/old-1" not in urls
    assert "https://news.edu/old-2" not in urls
    assert "https://other.edu/x" in urls
    assert page_store.count_for_domain("news.edu") == 3


def test_crawler_add_rotates_when_over_cap(page_service, page_store) -> None:
    page_service.add_pages([f"https://news.edu/p{i}" for i in range(4)])

    result = page_service.add_pages_crawler(
        ["https://news.edu/fresh-1", "https://news.edu/fresh-2"], domain_cap=5, keep=100
    )
    assert result.rotated
    assert result.inserted == 2
    urls = page_store.list_urls()
    assert "https://news.edu/p0" not in urls
    assert "https://news.edu/fresh-2" in urls
    assert page_store.count_for_domain("news.edu") == 5


def test_save_records_hash_and_status(page_store) -> None:
    page_store.save("https://x.edu/a", PageStatus.INDEXED, content_hash="abc", chunk_count=4)
    rec = page_store.get("https://x.edu/a")
    assert rec.status == PageStatus.INDEXED
    assert rec.content_hash == "abc"
    assert rec.chunk_count == 4
    assert rec.last_index_at is not None

    page_store.save("https://x.edu/a", PageStatus.UNCHANGED)
    rec = page_store.get("https://x.edu/a")
    assert rec.status == PageStatus.UNCHANGED
    assert rec.content_hash == "abc"

    page_store.save("https://x.edu/a", PageStatus.ERROR, clear_hash=True)
    rec = page_store.get("https://x.edu/a")
    assert rec.status == PageStatus.ERROR
    assert rec.content_hash is None
    assert rec.chunk_count == 4
