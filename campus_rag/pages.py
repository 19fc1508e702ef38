"""Page table access and page administration.

Provides:
- PageRecord: detached snapshot of a Page row
- PageStore: SQLAlchemy access to the pages table keyed by normalized URL
- PageService: add/delete pages, keeping the vector store in step
  (failed vector deletes leave rows in delete_pending for a later retry),
  plus the crawler's capped insert with rotate-in and keep-newest trimming
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.orm import sessionmaker

from campus_rag.config import settings
from campus_rag.db import session_scope
from campus_rag.errors import InvalidUrlError, ValidationError
from campus_rag.indexer import Indexer
from campus_rag.models import Page, PageStatus, _utcnow
from campus_rag.utils import normalize_url, normalize_urls, url_domain

logger = logging.getLogger(__name__)


@dataclass
class PageRecord:
    url: str
    status: PageStatus
    content_hash: Optional[str]
    chunk_count: int
    last_index_at: Optional[datetime]
    created_at: datetime


def _record(p: Page) -> PageRecord:
    return PageRecord(
        url=p.url,
        status=PageStatus(p.status),
        content_hash=p.content_hash,
        chunk_count=p.chunk_count or 0,
        last_index_at=p.last_index_at,
        created_at=p.created_at,
    )


def _domain_clause(domain: str):
    return or_(Page.url.like(f"http://{domain}/%"), Page.url.like(f"https://{domain}/%"))


class PageStore:
    """Pages table operations; every method runs in its own transaction."""

    def __init__(self, session_factory: Optional[sessionmaker] = None) -> None:
        self.session_factory = session_factory

    def get(self, url: str) -> Optional[PageRecord]:
        with session_scope(self.session_factory) as db:
            page = db.execute(select(Page).where(Page.url == url)).scalar_one_or_none()
            return _record(page) if page is not None else None

    def list_urls(self) -> List[str]:
        with session_scope(self.session_factory) as db:
            return list(db.execute(select(Page.url).order_by(Page.id)).scalars())

    def urls_with_status(self, status: PageStatus) -> List[str]:
        with session_scope(self.session_factory) as db:
            return list(db.execute(select(Page.url).where(Page.status == status).order_by(Page.id)).scalars())

    def insert_queued(self, urls: Sequence[str]) -> int:
        """Insert URLs as queued, skipping ones already present. Returns the insert count."""
        if not urls:
            return 0
        with session_scope(self.session_factory) as db:
            existing = set(db.execute(select(Page.url).where(Page.url.in_(list(urls)))).scalars())
            fresh = [u for u in urls if u not in existing]
            for u in fresh:
                db.add(Page(url=u, status=PageStatus.QUEUED, chunk_count=0))
            return len(fresh)

    def save(
        self,
        url: str,
        status: PageStatus,
        content_hash: Optional[str] = None,
        chunk_count: Optional[int] = None,
        clear_hash: bool = False,
    ) -> None:
        """Upsert a page's status and stamp last_index_at.

        ``content_hash`` and ``chunk_count`` are only written when given.
        ``clear_hash`` drops the stored fingerprint so the next ingest rewrites
        the page's points.
        """
        with session_scope(self.session_factory) as db:
            page = db.execute(select(Page).where(Page.url == url)).scalar_one_or_none()
            if page is None:
                page = Page(url=url, chunk_count=0)
                db.add(page)
            page.status = status
            page.last_index_at = _utcnow()
            if clear_hash:
                page.content_hash = None
            elif content_hash is not None:
                page.content_hash = content_hash
            if chunk_count is not None:
                page.chunk_count = chunk_count

    def set_status(self, urls: Sequence[str], status: PageStatus) -> int:
        if not urls:
            return 0
        with session_scope(self.session_factory) as db:
            result = db.execute(update(Page).where(Page.url.in_(list(urls))).values(status=status))
            return result.rowcount or 0

    def set_status_all(self, status: PageStatus) -> int:
        with session_scope(self.session_factory) as db:
            result = db.execute(update(Page).values(status=status))
            return result.rowcount or 0

    def delete(self, urls: Sequence[str]) -> int:
        if not urls:
            return 0
        with session_scope(self.session_factory) as db:
            result = db.execute(delete(Page).where(Page.url.in_(list(urls))))
            return result.rowcount or 0

    def delete_all(self) -> int:
        with session_scope(self.session_factory) as db:
            result = db.execute(delete(Page))
            return result.rowcount or 0

    def count_for_domain(self, domain: str) -> int:
        with session_scope(self.session_factory) as db:
            return db.execute(select(func.count(Page.id)).where(_domain_clause(domain))).scalar_one()

    def oldest_for_domain(self, domain: str, limit: int) -> List[str]:
        if limit <= 0:
            return []
        with session_scope(self.session_factory) as db:
            stmt = (
                select(Page.url)
                .where(_domain_clause(domain))
                .order_by(Page.created_at.asc(), Page.id.asc())
                .limit(limit)
            )
            return list(db.execute(stmt).scalars())

    def beyond_newest_for_domain(self, domain: str, keep: int) -> List[str]:
        """URLs of a domain older than its ``keep`` newest rows."""
        with session_scope(self.session_factory) as db:
            stmt = (
                select(Page.url)
                .where(_domain_clause(domain))
                .order_by(Page.created_at.desc(), Page.id.desc())
                .offset(keep)
            )
            return list(db.execute(stmt).scalars())


@dataclass
class AddPagesResult:
    received: int
    valid: int
    unique: int
    inserted: int


@dataclass
class DeletePagesResult:
    received: int
    valid: int
    unique: int
    deleted_from_db: int
    indexer_error: Optional[str] = None


@dataclass
class CrawlerAddResult:
    received: int
    valid: int
    unique: int
    inserted: int
    rotated: bool
    trimmed: int


class PageService:
    """Page administration over a PageStore and the Indexer that owns the points."""

    def __init__(self, store: PageStore, indexer: Indexer) -> None:
        self.store = store
        self.indexer = indexer

    def add_page(self, url: str) -> AddPagesResult:
        """Queue a single page for ingestion.

        Raises:
            InvalidUrlError: If the URL is not a valid http(s) URL.
        """
        normalized = normalize_url(url)
        if not normalized:
            raise InvalidUrlError(f"Invalid URL: {url!r}")
        inserted = self.store.insert_queued([normalized])
        return AddPagesResult(received=1, valid=1, unique=1, inserted=inserted)

    def add_pages(self, urls: Sequence[str]) -> AddPagesResult:
        """Queue many pages; invalid and duplicate URLs are dropped.

        Raises:
            ValidationError: If ``urls`` is empty.
            InvalidUrlError: If none of the URLs is valid.
        """
        if not urls:
            raise ValidationError("No URLs provided")
        batch = normalize_urls(urls)
        if not batch.unique:
            raise InvalidUrlError("No valid URLs provided")
        inserted = self.store.insert_queued(batch.unique)
        logger.info("Queued %d of %d pages", inserted, batch.received)
        return AddPagesResult(
            received=batch.received, valid=batch.valid, unique=len(batch.unique), inserted=inserted
        )

    def delete_pages(self, urls: Sequence[str]) -> DeletePagesResult:
        """Delete pages and their points.

        Points go first. When the vector store delete fails, the rows are
        kept and marked delete_pending so retry_pending_deletes can finish
        the job later.

        Raises:
            ValidationError: If ``urls`` is empty.
            InvalidUrlError: If none of the URLs is valid.
        """
        if not urls:
            raise ValidationError("No URLs provided")
        batch = normalize_urls(urls)
        if not batch.unique:
            raise InvalidUrlError("No valid URLs provided")
        return self._delete_normalized(batch.unique, received=batch.received, valid=batch.valid)

    def _delete_normalized(self, urls: List[str], received: int, valid: int) -> DeletePagesResult:
        result = self.indexer.delete_urls(urls)
        if not result.ok:
            marked = self.store.set_status(urls, PageStatus.DELETE_PENDING)
            logger.warning("Marked %d pages delete_pending: %s", marked, result.error)
            return DeletePagesResult(
                received=received,
                valid=valid,
                unique=len(urls),
                deleted_from_db=0,
                indexer_error=result.error,
            )
        deleted = self.store.delete(urls)
        return DeletePagesResult(received=received, valid=valid, unique=len(urls), deleted_from_db=deleted)

    def delete_all_pages(self) -> DeletePagesResult:
        """Clear the collection and the pages table (or mark every row delete_pending)."""
        result = self.indexer.delete_all()
        if not result.ok:
            marked = self.store.set_status_all(PageStatus.DELETE_PENDING)
            logger.warning("Marked all %d pages delete_pending: %s", marked, result.error)
            return DeletePagesResult(0, 0, 0, deleted_from_db=0, indexer_error=result.error)
        deleted = self.store.delete_all()
        return DeletePagesResult(0, 0, 0, deleted_from_db=deleted)

    def retry_pending_deletes(self) -> DeletePagesResult:
        """Retry deleting every page left in delete_pending."""
        pending = self.store.urls_with_status(PageStatus.DELETE_PENDING)
        if not pending:
            return DeletePagesResult(0, 0, 0, deleted_from_db=0)
        logger.info("Retrying %d pending deletes", len(pending))
        return self._delete_normalized(pending, received=len(pending), valid=len(pending))

    def add_pages_crawler(
        self,
        urls: Sequence[str],
        domain_cap: Optional[int] = None,
        keep: Optional[int] = None,
    ) -> CrawlerAddResult:
        """Insert crawled URLs of one domain with a cap and keep-newest trimming.

        The domain is taken from the first valid URL. When existing rows plus
        the new batch exceed ``domain_cap``, the oldest rows are deleted first
        (rotate-in). After inserting, everything but the ``keep`` newest rows
        of the domain is deleted.

        Raises:
            ValidationError: If ``urls`` is empty.
            InvalidUrlError: If none of the URLs is valid.
        """
        domain_cap = settings.DOMAIN_CAP if domain_cap is None else domain_cap
        keep = settings.DOMAIN_KEEP if keep is None else keep
        if not urls:
            raise ValidationError("No URLs provided")
        batch = normalize_urls(urls)
        if not batch.unique:
            raise InvalidUrlError("No valid URLs provided")

        domain = url_domain(batch.unique[0])
        existing = self.store.count_for_domain(domain)
        rotated = existing + len(batch.unique) > domain_cap
        if rotated:
            old = self.store.oldest_for_domain(domain, existing + len(batch.unique) - domain_cap)
            if old:
                self._delete_normalized(old, received=len(old), valid=len(old))

        inserted = self.store.insert_queued(batch.unique)

        trimmed = 0
        extra = self.store.beyond_newest_for_domain(domain, keep)
        if extra:
            self._delete_normalized(extra, received=len(extra), valid=len(extra))
            trimmed = len(extra)

        logger.info(
            "Crawler add for %s: inserted=%d rotated=%s trimmed=%d", domain, inserted, rotated, trimmed
        )
        return CrawlerAddResult(
            received=batch.received,
            valid=batch.valid,
            unique=len(batch.unique),
            inserted=inserted,
            rotated=rotated,
            trimmed=trimmed,
        )
