"""Incremental page ingestion driven by content fingerprints.

Per page, one at a time with a randomized pause in between:

- delete_pending row          -> skipped (the pending delete must finish first)
- scrape fails                -> error
- zero chunks                 -> skipped
- no row, or no stored hash   -> indexed   (points written, hash stored)
- same hash                   -> unchanged (timestamp only, no vector writes)
- different hash              -> reindexed (points of the URL replaced, hash stored)

Any failure while indexing one page marks that page ``error``, drops its stored
hash so the next run rewrites it, and the batch moves on. The batch outcome is
"true" when nothing failed, "partial" when some pages failed and "false" when
every page failed.

Usage:
  python -m campus_rag.ingestion.ingest --url https://today.umd.edu/some-story
  python -m campus_rag.ingestion.ingest          # every page in the table
"""
import argparse
import enum
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from campus_rag.config import settings
from campus_rag.errors import ValidationError
from campus_rag.indexer import Indexer, content_fingerprint
from campus_rag.ingestion.scraper import ScrapedPage, scrape_url
from campus_rag.models import PageStatus
from campus_rag.pages import PageStore
from campus_rag.utils import normalize_urls

logger = logging.getLogger(__name__)


class BatchOutcome(str, enum.Enum):
    TRUE = "true"
    PARTIAL = "partial"
    FALSE = "false"


@dataclass
class UrlReport:
    url: str
    action: PageStatus
    reason: Optional[str] = None
    chunks: Optional[int] = None


@dataclass
class IngestReport:
    success: BatchOutcome
    report: List[UrlReport] = field(default_factory=list)


@dataclass
class IngestSummary:
    received: int
    valid: int
    unique: int
    ingested: int
    result: IngestReport


def _outcome(report: Sequence[UrlReport]) -> BatchOutcome:
    errors = sum(1 for r in report if r.action == PageStatus.ERROR)
    if errors == 0:
        return BatchOutcome.TRUE
    if errors < len(report):
        return BatchOutcome.PARTIAL
    return BatchOutcome.FALSE


class Ingestor:
    """Scrapes, fingerprints and indexes pages, recording each page's status.

    Args:
        pages: Page table access.
        indexer: Writes points into the vector store.
        scrape: Callable turning a URL into a ScrapedPage; defaults to scrape_url.
        delay_range: (min, max) seconds slept between pages; defaults from settings.
        sleep: Sleep function, swappable in tests.
    """

    def __init__(
        self,
        pages: PageStore,
        indexer: Indexer,
        scrape: Callable[[str], ScrapedPage] = scrape_url,
        delay_range: Optional[Sequence[float]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.pages = pages
        self.indexer = indexer
        self.scrape = scrape
        if delay_range is None:
            delay_range = (settings.INGEST_DELAY_MIN_SECONDS, settings.INGEST_DELAY_MAX_SECONDS)
        self.delay_min, self.delay_max = float(delay_range[0]), float(delay_range[1])
        self.sleep = sleep

    def ingest_url(self, url: str) -> UrlReport:
        """Run the state machine for one normalized URL."""
        existing = self.pages.get(url)
        if existing is not None and existing.status == PageStatus.DELETE_PENDING:
            return UrlReport(url=url, action=PageStatus.SKIPPED, reason="delete pending")

        try:
            page = self.scrape(url)
        except Exception as e:
            logger.exception("Scrape failed for %s", url)
            self.pages.save(url, PageStatus.ERROR)
            return UrlReport(url=url, action=PageStatus.ERROR, reason=str(e))

        chunks = page.chunks
        if not chunks:
            self.pages.save(url, PageStatus.SKIPPED, chunk_count=0)
            return UrlReport(url=url, action=PageStatus.SKIPPED, reason="no content", chunks=0)

        fingerprint = content_fingerprint(c.content for c in chunks)
        try:
            if existing is not None and existing.content_hash:
                if existing.content_hash == fingerprint:
                    self.pages.save(url, PageStatus.UNCHANGED)
                    return UrlReport(url=url, action=PageStatus.UNCHANGED, chunks=existing.chunk_count)
                written = self.indexer.reindex_url(url, chunks)
                action = PageStatus.REINDEXED
            elif existing is not None:
                # row without a hash may still own points from an interrupted run
                written = self.indexer.reindex_url(url, chunks)
                action = PageStatus.INDEXED
            else:
                written = self.indexer.index_chunks(chunks)
                action = PageStatus.INDEXED
        except Exception as e:
            logger.exception("Indexing failed for %s", url)
            # reindex may have deleted the points already, so the stored hash is stale
            self.pages.save(url, PageStatus.ERROR, clear_hash=True)
            return UrlReport(url=url, action=PageStatus.ERROR, reason=str(e))

        self.pages.save(url, action, content_hash=fingerprint, chunk_count=len(chunks))
        return UrlReport(url=url, action=action, chunks=written)

    def ingest_urls(self, urls: Sequence[str]) -> IngestReport:
        """Ingest already-normalized URLs sequentially."""
        report: List[UrlReport] = []
        for i, url in enumerate(urls):
            if i > 0 and self.delay_max > 0:
                self.sleep(random.uniform(self.delay_min, self.delay_max))
            item = self.ingest_url(url)
            logger.info("[%s] %s%s", item.action.value, url, f" ({item.reason})" if item.reason else "")
            report.append(item)
        return IngestReport(success=_outcome(report), report=report)

    def ingest(self, urls: Optional[Sequence[str]] = None) -> IngestSummary:
        """Ingest the given URLs, or every page in the table when ``urls`` is None.

        Raises:
            ValidationError: If ``urls`` is an empty list, or the table is
                empty when ``urls`` is None.
        """
        if urls is None:
            targets = self.pages.list_urls()
            if not targets:
                raise ValidationError("No URLs in database to ingest")
        else:
            if isinstance(urls, str) or len(urls) == 0:
                raise ValidationError("URLs must be a non-empty list of strings")
            targets = list(urls)

        batch = normalize_urls(targets)
        result = self.ingest_urls(batch.unique)
        logger.info(
            "Ingest finished: received=%d valid=%d unique=%d outcome=%s",
            batch.received,
            batch.valid,
            len(batch.unique),
            result.success.value,
        )
        return IngestSummary(
            received=batch.received,
            valid=batch.valid,
            unique=len(batch.unique),
            ingested=len(result.report),
            result=result,
        )


def main():
    parser = argparse.ArgumentParser(description="Scrape, chunk and index campus pages.")
    parser.add_argument("--url", action="append", help="URL to ingest (repeatable); default: every page in the table")
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: settings.LOG_LEVEL)",
    )
    args = parser.parse_args()

    from campus_rag.db import init_db
    from campus_rag.deps import get_ingestor
    from campus_rag.logging_config import configure_logging

    configure_logging(args.log_level)
    init_db()
    summary = get_ingestor().ingest(args.url)
    logger.info("Ingested %d pages (%s)", summary.ingested, summary.result.success.value)


if __name__ == "__main__":
    main()
