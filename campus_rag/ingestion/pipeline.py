"""Batch pipeline: retry pending deletes, crawl sitemaps, then ingest every page.

Meant to be run from cron:
  python -m campus_rag.ingestion.pipeline
  python -m campus_rag.ingestion.pipeline --skip-crawl
"""
import argparse
import logging
from dataclasses import dataclass
from typing import Optional

from campus_rag.ingestion.crawler import SitemapCrawler
from campus_rag.ingestion.ingest import IngestSummary, Ingestor
from campus_rag.pages import PageService

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    crawled_sources: int
    ingest: Optional[IngestSummary]


def run_pipeline(
    pages: PageService,
    ingestor: Ingestor,
    crawler: Optional[SitemapCrawler] = None,
    crawl: bool = True,
) -> PipelineResult:
    """Run one pipeline pass.

    Pending deletes are retried first so that rotated-out pages do not keep
    their points. An empty page table after crawling ends the run without
    ingesting.
    """
    pages.retry_pending_deletes()

    crawled = 0
    if crawl:
        crawled = (crawler or SitemapCrawler(pages)).run()

    if not pages.store.list_urls():
        logger.warning("No pages to ingest")
        return PipelineResult(crawled_sources=crawled, ingest=None)
    return PipelineResult(crawled_sources=crawled, ingest=ingestor.ingest(None))


def main():
    parser = argparse.ArgumentParser(description="Crawl campus sitemaps, then ingest every known page.")
    parser.add_argument("--skip-crawl", action="store_true", help="Only ingest pages already in the table")
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: settings.LOG_LEVEL)",
    )
    args = parser.parse_args()

    from campus_rag.db import init_db
    from campus_rag.deps import get_ingestor, get_page_service
    from campus_rag.logging_config import configure_logging

    configure_logging(args.log_level)
    init_db()
    result = run_pipeline(get_page_service(), get_ingestor(), crawl=not args.skip_crawl)
    if result.ingest is not None:
        logger.info(
            "Pipeline done: %d sources crawled, %d pages ingested (%s)",
            result.crawled_sources,
            result.ingest.ingested,
            result.ingest.result.success.value,
        )


if __name__ == "__main__":
    main()
