"""Sitemap crawler that discovers recent URLs per site and queues them as pages.

Each SitemapSource describes one site: its sitemap (or sitemap index), which
child sitemaps to follow, which slice of entries to look at and how an entry
is recognised as belonging to the current year. Discovered URLs are handed to
PageService.add_pages_crawler, which enforces the per-domain cap and keeps the
newest rows.

Usage:
  python -m campus_rag.ingestion.crawler
"""
import argparse
import logging
import time
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, List, Optional, Sequence, Tuple

import requests
from bs4 import BeautifulSoup

from campus_rag.config import settings
from campus_rag.errors import ScrapeError
from campus_rag.ingestion.scraper import HEADERS
from campus_rag.pages import CrawlerAddResult, PageService

logger = logging.getLogger(__name__)

SitemapEntry = Tuple[str, Optional[str]]  # (loc, lastmod)


@dataclass
class SitemapSource:
    """How to discover recent URLs of one site.

    Attributes:
        domain: Hostname, for logging.
        sitemap_url: Sitemap or sitemap index URL.
        include_children: When set, only child sitemaps whose URL contains one
            of these substrings are followed.
        skip_children: Child sitemaps whose URL contains one of these are skipped.
        head: Look at the first N entries of each urlset.
        tail: Look at the last N entries of each urlset (used when head is None).
        match: "lastmod" keeps entries whose lastmod starts with the year,
            "path" keeps entries whose URL contains "/<year>/".
    """
    domain: str
    sitemap_url: str
    include_children: Sequence[str] = field(default_factory=tuple)
    skip_children: Sequence[str] = field(default_factory=tuple)
    head: Optional[int] = 100
    tail: Optional[int] = None
    match: str = "lastmod"

    def select(self, entries: List[SitemapEntry]) -> List[SitemapEntry]:
        if self.head is not None:
            return entries[: self.head]
        if self.tail is not None:
            return entries[-self.tail :]
        return entries

    def is_recent(self, entry: SitemapEntry, year: int) -> bool:
        loc, lastmod = entry
        if self.match == "path":
            return f"/{year}/" in loc
        return bool(lastmod) and lastmod.startswith(str(year))

    def follow(self, child_url: str) -> bool:
        if any(s in child_url for s in self.skip_children):
            return False
        if self.include_children:
            return any(s in child_url for s in self.include_children)
        return True


SOURCES: List[SitemapSource] = [
    SitemapSource(
        domain="today.umd.edu",
        sitemap_url="https://today.umd.edu/sitemap.xml",
        include_children=("p1.xml",),
        head=100,
    ),
    SitemapSource(
        domain="dbknews.com",
        sitemap_url="https://dbknews.com/sitemap.xml",
        head=100,
    ),
    SitemapSource(
        domain="umterps.com",
        sitemap_url="https://umterps.com/sitemap.xml",
        skip_children=(
            "sitemap_misc_1.xml",
            "sitemap_document_1.xml",
            "sitemap_staff_1.xml",
            "sitemap_coach_1.xml",
            "sitemap_player_1.xml",
            "sitemap_roster_1.xml",
        ),
        head=None,
        tail=300,
        match="path",
    ),
]


def fetch_xml(url: str, timeout: Optional[int] = None) -> str:
    """GET a sitemap document.

    Raises:
        ScrapeError: On network errors and non-2xx responses.
    """
    try:
        resp = requests.get(url, headers=HEADERS, timeout=timeout or settings.HTTP_TIMEOUT_SECONDS)
        resp.raise_for_status()
    except requests.RequestException as e:
        raise ScrapeError(f"Sitemap fetch failed for {url}: {e}") from e
    return resp.text


def parse_sitemap(xml: str) -> Tuple[List[str], List[SitemapEntry]]:
    """Parse a sitemap document.

    Returns:
        Tuple[List[str], List[SitemapEntry]]: (child sitemap URLs, urlset entries).
        A sitemap index has children and no entries; a urlset the reverse.
    """
    soup = BeautifulSoup(xml, "xml")
    children = [
        loc.get_text(strip=True)
        for sm in soup.find_all("sitemap")
        for loc in [sm.find("loc")]
        if loc is not None
    ]
    entries: List[SitemapEntry] = []
    for u in soup.find_all("url"):
        loc = u.find("loc")
        if loc is None:
            continue
        lastmod = u.find("lastmod")
        entries.append((loc.get_text(strip=True), lastmod.get_text(strip=True) if lastmod else None))
    return children, entries


class SitemapCrawler:
    """Discovers recent URLs per source and queues them through a PageService.

    Args:
        pages: Page service used to insert discovered URLs.
        fetch: Callable returning the XML text of a URL; defaults to fetch_xml.
        delay_seconds: Pause between child sitemap fetches.
        year: Year an entry must belong to; defaults to the current year.
    """

    def __init__(
        self,
        pages: PageService,
        fetch: Callable[[str], str] = fetch_xml,
        delay_seconds: Optional[float] = None,
        year: Optional[int] = None,
    ) -> None:
        self.pages = pages
        self.fetch = fetch
        self.delay_seconds = settings.SITEMAP_DELAY_SECONDS if delay_seconds is None else delay_seconds
        self.year = year or date.today().year

    def discover(self, source: SitemapSource) -> List[str]:
        children, entries = parse_sitemap(self.fetch(source.sitemap_url))
        urls = [loc for loc, lm in source.select(entries) if source.is_recent((loc, lm), self.year)]

        for child in children:
            if not source.follow(child):
                continue
            _, child_entries = parse_sitemap(self.fetch(child))
            urls.extend(
                loc for loc, lm in source.select(child_entries) if source.is_recent((loc, lm), self.year)
            )
            if self.delay_seconds > 0:
                time.sleep(self.delay_seconds)
        return urls

    def crawl_source(self, source: SitemapSource) -> Optional[CrawlerAddResult]:
        urls = self.discover(source)
        logger.info("Discovered %d recent URLs on %s", len(urls), source.domain)
        if not urls:
            return None
        return self.pages.add_pages_crawler(urls)

    def run(self, sources: Sequence[SitemapSource] = tuple(SOURCES)) -> int:
        """Crawl every source; a failing source is logged and skipped.

        Returns:
            int: Number of sources that completed.
        """
        completed = 0
        for source in sources:
            logger.info("Starting crawl for %s", source.domain)
            try:
                self.crawl_source(source)
            except Exception:
                logger.exception("Error crawling %s", source.domain)
                continue
            completed += 1
            logger.info("Finished crawl for %s", source.domain)
        return completed


def main():
    parser = argparse.ArgumentParser(description="Discover recent campus URLs from sitemaps and queue them.")
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: settings.LOG_LEVEL)",
    )
    args = parser.parse_args()

    from campus_rag.db import init_db
    from campus_rag.deps import get_page_service
    from campus_rag.logging_config import configure_logging

    configure_logging(args.log_level)
    init_db()
    SitemapCrawler(get_page_service()).run()


if __name__ == "__main__":
    main()
