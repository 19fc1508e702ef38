"""Page scraper: fetch HTML, pick the main content root and emit chunks.

Main functions:
- fetch_html: HTTP GET with the ingestor headers and timeout (raises ScrapeError)
- extract_lines: text of content elements in document order, skipping page chrome
- extract_metadata: title, publication date and sport of a page
- scrape_url: fetch + extract + chunk into PageChunk objects

The content root is the first of ``main``, ``#main`` or ``.main-content``,
falling back to ``body``. Elements inside header, nav, footer or aside are
skipped. Section and article elements only contribute text when they have no
nested text elements, so their text is not emitted twice.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional
from urllib.parse import urlsplit

import requests
from bs4 import BeautifulSoup, Tag

from campus_rag.chunking import GroupOptions, build_chunks, normalize_line
from campus_rag.config import settings
from campus_rag.errors import ScrapeError
from campus_rag.indexer import PageChunk

logger = logging.getLogger(__name__)

HEADERS = {
    "User-Agent": "CampusRAG-Ingestor/1.0 (+https://example.com; contact=dev@example.com)",
    "Accept": "text/html,application/xhtml+xml",
}

CONTENT_ROOT_SELECTOR = "main, #main, .main-content"
TEXT_TAGS = ["p", "h1", "h2", "h3", "h4", "h5", "h6", "li"]
CONTAINER_TAGS = ["section", "article"]
CHROME_TAGS = {"header", "nav", "footer", "aside"}

_SPORT_PATH = re.compile(r"^/sports/([a-z0-9-]+)/", re.I)


@dataclass
class PageMetadata:
    title: Optional[str] = None
    date: Optional[str] = None
    sport: Optional[str] = None


@dataclass
class ScrapedPage:
    url: str
    metadata: PageMetadata
    lines: List[str] = field(default_factory=list)
    chunks: List[PageChunk] = field(default_factory=list)


def fetch_html(url: str, timeout: Optional[int] = None) -> str:
    """Fetch a page and return its HTML.

    Raises:
        ScrapeError: On network errors and non-2xx responses.
    """
    try:
        resp = requests.get(url, headers=HEADERS, timeout=timeout or settings.HTTP_TIMEOUT_SECONDS)
    except requests.RequestException as e:
        raise ScrapeError(f"Fetch failed for {url}: {e}") from e
    logger.debug("HTTP %d from %s (bytes=%d)", resp.status_code, url, len(resp.content or b""))
    if not resp.ok:
        raise ScrapeError(f"HTTP error {resp.status_code} for {url}")
    return resp.text


def _content_root(soup: BeautifulSoup) -> Optional[Tag]:
    root = soup.select_one(CONTENT_ROOT_SELECTOR)
    return root if root is not None else soup.body


def _in_chrome(el: Tag, root: Tag) -> bool:
    for parent in el.parents:
        if parent is root:
            return False
        if parent.name in CHROME_TAGS:
            return True
    return False


def extract_lines(html: str) -> List[str]:
    """Return the normalized text of content elements in document order."""
    soup = BeautifulSoup(html, "lxml")
    root = _content_root(soup)
    if root is None:
        return []

    lines: List[str] = []
    for el in root.find_all(TEXT_TAGS + CONTAINER_TAGS):
        if _in_chrome(el, root):
            continue
        if el.name in CONTAINER_TAGS and el.find(TEXT_TAGS + CONTAINER_TAGS) is not None:
            continue
        txt = normalize_line(el.get_text(" ", strip=True))
        if txt:
            lines.append(txt)
    return lines


def _meta_content(soup: BeautifulSoup, *names: str) -> Optional[str]:
    for name in names:
        tag = soup.find("meta", attrs={"property": name}) or soup.find("meta", attrs={"name": name})
        if tag and tag.get("content"):
            return tag["content"].strip()
    return None


def extract_metadata(html: str, url: str) -> PageMetadata:
    """Best-effort title, publication date and sport for a page."""
    soup = BeautifulSoup(html, "lxml")

    title = _meta_content(soup, "og:title")
    if not title and soup.title and soup.title.string:
        title = soup.title.string.strip()
    if not title:
        h1 = soup.find("h1")
        title = h1.get_text(" ", strip=True) if h1 else None

    date = _meta_content(soup, "article:published_time", "date", "pubdate")
    if not date:
        t = soup.find("time")
        if t is not None:
            date = (t.get("datetime") or t.get_text(" ", strip=True) or "").strip() or None

    sport = None
    m = _SPORT_PATH.match(urlsplit(url).path)
    if m:
        sport = m.group(1).replace("-", " ")

    return PageMetadata(title=title[:500] if title else None, date=date, sport=sport)


def parse_page(url: str, html: str, opts: Optional[GroupOptions] = None) -> ScrapedPage:
    """Turn a page's HTML into chunks carrying the page metadata."""
    metadata = extract_metadata(html, url)
    lines = extract_lines(html)
    texts = build_chunks(lines, opts or GroupOptions.from_settings())
    chunks = [
        PageChunk(url=url, content=t, title=metadata.title, date=metadata.date, sport=metadata.sport)
        for t in texts
    ]
    return ScrapedPage(url=url, metadata=metadata, lines=lines, chunks=chunks)


def scrape_url(url: str, opts: Optional[GroupOptions] = None) -> ScrapedPage:
    """Fetch and chunk a page.

    Raises:
        ScrapeError: When the page cannot be fetched.
    """
    page = parse_page(url, fetch_html(url), opts)
    logger.info("Scraped %s -> %d lines, %d chunks", url, len(page.lines), len(page.chunks))
    return page
