"""Utility helpers for URL normalization and vector math.

This module provides:
- normalize_url: canonical form used as the page identity (http/https only,
  no fragment, no trailing slash except the root path)
- normalize_urls: normalize + dedupe a batch while keeping counts for reports
- url_domain: hostname of a normalized URL
- cosine_similarity: similarity between two embedding vectors
"""
import math
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence
from urllib.parse import urlsplit, urlunsplit


def normalize_url(u: object) -> Optional[str]:
    """Normalize a URL so that equivalent page addresses compare equal.

    Enforces an http/https scheme and a host, drops the hash fragment and trims
    trailing slashes from the path (the root path stays "/").

    Args:
        u: Raw URL; non-strings are coerced with str().

    Returns:
        Optional[str]: The normalized URL, or None when it is not a valid
        http(s) URL.
    """
    if u is None:
        return None
    raw = str(u).strip()
    if not raw:
        return None
    try:
        parts = urlsplit(raw)
        # Accessing .port validates it (raises ValueError when out of range)
        parts.port
    except ValueError:
        return None

    scheme = parts.scheme.lower()
    if scheme not in ("http", "https") or not parts.hostname:
        return None

    path = parts.path or "/"
    if path != "/" and path.endswith("/"):
        path = path.rstrip("/") or "/"

    return urlunsplit((scheme, parts.netloc.lower(), path, parts.query, ""))


@dataclass
class NormalizedUrls:
    """Result of normalizing a batch of URLs.

    Attributes:
        received: Number of inputs.
        valid: Number of inputs that normalized successfully.
        unique: Deduplicated normalized URLs in first-seen order.
    """
    received: int
    valid: int
    unique: List[str] = field(default_factory=list)


def normalize_urls(urls: Iterable[object]) -> NormalizedUrls:
    """Normalize and dedupe URLs, preserving first-seen order."""
    items = list(urls)
    normalized = [n for n in (normalize_url(u) for u in items) if n]
    seen = set()
    unique: List[str] = []
    for u in normalized:
        if u not in seen:
            seen.add(u)
            unique.append(u)
    return NormalizedUrls(received=len(items), valid=len(normalized), unique=unique)


def url_domain(u: str) -> str:
    """Return the lowercase hostname of a URL ("" when absent)."""
    return (urlsplit(u).hostname or "").lower()


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two equal-length vectors.

    Returns 0.0 when either vector has zero norm or the lengths differ.
    """
    if len(a) != len(b) or not a:
        return 0.0
    dot = 0.0
    na = 0.0
    nb = 0.0
    for x, y in zip(a, b):
        dot += x * y
        na += x * x
        nb += y * y
    if na <= 0.0 or nb <= 0.0:
        return 0.0
    return dot / (math.sqrt(na) * math.sqrt(nb))
