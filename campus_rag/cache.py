"""Redis helpers: shared client and the embedding vector cache.

Provides:
- get_redis: Cached Redis client from REDIS_URL with decode_responses.
- _key_for_text: Stable cache key derived from embedding model + text.
- get_cached_embeddings: Fetch cached vectors for a batch of texts (None for misses).
- set_cached_embeddings: Store vectors with TTL from settings.CACHE_TTL_SECONDS.

Retrieval embeds every candidate chunk on every query for dedup, so the same
chunk texts are embedded over and over; the cache absorbs those repeats.
"""
import hashlib
import json
import logging
from typing import List, Optional, Sequence

import redis

from campus_rag.config import settings

logger = logging.getLogger(__name__)

_redis_client: Optional[redis.Redis] = None


def get_redis() -> redis.Redis:
    """Return a cached Redis client configured from settings.REDIS_URL.

    Returns:
        redis.Redis: Client with decode_responses=True.
    """
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _redis_client


def _key_for_text(model: str, text: str) -> str:
    """Compute a stable, namespaced cache key for an embedding input."""
    h = hashlib.sha256(f"{model}|{text}".encode("utf-8")).hexdigest()
    return f"rag:emb:v1:{h}"


def get_cached_embeddings(
    model: str, texts: Sequence[str], client: Optional[redis.Redis] = None
) -> List[Optional[List[float]]]:
    """Look up cached vectors for texts.

    Args:
        model: Embedding model name (part of the key).
        texts: Inputs to look up.
        client: Redis client; defaults to get_redis().

    Returns:
        List[Optional[List[float]]]: One entry per text; None for misses or
        when Redis is unreachable.
    """
    if not texts:
        return []
    r = client or get_redis()
    try:
        raw = r.mget([_key_for_text(model, t) for t in texts])
    except redis.RedisError as e:
        logger.warning("Embedding cache read failed: %s", e)
        return [None] * len(texts)

    out: List[Optional[List[float]]] = []
    for item in raw:
        if not item:
            out.append(None)
            continue
        try:
            out.append([float(x) for x in json.loads(item)])
        except (ValueError, TypeError):
            out.append(None)
    return out


def set_cached_embeddings(
    model: str,
    texts: Sequence[str],
    vectors: Sequence[Sequence[float]],
    client: Optional[redis.Redis] = None,
) -> None:
    """Store vectors under their text keys with TTL; cache failures are logged only."""
    if not texts:
        return
    r = client or get_redis()
    try:
        pipe = r.pipeline()
        for text, vec in zip(texts, vectors):
            pipe.setex(_key_for_text(model, text), settings.CACHE_TTL_SECONDS, json.dumps(list(vec)))
        pipe.execute()
    except redis.RedisError as e:
        logger.warning("Embedding cache write failed: %s", e)
