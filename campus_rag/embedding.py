"""Embedding utilities wrapping OpenAI's embeddings API.

Provides:
- Embedder: the narrow interface the indexer and retriever depend on.
- get_client: Cached OpenAI client using the configured API key.
- OpenAIEmbedder: batched embeddings (at most EMBED_BATCH_SIZE texts per call)
  with an optional Redis cache in front.
- embed_texts / embed_query: module-level helpers over the default embedder.

Models and dimensions are configured via campus_rag.config.settings.
"""
import logging
from typing import List, Optional, Protocol, Sequence

from openai import OpenAI

from campus_rag.cache import get_cached_embeddings, set_cached_embeddings
from campus_rag.config import settings
from campus_rag.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Provider payload limit, not a correctness constraint
EMBED_BATCH_SIZE = 100

_client: Optional[OpenAI] = None


class Embedder(Protocol):
    """Anything that turns texts into fixed-size vectors, one per input."""

    def embed(self, texts: Sequence[str]) -> List[List[float]]:
        ...


def get_client() -> OpenAI:
    """Return a cached OpenAI client initialized with the configured API key.

    Raises:
        ConfigurationError: If OPENAI_API_KEY is not set.
    """
    global _client
    if _client is None:
        if not settings.OPENAI_API_KEY:
            raise ConfigurationError("OPENAI_API_KEY is not configured")
        _client = OpenAI(api_key=settings.OPENAI_API_KEY)
    return _client


class OpenAIEmbedder:
    """Embed texts with the configured OpenAI embedding model."""

    def __init__(
        self,
        client: Optional[OpenAI] = None,
        model: Optional[str] = None,
        use_cache: Optional[bool] = None,
    ) -> None:
        self._client = client
        self.model = model or settings.OPENAI_EMBEDDING_MODEL
        self.use_cache = settings.EMBEDDING_CACHE_ENABLED if use_cache is None else use_cache

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = get_client()
        return self._client

    def _embed_uncached(self, texts: List[str]) -> List[List[float]]:
        vectors: List[List[float]] = []
        for start in range(0, len(texts), EMBED_BATCH_SIZE):
            batch = texts[start : start + EMBED_BATCH_SIZE]
            resp = self.client.embeddings.create(model=self.model, input=batch)
            vectors.extend(d.embedding for d in resp.data)
        return vectors

    def embed(self, texts: Sequence[str]) -> List[List[float]]:
        """Embed a batch of texts.

        Args:
            texts: Input strings; each is stripped first.

        Returns:
            List[List[float]]: One vector per input, in input order.
        """
        if not texts:
            return []
        cleaned = [(t or "").strip() for t in texts]
        if not self.use_cache:
            return self._embed_uncached(cleaned)

        cached = get_cached_embeddings(self.model, cleaned)
        missing = [i for i, v in enumerate(cached) if v is None]
        if missing:
            fresh = self._embed_uncached([cleaned[i] for i in missing])
            set_cached_embeddings(self.model, [cleaned[i] for i in missing], fresh)
            for i, vec in zip(missing, fresh):
                cached[i] = vec
        logger.debug("Embedded %d texts (%d cache hits)", len(cleaned), len(cleaned) - len(missing))
        return [v for v in cached if v is not None]


_default_embedder: Optional[OpenAIEmbedder] = None


def get_embedder() -> OpenAIEmbedder:
    """Return the process-wide default embedder."""
    global _default_embedder
    if _default_embedder is None:
        _default_embedder = OpenAIEmbedder()
    return _default_embedder


def embed_texts(texts: Sequence[str]) -> List[List[float]]:
    """Embed a batch of texts using the default embedder."""
    return get_embedder().embed(texts)


def embed_query(text: str) -> List[float]:
    """Embed a single query string and return its embedding vector."""
    vectors = embed_texts([text])
    if not vectors:
        raise ValueError("Failed to embed query")
    return vectors[0]
