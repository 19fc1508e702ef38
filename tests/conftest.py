"""Shared fixtures: deterministic embedder, scripted chat model, in-memory and SQLite stores."""
from __future__ import annotations

import hashlib
import os
import random
from typing import Callable, Dict, Iterator, List, Optional, Sequence

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from campus_rag.conversations import InMemoryConversationStore, SqlConversationStore
from campus_rag.db import Base
from campus_rag.indexer import Indexer
from campus_rag.memory import ConversationMemory
from campus_rag.models import Conversation, Message, Page
from campus_rag.pages import PageService, PageStore
from campus_rag.qa import AnswerService
from campus_rag.retrieval import Retriever
from campus_rag.vectorstore import InMemoryVectorStore

# spans go to the no-op tracer
os.environ.setdefault("OTEL_TRACES_EXPORTER", "none")

DIM = 16
COLLECTION = "test_docs"


class FakeEmbedder:
    """Deterministic pseudo-random vectors per text; explicit vectors win."""

    def __init__(self, dim: int = DIM, vectors: Optional[Dict[str, List[float]]] = None) -> None:
        self.dim = dim
        self.vectors = dict(vectors or {})
        self.calls: List[List[str]] = []

    def vector_for(self, text: str) -> List[float]:
        if text in self.vectors:
            return list(self.vectors[text])
        seed = int(hashlib.sha256(text.encode("utf-8")).hexdigest()[:16], 16)
        rng = random.Random(seed)
        return [rng.gauss(0.0, 1.0) for _ in range(self.dim)]

    def embed(self, texts: Sequence[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        return [self.vector_for(t.strip()) for t in texts]


class ScriptedChatModel:
    """Chat model double.

    ``complete`` answers from ``replies`` (by call order) or a responder
    callable; ``stream`` yields ``deltas`` and can fail after ``fail_after``
    deltas.
    """

    def __init__(
        self,
        deltas: Sequence[str] = ("Hello", " world"),
        replies: Optional[Sequence[str]] = None,
        responder: Optional[Callable[[List[Dict[str, str]]], str]] = None,
        fail_after: Optional[int] = None,
        complete_error: Optional[Exception] = None,
    ) -> None:
        self.deltas = list(deltas)
        self.replies = list(replies or [])
        self.responder = responder
        self.fail_after = fail_after
        self.complete_error = complete_error
        self.complete_calls: List[List[Dict[str, str]]] = []
        self.stream_calls: List[List[Dict[str, str]]] = []
        self.stream_options: List[dict] = []
        self.stream_closed = 0

    def complete(self, messages, **options) -> str:
        self.complete_calls.append(list(messages))
        if self.complete_error is not None:
            raise self.complete_error
        if self.responder is not None:
            return self.responder(list(messages))
        if self.replies:
            return self.replies.pop(0)
        return ""

    def stream(self, messages, **options) -> Iterator[str]:
        self.stream_calls.append(list(messages))
        self.stream_options.append(dict(options))
        try:
            for i, delta in enumerate(self.deltas):
                if self.fail_after is not None and i >= self.fail_after:
                    raise RuntimeError("upstream stream broke")
                yield delta
        finally:
            self.stream_closed += 1


class FakeRedis:
    """Just enough of redis.Redis for the quota and cache helpers."""

    def __init__(self) -> None:
        self.data: Dict[str, str] = {}
        self.ttl: Dict[str, int] = {}

    def incr(self, key: str) -> int:
        value = int(self.data.get(key, "0")) + 1
        self.data[key] = str(value)
        return value

    def expire(self, key: str, seconds: int) -> bool:
        self.ttl[key] = seconds
        return True

    def get(self, key: str):
        return self.data.get(key)

    def mget(self, keys):
        return [self.data.get(k) for k in keys]

    def setex(self, key: str, seconds: int, value: str) -> bool:
        self.data[key] = value
        self.ttl[key] = seconds
        return True

    def pipeline(self):
        return self

    def execute(self):
        return []


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def vector_store() -> InMemoryVectorStore:
    return InMemoryVectorStore()


@pytest.fixture
def indexer(vector_store, embedder) -> Indexer:
    return Indexer(vector_store, embedder, collection=COLLECTION, vector_size=DIM)


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    # points needs pgvector; the remaining tables are portable
    Base.metadata.create_all(engine, tables=[Page.__table__, Conversation.__table__, Message.__table__])
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)
    yield factory
    engine.dispose()


@pytest.fixture
def page_store(session_factory) -> PageStore:
    return PageStore(session_factory)


@pytest.fixture
def page_service(page_store, indexer) -> PageService:
    return PageService(page_store, indexer)


@pytest.fixture(params=["memory", "sql"])
def conversation_store(request, session_factory):
    if request.param == "memory":
        return InMemoryConversationStore()
    return SqlConversationStore(session_factory)


@pytest.fixture
def chat_model() -> ScriptedChatModel:
    return ScriptedChatModel()


@pytest.fixture
def memory(conversation_store, chat_model) -> ConversationMemory:
    return ConversationMemory(conversation_store, chat_model, summarize_threshold=50, max_context_messages=20)


@pytest.fixture
def retriever(vector_store, embedder) -> Retriever:
    return Retriever(vector_store, embedder, collection=COLLECTION, min_score=0.2)


@pytest.fixture
def answer_service(memory, retriever, chat_model, embedder) -> AnswerService:
    return AnswerService(memory, retriever, chat_model, embedder)
