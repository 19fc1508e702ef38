"""Cached factories wiring the services together.

Used as FastAPI dependencies by main.py and directly by the batch entry
points. Tests replace them through ``app.dependency_overrides``.
"""
from functools import lru_cache

from campus_rag.conversations import ConversationStore, SqlConversationStore
from campus_rag.embedding import OpenAIEmbedder, get_embedder
from campus_rag.generation import ChatModel
from campus_rag.indexer import Indexer
from campus_rag.ingestion.ingest import Ingestor
from campus_rag.memory import ConversationMemory
from campus_rag.pages import PageService, PageStore
from campus_rag.qa import AnswerService
from campus_rag.quota import DailyQuota
from campus_rag.retrieval import Retriever
from campus_rag.vectorstore import VectorStore, get_vector_store as _make_vector_store


@lru_cache()
def get_vector_store() -> VectorStore:
    return _make_vector_store()


@lru_cache()
def get_embedding_model() -> OpenAIEmbedder:
    return get_embedder()


@lru_cache()
def get_chat_model() -> ChatModel:
    return ChatModel()


@lru_cache()
def get_indexer() -> Indexer:
    return Indexer(get_vector_store(), get_embedding_model())


@lru_cache()
def get_page_store() -> PageStore:
    return PageStore()


@lru_cache()
def get_page_service() -> PageService:
    return PageService(get_page_store(), get_indexer())


@lru_cache()
def get_ingestor() -> Ingestor:
    return Ingestor(get_page_store(), get_indexer())


@lru_cache()
def get_conversation_store() -> ConversationStore:
    return SqlConversationStore()


@lru_cache()
def get_answer_service() -> AnswerService:
    """Return the cached answer service with its memory and retriever."""
    embedder = get_embedding_model()
    chat = get_chat_model()
    memory = ConversationMemory(get_conversation_store(), chat)
    retriever = Retriever(get_vector_store(), embedder)
    return AnswerService(memory, retriever, chat, embedder)


@lru_cache()
def get_quota() -> DailyQuota:
    return DailyQuota()


def reset_caches() -> None:
    """Clear every cached factory (primarily for testing)."""
    for factory in (
        get_vector_store,
        get_embedding_model,
        get_chat_model,
        get_indexer,
        get_page_store,
        get_page_service,
        get_ingestor,
        get_conversation_store,
        get_answer_service,
        get_quota,
    ):
        factory.cache_clear()
