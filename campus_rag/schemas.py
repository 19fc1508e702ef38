"""Pydantic request/response schemas for the API.

Defines the public contracts used by the FastAPI endpoints:
- ChatRequest / ChatResponse / SourceOut: question answering
- ConversationCreate / ConversationOut / MessageCreate / MessageOut: chat history
- PageRequest / PagesRequest / AddPagesOut / DeletePagesOut: page administration
- IngestRequest / IngestOut / UrlReportOut: ingestion reports
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ChatRequest(BaseModel):
    """Request body for asking a question inside a conversation.

    Attributes:
        question: The user question to answer.
        conversation_id: Existing conversation; a new one is created when omitted.
        k: Number of candidates to retrieve (server default when omitted).
        stream: Answer as server-sent events instead of a single JSON body.
    """
    question: str = Field(..., min_length=1, description="User question")
    conversation_id: Optional[str] = None
    k: Optional[int] = Field(default=None, ge=1, le=50)
    stream: bool = False


class SourceOut(BaseModel):
    title: str
    url: str
    description: str


class ChatResponse(BaseModel):
    """Response body returned by the non-streaming chat endpoint.

    Attributes:
        conversation_id: Conversation the turn belongs to.
        answer: The generated answer text.
        sources: One entry per context chunk the answer was grounded on.
        hit_count: Retrieved chunks above the score floor.
        latency_ms: End-to-end latency for the request in milliseconds.
    """
    conversation_id: str
    answer: str
    sources: List[SourceOut]
    hit_count: int
    latency_ms: int


class ConversationCreate(BaseModel):
    question: Optional[str] = Field(default=None, description="Optional first question")


class MessageOut(BaseModel):
    id: int
    role: str
    content: str
    summarized: bool
    meta: Optional[Dict[str, Any]] = None
    created_at: datetime


class ConversationOut(BaseModel):
    id: str
    title: str
    preview: Optional[str] = None
    summary: Optional[str] = None
    created_at: datetime
    messages: Optional[List[MessageOut]] = None


class MessageCreate(BaseModel):
    role: str = Field(..., pattern="^(user|assistant)$")
    content: str = Field(..., min_length=1)


class PageRequest(BaseModel):
    url: str


class PagesRequest(BaseModel):
    urls: List[str]


class AddPagesOut(BaseModel):
    received: int
    valid: int
    unique: int
    inserted: int


class DeletePagesOut(BaseModel):
    received: int
    valid: int
    unique: int
    deleted_from_db: int
    indexer_error: Optional[str] = None


class IngestRequest(BaseModel):
    urls: Optional[List[str]] = Field(default=None, description="URLs to ingest; every known page when omitted")


class UrlReportOut(BaseModel):
    url: str
    action: str
    reason: Optional[str] = None
    chunks: Optional[int] = None


class IngestOut(BaseModel):
    received: int
    valid: int
    unique: int
    ingested: int
    success: str
    report: List[UrlReportOut]
