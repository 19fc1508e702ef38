"""FastAPI application entrypoint and routes.

Exposes health, chat (JSON or server-sent events), conversation/message,
page administration and ingest endpoints, configures CORS and logging, and
initializes the database schema at startup.

Callers identify themselves with an opaque ``X-User-Token`` header; nothing
verifies it.
"""
import json
import threading
import time
from typing import AsyncIterator, Iterator, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.concurrency import iterate_in_threadpool

from campus_rag.conversations import ConversationRecord, ConversationStore
from campus_rag.db import init_db
from campus_rag.deps import (
    get_answer_service,
    get_conversation_store,
    get_ingestor,
    get_page_service,
    get_quota,
)
from campus_rag.errors import (
    AnswerGenerationError,
    ConfigurationError,
    ConversationNotFoundError,
    EmptyQuestionError,
    QuotaExceededError,
    ValidationError,
)
from campus_rag.ingestion.ingest import Ingestor
from campus_rag.logging_config import configure_logging
from campus_rag.models import MessageRole
from campus_rag.pages import PageService
from campus_rag.qa import AnswerService
from campus_rag.quota import DailyQuota
from campus_rag.schemas import (
    AddPagesOut,
    ChatRequest,
    ChatResponse,
    ConversationCreate,
    ConversationOut,
    DeletePagesOut,
    IngestOut,
    IngestRequest,
    MessageCreate,
    MessageOut,
    PageRequest,
    PagesRequest,
    SourceOut,
    UrlReportOut,
)

app = FastAPI(title="Campus RAG API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # keep simple for demo; tighten for prod
    allow_methods=["*"],
    allow_credentials=True,
    allow_headers=["*"],
)


@app.on_event("startup")
def on_startup() -> None:
    """Configure logging and ensure DB schema and indexes exist."""
    configure_logging()
    init_db()


def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.exception_handler(ValidationError)
def _validation_error(request: Request, exc: ValidationError) -> JSONResponse:
    return _error(status.HTTP_400_BAD_REQUEST, exc)


@app.exception_handler(ConversationNotFoundError)
def _not_found(request: Request, exc: ConversationNotFoundError) -> JSONResponse:
    return _error(status.HTTP_404_NOT_FOUND, exc)


@app.exception_handler(QuotaExceededError)
def _quota_exceeded(request: Request, exc: QuotaExceededError) -> JSONResponse:
    return _error(status.HTTP_429_TOO_MANY_REQUESTS, exc)


@app.exception_handler(ConfigurationError)
def _misconfigured(request: Request, exc: ConfigurationError) -> JSONResponse:
    return _error(status.HTTP_503_SERVICE_UNAVAILABLE, exc)


@app.exception_handler(AnswerGenerationError)
def _generation_failed(request: Request, exc: AnswerGenerationError) -> JSONResponse:
    return _error(status.HTTP_502_BAD_GATEWAY, exc)


def get_user_id(x_user_token: Optional[str] = Header(default=None)) -> str:
    """Caller identity from the X-User-Token header (400 when missing)."""
    if not x_user_token or not x_user_token.strip():
        raise HTTPException(status_code=400, detail="Missing user token")
    return x_user_token.strip()


def _conversation_out(c: ConversationRecord, messages: Optional[List[MessageOut]] = None) -> ConversationOut:
    return ConversationOut(
        id=c.id,
        title=c.title,
        preview=c.preview,
        summary=c.summary,
        created_at=c.created_at,
        messages=messages,
    )


def _message_out(m) -> MessageOut:
    return MessageOut(
        id=m.id,
        role=MessageRole(m.role).value,
        content=m.content,
        summarized=m.summarized,
        meta=m.meta,
        created_at=m.created_at,
    )


@app.get("/health")
def health():
    """Liveness probe endpoint.

    Returns:
        dict: {"status": "ok"} when the service is running.
    """
    return {"status": "ok"}


def _sse(events: Iterator[dict], cancel: threading.Event) -> AsyncIterator[str]:
    async def gen() -> AsyncIterator[str]:
        try:
            async for event in iterate_in_threadpool(events):
                yield f"data: {json.dumps(event, ensure_ascii=False)}\n\n"
        finally:
            # client gone or stream finished; stop generation at the next delta
            cancel.set()
            try:
                events.close()
            except ValueError:
                # still running in a worker thread; it sees the cancel flag
                pass
        yield "data: [DONE]\n\n"

    return gen()


@app.post("/chat", response_model=ChatResponse)
def chat(
    req: ChatRequest,
    user_id: str = Depends(get_user_id),
    service: AnswerService = Depends(get_answer_service),
    quota: DailyQuota = Depends(get_quota),
):
    """Answer a question inside a conversation.

    Workflow:
    - Reject blank questions and conversations the user does not own
    - Count the message against the daily quota
    - Create a conversation when none is given
    - Stream events as SSE when ``stream`` is set, else return the full answer

    Returns:
        ChatResponse | StreamingResponse: JSON answer or an SSE stream of
        token/done/error events ending with ``data: [DONE]``.
    """
    t0 = time.time()
    question = req.question.strip()
    if not question:
        raise EmptyQuestionError("Body must include a non-empty question")
    conversation_id = req.conversation_id
    if conversation_id:
        service.memory.store.get(user_id, conversation_id)
    quota.consume(user_id)

    if not conversation_id:
        conversation_id = service.create_conversation(user_id).id

    if req.stream:
        cancel = threading.Event()
        events = service.stream(question, user_id, conversation_id, k=req.k, cancel=cancel)
        return StreamingResponse(
            _sse(events, cancel),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Conversation-Id": conversation_id},
        )

    result = service.ask(question, user_id, conversation_id, k=req.k)
    return ChatResponse(
        conversation_id=conversation_id,
        answer=result.answer,
        sources=[SourceOut(**s) for s in result.sources],
        hit_count=result.hit_count,
        latency_ms=int((time.time() - t0) * 1000),
    )


@app.get("/conversations", response_model=List[ConversationOut])
def list_conversations(
    user_id: str = Depends(get_user_id),
    store: ConversationStore = Depends(get_conversation_store),
):
    return [_conversation_out(c) for c in store.list_for_user(user_id)]


@app.post("/conversations", response_model=ConversationOut, status_code=201)
def create_conversation(
    body: Optional[ConversationCreate] = None,
    user_id: str = Depends(get_user_id),
    service: AnswerService = Depends(get_answer_service),
):
    """Create a conversation, optionally storing its first question and generating a title."""
    convo = service.create_conversation(user_id, body.question if body else None)
    return _conversation_out(convo)


@app.get("/conversations/{conversation_id}", response_model=ConversationOut)
def get_conversation(
    conversation_id: str,
    user_id: str = Depends(get_user_id),
    store: ConversationStore = Depends(get_conversation_store),
):
    convo = store.get(user_id, conversation_id)
    messages = [_message_out(m) for m in store.list_messages(user_id, conversation_id)]
    return _conversation_out(convo, messages)


@app.delete("/conversations/{conversation_id}", status_code=204)
def delete_conversation(
    conversation_id: str,
    user_id: str = Depends(get_user_id),
    store: ConversationStore = Depends(get_conversation_store),
):
    store.delete(user_id, conversation_id)


@app.get("/conversations/{conversation_id}/messages", response_model=List[MessageOut])
def list_messages(
    conversation_id: str,
    user_id: str = Depends(get_user_id),
    store: ConversationStore = Depends(get_conversation_store),
):
    return [_message_out(m) for m in store.list_messages(user_id, conversation_id)]


@app.post("/conversations/{conversation_id}/messages", response_model=MessageOut, status_code=201)
def create_message(
    conversation_id: str,
    body: MessageCreate,
    user_id: str = Depends(get_user_id),
    store: ConversationStore = Depends(get_conversation_store),
):
    content = body.content.strip()
    if not content:
        raise ValidationError("Message content is required")
    msg = store.append_message(user_id, conversation_id, MessageRole(body.role), content)
    return _message_out(msg)


@app.post("/pages", response_model=AddPagesOut, status_code=201)
def add_page(body: PageRequest, pages: PageService = Depends(get_page_service)):
    r = pages.add_page(body.url)
    return AddPagesOut(received=r.received, valid=r.valid, unique=r.unique, inserted=r.inserted)


@app.post("/pages/bulk", response_model=AddPagesOut, status_code=201)
def add_pages(body: PagesRequest, pages: PageService = Depends(get_page_service)):
    r = pages.add_pages(body.urls)
    return AddPagesOut(received=r.received, valid=r.valid, unique=r.unique, inserted=r.inserted)


def _delete_out(r) -> DeletePagesOut:
    return DeletePagesOut(
        received=r.received,
        valid=r.valid,
        unique=r.unique,
        deleted_from_db=r.deleted_from_db,
        indexer_error=r.indexer_error,
    )


@app.delete("/pages", response_model=DeletePagesOut)
def delete_page(body: PageRequest, pages: PageService = Depends(get_page_service)):
    return _delete_out(pages.delete_pages([body.url]))


@app.delete("/pages/bulk", response_model=DeletePagesOut)
def delete_pages(body: PagesRequest, pages: PageService = Depends(get_page_service)):
    return _delete_out(pages.delete_pages(body.urls))


@app.delete("/pages/all", response_model=DeletePagesOut)
def delete_all_pages(pages: PageService = Depends(get_page_service)):
    return _delete_out(pages.delete_all_pages())


@app.post("/pages/retry-deletes", response_model=DeletePagesOut)
def retry_pending_deletes(pages: PageService = Depends(get_page_service)):
    return _delete_out(pages.retry_pending_deletes())


@app.post("/ingest", response_model=IngestOut)
def ingest(body: Optional[IngestRequest] = None, ingestor: Ingestor = Depends(get_ingestor)):
    """Ingest the given URLs, or every known page when ``urls`` is omitted."""
    summary = ingestor.ingest(body.urls if body else None)
    return IngestOut(
        received=summary.received,
        valid=summary.valid,
        unique=summary.unique,
        ingested=summary.ingested,
        success=summary.result.success.value,
        report=[
            UrlReportOut(url=r.url, action=r.action.value, reason=r.reason, chunks=r.chunks)
            for r in summary.result.report
        ],
    )
