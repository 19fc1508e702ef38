"""Answer orchestration: turn recording, retrieval, context assembly and streamed generation.

AnswerService.stream is the core entry point. It validates its input
synchronously, then returns an iterator of events:

- {"type": "token", "text": str}: one text delta, in order
- {"type": "done", "answer": str, "sources": [...], "hit_count": int}: success
- {"type": "error", "message": str}: terminal failure

Within one request the order is: record the user turn, summarize if due,
retrieve, build context, generate, then persist the assistant turn. A
cancelled or failed generation persists no assistant turn.
"""
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional

from campus_rag.config import settings
from campus_rag.conversations import ConversationRecord
from campus_rag.embedding import Embedder
from campus_rag.errors import AnswerGenerationError, EmptyQuestionError
from campus_rag.generation import (
    DEFAULT_TITLE,
    ChatModel,
    QuestionType,
    answer_instructions,
    classify_question,
    generate_title,
)
from campus_rag.memory import ConversationMemory
from campus_rag.models import MessageRole
from campus_rag.obs import span
from campus_rag.retrieval import RetrievedChunk, Retriever, build_context

logger = logging.getLogger(__name__)

NO_SOURCE_DISCLAIMER = "I couldn't find this in my sources. Here's what I know more generally:\n\n"

Event = Dict[str, Any]


@dataclass
class AnswerResult:
    answer: str
    sources: List[Dict[str, str]] = field(default_factory=list)
    hit_count: int = 0
    cancelled: bool = False


@dataclass
class _Prompt:
    messages: List[Dict[str, str]]
    temperature: float
    prefix: str = ""
    sources: List[Dict[str, str]] = field(default_factory=list)


class AnswerService:
    """Answers questions inside a user's conversation.

    Args:
        memory: Conversation memory (turns, summary, active window).
        retriever: Vector retrieval with the score floor applied.
        chat_model: Generation provider.
        embedder: Embedding provider used for context dedup.
    """

    def __init__(
        self,
        memory: ConversationMemory,
        retriever: Retriever,
        chat_model: ChatModel,
        embedder: Embedder,
    ) -> None:
        self.memory = memory
        self.retriever = retriever
        self.chat_model = chat_model
        self.embedder = embedder

    def create_conversation(self, user_id: str, first_question: Optional[str] = None) -> ConversationRecord:
        """Create a conversation, optionally seeded with its first question.

        The first question is stored right away and flagged so the answer flow
        does not record it a second time. A title is generated from it; a
        failing title call leaves the default title.
        """
        store = self.memory.store
        question = (first_question or "").strip()
        convo = store.create(user_id, first_message=bool(question))
        if not question:
            return convo

        store.append_message(user_id, convo.id, MessageRole.USER, question)
        store.set_preview_if_empty(user_id, convo.id, question)
        try:
            title = generate_title(self.chat_model, question)
        except Exception:
            logger.exception("Title generation failed for conversation %s", convo.id)
            title = DEFAULT_TITLE
        if title != DEFAULT_TITLE:
            store.set_title(user_id, convo.id, title)
        return store.get(user_id, convo.id)

    def stream(
        self,
        question: str,
        user_id: str,
        conversation_id: str,
        k: Optional[int] = None,
        cancel: Optional[threading.Event] = None,
    ) -> Iterator[Event]:
        """Validate, then return the event iterator for one answer.

        Raises:
            EmptyQuestionError: If the question is blank.
            ConversationNotFoundError: If the conversation is unknown or not the user's.
        """
        q = (question or "").strip()
        if not q:
            raise EmptyQuestionError("Question must not be empty")
        self.memory.store.get(user_id, conversation_id)
        return self._events(q, user_id, conversation_id, k or settings.TOP_K, cancel)

    def ask(
        self,
        question: str,
        user_id: str,
        conversation_id: str,
        k: Optional[int] = None,
        on_delta: Optional[Callable[[str], None]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> AnswerResult:
        """Answer a question, forwarding each delta to ``on_delta``.

        Returns:
            AnswerResult: The full answer, or ``cancelled=True`` with an empty
            answer when ``cancel`` was set before completion.

        Raises:
            AnswerGenerationError: If generation fails.
        """
        events = self.stream(question, user_id, conversation_id, k=k, cancel=cancel)
        try:
            for event in events:
                kind = event["type"]
                if kind == "token":
                    if on_delta is not None:
                        on_delta(event["text"])
                elif kind == "done":
                    return AnswerResult(
                        answer=event["answer"], sources=event["sources"], hit_count=event["hit_count"]
                    )
                elif kind == "error":
                    raise AnswerGenerationError(event["message"])
        finally:
            events.close()
        return AnswerResult(answer="", cancelled=True)

    def _fallback_prompt(self, question: str, user_id: str, conversation_id: str) -> _Prompt:
        try:
            kind = classify_question(self.chat_model, question)
        except Exception:
            logger.exception("Question classification failed; treating as general")
            kind = QuestionType.GENERAL
        window = self.memory.active_window(user_id, conversation_id)
        return _Prompt(
            messages=window.as_chat_messages(),
            temperature=settings.FALLBACK_TEMPERATURE,
            prefix=NO_SOURCE_DISCLAIMER if kind == QuestionType.DOMAIN else "",
        )

    def _grounded_prompt(self, hits: List[RetrievedChunk], user_id: str, conversation_id: str) -> _Prompt:
        with span("build_context", {"candidates": len(hits)}):
            built = build_context(hits, self.embedder)
        window = self.memory.active_window(user_id, conversation_id)
        return _Prompt(
            messages=window.as_chat_messages(extra_system=[answer_instructions(built.context)]),
            temperature=settings.ANSWER_TEMPERATURE,
            sources=[s.as_dict() for s in built.sources],
        )

    def _events(
        self,
        question: str,
        user_id: str,
        conversation_id: str,
        k: int,
        cancel: Optional[threading.Event],
    ) -> Iterator[Event]:
        try:
            self.memory.record_user_turn(user_id, conversation_id, question)
            self.memory.maybe_summarize(user_id, conversation_id)
            with span("retrieve", {"k": k}):
                hits = self.retriever.retrieve(question, k)
            if hits:
                prompt = self._grounded_prompt(hits, user_id, conversation_id)
            else:
                prompt = self._fallback_prompt(question, user_id, conversation_id)
        except Exception as e:
            logger.exception("Answer preparation failed for conversation %s", conversation_id)
            yield {"type": "error", "message": str(e) or e.__class__.__name__}
            return

        parts: List[str] = []
        if prompt.prefix:
            parts.append(prompt.prefix)
            yield {"type": "token", "text": prompt.prefix}

        upstream = self.chat_model.stream(
            prompt.messages, temperature=prompt.temperature, max_tokens=settings.MAX_OUTPUT_TOKENS
        )
        try:
            for delta in upstream:
                if cancel is not None and cancel.is_set():
                    break
                parts.append(delta)
                yield {"type": "token", "text": delta}
        except Exception as e:
            logger.exception("Generation failed for conversation %s", conversation_id)
            yield {"type": "error", "message": str(e) or e.__class__.__name__}
            return
        finally:
            upstream.close()

        if cancel is not None and cancel.is_set():
            logger.info("Generation cancelled for conversation %s; answer discarded", conversation_id)
            return

        answer = "".join(parts)
        try:
            self.memory.record_assistant_turn(user_id, conversation_id, answer, prompt.sources)
        except Exception as e:
            logger.exception("Persisting assistant turn failed for conversation %s", conversation_id)
            yield {"type": "error", "message": str(e) or e.__class__.__name__}
            return

        yield {"type": "done", "answer": answer, "sources": prompt.sources, "hit_count": len(hits)}
