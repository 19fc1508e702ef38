"""Conversation memory: turn recording, rolling summarization and the prompt window.

Every accepted turn is appended unsummarized. Once a conversation holds more
than ``summarize_threshold`` unsummarized messages, all but the most recent
``max_context_messages`` are summarized into the conversation's rolling summary
and marked summarized. The active window handed to the model is the summary
(if any) plus the most recent unsummarized messages, oldest first.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from campus_rag.config import settings
from campus_rag.conversations import ConversationStore, MessageRecord
from campus_rag.generation import ChatModel, summarize_history
from campus_rag.models import MessageRole

logger = logging.getLogger(__name__)


@dataclass
class ActiveWindow:
    summary: Optional[str]
    messages: List[MessageRecord] = field(default_factory=list)

    def as_chat_messages(self, extra_system: Iterable[str] = ()) -> List[Dict[str, str]]:
        """Render the window as chat messages.

        Order: the summary system message (when there is a summary), then each
        of ``extra_system`` as a system message, then the window messages.
        """
        out: List[Dict[str, str]] = []
        if self.summary:
            out.append({"role": "system", "content": f"Conversation so far (summary): {self.summary}"})
        for content in extra_system:
            out.append({"role": "system", "content": content})
        out.extend(m.as_chat_message() for m in self.messages)
        return out


class ConversationMemory:
    """Records turns and maintains the summary/active-window state of conversations.

    Args:
        store: Conversation store.
        chat_model: Model used to summarize old messages.
        summarize_threshold: Unsummarized count above which summarization runs.
        max_context_messages: Size of the active window.
    """

    def __init__(
        self,
        store: ConversationStore,
        chat_model: ChatModel,
        summarize_threshold: Optional[int] = None,
        max_context_messages: Optional[int] = None,
    ) -> None:
        self.store = store
        self.chat_model = chat_model
        self.summarize_threshold = (
            settings.SUMMARIZE_THRESHOLD if summarize_threshold is None else summarize_threshold
        )
        self.max_context_messages = (
            settings.MAX_CONTEXT_MESSAGES if max_context_messages is None else max_context_messages
        )

    def record_user_turn(self, user_id: str, conversation_id: str, question: str) -> bool:
        """Persist a user question unless it was already stored at conversation creation.

        Returns:
            bool: True when a new message was appended.
        """
        appended = False
        if not self.store.clear_first_message(user_id, conversation_id):
            self.store.append_message(user_id, conversation_id, MessageRole.USER, question)
            appended = True
        self.store.set_preview_if_empty(user_id, conversation_id, question)
        return appended

    def record_assistant_turn(
        self,
        user_id: str,
        conversation_id: str,
        answer: str,
        sources: Sequence[Dict[str, str]] = (),
    ) -> MessageRecord:
        meta = {"sources": list(sources)} if sources else None
        return self.store.append_message(user_id, conversation_id, MessageRole.ASSISTANT, answer, meta=meta)

    def maybe_summarize(self, user_id: str, conversation_id: str) -> bool:
        """Fold old unsummarized messages into the rolling summary when over threshold.

        A failing model call is logged; the messages stay unsummarized and the
        next turn tries again.

        Returns:
            bool: True when a summary was written.
        """
        pending = self.store.unsummarized_messages(user_id, conversation_id)
        if len(pending) <= self.summarize_threshold:
            return False
        old = pending[: -self.max_context_messages] if self.max_context_messages > 0 else pending
        if not old:
            return False

        try:
            summary = summarize_history(self.chat_model, [m.as_chat_message() for m in old])
        except Exception:
            logger.exception("Summarization failed for conversation %s", conversation_id)
            return False
        if not summary:
            logger.warning("Empty summary for conversation %s; will retry", conversation_id)
            return False

        self.store.append_summary(user_id, conversation_id, summary)
        self.store.mark_summarized(user_id, conversation_id, [m.id for m in old])
        logger.info("Summarized %d messages of conversation %s", len(old), conversation_id)
        return True

    def active_window(self, user_id: str, conversation_id: str) -> ActiveWindow:
        convo = self.store.get(user_id, conversation_id)
        pending = self.store.unsummarized_messages(user_id, conversation_id)
        recent = pending[-self.max_context_messages:] if self.max_context_messages > 0 else []
        return ActiveWindow(summary=convo.summary, messages=recent)
