"""Conversation and message storage.

Provides:
- ConversationRecord / MessageRecord: plain snapshots handed to callers
- ConversationStore: interface keyed by (user_id, conversation_id); every
  operation checks ownership and raises ConversationNotFoundError on mismatch
- SqlConversationStore: SQLAlchemy implementation over the conversations and
  messages tables
- InMemoryConversationStore: instance-owned nested dicts for development and tests

Messages are ordered by (created_at, id). The ``summarized`` flag only ever
goes from False to True.
"""
import abc
import itertools
import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.orm import Session, sessionmaker

from campus_rag.db import session_scope
from campus_rag.errors import ConversationNotFoundError
from campus_rag.models import Conversation, Message, MessageRole, _utcnow

DEFAULT_TITLE = "New Conversation"


@dataclass
class ConversationRecord:
    id: str
    user_id: str
    title: str = DEFAULT_TITLE
    summary: Optional[str] = None
    preview: Optional[str] = None
    first_message: bool = False
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class MessageRecord:
    id: int
    conversation_id: str
    role: MessageRole
    content: str
    summarized: bool = False
    meta: Optional[Dict[str, Any]] = None
    created_at: datetime = field(default_factory=_utcnow)

    def as_chat_message(self) -> Dict[str, str]:
        return {"role": MessageRole(self.role).value, "content": self.content}


def _not_found(conversation_id: str) -> ConversationNotFoundError:
    return ConversationNotFoundError(f"Conversation {conversation_id} not found")


class ConversationStore(abc.ABC):
    """Storage for conversations and their ordered messages."""

    @abc.abstractmethod
    def create(self, user_id: str, title: str = DEFAULT_TITLE, first_message: bool = False) -> ConversationRecord:
        ...

    @abc.abstractmethod
    def get(self, user_id: str, conversation_id: str) -> ConversationRecord:
        ...

    @abc.abstractmethod
    def list_for_user(self, user_id: str) -> List[ConversationRecord]:
        """Conversations of a user, newest first."""

    @abc.abstractmethod
    def delete(self, user_id: str, conversation_id: str) -> None:
        ...

    @abc.abstractmethod
    def append_message(
        self,
        user_id: str,
        conversation_id: str,
        role: MessageRole,
        content: str,
        meta: Optional[Dict[str, Any]] = None,
    ) -> MessageRecord:
        ...

    @abc.abstractmethod
    def list_messages(self, user_id: str, conversation_id: str) -> List[MessageRecord]:
        """All messages, oldest first."""

    @abc.abstractmethod
    def unsummarized_messages(self, user_id: str, conversation_id: str) -> List[MessageRecord]:
        """Messages with summarized=False, oldest first."""

    @abc.abstractmethod
    def mark_summarized(self, user_id: str, conversation_id: str, message_ids: Sequence[int]) -> int:
        ...

    @abc.abstractmethod
    def append_summary(self, user_id: str, conversation_id: str, text: str) -> str:
        """Append text to the rolling summary (newline-joined); returns the new summary."""

    @abc.abstractmethod
    def set_preview_if_empty(self, user_id: str, conversation_id: str, preview: str) -> bool:
        ...

    @abc.abstractmethod
    def clear_first_message(self, user_id: str, conversation_id: str) -> bool:
        """Clear the first_message flag; True when it was set."""

    @abc.abstractmethod
    def set_title(self, user_id: str, conversation_id: str, title: str) -> None:
        ...


def _conversation_record(c: Conversation) -> ConversationRecord:
    return ConversationRecord(
        id=c.id,
        user_id=c.user_id,
        title=c.title,
        summary=c.summary,
        preview=c.preview,
        first_message=bool(c.first_message),
        created_at=c.created_at,
    )


def _message_record(m: Message) -> MessageRecord:
    return MessageRecord(
        id=m.id,
        conversation_id=m.conversation_id,
        role=MessageRole(m.role),
        content=m.content,
        summarized=bool(m.summarized),
        meta=m.meta,
        created_at=m.created_at,
    )


class SqlConversationStore(ConversationStore):
    """Conversations and messages in the relational database."""

    def __init__(self, session_factory: Optional[sessionmaker] = None) -> None:
        self.session_factory = session_factory

    def _owned(self, db: Session, user_id: str, conversation_id: str) -> Conversation:
        convo = db.execute(
            select(Conversation).where(Conversation.id == conversation_id, Conversation.user_id == user_id)
        ).scalar_one_or_none()
        if convo is None:
            raise _not_found(conversation_id)
        return convo

    def create(self, user_id: str, title: str = DEFAULT_TITLE, first_message: bool = False) -> ConversationRecord:
        with session_scope(self.session_factory) as db:
            convo = Conversation(user_id=user_id, title=title, first_message=first_message)
            db.add(convo)
            db.flush()
            return _conversation_record(convo)

    def get(self, user_id: str, conversation_id: str) -> ConversationRecord:
        with session_scope(self.session_factory) as db:
            return _conversation_record(self._owned(db, user_id, conversation_id))

    def list_for_user(self, user_id: str) -> List[ConversationRecord]:
        with session_scope(self.session_factory) as db:
            rows = db.execute(
                select(Conversation)
                .where(Conversation.user_id == user_id)
                .order_by(Conversation.created_at.desc())
            ).scalars()
            return [_conversation_record(c) for c in rows]

    def delete(self, user_id: str, conversation_id: str) -> None:
        with session_scope(self.session_factory) as db:
            db.delete(self._owned(db, user_id, conversation_id))

    def append_message(
        self,
        user_id: str,
        conversation_id: str,
        role: MessageRole,
        content: str,
        meta: Optional[Dict[str, Any]] = None,
    ) -> MessageRecord:
        with session_scope(self.session_factory) as db:
            self._owned(db, user_id, conversation_id)
            msg = Message(conversation_id=conversation_id, role=role, content=content, meta=meta, summarized=False)
            db.add(msg)
            db.flush()
            return _message_record(msg)

    def _messages(self, user_id: str, conversation_id: str, unsummarized_only: bool) -> List[MessageRecord]:
        with session_scope(self.session_factory) as db:
            self._owned(db, user_id, conversation_id)
            stmt = select(Message).where(Message.conversation_id == conversation_id)
            if unsummarized_only:
                stmt = stmt.where(Message.summarized.is_(False))
            stmt = stmt.order_by(Message.created_at.asc(), Message.id.asc())
            return [_message_record(m) for m in db.execute(stmt).scalars()]

    def list_messages(self, user_id: str, conversation_id: str) -> List[MessageRecord]:
        return self._messages(user_id, conversation_id, unsummarized_only=False)

    def unsummarized_messages(self, user_id: str, conversation_id: str) -> List[MessageRecord]:
        return self._messages(user_id, conversation_id, unsummarized_only=True)

    def mark_summarized(self, user_id: str, conversation_id: str, message_ids: Sequence[int]) -> int:
        if not message_ids:
            return 0
        with session_scope(self.session_factory) as db:
            self._owned(db, user_id, conversation_id)
            result = db.execute(
                update(Message)
                .where(Message.conversation_id == conversation_id, Message.id.in_(list(message_ids)))
                .values(summarized=True)
            )
            return result.rowcount or 0

    def append_summary(self, user_id: str, conversation_id: str, text: str) -> str:
        with session_scope(self.session_factory) as db:
            convo = self._owned(db, user_id, conversation_id)
            convo.summary = f"{convo.summary}\n{text}" if convo.summary else text
            return convo.summary

    def set_preview_if_empty(self, user_id: str, conversation_id: str, preview: str) -> bool:
        with session_scope(self.session_factory) as db:
            convo = self._owned(db, user_id, conversation_id)
            if convo.preview:
                return False
            convo.preview = preview
            return True

    def clear_first_message(self, user_id: str, conversation_id: str) -> bool:
        with session_scope(self.session_factory) as db:
            convo = self._owned(db, user_id, conversation_id)
            if not convo.first_message:
                return False
            convo.first_message = False
            return True

    def set_title(self, user_id: str, conversation_id: str, title: str) -> None:
        with session_scope(self.session_factory) as db:
            self._owned(db, user_id, conversation_id).title = title


class InMemoryConversationStore(ConversationStore):
    """Process-local store: {user_id: {conversation_id: record}} plus message lists."""

    def __init__(self) -> None:
        self._conversations: Dict[str, Dict[str, ConversationRecord]] = {}
        self._messages: Dict[str, List[MessageRecord]] = {}
        self._ids = itertools.count(1)
        self._lock = threading.RLock()

    def _owned(self, user_id: str, conversation_id: str) -> ConversationRecord:
        convo = self._conversations.get(user_id, {}).get(conversation_id)
        if convo is None:
            raise _not_found(conversation_id)
        return convo

    def create(self, user_id: str, title: str = DEFAULT_TITLE, first_message: bool = False) -> ConversationRecord:
        with self._lock:
            convo = ConversationRecord(id=str(uuid.uuid4()), user_id=user_id, title=title, first_message=first_message)
            self._conversations.setdefault(user_id, {})[convo.id] = convo
            self._messages[convo.id] = []
            return replace(convo)

    def get(self, user_id: str, conversation_id: str) -> ConversationRecord:
        with self._lock:
            return replace(self._owned(user_id, conversation_id))

    def list_for_user(self, user_id: str) -> List[ConversationRecord]:
        with self._lock:
            convos = [replace(c) for c in self._conversations.get(user_id, {}).values()]
        # insertion order breaks created_at ties
        return list(reversed(sorted(convos, key=lambda c: c.created_at)))

    def delete(self, user_id: str, conversation_id: str) -> None:
        with self._lock:
            self._owned(user_id, conversation_id)
            del self._conversations[user_id][conversation_id]
            self._messages.pop(conversation_id, None)

    def append_message(
        self,
        user_id: str,
        conversation_id: str,
        role: MessageRole,
        content: str,
        meta: Optional[Dict[str, Any]] = None,
    ) -> MessageRecord:
        with self._lock:
            self._owned(user_id, conversation_id)
            msg = MessageRecord(
                id=next(self._ids),
                conversation_id=conversation_id,
                role=MessageRole(role),
                content=content,
                meta=meta,
            )
            self._messages[conversation_id].append(msg)
            return replace(msg)

    def list_messages(self, user_id: str, conversation_id: str) -> List[MessageRecord]:
        with self._lock:
            self._owned(user_id, conversation_id)
            return [replace(m) for m in self._messages[conversation_id]]

    def unsummarized_messages(self, user_id: str, conversation_id: str) -> List[MessageRecord]:
        return [m for m in self.list_messages(user_id, conversation_id) if not m.summarized]

    def mark_summarized(self, user_id: str, conversation_id: str, message_ids: Sequence[int]) -> int:
        ids = set(message_ids)
        marked = 0
        with self._lock:
            self._owned(user_id, conversation_id)
            for m in self._messages[conversation_id]:
                if m.id in ids and not m.summarized:
                    m.summarized = True
                    marked += 1
        return marked

    def append_summary(self, user_id: str, conversation_id: str, text: str) -> str:
        with self._lock:
            convo = self._owned(user_id, conversation_id)
            convo.summary = f"{convo.summary}\n{text}" if convo.summary else text
            return convo.summary

    def set_preview_if_empty(self, user_id: str, conversation_id: str, preview: str) -> bool:
        with self._lock:
            convo = self._owned(user_id, conversation_id)
            if convo.preview:
                return False
            convo.preview = preview
            return True

    def clear_first_message(self, user_id: str, conversation_id: str) -> bool:
        with self._lock:
            convo = self._owned(user_id, conversation_id)
            if not convo.first_message:
                return False
            convo.first_message = False
            return True

    def set_title(self, user_id: str, conversation_id: str, title: str) -> None:
        with self._lock:
            self._owned(user_id, conversation_id).title = title
