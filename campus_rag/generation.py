"""Answer generation utilities using OpenAI chat completions.

Provides:
- ChatModel: Thin wrapper with blocking (complete) and streaming (stream) calls
- QuestionType / classify_question: Campus-vs-general routing used when retrieval finds nothing
- summarize_history: Concise summary of a slice of conversation history
- generate_title: Short conversation title from the first question
- answer_instructions: System prompt for grounded answers over a context block

Configuration is read from campus_rag.config.settings.
"""
import enum
import logging
from datetime import date
from typing import Any, Dict, Iterator, List, Optional, Sequence

from openai import OpenAI

from campus_rag.config import settings
from campus_rag.embedding import get_client

logger = logging.getLogger(__name__)

ChatMessage = Dict[str, str]

DEFAULT_TITLE = "New Conversation"

CLASSIFIER_PROMPT = (
    "You are a classifier. Answer with a single token: 'UMD' if the question is likely about the "
    "University of Maryland (campus, admissions, courses, fees, orientation, professors, housing, "
    "athletics, campus news, etc.), otherwise 'GENERAL'. No explanation."
)

SUMMARY_PROMPT = "Summarize this chat history in a concise way that preserves important details."

TITLE_PROMPT = (
    "You are an assistant that names chat conversations.\n"
    "Given the user's first message, respond with a short, clear, 3-6 word title that summarizes the topic.\n"
    "Do NOT include quotes or punctuation at the start or end.\n"
    'Do NOT prefix with "Title:".\n\n'
    'User message:\n"{question}"'
)


class QuestionType(str, enum.Enum):
    DOMAIN = "UMD"
    GENERAL = "GENERAL"


class ChatModel:
    """OpenAI chat completions with a blocking and a streaming entry point."""

    def __init__(self, client: Optional[OpenAI] = None, model: Optional[str] = None) -> None:
        self._client = client
        self.model = model or settings.OPENAI_MODEL

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = get_client()
        return self._client

    def _params(self, messages: Sequence[ChatMessage], options: Dict[str, Any]) -> Dict[str, Any]:
        params: Dict[str, Any] = {"model": self.model, "messages": list(messages)}
        if options.get("temperature") is not None:
            params["temperature"] = options["temperature"]
        if options.get("max_tokens") is not None:
            params["max_tokens"] = options["max_tokens"]
        return params

    def complete(self, messages: Sequence[ChatMessage], **options: Any) -> str:
        """Run a single chat completion and return the stripped text."""
        resp = self.client.chat.completions.create(**self._params(messages, options))
        content = resp.choices[0].message.content or ""
        return content.strip()

    def stream(self, messages: Sequence[ChatMessage], **options: Any) -> Iterator[str]:
        """Yield text deltas as the provider produces them.

        The upstream HTTP stream is closed when the generator finishes, raises,
        or is closed early by the consumer.
        """
        resp = self.client.chat.completions.create(stream=True, **self._params(messages, options))
        try:
            for chunk in resp:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content or ""
                if delta:
                    yield delta
        finally:
            resp.close()


def classify_question(chat: ChatModel, question: str) -> QuestionType:
    """Classify a question as campus-related (DOMAIN) or general chit-chat.

    Anything other than an exact "UMD" label maps to GENERAL.
    """
    label = chat.complete(
        [
            {"role": "system", "content": CLASSIFIER_PROMPT},
            {"role": "user", "content": question},
        ],
        temperature=0,
    )
    if label.strip().strip("'\"").upper() == QuestionType.DOMAIN.value:
        return QuestionType.DOMAIN
    return QuestionType.GENERAL


def summarize_history(chat: ChatModel, messages: Sequence[ChatMessage]) -> str:
    """Summarize a list of {"role", "content"} messages into a short paragraph."""
    block = "\n".join(f"{m['role']}: {m['content']}" for m in messages)
    return chat.complete(
        [
            {"role": "system", "content": SUMMARY_PROMPT},
            {"role": "user", "content": block},
        ]
    )


def generate_title(chat: ChatModel, question: Optional[str]) -> str:
    """Generate a 3-6 word conversation title; falls back to DEFAULT_TITLE."""
    if not question or not question.strip():
        return DEFAULT_TITLE
    title = chat.complete(
        [{"role": "user", "content": TITLE_PROMPT.format(question=question.strip())}],
        temperature=0.5,
        max_tokens=20,
    )
    title = title.strip().strip("\"'")
    if title.lower().startswith("title:"):
        title = title[len("title:"):].strip()
    return title or DEFAULT_TITLE


def answer_instructions(context: str, today: Optional[date] = None) -> str:
    """Build the system instruction carrying retrieved context.

    Args:
        context: Formatted context block ("Source: <url>\\n<snippet>\\n---\\n" blocks).
        today: Date the model should treat as today; defaults to date.today().

    Returns:
        str: System message content.
    """
    today = today or date.today()
    lines: List[str] = [
        f"Context (multiple sources):\n{context}",
        f"Today's date: {today.year}/{today.month}/{today.day}",
        "Instructions:",
        "- Use only the provided context to answer.",
        "- If multiple dates or events are present, choose the one that best matches the user's "
        "question and is most recent to today's date.",
        "- If the question is about the future, prefer upcoming events.",
        "- Write in a clear, professional tone.",
        f"- Responses may be up to {settings.MAX_OUTPUT_TOKENS} tokens if needed. If an answer would "
        "require much more than that, summarize instead and end gracefully.",
        "Formatting:",
        "- Use **bold** for important names, dates, or key details.",
        "- Use bullet points or numbered lists for multiple items.",
        "- Keep paragraphs concise (2-3 sentences max).",
    ]
    return "\n".join(lines)
