"""Heading-aware grouping, splitting and merging of scraped page lines.

Pipeline (document order is preserved end to end; headings must stay next to
the body they introduce):

1. normalize_line / is_junk: collapse whitespace, drop empty and junk lines
2. group_lines: one left-to-right pass. A heading absorbs the following
   non-heading lines until the next heading or until the chunk passes 80% of
   max_chunk_chars; a run of bullets becomes one chunk; any other line is its
   own chunk. Heading detection wins over bullet detection.
3. split_chunk: chunks over max_chunk_chars are cut at the last sentence end,
   else the last space, else hard at the limit. A detected heading is repeated
   at the top of every piece, and the final piece keeps at least 50 characters.
4. merge_small_chunks: chunks under min_tokens words are folded into the
   previous chunk, then the literal phrase "learn more" is stripped.

None of these functions raise; empty input gives empty output.
"""
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from campus_rag.config import settings

_WHITESPACE = re.compile(r"\s+")
_TERMINAL_PUNCT = re.compile(r"[.!?]$")
_NON_ALPHA = re.compile(r"[^A-Za-z]")
_BULLET = re.compile(r"^[-*•·]\s+")
_NUMBERED = re.compile(r"^\d+\.\s+")
_SENTENCE_END = re.compile(r"[.?!](?=[ \n])")
_LEARN_MORE = re.compile(r"learn more", re.IGNORECASE)
_SPACE_RUN = re.compile(r" {2,}")

HEADING_ABSORB_RATIO = 0.8
MIN_REMAINDER_CHARS = 50


@dataclass(frozen=True)
class GroupOptions:
    """Knobs for the grouping pipeline.

    Attributes:
        heading_word_threshold: Lines with at most this many words and no
            terminal punctuation count as headings.
        max_chunk_chars: Upper bound on chunk length.
        min_tokens: Chunks with fewer words are merged into the previous one.
        junk_phrases: Lines equal to, or starting with, one of these phrases
            (case-insensitive) are dropped.
    """
    heading_word_threshold: int = 8
    max_chunk_chars: int = 1800
    min_tokens: int = 30
    junk_phrases: Sequence[str] = ("learn more", "read more")

    @classmethod
    def from_settings(cls) -> "GroupOptions":
        return cls(
            heading_word_threshold=settings.HEADING_WORD_THRESHOLD,
            max_chunk_chars=settings.MAX_CHUNK_CHARS,
            min_tokens=settings.MIN_CHUNK_TOKENS,
            junk_phrases=tuple(settings.JUNK_PHRASES),
        )


def normalize_line(s: Optional[str]) -> str:
    """Collapse runs of whitespace to single spaces and trim."""
    return _WHITESPACE.sub(" ", s or "").strip()


def is_junk(line: str, junk_phrases: Iterable[str]) -> bool:
    """True for empty lines and lines that are (or start with) a junk phrase."""
    t = line.strip().lower()
    if not t:
        return True
    for phrase in junk_phrases:
        p = phrase.strip().lower()
        if p and (t == p or t.startswith(p + " ")):
            return True
    return False


def is_heading(line: str, heading_word_threshold: int = 8) -> bool:
    """Classify a line as a heading.

    A line is a heading if it has at most two words, or at most
    ``heading_word_threshold`` words and no terminal punctuation, or more than
    70% of its ASCII letters are uppercase.
    """
    text = normalize_line(line)
    if not text:
        return False

    words = text.split(" ")
    if len(words) <= 2:
        return True
    if len(words) <= heading_word_threshold and not _TERMINAL_PUNCT.search(text):
        return True

    letters = _NON_ALPHA.sub("", text)
    if not letters:
        return False
    upper = sum(1 for c in letters if c.isupper())
    return upper / len(letters) > 0.7


def is_bullet(line: str) -> bool:
    """True for lines starting with a bullet glyph or "N." followed by whitespace."""
    t = line.strip()
    return bool(_BULLET.match(t) or _NUMBERED.match(t))


def _last_boundary(window: str) -> int:
    """Index just past the last usable cut point in window, or -1."""
    last_sentence = -1
    for m in _SENTENCE_END.finditer(window):
        last_sentence = m.start()
    if last_sentence > 0:
        # keep the punctuation mark with the piece
        return last_sentence + 1
    last_space = max(window.rfind(" "), window.rfind("\n"))
    if last_space > 0:
        return last_space
    return -1


def split_chunk(chunk: str, max_chars: int, heading_word_threshold: int = 8) -> List[str]:
    """Split an oversized chunk into pieces of at most max_chars characters.

    Args:
        chunk: Chunk text; lines are separated by "\\n".
        max_chars: Maximum piece length. A falsy value disables splitting.
        heading_word_threshold: Passed to is_heading for the first line.

    Returns:
        List[str]: The pieces in order. When the chunk starts with a heading
        line, every piece starts with that heading. The last cut is moved
        back so the final piece is never a fragment under 50 characters.
    """
    if not max_chars or len(chunk) <= max_chars:
        return [chunk]

    lines = chunk.split("\n")
    heading = lines[0].strip()
    has_heading = (
        len(lines) > 1
        and is_heading(heading, heading_word_threshold)
        and len(heading) <= max_chars // 2
    )

    if has_heading:
        remaining = "\n".join(lines[1:]).strip()
        budget = max_chars - len(heading) - 1
    else:
        remaining = chunk.strip()
        budget = max_chars

    def with_heading(piece: str) -> str:
        return f"{heading}\n{piece}" if has_heading else piece

    out: List[str] = []
    while len(remaining) > budget:
        window = budget
        tail_floor = len(remaining) - MIN_REMAINDER_CHARS - 1
        if len(remaining) - budget <= MIN_REMAINDER_CHARS and tail_floor > 0:
            # last cut: leave at least MIN_REMAINDER_CHARS for the final piece
            window = tail_floor
        end = _last_boundary(remaining[:window])
        if end <= 0:
            end = window
        piece = remaining[:end].strip()
        remaining = remaining[end:].strip()
        if piece:
            out.append(with_heading(piece))

    if remaining:
        out.append(with_heading(remaining))

    return out


def group_lines(raw_lines: Iterable[str], opts: Optional[GroupOptions] = None) -> List[str]:
    """Group raw page lines into heading-aware chunks bounded by max_chunk_chars.

    Args:
        raw_lines: Text of page elements in document order.
        opts: Grouping options; defaults to GroupOptions().

    Returns:
        List[str]: Chunk texts in document order, lines joined with "\\n".
    """
    opts = opts or GroupOptions()
    threshold = opts.heading_word_threshold
    absorb_limit = opts.max_chunk_chars * HEADING_ABSORB_RATIO

    lines = [normalize_line(r) for r in raw_lines]
    lines = [t for t in lines if t and not is_junk(t, opts.junk_phrases)]

    grouped: List[str] = []
    i = 0
    n = len(lines)
    while i < n:
        cur = lines[i]

        if is_heading(cur, threshold):
            parts = [cur]
            i += 1
            while i < n:
                nxt = lines[i]
                if is_heading(nxt, threshold):
                    break
                parts.append(nxt)
                i += 1
                if len("\n".join(parts)) > absorb_limit:
                    break
            grouped.append("\n".join(parts))
            continue

        if is_bullet(cur):
            bullets: List[str] = []
            while i < n and is_bullet(lines[i]):
                bullets.append(lines[i])
                i += 1
            grouped.append("\n".join(bullets))
            continue

        grouped.append(cur)
        i += 1

    sized: List[str] = []
    for chunk in grouped:
        for piece in split_chunk(chunk, opts.max_chunk_chars, threshold):
            if piece:
                sized.append(piece)
    return sized


def merge_small_chunks(
    chunks: Iterable[str], min_tokens: int = 30, max_chars: Optional[int] = None
) -> List[str]:
    """Fold chunks with fewer than min_tokens words into the preceding chunk.

    A short chunk at the very start stays standalone. With max_chars set, a
    fold that would exceed it is skipped. "learn more" is stripped from every
    chunk afterwards and empty chunks are dropped.
    """
    merged: List[str] = []
    for chunk in chunks:
        words = len(chunk.split())
        if (
            words < min_tokens
            and merged
            and (max_chars is None or len(merged[-1]) + 1 + len(chunk) <= max_chars)
        ):
            merged[-1] = f"{merged[-1]} {chunk}"
        else:
            merged.append(chunk)

    cleaned = [_SPACE_RUN.sub(" ", _LEARN_MORE.sub("", c)).strip() for c in merged]
    return [c for c in cleaned if c]


def build_chunks(raw_lines: Iterable[str], opts: Optional[GroupOptions] = None) -> List[str]:
    """Full segmentation: group, split, then merge fragments."""
    opts = opts or GroupOptions()
    grouped = group_lines(raw_lines, opts)
    return merge_small_chunks(grouped, opts.min_tokens, opts.max_chunk_chars)
