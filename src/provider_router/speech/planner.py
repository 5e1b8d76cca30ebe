"""
Speech Chunk Planning.

Splits long text into chunks a speech backend accepts, tracks how much of
the text is delivered, and stitches the synthesised audio back together.

Pipeline:
    1. truncate()  - optional hard ceiling on total tokens, cut at a
                     sentence end, newline or space inside a lookback window
    2. plan()      - sentence split, greedy packing under
                     max_input_tokens - token_buffer, optional sentence overlap
    3. stitch_audio() / encode_audio() - ordered byte concatenation

Sentence Splitting:
    A sentence ends after ".", "!" or "?" followed by whitespace (or the
    end of text), and at every newline. A custom segmenter callable can
    replace this, for example a locale-aware one.

Oversized Input:
    A sentence over the budget is split by words; a word over the budget
    is split between tokens. Nothing is dropped during planning.

Accounting:
    delivered_token_count == sum(chunk.token_count - chunk.overlap_token_count)
    delivered_token_count + omitted_token_count == original_token_count

Example:
    >>> planner = SpeechChunkPlanner()
    >>> plan = planner.plan("hello world", SpeechCapability(max_input_tokens=2000, token_buffer=50))
    >>> [c.text for c in plan.chunks], plan.truncated
    (['hello world'], False)
"""
from __future__ import annotations

import base64
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional

from provider_router.core.config import Defaults
from provider_router.core.logging import get_logger, verbose
from provider_router.speech.tokenizer import count_tokens, split_by_tokens, token_end_offset
from provider_router.utils.timeit import timeit

_LOG = get_logger("provider-router.planner")

Segmenter = Callable[[str], Iterable[str]]

_SENTENCE_END = re.compile(r"[.!?](?=\s|$)|[\r\n]")


# =============================================================================
# Data Classes
# =============================================================================

@dataclass(frozen=True)
class SpeechCapability:
    """
    Input limits of a speech backend.

    Attributes:
        max_input_tokens: Backend input limit; None or <= 0 means unlimited.
        token_buffer: Tokens held back to absorb estimation error.
        sentence_overlap: Trailing sentences of one chunk repeated at the
            start of the next (0 or 1 in practice).
    """
    max_input_tokens: Optional[int] = None
    token_buffer: int = 0
    sentence_overlap: int = 0

    @property
    def budget(self) -> Optional[int]:
        """Tokens allowed per chunk, or None for no limit."""
        if not self.max_input_tokens or self.max_input_tokens <= 0:
            return None
        return max(1, self.max_input_tokens - max(0, self.token_buffer))


@dataclass
class SpeechChunk:
    """One unit of text sent to the backend."""
    text: str
    token_count: int
    overlap_token_count: int = 0

    @property
    def delivered_token_count(self) -> int:
        return self.token_count - self.overlap_token_count


@dataclass
class ChunkPlan:
    """
    Ordered chunks plus delivery metrics for one synthesis call.

    Attributes:
        chunks: Chunks in synthesis order.
        truncated: Whether a hard ceiling removed trailing text.
        original_token_count: Tokens in the text as submitted.
        delivered_token_count: Tokens that will be spoken, overlap excluded.
        omitted_token_count: Tokens removed by truncation.
        timings_s: Timing measurements in seconds.
    """
    chunks: List[SpeechChunk]
    truncated: bool = False
    original_token_count: int = 0
    delivered_token_count: int = 0
    omitted_token_count: int = 0
    timings_s: Dict[str, float] = field(default_factory=dict)

    @property
    def texts(self) -> List[str]:
        return [chunk.text for chunk in self.chunks]

    def to_dict(self) -> Dict[str, object]:
        return {
            "chunks": [
                {"text": c.text, "tokenCount": c.token_count, "overlapTokenCount": c.overlap_token_count}
                for c in self.chunks
            ],
            "truncated": self.truncated,
            "originalTokenCount": self.original_token_count,
            "deliveredTokenCount": self.delivered_token_count,
            "omittedTokenCount": self.omitted_token_count,
        }


@dataclass
class TruncationResult:
    text: str
    truncated: bool
    original_token_count: int
    kept_token_count: int

    @property
    def omitted_token_count(self) -> int:
        return self.original_token_count - self.kept_token_count


# =============================================================================
# Sentence splitting
# =============================================================================

def split_sentences(text: str, segmenter: Optional[Segmenter] = None) -> List[str]:
    """
    Split text into trimmed sentence-like units.

    Uses `segmenter` when given and it yields anything; otherwise splits
    after . ! ? followed by whitespace or end of text, and at newlines.
    Text with no boundary comes back as a single sentence.
    """
    if not text or not text.strip():
        return []

    if segmenter is not None:
        pieces = [p.strip() for p in segmenter(text) if p and p.strip()]
        if pieces:
            return pieces

    sentences: List[str] = []
    start = 0
    for match in _SENTENCE_END.finditer(text):
        piece = text[start:match.end()].strip()
        if piece:
            sentences.append(piece)
        start = match.end()
    tail = text[start:].strip()
    if tail:
        sentences.append(tail)
    return sentences


def _split_sentence_by_words(sentence: str, budget: int) -> List[str]:
    """Greedy word packing; words over the budget are split between tokens."""
    pieces: List[str] = []
    current = ""

    for word in sentence.split():
        candidate = f"{current} {word}" if current else word
        if count_tokens(candidate) <= budget:
            current = candidate
            continue

        if current:
            pieces.append(current)
            current = ""

        if count_tokens(word) <= budget:
            current = word
            continue

        segments = split_by_tokens(word, budget)
        if not segments:
            continue
        pieces.extend(segments[:-1])
        current = segments[-1]

    if current:
        pieces.append(current)
    return pieces


def _fit_overlap(sentences: List[str], budget: int) -> List[str]:
    """Leading run of `sentences` whose joined text fits the budget."""
    kept: List[str] = []
    for sentence in sentences:
        if count_tokens(" ".join(kept + [sentence])) > budget:
            break
        kept.append(sentence)
    return kept


# =============================================================================
# Planner
# =============================================================================

class SpeechChunkPlanner:
    """
    Plans chunked speech synthesis.

    Args:
        segmenter: Optional sentence segmenter used instead of the
            punctuation/newline splitter.
        lookback_chars: Window searched backwards for a clean cut when
            truncating.
    """

    def __init__(
        self,
        segmenter: Optional[Segmenter] = None,
        lookback_chars: int = Defaults.SPEECH_TRUNCATION_LOOKBACK,
    ):
        self.segmenter = segmenter
        self.lookback_chars = lookback_chars

    def split_sentences(self, text: str) -> List[str]:
        return split_sentences(text, self.segmenter)

    def truncate(self, text: str, max_tokens: int, lookback_chars: Optional[int] = None) -> TruncationResult:
        """
        Cut `text` to at most `max_tokens` tokens.

        The cut moves back to the last sentence end (. ! ? before
        whitespace) or newline inside the lookback window, else to the
        last space in the window, else stays at the token limit.
        A non-positive `max_tokens` disables truncation.
        """
        text = text or ""
        total = count_tokens(text)
        if max_tokens <= 0 or total <= max_tokens:
            return TruncationResult(text, False, total, total)

        lookback = self.lookback_chars if lookback_chars is None else lookback_chars
        limit = token_end_offset(text, max_tokens)
        window_start = max(0, limit - max(0, lookback))

        cut = None
        for index in range(limit - 1, window_start - 1, -1):
            char = text[index]
            if char in "\r\n":
                cut = index
                break
            if char in ".!?" and (index + 1 >= len(text) or text[index + 1].isspace()):
                cut = index + 1
                break

        if cut is None or not text[:cut].strip():
            space = text.rfind(" ", window_start, limit + 1)
            cut = space if space > 0 and text[:space].strip() else limit

        kept = text[:cut].rstrip()
        return TruncationResult(kept, True, total, count_tokens(kept))

    def plan(self, text: str, capability: Optional[SpeechCapability] = None) -> ChunkPlan:
        """
        Build the chunk plan for `text` under `capability`.

        Without a capability (or with no input limit) the whole text is
        one chunk. Empty text gives an empty plan.
        """
        timings: Dict[str, float] = {}
        stripped = text.strip() if isinstance(text, str) else ""
        total = count_tokens(stripped)

        with timeit("plan") as t:
            budget = capability.budget if capability is not None else None
            if not stripped:
                chunks: List[SpeechChunk] = []
            elif budget is None:
                chunks = [SpeechChunk(stripped, total)]
            else:
                overlap = max(0, int(capability.sentence_overlap)) if capability else 0
                chunks = self._pack(self.split_sentences(stripped), budget, overlap)

        timings["plan"] = t.timing.seconds if t.timing else -1.0
        delivered = sum(c.delivered_token_count for c in chunks)
        verbose(
            _LOG,
            "chunk_planned",
            chunks=len(chunks),
            tokens=total,
            budget=budget,
            seconds=round(timings["plan"], 4),
        )
        return ChunkPlan(
            chunks=chunks,
            truncated=False,
            original_token_count=total,
            delivered_token_count=delivered,
            omitted_token_count=total - delivered,
            timings_s=timings,
        )

    def plan_with_ceiling(
        self,
        text: str,
        capability: Optional[SpeechCapability],
        max_total_tokens: int,
    ) -> ChunkPlan:
        """
        Truncate to `max_total_tokens` (0 = no ceiling), then plan.

        The returned metrics are relative to the untruncated text.
        """
        cut = self.truncate(text, max_total_tokens)
        plan = self.plan(cut.text, capability)
        plan.truncated = cut.truncated
        plan.original_token_count = cut.original_token_count
        plan.omitted_token_count = cut.original_token_count - plan.delivered_token_count
        return plan

    def _pack(self, sentences: List[str], budget: int, overlap: int) -> List[SpeechChunk]:
        chunks: List[SpeechChunk] = []
        buffer: List[str] = []
        carried = 0       # leading sentences of `buffer` repeated from the previous chunk
        fresh = False

        def carry(source: List[str]) -> None:
            nonlocal buffer, carried, fresh
            buffer = _fit_overlap(source[-overlap:], budget) if overlap else []
            carried = len(buffer)
            fresh = False

        def flush() -> None:
            if not buffer or not fresh:
                return
            chunk_text = " ".join(buffer)
            chunks.append(SpeechChunk(
                text=chunk_text,
                token_count=count_tokens(chunk_text),
                overlap_token_count=count_tokens(" ".join(buffer[:carried])),
            ))
            carry(buffer)

        def add(sentence: str) -> bool:
            nonlocal fresh
            if count_tokens(" ".join(buffer + [sentence])) > budget:
                return False
            buffer.append(sentence)
            fresh = True
            return True

        for sentence in sentences:
            if count_tokens(sentence) > budget:
                flush()
                pieces = _split_sentence_by_words(sentence, budget)
                for piece in pieces:
                    chunks.append(SpeechChunk(piece, count_tokens(piece)))
                carry(pieces)
                continue

            if add(sentence):
                continue

            flush()
            if add(sentence):
                continue

            # Overlap alone leaves no room; start clean
            buffer, carried, fresh = [], 0, False
            add(sentence)

        if fresh and buffer:
            flush()

        return chunks


# =============================================================================
# Stitching
# =============================================================================

def stitch_audio(buffers: Iterable[bytes]) -> bytes:
    """Concatenate chunk audio in order, no cross-fade or trimming."""
    return b"".join(bytes(b) for b in buffers)


def encode_audio(buffers: Iterable[bytes]) -> str:
    """Stitch chunk audio and return it base64-encoded."""
    return base64.b64encode(stitch_audio(buffers)).decode("ascii")
