"""
Script-aware token estimation.

A heuristic, not a model tokenizer. One token is:
    - a single CJK ideograph, Hangul syllable/jamo, Hiragana or Katakana char
    - a run of letters/digits outside those scripts ("hello", "2024", "café")
    - any other single non-space character (punctuation, symbols, "_")

Whitespace is never part of a token, so two texts joined by a space
count exactly as the sum of their parts. The planner relies on this to
keep delivered + omitted == original across chunks.

Example:
    >>> count_tokens("hello world")
    2
    >>> count_tokens("你好，世界")
    5
"""
from __future__ import annotations

import re
from typing import List, Tuple

_CJK = (
    "\u1100-\u11ff"          # Hangul Jamo
    "\u3040-\u309f"          # Hiragana
    "\u30a0-\u30ff"          # Katakana
    "\u3130-\u318f"          # Hangul Compatibility Jamo
    "\u31f0-\u31ff"          # Katakana Phonetic Extensions
    "\u3400-\u4dbf"          # CJK Extension A
    "\u4e00-\u9fff"          # CJK Unified Ideographs
    "\uac00-\ud7af"          # Hangul Syllables
    "\uf900-\ufaff"          # CJK Compatibility Ideographs
    "\uff66-\uff9f"          # Halfwidth Katakana
    "\U00020000-\U0002fa1f"  # CJK Extensions B-F, Compatibility Supplement
)

_TOKEN_RE = re.compile(rf"[{_CJK}]|(?:(?![{_CJK}])[^\W_])+|\S")


def count_tokens(text: str) -> int:
    """Number of heuristic tokens in `text` (0 for empty/non-string)."""
    if not text or not isinstance(text, str):
        return 0
    return sum(1 for _ in _TOKEN_RE.finditer(text))


def token_spans(text: str) -> List[Tuple[int, int]]:
    """(start, end) character spans of every token, in order."""
    if not text:
        return []
    return [m.span() for m in _TOKEN_RE.finditer(text)]


def token_end_offset(text: str, max_tokens: int) -> int:
    """
    Character offset just past the `max_tokens`-th token.

    Returns len(text) when the text has no more than `max_tokens` tokens
    and 0 when `max_tokens` is not positive.
    """
    if max_tokens <= 0:
        return 0
    for index, match in enumerate(_TOKEN_RE.finditer(text)):
        if index == max_tokens - 1:
            return match.end()
    return len(text)


def split_by_tokens(text: str, max_tokens: int) -> List[str]:
    """
    Split a whitespace-free run into pieces of at most `max_tokens` tokens.

    Cuts fall between tokens only, so a Latin word run is never broken
    and the piece counts add up to count_tokens(text).
    """
    spans = token_spans(text)
    if not spans:
        return []
    step = max(1, max_tokens)
    pieces = []
    for first in range(0, len(spans), step):
        start = spans[first][0] if first else 0
        nxt = first + step
        end = spans[nxt][0] if nxt < len(spans) else len(text)
        piece = text[start:end]
        if piece:
            pieces.append(piece)
    return pieces
