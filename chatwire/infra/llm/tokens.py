# chatwire/infra/llm/tokens.py
"""
Cheap token estimation and overlapping text chunking.

The estimate is a character heuristic, not a tokenizer; it only has to be fast
and monotonic. Chunk boundaries fall on lines, or on words for lines that are
too long on their own, so the chat and summary paths cut a transcript at the
same places and send byte-identical first chunks.
"""
from __future__ import annotations
import math, re
from typing import List, Tuple

from chatwire.constants import TOKENS_PER_CHAR

Span = Tuple[int, int]

_LINE_RE = re.compile(r"[^\n]*\n|[^\n]+")
_WORD_RE = re.compile(r"\S+\s*|\s+")


def estimate_tokens(text: str) -> int:
    if not text:
        return 0
    return math.ceil(len(text) * TOKENS_PER_CHAR)


def _span_tokens(start: int, end: int) -> int:
    return math.ceil((end - start) * TOKENS_PER_CHAR) if end > start else 0


def _units(text: str, max_tokens: int) -> List[Span]:
    out: List[Span] = []
    for m in _LINE_RE.finditer(text):
        s, e = m.span()
        if _span_tokens(s, e) <= max_tokens:
            out.append((s, e))
            continue
        # line alone is over budget: fall back to words (a lone oversized word stays whole)
        out.extend(w.span() for w in _WORD_RE.finditer(text, s, e))
    return out


def chunk_spans(text: str, max_tokens: int, overlap_tokens: int = 0) -> List[Span]:
    """Return (start, end) character spans of overlapping chunks.

    Spans are ordered, the first starts at 0 and the last ends at len(text).
    Each span starts at or before the previous span's end, so
    ``text[s0:e0] + text[e0:e1] + ...`` rebuilds the input.
    """
    if not text:
        return []
    max_tokens = max(int(max_tokens), 1)
    overlap_tokens = max(int(overlap_tokens), 0)
    if estimate_tokens(text) <= max_tokens:
        return [(0, len(text))]

    units = _units(text, max_tokens)
    n = len(units)
    spans: List[Span] = []
    i, must = 0, 0
    while i < n:
        start = units[i][0]
        j = max(i, must)
        while j + 1 < n and _span_tokens(start, units[j + 1][1]) <= max_tokens:
            j += 1
        end = units[j][1]
        spans.append((start, end))
        if j == n - 1:
            break
        # carry trailing units forward as overlap, as long as the next chunk
        # (overlap + its first new unit) still fits the budget
        nxt_end = units[j + 1][1]
        k = j + 1
        while (k - 1 > i
               and _span_tokens(units[k - 1][0], end) <= overlap_tokens
               and _span_tokens(units[k - 1][0], nxt_end) <= max_tokens):
            k -= 1
        i, must = k, j + 1
    return spans


def chunk_text(text: str, max_tokens: int, overlap_tokens: int = 0) -> List[str]:
    return [text[s:e] for s, e in chunk_spans(text, max_tokens, overlap_tokens)]
