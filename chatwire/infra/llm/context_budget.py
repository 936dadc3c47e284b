# chatwire/infra/llm/context_budget.py
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Optional, Union

from chatwire.constants import (
    CONTEXT_RESERVE_TOKENS, CONTEXT_FALLBACK_TOKENS, HOSTED_CONTEXT_TOKENS, CHUNK_OVERLAP_TOKENS,
)
from chatwire.settings import section
from .base import Provider
from .errors import LLMError
from .ollama_registry import ModelMetadataCache
from .tokens import chunk_text, estimate_tokens

log = logging.getLogger("llm.context")


@dataclass
class PromptSelection:
    text: str
    chunked: bool
    total_tokens: int
    threshold: int
    chunk_count: int = 1


class ContextBudgetResolver:
    """Decides how much of a transcript fits a single prompt.

    Only Ollama exposes a per-model context window worth asking about; hosted
    providers get `hosted_tokens`, which is large enough that single-pass is
    always chosen. The chat and summary paths must both go through here so
    they cut transcripts identically.
    """

    def __init__(self, cache: ModelMetadataCache, *, reserve_tokens: int = CONTEXT_RESERVE_TOKENS,
                 fallback_tokens: int = CONTEXT_FALLBACK_TOKENS, hosted_tokens: int = HOSTED_CONTEXT_TOKENS,
                 overlap_tokens: int = CHUNK_OVERLAP_TOKENS):
        self.cache = cache
        self.reserve_tokens = reserve_tokens
        self.fallback_tokens = fallback_tokens
        self.hosted_tokens = hosted_tokens
        self.overlap_tokens = overlap_tokens

    @classmethod
    def from_settings(cls, cfg: dict, cache: ModelMetadataCache) -> "ContextBudgetResolver":
        c = section(cfg, "context")
        return cls(
            cache,
            reserve_tokens=int(c["reserve_tokens"]),
            fallback_tokens=int(c["fallback_tokens"]),
            hosted_tokens=int(c["hosted_tokens"]),
            overlap_tokens=int(c["overlap_tokens"]),
        )

    def token_threshold(self, provider: Union[Provider, str], model: str,
                        endpoint: Optional[str] = None) -> int:
        if Provider.parse(provider) is not Provider.OLLAMA:
            return self.hosted_tokens
        try:
            meta = self.cache.get_or_fetch(model, endpoint)
        except LLMError as e:
            log.warning("Failed to fetch context for %s: %s. Using default %d", model, e, self.fallback_tokens)
            return self.fallback_tokens
        optimal = max(meta.context_size - self.reserve_tokens, 0)
        log.info("Using dynamic context for %s: %d tokens (chunk size: %d)", model, meta.context_size, optimal)
        return optimal

    def select_prompt_text(self, text: str, provider: Union[Provider, str], model: str,
                           endpoint: Optional[str] = None) -> PromptSelection:
        """Full text when it fits, otherwise the first chunk a summarizer would send."""
        p = Provider.parse(provider)
        threshold = self.token_threshold(p, model, endpoint)
        total = estimate_tokens(text)
        log.info("Transcript length: %d tokens, threshold: %d", total, threshold)

        if p is not Provider.OLLAMA or total < threshold:
            return PromptSelection(text=text, chunked=False, total_tokens=total, threshold=threshold)

        chunks = chunk_text(text, max(threshold - self.reserve_tokens, 1), self.overlap_tokens)
        if not chunks:
            log.warning("Chunking resulted in empty chunks, using full transcript")
            return PromptSelection(text=text, chunked=False, total_tokens=total, threshold=threshold)
        log.info("Using first chunk of %d chunks (length: %d chars)", len(chunks), len(chunks[0]))
        return PromptSelection(text=chunks[0], chunked=True, total_tokens=total,
                               threshold=threshold, chunk_count=len(chunks))
