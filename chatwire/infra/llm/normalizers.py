# chatwire/infra/llm/normalizers.py
"""
Provider schema normalizers.

Each normalizer takes decoded SSE blocks and yields plain content deltas,
keeping the completion metadata (finish reason, usage) on itself until the
stream ends. There is one class per schema family; they share a shape, not a
base class:

    handle(block) -> Iterator[str]
    usage, finish_reason, finished
"""
from __future__ import annotations
import json, logging
from typing import Any, Dict, Iterator, Optional, Union

from .base import Provider, UsageStats, as_int
from .errors import DecodeError, ProviderError
from .sse import SSEBlock, DONE_MARKER

log = logging.getLogger("llm.stream")


def _load(data: str) -> Dict[str, Any]:
    try:
        obj = json.loads(data)
    except ValueError as e:
        raise DecodeError(f"Failed to parse streaming chunk: {e}") from e
    if not isinstance(obj, dict):
        raise DecodeError(f"Unexpected chunk type: {type(obj).__name__}")
    return obj


def _skip(owner, err: DecodeError, data: str) -> None:
    owner.decode_errors += 1
    log.warning("%s | Data: %s", err, data[:500])


def _field(obj: Dict[str, Any], key: str) -> Dict[str, Any]:
    # valid JSON of the wrong shape is treated like unparsable JSON
    value = obj.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise DecodeError(f"Expected object for {key!r}, got {type(value).__name__}")
    return value


class OpenAINormalizer:
    """OpenAI chat-completions chunks (OpenAI, Groq, OpenRouter, Ollama, compatible servers)."""

    parse_event_field = False

    def __init__(self):
        self.usage: Optional[UsageStats] = None
        self.finish_reason: Optional[str] = None
        self.finished = False
        self.decode_errors = 0

    def handle(self, block: SSEBlock) -> Iterator[str]:
        for data in block.data:
            if self.finished:
                return
            if data == DONE_MARKER:
                log.info("Received [DONE] signal")
                self.finished = True
                return
            if not data:
                continue
            try:
                obj = _load(data)
            except DecodeError as e:
                _skip(self, e, data)
                continue

            err = obj.get("error")
            if err:
                msg = err.get("message") if isinstance(err, dict) else str(err)
                raise ProviderError(f"Provider error: {msg or err}")

            choices = obj.get("choices") or []
            choice = choices[0] if isinstance(choices, list) and choices else None
            if isinstance(choice, dict):
                delta = choice.get("delta") or {}
                content = delta.get("content") if isinstance(delta, dict) else None
                if isinstance(content, str) and content:
                    yield content
                if choice.get("finish_reason"):
                    self.finish_reason = str(choice["finish_reason"])

            usage = obj.get("usage")
            if isinstance(usage, dict):
                self.usage = UsageStats.from_openai(usage)


class ClaudeNormalizer:
    """Anthropic Messages API stream events."""

    parse_event_field = True

    _NOOP = frozenset({"ping", "content_block_start", "content_block_stop"})

    def __init__(self):
        self.finish_reason: Optional[str] = None
        self.finished = False
        self.decode_errors = 0
        self.message_id: Optional[str] = None
        self._input_tokens: Optional[int] = None
        self._output_tokens: Optional[int] = None

    @property
    def usage(self) -> Optional[UsageStats]:
        return UsageStats.from_claude(self._input_tokens, self._output_tokens)

    def handle(self, block: SSEBlock) -> Iterator[str]:
        for data in block.data:
            if self.finished or not data:
                continue
            try:
                obj = _load(data)
            except DecodeError as e:
                _skip(self, e, data)
                continue
            kind = obj.get("type")
            if not isinstance(kind, str) or not kind:
                kind = block.event
            try:
                text = self._dispatch(kind, obj)
            except DecodeError as e:
                _skip(self, e, data)
                continue
            if text:
                yield text

    def _dispatch(self, kind: Optional[str], obj: Dict[str, Any]) -> Optional[str]:
        if kind == "content_block_delta":
            text = _field(obj, "delta").get("text")
            return text if isinstance(text, str) else None

        if kind == "message_start":
            message = _field(obj, "message")
            self.message_id = message.get("id")
            log.info("Claude message started: %s", self.message_id)
            usage = _field(message, "usage")
            if usage.get("input_tokens") is not None:
                self._input_tokens = as_int(usage["input_tokens"])
        elif kind == "message_delta":
            delta = _field(obj, "delta")
            if delta.get("stop_reason"):
                self.finish_reason = str(delta["stop_reason"])
            usage = _field(obj, "usage")
            if usage.get("output_tokens") is not None:
                self._output_tokens = as_int(usage["output_tokens"])
        elif kind == "message_stop":
            self.finished = True
        elif kind == "error":
            err = obj.get("error") or {}
            msg = err.get("message") if isinstance(err, dict) else str(err)
            raise ProviderError(f"Claude error: {msg}")
        elif kind not in self._NOOP:
            log.debug("Ignoring Claude event type %r", kind)
        return None


Normalizer = Union[OpenAINormalizer, ClaudeNormalizer]


def normalizer_for(provider: Union[Provider, str]) -> Normalizer:
    if Provider.parse(provider).schema == "claude":
        return ClaudeNormalizer()
    return OpenAINormalizer()
