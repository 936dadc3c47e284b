# chatwire/infra/llm/payloads.py
from __future__ import annotations
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from chatwire.constants import CLAUDE_DEFAULT_MAX_TOKENS
from .base import ChatMessage, Provider, Role, SamplingOptions
from .errors import ValidationError

log = logging.getLogger("llm.stream")

_ROLES = {r.value for r in Role}


def _role(m: ChatMessage) -> str:
    return m.role.value if isinstance(m.role, Role) else str(m.role)


def _coerce(m: Union[ChatMessage, Mapping[str, Any]]) -> ChatMessage:
    if isinstance(m, ChatMessage):
        return m
    if isinstance(m, Mapping):
        return ChatMessage.from_dict(m)
    raise ValidationError(f"Invalid message: expected a ChatMessage or mapping, got {type(m).__name__}")


def validate_messages(messages: Iterable[Union[ChatMessage, Mapping[str, Any]]]) -> List[ChatMessage]:
    """Return the messages as ChatMessage objects; `{"role", "content"}` mappings are accepted."""
    msgs = [_coerce(m) for m in (messages or [])]
    if not msgs:
        raise ValidationError("Message list cannot be empty")
    for m in msgs:
        if _role(m) not in _ROLES:
            raise ValidationError(f"Invalid message role: {_role(m)}")
        if not isinstance(m.content, str) or not m.content.strip():
            raise ValidationError("Message content cannot be empty")
    return msgs


def build_request_body(provider: Union[Provider, str], model: str, messages: List[ChatMessage],
                       options: Optional[SamplingOptions] = None,
                       claude_max_tokens: int = CLAUDE_DEFAULT_MAX_TOKENS) -> Dict[str, Any]:
    p = Provider.parse(provider)
    opts = options or SamplingOptions()

    if p is Provider.CLAUDE:
        system = [m.content for m in messages if _role(m) == "system"]
        if len(system) > 1:
            log.warning("Claude accepts one system prompt; using the first of %d", len(system))
        body: Dict[str, Any] = {
            "model": model,
            "max_tokens": opts.max_tokens if opts.max_tokens is not None else claude_max_tokens,
            "messages": [m.to_wire() for m in messages if _role(m) != "system"],
            "stream": True,
        }
        if system:
            body["system"] = system[0]
        if opts.temperature is not None:
            body["temperature"] = opts.temperature
        if opts.top_p is not None:
            body["top_p"] = opts.top_p
        return body

    body = {
        "model": model,
        "messages": [m.to_wire() for m in messages],
        "stream": True,
    }
    for k in ("temperature", "top_p", "max_tokens"):
        v = getattr(opts, k)
        if v is not None:
            body[k] = v
    for k, v in (opts.extra or {}).items():
        if v is not None and k not in ("model", "messages", "stream"):
            body[k] = v
    return body
