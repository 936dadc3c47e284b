# chatwire/infra/llm/endpoints.py
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Union

from chatwire.constants import (
    OPENAI_CHAT_URL, GROQ_CHAT_URL, OPENROUTER_CHAT_URL, CLAUDE_MESSAGES_URL,
    DEFAULT_OLLAMA, ANTHROPIC_VERSION,
)
from .base import Provider
from .errors import ConfigurationError

log = logging.getLogger("llm.endpoints")

_HOSTED = {
    Provider.OPENAI: OPENAI_CHAT_URL,
    Provider.GROQ: GROQ_CHAT_URL,
    Provider.OPENROUTER: OPENROUTER_CHAT_URL,
}


@dataclass
class EndpointConfig:
    url: str
    headers: Dict[str, str] = field(default_factory=dict)   # insertion-ordered


def _header_value(name: str, value: str) -> str:
    # Same acceptance rule as an HTTP header value: visible Latin-1 plus space/tab
    for ch in value:
        o = ord(ch)
        if (o < 0x20 and ch != "\t") or o == 0x7F or o > 0xFF:
            raise ConfigurationError(f"Invalid {name} header value")
    return value


def _base(endpoint: Optional[str]) -> str:
    return (endpoint or "").strip().rstrip("/")


def resolve_endpoint(provider: Union[Provider, str], api_key: str = "",
                     endpoint: Optional[str] = None) -> EndpointConfig:
    """Map a provider selection to its chat URL and request headers.

    Only Ollama and the generic OpenAI-compatible provider look at `endpoint`;
    hosted providers always use their fixed URL.
    """
    p = Provider.parse(provider)
    api_key = api_key or ""
    headers: Dict[str, str] = {}

    if p in _HOSTED:
        url = _HOSTED[p]
    elif p is Provider.OLLAMA:
        url = f"{_base(endpoint) or DEFAULT_OLLAMA}/v1/chat/completions"
    elif p is Provider.OPENAI_COMPATIBLE:
        base = _base(endpoint)
        if not base:
            raise ConfigurationError("OpenAI Compatible endpoint not configured")
        url = f"{base}/chat/completions"
    else:  # Claude
        url = CLAUDE_MESSAGES_URL
        headers["x-api-key"] = _header_value("x-api-key", api_key)
        headers["anthropic-version"] = ANTHROPIC_VERSION

    # Compatible servers are often local and keyless
    if p is not Provider.CLAUDE and (api_key or p is not Provider.OPENAI_COMPATIBLE):
        headers["Authorization"] = _header_value("Authorization", f"Bearer {api_key}")
    headers["Content-Type"] = "application/json"

    log.debug("Resolved %s endpoint: %s", p.label, url)
    return EndpointConfig(url=url, headers=headers)
