# chatwire/infra/llm/base.py
from __future__ import annotations
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple, Union

from .errors import ConfigurationError


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class Provider(str, Enum):
    OPENAI = "openai"
    CLAUDE = "claude"
    GROQ = "groq"
    OLLAMA = "ollama"
    OPENROUTER = "openrouter"
    OPENAI_COMPATIBLE = "openai-compatible"

    @classmethod
    def parse(cls, value: Union[str, "Provider"]) -> "Provider":
        if isinstance(value, Provider):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ConfigurationError(f"Unsupported LLM provider: {value}") from None

    @property
    def label(self) -> str:
        return _LABELS[self]

    @property
    def schema(self) -> Literal["openai", "claude"]:
        return "claude" if self is Provider.CLAUDE else "openai"


_LABELS = {
    Provider.OPENAI: "OpenAI",
    Provider.CLAUDE: "Claude",
    Provider.GROQ: "Groq",
    Provider.OLLAMA: "Ollama",
    Provider.OPENROUTER: "OpenRouter",
    Provider.OPENAI_COMPATIBLE: "OpenAI Compatible",
}


@dataclass
class ChatMessage:
    role: str   # "user" | "assistant" | "system"
    content: str

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "ChatMessage":
        role = d.get("role", "")
        return cls(role=role.value if isinstance(role, Role) else str(role), content=d.get("content") or "")

    def to_wire(self) -> Dict[str, str]:
        role = self.role.value if isinstance(self.role, Role) else self.role
        return {"role": role, "content": self.content}


@dataclass
class UsageStats:
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None

    @classmethod
    def from_openai(cls, obj: Mapping[str, Any]) -> "UsageStats":
        return cls(
            prompt_tokens=as_int(obj.get("prompt_tokens")),
            completion_tokens=as_int(obj.get("completion_tokens")),
            total_tokens=as_int(obj.get("total_tokens")),
        )

    @classmethod
    def from_claude(cls, input_tokens: Optional[int], output_tokens: Optional[int]) -> Optional["UsageStats"]:
        """Input tokens arrive with message_start, output tokens with message_delta."""
        if input_tokens is None and output_tokens is None:
            return None
        total = input_tokens + output_tokens if input_tokens is not None and output_tokens is not None else None
        return cls(prompt_tokens=input_tokens, completion_tokens=output_tokens, total_tokens=total)

    def to_dict(self) -> Dict[str, int]:
        return {k: v for k, v in asdict(self).items() if v is not None}


def as_int(v: Any) -> Optional[int]:
    if isinstance(v, bool) or v is None:
        return None
    try:
        return int(v)
    except (TypeError, ValueError):
        return None


# ---------- Stream events ----------

@dataclass
class TokenEvent:
    request_id: str
    delta: str
    type: Literal["token"] = field(default="token", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "request_id": self.request_id, "content_delta": self.delta}


@dataclass
class DoneEvent:
    request_id: str
    usage: Optional[UsageStats] = None
    finish_reason: Optional[str] = None
    model: Optional[str] = None
    provider: Optional[str] = None
    ttft_us: Optional[int] = None
    total_time_us: Optional[int] = None
    type: Literal["done"] = field(default="done", init=False)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"type": self.type, "request_id": self.request_id}
        if self.usage is not None:
            out["usage"] = self.usage.to_dict()
        for k in ("finish_reason", "model", "provider", "ttft_us", "total_time_us"):
            v = getattr(self, k)
            if v is not None:
                out[k] = v
        return out


@dataclass
class ErrorEvent:
    request_id: str
    message: str
    type: Literal["error"] = field(default="error", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "request_id": self.request_id, "message": self.message}


StreamEvent = Union[TokenEvent, DoneEvent, ErrorEvent]


def is_terminal(event: StreamEvent) -> bool:
    return event.type in ("done", "error")


# ---------- Requests / results ----------

@dataclass
class SamplingOptions:
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    max_tokens: Optional[int] = None
    # passthrough fields for OpenAI-compatible servers (repeat_penalty, chat_template_kwargs, ...)
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class StreamRequest:
    request_id: str
    provider: Union[Provider, str]
    model: str
    messages: List[ChatMessage]   # {"role", "content"} mappings are coerced on open()
    api_key: str = ""
    endpoint: Optional[str] = None
    options: SamplingOptions = field(default_factory=SamplingOptions)
    timeout: Optional[Union[float, Tuple[float, float]]] = None


@dataclass
class ContextMetadata:
    model: str
    endpoint: str
    context_size: int


@dataclass
class SummaryResult:
    content: str
    ttft_us: Optional[int]
    total_time_us: int
    usage: Optional[UsageStats] = None
    finish_reason: Optional[str] = None
