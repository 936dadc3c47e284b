"""
Shared fixtures for chatwire tests.

HTTP is never touched: the stream client gets a MagicMock session whose
`post` returns a FakeResponse replaying canned SSE bytes.
"""

import json
from typing import Iterable, List, Optional
from unittest.mock import MagicMock

import pytest
from chatwire.infra.llm.base import ChatMessage, StreamRequest
from chatwire.infra.llm.stream_client import StreamingChatClient


class FakeResponse:
    """Minimal stand-in for requests.Response in streaming mode."""

    def __init__(self, chunks: Iterable[bytes] = (), status_code: int = 200, text: str = "",
                 raise_after: Optional[Exception] = None):
        self._chunks = list(chunks)
        self.status_code = status_code
        self.text = text
        self.raise_after = raise_after
        self.closed = False

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 400

    def iter_content(self, chunk_size=None):
        for c in self._chunks:
            if self.closed:
                return
            yield c
        if self.raise_after is not None:
            raise self.raise_after

    def close(self):
        self.closed = True


def sse(*payloads, event: Optional[str] = None) -> bytes:
    """Encode payloads (dicts or raw strings) as complete SSE blocks."""
    out = []
    for p in payloads:
        data = p if isinstance(p, str) else json.dumps(p)
        head = f"event: {event}\n" if event else ""
        out.append(f"{head}data: {data}\n\n")
    return "".join(out).encode("utf-8")


def openai_chunk(content: Optional[str] = None, finish_reason: Optional[str] = None, usage=None) -> dict:
    delta = {} if content is None else {"content": content}
    obj = {"choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}]}
    if usage is not None:
        obj["usage"] = usage
    return obj


def claude_event(kind: str, **fields) -> bytes:
    return sse(dict(type=kind, **fields), event=kind)


@pytest.fixture
def user_messages() -> List[ChatMessage]:
    return [ChatMessage(role="user", content="hi")]


@pytest.fixture
def fake_session():
    session = MagicMock()
    session.post.return_value = FakeResponse()
    return session


@pytest.fixture
def client(fake_session) -> StreamingChatClient:
    return StreamingChatClient(session=fake_session)


@pytest.fixture
def make_request(user_messages):
    def _make(provider="openai", model="gpt-4o-mini", messages=None, **kw) -> StreamRequest:
        return StreamRequest(
            request_id=kw.pop("request_id", "r1"),
            provider=provider,
            model=model,
            messages=messages if messages is not None else list(user_messages),
            api_key=kw.pop("api_key", "sk-test"),
            **kw,
        )
    return _make
