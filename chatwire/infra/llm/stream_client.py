# chatwire/infra/llm/stream_client.py
"""
Streaming chat client.

One request runs Resolving -> Sending -> Streaming -> Completed | Failed and
produces a lazy, non-restartable sequence of StreamEvents ending in exactly
one DoneEvent or ErrorEvent. Cancelled streams end silently.
"""
from __future__ import annotations
import logging, threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Union
import requests

from chatwire.constants import CLAUDE_DEFAULT_MAX_TOKENS, CONNECT_TIMEOUT, READ_TIMEOUT
from .base import (
    DoneEvent, ErrorEvent, Provider, StreamEvent, StreamRequest, SummaryResult, TokenEvent, is_terminal,
)
from .endpoints import EndpointConfig, resolve_endpoint
from .errors import LLMError, ProviderError, TransportError
from .normalizers import Normalizer, normalizer_for
from .payloads import build_request_body, validate_messages
from .sse import SSEDecoder
from .timing import LatencyTimer, log_ttft_metrics

__all__ = [
    "StreamState", "StreamingChatClient", "ChatStream", "validate_messages", "build_request_body",
]

log = logging.getLogger("llm.stream")

Timeout = Union[float, Tuple[float, float]]
Sink = Callable[[StreamEvent], Any]


class StreamState(str, Enum):
    RESOLVING = "resolving"
    SENDING = "sending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class _Prepared:
    request_id: str
    provider: Provider
    model: str
    endpoint: EndpointConfig
    body: Dict[str, Any]
    timeout: Timeout


class ChatStream:
    """Iterator over one request's events. Iterate once; `cancel()` is safe from any thread."""

    def __init__(self, session: requests.Session, prepared: _Prepared, include_metrics: bool = True,
                 timer: Optional[LatencyTimer] = None):
        self.request_id = prepared.request_id
        self.provider = prepared.provider
        self.model = prepared.model
        self.state = StreamState.SENDING
        self.error: Optional[LLMError] = None
        self._session = session
        self._prepared = prepared
        self._include_metrics = include_metrics
        self._timer = timer or LatencyTimer()
        self._cancelled = threading.Event()
        self._response: Optional[requests.Response] = None
        self._events = self._run()

    def __iter__(self) -> "ChatStream":
        return self

    def __next__(self) -> StreamEvent:
        return next(self._events)

    @property
    def timer(self) -> LatencyTimer:
        return self._timer

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        """Abort the HTTP call; no further events are produced."""
        if self._cancelled.is_set():
            return
        self._cancelled.set()
        if self.state in (StreamState.SENDING, StreamState.STREAMING):
            self.state = StreamState.CANCELLED
        resp = self._response
        if resp is not None:
            try:
                resp.close()
            except Exception as e:  # the reader thread may be mid-read
                log.debug("Error closing cancelled response for %s: %s", self.request_id, e)
        log.info("Stream %s cancelled", self.request_id)

    def close(self) -> None:
        self._events.close()

    # -------- lifecycle --------
    def _fail(self, err: LLMError) -> ErrorEvent:
        self.state = StreamState.FAILED
        self.error = err
        log.error("Stream %s failed: %s", self.request_id, err)
        return ErrorEvent(request_id=self.request_id, message=str(err))

    def _run(self) -> Iterator[StreamEvent]:
        p = self._prepared
        label = p.provider.label
        prefix = "Claude streaming" if p.provider is Provider.CLAUDE else "Streaming"
        if self.cancelled:
            return

        log.info("Sending streaming request to %s: %s", label, p.endpoint.url)
        self._timer.start()
        try:
            resp = self._session.post(p.endpoint.url, headers=p.endpoint.headers, json=p.body,
                                      stream=True, timeout=p.timeout)
        except requests.RequestException as e:
            if not self.cancelled:
                yield self._fail(TransportError(f"Failed to send streaming request: {e}"))
            return

        self._response = resp
        try:
            if self.cancelled:
                return
            if not resp.ok:
                try:
                    body = resp.text
                except requests.RequestException:
                    body = "Unknown error"
                log.debug("%s returned HTTP %s", label, resp.status_code)
                yield self._fail(TransportError(f"{prefix} API request failed: {body}"))
                return

            self.state = StreamState.STREAMING
            normalizer = normalizer_for(p.provider)
            try:
                yield from self._pump(resp, normalizer)
            except ProviderError as e:
                if not self.cancelled:
                    yield self._fail(e)
                return
            except requests.RequestException as e:
                if not self.cancelled:
                    stream_prefix = "Claude stream" if p.provider is Provider.CLAUDE else "Stream"
                    yield self._fail(TransportError(f"{stream_prefix} error: {e}"))
                return
            except Exception as e:
                # closing the socket under a blocked read surfaces as an arbitrary error
                if self.cancelled:
                    return
                log.exception("Unexpected failure while streaming %s", self.request_id)
                yield self._fail(LLMError(f"Unexpected stream failure: {type(e).__name__}: {e}"))
                return

            if self.cancelled:
                return
            yield self._complete(normalizer)
        finally:
            resp.close()

    def _pump(self, resp: requests.Response, normalizer: Normalizer) -> Iterator[StreamEvent]:
        decoder = SSEDecoder(parse_event_field=normalizer.parse_event_field)
        for chunk in resp.iter_content(chunk_size=None):
            if self.cancelled:
                return
            for block in decoder.feed(chunk):
                for delta in normalizer.handle(block):
                    if self.cancelled:
                        return
                    if self._timer.mark_token():
                        log.debug("First token for %s after %dus", self.request_id, self._timer.ttft_us)
                    yield TokenEvent(request_id=self.request_id, delta=delta)
                if normalizer.finished:
                    break
            if normalizer.finished:
                break
        decoder.close()
        if normalizer.decode_errors:
            log.warning("Skipped %d malformed chunks for %s", normalizer.decode_errors, self.request_id)

    def _complete(self, normalizer: Normalizer) -> DoneEvent:
        total = self._timer.stop()
        log_ttft_metrics(self._timer.ttft_us, total, log)
        self.state = StreamState.COMPLETED
        log.info("Stream %s completed (finish_reason=%s)", self.request_id, normalizer.finish_reason)
        done = DoneEvent(request_id=self.request_id, usage=normalizer.usage,
                         finish_reason=normalizer.finish_reason)
        if self._include_metrics:
            done.model = self.model
            done.provider = self.provider.label
            done.ttft_us = self._timer.ttft_us
            done.total_time_us = total
        return done


class StreamingChatClient:
    def __init__(self, session: Optional[requests.Session] = None,
                 timeout: Timeout = (CONNECT_TIMEOUT, READ_TIMEOUT),
                 include_metrics: bool = True,
                 claude_max_tokens: int = CLAUDE_DEFAULT_MAX_TOKENS):
        self.session = session or requests.Session()
        self.timeout = timeout
        self.include_metrics = include_metrics
        self.claude_max_tokens = claude_max_tokens

    def prepare(self, request: StreamRequest) -> _Prepared:
        provider = Provider.parse(request.provider)
        messages = validate_messages(request.messages)
        endpoint = resolve_endpoint(provider, request.api_key, request.endpoint)
        body = build_request_body(provider, request.model, messages, request.options,
                                  claude_max_tokens=self.claude_max_tokens)
        return _Prepared(
            request_id=request.request_id,
            provider=provider,
            model=request.model,
            endpoint=endpoint,
            body=body,
            timeout=request.timeout if request.timeout is not None else self.timeout,
        )

    def open(self, request: StreamRequest) -> ChatStream:
        """Resolve synchronously; configuration and validation errors raise here."""
        return ChatStream(self.session, self.prepare(request), include_metrics=self.include_metrics)

    def stream(self, request: StreamRequest) -> Iterator[StreamEvent]:
        try:
            chat = self.open(request)
        except LLMError as e:
            log.error("Rejected request %s: %s", request.request_id, e)
            yield ErrorEvent(request_id=request.request_id, message=str(e))
            return
        try:
            yield from chat
        finally:
            chat.close()

    def run(self, request: StreamRequest, sink: Sink) -> Optional[StreamEvent]:
        """Push every event into `sink`; return the terminal one (None when cancelled)."""
        terminal: Optional[StreamEvent] = None
        for ev in self.stream(request):
            sink(ev)
            if is_terminal(ev):
                terminal = ev
        return terminal

    def collect(self, request: StreamRequest) -> SummaryResult:
        chat = self.open(request)
        parts: List[str] = []
        done: Optional[DoneEvent] = None
        try:
            for ev in chat:
                if isinstance(ev, TokenEvent):
                    parts.append(ev.delta)
                elif isinstance(ev, DoneEvent):
                    done = ev
                elif isinstance(ev, ErrorEvent):
                    raise chat.error or LLMError(ev.message)
        finally:
            chat.close()
        if done is None:
            raise TransportError(f"Stream {request.request_id} ended without completing")
        timer = chat.timer
        return SummaryResult(
            content="".join(parts),
            ttft_us=timer.ttft_us,
            total_time_us=timer.total_us(),
            usage=done.usage,
            finish_reason=done.finish_reason,
        )
