# chatwire/infra/llm/backend_adapter.py
from __future__ import annotations
import logging
from typing import Callable, Iterator, Optional

from .base import ErrorEvent, StreamEvent, StreamRequest
from .errors import LLMError

log = logging.getLogger("llm.stream")

StopFn = Callable[[], bool]
OpenHook = Callable[[object], None]
StreamFunc = Callable[..., Iterator[StreamEvent]]


def make_stream_func(client, request: StreamRequest) -> StreamFunc:
    """
    Returns a StreamFunc(*, stop_fn, on_open=None) -> Iterator[StreamEvent]
    that the ThreadBroker or StreamDispatcher can schedule.

    `on_open` receives the live ChatStream so a scheduler can cancel a read
    that is blocked on the socket; `stop_fn` is polled between events.
    Configuration and validation failures come out as a single ErrorEvent.
    """
    def stream(*, stop_fn: StopFn = lambda: False, on_open: Optional[OpenHook] = None) -> Iterator[StreamEvent]:
        try:
            chat = client.open(request)
        except LLMError as e:
            log.error("Rejected request %s: %s", request.request_id, e)
            yield ErrorEvent(request_id=request.request_id, message=str(e))
            return
        if on_open is not None:
            on_open(chat)
        try:
            for ev in chat:
                if stop_fn():
                    chat.cancel()
                    break
                yield ev
        finally:
            chat.close()
    return stream
