# chatwire/infra/llm/dispatcher.py
from __future__ import annotations
import logging, threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from .backend_adapter import make_stream_func
from .base import StreamEvent, StreamRequest, is_terminal

log = logging.getLogger("llm.dispatch")

Sink = Callable[[StreamEvent], object]


@dataclass
class _Job:
    request_id: str
    stop: threading.Event = field(default_factory=threading.Event)
    chat: Optional[object] = None
    future: Optional[Future] = None

    def attach(self, chat) -> None:
        self.chat = chat
        # cancel() may have landed before the stream opened
        if self.stop.is_set():
            chat.cancel()


class StreamDispatcher:
    """
    Runs each request as its own unit of work on a thread pool.
    Events go straight to the caller's sink from the worker thread; a GUI
    caller marshals them onto its own thread (see ThreadBroker for Qt).
    """

    def __init__(self, client, max_workers: int = 4):
        self.client = client
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="llm-stream")
        self._lock = threading.Lock()
        self._jobs: Dict[str, _Job] = {}
        self._closed = False

    def submit(self, request: StreamRequest, sink: Sink) -> Future:
        """Schedule `request`; the future resolves to the terminal event (None if cancelled)."""
        with self._lock:
            if self._closed:
                raise RuntimeError("StreamDispatcher is shut down")
            if request.request_id in self._jobs:
                raise ValueError(f"Request {request.request_id} is already running")
            job = _Job(request.request_id)
            self._jobs[job.request_id] = job
            job.future = self._pool.submit(self._work, job, request, sink)
        log.debug("Queued request %s", request.request_id)
        return job.future

    def cancel(self, request_id: str) -> bool:
        with self._lock:
            job = self._jobs.get(request_id)
        if job is None:
            return False
        job.stop.set()
        if job.future is not None and job.future.cancel():
            self._forget(job)
        elif job.chat is not None:
            job.chat.cancel()
        log.info("Cancel requested for %s", request_id)
        return True

    def active(self) -> List[str]:
        with self._lock:
            return list(self._jobs)

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            self._closed = True
            pending = list(self._jobs)
        for rid in pending:
            self.cancel(rid)
        self._pool.shutdown(wait=wait)

    # -------- internals --------
    def _forget(self, job: _Job) -> None:
        with self._lock:
            if self._jobs.get(job.request_id) is job:
                del self._jobs[job.request_id]

    def _work(self, job: _Job, request: StreamRequest, sink: Sink) -> Optional[StreamEvent]:
        terminal: Optional[StreamEvent] = None
        events = make_stream_func(self.client, request)(stop_fn=job.stop.is_set, on_open=job.attach)
        try:
            for ev in events:
                if job.stop.is_set():
                    break
                sink(ev)
                if is_terminal(ev):
                    terminal = ev
        finally:
            events.close()
            self._forget(job)
        return terminal
