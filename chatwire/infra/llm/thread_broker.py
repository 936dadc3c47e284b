# chatwire/infra/llm/thread_broker.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Deque, List, Optional
from collections import deque
import logging

from PyQt6.QtCore import QObject, QThread, pyqtSignal, Qt

from .backend_adapter import make_stream_func
from .base import DoneEvent, ErrorEvent, StreamRequest, TokenEvent

log = logging.getLogger("llm.broker")


# ---------- Public types ----------
@dataclass(slots=True)
class Job:
    request: StreamRequest

    @property
    def request_id(self) -> str:
        return self.request.request_id


# ---------- Worker ----------
class _Worker(QObject):
    token    = pyqtSignal(str, str)     # (request_id, delta)
    done     = pyqtSignal(str, object)  # (request_id, DoneEvent)
    error    = pyqtSignal(str, str)     # (request_id, message)
    finished = pyqtSignal(str, str)     # (request_id, status) status: "ok"|"cancelled"|"error"

    def __init__(self, client, job: Job):
        super().__init__()
        self._client = client
        self._job = job
        self._should_stop = False
        self._chat = None

    def stop(self):  # called from the GUI thread; ChatStream.cancel is thread-safe
        self._should_stop = True
        chat = self._chat
        if chat is not None:
            chat.cancel()

    def _stop_fn(self) -> bool:
        return self._should_stop

    def _attach(self, chat) -> None:
        self._chat = chat
        if self._should_stop:
            chat.cancel()

    def run(self):
        rid = self._job.request_id
        status = "cancelled" if self._should_stop else "ok"
        events = None
        try:
            if not self._should_stop:
                events = make_stream_func(self._client, self._job.request)(
                    stop_fn=self._stop_fn, on_open=self._attach)
                for ev in events:
                    if self._should_stop:
                        break
                    if isinstance(ev, TokenEvent):
                        self.token.emit(rid, ev.delta)
                    elif isinstance(ev, DoneEvent):
                        self.done.emit(rid, ev)
                    elif isinstance(ev, ErrorEvent):
                        status = "error"
                        self.error.emit(rid, ev.message)
                if self._should_stop and status == "ok":
                    status = "cancelled"
        except Exception as exc:
            log.exception("Stream worker for %s crashed", rid)
            status = "error"
            self.error.emit(rid, f"{type(exc).__name__}: {exc}")
        finally:
            if events is not None:
                events.close()
            self._chat = None
            self.finished.emit(rid, status)


# ---------- Broker ----------
class ThreadBroker(QObject):
    """
    Single-concurrency queue for streaming LLM requests, keyed by request id.
    Signals are delivered on the broker's (GUI) thread. Every submitted request
    gets exactly one job_finished: "ok", "error", or "cancelled" (also for
    requests dropped from the queue before they started).
    """
    job_started   = pyqtSignal(str)          # request_id
    job_token     = pyqtSignal(str, str)     # (request_id, delta)
    job_done      = pyqtSignal(str, object)  # (request_id, DoneEvent)
    job_error     = pyqtSignal(str, str)     # (request_id, message)
    job_finished  = pyqtSignal(str, str)     # (request_id, status)
    queue_changed = pyqtSignal(str, int)     # (active request_id or "", queued_count)

    def __init__(self, client, parent: QObject | None = None):
        super().__init__(parent)
        self._client = client
        self._queue: Deque[Job] = deque()
        self._thread: Optional[QThread] = None
        self._worker: Optional[_Worker] = None
        self._active_id: str = ""

    # -------- API --------
    def submit(self, request: StreamRequest) -> str:
        """Queue a request. Request ids must be unique among active and queued jobs."""
        rid = request.request_id
        if (rid and rid == self._active_id) or rid in self.queued():
            raise ValueError(f"Request {rid} is already queued or running")
        self._queue.append(Job(request))
        log.debug("Queued %s (%d waiting)", rid, len(self._queue))
        self.queue_changed.emit(self._active_id, len(self._queue))
        if not self._active_id:
            self._start_next()
        return request.request_id

    def stop_active(self):
        # gentle, cooperative cancel
        if self._worker:
            self._worker.stop()

    def cancel_ticket(self, request_id: str) -> bool:
        # drop a queued request; the active one is stopped instead
        if request_id and request_id == self._active_id:
            self.stop_active()
            return True
        kept = deque(j for j in self._queue if j.request_id != request_id)
        if len(kept) == len(self._queue):
            return False
        self._queue = kept
        self.queue_changed.emit(self._active_id, len(self._queue))
        self.job_finished.emit(request_id, "cancelled")
        return True

    def clear_queue(self, include_active: bool = False):
        dropped = [j.request_id for j in self._queue]
        self._queue.clear()
        if include_active:
            self.stop_active()
        self.queue_changed.emit(self._active_id, 0)
        for rid in dropped:
            self.job_finished.emit(rid, "cancelled")

    def queued(self) -> List[str]:
        return [j.request_id for j in self._queue]

    def active_request(self) -> str:
        return self._active_id

    # -------- internals --------
    def _start_next(self):
        if self._thread or self._worker or not self._queue:
            return

        job = self._queue.popleft()
        self._active_id = job.request_id
        self.queue_changed.emit(self._active_id, len(self._queue))

        self._thread = QThread()
        self._worker = _Worker(self._client, job)
        self._worker.moveToThread(self._thread)

        # bubble up signals
        self._worker.token.connect(self.job_token, Qt.ConnectionType.QueuedConnection)
        self._worker.done.connect(self.job_done, Qt.ConnectionType.QueuedConnection)
        self._worker.error.connect(self.job_error, Qt.ConnectionType.QueuedConnection)
        self._worker.finished.connect(self._on_worker_finished, Qt.ConnectionType.QueuedConnection)

        self._thread.started.connect(self._worker.run)
        self._thread.start()
        self.job_started.emit(job.request_id)

    def _cleanup(self):
        if self._thread:
            self._thread.quit()
            self._thread.wait()
            self._thread.deleteLater()
            self._thread = None
        if self._worker:
            self._worker.deleteLater()
            self._worker = None
        self._active_id = ""

    def _on_worker_finished(self, request_id: str, status: str):
        self.job_finished.emit(request_id, status)
        self._cleanup()
        self._start_next()
