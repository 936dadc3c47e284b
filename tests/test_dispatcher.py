"""Tests for the thread-pool dispatcher and the stream-func adapter."""

import threading
import time

import pytest
from chatwire.infra.llm.backend_adapter import make_stream_func
from chatwire.infra.llm.base import DoneEvent, ErrorEvent, TokenEvent
from chatwire.infra.llm.dispatcher import StreamDispatcher

from conftest import FakeResponse, openai_chunk, sse


class BlockingResponse(FakeResponse):
    """Sends its chunks, then blocks like an idle socket until closed."""

    def iter_content(self, chunk_size=None):
        yield from self._chunks
        while not self.closed:
            time.sleep(0.01)


class TestMakeStreamFunc:
    def test_yields_client_events(self, client, fake_session, make_request):
        fake_session.post.return_value = FakeResponse([sse(openai_chunk("a"), "[DONE]")])
        events = list(make_stream_func(client, make_request())(stop_fn=lambda: False))
        assert [type(e) for e in events] == [TokenEvent, DoneEvent]

    def test_stop_fn_cancels_stream(self, client, fake_session, make_request):
        resp = FakeResponse([sse(openai_chunk("a")), sse(openai_chunk("b")), sse("[DONE]")])
        fake_session.post.return_value = resp
        stop = {"flag": False}
        out = []
        for ev in make_stream_func(client, make_request())(stop_fn=lambda: stop["flag"]):
            out.append(ev)
            stop["flag"] = True
        assert len(out) == 1
        assert resp.closed

    def test_config_error_becomes_error_event(self, client, make_request):
        events = list(make_stream_func(client, make_request("unknown"))(stop_fn=lambda: False))
        assert len(events) == 1
        assert isinstance(events[0], ErrorEvent)

    def test_on_open_receives_stream(self, client, fake_session, make_request):
        fake_session.post.return_value = FakeResponse([sse("[DONE]")])
        opened = []
        list(make_stream_func(client, make_request())(stop_fn=lambda: False, on_open=opened.append))
        assert len(opened) == 1
        assert opened[0].request_id == "r1"


class TestStreamDispatcher:
    def test_submit_runs_to_completion(self, client, fake_session, make_request):
        fake_session.post.return_value = FakeResponse([sse(openai_chunk("x"), "[DONE]")])
        dispatcher = StreamDispatcher(client, max_workers=2)
        seen = []
        try:
            terminal = dispatcher.submit(make_request(), seen.append).result(timeout=5)
        finally:
            dispatcher.shutdown()
        assert isinstance(terminal, DoneEvent)
        assert [e.type for e in seen] == ["token", "done"]
        assert dispatcher.active() == []

    def test_concurrent_requests_are_independent(self, fake_session, make_request):
        from chatwire.infra.llm.stream_client import StreamingChatClient

        fake_session.post.side_effect = lambda *a, **k: FakeResponse([sse(openai_chunk("t"), "[DONE]")])
        client = StreamingChatClient(session=fake_session)
        dispatcher = StreamDispatcher(client, max_workers=4)
        sinks = {f"r{i}": [] for i in range(6)}
        try:
            futures = [dispatcher.submit(make_request(request_id=rid), sinks[rid].append) for rid in sinks]
            for f in futures:
                f.result(timeout=5)
        finally:
            dispatcher.shutdown()
        for rid, events in sinks.items():
            assert all(e.request_id == rid for e in events)
            assert [e.type for e in events] == ["token", "done"]

    def test_duplicate_request_id_rejected(self, client, fake_session, make_request):
        fake_session.post.return_value = BlockingResponse([sse(openai_chunk("a"))])
        dispatcher = StreamDispatcher(client, max_workers=1)
        try:
            dispatcher.submit(make_request(), lambda ev: None)
            with pytest.raises(ValueError):
                dispatcher.submit(make_request(), lambda ev: None)
        finally:
            dispatcher.cancel("r1")
            dispatcher.shutdown()

    def test_cancel_running_request(self, client, fake_session, make_request):
        resp = BlockingResponse([sse(openai_chunk("a"))])
        fake_session.post.return_value = resp
        dispatcher = StreamDispatcher(client, max_workers=1)
        seen = []
        got_token = threading.Event()

        def sink(ev):
            seen.append(ev)
            got_token.set()

        try:
            future = dispatcher.submit(make_request(), sink)
            assert got_token.wait(5)
            assert dispatcher.cancel("r1") is True
            assert future.result(timeout=5) is None
        finally:
            dispatcher.shutdown()
        assert [e.type for e in seen] == ["token"]
        assert resp.closed
        assert dispatcher.cancel("r1") is False

    def test_submit_after_shutdown(self, client, make_request):
        dispatcher = StreamDispatcher(client)
        dispatcher.shutdown()
        with pytest.raises(RuntimeError):
            dispatcher.submit(make_request(), lambda ev: None)
