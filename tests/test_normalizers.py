"""Tests for the OpenAI-style and Claude stream normalizers."""

import logging

import pytest
from chatwire.infra.llm.errors import ConfigurationError, ProviderError
from chatwire.infra.llm.normalizers import ClaudeNormalizer, OpenAINormalizer, normalizer_for
from chatwire.infra.llm.sse import SSEBlock, iter_blocks

from conftest import claude_event, openai_chunk, sse


def _run(normalizer, raw: bytes):
    out = []
    for block in iter_blocks([raw], parse_event_field=normalizer.parse_event_field):
        out.extend(normalizer.handle(block))
        if normalizer.finished:
            break
    return out


class TestOpenAINormalizer:
    def test_yields_content_deltas(self):
        n = OpenAINormalizer()
        raw = sse(openai_chunk("Hel"), openai_chunk("lo"), "[DONE]")
        assert _run(n, raw) == ["Hel", "lo"]
        assert n.finished

    def test_empty_and_missing_content_skipped(self):
        n = OpenAINormalizer()
        raw = sse(openai_chunk(""), openai_chunk(None), {"choices": []}, openai_chunk("x"))
        assert _run(n, raw) == ["x"]

    def test_finish_reason_and_usage_recorded(self):
        n = OpenAINormalizer()
        usage = {"prompt_tokens": 5, "completion_tokens": 2, "total_tokens": 7}
        raw = sse(openai_chunk("a"), openai_chunk(finish_reason="stop"), {"choices": [], "usage": usage})
        _run(n, raw)
        assert n.finish_reason == "stop"
        assert n.usage.to_dict() == usage

    def test_last_usage_wins(self):
        n = OpenAINormalizer()
        raw = sse({"usage": {"total_tokens": 1}}, {"usage": {"total_tokens": 9}})
        _run(n, raw)
        assert n.usage.total_tokens == 9

    def test_malformed_json_is_skipped_and_logged(self, caplog):
        n = OpenAINormalizer()
        raw = sse(openai_chunk("a"), "{not json", "[1, 2]", openai_chunk("b"))
        with caplog.at_level(logging.WARNING, logger="llm.stream"):
            assert _run(n, raw) == ["a", "b"]
        assert n.decode_errors == 2
        assert "Failed to parse streaming chunk" in caplog.text

    def test_nothing_after_done(self):
        n = OpenAINormalizer()
        raw = sse(openai_chunk("a"), "[DONE]", openai_chunk("late"))
        assert _run(n, raw) == ["a"]
        assert list(n.handle(SSEBlock(data=['{"choices":[{"delta":{"content":"z"}}]}']))) == []

    def test_done_inside_multi_line_block(self):
        n = OpenAINormalizer()
        block = SSEBlock(data=['{"choices":[{"delta":{"content":"a"}}]}', "[DONE]", '{"choices":[{"delta":{"content":"b"}}]}'])
        assert list(n.handle(block)) == ["a"]
        assert n.finished

    def test_error_object_raises_provider_error(self):
        n = OpenAINormalizer()
        with pytest.raises(ProviderError, match="rate limited"):
            _run(n, sse({"error": {"message": "rate limited"}}))


class TestClaudeNormalizer:
    def _stream(self):
        return b"".join([
            claude_event("message_start", message={"id": "msg_1", "usage": {"input_tokens": 10}}),
            claude_event("content_block_start", index=0, content_block={"type": "text", "text": ""}),
            claude_event("ping"),
            claude_event("content_block_delta", index=0, delta={"type": "text_delta", "text": "Hi"}),
            claude_event("content_block_delta", index=0, delta={"type": "text_delta", "text": " there"}),
            claude_event("content_block_stop", index=0),
            claude_event("message_delta", delta={"stop_reason": "end_turn"}, usage={"output_tokens": 3}),
            claude_event("message_stop"),
        ])

    def test_full_sequence(self):
        n = ClaudeNormalizer()
        assert _run(n, self._stream()) == ["Hi", " there"]
        assert n.finished
        assert n.message_id == "msg_1"
        assert n.finish_reason == "end_turn"
        assert n.usage.to_dict() == {"prompt_tokens": 10, "completion_tokens": 3, "total_tokens": 13}

    def test_usage_absent_without_counts(self):
        n = ClaudeNormalizer()
        _run(n, claude_event("message_stop"))
        assert n.usage is None

    def test_partial_usage_has_no_total(self):
        n = ClaudeNormalizer()
        _run(n, claude_event("message_delta", delta={}, usage={"output_tokens": 4}))
        assert n.usage.to_dict() == {"completion_tokens": 4}

    def test_event_field_used_when_type_missing(self):
        n = ClaudeNormalizer()
        raw = sse({"delta": {"text": "via event line"}}, event="content_block_delta")
        assert _run(n, raw) == ["via event line"]

    @pytest.mark.parametrize("payload", [
        {"type": "message_delta", "delta": "oops"},
        {"type": "message_delta", "delta": {}, "usage": 5},
        {"type": "message_start", "message": []},
        {"type": "message_start", "message": {"id": "m", "usage": "many"}},
        {"type": "content_block_delta", "delta": ["x"]},
    ])
    def test_wrong_shape_payload_is_skipped(self, payload):
        n = ClaudeNormalizer()
        raw = sse(payload) + claude_event("content_block_delta", delta={"text": "ok"}) + claude_event("message_stop")
        assert _run(n, raw) == ["ok"]
        assert n.decode_errors == 1
        assert n.finished

    def test_non_string_type_falls_back_to_event_line(self):
        n = ClaudeNormalizer()
        raw = sse({"type": ["bad"], "delta": {"text": "t"}}, event="content_block_delta")
        assert _run(n, raw) == ["t"]

    def test_error_event_raises(self):
        n = ClaudeNormalizer()
        raw = claude_event("error", error={"type": "overloaded_error", "message": "Overloaded"})
        with pytest.raises(ProviderError, match="Claude error: Overloaded"):
            _run(n, raw)

    def test_malformed_payload_skipped(self):
        n = ClaudeNormalizer()
        raw = sse("oops", event="content_block_delta") + claude_event(
            "content_block_delta", delta={"text": "ok"})
        assert _run(n, raw) == ["ok"]
        assert n.decode_errors == 1


class TestNormalizerFor:
    @pytest.mark.parametrize("provider", ["openai", "groq", "ollama", "openrouter", "openai-compatible"])
    def test_openai_schema(self, provider):
        assert isinstance(normalizer_for(provider), OpenAINormalizer)

    def test_claude_schema(self):
        assert isinstance(normalizer_for("claude"), ClaudeNormalizer)

    def test_unknown_provider(self):
        with pytest.raises(ConfigurationError, match="Unsupported LLM provider"):
            normalizer_for("bard")
