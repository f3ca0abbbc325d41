"""Enrichment client: payloads, validation, endpoint failures, document attachment."""

from dataclasses import replace

import pytest
import requests

from recon_graph.config import (
    ChatMessage,
    ChatRequest,
    CompletionRequest,
    EnrichmentConfig,
    GenerationParams,
)
from recon_graph.enrichment import EnrichmentClient, attach_document, build_payload
from recon_graph.result import ErrorCategory, ErrorKind
from tests.helpers import FakeResponse, chat_reply, completion_reply


class TestSubmit:
    @pytest.mark.unit
    def test_chat_request_goes_to_chat_completions(self, session, chat_config):
        session.replies = [chat_reply('{"speakers": []}')]
        client = EnrichmentClient(session=session)

        result = client.submit(chat_config)

        assert result.ok
        assert result.data.text == '{"speakers": []}'
        assert result.data.finish_reasons == ("stop",)
        call = session.calls[0]
        assert call["url"] == "http://localhost:8000/v1/chat/completions"
        assert call["json"]["messages"][0] == {
            "role": "system", "content": "You are a data extraction assistant.",
        }
        assert call["json"]["max_tokens"] == 4096
        assert call["json"]["temperature"] == 0.1
        assert call["json"]["seed"] == 42
        assert "prompt" not in call["json"]
        assert call["timeout"] == 60
        assert call["stream"] is True
        assert "Authorization" not in call["headers"]

    @pytest.mark.unit
    def test_completion_request_goes_to_completions(self, session, completion_config):
        session.replies = [completion_reply("Alice, Bob")]
        config = replace(completion_config, api_key="sk-test")

        result = EnrichmentClient(session=session).submit(config)

        assert result.data.completions == ("Alice, Bob",)
        call = session.calls[0]
        assert call["url"] == "http://localhost:8000/v1/completions"
        assert call["json"]["prompt"] == "List the speakers:"
        assert call["headers"]["Authorization"] == "Bearer sk-test"

    @pytest.mark.unit
    def test_n_choices_are_all_returned(self, session, chat_config):
        session.replies = [chat_reply("one", "two")]
        config = replace(chat_config, params=GenerationParams(n=2))

        result = EnrichmentClient(session=session).submit(config)

        assert result.data.completions == ("one", "two")
        assert len(result.data.finish_reasons) == 2
        assert session.calls[0]["json"]["n"] == 2

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "params",
        [
            GenerationParams(temperature=1.5),
            GenerationParams(temperature=-0.1),
            GenerationParams(n=0),
            GenerationParams(max_tokens=0),
            GenerationParams(top_p=0.0),
        ],
    )
    def test_out_of_range_parameters_never_reach_the_endpoint(self, session, chat_config, params):
        result = EnrichmentClient(session=session).submit(replace(chat_config, params=params))

        assert not result.ok
        assert result.kind is ErrorKind.INVALID_PARAMETER
        assert result.category is ErrorCategory.CONFIGURATION
        assert session.calls == []

    @pytest.mark.unit
    def test_non_2xx_is_endpoint_error_with_status_and_snippet(self, session, chat_config):
        session.replies = [FakeResponse(status_code=500, text="x" * 2000)]

        result = EnrichmentClient(session=session).submit(chat_config)

        assert result.kind is ErrorKind.ENDPOINT_ERROR
        assert result.context["status"] == 500
        assert len(result.context["body"]) == 500

    @pytest.mark.unit
    def test_timeout(self, session, chat_config):
        session.replies = [requests.Timeout("read timed out")]

        result = EnrichmentClient(session=session).submit(chat_config)

        assert result.kind is ErrorKind.REQUEST_TIMEOUT
        assert "60" in result.error

    @pytest.mark.unit
    def test_body_trickling_past_deadline_is_a_timeout(self, session, chat_config, monkeypatch):
        clock = [1000.0]
        monkeypatch.setattr("recon_graph.enrichment.time.monotonic", lambda: clock[0])

        def tick():
            clock[0] += 25

        reply = FakeResponse(chunks=[b'{"choices": ', b"[", b"]", b"}"], on_chunk=tick)
        session.replies = [reply]

        result = EnrichmentClient(session=session).submit(chat_config)

        assert result.kind is ErrorKind.REQUEST_TIMEOUT
        assert "60" in result.error
        assert reply.closed

    @pytest.mark.unit
    def test_body_within_deadline_is_read_in_full(self, session, chat_config, monkeypatch):
        clock = [1000.0]
        monkeypatch.setattr("recon_graph.enrichment.time.monotonic", lambda: clock[0])

        def tick():
            clock[0] += 10

        body = chat_reply("ok").text.encode("utf-8")
        session.replies = [FakeResponse(chunks=[body[:10], body[10:20], body[20:]], on_chunk=tick)]

        result = EnrichmentClient(session=session).submit(chat_config)

        assert result.ok
        assert result.data.text == "ok"

    @pytest.mark.unit
    def test_body_interrupted_mid_stream(self, session, chat_config):
        class _Broken(FakeResponse):
            def iter_content(self, chunk_size=1):
                yield b'{"choi'
                raise requests.exceptions.ChunkedEncodingError("connection reset")

        session.replies = [_Broken()]

        result = EnrichmentClient(session=session).submit(chat_config)

        assert result.kind is ErrorKind.ENDPOINT_ERROR
        assert "interrupted" in result.error

    @pytest.mark.unit
    def test_unreachable_endpoint(self, session, chat_config):
        session.replies = [requests.ConnectionError("refused")]

        result = EnrichmentClient(session=session).submit(chat_config)

        assert result.kind is ErrorKind.ENDPOINT_ERROR

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "reply",
        [
            FakeResponse(payload={"choices": []}),
            FakeResponse(payload={"object": "error"}),
            FakeResponse(text="<html>gateway</html>"),
            FakeResponse(payload={"choices": [{"index": 0}]}),
        ],
    )
    def test_unusable_responses(self, session, chat_config, reply):
        session.replies = [reply]

        result = EnrichmentClient(session=session).submit(chat_config)

        assert not result.ok
        assert result.kind is ErrorKind.ENDPOINT_ERROR

    @pytest.mark.unit
    def test_context_manager_closes_session(self, session):
        with EnrichmentClient(session=session):
            pass
        assert session.closed


class TestPayload:
    @pytest.mark.unit
    def test_optional_fields_only_when_set(self, completion_config):
        _, body = build_payload(completion_config)
        assert set(body) == {"model", "prompt", "max_tokens", "temperature"}

        config = replace(completion_config, params=GenerationParams(top_p=0.9, stop=("\n\n",), seed=7))
        _, body = build_payload(config)
        assert body["top_p"] == 0.9
        assert body["stop"] == ["\n\n"]
        assert body["seed"] == 7


class TestAttachDocument:
    @pytest.mark.unit
    def test_completion_prompt_gets_content_section(self, completion_config):
        config = attach_document(completion_config, "Alice (ACME)")
        assert config.request == CompletionRequest(prompt="List the speakers:\n\nContent:\nAlice (ACME)")
        assert completion_config.request.prompt == "List the speakers:"

    @pytest.mark.unit
    def test_last_user_message_gets_content(self):
        request = ChatRequest(messages=(
            ChatMessage("system", "sys"),
            ChatMessage("user", "first"),
            ChatMessage("assistant", "ok"),
            ChatMessage("user", "second"),
        ))

        config = attach_document(EnrichmentConfig("http://x/v1", "m", request), "DOC")

        contents = [m.content for m in config.request.messages]
        assert contents == ["sys", "first", "ok", "second\n\nContent:\nDOC"]

    @pytest.mark.unit
    def test_user_message_added_when_missing(self):
        request = ChatRequest(messages=(ChatMessage("system", "sys"),))
        config = attach_document(EnrichmentConfig("http://x/v1", "m", request), "DOC")

        assert config.request.messages[-1] == ChatMessage("user", "Content:\nDOC")
