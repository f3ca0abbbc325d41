"""Fakes standing in for the Tor transport and the inference HTTP session."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator

from recon_graph.fetcher import CircuitHandle, CollectionRequest, CollectionResult
from recon_graph.result import Fail, Ok, Result


@dataclass
class FakeTransport:
    """Serves queued (status, headers, body) responses over counted circuits.

    ``open_results`` may queue Fail values returned by successive
    open_circuit calls before a circuit is finally opened.
    """

    responses: list[Any] = field(default_factory=list)
    open_results: list[Fail] = field(default_factory=list)
    opened: int = 0
    attempts: int = 0
    released: list[str] = field(default_factory=list)
    sent: list[tuple[str, CollectionRequest, bool | str]] = field(default_factory=list)

    def open_circuit(self) -> Result[CircuitHandle]:
        self.attempts += 1
        if self.open_results:
            return self.open_results.pop(0)
        self.opened += 1
        circuit_id = f"circuit-{self.opened}"
        return Ok(data=CircuitHandle(
            circuit_id=circuit_id,
            exit_address="203.0.113.7",
            release=lambda: self.released.append(circuit_id),
        ))

    def send_over_circuit(
        self,
        handle: CircuitHandle,
        request: CollectionRequest,
        *,
        verify: bool | str,
    ) -> Result[CollectionResult]:
        self.sent.append((handle.circuit_id, request, verify))
        if not self.responses:
            raise AssertionError(f"unexpected request to {request.url}")
        queued = self.responses.pop(0)
        if isinstance(queued, Fail):
            return queued
        status, headers, body = queued
        if isinstance(body, str):
            body = body.encode("utf-8")
        return Ok(data=CollectionResult(
            status=status,
            headers=tuple(headers),
            body=body,
            circuit_id=handle.circuit_id,
            url=request.url,
        ))


class FakeResponse:
    """Streamed reply: ``chunks`` (or the whole ``text``) served by iter_content.

    ``on_chunk`` runs before each chunk is handed out, e.g. to advance a clock.
    """

    def __init__(
        self,
        status_code: int = 200,
        payload: Any = None,
        text: str | None = None,
        chunks: list[bytes] | None = None,
        on_chunk: Callable[[], None] | None = None,
    ) -> None:
        self.status_code = status_code
        self.text = text if text is not None else json.dumps(payload)
        self.encoding = "utf-8"
        self.chunks = chunks if chunks is not None else [self.text.encode("utf-8")]
        self.on_chunk = on_chunk
        self.closed = False

    def iter_content(self, chunk_size: int = 1) -> Iterator[bytes]:
        for chunk in self.chunks:
            if self.on_chunk is not None:
                self.on_chunk()
            yield chunk

    def close(self) -> None:
        self.closed = True

    def __enter__(self) -> FakeResponse:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


@dataclass
class FakeSession:
    """Stands in for requests.Session in the enrichment client."""

    replies: list[Any] = field(default_factory=list)
    calls: list[dict[str, Any]] = field(default_factory=list)
    closed: bool = False

    def post(self, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append({"url": url, **kwargs})
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    def close(self) -> None:
        self.closed = True


def chat_reply(*contents: str, finish: str = "stop") -> FakeResponse:
    return FakeResponse(payload={
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "choices": [
            {"index": i, "message": {"role": "assistant", "content": c}, "finish_reason": finish}
            for i, c in enumerate(contents)
        ],
    })


def completion_reply(*texts: str, finish: str = "length") -> FakeResponse:
    return FakeResponse(payload={
        "id": "cmpl-1",
        "object": "text_completion",
        "choices": [
            {"index": i, "text": t, "finish_reason": finish}
            for i, t in enumerate(texts)
        ],
    })
