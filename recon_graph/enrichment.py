# SPDX-License-Identifier: MIT
#
#  █████╗ ██████╗  █████╗ ███████╗
# ██╔══██╗██╔══██╗██╔══██╗██╔════╝
# ███████║██████╔╝███████║███████╗
# ██╔══██║██╔══██╗██╔══██║╚════██║
# ██║  ██║██║  ██║██║  ██║███████║
# ╚═╝  ╚═╝╚═╝  ╚═╝╚═╝  ╚═╝╚══════╝
# Copyright (C) 2026 Riza Emre ARAS <r.emrearas@proton.me>
#
# Licensed under the MIT License.
# See LICENSE and THIRD_PARTY_LICENSES for details.

"""Enrichment client for OpenAI-compatible inference endpoints.

Works with vLLM, llama.cpp server, Ollama and OpenAI itself. The request
shape follows the config's prompt variant: a CompletionRequest goes to
``/completions``, a ChatRequest to ``/chat/completions``.

Parameters are checked before anything is sent. No retries: a failed
call is reported with status and body snippet and left to the caller.
"""

from __future__ import annotations

import json
import re
import time
from dataclasses import dataclass, field, replace
from typing import Any, Iterator

import certifi
import requests

from recon_graph.config import ChatMessage, ChatRequest, CompletionRequest, EnrichmentConfig
from recon_graph.document import decode_body
from recon_graph.logger import Verbosity, get_logger
from recon_graph.result import ErrorKind, Fail, Ok, Result

_SNIPPET = 500
_CHUNK = 65536
_FENCE_RE = re.compile(r"```[A-Za-z0-9_+-]*[ \t]*\n?(.*?)```", re.DOTALL)
_CLOSERS = {"{": "}", "[": "]"}
_DECODER = json.JSONDecoder()


@dataclass(frozen=True, slots=True)
class EnrichmentResult:
    completions: tuple[str, ...]
    finish_reasons: tuple[str | None, ...]
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def text(self) -> str:
        """The first completion; endpoints always return at least one."""
        return self.completions[0]


# ── Request building ──────────────────────────────────────────

def validate_parameters(config: EnrichmentConfig) -> Result[EnrichmentConfig]:
    """Reject out-of-range generation parameters before any network call."""
    params = config.params
    problems: list[str] = []

    if not 0.0 <= params.temperature <= 1.0:
        problems.append(f"temperature must be within [0.0, 1.0], got {params.temperature}")
    if params.n < 1:
        problems.append(f"n must be >= 1, got {params.n}")
    if params.max_tokens < 1:
        problems.append(f"max_tokens must be >= 1, got {params.max_tokens}")
    if params.top_p is not None and not 0.0 < params.top_p <= 1.0:
        problems.append(f"top_p must be within (0.0, 1.0], got {params.top_p}")
    if config.timeout_seconds <= 0:
        problems.append(f"timeout_seconds must be positive, got {config.timeout_seconds}")

    if problems:
        return Fail(error="; ".join(problems), kind=ErrorKind.INVALID_PARAMETER)
    return Ok(data=config)


def build_payload(config: EnrichmentConfig) -> tuple[str, dict[str, Any]]:
    """Return (url, JSON body) for the config's request variant."""
    params = config.params
    body: dict[str, Any] = {"model": config.model}

    if isinstance(config.request, CompletionRequest):
        url = f"{config.api_url}/completions"
        body["prompt"] = config.request.prompt
    else:
        url = f"{config.api_url}/chat/completions"
        body["messages"] = [
            {"role": m.role, "content": m.content} for m in config.request.messages
        ]

    body["max_tokens"] = params.max_tokens
    body["temperature"] = params.temperature
    if params.top_p is not None:
        body["top_p"] = params.top_p
    if params.n != 1:
        body["n"] = params.n
    if params.stop:
        body["stop"] = list(params.stop)
    if params.seed is not None:
        body["seed"] = params.seed

    return url, body


def attach_document(config: EnrichmentConfig, content: str) -> EnrichmentConfig:
    """Return a config whose prompt carries the collected document."""
    request = config.request
    if isinstance(request, CompletionRequest):
        new_request: CompletionRequest | ChatRequest = CompletionRequest(
            prompt=f"{request.prompt}\n\nContent:\n{content}",
        )
    else:
        messages = list(request.messages)
        for index in range(len(messages) - 1, -1, -1):
            if messages[index].role == "user":
                messages[index] = ChatMessage(
                    role="user",
                    content=f"{messages[index].content}\n\nContent:\n{content}",
                )
                break
        else:
            messages.append(ChatMessage(role="user", content=f"Content:\n{content}"))
        new_request = ChatRequest(messages=tuple(messages))
    return replace(config, request=new_request)


# ── Response parsing ──────────────────────────────────────────

def _parse_choices(config: EnrichmentConfig, raw: dict[str, Any]) -> Result[EnrichmentResult]:
    choices = raw.get("choices")
    if not isinstance(choices, list) or not choices:
        return Fail(
            error="Endpoint returned no choices",
            kind=ErrorKind.ENDPOINT_ERROR,
            context=json.dumps(raw)[:_SNIPPET],
        )

    texts: list[str] = []
    reasons: list[str | None] = []
    try:
        for choice in choices:
            if isinstance(config.request, CompletionRequest):
                texts.append(str(choice["text"]))
            else:
                texts.append(str(choice["message"]["content"]))
            reasons.append(choice.get("finish_reason"))
    except (KeyError, TypeError) as exc:
        return Fail(
            error=f"Malformed choice in endpoint response: missing {exc}",
            kind=ErrorKind.ENDPOINT_ERROR,
            context=json.dumps(raw)[:_SNIPPET],
        )

    return Ok(data=EnrichmentResult(
        completions=tuple(texts),
        finish_reasons=tuple(reasons),
        raw=raw,
    ))


def _timed_out(config: EnrichmentConfig, url: str) -> Fail:
    return Fail(
        error=f"Inference timeout after {config.timeout_seconds}s",
        kind=ErrorKind.REQUEST_TIMEOUT,
        context=url,
    )


def _read_body(resp: requests.Response, deadline: float) -> Result[str]:
    """Drain a streamed response, giving up once ``deadline`` has passed."""
    chunks: list[bytes] = []
    try:
        for chunk in resp.iter_content(_CHUNK):
            chunks.append(chunk)
            if time.monotonic() > deadline:
                return Fail(error="Response body still arriving at deadline", kind=ErrorKind.REQUEST_TIMEOUT)
    except requests.Timeout:
        return Fail(error="Response body read timed out", kind=ErrorKind.REQUEST_TIMEOUT)
    except requests.RequestException as exc:
        return Fail(
            error=f"Inference response interrupted: {exc}",
            kind=ErrorKind.ENDPOINT_ERROR,
            context={"status": resp.status_code},
        )
    return Ok(data=decode_body(b"".join(chunks), resp.encoding))


class EnrichmentClient:
    """Submits enrichment configs to an inference endpoint."""

    def __init__(
        self,
        session: requests.Session | None = None,
        verbosity: Verbosity = Verbosity.NORMAL,
    ) -> None:
        self._session = session or requests.Session()
        self.log = get_logger(__name__, verbosity)

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> EnrichmentClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def submit(self, config: EnrichmentConfig) -> Result[EnrichmentResult]:
        """Send one completion or chat request and collect its choices.

        ``timeout_seconds`` bounds the whole exchange: requests applies it to
        the connect and to each socket read, and the body is streamed so a
        response that keeps trickling past the deadline is abandoned.
        """
        valid = validate_parameters(config)
        if not valid.ok:
            self.log.error("Invalid generation parameters: %s", valid.error)
            return valid  # type: ignore[return-value]

        url, body = build_payload(config)
        headers = {"Content-Type": "application/json"}
        if config.api_key:
            headers["Authorization"] = f"Bearer {config.api_key}"

        self.log.info("Inference request → %s (model %s)", url, config.model)
        deadline = time.monotonic() + config.timeout_seconds
        try:
            resp = self._session.post(
                url,
                json=body,
                headers=headers,
                timeout=config.timeout_seconds,
                verify=certifi.where(),
                stream=True,
            )
        except requests.Timeout:
            return _timed_out(config, url)
        except requests.RequestException as exc:
            return Fail(
                error=f"Inference endpoint unreachable: {exc}",
                kind=ErrorKind.ENDPOINT_ERROR,
                context=url,
            )

        with resp:
            text = _read_body(resp, deadline)
        if not text.ok:
            if text.kind is ErrorKind.REQUEST_TIMEOUT:
                return _timed_out(config, url)
            return text  # type: ignore[return-value]

        if not 200 <= resp.status_code < 300:
            return Fail(
                error=f"API request failed with status {resp.status_code}",
                kind=ErrorKind.ENDPOINT_ERROR,
                context={"status": resp.status_code, "body": text.data[:_SNIPPET]},
            )

        try:
            raw = json.loads(text.data)
        except ValueError:
            return Fail(
                error="Failed to parse endpoint response as JSON",
                kind=ErrorKind.ENDPOINT_ERROR,
                context={"status": resp.status_code, "body": text.data[:_SNIPPET]},
            )
        if not isinstance(raw, dict):
            return Fail(
                error="Endpoint response is not a JSON object",
                kind=ErrorKind.ENDPOINT_ERROR,
                context={"status": resp.status_code, "body": text.data[:_SNIPPET]},
            )

        result = _parse_choices(config, raw)
        if result.ok:
            self.log.info(
                "Received %d completion(s), finish: %s",
                len(result.data.completions),
                ", ".join(str(r) for r in result.data.finish_reasons),
            )
        return result


# ── Structured output ─────────────────────────────────────────

def _resolve_span(text: str, start: int, closes: dict[int, int | None]) -> None:
    """Record where text[start] closes, and where every opener nested in it closes.

    String and escape aware. ``None`` marks an opener that never balances.
    Openers already in ``closes`` are stepped over instead of rescanned.
    """
    stack: list[int] = []
    in_string = False
    escaped = False
    index = start

    while index < len(text):
        ch = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            if index in closes:
                if closes[index] is None:
                    break
                index = closes[index]
            else:
                stack.append(index)
        elif ch in ("}", "]"):
            if not stack or _CLOSERS[text[stack[-1]]] != ch:
                break
            closes[stack.pop()] = index
            if not stack:
                return
        index += 1

    for opener in stack:
        closes[opener] = None


def _balanced_spans(text: str) -> Iterator[tuple[int, int]]:
    """(start, end) of each balanced ``{...}`` or ``[...]`` span, by start."""
    closes: dict[int, int | None] = {}
    for start, ch in enumerate(text):
        if ch not in _CLOSERS:
            continue
        if start not in closes:
            _resolve_span(text, start, closes)
        end = closes[start]
        if end is not None:
            yield start, end


def _wanted(value: Any, schema_hint: type | None) -> bool:
    return schema_hint is None or isinstance(value, schema_hint)


def extract_structured(text: str, schema_hint: type | None = None) -> Result[Any]:
    """Parse model output as JSON, tolerating prose and markdown fences.

    Tries the whole text, then fenced blocks, then each balanced ``{...}``
    or ``[...]`` span in order of appearance. ``schema_hint`` (``dict`` or
    ``list``) skips candidates of the wrong JSON type; without it any JSON
    value is accepted, scalars included. Spans that start before the point
    where an enclosing span stopped parsing are not tried.
    """
    for candidate in (text, *(m.group(1) for m in _FENCE_RE.finditer(text))):
        try:
            value = json.loads(candidate)
        except (ValueError, RecursionError):
            continue
        if _wanted(value, schema_hint):
            return Ok(data=value)

    resume = 0
    for start, end in _balanced_spans(text):
        if start < resume:
            continue
        try:
            value, _ = _DECODER.raw_decode(text, start)
        except json.JSONDecodeError as exc:
            resume = max(exc.pos, start + 1)
            continue
        except (ValueError, RecursionError):
            resume = end + 1
            continue
        if _wanted(value, schema_hint):
            return Ok(data=value)

    return Fail(
        error="No parseable JSON in model output",
        kind=ErrorKind.UNPARSEABLE_OUTPUT,
        context=text[:_SNIPPET],
    )
