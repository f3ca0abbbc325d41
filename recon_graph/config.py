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

"""Loads enrichment configs and workflow definitions into typed dataclasses.

Pure loader: structure checks only. Numeric ranges of generation
parameters are checked by the enrichment client right before submission.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

from recon_graph.result import ErrorKind, Fail, Ok, Result

API_KEY_ENV = "RECON_GRAPH_API_KEY"

CHROME_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/135.0.0.0 Safari/537.36"
)


# ── Enrichment ────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class ChatMessage:
    role: str
    content: str


@dataclass(frozen=True, slots=True)
class CompletionRequest:
    """Single prompt string, sent to /completions."""
    prompt: str


@dataclass(frozen=True, slots=True)
class ChatRequest:
    """Ordered chat transcript, sent to /chat/completions."""
    messages: tuple[ChatMessage, ...]


PromptRequest = CompletionRequest | ChatRequest


@dataclass(frozen=True, slots=True)
class GenerationParams:
    max_tokens: int = 1024
    temperature: float = 0.7
    top_p: float | None = None
    seed: int | None = None
    stop: tuple[str, ...] = ()
    n: int = 1


@dataclass(frozen=True, slots=True)
class EnrichmentConfig:
    api_url: str
    model: str
    request: PromptRequest
    params: GenerationParams = field(default_factory=GenerationParams)
    api_key: str | None = None
    timeout_seconds: float = 300


# ── Tor / Fetch ───────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class RetryConfig:
    attempts: int = 3
    delay_seconds: float = 5
    backoff: float = 2.0


@dataclass(frozen=True, slots=True)
class TorConfig:
    socks_host: str = "127.0.0.1"
    socks_port: int = 9050
    check_url: str = "https://check.torproject.org/api/ip"
    circuit_timeout: float = 60
    request_timeout: float = 60
    retry: RetryConfig = field(default_factory=RetryConfig)


@dataclass(frozen=True, slots=True)
class FetchConfig:
    user_agent: str = CHROME_USER_AGENT
    rate_limit_delay: float = 1
    max_redirects: int = 5
    max_rate_limit_retries: int = 3
    default_retry_after: float = 60
    insecure: bool = False
    allow_plain_http: bool = False
    default_filename: str = "index.html"


# ── Graph mapping ─────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class ColumnRule:
    """How one CSV column becomes a triple."""
    predicate: str
    kind: str = "literal"
    language: str | None = None
    datatype: str | None = None
    default: str | None = None
    about: str | None = None


@dataclass(frozen=True, slots=True)
class ColumnMapping:
    subject_column: str
    columns: dict[str, ColumnRule]
    subject_namespace: str = "http://www.wikidata.org/entity/"
    types: tuple[str, ...] = ()


# ── Workflow ──────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class TargetConfig:
    url: str
    method: str = "GET"
    headers: tuple[tuple[str, str], ...] = ()
    body: str | None = None
    output: str = "document.html"


@dataclass(frozen=True, slots=True)
class EnrichmentStageConfig:
    config: EnrichmentConfig
    strip_html: bool = True
    output: str = "enrichment.json"


@dataclass(frozen=True, slots=True)
class SpeakersConfig:
    mapping: ColumnMapping
    link_affiliations: bool = True


@dataclass(frozen=True, slots=True)
class KnowledgeBaseConfig:
    endpoint: str
    query: str
    mapping: ColumnMapping
    count_query: str | None = None
    max_results: int = 10000
    variables: dict[str, str] = field(default_factory=dict)
    output: str = "knowledge_base.csv"


@dataclass(frozen=True, slots=True)
class GraphConfig:
    output: str = "graph.nt"
    format: str = "nt"


@dataclass(frozen=True, slots=True)
class WorkflowConfig:
    target: TargetConfig
    enrichment: EnrichmentStageConfig
    speakers: SpeakersConfig
    tor: TorConfig = field(default_factory=TorConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    knowledge_base: KnowledgeBaseConfig | None = None
    graph: GraphConfig = field(default_factory=GraphConfig)


# ── Loader helpers ────────────────────────────────────────────

def _read_mapping_file(path: Path) -> Result[dict[str, Any]]:
    """Read a YAML or JSON file into a dict, picked by extension."""
    if not path.exists():
        return Fail(error=f"Config file not found: {path}", kind=ErrorKind.CONFIGURATION_ERROR)

    suffix = path.suffix.lower()
    text = path.read_text(encoding="utf-8")
    try:
        if suffix in (".yaml", ".yml"):
            raw = yaml.safe_load(text)
        elif suffix == ".json":
            raw = json.loads(text)
        else:
            return Fail(
                error="Configuration file must have .yaml, .yml, or .json extension",
                kind=ErrorKind.CONFIGURATION_ERROR,
                context=str(path),
            )
    except yaml.YAMLError as exc:
        return Fail(error=f"YAML parse error: {exc}", kind=ErrorKind.CONFIGURATION_ERROR, context=str(path))
    except json.JSONDecodeError as exc:
        return Fail(error=f"JSON parse error: {exc}", kind=ErrorKind.CONFIGURATION_ERROR, context=str(path))

    if not isinstance(raw, dict):
        return Fail(
            error="Configuration root must be a mapping",
            kind=ErrorKind.CONFIGURATION_ERROR,
            context=str(path),
        )
    return Ok(data=raw)


def _build_request(raw: Mapping[str, Any]) -> Result[PromptRequest]:
    has_prompt = raw.get("prompt") is not None
    has_messages = raw.get("messages") is not None
    if has_prompt == has_messages:
        return Fail(
            error="Exactly one of 'prompt' or 'messages' must be set",
            kind=ErrorKind.CONFIGURATION_ERROR,
        )
    if has_prompt:
        if not isinstance(raw["prompt"], str):
            return Fail(error="'prompt' must be a string", kind=ErrorKind.CONFIGURATION_ERROR)
        return Ok(data=CompletionRequest(prompt=raw["prompt"]))

    messages = tuple(
        ChatMessage(role=str(m["role"]), content=str(m["content"]))
        for m in raw["messages"]
    )
    if not messages:
        return Fail(error="'messages' must not be empty", kind=ErrorKind.CONFIGURATION_ERROR)
    return Ok(data=ChatRequest(messages=messages))


def _build_params(raw: Mapping[str, Any]) -> GenerationParams:
    stop = raw.get("stop") or ()
    if isinstance(stop, str):
        stop = (stop,)
    return GenerationParams(
        max_tokens=int(raw.get("max_tokens", 1024)),
        temperature=float(raw.get("temperature", 0.7)),
        top_p=float(raw["top_p"]) if raw.get("top_p") is not None else None,
        seed=int(raw["seed"]) if raw.get("seed") is not None else None,
        stop=tuple(str(s) for s in stop),
        n=int(raw.get("n", 1)),
    )


def parse_enrichment_config(
    raw: Mapping[str, Any],
    environ: Mapping[str, str] | None = None,
) -> Result[EnrichmentConfig]:
    """Build an EnrichmentConfig from a plain mapping (YAML/JSON document)."""
    environ = os.environ if environ is None else environ

    try:
        request_result = _build_request(raw)
        if not request_result.ok:
            return request_result  # type: ignore[return-value]

        config = EnrichmentConfig(
            api_url=str(raw["api_url"]).rstrip("/"),
            model=str(raw["model"]),
            request=request_result.data,
            params=_build_params(raw),
            api_key=raw.get("api_key") or environ.get(API_KEY_ENV) or None,
            timeout_seconds=float(raw.get("timeout_seconds", 300)),
        )
    except (KeyError, TypeError, ValueError) as exc:
        return Fail(error=f"Enrichment config structure error: {exc}", kind=ErrorKind.CONFIGURATION_ERROR)

    return Ok(data=config)


def load_enrichment_config(path: Path) -> Result[EnrichmentConfig]:
    """Load an enrichment config from a .yaml/.yml/.json file."""
    raw_result = _read_mapping_file(path)
    if not raw_result.ok:
        return raw_result  # type: ignore[return-value]

    result = parse_enrichment_config(raw_result.data)
    if not result.ok:
        return Fail(error=result.error, kind=result.kind, context=str(path))
    return result


def parse_mapping(raw: Mapping[str, Any]) -> ColumnMapping:
    """Build a ColumnMapping; a bare string column value is a literal predicate."""
    columns: dict[str, ColumnRule] = {}
    for name, rule in raw.get("columns", {}).items():
        if isinstance(rule, str):
            columns[name] = ColumnRule(predicate=rule)
            continue
        kind = rule.get("kind", "literal")
        if kind not in ("literal", "iri"):
            raise ValueError(f"column '{name}': kind must be 'literal' or 'iri', got {kind!r}")
        columns[name] = ColumnRule(
            predicate=rule["predicate"],
            kind=kind,
            language=rule.get("language"),
            datatype=rule.get("datatype"),
            default=rule.get("default"),
            about=rule.get("about"),
        )

    return ColumnMapping(
        subject_column=raw["subject_column"],
        columns=columns,
        subject_namespace=raw.get("subject_namespace", "http://www.wikidata.org/entity/"),
        types=tuple(raw.get("types", ())),
    )


def _build_tor(raw: Mapping[str, Any]) -> TorConfig:
    retry = raw.get("retry", {})
    return TorConfig(
        socks_host=raw.get("socks_host", "127.0.0.1"),
        socks_port=int(raw.get("socks_port", 9050)),
        check_url=raw.get("check_url", "https://check.torproject.org/api/ip"),
        circuit_timeout=float(raw.get("circuit_timeout", 60)),
        request_timeout=float(raw.get("request_timeout", 60)),
        retry=RetryConfig(
            attempts=int(retry.get("attempts", 3)),
            delay_seconds=float(retry.get("delay_seconds", 5)),
            backoff=float(retry.get("backoff", 2.0)),
        ),
    )


def _build_fetch(raw: Mapping[str, Any]) -> FetchConfig:
    return FetchConfig(
        user_agent=raw.get("user_agent", CHROME_USER_AGENT),
        rate_limit_delay=float(raw.get("rate_limit_delay", 1)),
        max_redirects=int(raw.get("max_redirects", 5)),
        max_rate_limit_retries=int(raw.get("max_rate_limit_retries", 3)),
        default_retry_after=float(raw.get("default_retry_after", 60)),
        insecure=bool(raw.get("insecure", False)),
        allow_plain_http=bool(raw.get("allow_plain_http", False)),
        default_filename=raw.get("default_filename", "index.html"),
    )


def _build_target(raw: Mapping[str, Any]) -> TargetConfig:
    headers = tuple(
        (str(name), str(value)) for name, value in raw.get("headers", {}).items()
    )
    return TargetConfig(
        url=raw["url"],
        method=raw.get("method", "GET").upper(),
        headers=headers,
        body=raw.get("body"),
        output=raw.get("output", "document.html"),
    )


def _build_enrichment_stage(raw: Mapping[str, Any], base_dir: Path) -> Result[EnrichmentStageConfig]:
    if "config" in raw:
        config_result = load_enrichment_config(base_dir / raw["config"])
    else:
        config_result = parse_enrichment_config(raw["inline"])
    if not config_result.ok:
        return config_result  # type: ignore[return-value]

    return Ok(data=EnrichmentStageConfig(
        config=config_result.data,
        strip_html=bool(raw.get("strip_html", True)),
        output=raw.get("output", "enrichment.json"),
    ))


def _build_knowledge_base(raw: Mapping[str, Any]) -> KnowledgeBaseConfig:
    return KnowledgeBaseConfig(
        endpoint=raw["endpoint"],
        query=raw["query"],
        mapping=parse_mapping(raw["mapping"]),
        count_query=raw.get("count_query"),
        max_results=int(raw.get("max_results", 10000)),
        variables={str(k): str(v) for k, v in raw.get("variables", {}).items()},
        output=raw.get("output", "knowledge_base.csv"),
    )


def load_workflow(path: Path) -> Result[WorkflowConfig]:
    """Load a workflow YAML into WorkflowConfig. No validation beyond structure."""
    raw_result = _read_mapping_file(path)
    if not raw_result.ok:
        return raw_result  # type: ignore[return-value]
    raw = raw_result.data

    try:
        enrichment_result = _build_enrichment_stage(raw["enrichment"], path.parent)
        if not enrichment_result.ok:
            return Fail(error=enrichment_result.error, kind=enrichment_result.kind, context=str(path))

        speakers = raw.get("speakers", {})
        graph = raw.get("graph", {})
        config = WorkflowConfig(
            target=_build_target(raw["target"]),
            enrichment=enrichment_result.data,
            speakers=SpeakersConfig(
                mapping=parse_mapping(speakers["mapping"]),
                link_affiliations=bool(speakers.get("link_affiliations", True)),
            ),
            tor=_build_tor(raw.get("tor", {})),
            fetch=_build_fetch(raw.get("fetch", {})),
            knowledge_base=(
                _build_knowledge_base(raw["knowledge_base"])
                if raw.get("knowledge_base") else None
            ),
            graph=GraphConfig(
                output=graph.get("output", "graph.nt"),
                format=graph.get("format", "nt"),
            ),
        )
    except (KeyError, TypeError, ValueError) as exc:
        return Fail(
            error=f"Workflow structure error: {exc}",
            kind=ErrorKind.CONFIGURATION_ERROR,
            context=str(path),
        )

    return Ok(data=config)
