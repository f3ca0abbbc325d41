"""Shared fixtures: fake transport and session, configs, sample data."""

from __future__ import annotations

import pytest

from recon_graph.config import (
    ChatMessage,
    ChatRequest,
    ColumnMapping,
    ColumnRule,
    CompletionRequest,
    EnrichmentConfig,
    GenerationParams,
)
from tests.helpers import FakeSession, FakeTransport


# --- Environment isolation (autouse) ---

@pytest.fixture(autouse=True)
def isolate_env(monkeypatch):
    """No .env loading and no ambient API key during tests."""
    monkeypatch.setattr("recon_graph.main.load_dotenv", lambda *_a, **_k: False)
    monkeypatch.delenv("RECON_GRAPH_API_KEY", raising=False)


@pytest.fixture(autouse=True)
def sleeps(monkeypatch) -> list[float]:
    """Record every sleep instead of waiting."""
    calls: list[float] = []
    monkeypatch.setattr("recon_graph.fetcher.time.sleep", calls.append)
    return calls


# --- Fakes ---

@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


# --- Configs ---

@pytest.fixture
def chat_config() -> EnrichmentConfig:
    return EnrichmentConfig(
        api_url="http://localhost:8000/v1",
        model="Qwen/Qwen3-30B-A3B-Instruct-2507",
        request=ChatRequest(messages=(
            ChatMessage(role="system", content="You are a data extraction assistant."),
            ChatMessage(role="user", content="Extract all speakers."),
        )),
        params=GenerationParams(max_tokens=4096, temperature=0.1, seed=42),
        timeout_seconds=60,
    )


@pytest.fixture
def completion_config() -> EnrichmentConfig:
    return EnrichmentConfig(
        api_url="http://localhost:8000/v1",
        model="local-model",
        request=CompletionRequest(prompt="List the speakers:"),
    )


@pytest.fixture
def speaker_mapping() -> ColumnMapping:
    return ColumnMapping(
        subject_column="id",
        subject_namespace="urn:recon-graph:speaker:",
        types=("foaf:Person",),
        columns={
            "name": ColumnRule(predicate="foaf:name"),
            "title": ColumnRule(predicate="schema:jobTitle"),
            "affiliation": ColumnRule(predicate="schema:affiliation"),
        },
    )


@pytest.fixture
def company_mapping() -> ColumnMapping:
    return ColumnMapping(
        subject_column="company",
        types=("wd:Q891723",),
        columns={
            "companyName": ColumnRule(predicate="rdfs:label", language="en"),
            "industry": ColumnRule(predicate="wdt:P452", kind="iri", default="wd:Q3510521"),
            "inception": ColumnRule(predicate="wdt:P571", datatype="xsd:dateTime"),
            "owns": ColumnRule(predicate="wdt:P1830", kind="iri"),
            "ownsName": ColumnRule(predicate="rdfs:label", language="en", about="owns"),
            "ownedBy": ColumnRule(predicate="wdt:P127", kind="iri"),
            "ownedByName": ColumnRule(predicate="rdfs:label", language="en", about="ownedBy"),
        },
    )


@pytest.fixture
def company_csv() -> str:
    """Two rows for the same company, one per ownership direction."""
    return (
        "company,companyName,industry,inception,owns,ownsName,ownedBy,ownedByName\n"
        "http://www.wikidata.org/entity/Q123,Test Corp,http://www.wikidata.org/entity/Q3510521,"
        "2020-01-01T00:00:00Z,http://www.wikidata.org/entity/Q456,SubCorp,,\n"
        "http://www.wikidata.org/entity/Q123,Test Corp,http://www.wikidata.org/entity/Q3510521,"
        "2020-01-01T00:00:00Z,,,http://www.wikidata.org/entity/Q789,Parent Inc\n"
    )
