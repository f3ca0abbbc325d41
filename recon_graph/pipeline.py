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

"""Pipeline orchestrator — pure engine.

Checks the configuration, then executes the stages of a WorkflowConfig
over a single circuit:
  1. Circuit: open one isolated circuit (retried on transient failures)
  2. Collect: fetch the target document and save its raw bytes
  3. Enrich: strip HTML, attach the text to the prompt, submit, save output
  4. Speakers: parse the structured output into rows and convert them
  5. Knowledge base (optional): count guard → SELECT CSV → convert
  6. Graph: merge, link affiliations, serialize

The circuit is released and the run summary logged on every exit path.
No domain logic. All decisions come from the workflow file.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from rdflib import Graph

from recon_graph.config import KnowledgeBaseConfig, WorkflowConfig
from recon_graph.converter import convert, graph_format, merge, new_graph, parse_rows, serialize
from recon_graph.document import decode_body, html_to_text
from recon_graph.enrichment import (
    EnrichmentClient,
    attach_document,
    extract_structured,
    validate_parameters,
)
from recon_graph.fetcher import (
    CircuitHandle,
    CircuitTransport,
    CollectionRequest,
    CollectionResult,
    Fetcher,
    save_result,
)
from recon_graph.logger import PipelineSummary, Verbosity, get_logger
from recon_graph.result import ErrorKind, Fail, Ok, Result
from recon_graph.sparql.client import guard_result_count, select_count, select_csv
from recon_graph.sparql.queries import render_knowledge_base
from recon_graph.speakers import SpeakerBatch, link_affiliations, speaker_rows
from recon_graph.tor import TorSocksTransport


@dataclass(frozen=True, slots=True)
class RunReport:
    circuit_id: str
    exit_address: str | None
    document: Path
    enrichment: Path
    graph: Path
    knowledge_base: Path | None = None
    speakers: int = 0
    companies: int = 0
    links: int = 0
    triples: int = 0


def charset_of(response: CollectionResult) -> str | None:
    content_type = response.header("Content-Type") or ""
    for part in content_type.split(";")[1:]:
        key, _, value = part.partition("=")
        if key.strip().lower() == "charset":
            return value.strip().strip("\"'") or None
    return None


def preflight(workflow: WorkflowConfig) -> Result[WorkflowConfig]:
    """Configuration checks that must pass before any network traffic."""
    params = validate_parameters(workflow.enrichment.config)
    if not params.ok:
        return params  # type: ignore[return-value]
    fmt = graph_format(workflow.graph.format)
    if not fmt.ok:
        return fmt  # type: ignore[return-value]
    return Ok(data=workflow)


def _write_text(path: Path, text: str) -> Result[Path]:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
    except OSError as exc:
        return Fail(
            error=f"Failed to write output file: {exc}",
            kind=ErrorKind.CONFIGURATION_ERROR,
            context=str(path),
        )
    return Ok(data=path)


class _Run:
    """State of one pipeline run; one method per stage."""

    def __init__(
        self,
        workflow: WorkflowConfig,
        output_dir: Path,
        fetcher: Fetcher,
        client: EnrichmentClient,
        summary: PipelineSummary,
        verbosity: Verbosity,
    ) -> None:
        self.workflow = workflow
        self.output_dir = output_dir
        self.fetcher = fetcher
        self.client = client
        self.summary = summary
        self.log = get_logger(__name__, verbosity)

    def collect(self, handle: CircuitHandle) -> Result[tuple[CollectionResult, Path]]:
        counter = self.summary.counter("collect")
        target = self.workflow.target
        self.log.info("── Collect: %s ──", target.url)

        result = self.fetcher.collect(handle, CollectionRequest(
            url=target.url,
            method=target.method,
            headers=target.headers,
            body=target.body,
        ))
        if not result.ok:
            counter.failed += 1
            return result  # type: ignore[return-value]

        saved = save_result(result.data, output=self.output_dir / target.output)
        if not saved.ok:
            counter.failed += 1
            return saved  # type: ignore[return-value]

        counter.ok += 1
        self.log.info("Document saved to: %s", saved.data)
        return Ok(data=(result.data, saved.data))

    def enrich(self, document: CollectionResult) -> Result[tuple[str, Path]]:
        counter = self.summary.counter("enrich")
        stage = self.workflow.enrichment
        self.log.info("── Enrich: %s ──", stage.config.model)

        text = decode_body(document.body, charset_of(document))
        if stage.strip_html:
            text = html_to_text(text)

        result = self.client.submit(attach_document(stage.config, text))
        if not result.ok:
            counter.failed += 1
            return result  # type: ignore[return-value]

        saved = _write_text(self.output_dir / stage.output, result.data.text)
        if not saved.ok:
            counter.failed += 1
            return saved  # type: ignore[return-value]

        counter.ok += 1
        return Ok(data=(result.data.text, saved.data))

    def speakers(self, completion: str) -> Result[tuple[SpeakerBatch, Graph]]:
        counter = self.summary.counter("speakers")
        self.log.info("── Speakers ──")

        payload = extract_structured(completion)
        if not payload.ok:
            counter.failed += 1
            return payload  # type: ignore[return-value]

        batch = speaker_rows(payload.data)
        if not batch.ok:
            counter.failed += 1
            return batch  # type: ignore[return-value]

        converted = convert(batch.data.rows, self.workflow.speakers.mapping)
        counter.ok += converted.converted
        counter.skipped += batch.data.dropped + converted.skipped_rows
        return Ok(data=(batch.data, converted.graph))

    def knowledge_base(
        self,
        handle: CircuitHandle,
        kb: KnowledgeBaseConfig,
    ) -> Result[tuple[Graph, Path, int]]:
        counter = self.summary.counter("knowledge_base")
        self.log.info("── Knowledge base: %s ──", kb.endpoint)
        query, count_query = render_knowledge_base(kb)

        if count_query:
            count = select_count(self.fetcher, handle, kb.endpoint, count_query)
            if count.ok:
                count = guard_result_count(count.data, kb.max_results)
            if not count.ok:
                counter.failed += 1
                return count  # type: ignore[return-value]

        csv_text = select_csv(self.fetcher, handle, kb.endpoint, query)
        if not csv_text.ok:
            counter.failed += 1
            return csv_text  # type: ignore[return-value]

        saved = _write_text(self.output_dir / kb.output, csv_text.data)
        if not saved.ok:
            counter.failed += 1
            return saved  # type: ignore[return-value]

        batch = parse_rows(csv_text.data)
        converted = convert(batch.rows, kb.mapping)
        counter.ok += converted.converted
        counter.failed += batch.malformed
        counter.skipped += converted.skipped_rows
        return Ok(data=(converted.graph, saved.data, converted.converted))


def run_pipeline(
    workflow: WorkflowConfig,
    output_dir: Path,
    transport: CircuitTransport | None = None,
    enrichment_client: EnrichmentClient | None = None,
    verbosity: Verbosity = Verbosity.NORMAL,
) -> Result[RunReport]:
    """Run the full workflow: circuit → collect → enrich → graph.

    Args:
        workflow: Loaded workflow configuration.
        output_dir: Directory for the document, enrichment output, CSV and graph.
        transport: Anonymous-network client; a TorSocksTransport by default.
        enrichment_client: Inference client; created (and closed) here if omitted.
    """
    log = get_logger(__name__, verbosity)
    summary = PipelineSummary()
    transport = transport or TorSocksTransport(workflow.tor, verbosity)
    fetcher = Fetcher(transport, workflow.fetch, workflow.tor.retry, verbosity)
    owns_client = enrichment_client is None
    client = enrichment_client or EnrichmentClient(verbosity=verbosity)
    run = _Run(workflow, output_dir, fetcher, client, summary, verbosity)

    try:
        checked = preflight(workflow)
        if not checked.ok:
            summary.counter("config").failed += 1
            log.error("Configuration check failed: %s", checked.error)
            return checked  # type: ignore[return-value]

        # 1. Circuit
        circuit = summary.counter("circuit")
        handle_result = fetcher.open_circuit()
        if not handle_result.ok:
            circuit.failed += 1
            log.error("Circuit phase failed: %s", handle_result.error)
            return handle_result  # type: ignore[return-value]
        circuit.ok += 1

        with handle_result.data as handle:
            # 2. Collect
            collected = run.collect(handle)
            if not collected.ok:
                log.error("Collect phase failed: %s", collected.error)
                return collected  # type: ignore[return-value]
            document, document_path = collected.data

            # 3. Enrich
            enriched = run.enrich(document)
            if not enriched.ok:
                log.error("Enrich phase failed: %s", enriched.error)
                return enriched  # type: ignore[return-value]
            completion, enrichment_path = enriched.data

            # 4. Speakers
            speakers = run.speakers(completion)
            if not speakers.ok:
                log.error("Speaker extraction failed: %s", speakers.error)
                return speakers  # type: ignore[return-value]
            batch, speaker_graph = speakers.data

            # 5. Knowledge base
            kb_graph = new_graph()
            kb_path: Path | None = None
            companies = 0
            if workflow.knowledge_base is not None:
                kb = run.knowledge_base(handle, workflow.knowledge_base)
                if not kb.ok:
                    log.error("Knowledge-base phase failed: %s", kb.error)
                    return kb  # type: ignore[return-value]
                kb_graph, kb_path, companies = kb.data
            else:
                summary.counter("knowledge_base").skipped += 1

        # 6. Graph
        graph_counter = summary.counter("graph")
        graph = merge(speaker_graph, kb_graph)
        links = 0
        if workflow.speakers.link_affiliations:
            links = link_affiliations(graph, batch.rows, workflow.speakers.mapping)

        serialized = serialize(graph, workflow.graph.format)
        if not serialized.ok:
            graph_counter.failed += 1
            log.error("Graph serialization failed: %s", serialized.error)
            return serialized  # type: ignore[return-value]
        graph_path = _write_text(output_dir / workflow.graph.output, serialized.data)
        if not graph_path.ok:
            graph_counter.failed += 1
            return graph_path  # type: ignore[return-value]
        graph_counter.ok += 1
        log.info("Graph with %d triples saved to: %s", len(graph), graph_path.data)

        return Ok(data=RunReport(
            circuit_id=handle.circuit_id,
            exit_address=handle.exit_address,
            document=document_path,
            enrichment=enrichment_path,
            graph=graph_path.data,
            knowledge_base=kb_path,
            speakers=len(batch.rows),
            companies=companies,
            links=links,
            triples=len(graph),
        ))

    finally:
        if owns_client:
            client.close()
        log.info(summary.report())
