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

"""recon-graph — command line.

Collects a resource over an isolated Tor circuit, enriches documents with
an OpenAI-compatible model, converts SPARQL CSV into RDF, or runs a whole
YAML workflow.

Usage:
    recon-graph collect https://example.org/talks -o talks.html
    recon-graph enrich -c workflows/speakers.yaml -i talks.html --html --json
    recon-graph convert companies.csv -w workflows/defcon33.yaml --format turtle
    recon-graph run -w workflows/defcon33.yaml
"""

from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime, timezone
from pathlib import Path

from dotenv import load_dotenv

from recon_graph.config import (
    CHROME_USER_AGENT,
    FetchConfig,
    TorConfig,
    load_enrichment_config,
    load_workflow,
)
from recon_graph.converter import convert, parse_rows, serialize
from recon_graph.document import html_to_text
from recon_graph.enrichment import EnrichmentClient, attach_document, extract_structured
from recon_graph.fetcher import CollectionRequest, Fetcher, parse_header, save_result
from recon_graph.logger import Verbosity, get_logger
from recon_graph.pipeline import run_pipeline
from recon_graph.result import Fail
from recon_graph.tor import TorSocksTransport


def _fail(log, stage: str, result: Fail) -> int:
    log.error(result.describe(stage))
    if result.context and isinstance(result.context, str):
        log.debug("Context: %s", result.context)
    return 1


def _write_or_print(text: str, output: Path | None) -> None:
    if output is None:
        sys.stdout.write(text if text.endswith("\n") else text + "\n")
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(text, encoding="utf-8")


# ── Commands ──────────────────────────────────────────────────

def cmd_collect(args: argparse.Namespace, verbosity: Verbosity) -> int:
    log = get_logger("recon_graph.collect", verbosity)

    headers: list[tuple[str, str]] = []
    for line in args.header:
        parsed = parse_header(line)
        if not parsed.ok:
            return _fail(log, "collect", parsed)
        headers.append(parsed.data)

    body: bytes | str | None = args.data
    if args.data_file is not None:
        try:
            body = args.data_file.read_bytes()
        except OSError as exc:
            log.error("collect failed: cannot read %s: %s", args.data_file, exc)
            return 1

    tor = TorConfig(socks_host=args.socks_host, socks_port=args.socks_port)
    fetch = FetchConfig(
        user_agent=args.user_agent,
        rate_limit_delay=args.wait,
        max_redirects=args.max_redirect,
        insecure=args.insecure,
        allow_plain_http=args.allow_http,
    )
    fetcher = Fetcher(TorSocksTransport(tor, verbosity), fetch, tor.retry, verbosity)

    handle = fetcher.open_circuit()
    if not handle.ok:
        return _fail(log, "collect", handle)

    with handle.data as circuit:
        result = fetcher.collect(circuit, CollectionRequest(
            url=args.url,
            method=args.request,
            headers=tuple(headers),
            body=body,
        ))
    if not result.ok:
        return _fail(log, "collect", result)

    saved = save_result(result.data, output=args.output, default_filename=fetch.default_filename)
    if not saved.ok:
        return _fail(log, "collect", saved)
    log.info("Saved to: %s", saved.data)
    return 0


def cmd_enrich(args: argparse.Namespace, verbosity: Verbosity) -> int:
    log = get_logger("recon_graph.enrich", verbosity)

    config = load_enrichment_config(args.config)
    if not config.ok:
        return _fail(log, "enrich", config)
    enrichment = config.data

    if args.input is not None:
        try:
            content = args.input.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            log.error("enrich failed: cannot read %s: %s", args.input, exc)
            return 1
        if args.html:
            content = html_to_text(content)
        enrichment = attach_document(enrichment, content)

    with EnrichmentClient(verbosity=verbosity) as client:
        result = client.submit(enrichment)
    if not result.ok:
        return _fail(log, "enrich", result)

    text = result.data.text
    if args.json:
        structured = extract_structured(text)
        if not structured.ok:
            return _fail(log, "enrich", structured)
        text = json.dumps(structured.data, indent=2, ensure_ascii=False)

    _write_or_print(text, args.output)
    if args.output is not None:
        log.info("Output saved to: %s", args.output)
    return 0


def cmd_convert(args: argparse.Namespace, verbosity: Verbosity) -> int:
    log = get_logger("recon_graph.convert", verbosity)

    workflow = load_workflow(args.workflow)
    if not workflow.ok:
        return _fail(log, "convert", workflow)
    kb = workflow.data.knowledge_base
    if kb is None:
        log.error("convert failed: workflow %s has no knowledge_base mapping", args.workflow)
        return 1

    try:
        csv_text = args.csv.read_text(encoding="utf-8")
    except OSError as exc:
        log.error("convert failed: cannot read %s: %s", args.csv, exc)
        return 1

    batch = parse_rows(csv_text)
    result = convert(batch.rows, kb.mapping)
    log.info(
        "Rows: %d converted, %d skipped, %d malformed",
        result.converted, result.skipped_rows, batch.malformed,
    )

    serialized = serialize(result.graph, args.format)
    if not serialized.ok:
        return _fail(log, "convert", serialized)
    _write_or_print(serialized.data, args.output)
    return 0


def cmd_run(args: argparse.Namespace, verbosity: Verbosity) -> int:
    log = get_logger("recon_graph.run", verbosity)

    workflow_path = args.workflow.resolve()
    workflow = load_workflow(workflow_path)
    if not workflow.ok:
        return _fail(log, "run", workflow)

    output_dir = args.output_dir
    if output_dir is None:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        output_dir = Path("dist") / f"{workflow_path.stem}-{stamp}"
    output_dir = output_dir.resolve()

    log.info("Workflow: %s", workflow_path.name)
    log.info("Output: %s", output_dir)

    result = run_pipeline(workflow.data, output_dir=output_dir, verbosity=verbosity)
    if not result.ok:
        return _fail(log, "run", result)

    report = result.data
    log.info(
        "Done: %d speakers, %d organisations, %d links, %d triples → %s",
        report.speakers, report.companies, report.links, report.triples, report.graph,
    )
    return 0


# ── Parser ────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="recon-graph",
        description="Tor collection → LLM enrichment → RDF knowledge graph",
    )
    noise = parser.add_mutually_exclusive_group()
    noise.add_argument("-q", "--quiet", action="store_true", help="Only log errors")
    noise.add_argument("-v", "--verbose", action="store_true", help="Debug logging, including transport")
    commands = parser.add_subparsers(dest="command", required=True)

    collect = commands.add_parser("collect", help="Fetch one URL over an isolated Tor circuit")
    collect.add_argument("url")
    collect.add_argument("-o", "--output", type=Path, help="Output file (derived from the response if omitted)")
    collect.add_argument("-X", "--request", default="GET", metavar="METHOD", help="HTTP method")
    collect.add_argument(
        "-H", "--header", action="append", default=[], metavar="HEADER",
        help="Extra header 'Name: value' (repeatable)",
    )
    body = collect.add_mutually_exclusive_group()
    body.add_argument("-d", "--data", help="Request body")
    body.add_argument("--data-file", type=Path, help="Read request body from file")
    collect.add_argument("-A", "--user-agent", default=CHROME_USER_AGENT, metavar="UA")
    collect.add_argument(
        "-w", "--wait", type=float, default=1.0, metavar="SECONDS",
        help="Delay before each request (default: 1)",
    )
    collect.add_argument("--max-redirect", type=int, default=5, metavar="N")
    collect.add_argument("-k", "--insecure", action="store_true", help="Skip TLS certificate validation")
    collect.add_argument(
        "--allow-http", action="store_true",
        help="Permit plain http:// URLs (e.g. .onion services without TLS)",
    )
    collect.add_argument("--socks-host", default="127.0.0.1")
    collect.add_argument("--socks-port", type=int, default=9050)
    collect.set_defaults(handler=cmd_collect)

    enrich = commands.add_parser("enrich", help="Submit an enrichment config to the inference endpoint")
    enrich.add_argument("-c", "--config", type=Path, required=True, help="Enrichment config (.yaml/.yml/.json)")
    enrich.add_argument("-i", "--input", type=Path, help="Document appended to the prompt")
    enrich.add_argument("-o", "--output", type=Path, help="Write output here instead of stdout")
    enrich.add_argument("--html", action="store_true", help="Strip HTML from the input first")
    enrich.add_argument("--json", action="store_true", help="Extract and pretty-print JSON from the output")
    enrich.set_defaults(handler=cmd_enrich)

    conv = commands.add_parser("convert", help="Convert SPARQL SELECT CSV to RDF")
    conv.add_argument("csv", type=Path)
    conv.add_argument("-w", "--workflow", type=Path, required=True, help="Workflow with a knowledge_base mapping")
    conv.add_argument("-o", "--output", type=Path, help="Write graph here instead of stdout")
    conv.add_argument("--format", choices=("nt", "turtle"), default="nt")
    conv.set_defaults(handler=cmd_convert)

    run = commands.add_parser("run", help="Execute a YAML workflow end to end")
    run.add_argument("-w", "--workflow", type=Path, required=True, help="Path to workflow YAML")
    run.add_argument("-o", "--output-dir", type=Path, help="Output directory (default: dist/<workflow>-<timestamp>)")
    run.set_defaults(handler=cmd_run)

    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    verbosity = Verbosity.from_flags(quiet=args.quiet, verbose=args.verbose)
    return args.handler(args, verbosity)


if __name__ == "__main__":
    sys.exit(main())
