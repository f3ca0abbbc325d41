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

"""Tabular-to-graph converter — SPARQL SELECT CSV rows → RDF triples.

Rows are turned into triples by a ColumnMapping taken from the workflow
file. The graph is an rdflib Graph, so adding a triple twice is a no-op
and merging graphs is a set union.
"""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass, field

from rdflib import Graph, Literal, Namespace, URIRef
from rdflib.namespace import FOAF, RDF, RDFS, SDO, XSD

from recon_graph.config import ColumnMapping, ColumnRule
from recon_graph.logger import get_logger
from recon_graph.result import ErrorKind, Fail, Ok, Result

log = get_logger(__name__)

WD = Namespace("http://www.wikidata.org/entity/")
WDT = Namespace("http://www.wikidata.org/prop/direct/")

PREFIXES: dict[str, Namespace] = {
    "foaf": FOAF,
    "rdf": RDF,
    "rdfs": RDFS,
    "wd": WD,
    "wdt": WDT,
    "xsd": XSD,
    "schema": SDO,
}

_FORMATS = {"nt": "nt", "ntriples": "nt", "turtle": "turtle", "ttl": "turtle"}

Row = dict[str, str]


@dataclass(frozen=True, slots=True)
class RowBatch:
    rows: tuple[Row, ...]
    malformed: int = 0


@dataclass(frozen=True, slots=True)
class ConversionResult:
    graph: Graph = field(compare=False)
    converted: int = 0
    skipped_rows: int = 0


# ── Terms ──────────────────────────────────────────────────────

def new_graph() -> Graph:
    """Empty graph with the project prefixes bound."""
    graph = Graph()
    for prefix, namespace in PREFIXES.items():
        graph.bind(prefix, namespace, override=True, replace=True)
    return graph


def _is_absolute(value: str) -> bool:
    return "://" in value or value.startswith("urn:")


def expand_curie(value: str) -> URIRef:
    """Expand ``prefix:local`` with a known prefix; anything else is used as-is."""
    if not _is_absolute(value):
        prefix, sep, local = value.partition(":")
        if sep and prefix in PREFIXES:
            return URIRef(str(PREFIXES[prefix]) + local)
    return URIRef(value)


def subject_iri(identifier: str, mapping: ColumnMapping) -> URIRef:
    """Absolute identifiers are kept, anything else joins the subject namespace."""
    identifier = identifier.strip()
    if _is_absolute(identifier):
        return URIRef(identifier)
    return URIRef(mapping.subject_namespace + identifier)


def _object_iri(value: str, mapping: ColumnMapping) -> URIRef:
    prefix, sep, _ = value.partition(":")
    if _is_absolute(value) or (sep and prefix in PREFIXES):
        return expand_curie(value)
    return URIRef(mapping.subject_namespace + value)


def _object_term(value: str, rule: ColumnRule, mapping: ColumnMapping) -> URIRef | Literal:
    if rule.kind == "iri":
        return _object_iri(value, mapping)
    if rule.datatype:
        return Literal(value, datatype=expand_curie(rule.datatype))
    if rule.language:
        return Literal(value, lang=rule.language)
    return Literal(value)


# ── Rows ───────────────────────────────────────────────────────

def parse_rows(csv_text: str) -> RowBatch:
    """Read header + data rows; unreadable rows and rows with the wrong field count are dropped."""
    reader = csv.reader(io.StringIO(csv_text.lstrip("\ufeff")))
    header: list[str] | None = None
    rows: list[Row] = []
    malformed = 0

    while True:
        try:
            record = next(reader)
        except StopIteration:
            break
        except csv.Error as exc:
            # The reader resumes at the following line.
            malformed += 1
            log.warning("Unreadable row at line %d: %s", reader.line_num, exc)
            continue

        if not record:
            continue
        if header is None:
            header = [name.strip() for name in record]
            continue
        if len(record) != len(header):
            malformed += 1
            log.warning(
                "Malformed row %d: %d fields, header has %d",
                reader.line_num, len(record), len(header),
            )
            continue
        rows.append(dict(zip(header, (value.strip() for value in record))))

    return RowBatch(rows=tuple(rows), malformed=malformed)


def convert(
    rows: tuple[Row, ...] | list[Row],
    mapping: ColumnMapping,
    graph: Graph | None = None,
) -> ConversionResult:
    """Map rows to triples, adding to ``graph`` or a fresh one."""
    graph = graph if graph is not None else new_graph()
    types = [expand_curie(t) for t in mapping.types]
    converted = 0
    skipped = 0

    for row in rows:
        identifier = (row.get(mapping.subject_column) or "").strip()
        if not identifier:
            skipped += 1
            continue

        subject = subject_iri(identifier, mapping)
        for rdf_type in types:
            graph.add((subject, RDF.type, rdf_type))

        for column, rule in mapping.columns.items():
            if column == mapping.subject_column:
                continue
            value = (row.get(column) or "").strip() or (rule.default or "")
            if not value:
                continue

            target = subject
            if rule.about:
                about = (row.get(rule.about) or "").strip()
                if not about:
                    continue
                target = subject_iri(about, mapping)

            graph.add((target, expand_curie(rule.predicate), _object_term(value, rule, mapping)))
        converted += 1

    if skipped:
        log.warning("Skipped %d row(s) without '%s'", skipped, mapping.subject_column)
    log.info("Converted %d row(s), graph holds %d triples", converted, len(graph))
    return ConversionResult(graph=graph, converted=converted, skipped_rows=skipped)


# ── Graphs ─────────────────────────────────────────────────────

def merge(*graphs: Graph) -> Graph:
    """Set union of all given graphs."""
    merged = new_graph()
    for graph in graphs:
        merged += graph
    return merged


def graph_format(fmt: str) -> Result[str]:
    """rdflib format name for a configured graph format."""
    rdflib_format = _FORMATS.get(fmt.lower())
    if rdflib_format is None:
        return Fail(
            error=f"Unsupported graph format {fmt!r} (use nt or turtle)",
            kind=ErrorKind.CONFIGURATION_ERROR,
        )
    return Ok(data=rdflib_format)


def serialize(graph: Graph, fmt: str = "nt") -> Result[str]:
    """N-Triples by default, Turtle on request."""
    rdflib_format = graph_format(fmt)
    if not rdflib_format.ok:
        return rdflib_format
    return Ok(data=graph.serialize(format=rdflib_format.data))
