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

"""Speaker extraction output → converter rows, and affiliation linking."""

from __future__ import annotations

import hashlib
import re
import unicodedata
from dataclasses import dataclass
from typing import Any

from rdflib import Graph, URIRef
from rdflib.namespace import FOAF, RDFS

from recon_graph.config import ColumnMapping
from recon_graph.converter import Row, subject_iri
from recon_graph.logger import get_logger
from recon_graph.result import ErrorKind, Fail, Ok, Result

log = get_logger(__name__)

_NON_SLUG = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True, slots=True)
class SpeakerBatch:
    rows: tuple[Row, ...]
    dropped: int = 0


def slugify(name: str) -> str:
    """Stable identifier for a person name: ASCII, lowercase, dash separated."""
    ascii_name = unicodedata.normalize("NFKD", name).encode("ascii", "ignore").decode("ascii")
    slug = _NON_SLUG.sub("-", ascii_name.lower()).strip("-")
    if slug:
        return slug
    # Names without any Latin characters
    return "speaker-" + hashlib.sha1(name.strip().encode("utf-8")).hexdigest()[:12]


def speaker_rows(payload: Any) -> Result[SpeakerBatch]:
    """Accept ``{"speakers": [...]}`` or a bare list of speaker objects."""
    entries = payload.get("speakers") if isinstance(payload, dict) else payload
    if not isinstance(entries, list):
        return Fail(
            error="Expected a 'speakers' list in the extracted JSON",
            kind=ErrorKind.UNPARSEABLE_OUTPUT,
            context=str(payload)[:500],
        )

    rows: list[Row] = []
    dropped = 0
    for entry in entries:
        if not isinstance(entry, dict):
            dropped += 1
            continue
        name = str(entry.get("name") or "").strip()
        if not name:
            dropped += 1
            continue

        row: Row = {
            key: str(value).strip()
            for key, value in entry.items()
            if isinstance(value, (str, int, float)) and not isinstance(value, bool)
        }
        row["name"] = name
        row["id"] = slugify(name)
        rows.append(row)

    if dropped:
        log.warning("Dropped %d speaker entr%s without a name", dropped, "y" if dropped == 1 else "ies")
    log.info("Prepared %d speaker row(s)", len(rows))
    return Ok(data=SpeakerBatch(rows=tuple(rows), dropped=dropped))


def link_affiliations(
    graph: Graph,
    rows: tuple[Row, ...],
    mapping: ColumnMapping,
    affiliation_column: str = "affiliation",
) -> int:
    """Add ``(company, foaf:member, speaker)`` where a label matches an affiliation.

    Labels are compared case-insensitively after trimming. Returns the number
    of links added.
    """
    by_label: dict[str, set[URIRef]] = {}
    for subject, label in graph.subject_objects(RDFS.label):
        if isinstance(subject, URIRef):
            by_label.setdefault(str(label).strip().casefold(), set()).add(subject)

    before = len(graph)
    for row in rows:
        affiliation = (row.get(affiliation_column) or "").strip().casefold()
        identifier = (row.get(mapping.subject_column) or "").strip()
        if not affiliation or not identifier:
            continue
        speaker = subject_iri(identifier, mapping)
        for company in sorted(by_label.get(affiliation, ())):
            if company != speaker:
                graph.add((company, FOAF.member, speaker))

    linked = len(graph) - before
    log.info("Linked %d speaker affiliation(s) to known organisations", linked)
    return linked
