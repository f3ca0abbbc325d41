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
"""SPARQL SELECT client over the run's circuit.

Sends form-encoded POST requests through the Fetcher, so knowledge-base
queries leave through the same exit as the document collection.
Results are requested as CSV and converted locally.
"""

from __future__ import annotations

import json
import urllib.parse
from typing import Any

from recon_graph.fetcher import CircuitHandle, CollectionRequest, Fetcher
from recon_graph.logger import get_logger
from recon_graph.result import ErrorKind, Fail, Ok, Result

log = get_logger(__name__)

WIKIDATA_ENDPOINT = "https://query.wikidata.org/sparql"

Binding = dict[str, dict[str, str]]


def _query_request(endpoint: str, query: str, accept: str) -> CollectionRequest:
    return CollectionRequest(
        url=endpoint,
        method="POST",
        headers=(
            ("Content-Type", "application/x-www-form-urlencoded"),
            ("Accept", accept),
        ),
        body=urllib.parse.urlencode({"query": query}),
    )


def select_csv(
    fetcher: Fetcher,
    handle: CircuitHandle,
    endpoint: str,
    query: str,
) -> Result[str]:
    """POST a SELECT query and return the CSV result text."""
    request = _query_request(endpoint, query, "text/csv")
    log.info("SPARQL query → %s (%d bytes)", endpoint, len(request.body or ""))

    result = fetcher.collect(handle, request)
    if not result.ok:
        return result  # type: ignore[return-value]

    text = result.data.body.decode("utf-8", errors="replace")
    log.info("SPARQL returned %d CSV lines", max(0, len(text.splitlines()) - 1))
    return Ok(data=text)


def select_count(
    fetcher: Fetcher,
    handle: CircuitHandle,
    endpoint: str,
    query: str,
) -> Result[int]:
    """POST a COUNT query and return the first binding's ``count`` value."""
    request = _query_request(endpoint, query, "application/sparql-results+json")
    log.info("SPARQL count query → %s", endpoint)

    result = fetcher.collect(handle, request)
    if not result.ok:
        return result  # type: ignore[return-value]

    snippet = result.data.body[:500].decode("utf-8", errors="replace")
    try:
        raw: dict[str, Any] = json.loads(result.data.body.decode("utf-8"))
        bindings: list[Binding] = raw["results"]["bindings"]
        first = bindings[0]
        cell = first["count"] if "count" in first else next(iter(first.values()))
        count = int(cell["value"])
    except (ValueError, KeyError, IndexError, TypeError, StopIteration) as exc:
        return Fail(
            error=f"Unexpected SPARQL count response: {exc}",
            kind=ErrorKind.ENDPOINT_ERROR,
            context=snippet,
        )

    log.info("SPARQL count: %d", count)
    return Ok(data=count)


def guard_result_count(count: int, max_results: int) -> Result[int]:
    """Refuse result sets larger than ``max_results``."""
    if count > max_results:
        return Fail(
            error=f"Query matches {count} results, more than the limit of {max_results}",
            kind=ErrorKind.RESULT_LIMIT_EXCEEDED,
        )
    return Ok(data=count)
