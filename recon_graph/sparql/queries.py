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
"""SPARQL query template renderer.

Replaces {{variable}} placeholders with workflow values.
Pure string interpolation — no SPARQL knowledge.
"""

from __future__ import annotations

from recon_graph.config import KnowledgeBaseConfig
from recon_graph.logger import get_logger

log = get_logger(__name__)


def render_template(template: str, variables: dict[str, str]) -> str:
    """Replace all {{key}} placeholders in template with variable values."""
    rendered = template
    for key, value in variables.items():
        rendered = rendered.replace("{{" + key + "}}", value)
    return rendered


def render_knowledge_base(kb: KnowledgeBaseConfig) -> tuple[str, str | None]:
    """Render the main and (optional) count query of a knowledge-base section."""
    query = render_template(kb.query, kb.variables)
    count_query = render_template(kb.count_query, kb.variables) if kb.count_query else None
    log.info(
        "Rendered knowledge-base query (%d variables%s)",
        len(kb.variables), ", with count guard" if count_query else "",
    )
    return query, count_query
