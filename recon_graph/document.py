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

"""Collected document → plain text for the enrichment prompt.

Conference pages carry most of their bytes in scripts and styles. Dropping
those keeps prompts inside the model's context window. Image alt text is
kept because speaker names are often only present there.
"""

from __future__ import annotations

import re

from lxml import etree, html

from recon_graph.logger import get_logger

log = get_logger(__name__)

_DROP_TAGS = ("script", "style", "noscript", "template", "svg", "head")
_BLOCK_TAGS = frozenset({
    "p", "div", "section", "article", "li", "ul", "ol", "tr", "table",
    "h1", "h2", "h3", "h4", "h5", "h6", "br", "header", "footer", "main",
    "aside", "nav", "figure", "figcaption", "dd", "dt", "blockquote",
})
_HTML_SNIFF = re.compile(r"<\s*(!doctype\s+html|html|body|div|p|span|img)\b", re.IGNORECASE)
_BLANK_LINES = re.compile(r"\n\s*\n+")
_SPACES = re.compile(r"[ \t\r\f\v]+")


def looks_like_html(text: str) -> bool:
    return bool(_HTML_SNIFF.search(text[:4096]))


def decode_body(body: bytes, charset: str | None = None) -> str:
    """Decode response bytes, falling back to UTF-8 with replacement."""
    try:
        return body.decode(charset or "utf-8")
    except (LookupError, UnicodeDecodeError):
        return body.decode("utf-8", errors="replace")


def _collect_text(element: etree._Element, parts: list[str]) -> None:
    if not isinstance(element.tag, str):
        return
    tag = element.tag.lower()

    if tag == "img":
        alt = (element.get("alt") or "").strip()
        if alt:
            parts.append(f"\n{alt}\n")
    elif tag in _BLOCK_TAGS:
        parts.append("\n")

    if element.text:
        parts.append(element.text)
    for child in element:
        _collect_text(child, parts)
        if child.tail:
            parts.append(child.tail)

    if tag in _BLOCK_TAGS:
        parts.append("\n")


def html_to_text(text: str) -> str:
    """Visible text of an HTML document; non-HTML input is returned unchanged."""
    if not text.strip() or not looks_like_html(text):
        return text

    try:
        root = html.document_fromstring(text)
    except (etree.ParserError, ValueError) as exc:
        log.warning("HTML parse failed, using raw text: %s", exc)
        return text

    for bad in list(root.iter(*_DROP_TAGS)):
        bad.drop_tree()

    parts: list[str] = []
    _collect_text(root, parts)
    joined = "".join(parts)

    lines = [_SPACES.sub(" ", line).strip() for line in joined.split("\n")]
    cleaned = _BLANK_LINES.sub("\n\n", "\n".join(lines)).strip()
    log.info("Stripped HTML: %d → %d characters", len(text), len(cleaned))
    return cleaned
