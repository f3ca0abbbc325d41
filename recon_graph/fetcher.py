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

"""Circuit-isolated fetcher — every request of a run goes over one circuit.

The anonymous-network client is injected as a CircuitTransport. The fetcher
validates requests, retries transient circuit builds with backoff, and
follows redirects and rate limits by issuing further single exchanges over
the same circuit. It never opens a second circuit on its own.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from pathlib import Path
from typing import Callable, Protocol
from urllib.parse import unquote, urljoin, urlsplit

import certifi

from recon_graph.config import FetchConfig, RetryConfig
from recon_graph.logger import Verbosity, get_logger
from recon_graph.result import ErrorKind, Fail, Ok, Result

_BODYLESS_METHODS = frozenset({"GET", "HEAD", "TRACE"})
_REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})
_METHOD_RE = re.compile(r"^[A-Z]+$")

_BROWSER_HEADERS: tuple[tuple[str, str], ...] = (
    (
        "Accept",
        "text/html,application/xhtml+xml,application/xml;q=0.9,"
        "image/avif,image/webp,image/apng,*/*;q=0.8",
    ),
    ("Accept-Language", "en-US,en;q=0.9"),
)

_CONTENT_TYPE_FILENAMES = {
    "application/json": "response.json",
    "application/sparql-results+json": "response.json",
    "text/csv": "response.csv",
}


# ── Values ─────────────────────────────────────────────────────

def _lookup(headers: tuple[tuple[str, str], ...], name: str) -> str | None:
    wanted = name.lower()
    for key, value in headers:
        if key.lower() == wanted:
            return value
    return None


@dataclass(frozen=True, slots=True)
class CollectionRequest:
    url: str
    method: str = "GET"
    headers: tuple[tuple[str, str], ...] = ()
    body: bytes | str | None = None

    def header(self, name: str) -> str | None:
        return _lookup(self.headers, name)


@dataclass(frozen=True, slots=True)
class CollectionResult:
    status: int
    headers: tuple[tuple[str, str], ...]
    body: bytes
    circuit_id: str
    url: str

    def header(self, name: str) -> str | None:
        return _lookup(self.headers, name)


@dataclass(frozen=True, slots=True)
class CircuitHandle:
    """An open circuit. Leaving a ``with`` block releases it."""

    circuit_id: str
    exit_address: str | None = None
    opened_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
    )
    release: Callable[[], None] = field(default=lambda: None, repr=False, compare=False)

    def __enter__(self) -> CircuitHandle:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()


class CircuitTransport(Protocol):
    """The anonymous-network client as seen by the fetcher."""

    def open_circuit(self) -> Result[CircuitHandle]: ...

    def send_over_circuit(
        self,
        handle: CircuitHandle,
        request: CollectionRequest,
        *,
        verify: bool | str,
    ) -> Result[CollectionResult]: ...


# ── Validation ─────────────────────────────────────────────────

def parse_header(line: str) -> Result[tuple[str, str]]:
    """Parse a ``Name: value`` header line as given on the command line."""
    name, sep, value = line.partition(":")
    if not sep or not name.strip():
        return Fail(
            error=f"Header must look like 'Name: value', got {line!r}",
            kind=ErrorKind.INVALID_REQUEST,
        )
    return Ok(data=(name.strip(), value.strip()))


def validate_request(request: CollectionRequest, allow_plain_http: bool = False) -> Result[CollectionRequest]:
    """Check method/body pairing and URL shape; normalize the method name."""
    method = request.method.strip().upper()
    if not _METHOD_RE.match(method):
        return Fail(error=f"Invalid HTTP method: {request.method!r}", kind=ErrorKind.INVALID_REQUEST)

    if method in _BODYLESS_METHODS and request.body:
        return Fail(
            error=f"{method} requests must not carry a body",
            kind=ErrorKind.INVALID_REQUEST,
            context=request.url,
        )

    parts = urlsplit(request.url)
    schemes = ("https", "http") if allow_plain_http else ("https",)
    if parts.scheme not in schemes:
        return Fail(
            error=f"Unsupported URL scheme {parts.scheme!r} (allowed: {', '.join(schemes)})",
            kind=ErrorKind.INVALID_REQUEST,
            context=request.url,
        )
    if not parts.hostname:
        return Fail(error="URL must have a host", kind=ErrorKind.INVALID_REQUEST, context=request.url)

    return Ok(data=replace(request, method=method))


# ── Fetcher ────────────────────────────────────────────────────

def _retry_after_seconds(response: CollectionResult, default: float) -> float:
    value = (response.header("Retry-After") or "").strip()
    if value.isdigit():
        return float(value)
    if value:
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return default
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())
    return default


def _redirect_method(status: int, method: str) -> str:
    """Method for the follow-up request, as browsers do it."""
    if status == 303 and method != "HEAD":
        return "GET"
    if status == 302 and method != "HEAD":
        return "GET"
    if status == 301 and method == "POST":
        return "GET"
    return method


class Fetcher:
    """Issues HTTP exchanges over a single circuit per run."""

    def __init__(
        self,
        transport: CircuitTransport,
        config: FetchConfig | None = None,
        retry: RetryConfig | None = None,
        verbosity: Verbosity = Verbosity.NORMAL,
    ) -> None:
        self._transport = transport
        self._config = config or FetchConfig()
        self._retry = retry or RetryConfig()
        self.log = get_logger(__name__, verbosity)

    @property
    def _verify(self) -> bool | str:
        return False if self._config.insecure else certifi.where()

    def open_circuit(self) -> Result[CircuitHandle]:
        """Build the run's circuit, retrying transient failures with backoff."""
        attempts = max(1, self._retry.attempts)
        delay = self._retry.delay_seconds
        attempt = 0

        while True:
            attempt += 1
            self.log.info("Circuit build attempt %d/%d", attempt, attempts)
            result = self._transport.open_circuit()
            if result.ok:
                handle: CircuitHandle = result.data
                self.log.info(
                    "Circuit %s ready (exit: %s)",
                    handle.circuit_id, handle.exit_address or "unknown",
                )
                return result
            if not result.transient:
                self.log.error("Circuit build failed: %s", result.error)
                return result

            self.log.warning("Attempt %d failed: %s", attempt, result.error)
            if attempt >= attempts:
                return Fail(
                    error=f"All {attempts} circuit build attempts failed: {result.error}",
                    kind=result.kind,
                    context=result.context,
                )
            self.log.info("Retrying in %.1f seconds...", delay)
            time.sleep(delay)
            delay *= self._retry.backoff

    def _with_default_headers(self, request: CollectionRequest) -> CollectionRequest:
        headers = list(request.headers)
        if request.header("User-Agent") is None:
            headers.insert(0, ("User-Agent", self._config.user_agent))
        for name, value in _BROWSER_HEADERS:
            if request.header(name) is None:
                headers.append((name, value))
        return replace(request, headers=tuple(headers))

    def fetch(self, handle: CircuitHandle, request: CollectionRequest) -> Result[CollectionResult]:
        """Issue exactly one HTTP exchange over the given circuit."""
        valid = validate_request(request, self._config.allow_plain_http)
        if not valid.ok:
            return valid  # type: ignore[return-value]
        prepared = self._with_default_headers(valid.data)

        if self._config.rate_limit_delay > 0:
            time.sleep(self._config.rate_limit_delay)

        self.log.info("%s %s (circuit %s)", prepared.method, prepared.url, handle.circuit_id)
        result = self._transport.send_over_circuit(handle, prepared, verify=self._verify)
        if result.ok:
            self.log.info("Response status: %d (%d bytes)", result.data.status, len(result.data.body))
        else:
            self.log.warning("Request failed: %s", result.error)
        return result

    def collect(self, handle: CircuitHandle, request: CollectionRequest) -> Result[CollectionResult]:
        """Fetch a resource, following redirects and 429 back-offs on the same circuit."""
        current = request
        redirects = 0
        rate_limited = 0

        while True:
            result = self.fetch(handle, current)
            if not result.ok:
                return result
            response: CollectionResult = result.data

            if response.status in _REDIRECT_STATUSES:
                if redirects >= self._config.max_redirects:
                    return Fail(
                        error=f"Too many redirects (max {self._config.max_redirects})",
                        kind=ErrorKind.HTTP_PROTOCOL_ERROR,
                        context=current.url,
                    )
                location = response.header("Location")
                if not location:
                    return Fail(
                        error="Redirect response without Location header",
                        kind=ErrorKind.HTTP_PROTOCOL_ERROR,
                        context=current.url,
                    )
                target = urljoin(current.url, location.strip())
                method = _redirect_method(response.status, current.method.upper())
                if method != current.method.upper():
                    headers = tuple(
                        (k, v) for k, v in current.headers if k.lower() != "content-type"
                    )
                    current = replace(current, url=target, method=method, body=None, headers=headers)
                else:
                    current = replace(current, url=target)
                redirects += 1
                self.log.info("Following redirect to: %s", target)
                continue

            if response.status == 429:
                if rate_limited >= self._config.max_rate_limit_retries:
                    return Fail(
                        error=f"Still rate limited after {rate_limited} retries",
                        kind=ErrorKind.HTTP_STATUS,
                        context=current.url,
                    )
                wait = _retry_after_seconds(response, self._config.default_retry_after)
                rate_limited += 1
                self.log.info("Rate limited (429 Too Many Requests), waiting %.0f seconds", wait)
                time.sleep(wait)
                continue

            if response.status >= 400:
                snippet = response.body[:500].decode("utf-8", errors="replace")
                return Fail(
                    error=f"HTTP error: {response.status}",
                    kind=ErrorKind.HTTP_STATUS,
                    context=snippet,
                )

            return result


# ── Output ─────────────────────────────────────────────────────

def filename_from_headers(response: CollectionResult) -> str | None:
    """Filename from a Content-Disposition header, if any."""
    disposition = response.header("Content-Disposition")
    if not disposition or "filename=" not in disposition:
        return None
    value = disposition.split("filename=", 1)[1].split(";", 1)[0]
    value = value.strip().strip("\"'")
    if value.lower().startswith("utf-8''"):
        value = unquote(value[7:])
    name = Path(value).name
    return name or None


def filename_from_url(url: str) -> str | None:
    segment = urlsplit(url).path.rsplit("/", 1)[-1]
    return Path(unquote(segment)).name or None


def filename_from_content_type(response: CollectionResult) -> str | None:
    content_type = (response.header("Content-Type") or "").split(";", 1)[0].strip().lower()
    return _CONTENT_TYPE_FILENAMES.get(content_type)


def suggest_filename(response: CollectionResult, default_filename: str = "index.html") -> str:
    return (
        filename_from_headers(response)
        or filename_from_url(response.url)
        or filename_from_content_type(response)
        or default_filename
    )


def save_result(
    response: CollectionResult,
    output: Path | None = None,
    default_filename: str = "index.html",
    directory: Path = Path("."),
) -> Result[Path]:
    """Write the response body verbatim to ``output`` or a derived filename."""
    target = output if output is not None else directory / suggest_filename(response, default_filename)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(response.body)
    except OSError as exc:
        return Fail(
            error=f"Failed to write output file: {exc}",
            kind=ErrorKind.CONFIGURATION_ERROR,
            context=str(target),
        )
    return Ok(data=target)
