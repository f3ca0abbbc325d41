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

"""Tor SOCKS transport — circuits through a local Tor daemon.

Circuit isolation relies on Tor's IsolateSOCKSAuth (on by default): streams
sent with the same SOCKS username/password share a circuit, streams with
different credentials never do. A circuit id is therefore just a random
credential, kept for the lifetime of one requests.Session.

Uses ``socks5h`` so hostnames are resolved inside Tor, not locally.
"""

from __future__ import annotations

import functools
import secrets
from typing import Any, Callable

import certifi
import requests

from recon_graph.config import TorConfig
from recon_graph.fetcher import CircuitHandle, CollectionRequest, CollectionResult
from recon_graph.logger import Verbosity, filter_transport_noise, get_logger
from recon_graph.result import ErrorKind, Fail, Ok, Result

# PySocks reply codes meaning Tor could not get a circuit to the exit.
_GUARD_MARKERS = (
    "0x01: general socks server failure",
    "0x04: host unreachable",
    "0x06: ttl expired",
)


def classify_circuit_error(exc: requests.RequestException) -> ErrorKind:
    """Map a failure while building/probing a circuit to an ErrorKind."""
    if isinstance(exc, requests.exceptions.SSLError):
        return ErrorKind.TLS_ERROR
    if isinstance(exc, requests.Timeout):
        return ErrorKind.CIRCUIT_BUILD_TIMEOUT
    message = str(exc).lower()
    if any(marker in message for marker in _GUARD_MARKERS):
        return ErrorKind.GUARD_CONNECTION_FAILED
    return ErrorKind.NETWORK_UNREACHABLE


def classify_request_error(exc: requests.RequestException) -> ErrorKind:
    """Map a failure of an HTTP exchange over an open circuit to an ErrorKind."""
    if isinstance(exc, requests.exceptions.SSLError):
        return ErrorKind.TLS_ERROR
    if isinstance(exc, requests.Timeout):
        return ErrorKind.REQUEST_TIMEOUT
    if isinstance(exc, (
        requests.exceptions.ChunkedEncodingError,
        requests.exceptions.ContentDecodingError,
        requests.exceptions.InvalidHeader,
        requests.exceptions.TooManyRedirects,
    )):
        return ErrorKind.HTTP_PROTOCOL_ERROR
    if isinstance(exc, requests.ConnectionError):
        return ErrorKind.NETWORK_UNREACHABLE
    return ErrorKind.HTTP_PROTOCOL_ERROR


class TorSocksTransport:
    """Opens isolated circuits and sends requests over them."""

    def __init__(
        self,
        config: TorConfig | None = None,
        verbosity: Verbosity = Verbosity.NORMAL,
        session_factory: Callable[[], requests.Session] = requests.Session,
    ) -> None:
        self._config = config or TorConfig()
        self._session_factory = session_factory
        self._sessions: dict[str, requests.Session] = {}
        self.log = get_logger(__name__, verbosity)
        filter_transport_noise(verbosity)

    def _proxy_url(self, circuit_id: str) -> str:
        return (
            f"socks5h://{circuit_id}:{circuit_id}@"
            f"{self._config.socks_host}:{self._config.socks_port}"
        )

    def _check_routing(self, session: requests.Session) -> Result[str | None]:
        """Force the circuit to be built and learn its exit address."""
        if not self._config.check_url:
            return Ok(data=None)

        try:
            resp = session.get(
                self._config.check_url,
                timeout=self._config.circuit_timeout,
                verify=certifi.where(),
            )
        except requests.RequestException as exc:
            return Fail(
                error=f"Tor routing check failed: {exc}",
                kind=classify_circuit_error(exc),
                context=self._config.check_url,
            )

        try:
            payload: dict[str, Any] = resp.json()
        except ValueError:
            payload = {}
        if payload.get("IsTor") is False:
            return Fail(
                error="Tor check reports traffic is not routed through Tor",
                kind=ErrorKind.NETWORK_UNREACHABLE,
                context=self._config.check_url,
            )
        return Ok(data=payload.get("IP"))

    def open_circuit(self) -> Result[CircuitHandle]:
        circuit_id = secrets.token_hex(8)
        proxy = self._proxy_url(circuit_id)
        session = self._session_factory()
        # Environment proxies (HTTPS_PROXY, ...) would take precedence over these
        session.trust_env = False
        session.proxies = {"http": proxy, "https": proxy}

        self.log.debug(
            "Opening circuit %s via %s:%d",
            circuit_id, self._config.socks_host, self._config.socks_port,
        )
        routing = self._check_routing(session)
        if not routing.ok:
            session.close()
            return routing  # type: ignore[return-value]

        self._sessions[circuit_id] = session
        return Ok(data=CircuitHandle(
            circuit_id=circuit_id,
            exit_address=routing.data,
            release=functools.partial(self.release, circuit_id),
        ))

    def send_over_circuit(
        self,
        handle: CircuitHandle,
        request: CollectionRequest,
        *,
        verify: bool | str,
    ) -> Result[CollectionResult]:
        session = self._sessions.get(handle.circuit_id)
        if session is None:
            return Fail(
                error=f"Circuit {handle.circuit_id} is not open",
                kind=ErrorKind.INVALID_REQUEST,
            )

        self.log.debug("Reusing circuit %s for %s", handle.circuit_id, request.url)
        try:
            resp = session.request(
                request.method,
                request.url,
                headers=dict(request.headers),
                data=request.body,
                timeout=self._config.request_timeout,
                verify=verify,
                allow_redirects=False,
            )
        except requests.RequestException as exc:
            return Fail(
                error=f"{type(exc).__name__}: {exc}",
                kind=classify_request_error(exc),
                context=request.url,
            )

        return Ok(data=CollectionResult(
            status=resp.status_code,
            headers=tuple(resp.headers.items()),
            body=resp.content,
            circuit_id=handle.circuit_id,
            url=request.url,
        ))

    def release(self, circuit_id: str) -> None:
        """Close the session bound to a circuit. Safe to call twice."""
        session = self._sessions.pop(circuit_id, None)
        if session is not None:
            session.close()
            self.log.debug("Released circuit %s", circuit_id)
