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

"""Result pattern with classified failures.

Every fallible operation returns Result[T] = Ok[T] | Fail. A Fail carries
an ErrorKind so callers can branch on what went wrong (retry a circuit
build, report a bad config, ...) without parsing messages.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class ErrorCategory(str, Enum):
    NETWORK = "network"
    CONFIGURATION = "configuration"
    ENDPOINT = "endpoint"
    PARSE = "parse"


class ErrorKind(str, Enum):
    """Concrete failure kinds, each belonging to one ErrorCategory."""

    # Network
    NETWORK_UNREACHABLE = "network_unreachable"
    CIRCUIT_BUILD_TIMEOUT = "circuit_build_timeout"
    GUARD_CONNECTION_FAILED = "guard_connection_failed"
    REQUEST_TIMEOUT = "request_timeout"
    TLS_ERROR = "tls_error"
    HTTP_PROTOCOL_ERROR = "http_protocol_error"

    # Configuration
    CONFIGURATION_ERROR = "configuration_error"
    INVALID_PARAMETER = "invalid_parameter"
    INVALID_REQUEST = "invalid_request"

    # Endpoint
    ENDPOINT_ERROR = "endpoint_error"
    HTTP_STATUS = "http_status"
    RESULT_LIMIT_EXCEEDED = "result_limit_exceeded"

    # Parse
    UNPARSEABLE_OUTPUT = "unparseable_output"
    MALFORMED_ROW = "malformed_row"

    @property
    def category(self) -> ErrorCategory:
        return _CATEGORIES[self]


_CATEGORIES: dict[ErrorKind, ErrorCategory] = {
    ErrorKind.NETWORK_UNREACHABLE: ErrorCategory.NETWORK,
    ErrorKind.CIRCUIT_BUILD_TIMEOUT: ErrorCategory.NETWORK,
    ErrorKind.GUARD_CONNECTION_FAILED: ErrorCategory.NETWORK,
    ErrorKind.REQUEST_TIMEOUT: ErrorCategory.NETWORK,
    ErrorKind.TLS_ERROR: ErrorCategory.NETWORK,
    ErrorKind.HTTP_PROTOCOL_ERROR: ErrorCategory.NETWORK,
    ErrorKind.CONFIGURATION_ERROR: ErrorCategory.CONFIGURATION,
    ErrorKind.INVALID_PARAMETER: ErrorCategory.CONFIGURATION,
    ErrorKind.INVALID_REQUEST: ErrorCategory.CONFIGURATION,
    ErrorKind.ENDPOINT_ERROR: ErrorCategory.ENDPOINT,
    ErrorKind.HTTP_STATUS: ErrorCategory.ENDPOINT,
    ErrorKind.RESULT_LIMIT_EXCEEDED: ErrorCategory.ENDPOINT,
    ErrorKind.UNPARSEABLE_OUTPUT: ErrorCategory.PARSE,
    ErrorKind.MALFORMED_ROW: ErrorCategory.PARSE,
}

# Circuit-build failures worth another attempt.
TRANSIENT_KINDS = frozenset({
    ErrorKind.CIRCUIT_BUILD_TIMEOUT,
    ErrorKind.GUARD_CONNECTION_FAILED,
})


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Successful result carrying typed data."""

    data: T
    ok: bool = field(default=True, init=False)


@dataclass(frozen=True, slots=True)
class Fail:
    """Failed result carrying error message, kind and optional context."""

    error: str
    kind: ErrorKind = ErrorKind.CONFIGURATION_ERROR
    context: Any = None
    ok: bool = field(default=False, init=False)

    @property
    def category(self) -> ErrorCategory:
        return self.kind.category

    @property
    def transient(self) -> bool:
        return self.kind in TRANSIENT_KINDS

    def describe(self, stage: str) -> str:
        """One-line message naming the failed stage, kind and reason."""
        return f"{stage} failed [{self.kind.name}]: {self.error}"


Result = Ok[T] | Fail
