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

"""Structured logger with explicit verbosity and per-stage counters.

Verbosity is passed to each component's constructor rather than flipped
globally. Stage counters let the orchestrator print a summary at the end
of a run, including rows skipped by the converter.
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, field
from enum import IntEnum

_FMT = "%(asctime)s [%(levelname)s] %(name)s — %(message)s"

# Loggers of the HTTP/SOCKS stack that chatter while Tor builds circuits.
TRANSPORT_LOGGERS = ("urllib3", "socks")


class Verbosity(IntEnum):
    QUIET = 0
    NORMAL = 1
    VERBOSE = 2

    @property
    def level(self) -> int:
        return {
            Verbosity.QUIET: logging.ERROR,
            Verbosity.NORMAL: logging.INFO,
            Verbosity.VERBOSE: logging.DEBUG,
        }[self]

    @classmethod
    def from_flags(cls, quiet: bool = False, verbose: bool = False) -> Verbosity:
        if quiet:
            return cls.QUIET
        if verbose:
            return cls.VERBOSE
        return cls.NORMAL


def get_logger(name: str, verbosity: Verbosity = Verbosity.NORMAL) -> logging.Logger:
    """Return a stdlib logger configured with a consistent format."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(_FMT, datefmt="%H:%M:%S"))
        logger.addHandler(handler)
        logger.propagate = False
    logger.setLevel(verbosity.level)
    return logger


class TransportNoiseFilter(logging.Filter):
    """Drops records below ERROR; circuit-build warnings are expected noise."""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= logging.ERROR


def filter_transport_noise(verbosity: Verbosity) -> None:
    """Install or remove the noise filter on the transport loggers."""
    for name in TRANSPORT_LOGGERS:
        logger = logging.getLogger(name)
        for existing in [f for f in logger.filters if isinstance(f, TransportNoiseFilter)]:
            logger.removeFilter(existing)
        if verbosity < Verbosity.VERBOSE:
            logger.addFilter(TransportNoiseFilter())


@dataclass
class StepCounter:
    """Tracks ok/failed/skipped counts for a single pipeline stage."""

    name: str
    ok: int = 0
    failed: int = 0
    skipped: int = 0


@dataclass
class PipelineSummary:
    """Accumulates counters across all pipeline stages."""

    steps: dict[str, StepCounter] = field(default_factory=dict)

    def counter(self, name: str) -> StepCounter:
        """Get or create a counter for a named stage."""
        if name not in self.steps:
            self.steps[name] = StepCounter(name=name)
        return self.steps[name]

    def report(self) -> str:
        """Format a human-readable summary block."""
        lines: list[str] = ["", "Run Summary", "=" * 40]
        for step in self.steps.values():
            parts = [f"{step.name}: {step.ok} ok"]
            if step.failed:
                parts.append(f"{step.failed} failed")
            if step.skipped:
                parts.append(f"{step.skipped} skipped")
            lines.append("  ".join(parts))
        lines.append("=" * 40)
        return "\n".join(lines)
