"""Diagnostic result types."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class DiagnosticStatus(str, Enum):
    """Outcome of one diagnostic check, ordered by severity."""

    PASS = "PASS"
    WARN = "WARN"
    FAIL = "FAIL"


@dataclass(frozen=True)
class DiagnosticResult:
    """Result for a single subsystem probe."""

    name: str
    status: DiagnosticStatus
    details: str

    @property
    def ok(self) -> bool:
        return self.status is not DiagnosticStatus.FAIL
