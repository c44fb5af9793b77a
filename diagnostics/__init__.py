"""Self-checks for hostwarden subsystems."""

from diagnostics.models import DiagnosticResult, DiagnosticStatus
from diagnostics.runner import format_results, has_failures, run_diagnostics

__all__ = [
    "DiagnosticResult",
    "DiagnosticStatus",
    "format_results",
    "has_failures",
    "run_diagnostics",
]
