"""Diagnostics routines for the core subsystem."""

from __future__ import annotations

import importlib.util

from diagnostics.models import DiagnosticResult, DiagnosticStatus


def probe() -> DiagnosticResult:
    """Check that the shared logger is initialized."""

    name = "core"
    from core import logging as core_logging

    if core_logging.logger is None:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.FAIL,
            details="Core logger failed to initialize",
        )
    parts = [f"logger={core_logging.logger.name}"]
    if importlib.util.find_spec("rich") is not None:
        parts.append("rich output enabled")
    else:
        parts.append("rich not available (plain output)")
    log_path = core_logging.file_log_path()
    if log_path is not None:
        parts.append(f"file log {log_path}")
    return DiagnosticResult(
        name=name,
        status=DiagnosticStatus.PASS,
        details=", ".join(parts),
    )
