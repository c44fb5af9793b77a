"""Diagnostics routines for the interactive terminal."""

from __future__ import annotations

import importlib.util
import sys
from typing import Any

from diagnostics.models import DiagnosticResult, DiagnosticStatus


def _is_tty(stream: Any) -> bool:
    try:
        return bool(stream.isatty())
    except (AttributeError, ValueError):
        return False


def probe(stdin: Any | None = None, stdout: Any | None = None) -> DiagnosticResult:
    """Check whether direct sessions can take over this terminal."""

    name = "interaction"
    stdin = stdin if stdin is not None else sys.stdin
    stdout = stdout if stdout is not None else sys.stdout

    if importlib.util.find_spec("termios") is None:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.WARN,
            details="termios unavailable; raw-mode handover disabled",
        )
    if not (_is_tty(stdin) and _is_tty(stdout)):
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.WARN,
            details="stdin/stdout are not a tty; direct mode needs an interactive terminal",
        )
    return DiagnosticResult(
        name=name,
        status=DiagnosticStatus.PASS,
        details="Interactive tty with termios support",
    )
