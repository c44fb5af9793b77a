"""Diagnostics routines for the services subsystem."""

from __future__ import annotations

import shutil
from typing import Callable

from diagnostics.models import DiagnosticResult, DiagnosticStatus
from services.terminal_detector import TerminalDetector


def probe(
    detector: TerminalDetector | None = None,
    which: Callable[[str], str | None] = shutil.which,
    ssh_binary: str = "ssh",
) -> DiagnosticResult:
    """Check for the ssh client and a terminal that can host new windows.

    Args:
        detector: Optional detector, for offline testing.
        which: PATH lookup used for the ssh client.
        ssh_binary: Name of the ssh executable.

    Returns:
        FAIL without ssh, WARN when only direct mode is possible, else PASS.
    """

    name = "services"
    ssh_path = which(ssh_binary)
    if ssh_path is None:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.FAIL,
            details=f"'{ssh_binary}' not found on PATH",
        )

    try:
        detector = detector or TerminalDetector()
        detected = detector.detect()
        available = [spec.display_name for spec in detector.available()]
        windowless = [spec.display_name for spec in detector.present_without_windows()]
    except Exception as exc:  # noqa: BLE001 - probe should not raise
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.WARN,
            details=f"ssh at {ssh_path}; terminal detection failed: {exc}",
        )

    notes = "".join(f"; {label} running but cannot spawn windows" for label in windowless)
    if detected is None:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.WARN,
            details=f"ssh at {ssh_path}; no terminal emulator found, direct mode only{notes}",
        )
    return DiagnosticResult(
        name=name,
        status=DiagnosticStatus.PASS,
        details=(
            f"ssh at {ssh_path}; new windows via {detected.display_name} "
            f"(available: {', '.join(available) or detected.display_name})"
            f"{notes}"
        ),
    )
