"""Run subsystem probes and render their results."""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable, Iterable

from core.logging import logger as LOGGER
from diagnostics.models import DiagnosticResult, DiagnosticStatus


def format_results(results: Iterable[DiagnosticResult]) -> str:
    """Return a plain-text report with one line per probe and a summary."""

    results = list(results)
    width = max((len(result.name) for result in results), default=0)
    lines = ["hostwarden diagnostics", "-" * 60]
    for result in results:
        lines.append(f"[{result.status.value}] {result.name.ljust(width)}  {result.details}")
    lines.append("-" * 60)
    counts = Counter(result.status for result in results)
    lines.append(
        " ".join(f"{status.value}={counts.get(status, 0)}" for status in DiagnosticStatus)
    )
    return "\n".join(lines)


def has_failures(results: Iterable[DiagnosticResult]) -> bool:
    return any(result.status is DiagnosticStatus.FAIL for result in results)


def run_diagnostics(probes: Iterable[Callable[[], DiagnosticResult]]) -> list[DiagnosticResult]:
    """Run each probe in order; a raising probe is reported as FAIL."""

    results: list[DiagnosticResult] = []
    for probe in probes:
        try:
            result = probe()
        except Exception as exc:  # noqa: BLE001 - diagnostics must keep running
            LOGGER.exception("Probe failed: %s", probe)
            result = DiagnosticResult(
                name=getattr(probe, "__name__", "unknown_probe"),
                status=DiagnosticStatus.FAIL,
                details=f"Probe raised exception: {exc}",
            )
        results.append(result)
    return results
