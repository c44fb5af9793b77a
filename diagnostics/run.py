"""Collect the subsystem probes and run them as one report."""

from __future__ import annotations

from pathlib import Path

from config.diagnostics import probe as config_probe
from core.diagnostics import probe as core_probe
from diagnostics.runner import format_results, has_failures, run_diagnostics
from interaction.diagnostics import probe as interaction_probe
from services.diagnostics import probe as services_probe


def default_probes(base_dir: Path | None = None) -> list:
    """Return the probe callables in report order."""

    def config_probe_with_base():
        return config_probe(base_dir=base_dir)

    return [
        config_probe_with_base,
        core_probe,
        services_probe,
        interaction_probe,
    ]


def main(base_dir: Path | None = None) -> int:
    """Print the diagnostics report and return a process exit code."""

    results = run_diagnostics(default_probes(base_dir))
    print(format_results(results))
    return 1 if has_failures(results) else 0
