"""Diagnostics routines for the configuration subsystem."""

from __future__ import annotations

from pathlib import Path

import yaml

from diagnostics.models import DiagnosticResult, DiagnosticStatus


def probe(base_dir: Path | None = None) -> DiagnosticResult:
    """Check that the config files exist, parse, and define targets.

    Args:
        base_dir: Optional base directory for offline testing.

    Returns:
        Diagnostic result indicating config readiness.
    """

    name = "config"
    root_dir = base_dir if base_dir is not None else Path.cwd()
    config_dir = root_dir / "config"
    default_config = config_dir / "default.yaml"
    override_config = config_dir / "override.yaml"

    if not default_config.exists():
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.FAIL,
            details=f"Missing default config at {default_config}",
        )

    targets: list = []
    try:
        for path in (default_config, override_config):
            if not path.exists():
                continue
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
            if not isinstance(data, dict):
                return DiagnosticResult(
                    name=name,
                    status=DiagnosticStatus.FAIL,
                    details=f"{path.name} is not a mapping",
                )
            entries = data.get("targets", data.get("servers"))
            if entries is not None:
                targets = list(entries or [])
    except (OSError, yaml.YAMLError) as exc:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.FAIL,
            details=f"Config access failed: {exc}",
        )

    if not targets:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.WARN,
            details=f"Config readable at {config_dir} but no targets defined",
        )
    return DiagnosticResult(
        name=name,
        status=DiagnosticStatus.PASS,
        details=f"Config readable at {config_dir}; {len(targets)} target(s) defined",
    )
