"""Command-line entry point for hostwarden."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
import sys
import threading

from config import ConfigController
from core.logging import (
    Table,
    console,
    enable_file_logging,
    log_error,
    log_info,
    log_warning,
    logger,
    set_level,
)
from core.registry import TargetRegistry
from core.target_models import ConnectionMode, Target
from interaction.terminal_surface import ConsoleSurface
from services.connection_launcher import ConnectionLauncher, SSHOptions
from services.orchestrator import Orchestrator, OrchestratorSettings


def configure_logging(level_name: str) -> None:
    """Configure application logging."""

    level = logging._nameToLevel.get(str(level_name).upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    set_level(level)


def parse_args(argv: list[str]) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        argv: Raw command-line arguments.

    Returns:
        Parsed arguments namespace.
    """

    parser = argparse.ArgumentParser(
        description="Watch SSH targets and open sessions to them."
    )
    parser.add_argument(
        "--mode",
        choices=[mode.value for mode in ConnectionMode],
        help="Connection mode (defaults to connection_mode from config).",
    )
    parser.add_argument(
        "--connect",
        metavar="NAME_OR_ID",
        help="Connect to one target and exit.",
    )
    parser.add_argument(
        "--probe",
        action="store_true",
        help="Probe every target once, print a table and exit.",
    )
    parser.add_argument(
        "--diagnostics",
        action="store_true",
        help="Run diagnostics probes and exit.",
    )
    parser.add_argument(
        "--tick-rate",
        type=float,
        default=None,
        help="Seconds between orchestrator ticks in watch mode.",
    )
    return parser.parse_args(argv)


def build_orchestrator(config: dict, mode: ConnectionMode, targets: list[Target]) -> Orchestrator:
    """Wire the orchestrator and its helpers from loaded config."""

    settings = OrchestratorSettings.from_config(config)
    launcher = ConnectionLauncher(
        surface=ConsoleSurface(),
        options=SSHOptions.from_config(config),
        verify_timeout_s=settings.verify_timeout_s,
    )
    return Orchestrator(
        TargetRegistry(targets, history_limit=settings.history_limit),
        mode=mode,
        settings=settings,
        launcher=launcher,
    )


def print_probe_table(orchestrator: Orchestrator) -> None:
    rows = []
    for target in sorted(orchestrator.registry.targets(), key=lambda t: t.name):
        result = orchestrator.probe_now(target.id)
        latency = f"{result.latency_ms}ms" if result.latency_ms is not None else "-"
        rows.append(
            (
                target.name,
                target.connection_string,
                result.health.label,
                result.security.label,
                latency,
                result.error or "",
            )
        )

    headers = ("Name", "Address", "Health", "Security", "Latency", "Error")
    if Table is None:
        print("  ".join(headers))
        for row in rows:
            print("  ".join(row))
        return

    table = Table(title="Target health")
    for header in headers:
        table.add_column(header)
    for row in rows:
        table.add_row(*row)
    console.print(table)


def run_watch(orchestrator: Orchestrator, tick_rate_s: float) -> None:
    """Monitor targets until interrupted, logging notifications."""

    stop_event = threading.Event()
    orchestrator.start_monitor()
    log_info(f"Watching {len(orchestrator.registry)} target(s); press Ctrl+C to stop.", style="bold green")
    try:
        orchestrator.run(stop_event, tick_rate_s=tick_rate_s)
    except KeyboardInterrupt:
        logger.info("Program terminated by user")
    finally:
        stop_event.set()
        orchestrator.stop_monitor()
        summary = ", ".join(
            f"{target.name}={target.health.label}" for target in orchestrator.registry.targets()
        )
        if summary:
            logger.info("Final state: %s", summary)


def main(argv: list[str] | None = None) -> int:
    """Application entry point.

    Args:
        argv: Optional list of command-line arguments.

    Returns:
        Process exit code.
    """

    if argv is None:
        argv = sys.argv[1:]
    args = parse_args(argv)

    if args.diagnostics:
        from diagnostics.run import main as run_diagnostics_main

        return run_diagnostics_main()

    try:
        config_controller = ConfigController.get_instance()
    except (OSError, ValueError) as exc:
        log_error(f"Failed to load configuration: {exc}")
        return 1
    config = config_controller.get_config()
    configure_logging(config.get("logging_level", "INFO"))

    if config.get("file_logging_enabled", False):
        log_file_path = Path(str(config.get("log_file", "hostwarden.log"))).expanduser()
        enable_file_logging(log_file_path)
        logger.info("Writing logs to %s", log_file_path)

    mode = ConnectionMode.parse(args.mode or config.get("connection_mode"))
    targets = config_controller.get_targets()
    orchestrator = build_orchestrator(config, mode, targets)

    if args.probe:
        print_probe_table(orchestrator)
        return 0

    if args.connect:
        target = orchestrator.registry.find(args.connect)
        if target is None:
            log_error(f"Unknown target: {args.connect}")
            return 1
        result = orchestrator.connect(target.id)
        for notification in orchestrator.pop_notifications():
            if notification.level == "info":
                log_info(notification.message)
            elif notification.level == "warning":
                log_warning(notification.message)
            else:
                log_error(notification.message)
        if result is None:
            return 1
        return result.exit_code or 0

    tick_rate_s = args.tick_rate
    if tick_rate_s is None:
        tick_rate_s = float((config.get("ui") or {}).get("tick_rate_s", 0.25))
    run_watch(orchestrator, tick_rate_s)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
