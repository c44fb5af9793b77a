"""Background monitoring, launching and session services."""

from services.connection_launcher import ConnectionLauncher, LaunchError, LaunchResult
from services.health_monitor import HealthMonitor
from services.orchestrator import Orchestrator
from services.session_registry import SessionRegistry
from services.terminal_detector import TerminalDetector

__all__ = [
    "ConnectionLauncher",
    "HealthMonitor",
    "LaunchError",
    "LaunchResult",
    "Orchestrator",
    "SessionRegistry",
    "TerminalDetector",
]
