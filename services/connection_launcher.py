"""Decide how to open an SSH session and launch it.

A launch always starts with a verification probe. Reachable targets are then
opened in a detached terminal-emulator window, or in the caller's own
terminal, depending on the connection mode and on which terminals exist.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import os
import subprocess
import sys
from typing import Any, Callable, Mapping

from core.logging import console, logger as LOGGER
from core.target_models import (
    AuthKind,
    ConnectionMode,
    HealthState,
    ProbeResult,
    Target,
)
from interaction.terminal_surface import NullSurface, TerminalSurface
from services.health_probes import VERIFY_PROBE_TIMEOUT_S, probe_target
from services.terminal_detector import TerminalDetector, TerminalSpec


class LaunchErrorKind(str, Enum):
    """Reasons a launch can fail."""

    UNREACHABLE = "unreachable"
    NO_TERMINAL = "no_terminal"
    SPAWN_FAILED = "spawn_failed"
    EXEC_FAILED = "exec_failed"


class LaunchError(RuntimeError):
    """Non-fatal launch failure reported back to the orchestrator."""

    def __init__(self, kind: LaunchErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind


@dataclass(frozen=True)
class LaunchResult:
    """Outcome of a successful launch."""

    pid: int
    spawned: bool
    terminal: str | None = None
    exit_code: int | None = None


@dataclass(frozen=True)
class SSHOptions:
    """Client options added to every ssh command line."""

    binary: str = "ssh"
    server_alive_interval: int = 60
    server_alive_count_max: int = 3
    connect_timeout: int = 10
    pause_after_direct: bool = True

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "SSHOptions":
        ssh_cfg = config.get("ssh") if isinstance(config, Mapping) else None
        if not isinstance(ssh_cfg, Mapping):
            return cls()
        return cls(
            binary=str(ssh_cfg.get("binary", "ssh")),
            server_alive_interval=int(ssh_cfg.get("server_alive_interval", 60)),
            server_alive_count_max=int(ssh_cfg.get("server_alive_count_max", 3)),
            connect_timeout=int(ssh_cfg.get("connect_timeout", 10)),
            pause_after_direct=bool(ssh_cfg.get("pause_after_direct", True)),
        )


def build_ssh_command(target: Target, options: SSHOptions | None = None) -> list[str]:
    """Build the ssh argv for ``target``, expanding ``~`` in key paths."""

    options = options or SSHOptions()
    argv = [options.binary, "-p", str(target.port)]

    auth = target.auth
    if auth.kind is AuthKind.KEY:
        argv += ["-i", os.path.expanduser(str(auth.key_path))]
    elif auth.kind is AuthKind.PASSWORD:
        argv += ["-o", "PreferredAuthentications=password"]
    elif auth.kind is AuthKind.INTERACTIVE:
        argv += ["-o", "PreferredAuthentications=keyboard-interactive"]

    argv += [
        "-o", f"ServerAliveInterval={options.server_alive_interval}",
        "-o", f"ServerAliveCountMax={options.server_alive_count_max}",
        "-o", f"ConnectTimeout={options.connect_timeout}",
        "-o", "BatchMode=no",
    ]
    argv.append(f"{target.user}@{target.host}" if target.user else target.host)
    return argv


def _detach_kwargs() -> dict[str, Any]:
    if sys.platform == "win32":
        flags = getattr(subprocess, "DETACHED_PROCESS", 0) | getattr(
            subprocess, "CREATE_NEW_PROCESS_GROUP", 0
        )
        return {"creationflags": flags}
    return {"start_new_session": True}


class ConnectionLauncher:
    """Verify a target and open an interactive session to it."""

    def __init__(
        self,
        detector: TerminalDetector | None = None,
        *,
        surface: TerminalSurface | None = None,
        options: SSHOptions | None = None,
        verify_timeout_s: float = VERIFY_PROBE_TIMEOUT_S,
        probe: Callable[[Target, float], ProbeResult] = probe_target,
        popen: Callable[..., Any] = subprocess.Popen,
        run: Callable[..., Any] = subprocess.run,
        wait_for_enter: Callable[[], None] | None = None,
    ) -> None:
        self.detector = detector or TerminalDetector()
        self.surface = surface or NullSurface()
        self.options = options or SSHOptions()
        self._verify_timeout_s = float(verify_timeout_s)
        self._probe = probe
        self._popen = popen
        self._run = run
        self._wait_for_enter = wait_for_enter or _wait_for_enter

    def decide_and_launch(self, target: Target, mode: ConnectionMode) -> LaunchResult:
        """Launch a session for ``target`` according to ``mode``.

        Raises:
            LaunchError: when the target is unreachable, no terminal is
                available for new-window mode, or the OS refuses to start
                the process.
        """

        LOGGER.info("[Launch] Connecting to %s (%s) with mode %s", target.name, target.connection_string, mode.value)
        result = self._probe(target, self._verify_timeout_s)
        if result.health is not HealthState.ONLINE:
            raise LaunchError(
                LaunchErrorKind.UNREACHABLE,
                f"Cannot connect: {result.error or 'Connection failed'}",
            )

        if mode is ConnectionMode.DIRECT:
            return self.launch_direct(target)

        terminal = self.detector.detect()
        if terminal is not None:
            return self.launch_in_new_window(target, terminal)
        if mode is ConnectionMode.NEW_WINDOW:
            names = ", ".join(self.detector.supported_names())
            raise LaunchError(
                LaunchErrorKind.NO_TERMINAL,
                "No terminal emulator available for new-window mode. "
                f"Supported terminals: {names}",
            )
        LOGGER.warning("[Launch] No suitable terminal found for a new window; using direct mode.")
        return self.launch_direct(target)

    def launch_in_new_window(self, target: Target, terminal: TerminalSpec) -> LaunchResult:
        argv = terminal.build_command(build_ssh_command(target, self.options))
        LOGGER.debug("[Launch] Terminal command: %s", argv)
        try:
            child = self._popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                close_fds=True,
                **_detach_kwargs(),
            )
        except OSError as exc:
            raise LaunchError(
                LaunchErrorKind.SPAWN_FAILED,
                f"Failed to spawn {terminal.display_name}: {exc}",
            ) from exc
        pid = int(child.pid)
        LOGGER.info("[Launch] Spawned %s for %s with pid %s", terminal.display_name, target.name, pid)
        return LaunchResult(pid=pid, spawned=True, terminal=terminal.key)

    def launch_direct(self, target: Target) -> LaunchResult:
        """Run ssh in the caller's terminal and block until it exits."""

        argv = build_ssh_command(target, self.options)
        with self.surface.suspended():
            self._print_banner(target)
            try:
                completed = self._run(argv)
            except OSError as exc:
                self._print(f"\nFailed to execute SSH command: {exc}")
                self._pause()
                raise LaunchError(
                    LaunchErrorKind.EXEC_FAILED,
                    f"SSH execution failed: {exc}",
                ) from exc
            exit_code = int(completed.returncode)
            self._print("\n" + "=" * 50)
            if exit_code == 0:
                self._print(f"Disconnected from {target.name} successfully")
            else:
                self._print(f"Connection to {target.name} ended with exit code: {exit_code}")
            self._pause()
        return LaunchResult(pid=os.getpid(), spawned=False, exit_code=exit_code)

    def _print_banner(self, target: Target) -> None:
        self._print(f"Connecting to {target.name}...")
        self._print(f"   Host: {target.host}:{target.port}")
        self._print(f"   User: {target.user}")
        self._print(f"   Auth: {target.auth.describe()}")
        self._print("\nPress Ctrl+C to disconnect\n")

    def _print(self, message: str) -> None:
        if console is not None:
            console.print(message, markup=False, highlight=False)
        else:
            print(message, file=sys.stderr)

    def _pause(self) -> None:
        if not self.options.pause_after_direct:
            return
        self._print("Press Enter to return...")
        self._wait_for_enter()


def _wait_for_enter() -> None:
    try:
        input()
    except EOFError:
        pass
