"""Orchestrator tying health monitoring, launching and session tracking together."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
import threading
import time
from typing import Any, Callable, Deque, Iterable, Mapping

from core.logging import logger as LOGGER
from core.registry import HISTORY_LIMIT, TargetRegistry
from core.target_models import (
    ConnectionMode,
    HealthState,
    HealthUpdateMessage,
    KillSummary,
    Notification,
    ProbeResult,
    Target,
)
from services.connection_launcher import (
    ConnectionLauncher,
    LaunchError,
    LaunchErrorKind,
    LaunchResult,
)
from services.health_monitor import HealthMonitor
from services.health_probes import QUICK_PROBE_TIMEOUT_S, VERIFY_PROBE_TIMEOUT_S
from services.session_registry import SessionRegistry


_SETTLED_STATES = {HealthState.ONLINE, HealthState.OFFLINE}


@dataclass(frozen=True)
class OrchestratorSettings:
    """Tunables for the orchestrator and the monitor it owns."""

    check_interval_s: float = 30.0
    quick_timeout_s: float = QUICK_PROBE_TIMEOUT_S
    verify_timeout_s: float = VERIFY_PROBE_TIMEOUT_S
    max_parallel_probes: int = 8
    stop_grace_s: float = 1.0
    notification_ttl_s: float = 4.0
    notification_limit: int = 20
    history_limit: int = HISTORY_LIMIT

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "OrchestratorSettings":
        health_cfg = config.get("health") or {}
        ui_cfg = config.get("ui") or {}
        return cls(
            check_interval_s=float(health_cfg.get("check_interval_s", 30.0)),
            quick_timeout_s=float(health_cfg.get("quick_timeout_s", QUICK_PROBE_TIMEOUT_S)),
            verify_timeout_s=float(health_cfg.get("verify_timeout_s", VERIFY_PROBE_TIMEOUT_S)),
            max_parallel_probes=int(health_cfg.get("max_parallel_probes", 8)),
            stop_grace_s=float(health_cfg.get("stop_grace_s", 1.0)),
            notification_ttl_s=float(ui_cfg.get("notification_ttl_s", 4.0)),
            history_limit=int(ui_cfg.get("history_limit", HISTORY_LIMIT)),
        )


@dataclass(frozen=True)
class _Request:
    kind: str
    target_id: str | None = None
    pid: int | None = None


class Orchestrator:
    """Singleton owner of the target registry and its background helpers.

    Every registry mutation happens on the thread that calls ``tick`` and the
    public operations; the health monitor only hands results over by value.
    """

    _instance: "Orchestrator | None" = None

    def __init__(
        self,
        registry: TargetRegistry | None = None,
        *,
        mode: ConnectionMode = ConnectionMode.AUTO,
        settings: OrchestratorSettings | None = None,
        monitor: HealthMonitor | None = None,
        launcher: ConnectionLauncher | None = None,
        sessions: SessionRegistry | None = None,
    ) -> None:
        if Orchestrator._instance is not None:
            raise RuntimeError("You cannot create another Orchestrator class")

        self.settings = settings or OrchestratorSettings()
        self.mode = ConnectionMode.parse(mode)
        self.registry = registry or TargetRegistry(history_limit=self.settings.history_limit)
        self.monitor = monitor or HealthMonitor(
            self.settings.check_interval_s,
            probe_timeout_s=self.settings.quick_timeout_s,
            max_parallel_probes=self.settings.max_parallel_probes,
        )
        self.launcher = launcher or ConnectionLauncher(
            verify_timeout_s=self.settings.verify_timeout_s
        )
        self.sessions = sessions or SessionRegistry(self.registry)
        self._monitor_thread: threading.Thread | None = None
        self._requests: Deque[_Request] = deque()
        self._requests_lock = threading.Lock()
        self._notifications: Deque[Notification] = deque(maxlen=self.settings.notification_limit)
        self._last_settled: dict[str, HealthState] = {}
        self._refresh_durations: list[float] = []
        self._ticks = 0
        self._errors = 0
        Orchestrator._instance = self

    @classmethod
    def get_instance(cls) -> "Orchestrator":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @property
    def ticks(self) -> int:
        return self._ticks

    @property
    def errors(self) -> int:
        return self._errors

    # Targets

    def add_target(self, target: Target) -> Target:
        self.registry.add(target)
        self.monitor.update_targets(self.registry.targets())
        return target

    def remove_target(self, target_id: str) -> Target | None:
        removed = self.registry.remove(target_id)
        self._last_settled.pop(target_id, None)
        self.monitor.update_targets(self.registry.targets())
        return removed

    # Monitoring

    def start_monitor(self, targets: Iterable[Target] | None = None) -> threading.Thread | None:
        snapshot = list(targets) if targets is not None else self.registry.targets()
        if not snapshot:
            LOGGER.info("[Orchestrator] No targets configured; health monitor not started.")
            return None
        self._monitor_thread = self.monitor.start(snapshot)
        return self._monitor_thread

    def stop_monitor(self) -> None:
        grace = self.monitor.probe_timeout_s + self.settings.stop_grace_s
        self.monitor.stop(join_timeout_s=grace)
        self._monitor_thread = None

    def probe_now(self, target_id: str) -> ProbeResult:
        target = self.registry.require(target_id)
        result = self.monitor.check_now(target)
        self.apply_update(HealthUpdateMessage(target_id=target_id, result=result))
        return result

    def refresh(self, target_ids: Iterable[str] | None = None) -> int:
        """Probe the given targets (or all) immediately. Returns the count probed."""

        ids = list(target_ids) if target_ids is not None else [t.id for t in self.registry.targets()]
        targets = [target for target in (self.registry.get(i) for i in ids) if target is not None]
        if not targets:
            self._notify("info", "No targets to refresh.")
            return 0
        for target in targets:
            target.health = HealthState.CONNECTING
        start = time.monotonic()
        for target in targets:
            self.probe_now(target.id)
        elapsed = time.monotonic() - start
        self._refresh_durations = (self._refresh_durations + [elapsed])[-20:]
        average_ms = int(sum(self._refresh_durations) / len(self._refresh_durations) * 1000)
        self._notify("info", f"Refreshed {len(targets)} target(s) | Avg time: {average_ms}ms")
        return len(targets)

    def apply_update(self, update: HealthUpdateMessage) -> None:
        target = self.registry.get(update.target_id)
        if target is None:
            LOGGER.debug("[Orchestrator] Dropping update for removed target %s", update.target_id)
            return
        target.apply_probe_result(update.result)
        self._track_reachability(target, update.result.health)

    # Connections

    def connect(self, target_id: str, mode: ConnectionMode | None = None) -> LaunchResult | None:
        """Launch a session; failures become notifications and return None."""

        target = self.registry.require(target_id)
        mode = ConnectionMode.parse(mode) if mode is not None else self.mode
        target.health = HealthState.CONNECTING
        try:
            result = self.launcher.decide_and_launch(target, mode)
        except LaunchError as exc:
            if exc.kind is LaunchErrorKind.UNREACHABLE:
                target.health = HealthState.OFFLINE
                target.stats.record_failure()
                self._track_reachability(target, HealthState.OFFLINE)
            else:
                # The verification probe succeeded; only the local launch failed.
                target.health = HealthState.ONLINE
                self._track_reachability(target, HealthState.ONLINE)
            LOGGER.warning("[Orchestrator] Connection to %s failed (%s): %s", target.name, exc.kind.value, exc)
            self._notify("error", f"Connection Error:\n{exc}")
            return None

        target.health = HealthState.ONLINE
        target.stats.record_connection()
        self._track_reachability(target, HealthState.ONLINE)
        if result.spawned:
            self.sessions.add(target.id, result.pid, f"SSH: {target.name}")
            self._notify("info", f"Launched SSH session for {target.name} (pid {result.pid})")
        else:
            self._notify("info", f"Session with {target.name} ended (exit code {result.exit_code})")
        self.registry.add_history(target)
        return result

    # Sessions

    def reconcile_sessions(self) -> int:
        return len(self.sessions.reconcile())

    def kill_session(self, pid: int) -> bool:
        killed = self.sessions.kill(pid)
        if killed:
            self._notify("info", f"Killed session pid {pid}")
        else:
            self._notify("warning", f"Failed to kill session pid {pid}")
        return killed

    def kill_all_sessions(self) -> KillSummary:
        summary = self.sessions.kill_all()
        if summary.failed:
            self._notify("warning", f"Killed {summary.killed} sessions\n{summary.failed} failed to kill")
        else:
            self._notify("info", f"Killed {summary.killed} SSH sessions")
        return summary

    # Requests raised between ticks

    def request_connect(self, target_id: str) -> None:
        self._enqueue(_Request("connect", target_id=target_id))

    def request_refresh(self, target_id: str | None = None) -> None:
        self._enqueue(_Request("refresh", target_id=target_id))

    def request_kill(self, pid: int) -> None:
        self._enqueue(_Request("kill", pid=pid))

    def request_kill_all(self) -> None:
        self._enqueue(_Request("kill_all"))

    def pending_requests(self) -> int:
        with self._requests_lock:
            return len(self._requests)

    # Tick

    def tick(self) -> None:
        """Drain monitor results, reconcile sessions, then serve requests."""

        self._ticks += 1
        self._guarded("drain", self._drain_updates)
        self._guarded("reconcile", self.reconcile_sessions)
        self._guarded("requests", self._serve_requests)
        self._expire_notifications()

    def run(self, stop_event: threading.Event, tick_rate_s: float = 0.25) -> None:
        """Tick until ``stop_event`` is set."""

        tick_rate_s = max(tick_rate_s, 0.01)
        while not stop_event.is_set():
            self.tick()
            for notification in self.pop_notifications():
                log = LOGGER.warning if notification.level != "info" else LOGGER.info
                log("[Orchestrator] %s", notification.message.replace("\n", " | "))
            stop_event.wait(timeout=tick_rate_s)

    # Notifications

    def notifications(self) -> list[Notification]:
        return list(self._notifications)

    def pop_notifications(self) -> list[Notification]:
        drained = list(self._notifications)
        self._notifications.clear()
        return drained

    def _notify(self, level: str, message: str) -> None:
        self._notifications.append(Notification(timestamp=time.time(), level=level, message=message))

    def _expire_notifications(self) -> None:
        cutoff = time.time() - self.settings.notification_ttl_s
        while self._notifications and self._notifications[0].timestamp < cutoff:
            self._notifications.popleft()

    # Internals

    def _track_reachability(self, target: Target, health: HealthState) -> None:
        if health not in _SETTLED_STATES:
            return
        previous = self._last_settled.get(target.id)
        self._last_settled[target.id] = health
        if previous is None or previous is health:
            return
        if health is HealthState.OFFLINE:
            self._notify("warning", f"{target.name} went offline")
        else:
            self._notify("info", f"{target.name} is back online")

    def _drain_updates(self) -> None:
        for update in self.monitor.drain_updates():
            self.apply_update(update)

    def _serve_requests(self) -> None:
        while True:
            with self._requests_lock:
                if not self._requests:
                    return
                request = self._requests.popleft()
            if request.kind == "connect" and request.target_id is not None:
                if request.target_id in self.registry:
                    self.connect(request.target_id)
                else:
                    self._notify("warning", f"Unknown target {request.target_id}")
            elif request.kind == "refresh":
                self.refresh([request.target_id] if request.target_id else None)
            elif request.kind == "kill" and request.pid is not None:
                self.kill_session(request.pid)
            elif request.kind == "kill_all":
                self.kill_all_sessions()

    def _enqueue(self, request: _Request) -> None:
        with self._requests_lock:
            self._requests.append(request)

    def _guarded(self, step: str, func: Callable[[], object]) -> None:
        try:
            func()
        except Exception as exc:
            self._errors += 1
            LOGGER.exception("[Orchestrator] Error during %s step (continuing): %s", step, exc)
