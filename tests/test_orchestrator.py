"""Tests for the orchestrator tick, notifications and connection flow."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
import itertools
import threading

from core.registry import TargetRegistry
from core.target_models import (
    ConnectionMode,
    HealthState,
    HealthUpdateMessage,
    ProbeResult,
    SecurityAssessment,
    Target,
)
from services.connection_launcher import LaunchError, LaunchErrorKind, LaunchResult
from services.health_monitor import HealthMonitor
from services.orchestrator import Orchestrator, OrchestratorSettings
from services.session_registry import SessionRegistry


def _reset_singletons() -> None:
    Orchestrator._instance = None


def _result(health: HealthState) -> ProbeResult:
    security = SecurityAssessment.SECURE if health is HealthState.ONLINE else SecurityAssessment.UNKNOWN
    return ProbeResult(health=health, security=security, latency_s=0.01)


class _FakeLauncher:
    def __init__(self, outcome=None) -> None:
        self.outcome = outcome
        self.calls: list[tuple[str, ConnectionMode]] = []
        self._pids = itertools.count(1000)
        self._lock = threading.Lock()

    def decide_and_launch(self, target: Target, mode: ConnectionMode) -> LaunchResult:
        with self._lock:
            self.calls.append((target.id, mode))
            pid = next(self._pids)
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome or LaunchResult(pid=pid, spawned=True, terminal="xterm")


def _orchestrator(launcher=None, probe=None, alive=None) -> tuple[Orchestrator, Target]:
    _reset_singletons()
    target = Target(name="web", host="10.0.0.5", user="deploy")
    registry = TargetRegistry([target])
    alive_pids = alive if alive is not None else set(range(1000, 2000))
    monitor = HealthMonitor(60.0, probe=probe or (lambda _t, _timeout: _result(HealthState.ONLINE)))
    orchestrator = Orchestrator(
        registry,
        mode=ConnectionMode.AUTO,
        settings=OrchestratorSettings(notification_ttl_s=60.0),
        monitor=monitor,
        launcher=launcher or _FakeLauncher(),
        sessions=SessionRegistry(
            registry,
            is_alive=lambda pid: pid in alive_pids,
            terminate=lambda pid: alive_pids.discard(pid) is None,
        ),
    )
    return orchestrator, target


def _messages(orchestrator: Orchestrator) -> list[str]:
    return [notification.message for notification in orchestrator.pop_notifications()]


def test_second_instance_is_rejected() -> None:
    orchestrator, _target = _orchestrator()
    try:
        Orchestrator()
    except RuntimeError:
        pass
    else:
        raise AssertionError("expected RuntimeError")
    assert Orchestrator.get_instance() is orchestrator
    _reset_singletons()


def test_notifications_fire_on_settled_boundaries_only() -> None:
    orchestrator, target = _orchestrator()

    def _apply(health: HealthState) -> None:
        orchestrator.apply_update(HealthUpdateMessage(target_id=target.id, result=_result(health)))

    _apply(HealthState.ONLINE)
    assert _messages(orchestrator) == []

    _apply(HealthState.OFFLINE)
    assert _messages(orchestrator) == ["web went offline"]

    _apply(HealthState.OFFLINE)
    _apply(HealthState.UNKNOWN)
    assert _messages(orchestrator) == []

    _apply(HealthState.ONLINE)
    assert _messages(orchestrator) == ["web is back online"]
    assert target.health is HealthState.ONLINE
    _reset_singletons()


def test_updates_for_removed_targets_are_ignored() -> None:
    orchestrator, target = _orchestrator()
    orchestrator.remove_target(target.id)

    orchestrator.apply_update(HealthUpdateMessage(target_id=target.id, result=_result(HealthState.OFFLINE)))

    assert len(orchestrator.registry) == 0
    assert orchestrator.monitor.snapshot() == ()
    _reset_singletons()


def test_connect_auto_success_tracks_session_and_history() -> None:
    launcher = _FakeLauncher()
    orchestrator, target = _orchestrator(launcher=launcher)

    result = orchestrator.connect(target.id)

    assert result.spawned is True
    assert launcher.calls == [(target.id, ConnectionMode.AUTO)]
    assert target.health is HealthState.ONLINE
    assert target.stats.connection_count == 1
    assert [session.pid for session in target.sessions] == [result.pid]
    assert target.sessions[0].label == "SSH: web"
    assert orchestrator.registry.history()[0].target_id == target.id
    _reset_singletons()


def test_connect_new_window_without_terminal_notifies_error() -> None:
    error = LaunchError(
        LaunchErrorKind.NO_TERMINAL,
        "No terminal emulator available for new-window mode. Supported terminals: XTerm",
    )
    orchestrator, target = _orchestrator(launcher=_FakeLauncher(outcome=error))

    orchestrator.apply_update(HealthUpdateMessage(target_id=target.id, result=_result(HealthState.ONLINE)))

    result = orchestrator.connect(target.id, ConnectionMode.NEW_WINDOW)

    assert result is None
    assert target.health is HealthState.ONLINE
    assert target.stats.failed_attempts == 0
    assert target.sessions == []
    notes = orchestrator.pop_notifications()
    assert [note.level for note in notes] == ["error"]
    assert "Supported terminals" in notes[0].message
    _reset_singletons()


def test_spawn_failure_keeps_target_online() -> None:
    error = LaunchError(LaunchErrorKind.SPAWN_FAILED, "Failed to spawn XTerm: permission denied")
    orchestrator, target = _orchestrator(launcher=_FakeLauncher(outcome=error))
    orchestrator.apply_update(HealthUpdateMessage(target_id=target.id, result=_result(HealthState.ONLINE)))

    assert orchestrator.connect(target.id) is None

    assert target.health is HealthState.ONLINE
    assert "web went offline" not in _messages(orchestrator)
    _reset_singletons()


def test_unreachable_connect_marks_target_offline() -> None:
    error = LaunchError(LaunchErrorKind.UNREACHABLE, "Cannot connect: Connection timeout")
    orchestrator, target = _orchestrator(launcher=_FakeLauncher(outcome=error))
    orchestrator.apply_update(HealthUpdateMessage(target_id=target.id, result=_result(HealthState.ONLINE)))

    assert orchestrator.connect(target.id) is None

    assert target.health is HealthState.OFFLINE
    assert target.stats.failed_attempts == 1
    assert _messages(orchestrator) == ["web went offline", "Connection Error:\nCannot connect: Connection timeout"]
    _reset_singletons()


def test_direct_session_is_not_tracked() -> None:
    outcome = LaunchResult(pid=1, spawned=False, exit_code=0)
    orchestrator, target = _orchestrator(launcher=_FakeLauncher(outcome=outcome))

    orchestrator.connect(target.id, ConnectionMode.DIRECT)

    assert target.sessions == []
    assert target.stats.connection_count == 1
    _reset_singletons()


def test_concurrent_connects_leave_well_formed_sessions() -> None:
    orchestrator, target = _orchestrator()

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _i: orchestrator.connect(target.id), range(20)))

    pids = [session.pid for session in target.sessions]
    assert sorted(pids) == sorted(result.pid for result in results)
    assert len(set(pids)) == 20
    assert all(session.target_id == target.id for session in target.sessions)
    _reset_singletons()


def test_tick_reconciles_dead_sessions() -> None:
    alive = {1000}
    orchestrator, target = _orchestrator(alive=alive)
    orchestrator.connect(target.id)
    alive.clear()

    orchestrator.tick()

    assert target.sessions == []
    assert orchestrator.ticks == 1
    _reset_singletons()


def test_requests_are_served_on_tick() -> None:
    launcher = _FakeLauncher()
    orchestrator, target = _orchestrator(launcher=launcher)
    orchestrator.request_connect(target.id)
    orchestrator.request_connect("missing")

    assert launcher.calls == []
    orchestrator.tick()

    assert launcher.calls == [(target.id, ConnectionMode.AUTO)]
    assert orchestrator.pending_requests() == 0
    assert "Unknown target missing" in _messages(orchestrator)

    pid = target.sessions[0].pid
    orchestrator.request_kill(pid)
    orchestrator.tick()
    assert target.sessions == []
    _reset_singletons()


def test_kill_all_summary_notification() -> None:
    orchestrator, target = _orchestrator()
    orchestrator.connect(target.id)
    orchestrator.connect(target.id)
    orchestrator.pop_notifications()

    summary = orchestrator.kill_all_sessions()

    assert summary.killed == 2
    assert summary.failed == 0
    assert _messages(orchestrator) == ["Killed 2 SSH sessions"]
    _reset_singletons()


def test_refresh_probes_and_reports() -> None:
    orchestrator, target = _orchestrator(probe=lambda _t, _timeout: _result(HealthState.OFFLINE))

    count = orchestrator.refresh()

    assert count == 1
    assert target.health is HealthState.OFFLINE
    assert target.stats.failed_attempts == 1
    assert _messages(orchestrator)[-1].startswith("Refreshed 1 target(s)")
    _reset_singletons()


def test_tick_step_errors_are_counted_not_raised(monkeypatch) -> None:
    orchestrator, _target = _orchestrator()

    def _boom() -> int:
        raise RuntimeError("reconcile failed")

    monkeypatch.setattr(orchestrator, "reconcile_sessions", _boom)
    orchestrator.tick()
    orchestrator.tick()

    assert orchestrator.errors == 2
    assert orchestrator.ticks == 2
    _reset_singletons()


def test_run_exits_when_stop_event_is_set() -> None:
    orchestrator, _target = _orchestrator()
    stop_event = threading.Event()
    stop_event.set()

    orchestrator.run(stop_event, tick_rate_s=0.01)

    assert orchestrator.ticks == 0
    _reset_singletons()


def test_settings_from_config() -> None:
    settings = OrchestratorSettings.from_config(
        {"health": {"check_interval_s": 5, "max_parallel_probes": 2}, "ui": {"notification_ttl_s": 1}}
    )

    assert settings.check_interval_s == 5.0
    assert settings.max_parallel_probes == 2
    assert settings.notification_ttl_s == 1.0
    assert settings.quick_timeout_s == 5.0
