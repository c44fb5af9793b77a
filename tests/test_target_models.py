"""Tests for target models and the target registry."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from core.registry import TargetRegistry
from core.target_models import (
    ActiveSession,
    AuthKind,
    AuthMethod,
    ConnectionMode,
    HealthState,
    ProbeResult,
    SecurityAssessment,
    Target,
)


def test_target_validates_host_and_port() -> None:
    with pytest.raises(ValueError):
        Target(name="x", host="", user="u")
    with pytest.raises(ValueError):
        Target(name="x", host="h", user="u", port=0)
    assert Target(name="x", host="h", user="u", port=65535).port == 65535


def test_auth_method_requires_key_path_only_for_keys() -> None:
    with pytest.raises(ValueError):
        AuthMethod(AuthKind.KEY)
    with pytest.raises(ValueError):
        AuthMethod(AuthKind.AGENT, key_path="~/.ssh/id")
    assert AuthMethod.from_value({"type": "key", "key_path": "~/k"}).key_path == "~/k"
    assert AuthMethod.from_value(None).kind is AuthKind.AGENT


def test_connection_mode_parse_aliases() -> None:
    assert ConnectionMode.parse("new_terminal") is ConnectionMode.NEW_WINDOW
    assert ConnectionMode.parse("DIRECT") is ConnectionMode.DIRECT
    assert ConnectionMode.parse(None) is ConnectionMode.AUTO
    with pytest.raises(ValueError):
        ConnectionMode.parse("teleport")


def test_target_dict_round_trip_keeps_identity() -> None:
    target = Target(
        name="web",
        host="10.0.0.5",
        user="deploy",
        port=2200,
        auth=AuthMethod.key("~/.ssh/id_ed25519"),
        tags=["prod"],
    )
    target.health = HealthState.ONLINE

    restored = Target.from_dict(target.to_dict())

    assert restored.id == target.id
    assert restored.auth == target.auth
    assert restored.created_at == target.created_at
    assert restored.health is HealthState.UNKNOWN


def test_probe_results_update_stats() -> None:
    target = Target(name="web", host="h", user="u")
    online = ProbeResult(HealthState.ONLINE, SecurityAssessment.SECURE, latency_s=0.02)
    offline = ProbeResult(HealthState.OFFLINE, SecurityAssessment.UNKNOWN, latency_s=0.04, error="x")

    target.apply_probe_result(online)
    target.apply_probe_result(offline)
    target.apply_probe_result(online)

    assert target.health is HealthState.ONLINE
    assert target.stats.connection_count == 2
    assert target.stats.failed_attempts == 1
    assert round(target.stats.uptime_percentage, 1) == 66.7
    assert target.stats.average_latency_ms() == pytest.approx((20 + 40 + 20) / 3)


def test_session_duration_format() -> None:
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    session = ActiveSession(pid=10, started_at=start, label="SSH: web", target_id="t")

    assert session.format_duration(start + timedelta(seconds=42)) == "42s"
    assert session.format_duration(start + timedelta(minutes=3, seconds=5)) == "3m 5s"
    assert session.format_duration(start + timedelta(hours=2, minutes=1)) == "2h 1m 0s"


def test_registry_lookup_filter_and_history() -> None:
    web = Target(name="web", host="10.0.0.5", user="deploy")
    db = Target(name="db", host="10.0.0.6", user="postgres")
    registry = TargetRegistry([web, db], history_limit=2)
    db.health = HealthState.ONLINE

    with pytest.raises(ValueError):
        registry.add(web)
    assert registry.find("WEB") is web
    assert registry.find(db.id) is db
    assert [t.name for t in registry.filtered("10.0.0")] == ["db", "web"]
    assert registry.filtered("postgres") == [db]
    assert registry.filtered(only_online=True) == [db]
    assert registry.online_count() == 1

    for target in (web, db, web):
        registry.add_history(target)
    assert [entry.target_name for entry in registry.history()] == ["web", "db"]
