"""Tests for reachability and security probes."""

from __future__ import annotations

import socket
import time

import pytest

from core.target_models import (
    AuthMethod,
    HealthState,
    SecurityAssessment,
    Target,
)
from services import health_probes
from services.health_probes import assess_security, probe_target


def _target(port: int = 22, auth: AuthMethod | None = None, host: str = "127.0.0.1") -> Target:
    return Target(name="t", host=host, user="me", port=port, auth=auth or AuthMethod.agent())


def test_security_assessment_covers_every_port() -> None:
    key = AuthMethod.key("~/.ssh/id_ed25519")
    for port in range(1, 65536):
        assert assess_security(key, port) is SecurityAssessment.SECURE
        assert assess_security(AuthMethod.agent(), port) is SecurityAssessment.SECURE
        assert assess_security(AuthMethod.interactive(), port) is SecurityAssessment.UNKNOWN
        expected = SecurityAssessment.VULNERABLE if port == 22 else SecurityAssessment.SECURE
        assert assess_security(AuthMethod.password(), port) is expected


def test_probe_refused_port_is_offline_within_timeout() -> None:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]

    start = time.monotonic()
    result = probe_target(_target(port=port), timeout_s=1.0)

    assert time.monotonic() - start < 1.5
    assert result.health is HealthState.OFFLINE
    assert result.security is SecurityAssessment.UNKNOWN
    assert result.error.startswith("Connection failed")
    assert result.latency_s is not None


def test_probe_listening_port_is_online() -> None:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as server:
        server.bind(("127.0.0.1", 0))
        server.listen(1)
        port = server.getsockname()[1]

        result = probe_target(_target(port=port, auth=AuthMethod.password()), timeout_s=1.0)

    assert result.health is HealthState.ONLINE
    assert result.security is SecurityAssessment.SECURE
    assert result.error is None
    assert result.latency_ms is not None and result.latency_ms >= 0


@pytest.mark.parametrize(
    ("exc", "prefix"),
    [
        (socket.timeout("timed out"), "Connection timeout"),
        (socket.gaierror(-2, "Name or service not known"), "Name resolution failed"),
        (ConnectionRefusedError(111, "refused"), "Connection failed"),
        (RuntimeError("boom"), "Probe error: boom"),
    ],
)
def test_probe_maps_errors_to_offline(monkeypatch, exc, prefix) -> None:
    def _raise(*_args, **_kwargs):
        raise exc

    monkeypatch.setattr(health_probes.socket, "getaddrinfo", _raise)

    result = probe_target(_target(host="unreachable.invalid"), timeout_s=0.1)

    assert result.health is HealthState.OFFLINE
    assert result.security is SecurityAssessment.UNKNOWN
    assert result.error.startswith(prefix)
    assert result.latency_s is not None


def test_slow_name_resolution_is_bounded_by_timeout(monkeypatch) -> None:
    def _slow_lookup(*_args, **_kwargs):
        time.sleep(1.5)
        raise socket.gaierror(-2, "Name or service not known")

    monkeypatch.setattr(health_probes.socket, "getaddrinfo", _slow_lookup)

    start = time.monotonic()
    result = probe_target(_target(host="slow-dns.example"), timeout_s=0.2)
    elapsed = time.monotonic() - start

    assert elapsed < 0.7
    assert result.health is HealthState.OFFLINE
    assert result.error == "Connection timeout"


def test_connect_uses_remaining_budget(monkeypatch) -> None:
    seen = {}

    def _lookup(host, port, type):
        seen["lookup"] = (host, port, type)
        return [(socket.AF_INET, socket.SOCK_STREAM, 0, "", ("127.0.0.1", port))]

    def _connect_any(infos, deadline):
        seen["remaining"] = deadline - time.monotonic()
        seen["sockaddr"] = infos[0][4]

    monkeypatch.setattr(health_probes.socket, "getaddrinfo", _lookup)
    monkeypatch.setattr(health_probes, "_connect_any", _connect_any)

    result = probe_target(_target(port=2222), timeout_s=3.0)

    assert result.health is HealthState.ONLINE
    assert seen["lookup"] == ("127.0.0.1", 2222, socket.SOCK_STREAM)
    assert seen["sockaddr"] == ("127.0.0.1", 2222)
    assert 0 < seen["remaining"] <= 3.0
