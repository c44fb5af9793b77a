"""Reachability and security probes for remote targets."""

from __future__ import annotations

import queue
import socket
import threading
import time
from typing import Any

from core.target_models import (
    DEFAULT_SSH_PORT,
    AuthKind,
    AuthMethod,
    HealthState,
    ProbeResult,
    SecurityAssessment,
    Target,
)


QUICK_PROBE_TIMEOUT_S = 5.0
VERIFY_PROBE_TIMEOUT_S = 10.0
_MIN_TIMEOUT_S = 0.05

# Password auth is only flagged on the well-known port.
_SECURITY_BY_AUTH = {
    AuthKind.KEY: (SecurityAssessment.SECURE, SecurityAssessment.SECURE),
    AuthKind.AGENT: (SecurityAssessment.SECURE, SecurityAssessment.SECURE),
    AuthKind.PASSWORD: (SecurityAssessment.VULNERABLE, SecurityAssessment.SECURE),
    AuthKind.INTERACTIVE: (SecurityAssessment.UNKNOWN, SecurityAssessment.UNKNOWN),
}


def assess_security(auth: AuthMethod, port: int) -> SecurityAssessment:
    """Classify a target from its auth variant and port."""

    on_default_port, elsewhere = _SECURITY_BY_AUTH[auth.kind]
    return on_default_port if port == DEFAULT_SSH_PORT else elsewhere


def resolve_address(host: str, port: int, timeout_s: float) -> list[tuple[Any, ...]]:
    """Run ``getaddrinfo`` on a helper thread, giving up after ``timeout_s``.

    Raises:
        socket.timeout: when resolution does not finish in time. The helper
            thread is left to finish on its own.
    """

    outcome: "queue.Queue[tuple[bool, Any]]" = queue.Queue(maxsize=1)

    def _lookup() -> None:
        try:
            outcome.put((True, socket.getaddrinfo(host, port, type=socket.SOCK_STREAM)))
        except Exception as exc:  # noqa: BLE001 - re-raised on the caller thread
            outcome.put((False, exc))

    threading.Thread(target=_lookup, name="probe-resolve", daemon=True).start()
    try:
        ok, value = outcome.get(timeout=timeout_s)
    except queue.Empty:
        raise socket.timeout("name resolution timed out") from None
    if not ok:
        raise value
    return value


def _connect_any(infos: list[tuple[Any, ...]], deadline: float) -> None:
    last_error: OSError | None = None
    for family, socktype, proto, _canonname, sockaddr in infos:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise socket.timeout("connect timed out")
        try:
            with socket.socket(family, socktype, proto) as sock:
                sock.settimeout(remaining)
                sock.connect(sockaddr)
            return
        except socket.timeout:
            raise
        except OSError as exc:
            last_error = exc
    raise last_error or OSError("no addresses to connect to")


def probe_target(target: Target, timeout_s: float = QUICK_PROBE_TIMEOUT_S) -> ProbeResult:
    """Probe TCP reachability of a target. Never raises.

    ``timeout_s`` bounds name resolution and the connect together.
    """

    timeout_s = max(float(timeout_s), _MIN_TIMEOUT_S)
    start = time.monotonic()
    deadline = start + timeout_s
    try:
        infos = resolve_address(target.host, target.port, timeout_s)
        _connect_any(infos, deadline)
        latency_s = time.monotonic() - start
        return ProbeResult(
            health=HealthState.ONLINE,
            security=assess_security(target.auth, target.port),
            latency_s=latency_s,
        )
    except socket.timeout:
        error = "Connection timeout"
    except socket.gaierror as exc:
        error = f"Name resolution failed: {exc}"
    except OSError as exc:
        error = f"Connection failed: {exc}"
    except Exception as exc:  # noqa: BLE001 - probe should not raise
        error = f"Probe error: {exc}"

    return ProbeResult(
        health=HealthState.OFFLINE,
        security=SecurityAssessment.UNKNOWN,
        latency_s=time.monotonic() - start,
        error=error,
    )
