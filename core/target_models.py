"""Models for remote targets, health state and session tracking."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Deque, Mapping
import uuid


DEFAULT_SSH_PORT = 22
LATENCY_HISTORY_LIMIT = 10


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""

    return datetime.now(timezone.utc)


class HealthState(str, Enum):
    """Reachability classification for a target."""

    ONLINE = "online"
    OFFLINE = "offline"
    CONNECTING = "connecting"
    WARNING = "warning"
    UNKNOWN = "unknown"

    @property
    def label(self) -> str:
        return self.value.upper()


class SecurityAssessment(str, Enum):
    """Heuristic security posture of a target."""

    SECURE = "secure"
    VULNERABLE = "vulnerable"
    COMPROMISED = "compromised"
    UNKNOWN = "unknown"

    @property
    def label(self) -> str:
        return self.value.upper()


class AuthKind(str, Enum):
    """Supported authentication variants."""

    KEY = "key"
    AGENT = "agent"
    PASSWORD = "password"
    INTERACTIVE = "interactive"


class ConnectionMode(str, Enum):
    """Policy for launching interactive sessions."""

    AUTO = "auto"
    NEW_WINDOW = "new-window"
    DIRECT = "direct"

    @classmethod
    def parse(cls, value: "str | ConnectionMode | None") -> "ConnectionMode":
        if isinstance(value, ConnectionMode):
            return value
        if value is None:
            return cls.AUTO
        normalized = str(value).strip().lower().replace("_", "-")
        if normalized in {"new-terminal", "newterminal", "new"}:
            normalized = cls.NEW_WINDOW.value
        return cls(normalized)


@dataclass(frozen=True)
class AuthMethod:
    """Authentication method and its parameters."""

    kind: AuthKind
    key_path: str | None = None

    def __post_init__(self) -> None:
        if self.kind is AuthKind.KEY and not self.key_path:
            raise ValueError("Key-based authentication requires a key_path.")
        if self.kind is not AuthKind.KEY and self.key_path is not None:
            raise ValueError(f"key_path is only valid for key auth, not {self.kind.value}.")

    @classmethod
    def key(cls, key_path: str) -> "AuthMethod":
        return cls(AuthKind.KEY, key_path)

    @classmethod
    def agent(cls) -> "AuthMethod":
        return cls(AuthKind.AGENT)

    @classmethod
    def password(cls) -> "AuthMethod":
        return cls(AuthKind.PASSWORD)

    @classmethod
    def interactive(cls) -> "AuthMethod":
        return cls(AuthKind.INTERACTIVE)

    @classmethod
    def from_value(cls, value: Any) -> "AuthMethod":
        """Parse a config value: either ``"agent"`` or ``{type: key, key_path: ...}``."""

        if value is None:
            return cls.agent()
        if isinstance(value, str):
            return cls(AuthKind(value.strip().lower()))
        if isinstance(value, Mapping):
            kind = AuthKind(str(value.get("type", AuthKind.AGENT.value)).strip().lower())
            key_path = value.get("key_path")
            return cls(kind, str(key_path) if key_path is not None else None)
        raise ValueError(f"Unsupported auth value: {value!r}")

    def to_value(self) -> str | dict[str, str]:
        if self.kind is AuthKind.KEY:
            return {"type": self.kind.value, "key_path": str(self.key_path)}
        return self.kind.value

    def describe(self) -> str:
        if self.kind is AuthKind.KEY:
            return f"Public Key ({self.key_path})"
        return {
            AuthKind.AGENT: "SSH Agent",
            AuthKind.PASSWORD: "Password",
            AuthKind.INTERACTIVE: "Interactive",
        }[self.kind]


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of a single reachability and security check."""

    health: HealthState
    security: SecurityAssessment
    latency_s: float | None = None
    error: str | None = None

    @property
    def latency_ms(self) -> int | None:
        if self.latency_s is None:
            return None
        return int(self.latency_s * 1000)


@dataclass(frozen=True)
class HealthUpdateMessage:
    """Probe result tagged with the target it belongs to."""

    target_id: str
    result: ProbeResult


@dataclass
class ConnectionStats:
    """Rolling connection counters for a target."""

    connection_count: int = 0
    failed_attempts: int = 0
    latency_s: float | None = None
    latency_history: Deque[int] = field(
        default_factory=lambda: deque(maxlen=LATENCY_HISTORY_LIMIT)
    )
    last_connected: datetime | None = None
    uptime_percentage: float = 0.0

    def record_probe(self, result: ProbeResult, now: datetime | None = None) -> None:
        self.latency_s = result.latency_s
        if result.latency_ms is not None:
            self.latency_history.append(result.latency_ms)
        if result.health is HealthState.ONLINE:
            self.connection_count += 1
            self.last_connected = now or utc_now()
        elif result.health is HealthState.OFFLINE:
            self.failed_attempts += 1
        else:
            return
        self._update_uptime()

    def record_connection(self, now: datetime | None = None) -> None:
        self.connection_count += 1
        self.last_connected = now or utc_now()
        self._update_uptime()

    def record_failure(self) -> None:
        self.failed_attempts += 1
        self._update_uptime()

    def average_latency_ms(self) -> float | None:
        if not self.latency_history:
            return None
        return sum(self.latency_history) / len(self.latency_history)

    def _update_uptime(self) -> None:
        total = self.connection_count + self.failed_attempts
        self.uptime_percentage = (self.connection_count / total) * 100.0 if total else 0.0


@dataclass(frozen=True)
class ActiveSession:
    """A spawned remote-access process owned by a target."""

    pid: int
    started_at: datetime
    label: str
    target_id: str

    def duration(self, now: datetime | None = None) -> float:
        elapsed = ((now or utc_now()) - self.started_at).total_seconds()
        return max(elapsed, 0.0)

    def format_duration(self, now: datetime | None = None) -> str:
        total = int(self.duration(now))
        hours, remainder = divmod(total, 3600)
        minutes, seconds = divmod(remainder, 60)
        if hours > 0:
            return f"{hours}h {minutes}m {seconds}s"
        if minutes > 0:
            return f"{minutes}m {seconds}s"
        return f"{seconds}s"


@dataclass
class Target:
    """Configured remote host with runtime status."""

    name: str
    host: str
    user: str
    port: int = DEFAULT_SSH_PORT
    auth: AuthMethod = field(default_factory=AuthMethod.agent)
    tags: list[str] = field(default_factory=list)
    description: str | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utc_now)

    # Runtime status, never persisted.
    health: HealthState = HealthState.UNKNOWN
    security: SecurityAssessment = SecurityAssessment.UNKNOWN
    stats: ConnectionStats = field(default_factory=ConnectionStats)
    sessions: list[ActiveSession] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.host:
            raise ValueError(f"Target {self.name!r} has no host.")
        if not 1 <= int(self.port) <= 65535:
            raise ValueError(f"Target {self.name!r} has invalid port {self.port}.")
        self.port = int(self.port)

    @property
    def connection_string(self) -> str:
        return f"{self.user}@{self.host}:{self.port}"

    def is_healthy(self) -> bool:
        return self.health in {HealthState.ONLINE, HealthState.WARNING}

    def has_active_sessions(self) -> bool:
        return bool(self.sessions)

    def apply_probe_result(self, result: ProbeResult, now: datetime | None = None) -> None:
        self.health = result.health
        self.security = result.security
        self.stats.record_probe(result, now)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "auth": self.auth.to_value(),
            "tags": list(self.tags),
            "created_at": self.created_at.isoformat(),
        }
        if self.description:
            data["description"] = self.description
        return data

    @staticmethod
    def from_dict(d: Mapping[str, Any]) -> "Target":
        # Missing optional keys fall back to defaults.
        kwargs: dict[str, Any] = {
            "name": str(d.get("name") or d.get("host", "")),
            "host": str(d.get("host", "")),
            "user": str(d.get("user") or d.get("username") or ""),
            "port": int(d.get("port", DEFAULT_SSH_PORT) or DEFAULT_SSH_PORT),
            "auth": AuthMethod.from_value(d.get("auth", d.get("auth_method"))),
            "tags": [str(tag) for tag in d.get("tags") or []],
            "description": d.get("description"),
        }
        if d.get("id"):
            kwargs["id"] = str(d["id"])
        created_at = d.get("created_at")
        if isinstance(created_at, datetime):
            kwargs["created_at"] = created_at
        elif isinstance(created_at, str) and created_at:
            kwargs["created_at"] = datetime.fromisoformat(created_at)
        return Target(**kwargs)


@dataclass(frozen=True)
class ConnectionHistoryEntry:
    """Record of a successful connection."""

    target_id: str
    target_name: str
    connected_at: datetime


@dataclass(frozen=True)
class Notification:
    """Transient user-visible message."""

    timestamp: float
    level: str
    message: str


@dataclass(frozen=True)
class KillSummary:
    """Aggregated outcome of a batch session kill."""

    killed: int
    failed: int
    failed_pids: tuple[int, ...] = ()
