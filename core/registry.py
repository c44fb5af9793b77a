"""In-memory registry of remote targets."""

from __future__ import annotations

import threading
from typing import Iterable

from core.target_models import (
    ActiveSession,
    ConnectionHistoryEntry,
    Target,
    utc_now,
)


HISTORY_LIMIT = 50


class TargetRegistry:
    """Store of targets keyed by id, plus recent connection history.

    Only the orchestrator mutates the registry. The lock exists so that
    session list edits stay atomic when callers connect from more than one
    thread.
    """

    def __init__(self, targets: Iterable[Target] = (), *, history_limit: int = HISTORY_LIMIT) -> None:
        self._lock = threading.RLock()
        self._targets: dict[str, Target] = {}
        self._history: list[ConnectionHistoryEntry] = []
        self._history_limit = max(int(history_limit), 1)
        for target in targets:
            self.add(target)

    def __len__(self) -> int:
        return len(self._targets)

    def __contains__(self, target_id: object) -> bool:
        return target_id in self._targets

    def add(self, target: Target) -> Target:
        with self._lock:
            if target.id in self._targets:
                raise ValueError(f"Duplicate target id {target.id!r}")
            self._targets[target.id] = target
        return target

    def remove(self, target_id: str) -> Target | None:
        with self._lock:
            return self._targets.pop(target_id, None)

    def get(self, target_id: str) -> Target | None:
        return self._targets.get(target_id)

    def require(self, target_id: str) -> Target:
        target = self._targets.get(target_id)
        if target is None:
            raise KeyError(f"Unknown target {target_id!r}")
        return target

    def find(self, name_or_id: str) -> Target | None:
        """Look up a target by id, then by case-insensitive name."""

        target = self._targets.get(name_or_id)
        if target is not None:
            return target
        lowered = name_or_id.lower()
        for candidate in self._targets.values():
            if candidate.name.lower() == lowered:
                return candidate
        return None

    def targets(self) -> list[Target]:
        with self._lock:
            return list(self._targets.values())

    def filtered(self, text: str = "", *, only_online: bool = False) -> list[Target]:
        needle = text.lower()
        matches = []
        for target in self.targets():
            if needle and not any(
                needle in value.lower() for value in (target.name, target.host, target.user)
            ):
                continue
            if only_online and not target.is_healthy():
                continue
            matches.append(target)
        return sorted(matches, key=lambda target: target.name)

    def online_count(self) -> int:
        return sum(1 for target in self.targets() if target.is_healthy())

    # Sessions

    def append_session(self, target_id: str, session: ActiveSession) -> None:
        with self._lock:
            self.require(target_id).sessions.append(session)

    def remove_sessions(self, pids: Iterable[int]) -> list[ActiveSession]:
        doomed = set(pids)
        removed: list[ActiveSession] = []
        with self._lock:
            for target in self._targets.values():
                kept = []
                for session in target.sessions:
                    (removed if session.pid in doomed else kept).append(session)
                target.sessions = kept
        return removed

    def all_sessions(self) -> list[ActiveSession]:
        with self._lock:
            return [session for target in self._targets.values() for session in target.sessions]

    def session_owner(self, pid: int) -> Target | None:
        with self._lock:
            for target in self._targets.values():
                if any(session.pid == pid for session in target.sessions):
                    return target
        return None

    # History

    def add_history(self, target: Target) -> ConnectionHistoryEntry:
        entry = ConnectionHistoryEntry(
            target_id=target.id,
            target_name=target.name,
            connected_at=utc_now(),
        )
        with self._lock:
            self._history.insert(0, entry)
            del self._history[self._history_limit:]
        return entry

    def history(self) -> list[ConnectionHistoryEntry]:
        with self._lock:
            return list(self._history)
