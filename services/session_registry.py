"""Tracking of spawned SSH session processes."""

from __future__ import annotations

from typing import Callable

from core.logging import logger as LOGGER
from core.registry import TargetRegistry
from core.target_models import ActiveSession, KillSummary, utc_now
from services.process_control import process_alive, terminate_process


class SessionRegistry:
    """Per-target session lists, reconciled against OS process state."""

    def __init__(
        self,
        registry: TargetRegistry,
        *,
        is_alive: Callable[[int], bool] = process_alive,
        terminate: Callable[[int], bool] = terminate_process,
    ) -> None:
        self._registry = registry
        self._is_alive = is_alive
        self._terminate = terminate

    def add(self, target_id: str, pid: int, label: str) -> ActiveSession:
        if int(pid) <= 0:
            raise ValueError(f"Invalid session pid {pid}")
        session = ActiveSession(
            pid=int(pid),
            started_at=utc_now(),
            label=label,
            target_id=target_id,
        )
        self._registry.append_session(target_id, session)
        LOGGER.info("[Sessions] Tracking pid %s for %s", pid, label)
        return session

    def sessions(self) -> list[ActiveSession]:
        return self._registry.all_sessions()

    def count(self) -> int:
        return len(self.sessions())

    def find(self, pid: int) -> ActiveSession | None:
        for session in self.sessions():
            if session.pid == pid:
                return session
        return None

    def reconcile(self) -> list[ActiveSession]:
        """Drop sessions whose process is gone. Returns the removed sessions."""

        dead = [session.pid for session in self.sessions() if not self._check_alive(session.pid)]
        if not dead:
            return []
        removed = self._registry.remove_sessions(dead)
        for session in removed:
            LOGGER.info("[Sessions] Session pid %s (%s) ended", session.pid, session.label)
        return removed

    def kill(self, pid: int) -> bool:
        """Terminate one tracked session; unknown pids report False."""

        if self._registry.session_owner(pid) is None:
            LOGGER.warning("[Sessions] No tracked session with pid %s", pid)
            return False
        if not self._terminate(pid):
            LOGGER.warning("[Sessions] Failed to kill session pid %s", pid)
            return False
        self._registry.remove_sessions([pid])
        return True

    def kill_all(self) -> KillSummary:
        killed = 0
        failed_pids: list[int] = []
        for session in self.sessions():
            if self.kill(session.pid):
                killed += 1
            else:
                failed_pids.append(session.pid)
        return KillSummary(killed=killed, failed=len(failed_pids), failed_pids=tuple(failed_pids))

    def _check_alive(self, pid: int) -> bool:
        try:
            return bool(self._is_alive(pid))
        except Exception as exc:  # noqa: BLE001 - unknown state is treated as dead
            LOGGER.debug("[Sessions] Liveness check for pid %s failed: %s", pid, exc)
            return False
