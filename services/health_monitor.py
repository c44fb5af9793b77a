"""Background health monitor for remote targets."""

from __future__ import annotations

import concurrent.futures
import copy
import queue
import threading
import time
from typing import Callable, Iterable, Sequence

from core.logging import logger as LOGGER
from core.target_models import (
    HealthState,
    HealthUpdateMessage,
    ProbeResult,
    SecurityAssessment,
    Target,
)
from services.health_probes import QUICK_PROBE_TIMEOUT_S, probe_target


ProbeFn = Callable[[Target, float], ProbeResult]


class HealthMonitor:
    """Probe a snapshot of targets on a fixed interval from one background thread.

    Results are only ever handed over by value through an unbounded queue;
    the monitor never touches the target registry.
    """

    def __init__(
        self,
        check_interval_s: float = 30.0,
        *,
        probe_timeout_s: float = QUICK_PROBE_TIMEOUT_S,
        max_parallel_probes: int = 8,
        probe: ProbeFn = probe_target,
    ) -> None:
        self._check_interval_s = max(float(check_interval_s), 0.01)
        self._probe_timeout_s = float(probe_timeout_s)
        self._max_parallel = max(int(max_parallel_probes), 1)
        self._probe = probe
        self._updates: "queue.Queue[HealthUpdateMessage]" = queue.Queue()
        self._running = threading.Event()
        self._wake = threading.Event()
        self._closed = threading.Event()
        self._lock = threading.Lock()
        self._targets: tuple[Target, ...] = ()
        self._loop_thread: threading.Thread | None = None
        self._executor: concurrent.futures.ThreadPoolExecutor | None = None
        self._ticks = 0

    @property
    def check_interval_s(self) -> float:
        return self._check_interval_s

    @property
    def probe_timeout_s(self) -> float:
        return self._probe_timeout_s

    @property
    def ticks(self) -> int:
        return self._ticks

    def start(self, targets: Iterable[Target]) -> threading.Thread:
        """Snapshot ``targets`` and start the probing thread."""

        self.update_targets(targets)
        if self._loop_thread is not None and self._loop_thread.is_alive():
            if self._running.is_set():
                return self._loop_thread
            # A previous stop() is still winding down.
            self._loop_thread.join(timeout=self._probe_timeout_s + 1.0)
        self._closed.clear()
        self._wake.clear()
        self._running.set()
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=self._max_parallel,
            thread_name_prefix="health-probe",
        )
        self._loop_thread = threading.Thread(
            target=self._loop,
            args=(self._executor,),
            name="health-monitor",
            daemon=True,
        )
        self._loop_thread.start()
        LOGGER.info(
            "[Monitor] Started for %d target(s), interval %.1fs",
            len(self._targets),
            self._check_interval_s,
        )
        return self._loop_thread

    def stop(self, join_timeout_s: float | None = None) -> None:
        """Clear the running flag; optionally join the thread."""

        self._running.clear()
        self._wake.set()
        executor = self._executor
        if executor is not None:
            executor.shutdown(wait=False, cancel_futures=True)
        thread = self._loop_thread
        if thread is None or join_timeout_s is None:
            return
        thread.join(timeout=join_timeout_s)
        if thread.is_alive():
            LOGGER.warning(
                "[Monitor] Loop thread did not exit within %.2fs; continuing shutdown.",
                join_timeout_s,
            )
            return
        self._loop_thread = None
        self._executor = None

    def close_updates(self) -> None:
        """Mark the receiving side as gone; the loop exits at its next check."""

        self._closed.set()
        self._wake.set()

    def is_running(self) -> bool:
        return (
            self._running.is_set()
            and self._loop_thread is not None
            and self._loop_thread.is_alive()
        )

    def update_targets(self, targets: Iterable[Target]) -> None:
        snapshot = tuple(copy.deepcopy(target) for target in targets)
        with self._lock:
            self._targets = snapshot

    def snapshot(self) -> tuple[Target, ...]:
        with self._lock:
            return self._targets

    def try_recv_update(self) -> HealthUpdateMessage | None:
        if self._closed.is_set():
            return None
        try:
            return self._updates.get_nowait()
        except queue.Empty:
            return None

    def drain_updates(self) -> list[HealthUpdateMessage]:
        updates = []
        while (update := self.try_recv_update()) is not None:
            updates.append(update)
        return updates

    def check_now(self, target: Target) -> ProbeResult:
        """Probe one target immediately, outside the schedule."""

        return self._probe(target, self._probe_timeout_s)

    def _should_continue(self) -> bool:
        return self._running.is_set() and not self._closed.is_set()

    def _loop(self, executor: concurrent.futures.ThreadPoolExecutor) -> None:
        while self._should_continue():
            try:
                self._run_tick(executor)
            except Exception as exc:
                # stop() shuts the executor down underneath a running tick.
                if self._should_continue():
                    LOGGER.exception("[Monitor] Error in tick loop (retrying): %s", exc)
            if not self._should_continue():
                break
            self._wake.wait(timeout=self._check_interval_s)
            self._wake.clear()
        LOGGER.info("[Monitor] Loop exited after %d tick(s)", self._ticks)

    def _run_tick(self, executor: concurrent.futures.ThreadPoolExecutor) -> None:
        targets = self.snapshot()
        start = time.monotonic()
        futures = [
            executor.submit(self._probe, target, self._probe_timeout_s)
            for target in targets
        ]
        results = self._collect(targets, futures)
        for target, result in zip(targets, results):
            if not self._should_continue():
                return
            self._updates.put(HealthUpdateMessage(target_id=target.id, result=result))
        self._ticks += 1
        LOGGER.debug(
            "[Monitor] Tick %d probed %d target(s) in %.2fs",
            self._ticks,
            len(targets),
            time.monotonic() - start,
        )

    def _collect(
        self,
        targets: Sequence[Target],
        futures: Sequence[concurrent.futures.Future[ProbeResult]],
    ) -> list[ProbeResult]:
        results = []
        for target, future in zip(targets, futures):
            try:
                results.append(future.result())
            except concurrent.futures.CancelledError:
                raise RuntimeError("probe cancelled") from None
            except Exception as exc:  # noqa: BLE001 - one bad probe must not stall the tick
                LOGGER.warning("[Monitor] Probe for %s raised: %s", target.name, exc)
                results.append(
                    ProbeResult(
                        health=HealthState.UNKNOWN,
                        security=SecurityAssessment.UNKNOWN,
                        error=f"Health check error: {exc}",
                    )
                )
        return results
