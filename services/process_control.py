"""Cross-platform process liveness and termination by pid."""

from __future__ import annotations

import logging
import os
import signal
import sys

import psutil


LOGGER = logging.getLogger(__name__)

IS_POSIX = os.name == "posix"


def _reap_if_child(pid: int) -> bool:
    """Reap ``pid`` if it is our own exited child. Returns True when reaped."""

    try:
        reaped_pid, _status = os.waitpid(pid, os.WNOHANG)
    except ChildProcessError:
        return False
    except OSError:
        return False
    return reaped_pid == pid


def process_alive(pid: int) -> bool:
    """Return True when ``pid`` names a live process; any query failure means dead."""

    if pid <= 0:
        return False
    if IS_POSIX:
        if _reap_if_child(pid):
            return False
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            # Exists, owned by someone else.
            return True
        except OSError:
            return False
        return True

    try:
        return psutil.pid_exists(pid)
    except Exception as exc:  # noqa: BLE001 - unknown state is treated as dead
        LOGGER.debug("Liveness query for pid %s failed: %s", pid, exc)
        return False


def terminate_process(pid: int) -> bool:
    """Ask ``pid`` to terminate. Returns False on any failure, never raises."""

    if pid <= 0:
        return False
    if IS_POSIX:
        try:
            os.kill(pid, signal.SIGTERM)
        except OSError as exc:
            LOGGER.debug("SIGTERM to pid %s failed: %s", pid, exc)
            return False
        return True

    try:
        psutil.Process(pid).terminate()
    except (psutil.Error, OSError) as exc:
        LOGGER.debug("Terminate of pid %s failed on %s: %s", pid, sys.platform, exc)
        return False
    return True


def process_running(pattern: str) -> bool:
    """Return True when any process name or command line contains ``pattern``."""

    needle = pattern.lower()
    for proc in psutil.process_iter(["name", "cmdline"]):
        try:
            name = (proc.info.get("name") or "").lower()
            cmdline = " ".join(proc.info.get("cmdline") or []).lower()
        except (psutil.Error, OSError):
            continue
        if needle in name or needle in cmdline:
            return True
    return False
