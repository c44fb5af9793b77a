"""Render-surface control for handing the terminal to a child process."""

from __future__ import annotations

from contextlib import contextmanager
import importlib
import importlib.util
import logging
import sys
from typing import Any, Iterator

from core.logging import Console


if importlib.util.find_spec("termios") is not None:
    termios = importlib.import_module("termios")
    tty = importlib.import_module("tty")
else:
    termios = None
    tty = None


LOGGER = logging.getLogger(__name__)


class TerminalSurface:
    """Interface for the render/input loop that owns the terminal."""

    def suspend(self) -> None:
        """Tear down raw mode and the alternate screen."""

    def resume(self) -> None:
        """Re-enter raw mode and the alternate screen, then clear for redraw."""

    @contextmanager
    def suspended(self) -> Iterator[None]:
        """Suspend for the duration of the block; always resume on exit."""

        try:
            self.suspend()
        except Exception as exc:  # noqa: BLE001 - a half-torn surface is still usable
            LOGGER.warning("Failed to suspend terminal surface: %s", exc)
        try:
            yield
        finally:
            try:
                self.resume()
            except Exception as exc:  # noqa: BLE001 - restoration errors are reported, not raised
                LOGGER.warning("Failed to restore terminal surface: %s", exc)


class NullSurface(TerminalSurface):
    """Surface for headless use; suspend and resume do nothing."""


class ConsoleSurface(TerminalSurface):
    """Surface backed by a rich console and the tty's termios state."""

    def __init__(self, console: Any | None = None, stream: Any | None = None) -> None:
        if console is None and Console is not None:
            console = Console()
        self._console = console
        self._stream = stream if stream is not None else sys.stdin
        self._cooked_attrs: list[Any] | None = None
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    def _fd(self) -> int | None:
        if termios is None:
            return None
        try:
            if not self._stream.isatty():
                return None
            return self._stream.fileno()
        except (AttributeError, OSError, ValueError):
            return None

    def enter(self) -> None:
        """Take over the terminal for rendering."""

        fd = self._fd()
        if fd is not None and self._cooked_attrs is None:
            self._cooked_attrs = termios.tcgetattr(fd)
        self._enter_render_mode(fd)
        self._active = True

    def exit(self) -> None:
        """Give the terminal back in its original state."""

        self._leave_render_mode(self._fd())
        self._active = False

    def suspend(self) -> None:
        if not self._active:
            return
        self._leave_render_mode(self._fd())

    def resume(self) -> None:
        if not self._active:
            return
        self._enter_render_mode(self._fd())
        if self._console is not None:
            self._console.clear()

    def _enter_render_mode(self, fd: int | None) -> None:
        if self._console is not None:
            self._console.set_alt_screen(True)
            self._console.show_cursor(False)
        if fd is not None:
            tty.setcbreak(fd)

    def _leave_render_mode(self, fd: int | None) -> None:
        if fd is not None and self._cooked_attrs is not None:
            termios.tcsetattr(fd, termios.TCSADRAIN, self._cooked_attrs)
        if self._console is not None:
            self._console.show_cursor(True)
            self._console.set_alt_screen(False)
