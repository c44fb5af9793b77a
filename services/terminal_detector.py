"""Detection of terminal emulators that can host a new SSH window."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import logging
import os
import shlex
import shutil
import sys
from typing import Callable, Mapping, Sequence

from services.process_control import process_running as _process_running


LOGGER = logging.getLogger(__name__)

CommandBuilder = Callable[[Sequence[str]], list[str]]


class DetectionStrategy(str, Enum):
    """How a catalog entry decides that it is usable."""

    EXECUTABLE = "executable"
    RUNNING_PROCESS = "running_process"
    PLATFORM = "platform"


@dataclass(frozen=True)
class TerminalSpec:
    """Descriptor for one terminal emulator."""

    key: str
    display_name: str
    executable: str
    build_command: CommandBuilder
    strategy: DetectionStrategy = DetectionStrategy.EXECUTABLE
    env_markers: tuple[str, ...] = ()
    platforms: tuple[str, ...] = ()
    spawns_windows: bool = True
    process_pattern: str | None = None

    def supports_platform(self, platform: str) -> bool:
        if not self.platforms:
            return True
        return any(platform.startswith(prefix) for prefix in self.platforms)


def _prefixed(executable: str, *prefix: str) -> CommandBuilder:
    def build(ssh_argv: Sequence[str]) -> list[str]:
        return [executable, *prefix, *ssh_argv]

    return build


def _shell_string(executable: str, *prefix: str) -> CommandBuilder:
    def build(ssh_argv: Sequence[str]) -> list[str]:
        return [executable, *prefix, shlex.join(ssh_argv)]

    return build


def _apple_script(ssh_argv: Sequence[str]) -> list[str]:
    command = shlex.join(ssh_argv).replace("\\", "\\\\").replace('"', '\\"')
    return ["osascript", "-e", f'tell application "Terminal" to do script "{command}"']


DEFAULT_CATALOG: tuple[TerminalSpec, ...] = (
    TerminalSpec(
        key="windows-terminal",
        display_name="Windows Terminal",
        executable="wt",
        build_command=_prefixed("wt"),
        platforms=("win32",),
    ),
    TerminalSpec(
        key="ghostty",
        display_name="Ghostty",
        executable="ghostty",
        build_command=_prefixed("ghostty", "-e"),
        env_markers=("ghostty",),
    ),
    TerminalSpec(
        key="alacritty",
        display_name="Alacritty",
        executable="alacritty",
        build_command=_prefixed("alacritty", "-e"),
        env_markers=("Alacritty",),
    ),
    TerminalSpec(
        key="kitty",
        display_name="Kitty",
        executable="kitty",
        build_command=_prefixed("kitty"),
        env_markers=("kitty",),
    ),
    TerminalSpec(
        key="wezterm",
        display_name="WezTerm",
        executable="wezterm",
        build_command=_prefixed("wezterm", "start", "--"),
        env_markers=("WezTerm",),
    ),
    TerminalSpec(
        key="gnome-terminal",
        display_name="GNOME Terminal",
        executable="gnome-terminal",
        build_command=_shell_string("gnome-terminal", "--", "bash", "-c"),
    ),
    TerminalSpec(
        key="konsole",
        display_name="Konsole",
        executable="konsole",
        build_command=_prefixed("konsole", "-e"),
    ),
    TerminalSpec(
        key="xfce4-terminal",
        display_name="XFCE Terminal",
        executable="xfce4-terminal",
        build_command=_shell_string("xfce4-terminal", "-e"),
    ),
    TerminalSpec(
        key="xterm",
        display_name="XTerm",
        executable="xterm",
        build_command=_prefixed("xterm", "-e"),
    ),
    TerminalSpec(
        key="macos-terminal",
        display_name="macOS Terminal",
        executable="osascript",
        build_command=_apple_script,
        strategy=DetectionStrategy.PLATFORM,
        env_markers=("Apple_Terminal",),
        platforms=("darwin",),
    ),
    TerminalSpec(
        key="warp",
        display_name="Warp",
        executable="warp",
        build_command=_prefixed("warp"),
        strategy=DetectionStrategy.RUNNING_PROCESS,
        env_markers=("WarpTerminal",),
        spawns_windows=False,
        process_pattern="warp-terminal",
    ),
)


@dataclass
class TerminalDetector:
    """Walk the terminal catalog in priority order."""

    catalog: Sequence[TerminalSpec] = DEFAULT_CATALOG
    environ: Mapping[str, str] | None = None
    platform: str = field(default_factory=lambda: sys.platform)
    which: Callable[[str], str | None] = shutil.which
    process_running: Callable[[str], bool] = _process_running

    def detect(self) -> TerminalSpec | None:
        """Return the first usable terminal, or None.

        Running inside a terminal that cannot open windows (Warp) returns
        None, so callers fall back to direct mode.
        """

        marked = self._from_environment()
        if marked is not None:
            if not marked.spawns_windows:
                LOGGER.warning(
                    "%s detected but it cannot spawn new windows. "
                    "Falling back to direct connection mode.",
                    marked.display_name,
                )
                return None
            if marked.supports_platform(self.platform):
                return marked
        for spec in self.catalog:
            if self.is_available(spec):
                return spec
        return None

    def available(self) -> list[TerminalSpec]:
        return [spec for spec in self.catalog if self.is_available(spec)]

    def supported_names(self) -> list[str]:
        return [
            spec.display_name
            for spec in self.catalog
            if spec.spawns_windows and spec.supports_platform(self.platform)
        ]

    def is_available(self, spec: TerminalSpec) -> bool:
        """True when ``spec`` is present and can open a new window here."""

        return spec.spawns_windows and self.is_present(spec)

    def is_present(self, spec: TerminalSpec) -> bool:
        """True when ``spec`` exists on this machine, whether or not it can spawn."""

        if not spec.supports_platform(self.platform):
            return False
        if spec.strategy is DetectionStrategy.PLATFORM:
            return True
        if spec.strategy is DetectionStrategy.RUNNING_PROCESS:
            return self._is_running(spec)
        return self.which(spec.executable) is not None

    def present_without_windows(self) -> list[TerminalSpec]:
        """Entries that are present but cannot host a new SSH window."""

        return [
            spec for spec in self.catalog if not spec.spawns_windows and self.is_present(spec)
        ]

    def _from_environment(self) -> TerminalSpec | None:
        environ = self.environ if self.environ is not None else os.environ
        term_program = environ.get("TERM_PROGRAM", "")
        if not term_program:
            return None
        for spec in self.catalog:
            if term_program in spec.env_markers:
                return spec
        return None

    def _is_running(self, spec: TerminalSpec) -> bool:
        try:
            return self.process_running(spec.process_pattern or spec.executable)
        except Exception as exc:  # noqa: BLE001 - detection must not raise
            LOGGER.debug("Process scan for %s failed: %s", spec.display_name, exc)
            return False
