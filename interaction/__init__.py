"""Terminal interaction helpers."""

from interaction.terminal_surface import ConsoleSurface, NullSurface, TerminalSurface

__all__ = ["ConsoleSurface", "NullSurface", "TerminalSurface"]
