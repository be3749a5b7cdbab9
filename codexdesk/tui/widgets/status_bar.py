"""Status bar — bottom bar showing workspace and agent status."""

from __future__ import annotations

import time
from typing import Optional

from textual.reactive import reactive
from textual.timer import Timer
from textual.widget import Widget
from rich.text import Text


def _format_elapsed(seconds: float) -> str:
    """Format elapsed seconds into a human-readable string."""
    secs = int(seconds)
    if secs < 60:
        return f"{secs}s"
    elif secs < 3600:
        m, s = divmod(secs, 60)
        return f"{m}m {s}s"
    else:
        h, remainder = divmod(secs, 3600)
        m = remainder // 60
        return f"{h}h {m}m"


class StatusBar(Widget):
    """Single-line status bar with workspace info and agent status."""

    DEFAULT_CSS = """
    StatusBar {
        height: 1;
        background: $panel;
    }
    """

    workspace: reactive[str] = reactive("No workspace")
    worktree: reactive[str] = reactive("—")
    status: reactive[str] = reactive("idle")
    installed: reactive[bool] = reactive(True)

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._run_started_at: Optional[float] = None
        self._elapsed_timer: Timer | None = None

    def watch_status(self, old_value: str, new_value: str) -> None:
        """Track elapsed run time while the agent is running."""
        if new_value == "running" and old_value != "running":
            self._run_started_at = time.monotonic()
            if self._elapsed_timer is None:
                self._elapsed_timer = self.set_interval(1.0, self.refresh)
        elif old_value == "running" and new_value != "running":
            self._run_started_at = None
            if self._elapsed_timer is not None:
                self._elapsed_timer.stop()
                self._elapsed_timer = None

    def render(self) -> Text:
        status_colors = {
            "idle": "green",
            "running": "yellow",
            "error": "red bold",
        }
        color = status_colors.get(self.status, "white")

        bar = Text()
        if not self.installed:
            bar.append(" ⚠ CODEX NOT INSTALLED ", style="bold black on yellow")
            bar.append(" ", style="dim")

        bar.append(f" {self.workspace} ", style="bold")
        bar.append(" │ ", style="dim")
        bar.append(self.worktree, style="cyan")
        bar.append(" │ ", style="dim")

        status_display = f"● {self.status}"
        if self._run_started_at is not None:
            elapsed = _format_elapsed(time.monotonic() - self._run_started_at)
            status_display += f" ({elapsed})"
        bar.append(status_display, style=color)
        return bar
