"""Output log — collapsible RichLog panel for stderr and lifecycle notices."""

from __future__ import annotations

from textual.widgets import RichLog


def _esc(text: str) -> str:
    return text.replace("[", "\\[")


class OutputLog(RichLog):
    """Collapsible log of Codex stderr output and service events."""

    DEFAULT_CSS = """
    OutputLog {
        height: 10;
        display: none;
        border-top: solid $primary-darken-2;
    }
    OutputLog.visible {
        display: block;
    }
    """

    def __init__(self, **kwargs) -> None:
        super().__init__(
            auto_scroll=True,
            wrap=True,
            markup=True,
            highlight=True,
            max_lines=5000,
            **kwargs,
        )

    def log_error(self, text: str) -> None:
        self.write(f"[red]{_esc(text.rstrip())}[/red]")

    def log_notice(self, text: str) -> None:
        self.write(f"[dim]{_esc(text)}[/dim]")

    def toggle(self) -> None:
        self.toggle_class("visible")
