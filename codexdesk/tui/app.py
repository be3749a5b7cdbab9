"""codexdesk TUI — Textual application class."""

from __future__ import annotations

from pathlib import Path

from textual.app import App

from codexdesk.adapters.event_bus import EventBus
from codexdesk.engine.codex_service import CodexService
from codexdesk.tui.screens.chat import ChatScreen


class CodexDeskApp(App):
    """Terminal chat UI for a Codex agent bound to one workspace."""

    TITLE = "codexdesk"
    SUB_TITLE = "Codex Workspace Agent"
    CSS_PATH = Path("styles/app.tcss")

    BINDINGS = [
        ("ctrl+q", "quit", "Quit"),
        ("escape", "blur", "Unfocus"),
    ]

    def __init__(
        self,
        service: CodexService,
        bus: EventBus,
        workspace_id: str,
        worktree_path: str,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self.service = service
        self.bus = bus
        self.workspace_id = workspace_id
        self.worktree_path = worktree_path
        self.sub_title = f"{workspace_id} · {worktree_path}"

    def on_mount(self) -> None:
        self.push_screen(ChatScreen(
            service=self.service,
            bus=self.bus,
            workspace_id=self.workspace_id,
            worktree_path=self.worktree_path,
        ))

    async def action_quit(self) -> None:
        """Stop any running Codex process before quitting."""
        await self.service.shutdown()
        self.bus.close()
        await super().action_quit()

    def action_blur(self) -> None:
        self.screen.set_focus(None)
