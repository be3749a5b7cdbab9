"""Chat screen — conversation with the Codex agent of one workspace."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from textual import work
from textual.app import ComposeResult
from textual.binding import Binding
from textual.screen import Screen
from textual.widgets import Header, Input

from codexdesk.adapters.event_bus import EventBus
from codexdesk.engine.codex_service import CodexService
from codexdesk.shared.models.message import Message, MessageRole
from codexdesk.tui.handlers.event_processor import EventProcessor
from codexdesk.tui.widgets.conversation import ConversationView
from codexdesk.tui.widgets.output_log import OutputLog
from codexdesk.tui.widgets.status_bar import StatusBar

logger = logging.getLogger(__name__)


class ChatScreen(Screen):
    """Conversation pane, collapsible output log, prompt input and status bar."""

    BINDINGS = [
        Binding("ctrl+c", "stop_stream", "Stop", priority=True),
        ("f1", "toggle_output_log", "Output Log"),
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
        self.event_processor = EventProcessor(self)
        self._event_consumer_task: asyncio.Task | None = None

    def compose(self) -> ComposeResult:
        yield Header()
        yield ConversationView(id="conversation")
        yield OutputLog(id="output-log")
        yield Input(placeholder="Ask Codex...", id="prompt-input")
        yield StatusBar(id="status-bar")

    def on_mount(self) -> None:
        sb = self.query_one("#status-bar", StatusBar)
        sb.workspace = self.workspace_id
        sb.worktree = str(Path(self.worktree_path))
        self._event_consumer_task = asyncio.create_task(
            self.event_processor.consume_events(),
            name="event-consumer",
        )
        self._prepare_agent()
        self.query_one("#prompt-input", Input).focus()

    async def on_unmount(self) -> None:
        if self._event_consumer_task is not None:
            self._event_consumer_task.cancel()
            self._event_consumer_task = None

    @work(exclusive=True, name="prepare-agent")
    async def _prepare_agent(self) -> None:
        agent = self.service.get_agent_status(self.workspace_id)
        if agent is None:
            agent = await self.service.create_agent(
                self.workspace_id, self.worktree_path,
            )
        sb = self.query_one("#status-bar", StatusBar)
        sb.status = agent.status.value
        log = self.query_one("#output-log", OutputLog)
        log.log_notice(f"Agent {agent.id} ready in {agent.worktree_path}")

        installed = await self.service.get_installation_status()
        sb.installed = installed
        if not installed:
            self.query_one("#conversation", ConversationView).add_message(Message(
                content=self.service.get_installation_instructions(),
                sender=MessageRole.SYSTEM.value,
            ))

    def on_input_submitted(self, event: Input.Submitted) -> None:
        prompt = event.value.strip()
        event.input.value = ""
        if not prompt:
            return
        conv = self.query_one("#conversation", ConversationView)
        conv.end_stream()
        conv.add_message(Message(content=prompt, sender=MessageRole.USER.value))
        self._send(prompt)

    @work(exclusive=True, name="send-stream")
    async def _send(self, prompt: str) -> None:
        await self.service.send_message_stream(self.workspace_id, prompt)

    def action_stop_stream(self) -> None:
        if not self.service.is_running(self.workspace_id):
            return
        self._stop_stream()

    @work(name="stop-stream")
    async def _stop_stream(self) -> None:
        log = self.query_one("#output-log", OutputLog)
        log.log_notice("Stopping Codex...")
        stopped = await self.service.stop_message_stream(self.workspace_id)
        conv = self.query_one("#conversation", ConversationView)
        conv.end_stream()
        conv.add_notice("Stopped by user" if stopped else "Failed to stop Codex")

    def action_toggle_output_log(self) -> None:
        self.query_one("#output-log", OutputLog).toggle()
