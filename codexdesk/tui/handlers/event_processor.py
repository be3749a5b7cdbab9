"""Event processor — routes service events from the EventBus to widgets."""

from __future__ import annotations

import logging

from codexdesk.adapters.events import (
    AgentStatusChanged,
    CodexComplete,
    CodexError,
    CodexOutput,
    ServiceEvent,
)

logger = logging.getLogger(__name__)


class EventProcessor:
    """Applies service events for the screen's workspace to its widgets.

    The screen must expose ``workspace_id`` and ``bus`` attributes and
    mount ``#conversation``, ``#status-bar`` and ``#output-log``.
    """

    def __init__(self, screen) -> None:
        self._screen = screen

    async def consume_events(self) -> None:
        """Consume events until the bus is closed or the task is cancelled."""
        from codexdesk.tui.widgets.conversation import ConversationView
        from codexdesk.tui.widgets.output_log import OutputLog
        from codexdesk.tui.widgets.status_bar import StatusBar

        s = self._screen
        conv = s.query_one("#conversation", ConversationView)
        sb = s.query_one("#status-bar", StatusBar)
        log = s.query_one("#output-log", OutputLog)

        async for event in s.bus.consume(s.workspace_id):
            try:
                self.handle(event, conv, sb, log)
            except Exception:
                logger.exception("Failed to handle %s", event.event_type)

    def handle(self, event: ServiceEvent, conv, sb, log) -> None:
        if event.workspace_id != self._screen.workspace_id:
            return
        if isinstance(event, CodexOutput):
            conv.stream_chunk(event.output)
        elif isinstance(event, CodexError):
            self._handle_error(event, conv, log)
        elif isinstance(event, CodexComplete):
            self._handle_complete(event, conv, log)
        elif isinstance(event, AgentStatusChanged):
            sb.status = event.status

    def _handle_error(self, event: CodexError, conv, log) -> None:
        log.log_error(event.error)
        if event.fatal:
            conv.end_stream()
            conv.add_notice(event.error.strip())

    def _handle_complete(self, event: CodexComplete, conv, log) -> None:
        conv.end_stream()
        exit_code = "null" if event.exit_code is None else event.exit_code
        log.log_notice(f"Codex completed with exit code {exit_code}")
        if event.exit_code not in (0, None):
            conv.add_notice(f"Codex exited with code {event.exit_code}")
