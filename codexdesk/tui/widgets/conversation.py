"""Conversation view — scrollable message area with a live streaming bubble."""

from __future__ import annotations

from textual.app import ComposeResult
from textual.containers import VerticalScroll
from textual.css.query import NoMatches
from textual.widget import Widget
from textual.widgets import Static

from codexdesk.shared.models.message import Message, MessageRole
from codexdesk.tui.widgets.message_bubble import MessageBubble


def _esc(text: str) -> str:
    """Escape Rich markup characters in dynamic content."""
    return text.replace("[", "\\[")


class RunStoppedIndicator(Static):
    """Separator shown when a stream was stopped or failed to start."""

    DEFAULT_CSS = """
    RunStoppedIndicator {
        height: auto;
        margin: 0 0 1 0;
        text-align: center;
    }
    """

    def __init__(self, reason: str = "Stopped by user", **kwargs) -> None:
        super().__init__(
            f"[dim]───── [/dim][bold red]⏹ Run stopped[/bold red]"
            f"[dim] ── [/dim][dim italic]{_esc(reason)}[/dim italic]"
            f"[dim] ─────[/dim]",
            markup=True,
            **kwargs,
        )


class ConversationView(Widget):
    """Chat history for one workspace."""

    DEFAULT_CSS = """
    ConversationView {
        height: 1fr;
    }
    ConversationView #message-container {
        height: 1fr;
        padding: 0 1;
    }
    """

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.messages: list[Message] = []
        self._live_bubble: MessageBubble | None = None

    def compose(self) -> ComposeResult:
        yield VerticalScroll(id="message-container")

    # ── Scroll helpers ──

    def _message_container(self) -> VerticalScroll | None:
        try:
            return self.query_one("#message-container", VerticalScroll)
        except NoMatches:
            return None

    def is_near_bottom(self) -> bool:
        """Check if the scroll container is at or near the bottom."""
        container = self._message_container()
        if container is None:
            return False
        if container.max_scroll_y == 0:
            return True
        return container.scroll_y >= container.max_scroll_y - 3

    def _smart_scroll(self) -> None:
        """Scroll to bottom only if already near the bottom."""
        container = self._message_container()
        if container is not None and self.is_near_bottom():
            container.scroll_end(animate=False)

    # ── Messages ──

    def add_message(self, message: Message) -> MessageBubble:
        self.messages.append(message)
        bubble = MessageBubble(message)
        container = self._message_container()
        if container is not None:
            container.mount(bubble)
            container.scroll_end(animate=False)
        return bubble

    def add_notice(self, reason: str) -> None:
        container = self._message_container()
        if container is not None:
            container.mount(RunStoppedIndicator(reason))
            self._smart_scroll()

    @property
    def streaming(self) -> bool:
        return self._live_bubble is not None

    def stream_chunk(self, text: str) -> None:
        """Append streamed assistant output, opening a bubble on first chunk."""
        if self._live_bubble is None:
            self._live_bubble = self.add_message(Message(
                content=text,
                sender=MessageRole.ASSISTANT.value,
                streaming=True,
            ))
            return
        self._live_bubble.append_text(text)
        self._smart_scroll()

    def end_stream(self) -> Message | None:
        """Close the live bubble. Returns its message, if any output arrived."""
        bubble = self._live_bubble
        self._live_bubble = None
        if bubble is None:
            return None
        bubble.message.streaming = False
        return bubble.message

    def clear(self) -> None:
        self.messages.clear()
        self._live_bubble = None
        container = self._message_container()
        if container is not None:
            container.remove_children()
