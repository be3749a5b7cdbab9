"""Message bubble — one chat message rendered as markdown."""

from __future__ import annotations

from textual.app import ComposeResult
from textual.widget import Widget
from textual.widgets import Markdown

from codexdesk.shared.models.message import Message


class MessageBubble(Widget):
    """A chat message aligned by sender.

    User messages sit on the right with a muted grey background;
    assistant (and any other sender) messages sit on the left. The body
    is rendered with Textual's ``Markdown`` widget so fenced code blocks,
    lists and emphasis display properly. Assistant bubbles can be
    updated in place while a response streams in.
    """

    DEFAULT_CSS = """
    MessageBubble {
        width: 100%;
        height: auto;
        margin: 0 0 1 0;
    }
    MessageBubble.bubble-user {
        align-horizontal: right;
    }
    MessageBubble.bubble-assistant {
        align-horizontal: left;
    }
    MessageBubble .bubble-body {
        width: auto;
        max-width: 80%;
        height: auto;
        padding: 1 2;
        margin: 0;
    }
    MessageBubble.bubble-user .bubble-body {
        background: #374151;
        color: #f3f4f6;
    }
    MessageBubble.bubble-assistant .bubble-body {
        background: #1f2937;
        color: #f3f4f6;
    }
    """

    def __init__(self, message: Message, **kwargs) -> None:
        self.message = message
        css_class = "bubble-user" if message.is_user else "bubble-assistant"
        super().__init__(classes=css_class, **kwargs)

    def compose(self) -> ComposeResult:
        yield Markdown(self.message.content, classes="bubble-body")

    @property
    def text(self) -> str:
        return self.message.content

    def set_text(self, content: str) -> None:
        self.message.content = content
        if self.is_mounted:
            self.query_one(".bubble-body", Markdown).update(content)

    def append_text(self, chunk: str) -> None:
        self.set_text(self.message.content + chunk)
