"""Rich rendering of chat messages as markdown bubbles.

Used by the non-TUI CLI modes. The Textual widget in
``codexdesk.tui.widgets.message_bubble`` mirrors the same layout rules:
user bubbles on the right, everything else on the left, at most 80% of
the available width.
"""

from __future__ import annotations

import re

from rich import box
from rich.align import Align
from rich.console import Console, ConsoleOptions, RenderResult
from rich.constrain import Constrain
from rich.markdown import CodeBlock, Markdown
from rich.panel import Panel
from rich.syntax import Syntax
from rich.text import Text

from codexdesk.shared.models.message import Message

MAX_WIDTH_RATIO = 0.8
MIN_BUBBLE_WIDTH = 20

USER_BUBBLE_STYLE = "#f3f4f6 on #374151"
ASSISTANT_BUBBLE_STYLE = "#f3f4f6 on #1f2937"
INLINE_CODE_STYLE = "bold #e5e7eb on #1f2937"

_LANGUAGE_CLASS_RE = re.compile(r"language-(\w+)")
_INFO_LANGUAGE_RE = re.compile(r"^\s*(\w+)")


def code_language(info: str | None) -> str | None:
    """Language named by a fence info string or a ``language-xxx`` class."""
    if not info:
        return None
    match = _LANGUAGE_CLASS_RE.search(info) or _INFO_LANGUAGE_RE.match(info)
    return match.group(1) if match else None


def bubble_width(available: int) -> int:
    return max(int(available * MAX_WIDTH_RATIO), min(MIN_BUBBLE_WIDTH, available))


class BubbleCodeBlock(CodeBlock):
    """Highlighted block when the fence names a language, inline style otherwise."""

    @classmethod
    def create(cls, markdown: Markdown, token) -> BubbleCodeBlock:
        lexer_name = code_language(token.info) or ""
        return cls(lexer_name, markdown.code_theme)

    def __rich_console__(
        self, console: Console, options: ConsoleOptions
    ) -> RenderResult:
        code = str(self.text).rstrip()
        if not self.lexer_name:
            yield Text(code, style=INLINE_CODE_STYLE)
            return
        yield Syntax(code, self.lexer_name, theme=self.theme, word_wrap=True, padding=1)


class BubbleMarkdown(Markdown):
    elements = {
        **Markdown.elements,
        "fence": BubbleCodeBlock,
        "code_block": BubbleCodeBlock,
    }


class ChatBubble:
    """Rich renderable for one chat message."""

    def __init__(self, message: Message) -> None:
        self.message = message

    def __rich_console__(
        self, console: Console, options: ConsoleOptions
    ) -> RenderResult:
        is_user = self.message.is_user
        panel = Panel(
            BubbleMarkdown(self.message.content),
            box=box.ROUNDED,
            style=USER_BUBBLE_STYLE if is_user else ASSISTANT_BUBBLE_STYLE,
            padding=(0, 1),
            expand=False,
        )
        bubble = Constrain(panel, bubble_width(options.max_width))
        yield Align.right(bubble) if is_user else Align.left(bubble)


def render_message(message: Message) -> ChatBubble:
    return ChatBubble(message)
