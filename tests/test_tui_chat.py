from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from types import SimpleNamespace

import pytest
from textual.app import App, ComposeResult

from codexdesk.adapters.event_bus import EventBus
from codexdesk.adapters.events import (
    AgentStatusChanged,
    CodexComplete,
    CodexError,
    CodexOutput,
)
from codexdesk.engine.codex_service import CodexService
from codexdesk.engine.config import ServiceConfig
from codexdesk.shared.models.message import Message, MessageRole
from codexdesk.tui.app import CodexDeskApp
from codexdesk.tui.handlers.event_processor import EventProcessor
from codexdesk.tui.screens.chat import ChatScreen
from codexdesk.tui.widgets.conversation import ConversationView, RunStoppedIndicator
from codexdesk.tui.widgets.message_bubble import MessageBubble
from codexdesk.tui.widgets.status_bar import StatusBar, _format_elapsed

from fake_codex import install_fake_codex


class _DummyConversation:
    def __init__(self) -> None:
        self.chunks: list[str] = []
        self.notices: list[str] = []
        self.ended = 0

    def stream_chunk(self, text: str) -> None:
        self.chunks.append(text)

    def end_stream(self) -> None:
        self.ended += 1

    def add_notice(self, reason: str) -> None:
        self.notices.append(reason)


class _DummyLog:
    def __init__(self) -> None:
        self.errors: list[str] = []
        self.notices: list[str] = []

    def log_error(self, text: str) -> None:
        self.errors.append(text)

    def log_notice(self, text: str) -> None:
        self.notices.append(text)


def _processor() -> EventProcessor:
    return EventProcessor(SimpleNamespace(workspace_id="ws-1"))


def test_event_processor_routes_output_and_status() -> None:
    processor = _processor()
    conv, log = _DummyConversation(), _DummyLog()
    sb = SimpleNamespace(status="idle")

    processor.handle(AgentStatusChanged(workspace_id="ws-1", status="running"), conv, sb, log)
    processor.handle(CodexOutput(workspace_id="ws-1", output="hel"), conv, sb, log)
    processor.handle(CodexOutput(workspace_id="ws-1", output="lo"), conv, sb, log)

    assert sb.status == "running"
    assert conv.chunks == ["hel", "lo"]


def test_event_processor_ignores_other_workspaces() -> None:
    processor = _processor()
    conv, log = _DummyConversation(), _DummyLog()
    sb = SimpleNamespace(status="idle")

    processor.handle(CodexOutput(workspace_id="ws-2", output="nope"), conv, sb, log)
    processor.handle(AgentStatusChanged(workspace_id="ws-2", status="error"), conv, sb, log)

    assert conv.chunks == []
    assert sb.status == "idle"


def test_event_processor_error_handling() -> None:
    processor = _processor()
    conv, log = _DummyConversation(), _DummyLog()
    sb = SimpleNamespace(status="running")

    processor.handle(CodexError(workspace_id="ws-1", error="warn\n"), conv, sb, log)
    assert log.errors == ["warn\n"]
    assert conv.ended == 0

    processor.handle(
        CodexError(workspace_id="ws-1", error="spawn failed\n", fatal=True), conv, sb, log,
    )
    assert conv.ended == 1
    assert conv.notices == ["spawn failed"]


def test_event_processor_complete_notices_non_zero_exit() -> None:
    processor = _processor()
    conv, log = _DummyConversation(), _DummyLog()
    sb = SimpleNamespace(status="running")

    processor.handle(CodexComplete(workspace_id="ws-1", exit_code=0), conv, sb, log)
    processor.handle(CodexComplete(workspace_id="ws-1", exit_code=None), conv, sb, log)
    processor.handle(CodexComplete(workspace_id="ws-1", exit_code=2), conv, sb, log)

    assert conv.ended == 3
    assert conv.notices == ["Codex exited with code 2"]
    assert log.notices[1] == "Codex completed with exit code null"


def test_format_elapsed() -> None:
    assert _format_elapsed(5) == "5s"
    assert _format_elapsed(125) == "2m 5s"
    assert _format_elapsed(3725) == "1h 2m"


class _ConversationApp(App):
    def compose(self) -> ComposeResult:
        yield ConversationView(id="conversation")


@pytest.mark.asyncio
async def test_conversation_view_streams_into_one_bubble() -> None:
    app = _ConversationApp()
    async with app.run_test() as pilot:
        conv = app.query_one("#conversation", ConversationView)
        conv.add_message(Message(content="hi", sender=MessageRole.USER.value))
        conv.stream_chunk("Hello ")
        conv.stream_chunk("**world**")
        await pilot.pause()

        bubbles = list(app.query(MessageBubble))
        assert [b.has_class("bubble-user") for b in bubbles] == [True, False]
        assert bubbles[1].has_class("bubble-assistant")
        assert bubbles[1].text == "Hello **world**"
        assert conv.streaming

        message = conv.end_stream()
        assert message is not None and message.streaming is False
        assert conv.end_stream() is None

        conv.stream_chunk("next run")
        await pilot.pause()
        assert len(app.query(MessageBubble)) == 3
        assert [m.content for m in conv.messages] == ["hi", "Hello **world**", "next run"]

        conv.clear()
        await pilot.pause()
        assert conv.messages == []
        assert len(app.query(MessageBubble)) == 0


async def _wait_until(pilot, predicate, attempts: int = 100) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await pilot.pause(0.05)
    raise AssertionError("condition not reached")


@pytest.mark.skipif(sys.platform == "win32", reason="fake codex is a POSIX shell script")
@pytest.mark.asyncio
async def test_chat_screen_streams_codex_reply(tmp_path: Path) -> None:
    command = install_fake_codex(tmp_path)
    worktree = tmp_path / "worktree"
    worktree.mkdir()
    bus = EventBus()
    service = CodexService(
        ServiceConfig(command=str(command)), event_callback=bus.make_callback(),
    )
    app = CodexDeskApp(
        service=service, bus=bus, workspace_id="ws-1", worktree_path=str(worktree),
    )

    async with app.run_test() as pilot:
        await _wait_until(pilot, lambda: isinstance(app.screen, ChatScreen))
        await _wait_until(pilot, lambda: service.get_agent_status("ws-1") is not None)
        sb = app.screen.query_one("#status-bar", StatusBar)
        await _wait_until(pilot, lambda: sb.workspace == "ws-1")

        await pilot.click("#prompt-input")
        await pilot.press(*"hello")
        await pilot.press("enter")

        conv = app.screen.query_one("#conversation", ConversationView)
        await _wait_until(
            pilot,
            lambda: len(conv.messages) == 2
            and "echo: hello" in conv.messages[1].content
            and not conv.streaming,
        )
        assert conv.messages[0].is_user
        assert conv.messages[0].content == "hello"
        await _wait_until(pilot, lambda: sb.status == "idle")
        assert sb.installed is True

    await service.shutdown()
    bus.close()
    assert (worktree / "codex-stream.log").is_file()


@pytest.mark.asyncio
async def test_chat_screen_shows_install_instructions_when_missing(tmp_path: Path) -> None:
    bus = EventBus()
    service = CodexService(
        ServiceConfig(command=str(tmp_path / "no-such-codex")),
        event_callback=bus.make_callback(),
    )
    app = CodexDeskApp(
        service=service, bus=bus, workspace_id="ws-1", worktree_path=str(tmp_path),
    )

    async with app.run_test() as pilot:
        await _wait_until(pilot, lambda: isinstance(app.screen, ChatScreen))
        sb = app.screen.query_one("#status-bar", StatusBar)
        await _wait_until(pilot, lambda: sb.installed is False)
        conv = app.screen.query_one("#conversation", ConversationView)
        await _wait_until(pilot, lambda: len(conv.messages) == 1)
        assert conv.messages[0].sender == MessageRole.SYSTEM.value
        assert "npm install -g @openai/codex" in conv.messages[0].content

    bus.close()
    await asyncio.sleep(0)


@pytest.mark.skipif(sys.platform == "win32", reason="fake codex is a POSIX shell script")
@pytest.mark.asyncio
async def test_ctrl_c_stops_running_stream(tmp_path: Path) -> None:
    command = install_fake_codex(tmp_path)
    worktree = tmp_path / "worktree"
    worktree.mkdir()
    bus = EventBus()
    service = CodexService(
        ServiceConfig(command=str(command), stop_grace_seconds=1.0),
        event_callback=bus.make_callback(),
    )
    app = CodexDeskApp(
        service=service, bus=bus, workspace_id="ws-1", worktree_path=str(worktree),
    )

    async with app.run_test() as pilot:
        await _wait_until(pilot, lambda: isinstance(app.screen, ChatScreen))
        await _wait_until(pilot, lambda: service.get_agent_status("ws-1") is not None)

        await pilot.click("#prompt-input")
        await pilot.press(*"sleep")
        await pilot.press("enter")

        conv = app.screen.query_one("#conversation", ConversationView)
        await _wait_until(pilot, lambda: service.is_running("ws-1") and conv.streaming)

        await pilot.press("ctrl+c")
        await _wait_until(pilot, lambda: not service.is_running("ws-1"))
        await _wait_until(pilot, lambda: len(app.screen.query(RunStoppedIndicator)) >= 1)
        await _wait_until(pilot, lambda: not conv.streaming)
        assert service.get_agent_status("ws-1").status.value == "idle"

    await service.shutdown()
    bus.close()
    log = (worktree / "codex-stream.log").read_text(encoding="utf-8")
    assert log.endswith("\n[CANCELLED] Codex stream stopped by user\n")
