from __future__ import annotations

import re
from pathlib import Path

from codexdesk.engine.models import CodexAgent
from codexdesk.engine.stream_log import (
    CANCELLED_MARKER,
    COMPLETE_MARKER,
    StreamLogManager,
    build_header,
    error_marker,
)


def _agent(worktree: Path) -> CodexAgent:
    return CodexAgent(id="agent-ws-1", workspace_id="ws-1", worktree_path=str(worktree))


def test_header_layout(tmp_path: Path) -> None:
    header = build_header("ws-1", _agent(tmp_path), "refactor the parser")

    lines = header.split("\n")
    assert re.fullmatch(
        r"=== Codex Stream \d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}\+00:00 ===",
        lines[0],
    )
    assert lines[1:] == [
        "Workspace ID: ws-1",
        f"Worktree: {tmp_path}",
        "Prompt:",
        "refactor the parser",
        "",
        "--- Output ---",
        "",
    ]


def test_markers() -> None:
    assert COMPLETE_MARKER.format(exit_code=0) == "\n[COMPLETE] exit code 0\n"
    assert COMPLETE_MARKER.format(exit_code="null") == "\n[COMPLETE] exit code null\n"
    assert CANCELLED_MARKER == "\n[CANCELLED] Codex stream stopped by user\n"
    assert error_marker("bad flag") == "\n[ERROR] bad flag\n"


def test_initialize_truncates_previous_log(tmp_path: Path) -> None:
    manager = StreamLogManager()
    agent = _agent(tmp_path)
    log_path = tmp_path / "codex-stream.log"
    log_path.write_text("stale content from an older run\n", encoding="utf-8")

    manager.initialize("ws-1", agent, "first")
    manager.append("ws-1", "chunk one")
    manager.finalize("ws-1")

    content = log_path.read_text(encoding="utf-8")
    assert "stale content" not in content
    assert content.endswith("--- Output ---\nchunk one")


def test_append_is_visible_before_finalize(tmp_path: Path) -> None:
    manager = StreamLogManager("custom.log")
    agent = _agent(tmp_path)

    manager.initialize("ws-1", agent, "prompt")
    manager.append("ws-1", "partial")

    assert manager.log_path(agent) == tmp_path / "custom.log"
    assert (tmp_path / "custom.log").read_text(encoding="utf-8").endswith("partial")
    manager.close_all()
    assert not manager.has_writer("ws-1")


def test_append_and_finalize_without_writer_are_noops(tmp_path: Path) -> None:
    manager = StreamLogManager()

    manager.append("ws-1", "ignored")
    manager.finalize("ws-1")
    manager.finalize("ws-1")

    assert not (tmp_path / "codex-stream.log").exists()
    assert not manager.has_writer("ws-1")


def test_initialize_creates_missing_worktree_directory(tmp_path: Path) -> None:
    manager = StreamLogManager()
    agent = _agent(tmp_path / "not" / "yet" / "there")

    manager.initialize("ws-1", agent, "prompt")
    manager.finalize("ws-1")

    assert (tmp_path / "not" / "yet" / "there" / "codex-stream.log").is_file()


def test_unwritable_log_location_is_logged_not_raised(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("a file, not a directory", encoding="utf-8")
    manager = StreamLogManager()

    manager.initialize("ws-1", _agent(blocker / "worktree"), "prompt")
    manager.append("ws-1", "dropped")

    assert not manager.has_writer("ws-1")
