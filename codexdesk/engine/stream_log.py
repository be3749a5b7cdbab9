"""Per-workspace stream log files.

Each streaming run writes a plain-text transcript into the agent's
worktree: a header with the prompt, then raw stdout interleaved with
[ERROR]/[COMPLETE]/[CANCELLED] markers.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import TextIO

from .models import CodexAgent

logger = logging.getLogger(__name__)

COMPLETE_MARKER = "\n[COMPLETE] exit code {exit_code}\n"
CANCELLED_MARKER = "\n[CANCELLED] Codex stream stopped by user\n"


def error_marker(text: str) -> str:
    return f"\n[ERROR] {text}\n"


def build_header(workspace_id: str, agent: CodexAgent, prompt: str) -> str:
    """Render the header written at the top of every stream log."""
    ts = datetime.now(timezone.utc).isoformat(timespec="milliseconds")
    return "\n".join([
        f"=== Codex Stream {ts} ===",
        f"Workspace ID: {workspace_id}",
        f"Worktree: {agent.worktree_path}",
        "Prompt:",
        prompt,
        "",
        "--- Output ---",
        "",
    ])


class StreamLogManager:
    """Owns at most one open log writer per workspace."""

    def __init__(self, log_name: str = "codex-stream.log") -> None:
        self._log_name = log_name
        self._writers: dict[str, TextIO] = {}

    def log_path(self, agent: CodexAgent) -> Path:
        return Path(agent.worktree_path) / self._log_name

    def has_writer(self, workspace_id: str) -> bool:
        return workspace_id in self._writers

    def initialize(self, workspace_id: str, agent: CodexAgent, prompt: str) -> None:
        """Truncate the workspace log and write a fresh header."""
        path = self.log_path(agent)
        self.finalize(workspace_id)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            writer = open(path, "w", encoding="utf-8")
        except OSError as exc:
            logger.error("Failed to open codex stream log %s: %s", path, exc)
            return
        self._writers[workspace_id] = writer
        self.append(workspace_id, build_header(workspace_id, agent, prompt))

    def append(self, workspace_id: str, content: str) -> None:
        writer = self._writers.get(workspace_id)
        if writer is None or writer.closed:
            return
        try:
            writer.write(content)
            writer.flush()
        except OSError as exc:
            logger.error("Failed to write codex stream log: %s", exc)

    def finalize(self, workspace_id: str) -> None:
        writer = self._writers.pop(workspace_id, None)
        if writer is None:
            return
        try:
            if not writer.closed:
                writer.close()
        except OSError as exc:
            logger.error("Failed to close codex stream log: %s", exc)

    def close_all(self) -> None:
        for workspace_id in list(self._writers):
            self.finalize(workspace_id)
