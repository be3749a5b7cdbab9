"""Core data models for the Codex service.

Agent handles, responses and status values. Single source of truth
shared by the service, the event adapters and the TUI.
"""
from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class AgentStatus(str, Enum):
    """Agent lifecycle status as seen by the UI."""
    IDLE = "idle"
    RUNNING = "running"
    ERROR = "error"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def make_agent_id(workspace_id: str) -> str:
    """Build an agent id from the workspace id and the current epoch millis."""
    return f"agent-{workspace_id}-{int(time.time() * 1000)}"


@dataclass
class CodexAgent:
    """Handle for the Codex CLI bound to one workspace worktree.

    The handle does not own a process. The service tracks running
    processes separately, keyed by workspace id.
    """
    id: str
    workspace_id: str
    worktree_path: str
    status: AgentStatus = AgentStatus.IDLE
    last_message: str | None = None
    last_response: str | None = None
    created_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["status"] = self.status.value
        d["created_at"] = self.created_at.isoformat()
        return d


@dataclass
class CodexResponse:
    """Result of a non-streaming Codex invocation."""
    success: bool
    agent_id: str
    output: str | None = None
    error: str | None = None
