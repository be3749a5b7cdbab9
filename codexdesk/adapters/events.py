"""Event types emitted by the Codex service.

Each event corresponds to a service callback dict, parsed into
a typed dataclass for safe consumption by the TUI and CLI.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class ServiceEvent:
    """Base event from the Codex service."""
    event_type: str = ""
    workspace_id: str = ""


@dataclass
class CodexOutput(ServiceEvent):
    event_type: str = "codex_output"
    agent_id: str = ""
    output: str = ""


@dataclass
class CodexError(ServiceEvent):
    event_type: str = "codex_error"
    agent_id: str = ""
    error: str = ""
    # False for stderr chunks of a live run, True when the run failed.
    fatal: bool = False


@dataclass
class CodexComplete(ServiceEvent):
    event_type: str = "codex_complete"
    agent_id: str = ""
    exit_code: int | None = None


@dataclass
class AgentCreated(ServiceEvent):
    event_type: str = "agent_created"
    agent_id: str = ""


@dataclass
class AgentRemoved(ServiceEvent):
    event_type: str = "agent_removed"
    agent_id: str = ""


@dataclass
class AgentStatusChanged(ServiceEvent):
    event_type: str = "agent_status_changed"
    agent_id: str = ""
    status: str = ""


# Map of event type strings to dataclass constructors
_EVENT_MAP: dict[str, type[ServiceEvent]] = {
    "codex_output": CodexOutput,
    "codex_error": CodexError,
    "codex_complete": CodexComplete,
    "agent_created": AgentCreated,
    "agent_removed": AgentRemoved,
    "agent_status_changed": AgentStatusChanged,
}


def event_to_dict(event: ServiceEvent) -> dict[str, Any]:
    """Convert a typed event dataclass to a plain dict for JSON serialization."""
    d: dict[str, Any] = {}
    for f in event.__dataclass_fields__:
        val = getattr(event, f)
        if val is not None:
            d[f] = val
    # Use "event" key instead of "event_type" for consistency with service callbacks
    if "event_type" in d:
        d["event"] = d.pop("event_type")
    return d


def dict_to_event(data: dict[str, Any]) -> ServiceEvent:
    """Convert a service callback dict to a typed event dataclass."""
    event_type = data.get("event", "")
    cls = _EVENT_MAP.get(event_type, ServiceEvent)
    # Filter dict keys to only those the dataclass accepts
    valid_fields = {f.name for f in cls.__dataclass_fields__.values()}
    filtered = {k: v for k, v in data.items() if k in valid_fields}
    if "event" in data and "event_type" not in filtered:
        filtered["event_type"] = data["event"]
    return cls(**filtered)
