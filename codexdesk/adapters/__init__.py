"""Adapters package - Bridge between the Codex service and UI frontends.

This package contains the typed service events and the event bus
that connect the service to the TUI and the streaming CLI.
"""
from __future__ import annotations

__all__ = [
    "EventBus",
    "ServiceEvent",
    "dict_to_event",
    "event_to_dict",
]

from codexdesk.adapters.event_bus import EventBus
from codexdesk.adapters.events import ServiceEvent, dict_to_event, event_to_dict
