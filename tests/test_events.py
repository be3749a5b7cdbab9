from __future__ import annotations

import asyncio

import pytest

from codexdesk.adapters.event_bus import EventBus
from codexdesk.adapters.events import (
    AgentStatusChanged,
    CodexComplete,
    CodexError,
    CodexOutput,
    ServiceEvent,
    dict_to_event,
    event_to_dict,
)


def test_dict_to_event_builds_typed_events() -> None:
    output = dict_to_event({
        "event": "codex_output", "workspace_id": "ws-1",
        "agent_id": "agent-ws-1-1", "output": "hi",
    })
    complete = dict_to_event({
        "event": "codex_complete", "workspace_id": "ws-1",
        "agent_id": "agent-ws-1-1", "exit_code": None,
    })
    error = dict_to_event({
        "event": "codex_error", "workspace_id": "ws-1",
        "agent_id": "", "error": "No agent found for this workspace", "fatal": True,
    })

    assert output == CodexOutput(workspace_id="ws-1", agent_id="agent-ws-1-1", output="hi")
    assert isinstance(complete, CodexComplete) and complete.exit_code is None
    assert isinstance(error, CodexError) and error.fatal is True


def test_dict_to_event_ignores_unknown_fields_and_types() -> None:
    status = dict_to_event({
        "event": "agent_status_changed", "workspace_id": "ws-1",
        "status": "running", "extra": 1,
    })
    unknown = dict_to_event({"event": "mystery", "workspace_id": "ws-2"})

    assert status == AgentStatusChanged(workspace_id="ws-1", status="running")
    assert type(unknown) is ServiceEvent
    assert unknown.event_type == "mystery"


def test_event_to_dict_uses_event_key() -> None:
    data = event_to_dict(CodexComplete(workspace_id="ws-1", agent_id="a", exit_code=None))

    assert data == {"event": "codex_complete", "workspace_id": "ws-1", "agent_id": "a"}


@pytest.mark.asyncio
async def test_bus_callback_queues_typed_events() -> None:
    bus = EventBus()
    callback = bus.make_callback()

    await callback({"event": "codex_output", "workspace_id": "ws-1", "output": "a"})
    await callback({"event": "codex_complete", "workspace_id": "ws-1", "exit_code": 0})

    received = []
    async for event in bus.consume():
        received.append(event)
        if isinstance(event, CodexComplete):
            break

    assert [e.event_type for e in received] == ["codex_output", "codex_complete"]
    assert bus.qsize() == 0


@pytest.mark.asyncio
async def test_consume_stops_when_bus_closes() -> None:
    bus = EventBus()

    async def drain() -> list[ServiceEvent]:
        return [event async for event in bus.consume()]

    task = asyncio.create_task(drain())
    await bus.emit(CodexOutput(workspace_id="ws-1", output="x"))
    await asyncio.sleep(0.05)
    bus.close()

    received = await asyncio.wait_for(task, timeout=2)
    assert [e.output for e in received] == ["x"]
    assert bus.closed


@pytest.mark.asyncio
async def test_emit_after_close_is_dropped_and_reset_reopens() -> None:
    bus = EventBus()
    bus.close()

    await bus.emit(CodexOutput(workspace_id="ws-1", output="late"))
    assert bus.qsize() == 0

    bus.reset()
    assert not bus.closed
    await bus.emit(CodexOutput(workspace_id="ws-1", output="fresh"))
    assert bus.qsize() == 1


@pytest.mark.asyncio
async def test_full_queue_drops_after_put_timeout() -> None:
    bus = EventBus(maxsize=1, put_timeout=0.05)

    await bus.emit(CodexOutput(workspace_id="ws-1", output="first"))
    await bus.emit(CodexOutput(workspace_id="ws-1", output="second"))

    assert bus.qsize() == 1
    assert bus.dropped == 1
    bus.reset()
    assert bus.qsize() == 0
    assert bus.dropped == 0


@pytest.mark.asyncio
async def test_consume_filters_by_workspace() -> None:
    bus = EventBus(poll_interval=0.05)
    await bus.emit(CodexOutput(workspace_id="ws-2", output="other"))
    await bus.emit(CodexOutput(workspace_id="ws-1", output="mine"))
    await bus.emit(CodexComplete(workspace_id="ws-1", exit_code=0))

    received = []
    async for event in bus.consume("ws-1"):
        received.append(event)
        if isinstance(event, CodexComplete):
            break

    assert [e.event_type for e in received] == ["codex_output", "codex_complete"]
    assert received[0].output == "mine"
