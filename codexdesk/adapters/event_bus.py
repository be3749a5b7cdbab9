"""Async event bus bridging service callbacks to TUI/CLI consumers.

The service fires events via callback from its stream pumps.
The EventBus queues them; the TUI's event processor and the
``--stream`` printer each consume them for one workspace.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any

from codexdesk.adapters.events import ServiceEvent, dict_to_event
from codexdesk.engine.config import EventCallback

logger = logging.getLogger(__name__)


class EventBus:
    """Bounded queue of service events.

    ``emit`` blocks for up to ``put_timeout`` seconds when the queue is
    full, so a slow consumer throttles the stream pumps; an event that
    still does not fit is dropped and counted in ``dropped``.
    """

    def __init__(
        self,
        maxsize: int = 5000,
        put_timeout: float = 30.0,
        poll_interval: float = 0.5,
    ) -> None:
        self._queue: asyncio.Queue[ServiceEvent] = asyncio.Queue(maxsize=maxsize)
        self._put_timeout = put_timeout
        self._poll_interval = poll_interval
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return self._queue.qsize()

    def make_callback(self) -> EventCallback:
        """Return the coroutine to pass as CodexService(event_callback=...)."""
        async def callback(data: dict[str, Any]) -> None:
            await self.emit(dict_to_event(data))
        return callback

    async def emit(self, event: ServiceEvent) -> None:
        if self._closed:
            return
        try:
            await asyncio.wait_for(self._queue.put(event), timeout=self._put_timeout)
        except asyncio.TimeoutError:
            self.dropped += 1
            logger.error(
                "Dropped %s for %s: queue full for %.1fs (size=%d, dropped=%d)",
                event.event_type, event.workspace_id or "<none>",
                self._put_timeout, self._queue.qsize(), self.dropped,
            )

    async def consume(
        self, workspace_id: str | None = None,
    ) -> AsyncIterator[ServiceEvent]:
        """Yield queued events until close() or cancellation.

        With ``workspace_id`` set, events for other workspaces are
        discarded instead of yielded.
        """
        while not self._closed:
            try:
                event = await asyncio.wait_for(
                    self._queue.get(), timeout=self._poll_interval,
                )
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                return
            if workspace_id is not None and event.workspace_id != workspace_id:
                logger.debug(
                    "Skipping %s for workspace %s", event.event_type, event.workspace_id,
                )
                continue
            yield event

    def close(self) -> None:
        """Stop every consumer loop; later emits are ignored."""
        self._closed = True

    def reset(self) -> None:
        """Discard queued events and re-open the bus."""
        discarded = 0
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            discarded += 1
        if discarded:
            logger.info("EventBus reset discarded %d queued event(s)", discarded)
        self._closed = False
        self.dropped = 0
