from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

logger = logging.getLogger("pointage.broadcast")

EVENT_LATE_ALERT = "employee_late_alert"
EVENT_EXIT_REMINDER = "employee_pointage_exit_reminder"

SUBSCRIBER_QUEUE_SIZE = 256


@dataclass(frozen=True, slots=True)
class BroadcastEvent:
    name: str
    payload: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {"event": self.name, "payload": dict(self.payload)}


class BroadcastHub:
    """Fans events out to every live subscriber queue.

    ``emit`` may be called from any thread; delivery is scheduled on the event
    loop that owns the subscriber. A full or closed subscriber loses the event.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: dict[asyncio.Queue[BroadcastEvent], asyncio.AbstractEventLoop] = {}

    def subscribe(self) -> asyncio.Queue[BroadcastEvent]:
        queue: asyncio.Queue[BroadcastEvent] = asyncio.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)
        loop = asyncio.get_running_loop()
        with self._lock:
            self._subscribers[queue] = loop
        return queue

    def unsubscribe(self, queue: asyncio.Queue[BroadcastEvent]) -> None:
        with self._lock:
            self._subscribers.pop(queue, None)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def emit(self, name: str, payload: dict[str, Any]) -> int:
        event = BroadcastEvent(name=name, payload=payload)
        with self._lock:
            targets = list(self._subscribers.items())

        delivered = 0
        for queue, loop in targets:
            try:
                loop.call_soon_threadsafe(_offer, queue, event)
            except RuntimeError:
                # Loop already closed; the subscriber is gone.
                self.unsubscribe(queue)
                continue
            delivered += 1
        return delivered


def _offer(queue: asyncio.Queue[BroadcastEvent], event: BroadcastEvent) -> None:
    try:
        queue.put_nowait(event)
    except asyncio.QueueFull:
        logger.warning("broadcast_subscriber_queue_full", extra={"event_name": event.name})


def safe_emit(hub: BroadcastHub, name: str, payload: dict[str, Any]) -> int:
    try:
        return hub.emit(name, payload)
    except Exception:
        logger.exception("broadcast_emit_failed", extra={"event_name": name})
        return 0


@lru_cache
def get_broadcast_hub() -> BroadcastHub:
    return BroadcastHub()
