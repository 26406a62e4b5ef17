from __future__ import annotations

import asyncio
import unittest

from pointage.services.broadcast import BroadcastHub, safe_emit


class _ExplodingHub:
    def emit(self, name, payload):  # type: ignore[no-untyped-def]
        raise RuntimeError("hub down")


class BroadcastHubTests(unittest.IsolatedAsyncioTestCase):
    async def test_event_emitted_from_worker_thread_reaches_subscriber(self) -> None:
        hub = BroadcastHub()
        queue = hub.subscribe()

        delivered = await asyncio.to_thread(hub.emit, "employee_late_alert", {"workerId": 7})
        event = await asyncio.wait_for(queue.get(), timeout=1)

        self.assertEqual(delivered, 1)
        self.assertEqual(event.to_dict(), {"event": "employee_late_alert", "payload": {"workerId": 7}})

    async def test_unsubscribed_queue_no_longer_receives(self) -> None:
        hub = BroadcastHub()
        queue = hub.subscribe()
        hub.unsubscribe(queue)

        self.assertEqual(hub.emit("employee_late_alert", {"workerId": 7}), 0)
        self.assertEqual(hub.subscriber_count, 0)
        self.assertTrue(queue.empty())

    async def test_safe_emit_swallows_hub_failures(self) -> None:
        self.assertEqual(safe_emit(_ExplodingHub(), "employee_late_alert", {}), 0)  # type: ignore[arg-type]


if __name__ == "__main__":
    unittest.main()
