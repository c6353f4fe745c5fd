import asyncio
import os
import sys
import tempfile
import unittest

# Ensure project src/ is on sys.path for imports
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
src_path = os.path.join(ROOT, "src")
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from api.client import ApiError  # noqa: E402
from api.socket import DISCONNECT, ChatConnectionError  # noqa: E402
from db.storage import (  # noqa: E402
    KEY_CHAT_MESSAGES,
    KEY_CHAT_QUEUE,
    KEY_CHAT_UNREAD,
    LocalStorage,
)
from services.messaging import (  # noqa: E402
    ConnectionState,
    MessagingClient,
    ReconnectPolicy,
)
from utils.pure import now_iso  # noqa: E402

REPLAY_DELAY = 0.02


class FakeTransport:
    """In-memory ChatTransport. Server pushes are simulated with fire()."""

    def __init__(self, fail_connects: int = 0):
        self.connected = False
        self.fail_connects = fail_connects
        self.emit_budget = None
        self.connect_calls = 0
        self.emitted = []
        self.handlers = {}

    async def connect(self, timeout: float) -> None:
        self.connect_calls += 1
        if self.fail_connects:
            self.fail_connects -= 1
            raise ChatConnectionError("connection refused")
        self.connected = True

    async def disconnect(self) -> None:
        if self.connected:
            self.connected = False
            await self.fire(DISCONNECT)

    async def emit(self, event, data) -> None:
        if self.emit_budget is not None:
            if self.emit_budget <= 0:
                self.connected = False
            self.emit_budget -= 1
        if not self.connected:
            raise ChatConnectionError("not connected")
        self.emitted.append((event, data))

    def on(self, event, handler) -> None:
        self.handlers.setdefault(event, []).append(handler)

    async def fire(self, event, *args) -> None:
        for handler in list(self.handlers.get(event, [])):
            await handler(*args)

    async def drop(self) -> None:
        """The server goes away."""
        self.connected = False
        await self.fire(DISCONNECT)

    def sent_texts(self):
        return [data["message"] for event, data in self.emitted if event == "sendDirectMessage"]


def server_message(_id, text, sender="u1", sender_type="user", timestamp=None):
    return {
        "_id": _id,
        "senderId": sender,
        "receiverId": "admin" if sender == "u1" else "u1",
        "message": text,
        "senderType": sender_type,
        "timestamp": timestamp or now_iso(),
    }


class MessagingTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.storage = LocalStorage(os.path.join(self.temp_dir.name, "test.sqlite"))
        self.transport = FakeTransport()
        self.history_pages = []
        self.client = self.make_client(self.transport)

    def make_client(self, transport, **kwargs):
        async def loader(mark_as_read):
            if not self.history_pages:
                raise ApiError("Server error (500)", 500)
            return self.history_pages.pop(0)

        return MessagingClient(
            transport,
            self.storage,
            "u1",
            support_id="admin",
            policy=ReconnectPolicy(attempts=2, delay=0.01, delay_max=0.02, timeout=1.0),
            replay_delay=REPLAY_DELAY,
            history_loader=loader,
            **kwargs,
        )

    async def asyncTearDown(self):
        await self.client.close()

    def tearDown(self):
        self.temp_dir.cleanup()

    async def open_and_wait(self, client=None):
        client = client or self.client
        await client.open()
        return await client.wait_connected()

    # ---------- offline queue ----------

    async def test_offline_sends_are_queued_and_replayed_in_order(self):
        first = await self.client.send("first")
        second = await self.client.send("  second  ")
        self.assertEqual((first.status, second.status), ("queued", "queued"))
        self.assertTrue(first.is_temporary)
        self.assertEqual(second.message, "second")
        self.assertEqual(len(await self.storage.get_list(KEY_CHAT_QUEUE)), 2)

        self.assertTrue(await self.open_and_wait())
        self.assertEqual(self.transport.emitted[0], ("joinUser", "u1"))
        await asyncio.sleep(REPLAY_DELAY * 10)

        self.assertEqual(self.transport.sent_texts(), ["first", "second"])
        self.assertEqual(self.client.queue, [])
        self.assertIsNone(await self.storage.get_raw(KEY_CHAT_QUEUE))
        self.assertEqual([m.status for m in self.client.history], ["sending", "sending"])

    async def test_queue_survives_restart(self):
        await self.client.send("one")
        await self.client.send("two")

        restarted = self.make_client(FakeTransport())
        await restarted.load()
        self.assertEqual([p.message for p in restarted.queue], ["one", "two"])
        self.assertEqual([m.message for m in restarted.history], ["one", "two"])
        self.assertTrue(all(m.status == "queued" for m in restarted.history))

    async def test_interrupted_replay_keeps_the_queue(self):
        await self.client.send("a")
        await self.client.send("b")
        # joinUser and the first message get through, then the link dies
        self.transport.emit_budget = 2
        await self.open_and_wait()
        await asyncio.sleep(REPLAY_DELAY * 4)

        self.assertEqual(self.transport.sent_texts(), ["a"])
        self.assertEqual([p.message for p in self.client.queue], ["a", "b"])
        self.assertEqual(len(await self.storage.get_list(KEY_CHAT_QUEUE)), 2)
        self.assertEqual(self.client.history[1].status, "queued")

    async def test_sends_during_replay_wait_their_turn(self):
        await self.client.send("queued earlier")
        await self.open_and_wait()
        late = await self.client.send("typed during replay")
        self.assertEqual(late.status, "queued")
        await asyncio.sleep(REPLAY_DELAY * 8)
        self.assertEqual(self.transport.sent_texts(), ["queued earlier", "typed during replay"])
        self.assertEqual(self.client.queue, [])

    async def test_connected_send_goes_straight_out(self):
        await self.open_and_wait()
        echo = await self.client.send("hello")
        self.assertEqual(echo.status, "sending")
        self.assertEqual(self.transport.emitted[-1][1]["message"], "hello")
        self.assertEqual(self.client.queue, [])

    async def test_blank_messages_are_ignored(self):
        self.assertIsNone(await self.client.send("   "))
        self.assertEqual(self.client.history, [])

    # ---------- inbound, dedup & reconciliation ----------

    async def test_confirmation_replaces_echo_in_place(self):
        await self.open_and_wait()
        await self.transport.fire("receiveDirectMessage", server_message("s1", "hi", "admin", "admin"))
        echo = await self.client.send("hello")
        await self.transport.fire("messageSent", server_message("m1", "hello"))
        await self.transport.fire("messageSent", server_message("m1", "hello"))

        self.assertEqual([m.id for m in self.client.history], ["s1", "m1"])
        self.assertEqual(self.client.history[1].status, "confirmed")
        stored = [d["_id"] for d in await self.storage.get_list(KEY_CHAT_MESSAGES)]
        self.assertEqual(stored, ["s1", "m1"])
        self.assertNotIn(echo.id, stored)

    async def test_confirmation_outside_window_is_a_new_message(self):
        await self.open_and_wait()
        await self.client.send("hello")
        await self.transport.fire(
            "messageSent", server_message("m1", "hello", timestamp="2020-01-01T00:00:00Z")
        )
        self.assertEqual(len(self.client.history), 2)
        self.assertTrue(self.client.history[0].queued)

    async def test_duplicate_and_malformed_inbound(self):
        payload = server_message("s1", "Your order shipped", "admin", "admin")
        seen = []
        self.client.add_support_listener(seen.append)
        await self.transport.fire("receiveDirectMessage", payload)
        await self.transport.fire("receiveDirectMessage", payload)
        await self.transport.fire("receiveDirectMessage", "garbage")

        self.assertEqual(len(self.client.history), 1)
        self.assertEqual(self.client.history[0].sender_type, "support")
        self.assertEqual(len(seen), 1)

    async def test_unread_tracking(self):
        await self.transport.fire("receiveDirectMessage", server_message("s1", "ping", "admin", "admin"))
        self.assertEqual(self.client.unread_count, 1)
        self.assertEqual(await self.storage.get_list(KEY_CHAT_UNREAD), ["s1"])

        await self.client.open()
        self.assertEqual(self.client.unread_count, 0)
        self.assertIsNone(await self.storage.get_raw(KEY_CHAT_UNREAD))

        await self.client.wait_connected()
        await self.transport.fire("receiveDirectMessage", server_message("s2", "pong", "admin", "admin"))
        self.assertEqual(self.client.unread_count, 0)

    # ---------- connection ----------

    async def test_bounded_retries_then_offline(self):
        transport = FakeTransport(fail_connects=10)
        client = self.make_client(transport)
        try:
            self.assertFalse(await self.open_and_wait(client))
            self.assertEqual(transport.connect_calls, 3)
            self.assertTrue(client.offline)
            self.assertIs(client.state, ConnectionState.DISCONNECTED)

            transport.fail_connects = 0
            await client.retry()
            self.assertTrue(await client.wait_connected())
            self.assertFalse(client.offline)
        finally:
            await client.close()

    async def test_unexpected_disconnect_reconnects(self):
        await self.open_and_wait()
        await self.transport.drop()
        self.assertTrue(await self.client.wait_connected())
        self.assertEqual(self.transport.connect_calls, 2)
        joins = [e for e in self.transport.emitted if e[0] == "joinUser"]
        self.assertEqual(len(joins), 2)

    async def test_close_does_not_reconnect(self):
        await self.open_and_wait()
        await self.client.close()
        await asyncio.sleep(0.05)
        self.assertIs(self.client.state, ConnectionState.DISCONNECTED)
        self.assertFalse(self.transport.connected)
        self.assertEqual(self.transport.connect_calls, 1)

    async def test_close_abandons_connect_attempts(self):
        transport = FakeTransport(fail_connects=10)
        client = self.make_client(transport)
        await client.open()
        await client.close()
        await asyncio.sleep(0.1)
        self.assertLessEqual(transport.connect_calls, 1)
        self.assertFalse(client.offline)

    def test_backoff_is_capped(self):
        policy = ReconnectPolicy(attempts=5, delay=1.0, delay_max=5.0)
        self.assertEqual([policy.delay_for(n) for n in range(1, 6)], [1.0, 2.0, 4.0, 5.0, 5.0])

    # ---------- storage & history ----------

    async def test_corrupt_storage_loads_empty(self):
        await self.storage.set_raw(KEY_CHAT_MESSAGES, "{{{")
        await self.storage.set_json(KEY_CHAT_QUEUE, [{"bad": 1}, {"senderId": "u1", "receiverId": "admin", "message": "ok"}])
        await self.storage.set_json(KEY_CHAT_UNREAD, {"not": "a list"})
        await self.client.load()
        self.assertEqual(self.client.history, [])
        self.assertEqual([p.message for p in self.client.queue], ["ok"])
        self.assertEqual(self.client.unread, [])

    async def test_fetch_history_merges_and_sorts(self):
        await self.transport.fire(
            "receiveDirectMessage",
            server_message("s2", "later", "admin", "admin", "2026-03-12T10:00:00Z"),
        )
        self.history_pages.append(
            [
                server_message("s1", "earlier", "admin", "admin", "2026-03-12T09:00:00Z") | {"read": False},
                server_message("s2", "later", "admin", "admin", "2026-03-12T10:00:00Z"),
                {"_id": "u9", "senderId": "u1", "message": "mine", "createdAt": "2026-03-11T08:00:00Z"},
            ]
        )
        added = await self.client.fetch_history(mark_as_read=False)

        self.assertEqual(added, 2)
        self.assertEqual([m.id for m in self.client.timeline()], ["u9", "s1", "s2"])
        self.assertEqual(self.client.history[0].sender_type, "user")
        self.assertIn("s1", self.client.unread)

        # the loader now fails; that is logged and ignored
        self.assertEqual(await self.client.fetch_history(), 0)

    async def test_clear_and_reset(self):
        await self.client.send("offline note")
        await self.client.clear_history()
        self.assertEqual((self.client.history, self.client.queue), ([], []))
        self.assertIsNone(await self.storage.get_raw(KEY_CHAT_QUEUE))

        await self.transport.fire("receiveDirectMessage", server_message("s1", "x", "admin", "admin"))
        await self.open_and_wait()
        await self.client.reset()
        self.assertFalse(self.transport.connected)
        self.assertEqual(self.client.unread, [])
        for key in (KEY_CHAT_MESSAGES, KEY_CHAT_QUEUE, KEY_CHAT_UNREAD):
            self.assertIsNone(await self.storage.get_raw(key))


if __name__ == "__main__":
    unittest.main()
