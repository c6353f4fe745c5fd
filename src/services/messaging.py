"""
Support chat client.

The connection is held only while the chat view is open. Sends never get
lost from the user's point of view: every send shows up in the history at
once as a temporary entry, goes out immediately when connected, and waits
in a persisted outbound queue otherwise. The queue is replayed in order,
one message per ``replay_delay``, every time a connection comes up, and is
only trimmed once the whole batch has gone out and one more delay has
passed. A crash halfway leaves the rest queued, so delivery is
at-least-once.

Server confirmations replace the matching temporary entry in place;
anything whose id is already in the history is ignored.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
import uuid
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional

from api.client import ApiError
from api.events import (
    MESSAGE_SENT,
    RECEIVE_DIRECT_MESSAGE,
    JoinUser,
    SendDirectMessage,
    decode_event,
    encode_event,
)
from api.socket import DISCONNECT, ChatConnectionError, ChatTransport
from db.models import TEMP_ID_PREFIX, ChatMessage
from db.storage import (
    CHAT_KEYS,
    KEY_CHAT_MESSAGES,
    KEY_CHAT_QUEUE,
    KEY_CHAT_UNREAD,
    LocalStorage,
)
from utils.logger import get_logger
from utils.pure import EPOCH, now_iso, parse_timestamp

_logger = get_logger(__name__)

HistoryLoader = Callable[[bool], Awaitable[List[dict]]]

# how far a confirmation may be from the moment its pending copy went out
RECONCILE_WINDOW = 120.0


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True)
class ReconnectPolicy:
    """
    attempts: retries after the first failed connect before giving up.
    delay doubles per retry, capped at delay_max. timeout bounds each try.
    """

    attempts: int = 5
    delay: float = 1.0
    delay_max: float = 5.0
    timeout: float = 20.0

    def delay_for(self, retry: int) -> float:
        return min(self.delay * (2 ** max(retry - 1, 0)), self.delay_max)


def _temp_id() -> str:
    return f"{TEMP_ID_PREFIX}{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"


class MessagingClient:
    def __init__(
        self,
        transport: ChatTransport,
        storage: LocalStorage,
        user_id: Optional[str],
        support_id: str = "admin",
        policy: Optional[ReconnectPolicy] = None,
        replay_delay: float = 0.5,
        history_loader: Optional[HistoryLoader] = None,
        reconcile_window: float = RECONCILE_WINDOW,
    ):
        self._transport = transport
        self._storage = storage
        self.user_id = user_id
        self.support_id = support_id
        self.policy = policy or ReconnectPolicy()
        self.replay_delay = replay_delay
        self._history_loader = history_loader
        self.reconcile_window = reconcile_window

        self.history: List[ChatMessage] = []
        self.queue: List[SendDirectMessage] = []
        self.unread: List[str] = []

        self.state = ConnectionState.DISCONNECTED
        self.offline = False
        self.is_open = False

        self._connect_task: Optional[asyncio.Task] = None
        self._replay_task: Optional[asyncio.Task] = None
        self._tearing_down = False
        self._listeners: List[Callable[[], None]] = []
        self._support_listeners: List[Callable[[ChatMessage], None]] = []

        transport.on(RECEIVE_DIRECT_MESSAGE, self._on_receive)
        transport.on(MESSAGE_SENT, self._on_sent)
        transport.on(DISCONNECT, self._on_disconnect)

    # ---------------------------
    # Observers
    # ---------------------------

    def add_listener(self, listener: Callable[[], None]) -> None:
        """Called after any change to history, queue, unread or connection state."""
        self._listeners.append(listener)

    def add_support_listener(self, listener: Callable[[ChatMessage], None]) -> None:
        """Called once per new message from support."""
        self._support_listeners.append(listener)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener()

    @property
    def unread_count(self) -> int:
        return len(self.unread)

    @property
    def connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    def timeline(self) -> List[ChatMessage]:
        """History in display order (by timestamp, arrival order for ties)."""
        return sorted(self.history, key=lambda m: parse_timestamp(m.timestamp))

    # ---------------------------
    # Persistence
    # ---------------------------

    async def load(self) -> None:
        """Restore history, outbound queue and unread ids saved by an earlier run."""
        history = []
        for data in await self._storage.get_list(KEY_CHAT_MESSAGES):
            if isinstance(data, dict) and data.get("_id"):
                history.append(ChatMessage.from_json(data, self.user_id))
        queue = []
        for data in await self._storage.get_list(KEY_CHAT_QUEUE):
            try:
                queue.append(SendDirectMessage.from_json(data))
            except (KeyError, TypeError):
                _logger.warning(f"Dropping unreadable queued message: {data!r}")
        self.history = history
        self.queue = queue
        self.unread = [str(i) for i in await self._storage.get_list(KEY_CHAT_UNREAD)]
        self._notify()

    async def _save(self, key: str, values: List[Any]) -> None:
        if values:
            await self._storage.set_json(key, values)
        else:
            await self._storage.remove(key)

    async def _save_history(self) -> None:
        await self._save(KEY_CHAT_MESSAGES, [m.to_json() for m in self.history])

    async def _save_queue(self) -> None:
        await self._save(KEY_CHAT_QUEUE, [p.to_json() for p in self.queue])

    async def _save_unread(self) -> None:
        await self._save(KEY_CHAT_UNREAD, self.unread)

    # ---------------------------
    # Connection lifecycle
    # ---------------------------

    async def open(self) -> None:
        """The chat view opened: connect, and consider everything read."""
        self.is_open = True
        self.offline = False
        if self.unread:
            self.unread = []
            await self._save_unread()
        self._start_connecting()
        self._notify()

    async def close(self) -> None:
        """The chat view closed: abandon connection attempts and disconnect."""
        self.is_open = False
        await self._teardown()

    async def retry(self) -> None:
        """Manual reconnect: drop whatever connection exists and start fresh."""
        await self._teardown()
        self.is_open = True
        self.offline = False
        self._start_connecting()
        self._notify()

    async def wait_connected(self) -> bool:
        """Wait for the current connection attempt, if any, to finish."""
        task = self._connect_task
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        return self.connected

    async def _teardown(self) -> None:
        self._tearing_down = True
        try:
            for task in (self._connect_task, self._replay_task):
                if task is not None and not task.done():
                    task.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await task
            self._connect_task = None
            self._replay_task = None
            await self._transport.disconnect()
        finally:
            self._tearing_down = False
        self.state = ConnectionState.DISCONNECTED
        self._notify()

    def _start_connecting(self) -> None:
        if not self.user_id:
            _logger.info("Chat needs a logged-in user, not connecting.")
            return
        if self._connect_task is not None and not self._connect_task.done():
            return
        self._connect_task = asyncio.ensure_future(self._connect_loop())

    async def _connect_loop(self) -> None:
        self.state = ConnectionState.CONNECTING
        self._notify()
        for attempt in range(self.policy.attempts + 1):
            if not self.is_open:
                break
            if attempt:
                await asyncio.sleep(self.policy.delay_for(attempt))
            try:
                await self._transport.connect(self.policy.timeout)
                await self._transport.emit(*encode_event(JoinUser(self.user_id)))
            except ChatConnectionError as e:
                _logger.info(f"Chat connect attempt {attempt + 1} failed: {e}")
                continue
            await self._on_connected()
            return

        self.state = ConnectionState.DISCONNECTED
        if self.is_open:
            self.offline = True
            _logger.warning("Chat server unreachable, messages will be queued.")
        self._notify()

    async def _on_connected(self) -> None:
        _logger.info(f"Chat connected as {self.user_id}.")
        self.state = ConnectionState.CONNECTED
        self.offline = False
        self._notify()
        self._start_replay()

    async def _on_disconnect(self, *args) -> None:
        if self._tearing_down:
            return
        was_connected = self.state is ConnectionState.CONNECTED
        self.state = ConnectionState.DISCONNECTED
        self._notify()
        if was_connected and self.is_open:
            _logger.info("Chat connection lost, reconnecting...")
            self._start_connecting()

    # ---------------------------
    # Outbound
    # ---------------------------

    async def send(self, text: str) -> Optional[ChatMessage]:
        """
        Send a message to support. Returns the local echo, or None when there
        is nothing to send or nobody to send as.
        """
        text = (text or "").strip()
        if not text or not self.user_id:
            return None

        payload = SendDirectMessage(
            sender_id=self.user_id,
            receiver_id=self.support_id,
            message=text,
            sender_type="user",
        )
        # queued messages go first, so while a replay is pending new sends join the queue
        direct = self.connected and not self.queue
        echo = ChatMessage(
            id=_temp_id(),
            sender_id=payload.sender_id,
            receiver_id=payload.receiver_id,
            message=text,
            sender_type="user",
            timestamp=now_iso(),
            status="sending" if direct else "queued",
        )
        self.history.append(echo)
        self._notify()

        if direct:
            try:
                await self._transport.emit(*encode_event(payload))
            except ChatConnectionError as e:
                _logger.info(f"Send failed, queueing instead: {e}")
                direct = False
                self._set_status(echo.id, "queued")

        if not direct:
            self.queue.append(payload)
            await self._save_queue()
            if self.connected:
                self._start_replay()

        await self._save_history()
        self._notify()
        return echo

    def _set_status(self, message_id: str, status: str) -> None:
        for index, m in enumerate(self.history):
            if m.id == message_id:
                self.history[index] = replace(m, status=status)
                return

    def _mark_sending(self, payload: SendDirectMessage) -> Optional[str]:
        """Flag the oldest pending echo of payload as going out now."""
        # an echo still marked queued wins over one left "sending" by an earlier replay
        for wanted in ("queued", "sending"):
            for index, m in enumerate(self.history):
                if (
                    m.is_temporary
                    and m.status == wanted
                    and m.message == payload.message
                    and m.sender_id == payload.sender_id
                ):
                    self.history[index] = replace(m, status="sending", timestamp=now_iso())
                    return m.id
        return None

    def _start_replay(self) -> None:
        if not self.queue:
            return
        if self._replay_task is not None and not self._replay_task.done():
            return
        self._replay_task = asyncio.ensure_future(self._replay_queue())

    async def _replay_queue(self) -> None:
        """Emit the queue in order, then trim it once the replay window has passed."""
        _logger.info(f"Replaying {len(self.queue)} queued message(s).")
        sent = 0
        try:
            while sent < len(self.queue):
                if sent:
                    await asyncio.sleep(self.replay_delay)
                echo_id = self._mark_sending(self.queue[sent])
                try:
                    await self._transport.emit(*encode_event(self.queue[sent]))
                except ChatConnectionError:
                    if echo_id:
                        self._set_status(echo_id, "queued")
                    raise
                sent += 1
                self._notify()
            await asyncio.sleep(self.replay_delay)
        except ChatConnectionError as e:
            _logger.info(f"Replay interrupted after {sent} message(s): {e}")
            return

        self.queue = self.queue[sent:]
        await self._save_queue()
        await self._save_history()
        self._notify()
        if self.queue and self.connected:
            self._replay_task = asyncio.ensure_future(self._replay_queue())

    # ---------------------------
    # Inbound
    # ---------------------------

    def _within_window(self, pending: ChatMessage, confirmed: ChatMessage) -> bool:
        sent = parse_timestamp(pending.timestamp)
        seen = parse_timestamp(confirmed.timestamp)
        if EPOCH in (sent, seen):
            return True
        return abs((seen - sent).total_seconds()) <= self.reconcile_window

    def _find_pending(self, message: ChatMessage) -> Optional[int]:
        for index, m in enumerate(self.history):
            if (
                m.is_temporary
                and m.queued
                and m.message == message.message
                and m.sender_id == message.sender_id
                and m.sender_type == message.sender_type
                and self._within_window(m, message)
            ):
                return index
        return None

    def _merge(self, message: ChatMessage) -> bool:
        """Add a server-confirmed message. False when it was already there."""
        if not message.id or any(m.id == message.id for m in self.history):
            return False
        confirmed = replace(message, status="confirmed")
        if not confirmed.timestamp:
            confirmed = replace(confirmed, timestamp=now_iso())
        index = self._find_pending(confirmed)
        if index is None:
            self.history.append(confirmed)
        else:
            self.history[index] = confirmed
        return True

    async def _handle_incoming(self, name: str, payload: Any) -> Optional[ChatMessage]:
        try:
            event = decode_event(name, payload, self.user_id)
        except ValueError as e:
            _logger.warning(f"Ignoring malformed {name}: {e}")
            return None
        message = event.message
        if not self._merge(message):
            return None
        await self._save_history()
        self._notify()
        return message

    async def _on_receive(self, payload: Any) -> None:
        message = await self._handle_incoming(RECEIVE_DIRECT_MESSAGE, payload)
        if message is None or message.sender_type != "support":
            return
        if not self.is_open and message.id not in self.unread:
            self.unread.append(message.id)
            await self._save_unread()
            self._notify()
        for listener in list(self._support_listeners):
            listener(message)

    async def _on_sent(self, payload: Any) -> None:
        await self._handle_incoming(MESSAGE_SENT, payload)

    # ---------------------------
    # History from the REST API
    # ---------------------------

    async def fetch_history(self, mark_as_read: Optional[bool] = None) -> int:
        """
        Merge the server's copy of the conversation. Returns how many messages
        were new. Failures are logged and otherwise ignored.
        """
        if self._history_loader is None or not self.user_id:
            return 0
        if mark_as_read is None:
            mark_as_read = self.is_open
        try:
            raw = await self._history_loader(mark_as_read)
        except ApiError as e:
            _logger.info(f"Could not load chat history: {e.message}")
            return 0

        added = 0
        for data in raw:
            message = ChatMessage.from_json(data, self.user_id)
            if not self._merge(message):
                continue
            added += 1
            if (
                not self.is_open
                and message.sender_type == "support"
                and data.get("read") is False
                and message.id not in self.unread
            ):
                self.unread.append(message.id)

        if added:
            self.history = self.timeline()
            await self._save_history()
            await self._save_unread()
            self._notify()
        return added

    # ---------------------------
    # Housekeeping
    # ---------------------------

    async def clear_history(self) -> None:
        """Forget the local conversation and anything still waiting to be sent."""
        self.history = []
        self.queue = []
        await self._storage.remove(KEY_CHAT_MESSAGES, KEY_CHAT_QUEUE)
        self._notify()

    async def reset(self) -> None:
        """Logout: disconnect and wipe every chat key."""
        await self.close()
        self.history = []
        self.queue = []
        self.unread = []
        self.offline = False
        await self._storage.remove(*CHAT_KEYS)
        self._notify()
