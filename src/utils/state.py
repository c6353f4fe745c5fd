from __future__ import annotations

from dataclasses import dataclass, field
from functools import partial
from typing import Optional

import api.endpoints as endpoints
from api.client import ApiClient
from api.socket import SocketIOTransport
from db.models import Order
from db.storage import LocalStorage
from services.cart import CartStore
from services.checkout import CheckoutWorkflow, OrderRequest
from services.messaging import MessagingClient, ReconnectPolicy
from services.session import SessionBridge
from utils.config import Settings, settings as default_settings
from utils.logger import get_logger

_logger = get_logger(__name__)


@dataclass
class GlobalState:
    """
    Centralized application state shared by screens.

    Fields:
      - settings: resolved configuration
      - storage: durable key/value store (session, chat history, queue)
      - session: tokens and identity, plus the refresh timer
      - client: REST client, refreshes the token on 401
      - cart: server-confirmed cart with local selection/coupon/undo
      - chat: support chat, created per logged-in user
    """

    settings: Settings = field(default_factory=lambda: default_settings)
    storage: Optional[LocalStorage] = None
    session: Optional[SessionBridge] = None
    client: Optional[ApiClient] = None
    cart: Optional[CartStore] = None
    chat: Optional[MessagingClient] = None

    def __post_init__(self):
        s = self.settings
        self.storage = self.storage or LocalStorage(s.db_path)
        self.session = self.session or SessionBridge(
            self.storage, s.token_lifetime, s.refresh_margin
        )
        self.client = self.client or ApiClient(
            s.api_url, self.session, timeout=s.request_timeout
        )
        self.cart = self.cart or CartStore(self.client, undo_window=s.cart_undo_window)

    @property
    def user_id(self) -> Optional[str]:
        return self.session.user_id

    @property
    def email(self) -> Optional[str]:
        return self.session.session.email if self.session.session else None

    def _make_chat(self) -> MessagingClient:
        s = self.settings
        transport = SocketIOTransport(s.chat_url, lambda: self.session.access_token)
        return MessagingClient(
            transport,
            self.storage,
            self.session.user_id,
            support_id=s.support_id,
            policy=ReconnectPolicy(
                attempts=s.reconnect_attempts,
                delay=s.reconnect_delay,
                delay_max=s.reconnect_delay_max,
                timeout=s.connect_timeout,
            ),
            replay_delay=s.queue_replay_delay,
            history_loader=partial(endpoints.fetch_chat_messages, self.client),
        )

    async def start_session(self) -> None:
        """
        Called once the session bridge holds tokens (after login or on restore).
        Arms the refresh timer, loads the cart and the persisted chat state.
        """
        if not self.session.is_authenticated:
            return
        self.session.schedule_refresh(self.client.refresh_access_token)
        self.cart.reopen()
        await self.cart.hydrate()

        self.chat = self._make_chat()
        await self.chat.load()
        await self.chat.fetch_history(mark_as_read=False)
        _logger.info(f"Session started for {self.session.user_id}.")

    async def restore_session(self) -> bool:
        """Pick up a session left by a previous run. True if one was found."""
        if await self.session.hydrate() is None:
            return False
        await self.start_session()
        return self.session.is_authenticated

    async def end_session(self, remote: bool = True) -> None:
        """
        Logout: tell the backend (best effort), then wipe every local trace.
        Safe to call twice.
        """
        if remote and self.session.is_authenticated:
            await endpoints.logout(self.client)
        if self.chat is not None:
            await self.chat.reset()
            self.chat = None
        self.cart.close()
        self.cart.reset()
        await self.session.logout()

    def new_checkout(self) -> CheckoutWorkflow:
        """Checkout over the currently selected cart items."""

        async def create_order(request: OrderRequest) -> Order:
            return await endpoints.create_order(self.client, request.to_json())

        return CheckoutWorkflow(
            self.cart.selected_items(), self.cart.breakdown(), create_order
        )

    async def close(self) -> None:
        if self.chat is not None:
            await self.chat.close()
        self.session.cancel_refresh()
        await self.client.aclose()
