"""
Access/refresh token lifecycle.

The bridge owns the one AuthSession for the running app. It is populated at
login (or hydrated from local storage on startup), updated after each token
refresh, and destroyed on logout. Everything else reads identity from here
instead of decoding tokens on its own.

Proactive renewal is a single self-rescheduling timer: it fires at
``token_lifetime - refresh_margin`` after it is armed, awaits the refresh
callback, then arms itself again. Whether the refresh call itself succeeds is
the callback's business; the bridge only guarantees the timing.
"""

from __future__ import annotations

import asyncio
import base64
import json
import time
from dataclasses import replace
from typing import Any, Awaitable, Callable, List, Optional

from db.models import AuthSession
from db.storage import (
    KEY_ACCESS_TOKEN,
    KEY_REFRESH_TOKEN,
    KEY_USER,
    SESSION_KEYS,
    LocalStorage,
)
from utils.logger import get_logger

_logger = get_logger(__name__)

RefreshCallback = Callable[[], Awaitable[Any]]


def _token_claims(token: str) -> dict:
    """Read the payload of a JWT without verifying it. Returns {} for anything unreadable."""
    parts = (token or "").split(".")
    if len(parts) != 3:
        return {}
    payload = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(payload))
    except (ValueError, TypeError):
        return {}
    return claims if isinstance(claims, dict) else {}


def _user_id_from(user: Optional[dict], claims: dict) -> Optional[str]:
    for source in (user or {}, claims):
        for key in ("_id", "id", "userId"):
            if source.get(key):
                return str(source[key])
    return None


class SessionBridge:
    def __init__(
        self,
        storage: LocalStorage,
        token_lifetime: float = 600.0,
        refresh_margin: float = 60.0,
        clock: Callable[[], float] = time.time,
    ):
        self._storage = storage
        self.token_lifetime = token_lifetime
        self.refresh_margin = refresh_margin
        self._clock = clock

        self.session: Optional[AuthSession] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._callback: Optional[RefreshCallback] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self._logout_listeners: List[Callable[[], None]] = []

    # ---------------------------
    # Accessors
    # ---------------------------

    @property
    def is_authenticated(self) -> bool:
        return self.session is not None and self.session.is_authenticated

    @property
    def access_token(self) -> Optional[str]:
        return self.session.access_token if self.session else None

    @property
    def refresh_token(self) -> Optional[str]:
        return self.session.refresh_token if self.session else None

    @property
    def user_id(self) -> Optional[str]:
        return self.session.user_id if self.session else None

    @property
    def refresh_pending(self) -> bool:
        return self._timer is not None

    def expires_in(self) -> float:
        if not self.session:
            return 0.0
        return max(self.session.expires_at - self._clock(), 0.0)

    def is_expiring_soon(self, threshold: float = 120.0) -> bool:
        return not self.is_authenticated or self.expires_in() < threshold

    def add_logout_listener(self, listener: Callable[[], None]) -> None:
        self._logout_listeners.append(listener)

    # ---------------------------
    # Lifecycle
    # ---------------------------

    def _expiry_for(self, access_token: str) -> float:
        exp = _token_claims(access_token).get("exp")
        if isinstance(exp, (int, float)):
            return float(exp)
        return self._clock() + self.token_lifetime

    async def hydrate(self) -> Optional[AuthSession]:
        """Restore the session persisted by a previous run, if any."""
        access = await self._storage.get_json(KEY_ACCESS_TOKEN)
        refresh = await self._storage.get_json(KEY_REFRESH_TOKEN)
        user = await self._storage.get_json(KEY_USER, {})
        if not isinstance(access, str) or not access:
            self.session = None
            return None
        if not isinstance(user, dict):
            user = {}
        self.session = AuthSession(
            access_token=access,
            refresh_token=refresh if isinstance(refresh, str) else "",
            expires_at=self._expiry_for(access),
            user_id=user.get("userId") or _user_id_from(user, _token_claims(access)),
            email=user.get("email"),
        )
        _logger.debug(f"Session restored for user {self.session.user_id}.")
        return self.session

    async def login(
        self, access_token: str, refresh_token: str, user: Optional[dict] = None
    ) -> AuthSession:
        """Create the session. Identity is resolved here, once."""
        user = dict(user or {})
        user_id = _user_id_from(user, _token_claims(access_token))
        self.session = AuthSession(
            access_token=access_token,
            refresh_token=refresh_token or "",
            expires_at=self._expiry_for(access_token),
            user_id=user_id,
            email=user.get("email"),
        )
        user["userId"] = user_id
        await self._storage.set_json(KEY_ACCESS_TOKEN, access_token)
        await self._storage.set_json(KEY_REFRESH_TOKEN, self.session.refresh_token)
        await self._storage.set_json(KEY_USER, user)
        _logger.info(f"Logged in as {user.get('email') or user_id}.")
        return self.session

    async def update_tokens(
        self, access_token: str, refresh_token: Optional[str] = None
    ) -> None:
        if self.session is None:
            return
        self.session = replace(
            self.session,
            access_token=access_token,
            refresh_token=refresh_token or self.session.refresh_token,
            expires_at=self._expiry_for(access_token),
        )
        await self._storage.set_json(KEY_ACCESS_TOKEN, access_token)
        await self._storage.set_json(KEY_REFRESH_TOKEN, self.session.refresh_token)

    async def logout(self) -> None:
        """Drop tokens and the profile cache, and stop the refresh timer. Safe to repeat."""
        self.cancel_refresh()
        was_authenticated = self.session is not None
        self.session = None
        await self._storage.remove(*SESSION_KEYS)
        if was_authenticated:
            _logger.info("Session cleared.")
            for listener in list(self._logout_listeners):
                listener()

    # ---------------------------
    # Proactive refresh
    # ---------------------------

    def schedule_refresh(self, callback: RefreshCallback) -> None:
        """Arm the refresh timer, replacing any timer already pending."""
        self.cancel_refresh()
        if not self.refresh_token:
            return
        self._callback = callback
        delay = max(self.token_lifetime - self.refresh_margin, 0.0)
        self._timer = asyncio.get_running_loop().call_later(delay, self._fire)
        _logger.debug(f"Token refresh scheduled in {delay:.0f}s.")

    def cancel_refresh(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._callback = None

    def _fire(self) -> None:
        self._timer = None
        self._refresh_task = asyncio.ensure_future(self._run_refresh(self._callback))

    async def _run_refresh(self, callback: Optional[RefreshCallback]) -> None:
        if callback is None:
            return
        _logger.info("Token expiring soon, refreshing...")
        try:
            await callback()
        except Exception:
            _logger.exception("Token refresh callback failed.")
        # logout during the callback clears _callback; do not re-arm then
        if self._callback is callback and self._timer is None:
            self.schedule_refresh(callback)
