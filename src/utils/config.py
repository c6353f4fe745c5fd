from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).resolve().parents[2]
load_dotenv(dotenv_path=ROOT_DIR / ".env")


def _get_env(*keys: str, default: str | None = None) -> str | None:
    for k in keys:
        v = os.getenv(k)
        if v is not None and str(v).strip() != "":
            return v.strip()
    return default


def _get_int(*keys: str, default: int) -> int:
    v = _get_env(*keys)
    if v is None:
        return default
    try:
        return int(v)
    except ValueError:
        raise RuntimeError(f"{keys[0]} must be an integer, got {v!r}") from None


def _get_float(*keys: str, default: float) -> float:
    v = _get_env(*keys)
    if v is None:
        return default
    try:
        return float(v)
    except ValueError:
        raise RuntimeError(f"{keys[0]} must be a number, got {v!r}") from None


@dataclass(frozen=True)
class Settings:
    api_url: str
    chat_url: str
    db_path: str
    support_id: str
    token_lifetime: float
    refresh_margin: float
    queue_replay_delay: float
    reconnect_attempts: int
    reconnect_delay: float
    reconnect_delay_max: float
    connect_timeout: float
    cart_undo_window: float
    request_timeout: float


def load_settings() -> Settings:
    """Read settings from the environment (and .env at the repo root)."""
    return Settings(
        api_url=_get_env("API_URL", "BACKEND_URL", default="http://localhost:3000")
        or "http://localhost:3000",
        chat_url=_get_env("CHAT_URL", "SOCKET_URL", default="http://localhost:8080")
        or "http://localhost:8080",
        db_path=_get_env("DB_PATH", default=str(ROOT_DIR / "data" / "storefront.sqlite"))
        or "data/storefront.sqlite",
        support_id=_get_env("SUPPORT_ID", "ADMIN_ID", default="admin") or "admin",
        token_lifetime=_get_float("TOKEN_LIFETIME", default=600.0),
        refresh_margin=_get_float("REFRESH_MARGIN", default=60.0),
        queue_replay_delay=_get_float("QUEUE_REPLAY_DELAY", default=0.5),
        reconnect_attempts=_get_int("RECONNECT_ATTEMPTS", default=5),
        reconnect_delay=_get_float("RECONNECT_DELAY", default=1.0),
        reconnect_delay_max=_get_float("RECONNECT_DELAY_MAX", default=5.0),
        connect_timeout=_get_float("CONNECT_TIMEOUT", default=20.0),
        cart_undo_window=_get_float("CART_UNDO_WINDOW", default=6.0),
        request_timeout=_get_float("REQUEST_TIMEOUT", default=15.0),
    )


settings = load_settings()

if settings.refresh_margin >= settings.token_lifetime:
    raise RuntimeError("REFRESH_MARGIN must be smaller than TOKEN_LIFETIME")
