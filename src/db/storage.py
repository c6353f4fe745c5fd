# durable key/value storage for session, cart and chat state
import json
from typing import Any, Optional

from db.database import connect
from utils.logger import get_logger

_logger = get_logger(__name__)

# ---------------------------
# Storage keys
# ---------------------------

KEY_ACCESS_TOKEN = "accessToken"
KEY_REFRESH_TOKEN = "refreshToken"
KEY_USER = "user"
KEY_CHAT_MESSAGES = "medisynthia_chat_messages"
KEY_CHAT_QUEUE = "medisynthia_offline_queue"
KEY_CHAT_UNREAD = "medisynthia_unread_messages"

CHAT_KEYS = (KEY_CHAT_MESSAGES, KEY_CHAT_QUEUE, KEY_CHAT_UNREAD)
SESSION_KEYS = (KEY_ACCESS_TOKEN, KEY_REFRESH_TOKEN, KEY_USER)


class LocalStorage:
    """
    JSON values stored per key in a local sqlite file.

    Reads never raise on bad data: a value that does not parse is logged
    and treated as missing. Writes go straight to disk.
    """

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path

    async def get_raw(self, key: str) -> Optional[str]:
        async with connect(self.db_path) as conn:
            cur = await conn.execute("SELECT value FROM kv WHERE key = ?;", (key,))
            row = await cur.fetchone()
            await cur.close()
        return row[0] if row else None

    async def set_raw(self, key: str, value: str) -> None:
        async with connect(self.db_path) as conn:
            await conn.execute(
                """
                INSERT INTO kv(key, value, updated_at) VALUES (?, ?, datetime('now'))
                ON CONFLICT(key) DO UPDATE SET value = excluded.value,
                                               updated_at = excluded.updated_at;
                """,
                (key, value),
            )
            await conn.commit()

    async def get_json(self, key: str, default: Any = None) -> Any:
        raw = await self.get_raw(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            _logger.warning(f"Discarding corrupt value stored under '{key}'.")
            return default

    async def get_list(self, key: str) -> list:
        """Like get_json, but anything that is not a JSON array counts as empty."""
        value = await self.get_json(key, [])
        if not isinstance(value, list):
            _logger.warning(f"Expected a list under '{key}', got {type(value).__name__}.")
            return []
        return value

    async def set_json(self, key: str, value: Any) -> None:
        await self.set_raw(key, json.dumps(value))

    async def remove(self, *keys: str) -> None:
        if not keys:
            return
        async with connect(self.db_path) as conn:
            await conn.executemany("DELETE FROM kv WHERE key = ?;", [(k,) for k in keys])
            await conn.commit()
