# manages connection to the local sqlite file, internal to db package
import os
from contextlib import asynccontextmanager
from typing import Optional

import aiosqlite

from utils.logger import get_logger

_logger = get_logger(__name__)

DB_PATH = "data/storefront.sqlite"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv (
    key        TEXT PRIMARY KEY,
    value      TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);
"""

_initialized: set[str] = set()


async def _init_db(conn: aiosqlite.Connection) -> None:
    await conn.executescript(_SCHEMA)
    await conn.commit()


@asynccontextmanager
async def connect(db_path: Optional[str] = None) -> aiosqlite.Connection:
    """Async context manager yielding an aiosqlite connection.

    Creates the parent directory and the key/value table on first use of a path.
    """
    path = db_path or DB_PATH
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)

    conn = await aiosqlite.connect(path)
    if path not in _initialized:
        # CREATE IF NOT EXISTS, so two first connections racing here is harmless
        _logger.info(f"Initializing local storage at {path}...")
        await _init_db(conn)
        _initialized.add(path)
    try:
        yield conn
    finally:
        await conn.close()
