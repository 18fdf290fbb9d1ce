"""Preference store and transaction journal backed by SQLite."""

import json
from datetime import datetime
from typing import Any

import aiosqlite
import structlog

from ..core.interfaces import KeyValueStore
from ..core.types import AdvancedSettings, FlowEvent

logger = structlog.get_logger(__name__)


def strategy_settings_key(pool_address: str) -> str:
    return f"strategy_{pool_address}"


class SQLiteStorage(KeyValueStore):
    """SQLite-based storage implementation."""

    def __init__(self, db_path: str = "yieldnav.sqlite") -> None:
        """Initialize SQLite storage.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        logger.info("SQLite storage initialized", db_path=db_path)

    async def initialize(self) -> None:
        """Initialize database tables."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS state (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS transactions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    flow TEXT NOT NULL,
                    step TEXT NOT NULL,
                    pool_address TEXT,
                    tx_hash TEXT NOT NULL,
                    detail TEXT,
                    success INTEGER NOT NULL,
                    ts REAL NOT NULL
                )
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_transactions_pool
                ON transactions(pool_address)
            """)

            await db.commit()

        logger.info("Database tables initialized")

    async def load_state(self, key: str) -> str | None:
        """Load state value by key.

        Args:
            key: State key

        Returns:
            State value or None if not found
        """
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(
                "SELECT value FROM state WHERE key = ?", (key,)
            ) as cursor:
                row = await cursor.fetchone()

        if row:
            logger.debug("State loaded", key=key, value_length=len(row[0]))
            return row[0]

        logger.debug("State not found", key=key)
        return None

    async def save_state(self, key: str, value: str) -> None:
        """Save state value by key."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO state (key, value)
                VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value
            """,
                (key, value),
            )
            await db.commit()

        logger.debug("State saved", key=key, value_length=len(value))

    async def delete_state(self, key: str) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("DELETE FROM state WHERE key = ?", (key,))
            await db.commit()

    async def save_state_json(self, key: str, data: Any) -> None:
        """Save JSON-serializable data as state."""
        await self.save_state(key, json.dumps(data))

    async def load_state_json(self, key: str) -> Any | None:
        """Load and deserialize JSON state data.

        Returns:
            Deserialized data or None if missing or corrupt
        """
        value = await self.load_state(key)
        if value is None:
            return None

        try:
            return json.loads(value)
        except json.JSONDecodeError as e:
            logger.error("Failed to deserialize state JSON", key=key, error=str(e))
            return None

    async def load_strategy_settings(self, pool_address: str) -> AdvancedSettings | None:
        """Advanced settings saved for a pool, if any."""
        data = await self.load_state_json(strategy_settings_key(pool_address))
        if not isinstance(data, dict):
            return None
        return AdvancedSettings(**data)

    async def record_transaction(
        self,
        flow: str,
        step: str,
        tx_hash: str,
        success: bool,
        pool_address: str | None = None,
        detail: str | None = None,
        ts: float | None = None,
    ) -> int:
        """Append a submitted transaction to the journal.

        Returns:
            Journal row id
        """
        if ts is None:
            ts = datetime.now().timestamp()

        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                """
                INSERT INTO transactions
                    (flow, step, pool_address, tx_hash, detail, success, ts)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
                (flow, step, pool_address, tx_hash, detail, int(success), ts),
            )
            row_id = cursor.lastrowid
            await db.commit()

        logger.debug(
            "Transaction recorded",
            row_id=row_id,
            flow=flow,
            step=step,
            tx_hash=tx_hash,
        )
        return row_id

    async def load_transactions(
        self, pool_address: str | None = None
    ) -> list[dict[str, Any]]:
        """Journal rows, newest first, optionally for one pool."""
        query = """
            SELECT id, flow, step, pool_address, tx_hash, detail, success, ts
            FROM transactions
        """
        params: tuple = ()
        if pool_address is not None:
            query += " WHERE pool_address = ?"
            params = (pool_address,)
        query += " ORDER BY ts DESC, id DESC"

        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(query, params) as cursor:
                rows = await cursor.fetchall()

        return [dict(row) for row in rows]

    async def emit(self, event: FlowEvent) -> None:
        """Journal terminal flow events that carry a transaction hash."""
        if event.tx_hash is None or event.level == "info":
            return
        await self.record_transaction(
            flow=event.flow,
            step=event.state,
            tx_hash=event.tx_hash,
            success=event.level == "success",
            pool_address=event.pool_address,
            detail=event.message or None,
        )

    async def close(self) -> None:
        logger.info("Storage closed")

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
