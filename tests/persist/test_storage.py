"""Tests for SQLite storage implementation."""

import tempfile
from pathlib import Path

import pytest
import pytest_asyncio

from yieldnav.core.types import AdvancedSettings, FlowEvent
from yieldnav.persist.storage import SQLiteStorage, strategy_settings_key

POOL = "0x" + "1" * 40
OTHER_POOL = "0x" + "2" * 40


class TestSQLiteStorage:
    """Test SQLite storage functionality."""

    @pytest_asyncio.fixture
    async def storage(self):
        """Create a temporary SQLite storage."""
        with tempfile.NamedTemporaryFile(suffix=".sqlite", delete=False) as tmp:
            db_path = tmp.name

        storage = SQLiteStorage(db_path=db_path)
        await storage.initialize()

        yield storage

        await storage.close()
        Path(db_path).unlink(missing_ok=True)

    @pytest.mark.asyncio
    async def test_initialization(self):
        """Test storage initialization."""
        with tempfile.TemporaryDirectory() as tmp_dir:
            db_path = str(Path(tmp_dir) / "test.sqlite")

            async with SQLiteStorage(db_path=db_path) as storage:
                assert Path(db_path).exists()
                assert await storage.load_transactions() == []

    @pytest.mark.asyncio
    async def test_state_operations(self, storage):
        """Test basic state save/load operations."""
        assert await storage.load_state("missing") is None

        await storage.save_state("key", "value")
        assert await storage.load_state("key") == "value"

        await storage.save_state("key", "updated")
        assert await storage.load_state("key") == "updated"

        await storage.delete_state("key")
        assert await storage.load_state("key") is None

    @pytest.mark.asyncio
    async def test_json_state(self, storage):
        """Test JSON state round trip and corrupt values."""
        data = {"risk": "neutral", "pools": [POOL]}
        await storage.save_state_json("prefs", data)
        assert await storage.load_state_json("prefs") == data

        await storage.save_state("broken", "{not json")
        assert await storage.load_state_json("broken") is None

    @pytest.mark.asyncio
    async def test_strategy_settings(self, storage):
        """Test per-pool advanced settings."""
        assert await storage.load_strategy_settings(POOL) is None

        settings = AdvancedSettings(profit_take=30, loss_cut=5, pt_ratio=70, yt_ratio=30)
        await storage.save_state_json(
            strategy_settings_key(POOL), settings.model_dump()
        )

        loaded = await storage.load_strategy_settings(POOL)
        assert loaded == settings
        assert await storage.load_strategy_settings(OTHER_POOL) is None

    @pytest.mark.asyncio
    async def test_transaction_journal(self, storage):
        """Test recording and filtering journal rows."""
        first = await storage.record_transaction(
            "mint", "complete", "0x01", True, pool_address=POOL, ts=100.0
        )
        second = await storage.record_transaction(
            "redeem", "idle", "0x02", False, pool_address=OTHER_POOL, ts=200.0
        )

        assert second > first

        rows = await storage.load_transactions()
        assert [row["tx_hash"] for row in rows] == ["0x02", "0x01"]
        assert rows[0]["success"] == 0
        assert rows[1]["success"] == 1

        pool_rows = await storage.load_transactions(POOL)
        assert len(pool_rows) == 1
        assert pool_rows[0]["flow"] == "mint"
        assert pool_rows[0]["step"] == "complete"

    @pytest.mark.asyncio
    async def test_emit_journals_terminal_events(self, storage):
        """Test that only terminal events with a hash are journaled."""
        await storage.emit(FlowEvent(flow="mint", state="minting", title="Minting"))
        await storage.emit(
            FlowEvent(
                flow="mint",
                state="waiting_mint",
                title="Waiting",
                tx_hash="0x03",
            )
        )
        await storage.emit(
            FlowEvent(
                flow="mint",
                state="complete",
                level="success",
                title="Minted",
                tx_hash="0x04",
                pool_address=POOL,
            )
        )
        await storage.emit(
            FlowEvent(
                flow="redeem",
                state="idle",
                level="error",
                title="Redeem failed",
                message="redeem failed: reverted",
                tx_hash="0x05",
                pool_address=POOL,
            )
        )
        await storage.emit(
            FlowEvent(flow="redeem", state="idle", level="error", title="Rejected")
        )

        rows = await storage.load_transactions(POOL)
        assert {row["tx_hash"] for row in rows} == {"0x04", "0x05"}
        by_hash = {row["tx_hash"]: row for row in rows}
        assert by_hash["0x04"]["success"] == 1
        assert by_hash["0x04"]["detail"] is None
        assert by_hash["0x05"]["success"] == 0
        assert by_hash["0x05"]["detail"] == "redeem failed: reverted"
