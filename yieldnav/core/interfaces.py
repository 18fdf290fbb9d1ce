"""Core interfaces for the yield navigator."""

from typing import Any, Protocol, runtime_checkable

from .types import FlowEvent, PendingTransaction, Pool, TxReceipt, WalletAsset


class MarketDataSource(Protocol):
    """Market data source protocol."""

    async def fetch_pools(self, chain_id: int) -> list[Pool]:
        """Fetch active pools for a chain."""
        ...


class PortfolioSource(Protocol):
    """Portfolio aggregation protocol."""

    async def fetch_assets(self, address: str) -> list[WalletAsset]:
        """Fetch wallet holdings for an address."""
        ...


@runtime_checkable
class ChainClient(Protocol):
    """Chain client protocol: submission, receipts and ERC-20 reads."""

    async def send_transaction(self, tx: PendingTransaction) -> str:
        """Submit a transaction and return its hash."""
        ...

    async def wait_for_receipt(self, tx_hash: str) -> TxReceipt:
        """Wait until the transaction is mined."""
        ...

    async def get_allowance(self, token: str, owner: str, spender: str) -> int:
        """Read ERC-20 allowance in smallest units."""
        ...

    async def get_balance(self, token: str, owner: str) -> int:
        """Read ERC-20 balance in smallest units."""
        ...


class FlowEvents(Protocol):
    """Flow notification protocol."""

    async def emit(self, event: FlowEvent) -> None:
        """Deliver a flow event."""
        ...


class AlertSink(Protocol):
    """Alert sink protocol."""

    async def push(self, message: str) -> None:
        """Push alert message."""
        ...


class KeyValueStore(Protocol):
    """Keyed preference store protocol."""

    async def save_state_json(self, key: str, data: Any) -> None:
        """Save JSON-serializable data under key."""
        ...

    async def load_state_json(self, key: str) -> Any | None:
        """Load data saved under key, or None."""
        ...
