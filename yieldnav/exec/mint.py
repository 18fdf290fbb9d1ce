"""Mint flow: underlying asset into PT + YT through the Pendle router."""

import asyncio
from decimal import Decimal, InvalidOperation

import structlog

from ..core.errors import InvalidInputError
from ..core.interfaces import ChainClient, FlowEvents, KeyValueStore
from ..core.types import BASE_CHAIN_ID, AdvancedSettings, MintFlowState, Pool
from ..persist.storage import strategy_settings_key
from .erc20 import require_address, to_base_units
from .flow import FlowStateMachine, SleepFn
from .pendle_sdk import PendleSdkClient

logger = structlog.get_logger(__name__)

S = MintFlowState


def parse_amount(amount: Decimal | float | str) -> Decimal:
    """Parse a positive decimal amount or raise InvalidInputError."""
    try:
        value = Decimal(str(amount))
    except InvalidOperation as e:
        raise InvalidInputError(f"Invalid amount: {amount!r}") from e
    if not value.is_finite() or value <= 0:
        raise InvalidInputError(f"Amount must be positive, got {amount!r}")
    return value


class MintFlow(FlowStateMachine):
    """Mint PT and YT from a pool's underlying asset."""

    name = "mint"
    State = MintFlowState
    TRANSITIONS = {
        S.IDLE: frozenset({S.PREPARING}),
        S.PREPARING: frozenset({S.APPROVING, S.MINTING}),
        S.APPROVING: frozenset({S.WAITING_APPROVAL}),
        S.WAITING_APPROVAL: frozenset({S.APPROVING, S.MINTING}),
        S.MINTING: frozenset({S.WAITING_MINT}),
        S.WAITING_MINT: frozenset({S.COMPLETE}),
        S.COMPLETE: frozenset(),
    }

    def __init__(
        self,
        sdk: PendleSdkClient,
        chain: ChainClient,
        wallet_address: str,
        slippage: float = 0.02,
        events: FlowEvents | None = None,
        store: KeyValueStore | None = None,
        approval_settle_seconds: float = 2.0,
        sleep_fn: SleepFn = asyncio.sleep,
        chain_id: int = BASE_CHAIN_ID,
    ) -> None:
        """Initialize the mint flow.

        Args:
            sdk: Pendle SDK client building the mint transaction
            chain: Chain client for allowances, submission and receipts
            wallet_address: Sender and receiver of the minted tokens
            slippage: Mint slippage tolerance (0.02 = 2%)
            events: Optional flow event sink
            store: Optional preference store for advanced settings
            approval_settle_seconds: Delay between approval and mint
            sleep_fn: Awaitable sleep, injectable for tests
            chain_id: Chain id for locally built approvals
        """
        super().__init__(
            chain,
            wallet_address,
            events=events,
            approval_settle_seconds=approval_settle_seconds,
            sleep_fn=sleep_fn,
            chain_id=chain_id,
        )
        self.sdk = sdk
        self.slippage = slippage
        self.store = store

    async def execute(
        self,
        pool: Pool,
        amount: Decimal | float | str,
        advanced: AdvancedSettings | None = None,
    ) -> str:
        """Mint PT + YT with ``amount`` of the pool's underlying asset.

        Args:
            pool: Target pool
            amount: Decimal amount of the underlying asset
            advanced: Optional per-pool settings saved after success

        Returns:
            Mint transaction hash

        Raises:
            FlowBusyError: If a mint is already in flight
            InvalidInputError: On bad addresses or amount
            TransportError: If the SDK request fails
            OnChainError: If approval or mint fails on chain
        """
        self._begin(pool.address)
        try:
            value = parse_amount(amount)
            underlying = require_address(pool.underlying.address, "underlying")
            pt = require_address(pool.pt.address if pool.pt else None, "PT")
            yt = require_address(pool.yt.address if pool.yt else None, "YT")
            receiver = require_address(self.wallet_address, "receiver")
            amount_wei = to_base_units(value, pool.underlying.decimals)

            await self._transition(S.PREPARING, "Preparing mint", f"{value} {pool.name}")
            prepared = await self.sdk.mint_py(
                underlying, amount_wei, pt, yt, receiver, self.slippage
            )

            missing = await self._missing_approvals(prepared)
            if missing:
                # Hold the mint until approvals confirm
                self._pending_tx = prepared.tx
                await self._approve_all(missing, prepared.tx.to)
                tx = self._pending_tx
            else:
                tx = prepared.tx

            await self._transition(S.MINTING, "Submitting mint")
            tx_hash = await self._submit(tx, "mint")
            self._pending_tx = None
            await self._transition(S.WAITING_MINT, "Waiting for mint", tx_hash=tx_hash)
            await self._confirm(tx_hash, "mint")
            await self._transition(
                S.COMPLETE, "Mint complete", level="success", tx_hash=tx_hash
            )
        except Exception as e:
            await self._fail(e)
            raise
        finally:
            self._running = False

        logger.info(
            "Mint complete",
            pool=pool.address,
            amount=str(value),
            tx_hash=tx_hash,
        )

        if advanced is not None:
            await self._save_settings(pool, advanced)
        return tx_hash

    async def _save_settings(self, pool: Pool, advanced: AdvancedSettings) -> None:
        if self.store is None:
            return
        key = strategy_settings_key(pool.address)
        try:
            await self.store.save_state_json(key, advanced.model_dump())
        except Exception as e:
            # Preferences are best effort; the mint already landed
            logger.warning("Failed to save strategy settings", key=key, error=str(e))
