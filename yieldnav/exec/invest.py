"""Invest flow: optional conversion from the bridging asset, then mint."""

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from decimal import Decimal

import structlog

from ..core.errors import InsufficientBalanceError
from ..core.interfaces import ChainClient, FlowEvents
from ..core.types import BASE_CHAIN_ID, InvestFlowState, Pool
from .erc20 import require_address, to_base_units
from .flow import FlowStateMachine, SleepFn
from .mint import MintFlow, parse_amount
from .oneinch import OneInchClient

logger = structlog.get_logger(__name__)

S = InvestFlowState

RefreshCallback = Callable[[], Awaitable[None] | None]


class InvestFlow(FlowStateMachine):
    """Invest into a pool from either the underlying or the bridging asset.

    With enough of the underlying asset the flow mints directly. Otherwise
    it converts the bridging asset (USDC) into the underlying through the
    conversion router and mints the slippage-adjusted proceeds.
    """

    name = "invest"
    State = InvestFlowState
    TRANSITIONS = {
        S.IDLE: frozenset({S.CHECKING_ALLOWANCE, S.EXECUTING_PURCHASE}),
        S.CHECKING_ALLOWANCE: frozenset({S.APPROVING, S.SWAPPING}),
        S.APPROVING: frozenset({S.WAITING_APPROVAL}),
        S.WAITING_APPROVAL: frozenset({S.SWAPPING}),
        S.SWAPPING: frozenset({S.WAITING_SWAP}),
        S.WAITING_SWAP: frozenset({S.EXECUTING_PURCHASE}),
        S.EXECUTING_PURCHASE: frozenset({S.COMPLETE}),
        S.COMPLETE: frozenset(),
    }

    def __init__(
        self,
        mint_flow: MintFlow,
        router: OneInchClient,
        chain: ChainClient,
        wallet_address: str,
        bridge_token: str = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
        bridge_decimals: int = 6,
        slippage_pct: float = 2.0,
        slippage_buffer: float = 0.98,
        approval_settle_seconds: float = 2.0,
        swap_settle_seconds: float = 2.5,
        refresh_delay_seconds: float = 3.0,
        on_refresh: RefreshCallback | None = None,
        events: FlowEvents | None = None,
        sleep_fn: SleepFn = asyncio.sleep,
        chain_id: int = BASE_CHAIN_ID,
    ) -> None:
        """Initialize the invest flow.

        Args:
            mint_flow: Mint flow run in the executing_purchase step
            router: Conversion router client
            chain: Chain client for balances, submission and receipts
            wallet_address: Wallet funding the investment
            bridge_token: Bridging asset address (USDC on Base)
            bridge_decimals: Bridging asset decimals
            slippage_pct: Conversion slippage in percent
            slippage_buffer: Fraction of the converted amount forwarded to mint
            approval_settle_seconds: Delay after approval confirmation
            swap_settle_seconds: Delay after conversion confirmation
            refresh_delay_seconds: Delay before the refresh callback
            on_refresh: Called after completion to refresh balances
            events: Optional flow event sink
            sleep_fn: Awaitable sleep, injectable for tests
            chain_id: Chain id
        """
        super().__init__(
            chain,
            wallet_address,
            events=events,
            approval_settle_seconds=approval_settle_seconds,
            sleep_fn=sleep_fn,
            chain_id=chain_id,
        )
        self.mint_flow = mint_flow
        self.router = router
        self.bridge_token = bridge_token
        self.bridge_decimals = bridge_decimals
        self.slippage_pct = slippage_pct
        self.slippage_buffer = Decimal(str(slippage_buffer))
        self.swap_settle_seconds = swap_settle_seconds
        self.refresh_delay_seconds = refresh_delay_seconds
        self.on_refresh = on_refresh

    async def execute(self, pool: Pool, amount: Decimal | float | str) -> str:
        """Invest ``amount`` into the pool.

        Args:
            pool: Target pool
            amount: Decimal amount, in underlying units on the direct path and
                in bridging units on the conversion path

        Returns:
            Mint transaction hash

        Raises:
            FlowBusyError: If an investment is already in flight
            InvalidInputError: On bad addresses or amount
            InsufficientBalanceError: If neither balance covers the amount
            TransportError: If the router or SDK request fails
            OnChainError: If approval, conversion or mint fails on chain
        """
        self._begin(pool.address)
        try:
            value = parse_amount(amount)
            underlying = require_address(pool.underlying.address, "underlying")
            wallet = require_address(self.wallet_address, "wallet")

            underlying_balance = await self.chain.get_balance(underlying, wallet)
            if underlying_balance >= to_base_units(value, pool.underlying.decimals):
                logger.info("Underlying balance sufficient, minting directly")
                await self._transition(
                    S.EXECUTING_PURCHASE, "Minting PT/YT", f"{value} {pool.name}"
                )
                mint_amount = value
            else:
                mint_amount = await self._convert(pool, underlying, wallet, value)

            tx_hash = await self.mint_flow.execute(pool, mint_amount)
            await self._transition(
                S.COMPLETE, "Investment complete", level="success", tx_hash=tx_hash
            )
        except Exception as e:
            await self._fail(e)
            raise
        finally:
            self._running = False

        logger.info(
            "Investment complete",
            pool=pool.address,
            amount=str(value),
            minted_with=str(mint_amount),
            tx_hash=tx_hash,
        )
        await self._refresh()
        return tx_hash

    async def _convert(
        self, pool: Pool, underlying: str, wallet: str, value: Decimal
    ) -> Decimal:
        """Swap the bridging asset into the underlying; return the mint amount."""
        bridge_amount = to_base_units(value, self.bridge_decimals)
        bridge_balance = await self.chain.get_balance(self.bridge_token, wallet)
        if bridge_balance < bridge_amount:
            raise InsufficientBalanceError(
                f"Insufficient balance: need {value} {pool.underlying.symbol} or USDC"
            )

        await self._transition(S.CHECKING_ALLOWANCE, "Checking allowance")
        allowance = await self.router.get_allowance(self.bridge_token, wallet)

        if allowance < bridge_amount:
            await self._transition(S.APPROVING, "Approval requested", "USDC")
            approval_tx = await self.router.build_approval(self.bridge_token)
            approval_hash = await self._submit(approval_tx, "approval")
            await self._transition(
                S.WAITING_APPROVAL, "Waiting for approval", tx_hash=approval_hash
            )
            await self._confirm(approval_hash, "approval")
            await self.sleep_fn(self.approval_settle_seconds)

        await self._transition(S.SWAPPING, "Converting USDC", f"{value} USDC")
        swap_tx = await self.router.build_swap(
            self.bridge_token, underlying, bridge_amount, wallet, self.slippage_pct
        )
        self._pending_tx = swap_tx
        swap_hash = await self._submit(swap_tx, "conversion")
        self._pending_tx = None
        await self._transition(S.WAITING_SWAP, "Waiting for conversion", tx_hash=swap_hash)
        await self._confirm(swap_hash, "conversion")
        await self.sleep_fn(self.swap_settle_seconds)

        mint_amount = value * self.slippage_buffer
        await self._transition(
            S.EXECUTING_PURCHASE, "Minting PT/YT", f"{mint_amount} {pool.name}"
        )
        return mint_amount

    async def _refresh(self) -> None:
        if self.on_refresh is None:
            return
        await self.sleep_fn(self.refresh_delay_seconds)
        result = self.on_refresh()
        if inspect.isawaitable(result):
            await result
