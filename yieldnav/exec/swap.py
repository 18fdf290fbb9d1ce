"""Swap flow: trade one pool leg for the other to reach a PT/YT split."""

import asyncio
from decimal import Decimal
from typing import Literal

import structlog

from ..core.errors import InsufficientBalanceError
from ..core.interfaces import ChainClient, FlowEvents
from ..core.types import BASE_CHAIN_ID, Pool, SwapFlowState
from .erc20 import require_address, to_base_units
from .flow import FlowStateMachine, SleepFn
from .mint import parse_amount
from .pendle_sdk import PendleSdkClient

logger = structlog.get_logger(__name__)

S = SwapFlowState

SwapSide = Literal["yt-to-pt", "pt-to-yt"]


def swap_legs(pool: Pool, side: SwapSide) -> tuple[str, str, int]:
    """Input token, output token and input decimals for a swap side.

    Raises:
        InvalidInputError: If the pool lacks the PT or YT leg
    """
    pt = require_address(pool.pt.address if pool.pt else None, "PT")
    yt = require_address(pool.yt.address if pool.yt else None, "YT")
    if side == "yt-to-pt":
        return yt, pt, pool.yt.decimals
    return pt, yt, pool.pt.decimals


class SwapFlow(FlowStateMachine):
    """Sell one leg of a minted position for the other."""

    name = "swap"
    State = SwapFlowState
    TRANSITIONS = {
        S.IDLE: frozenset({S.PREPARING}),
        S.PREPARING: frozenset({S.APPROVING, S.SWAPPING}),
        S.APPROVING: frozenset({S.WAITING_APPROVAL}),
        S.WAITING_APPROVAL: frozenset({S.APPROVING, S.SWAPPING}),
        S.SWAPPING: frozenset({S.WAITING_SWAP}),
        S.WAITING_SWAP: frozenset({S.COMPLETE}),
        S.COMPLETE: frozenset(),
    }

    def __init__(
        self,
        sdk: PendleSdkClient,
        chain: ChainClient,
        wallet_address: str,
        slippage: float = 0.02,
        events: FlowEvents | None = None,
        approval_settle_seconds: float = 2.0,
        sleep_fn: SleepFn = asyncio.sleep,
        chain_id: int = BASE_CHAIN_ID,
    ) -> None:
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

    async def execute(
        self, pool: Pool, side: SwapSide, amount: Decimal | float | str
    ) -> str:
        """Swap ``amount`` of one leg into the other.

        Args:
            pool: Pool whose PT and YT are traded
            side: yt-to-pt or pt-to-yt
            amount: Decimal amount of the leg being sold

        Returns:
            Swap transaction hash

        Raises:
            FlowBusyError: If a swap is already in flight
            InvalidInputError: On bad addresses or amount
            InsufficientBalanceError: If the wallet holds less than amount
            TransportError: If the SDK request fails
            OnChainError: If approval or swap fails on chain
        """
        self._begin(pool.address)
        try:
            value = parse_amount(amount)
            wallet = require_address(self.wallet_address, "wallet")
            token_in, token_out, decimals = swap_legs(pool, side)
            amount_wei = to_base_units(value, decimals)

            balance = await self.chain.get_balance(token_in, wallet)
            if balance < amount_wei:
                raise InsufficientBalanceError(
                    f"Insufficient balance to swap {amount_wei}: holding {balance}"
                )

            await self._transition(S.PREPARING, "Preparing swap", f"{value} {side}")
            prepared = await self.sdk.swap(
                token_in, amount_wei, token_out, wallet, self.slippage
            )

            missing = await self._missing_approvals(prepared)
            if missing:
                self._pending_tx = prepared.tx
                await self._approve_all(missing, prepared.tx.to)
                tx = self._pending_tx
            else:
                tx = prepared.tx

            await self._transition(S.SWAPPING, "Submitting swap")
            tx_hash = await self._submit(tx, "swap")
            self._pending_tx = None
            await self._transition(S.WAITING_SWAP, "Waiting for swap", tx_hash=tx_hash)
            await self._confirm(tx_hash, "swap")
            await self._transition(
                S.COMPLETE, "Swap complete", level="success", tx_hash=tx_hash
            )
        except Exception as e:
            await self._fail(e)
            raise
        finally:
            self._running = False

        logger.info(
            "Swap complete",
            pool=pool.address,
            side=side,
            amount=str(value),
            tx_hash=tx_hash,
        )
        return tx_hash

    async def sell_yt_for_pt(self, pool: Pool, amount: Decimal | float | str) -> str:
        return await self.execute(pool, "yt-to-pt", amount)

    async def sell_pt_for_yt(self, pool: Pool, amount: Decimal | float | str) -> str:
        return await self.execute(pool, "pt-to-yt", amount)
