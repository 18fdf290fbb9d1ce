"""Redeem flow: PT + YT pair or SY back into the underlying asset."""

import asyncio
from decimal import Decimal
from typing import Literal

import structlog

from ..core.errors import InsufficientBalanceError
from ..core.interfaces import ChainClient, FlowEvents
from ..core.types import BASE_CHAIN_ID, Pool, RedeemFlowState
from .erc20 import require_address, to_base_units
from .flow import FlowStateMachine, SleepFn
from .mint import parse_amount
from .pendle_sdk import PendleSdkClient

logger = structlog.get_logger(__name__)

S = RedeemFlowState

RedeemPath = Literal["py", "sy"]


def choose_redeem_path(
    amount: int | Decimal,
    pt_balance: int | Decimal,
    yt_balance: int | Decimal,
    sy_balance: int | Decimal,
) -> RedeemPath:
    """Pick the redemption route for an amount.

    PT + YT pair redemption needs the amount of both legs and is preferred;
    otherwise SY redemption needs the amount of SY.

    Raises:
        InsufficientBalanceError: If neither route is covered
    """
    if amount <= min(pt_balance, yt_balance):
        return "py"
    if amount <= sy_balance:
        return "sy"
    raise InsufficientBalanceError(
        f"Insufficient balance to redeem {amount}: "
        f"PT {pt_balance}, YT {yt_balance}, SY {sy_balance}"
    )


class RedeemFlow(FlowStateMachine):
    """Redeem a pool position back into its underlying asset."""

    name = "redeem"
    State = RedeemFlowState
    TRANSITIONS = {
        S.IDLE: frozenset({S.PREPARING}),
        S.PREPARING: frozenset({S.APPROVING, S.REDEEMING}),
        S.APPROVING: frozenset({S.WAITING_APPROVAL}),
        S.WAITING_APPROVAL: frozenset({S.APPROVING, S.REDEEMING}),
        S.REDEEMING: frozenset({S.WAITING_REDEEM}),
        S.WAITING_REDEEM: frozenset({S.COMPLETE}),
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

    async def _balance(self, token_address: str | None, wallet: str) -> int:
        if not token_address:
            return 0
        return await self.chain.get_balance(token_address, wallet)

    async def execute(
        self,
        pool: Pool,
        amount: Decimal | float | str,
        token_out: str | None = None,
    ) -> str:
        """Redeem ``amount`` of a position.

        Args:
            pool: Pool the position belongs to
            amount: Decimal amount of PT/YT (pair) or SY
            token_out: Output token; defaults to the underlying asset

        Returns:
            Redeem transaction hash

        Raises:
            FlowBusyError: If a redemption is already in flight
            InvalidInputError: On bad addresses or amount
            InsufficientBalanceError: If neither route is covered
            TransportError: If the SDK request fails
            OnChainError: If approval or redemption fails on chain
        """
        self._begin(pool.address)
        try:
            value = parse_amount(amount)
            wallet = require_address(self.wallet_address, "wallet")
            out = require_address(token_out or pool.underlying.address, "output")
            pt_address = pool.pt.address if pool.pt else None
            yt_address = pool.yt.address if pool.yt else None
            sy_address = pool.sy.address if pool.sy else None

            decimals = pool.pt.decimals if pool.pt else 18
            amount_wei = to_base_units(value, decimals)
            path = choose_redeem_path(
                amount_wei,
                await self._balance(pt_address, wallet),
                await self._balance(yt_address, wallet),
                await self._balance(sy_address, wallet),
            )

            await self._transition(
                S.PREPARING, "Preparing redemption", f"{value} via {path.upper()}"
            )
            if path == "py":
                prepared = await self.sdk.redeem_py(
                    require_address(pt_address, "PT"),
                    require_address(yt_address, "YT"),
                    amount_wei,
                    out,
                    wallet,
                    self.slippage,
                )
            else:
                prepared = await self.sdk.redeem_sy(
                    require_address(sy_address, "SY"),
                    amount_wei,
                    out,
                    wallet,
                    self.slippage,
                )

            missing = await self._missing_approvals(prepared)
            if missing:
                self._pending_tx = prepared.tx
                await self._approve_all(missing, prepared.tx.to)
                tx = self._pending_tx
            else:
                tx = prepared.tx

            await self._transition(S.REDEEMING, "Submitting redemption")
            tx_hash = await self._submit(tx, "redeem")
            self._pending_tx = None
            await self._transition(
                S.WAITING_REDEEM, "Waiting for redemption", tx_hash=tx_hash
            )
            await self._confirm(tx_hash, "redeem")
            await self._transition(
                S.COMPLETE, "Redemption complete", level="success", tx_hash=tx_hash
            )
        except Exception as e:
            await self._fail(e)
            raise
        finally:
            self._running = False

        logger.info(
            "Redemption complete",
            pool=pool.address,
            path=path,
            amount=str(value),
            tx_hash=tx_hash,
        )
        return tx_hash
