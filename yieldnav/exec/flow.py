"""Transition-table state machine shared by the invest, mint and redeem flows."""

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from enum import Enum
from typing import ClassVar

import httpx
import structlog

from ..core.errors import (
    FlowBusyError,
    InsufficientAllowanceError,
    InvalidTransitionError,
    OnChainError,
    RpcError,
)
from ..core.interfaces import ChainClient, FlowEvents
from ..core.types import (
    BASE_CHAIN_ID,
    FlowEvent,
    PendingTransaction,
    PreparedTransaction,
    TokenApproval,
)
from .pendle_sdk import build_approval_tx

logger = structlog.get_logger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


class FlowStateMachine:
    """Base class for flows driven by an allowed-transitions table.

    Subclasses set ``name``, ``State`` (an Enum with IDLE, APPROVING,
    WAITING_APPROVAL and COMPLETE members) and ``TRANSITIONS``. Any state may
    fall back to IDLE.
    """

    name: ClassVar[str] = "flow"
    State: ClassVar[type[Enum]]
    TRANSITIONS: ClassVar[Mapping[Enum, frozenset]]

    def __init__(
        self,
        chain: ChainClient,
        wallet_address: str,
        events: FlowEvents | None = None,
        approval_settle_seconds: float = 2.0,
        sleep_fn: SleepFn = asyncio.sleep,
        chain_id: int = BASE_CHAIN_ID,
    ) -> None:
        self.chain = chain
        self.wallet_address = wallet_address
        self.chain_id = chain_id
        self.events = events
        self.approval_settle_seconds = approval_settle_seconds
        self.sleep_fn = sleep_fn
        self.state = self.State.IDLE
        self.history: list[Enum] = [self.state]
        self.last_tx_hash: str | None = None
        self._pending_tx: PendingTransaction | None = None
        self.pool_address: str | None = None
        self._running = False

    @property
    def busy(self) -> bool:
        return self._running or self.state not in (
            self.State.IDLE,
            self.State.COMPLETE,
        )

    def _begin(self, pool_address: str | None = None) -> None:
        """Guard against double submission and clear a finished run."""
        if self.busy:
            raise FlowBusyError(
                f"{self.name} flow already in progress ({self.state.value})"
            )
        # Set before the first await so a concurrent execute sees it
        self._running = True
        self.state = self.State.IDLE
        self.history = [self.state]
        self._pending_tx = None
        self.pool_address = pool_address

    async def _emit(
        self,
        title: str,
        message: str = "",
        level: str = "info",
        tx_hash: str | None = None,
    ) -> None:
        if self.events is None:
            return
        event = FlowEvent(
            flow=self.name,
            state=self.state.value,
            level=level,
            title=title,
            message=message,
            tx_hash=tx_hash,
            pool_address=self.pool_address,
        )
        try:
            await self.events.emit(event)
        except Exception as e:
            # Notifications never abort a flow with a submitted transaction
            logger.error(
                "Flow event delivery failed",
                flow=self.name,
                state=event.state,
                error=str(e),
            )

    async def _transition(
        self,
        new_state: Enum,
        title: str,
        message: str = "",
        level: str = "info",
        tx_hash: str | None = None,
    ) -> None:
        allowed = self.TRANSITIONS.get(self.state, frozenset())
        if new_state != self.State.IDLE and new_state not in allowed:
            raise InvalidTransitionError(
                f"{self.name}: {self.state.value} -> {new_state.value} not allowed"
            )

        logger.info(
            "Flow transition",
            flow=self.name,
            from_state=self.state.value,
            to_state=new_state.value,
            tx_hash=tx_hash,
        )
        self.state = new_state
        self.history.append(new_state)
        await self._emit(title, message, level, tx_hash)

    def reset(self) -> None:
        """Return to idle and drop any prepared-but-unsent payload."""
        self.state = self.State.IDLE
        self.history.append(self.state)
        self._pending_tx = None

    async def _fail(self, error: Exception) -> None:
        logger.error(
            "Flow failed",
            flow=self.name,
            state=self.state.value,
            error=str(error),
            error_type=type(error).__name__,
        )
        self.reset()
        await self._emit(
            f"{self.name.capitalize()} failed",
            str(error),
            level="error",
            tx_hash=getattr(error, "tx_hash", None),
        )

    async def _submit(self, tx: PendingTransaction, step: str) -> str:
        """Send a transaction, mapping node rejections onto OnChainError."""
        if tx.sender is None:
            tx = tx.model_copy(update={"sender": self.wallet_address})
        try:
            tx_hash = await self.chain.send_transaction(tx)
        except (RpcError, httpx.HTTPError) as e:
            raise OnChainError(step, f"submission rejected: {e}") from e
        self.last_tx_hash = tx_hash
        return tx_hash

    async def _confirm(self, tx_hash: str, step: str) -> None:
        """Wait for the receipt; a revert or timeout fails the step."""
        try:
            receipt = await self.chain.wait_for_receipt(tx_hash)
        except (RpcError, httpx.HTTPError, TimeoutError) as e:
            raise OnChainError(step, str(e), tx_hash) from e
        if not receipt.success:
            raise OnChainError(step, "transaction reverted", tx_hash)

    async def _missing_approvals(
        self, prepared: PreparedTransaction
    ) -> list[TokenApproval]:
        """Required approvals whose on-chain allowance is short."""
        spender = prepared.tx.to
        missing = []
        for approval in prepared.required_approvals:
            if approval.amount <= 0:
                continue
            current = await self.chain.get_allowance(
                approval.token, self.wallet_address, approval.spender or spender
            )
            if current < approval.amount:
                missing.append(approval)
        return missing

    async def _approve_all(self, approvals: list[TokenApproval], spender: str) -> None:
        """Approve each token in turn, then wait the settle delay.

        Raises:
            OnChainError: If an approval is rejected or reverts
            InsufficientAllowanceError: If a confirmed approval left the
                allowance short
        """
        for approval in approvals:
            await self._transition(
                self.State.APPROVING, "Approval requested", approval.token
            )
            target = approval.spender or spender
            tx = build_approval_tx(
                approval.token,
                target,
                chain_id=self.chain_id,
                sender=self.wallet_address,
            )
            tx_hash = await self._submit(tx, "approval")
            await self._transition(
                self.State.WAITING_APPROVAL,
                "Waiting for approval",
                tx_hash=tx_hash,
            )
            await self._confirm(tx_hash, "approval")

        await self.sleep_fn(self.approval_settle_seconds)

        for approval in approvals:
            granted = await self.chain.get_allowance(
                approval.token, self.wallet_address, approval.spender or spender
            )
            if granted < approval.amount:
                raise InsufficientAllowanceError(
                    f"Allowance for {approval.token} still {granted} after approval,"
                    f" need {approval.amount}"
                )
