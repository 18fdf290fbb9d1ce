"""Shared doubles for flow tests."""

import asyncio

import pytest

from yieldnav.core.types import (
    FlowEvent,
    PendingTransaction,
    Pool,
    PreparedTransaction,
    Token,
    TokenApproval,
    TxReceipt,
)
from yieldnav.exec.erc20 import decode_approve

WALLET = "0x" + "b" * 40
ROUTER = "0x" + "9" * 40
UNDERLYING = "0x" + "5" * 40
PT = "0x" + "2" * 40
YT = "0x" + "3" * 40
SY = "0x" + "4" * 40


class FakeChain:
    """In-memory chain client recording submitted transactions."""

    def __init__(self) -> None:
        self.balances: dict[str, int] = {}
        self.allowances: dict[tuple[str, str], int] = {}
        self.sent: list[PendingTransaction] = []
        self.reverts: set[int] = set()
        self.ignore_approvals = False

    async def send_transaction(self, tx: PendingTransaction) -> str:
        self.sent.append(tx)
        return "0x" + f"{len(self.sent):064x}"

    async def wait_for_receipt(self, tx_hash: str) -> TxReceipt:
        index = int(tx_hash, 16)
        success = index not in self.reverts
        tx = self.sent[index - 1]
        approval = decode_approve(tx.data)
        if success and approval is not None and not self.ignore_approvals:
            spender, amount = approval
            self.allowances[(tx.to, spender)] = amount
        return TxReceipt(tx_hash=tx_hash, success=success)

    async def get_allowance(self, token: str, owner: str, spender: str) -> int:
        await asyncio.sleep(0)
        return self.allowances.get((token, spender), 0)

    async def get_balance(self, token: str, owner: str) -> int:
        await asyncio.sleep(0)
        return self.balances.get(token, 0)


class RecordingFlowEvents:
    """Flow event sink that keeps everything it receives."""

    def __init__(self) -> None:
        self.events: list[FlowEvent] = []

    async def emit(self, event: FlowEvent) -> None:
        self.events.append(event)


@pytest.fixture
def make_prepared():
    """Build SDK responses routed through the Pendle router."""

    def build(approvals: list[TokenApproval] | None = None) -> PreparedTransaction:
        return PreparedTransaction(
            tx=PendingTransaction(to=ROUTER, data="0xdeadbeef"),
            required_approvals=approvals or [],
        )

    return build


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def events():
    return RecordingFlowEvents()


@pytest.fixture
def pool():
    """Live sUSDe pool with all token legs."""
    return Pool(
        address="0x" + "1" * 40,
        name="PT-sUSDe",
        underlying=Token(address=UNDERLYING, symbol="sUSDe", decimals=18),
        pt=Token(address=PT, symbol="PT-sUSDe"),
        yt=Token(address=YT, symbol="YT-sUSDe"),
        sy=Token(address=SY, symbol="SY-sUSDe"),
        maturity=4_000_000_000,
        tvl=5_000_000,
        apy=0.08,
        implied_yield=0.10,
        pt_price=0.97,
    )
