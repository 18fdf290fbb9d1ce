"""Tests for the mint flow."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from yieldnav.core.errors import (
    FlowBusyError,
    InsufficientAllowanceError,
    InvalidInputError,
    OnChainError,
    TransportError,
)
from yieldnav.core.types import AdvancedSettings, MintFlowState, TokenApproval
from yieldnav.exec.mint import MintFlow, parse_amount

WALLET = "0x" + "b" * 40
ROUTER = "0x" + "9" * 40
UNDERLYING = "0x" + "5" * 40
PT = "0x" + "2" * 40
YT = "0x" + "3" * 40
ONE = 10**18


@pytest.fixture
def sdk(make_prepared):
    sdk = AsyncMock()
    sdk.mint_py.return_value = make_prepared()
    return sdk


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest.fixture
def flow(sdk, chain, events, sleep):
    return MintFlow(sdk, chain, WALLET, events=events, sleep_fn=sleep)


class TestParseAmount:
    """Test amount validation."""

    def test_valid(self):
        assert str(parse_amount("1.25")) == "1.25"
        assert parse_amount(3) == 3

    @pytest.mark.parametrize("amount", ["0", "-1", "abc", "NaN", "Infinity"])
    def test_invalid(self, amount):
        with pytest.raises(InvalidInputError):
            parse_amount(amount)


class TestMintFlow:
    """Test the mint state machine."""

    @pytest.mark.asyncio
    async def test_mint_without_approvals(self, pool, flow, sdk, chain, events):
        tx_hash = await flow.execute(pool, "100")

        sdk.mint_py.assert_awaited_once_with(UNDERLYING, 100 * ONE, PT, YT, WALLET, 0.02)
        assert [s.value for s in flow.history] == [
            "idle",
            "preparing",
            "minting",
            "waiting_mint",
            "complete",
        ]
        assert len(chain.sent) == 1
        assert chain.sent[0].sender == WALLET
        assert tx_hash == flow.last_tx_hash
        assert events.events[-1].level == "success"
        assert events.events[-1].tx_hash == tx_hash
        assert events.events[-1].pool_address == pool.address

    @pytest.mark.asyncio
    async def test_mint_with_approval(
        self, pool, sdk, chain, events, sleep, make_prepared
    ):
        sdk.mint_py.return_value = make_prepared(
            [TokenApproval(token=UNDERLYING, amount=100 * ONE, spender=ROUTER)]
        )
        flow = MintFlow(sdk, chain, WALLET, events=events, sleep_fn=sleep)

        await flow.execute(pool, "100")

        assert [s.value for s in flow.history] == [
            "idle",
            "preparing",
            "approving",
            "waiting_approval",
            "minting",
            "waiting_mint",
            "complete",
        ]
        approval, mint = chain.sent
        assert approval.to == UNDERLYING
        assert approval.data.startswith("0x095ea7b3")
        assert ("9" * 40) in approval.data
        assert mint.to == ROUTER
        sleep.assert_awaited_once_with(2.0)

    @pytest.mark.asyncio
    async def test_existing_allowance_skips_approval(
        self, pool, sdk, chain, make_prepared
    ):
        sdk.mint_py.return_value = make_prepared(
            [TokenApproval(token=UNDERLYING, amount=100 * ONE, spender=ROUTER)]
        )
        chain.allowances[(UNDERLYING, ROUTER)] = 200 * ONE
        flow = MintFlow(sdk, chain, WALLET, sleep_fn=AsyncMock())

        await flow.execute(pool, "100")

        assert MintFlowState.APPROVING not in flow.history
        assert len(chain.sent) == 1

    @pytest.mark.asyncio
    async def test_invalid_amount_never_calls_sdk(self, pool, flow, sdk, events):
        with pytest.raises(InvalidInputError):
            await flow.execute(pool, "0")

        sdk.mint_py.assert_not_awaited()
        assert flow.state == MintFlowState.IDLE
        assert events.events[-1].level == "error"

    @pytest.mark.asyncio
    async def test_missing_token_leg(self, pool, flow, sdk):
        pool = pool.model_copy(update={"yt": None})
        with pytest.raises(InvalidInputError, match="YT"):
            await flow.execute(pool, "1")
        sdk.mint_py.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_revert_resets_to_idle(self, pool, flow, chain, events):
        chain.reverts.add(1)

        with pytest.raises(OnChainError) as exc_info:
            await flow.execute(pool, "1")

        assert exc_info.value.step == "mint"
        assert flow.state == MintFlowState.IDLE
        assert events.events[-1].level == "error"
        assert events.events[-1].tx_hash == exc_info.value.tx_hash

    @pytest.mark.asyncio
    async def test_transport_error_resets_to_idle(self, pool, flow, sdk, chain):
        sdk.mint_py.side_effect = TransportError("pendle-sdk", "down", 502)

        with pytest.raises(TransportError):
            await flow.execute(pool, "1")

        assert flow.state == MintFlowState.IDLE
        assert chain.sent == []

    @pytest.mark.asyncio
    async def test_busy_guard(self, pool, flow, sdk):
        flow.state = MintFlowState.MINTING

        with pytest.raises(FlowBusyError):
            await flow.execute(pool, "1")

        assert flow.state == MintFlowState.MINTING
        sdk.mint_py.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_runs_again_after_completion(self, pool, flow, chain):
        await flow.execute(pool, "1")
        await flow.execute(pool, "2")

        assert len(chain.sent) == 2
        assert flow.history[0] == MintFlowState.IDLE
        assert flow.state == MintFlowState.COMPLETE

    @pytest.mark.asyncio
    async def test_saves_advanced_settings(self, pool, sdk, chain):
        store = AsyncMock()
        flow = MintFlow(sdk, chain, WALLET, store=store, sleep_fn=AsyncMock())
        settings = AdvancedSettings(profit_take=30, loss_cut=5, pt_ratio=70, yt_ratio=30)

        await flow.execute(pool, "1", advanced=settings)

        store.save_state_json.assert_awaited_once_with(
            f"strategy_{pool.address}", settings.model_dump()
        )

    @pytest.mark.asyncio
    async def test_settings_failure_does_not_fail_mint(self, pool, sdk, chain):
        store = AsyncMock()
        store.save_state_json.side_effect = RuntimeError("disk full")
        flow = MintFlow(sdk, chain, WALLET, store=store, sleep_fn=AsyncMock())

        tx_hash = await flow.execute(pool, "1", advanced=AdvancedSettings())

        assert tx_hash.startswith("0x")
        assert flow.state == MintFlowState.COMPLETE

    @pytest.mark.asyncio
    async def test_allowance_still_short_after_approval(
        self, pool, sdk, chain, events, make_prepared
    ):
        chain.ignore_approvals = True
        sdk.mint_py.return_value = make_prepared(
            [TokenApproval(token=UNDERLYING, amount=100 * ONE, spender=ROUTER)]
        )
        flow = MintFlow(sdk, chain, WALLET, events=events, sleep_fn=AsyncMock())

        with pytest.raises(InsufficientAllowanceError):
            await flow.execute(pool, "100")

        assert len(chain.sent) == 1
        assert chain.sent[0].to == UNDERLYING
        assert MintFlowState.MINTING not in flow.history
        assert flow.state == MintFlowState.IDLE
        assert events.events[-1].level == "error"

    @pytest.mark.asyncio
    async def test_concurrent_execute_is_rejected(self, pool, sdk, chain, make_prepared):
        sdk.mint_py.return_value = make_prepared(
            [TokenApproval(token=UNDERLYING, amount=ONE, spender=ROUTER)]
        )
        flow = MintFlow(sdk, chain, WALLET, sleep_fn=AsyncMock())

        results = await asyncio.gather(
            flow.execute(pool, "1"), flow.execute(pool, "1"), return_exceptions=True
        )

        assert results[0] == flow.last_tx_hash
        assert isinstance(results[1], FlowBusyError)
        assert flow.state == MintFlowState.COMPLETE
        assert sdk.mint_py.await_count == 1
