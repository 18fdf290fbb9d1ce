"""Core data types for the yield navigator."""

import math
import time
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field

BASE_CHAIN_ID = 8453

RiskProfile = Literal["conservative", "moderate", "aggressive"]
StrategyType = Literal["PT", "YT", "SPLIT"]
RiskLevel = Literal["low", "medium", "high"]
StrategyTag = Literal["Best PT", "Best YT", "Risky", "Neutral"]

PROFILE_FACTORS: dict[str, float] = {
    "conservative": 0.4,
    "moderate": 0.7,
    "aggressive": 1.0,
}


class Token(BaseModel):
    """ERC-20 token reference."""

    address: str = Field(description="Token contract address")
    symbol: str = Field(description="Token symbol")
    name: str = Field(default="", description="Token display name")
    decimals: int = Field(default=18, description="Token decimals")
    chain_id: int = Field(default=BASE_CHAIN_ID, description="Chain identifier")
    price_usd: float | None = Field(default=None, description="Token price in USD")


class Pool(BaseModel):
    """Yield-tokenization market with its PT/YT/SY legs."""

    address: str = Field(description="Market address (pool identifier)")
    name: str = Field(description="Market name, e.g. PT-sUSDe-26DEC2024")
    underlying: Token = Field(description="Underlying asset token")
    pt: Token | None = Field(default=None, description="Principal token")
    yt: Token | None = Field(default=None, description="Yield token")
    sy: Token | None = Field(default=None, description="Standardized yield token")
    maturity: int = Field(description="Maturity as unix timestamp (seconds)")
    tvl: float = Field(default=0.0, description="Total value locked in USD")
    apy: float = Field(default=0.0, description="Trailing APY as decimal fraction")
    implied_yield: float = Field(
        default=0.0, description="Implied yield as decimal fraction"
    )
    pt_price: float = Field(default=0.95, description="PT price as fraction of par")
    yt_price: float = Field(default=0.05, description="YT price as fraction of par")
    sy_price: float = Field(default=1.0, description="SY price")
    chain_id: int = Field(default=BASE_CHAIN_ID, description="Chain identifier")

    # Trend inputs; when absent the suggester derives proxies
    apy_7d: float | None = Field(default=None, description="7-day APY")
    apy_30d: float | None = Field(default=None, description="30-day APY")

    # Risk proxies, externally supplied
    max_drawdown: float | None = Field(
        default=None, description="YT max drawdown over 30 days (0-1)"
    )
    volatility: float | None = Field(default=None, description="APY volatility")
    sensitivity: float | None = Field(
        default=None, description="YT sensitivity to APY changes"
    )

    @computed_field  # type: ignore[prop-decorator]
    @property
    def pt_discount(self) -> float:
        """Discount of PT to par."""
        return 1.0 - self.pt_price

    def days_to_maturity(self, now: float | None = None) -> int:
        """Whole days until maturity, never negative."""
        now = time.time() if now is None else now
        if self.maturity <= now:
            return 0
        return math.ceil((self.maturity - now) / 86400)

    def is_expired(self, now: float | None = None) -> bool:
        """Return True once maturity has passed."""
        now = time.time() if now is None else now
        return self.maturity < now


class WalletAsset(BaseModel):
    """Snapshot of one wallet holding."""

    model_config = ConfigDict(frozen=True)

    token: Token = Field(description="Held token")
    balance_raw: int = Field(default=0, description="Balance in smallest units")
    balance: float = Field(default=0.0, description="Decimal-adjusted balance")
    value_usd: float = Field(default=0.0, description="Holding value in USD")
    captured_at: float = Field(
        default_factory=time.time, description="Capture timestamp (unix seconds)"
    )


class Allocation(BaseModel):
    """Integer PT/YT percentage split summing to 100."""

    pt: int = Field(ge=0, le=100, description="PT percentage")
    yt: int = Field(ge=0, le=100, description="YT percentage")


class AllocationResult(BaseModel):
    """Fractional PT/YT split with rationale."""

    pt_fraction: float = Field(description="PT share in [0, 1]")
    yt_fraction: float = Field(description="YT share in [0, 1]")
    comment: str = Field(description="Rationale for the split")
    risk_factor: float = Field(default=0.0, description="Risk factor in [0, 1]")


class PoolAnalysis(BaseModel):
    """Normalized sub-scores and composite confidence for a pool."""

    discount_score: float = Field(description="Discount sub-score (0-1)")
    trend_score: float = Field(description="APY trend sub-score (0-1)")
    maturity_score: float = Field(description="Maturity fit sub-score (0-1)")
    liquidity_score: float = Field(description="Liquidity sub-score (0-1)")
    risk_factor: float = Field(description="Risk factor (0-1)")
    score: int = Field(description="Composite score (0-100)")


class StrategySuggestion(BaseModel):
    """Typed strategy suggestion for one pool and risk profile."""

    type: StrategyType = Field(description="PT, YT or SPLIT")
    allocation: Allocation = Field(description="Integer PT/YT split")
    expected_apy: float = Field(description="Blended expected APY (decimal)")
    expected_return_usd: float = Field(
        default=0.0, description="Expected USD return over the remaining term"
    )
    confidence: int = Field(description="Confidence score (0-100)")
    risk_level: RiskLevel = Field(description="low, medium or high")
    reasoning: str = Field(description="Human-readable rationale")
    action_items: list[str] = Field(
        default_factory=list, description="Ordered human-facing steps"
    )


class AssetSummary(BaseModel):
    """Asset fields carried on a recommendation."""

    symbol: str = Field(description="Asset symbol")
    balance: float = Field(description="Decimal-adjusted balance")
    value_usd: float = Field(description="Value in USD")


class PoolRecommendation(BaseModel):
    """Per-asset recommendation bundle."""

    asset: AssetSummary = Field(description="Asset being recommended for")
    best_pt: Pool | None = Field(default=None, description="Pool with highest PT")
    best_yt: Pool | None = Field(default=None, description="Pool with highest YT")
    alternatives: list[Pool] = Field(
        default_factory=list, description="Up to three other pools"
    )
    strategy: StrategySuggestion = Field(description="Chosen suggestion")
    analysis: PoolAnalysis | None = Field(
        default=None, description="Analysis of the best-overall pool"
    )


class RankedPool(BaseModel):
    """Pool with its suggestion and rank."""

    pool: Pool = Field(description="Ranked pool")
    suggestion: StrategySuggestion = Field(description="Suggestion for the pool")
    rank: int = Field(description="1-based rank")


class RecommendationSummary(BaseModel):
    """Portfolio-level recommendation summary."""

    total_opportunities: int = Field(description="Assets with a recommendation")
    best_overall_apy: float = Field(description="Max expected APY, 0 if none")
    total_potential_value: float = Field(description="Sum of asset USD values")
    recommendations: list[PoolRecommendation] = Field(default_factory=list)
    top_pools: list[RankedPool] = Field(default_factory=list)


class StrategyDistribution(BaseModel):
    """Distribution of recommended allocations across a portfolio."""

    pt_heavy: int = Field(default=0, description="Recommendations with pt >= 70")
    yt_heavy: int = Field(default=0, description="Recommendations with yt >= 70")
    balanced: int = Field(default=0, description="Remaining recommendations")
    avg_pt_allocation: int = Field(default=0, description="Average PT percentage")
    avg_yt_allocation: int = Field(default=0, description="Average YT percentage")


class InvestFlowState(str, Enum):
    IDLE = "idle"
    CHECKING_ALLOWANCE = "checking_allowance"
    APPROVING = "approving"
    WAITING_APPROVAL = "waiting_approval"
    SWAPPING = "swapping"
    WAITING_SWAP = "waiting_swap"
    EXECUTING_PURCHASE = "executing_purchase"
    COMPLETE = "complete"


class MintFlowState(str, Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    APPROVING = "approving"
    WAITING_APPROVAL = "waiting_approval"
    MINTING = "minting"
    WAITING_MINT = "waiting_mint"
    COMPLETE = "complete"


class RedeemFlowState(str, Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    APPROVING = "approving"
    WAITING_APPROVAL = "waiting_approval"
    REDEEMING = "redeeming"
    WAITING_REDEEM = "waiting_redeem"
    COMPLETE = "complete"


class SwapFlowState(str, Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    APPROVING = "approving"
    WAITING_APPROVAL = "waiting_approval"
    SWAPPING = "swapping"
    WAITING_SWAP = "waiting_swap"
    COMPLETE = "complete"


class PendingTransaction(BaseModel):
    """Opaque transaction payload handed to the chain client."""

    chain_id: int = Field(default=BASE_CHAIN_ID, description="Chain identifier")
    to: str = Field(description="Target contract address")
    data: str = Field(description="Encoded call data")
    sender: str | None = Field(default=None, description="Sending address")
    value: int = Field(default=0, description="Native value in wei")
    gas: int | None = Field(default=None, description="Gas limit")


class TokenApproval(BaseModel):
    """Approval the building service says is required."""

    token: str = Field(description="Token address")
    amount: int = Field(description="Amount in smallest units")
    spender: str | None = Field(default=None, description="Spender address")


class PreparedTransaction(BaseModel):
    """Transaction built by the pricing service with its approvals."""

    tx: PendingTransaction = Field(description="Transaction to submit")
    required_approvals: list[TokenApproval] = Field(default_factory=list)
    price_impact: float = Field(default=0.0, description="Price impact fraction")
    outputs: list[dict] = Field(default_factory=list, description="Output amounts")


class TxReceipt(BaseModel):
    """Mined transaction outcome."""

    tx_hash: str = Field(description="Transaction hash")
    success: bool = Field(description="True when status == 1")
    block_number: int | None = Field(default=None, description="Block number")


class AdvancedSettings(BaseModel):
    """Per-pool advanced strategy settings."""

    profit_take: float = Field(default=20.0, description="Profit-take percentage")
    loss_cut: float = Field(default=10.0, description="Loss-cut percentage")
    pt_ratio: int = Field(default=50, ge=0, le=100, description="PT ratio")
    yt_ratio: int = Field(default=50, ge=0, le=100, description="YT ratio")


class FlowEvent(BaseModel):
    """User-visible flow notification."""

    flow: str = Field(description="Flow name: invest, mint, redeem")
    state: str = Field(description="State after the change")
    level: Literal["info", "success", "error"] = Field(default="info")
    title: str = Field(description="Short title")
    message: str = Field(default="", description="Detail message")
    tx_hash: str | None = Field(default=None, description="Related tx hash")
    pool_address: str | None = Field(default=None, description="Related pool")


class SimulatorInput(BaseModel):
    """What-if parameters for a single-leg position."""

    amount: float = Field(description="Amount invested in USD")
    type: Literal["PT", "YT"] = Field(description="Position leg")
    duration: float = Field(description="Holding period in days")
    expected_apy: float = Field(description="Expected APY in percent")
    realized_apy: float | None = Field(
        default=None, description="APY actually earned in percent; expected if absent"
    )
    asset: str = Field(default="", description="Asset symbol")


class SensitivityPoint(BaseModel):
    """YT value at one realized APY."""

    apy: float = Field(description="Realized APY in percent")
    value: float = Field(description="Projected value at that APY")


class SimulatorOutput(BaseModel):
    """Projected outcome of a simulated position."""

    future_value: float = Field(description="Value at the end of the period")
    total_yield: float = Field(description="Future value minus amount")
    annualized_return: float = Field(description="Annualized return in percent")
    risks: list[str] = Field(default_factory=list, description="Risk notes")
    risk_score: int = Field(description="Risk score (0-100)")
    sensitivity_curve: list[SensitivityPoint] = Field(
        default_factory=list, description="YT value across realized APYs"
    )
    vs_holding: float = Field(description="Return over holding, in percent")


class OptimalAllocation(BaseModel):
    """Integer PT/YT split for simulator inputs."""

    pt_percentage: int = Field(description="PT percentage")
    yt_percentage: int = Field(description="YT percentage")
    comment: str = Field(description="Rationale for the split")
    risk_factor: float = Field(default=0.0, description="Risk factor in [0, 1]")
