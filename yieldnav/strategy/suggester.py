"""Strategy suggester: one pool plus one risk profile into a suggestion."""

from datetime import UTC, datetime

import structlog

from ..core.types import (
    Allocation,
    Pool,
    RankedPool,
    RiskLevel,
    StrategySuggestion,
    StrategyType,
)
from .allocation import calculate_allocation_with_risk
from .analyzer import analyze_signals, resolve_signals

logger = structlog.get_logger(__name__)

MIN_LEG_PCT = 20
NEAR_MATURITY_DAYS = 14
THIN_TVL_USD = 1_000_000

_RISK_LADDER: list[RiskLevel] = ["low", "medium", "high"]


def _strategy_type(allocation: Allocation) -> StrategyType:
    if allocation.yt < MIN_LEG_PCT:
        return "PT"
    if allocation.pt < MIN_LEG_PCT:
        return "YT"
    return "SPLIT"


def _risk_level(strategy: StrategyType, days: int, tvl: float) -> RiskLevel:
    base = {"PT": 0, "SPLIT": 1, "YT": 2}[strategy]
    if days <= NEAR_MATURITY_DAYS or tvl < THIN_TVL_USD:
        base += 1
    return _RISK_LADDER[min(base, len(_RISK_LADDER) - 1)]


def _action_items(
    pool: Pool, strategy: StrategyType, allocation: Allocation, amount: float
) -> list[str]:
    asset = pool.underlying.symbol
    maturity = datetime.fromtimestamp(pool.maturity, UTC).strftime("%d %b %Y")

    items = [
        f"Approve {asset} for the Pendle router",
        f"Mint PT/YT with {amount:,.2f} {asset}",
    ]
    # Minting yields equal PT and YT; the split is reached by selling one leg
    if strategy == "PT":
        items.append(f"Sell YT for PT to reach {allocation.pt}% PT")
    elif strategy == "YT":
        items.append(f"Sell PT for YT to reach {allocation.yt}% YT")
    else:
        items.append(
            f"Rebalance to {allocation.pt}% PT / {allocation.yt}% YT"
        )
    items.append(f"Review position before maturity on {maturity}")
    return items


def suggest_strategy(
    pool: Pool,
    investment_amount: float = 1000.0,
    risk_profile: str = "moderate",
    *,
    sensitivity: float | None = None,
    max_drawdown: float | None = None,
    volatility: float | None = None,
    now: float | None = None,
) -> StrategySuggestion:
    """Suggest a PT/YT strategy for a pool.

    Args:
        pool: Pool to evaluate
        investment_amount: Amount in USD used for the return estimate
        risk_profile: conservative, moderate or aggressive
        sensitivity: Optional override of YT sensitivity
        max_drawdown: Optional override of YT max drawdown
        volatility: Optional override of APY volatility
        now: Optional clock override (unix seconds)

    Returns:
        StrategySuggestion whose allocation sums to 100
    """
    if pool.is_expired(now):
        return StrategySuggestion(
            type="PT",
            allocation=Allocation(pt=100, yt=0),
            expected_apy=0.0,
            expected_return_usd=0.0,
            confidence=0,
            risk_level="low",
            reasoning="Pool expired; redeem PT for the underlying asset",
            action_items=[f"Redeem matured PT from {pool.name}"],
        )

    signals = resolve_signals(
        pool,
        now=now,
        sensitivity=sensitivity,
        max_drawdown=max_drawdown,
        volatility=volatility,
    )
    result = calculate_allocation_with_risk(
        pt_price=signals.pt_price,
        apy_7d=signals.apy_7d,
        apy_30d=signals.apy_30d,
        maturity_days=signals.maturity_days,
        sensitivity=signals.sensitivity,
        max_drawdown=signals.max_drawdown,
        volatility=signals.volatility,
        risk_profile=risk_profile,
    )
    analysis = analyze_signals(signals, risk_profile)

    pt = int(round(result.pt_fraction * 100))
    allocation = Allocation(pt=pt, yt=100 - pt)
    strategy = _strategy_type(allocation)

    expected_apy = (
        result.pt_fraction * pool.implied_yield + result.yt_fraction * pool.apy
    )
    days = signals.maturity_days
    expected_return = investment_amount * expected_apy * days / 365

    reasoning = (
        f"{result.comment}. PT discount {pool.pt_discount:.2%}, "
        f"{days} days to maturity."
    )

    return StrategySuggestion(
        type=strategy,
        allocation=allocation,
        expected_apy=expected_apy,
        expected_return_usd=expected_return,
        confidence=analysis.score,
        risk_level=_risk_level(strategy, days, pool.tvl),
        reasoning=reasoning,
        action_items=_action_items(pool, strategy, allocation, investment_amount),
    )


def rank_pools_by_strategy(
    pools: list[Pool],
    risk_profile: str = "moderate",
    investment_amount: float = 1000.0,
    now: float | None = None,
) -> list[RankedPool]:
    """Rank non-expired pools by confidence, then expected APY."""
    scored = [
        (pool, suggest_strategy(pool, investment_amount, risk_profile, now=now))
        for pool in pools
        if not pool.is_expired(now)
    ]
    scored.sort(key=lambda ps: (ps[1].confidence, ps[1].expected_apy), reverse=True)

    ranked = [
        RankedPool(pool=pool, suggestion=suggestion, rank=i + 1)
        for i, (pool, suggestion) in enumerate(scored)
    ]
    logger.debug("Pools ranked", count=len(ranked), risk_profile=risk_profile)
    return ranked
