"""Pool analyzer: normalized sub-scores and composite confidence."""

import math
from dataclasses import dataclass

import structlog

from ..core.types import Pool, PoolAnalysis, StrategyTag
from .allocation import apy_trend, calculate_allocation_with_risk

logger = structlog.get_logger(__name__)

DEFAULT_SENSITIVITY = 1.0
DEFAULT_MAX_DRAWDOWN = 0.1
DEFAULT_VOLATILITY = 0.1

TVL_REFERENCE = 50_000_000
MATURITY_SWEET_SPOT_DAYS = 120


@dataclass(frozen=True)
class PoolSignals:
    """Resolved scoring inputs for one pool."""

    pt_price: float
    apy_7d: float
    apy_30d: float
    maturity_days: int
    tvl: float
    sensitivity: float
    max_drawdown: float
    volatility: float


def resolve_signals(
    pool: Pool,
    now: float | None = None,
    sensitivity: float | None = None,
    max_drawdown: float | None = None,
    volatility: float | None = None,
) -> PoolSignals:
    """Resolve trend and risk inputs for a pool.

    Explicit 7d/30d APYs win; otherwise implied yield stands in for the
    short window and trailing APY for the long one. Risk proxies fall back
    to per-call overrides, then pool values, then defaults.
    """
    apy_7d = pool.apy_7d if pool.apy_7d is not None else pool.implied_yield
    apy_30d = pool.apy_30d if pool.apy_30d is not None else pool.apy

    def pick(override: float | None, own: float | None, default: float) -> float:
        if override is not None:
            return override
        if own is not None:
            return own
        return default

    return PoolSignals(
        pt_price=pool.pt_price,
        apy_7d=apy_7d,
        apy_30d=apy_30d,
        maturity_days=pool.days_to_maturity(now),
        tvl=pool.tvl,
        sensitivity=pick(sensitivity, pool.sensitivity, DEFAULT_SENSITIVITY),
        max_drawdown=pick(max_drawdown, pool.max_drawdown, DEFAULT_MAX_DRAWDOWN),
        volatility=pick(volatility, pool.volatility, DEFAULT_VOLATILITY),
    )


def _clamp01(value: float) -> float:
    if math.isnan(value):
        return 0.0
    return min(max(value, 0.0), 1.0)


def discount_score(discount: float) -> float:
    return _clamp01(discount / 0.15)


def trend_score(apy_7d: float, apy_30d: float) -> float:
    return _clamp01(apy_trend(apy_7d, apy_30d) / 0.1)


def maturity_score(days_to_maturity: float) -> float:
    return _clamp01(
        1 - abs(days_to_maturity - MATURITY_SWEET_SPOT_DAYS) / MATURITY_SWEET_SPOT_DAYS
    )


def liquidity_score(tvl: float) -> float:
    # ln(tvl) is negative below 1 USD
    if tvl <= 1:
        return 0.0
    return _clamp01(math.log(tvl) / math.log(TVL_REFERENCE))


def composite_score(
    discount: float,
    trend: float,
    risk_factor: float,
    maturity: float,
    liquidity: float,
) -> int:
    """Weighted 0-100 score from the sub-scores."""
    score = (
        30 * discount + 25 * trend + 20 * risk_factor + 15 * maturity + 10 * liquidity
    )
    if math.isnan(score):
        return 0
    return int(min(max(round(score), 0), 100))


def analyze_signals(signals: PoolSignals, risk_profile: str = "moderate") -> PoolAnalysis:
    """Score resolved pool inputs.

    Args:
        signals: Resolved pool inputs
        risk_profile: conservative, moderate or aggressive

    Returns:
        PoolAnalysis with sub-scores and composite score
    """
    allocation = calculate_allocation_with_risk(
        pt_price=signals.pt_price,
        apy_7d=signals.apy_7d,
        apy_30d=signals.apy_30d,
        maturity_days=signals.maturity_days,
        sensitivity=signals.sensitivity,
        max_drawdown=signals.max_drawdown,
        volatility=signals.volatility,
        risk_profile=risk_profile,
    )

    d = discount_score(1 - signals.pt_price)
    t = trend_score(signals.apy_7d, signals.apy_30d)
    m = maturity_score(signals.maturity_days)
    lq = liquidity_score(signals.tvl)
    rf = _clamp01(allocation.risk_factor)

    return PoolAnalysis(
        discount_score=d,
        trend_score=t,
        maturity_score=m,
        liquidity_score=lq,
        risk_factor=rf,
        score=composite_score(d, t, rf, m, lq),
    )


def analyze_pool(
    pool: Pool, risk_profile: str = "moderate", now: float | None = None
) -> PoolAnalysis:
    """Analyze a pool with its own (or default) risk proxies."""
    return analyze_signals(resolve_signals(pool, now=now), risk_profile)


# Legacy per-strategy scorers, expressed in percentage points


def _legacy_tvl_score(tvl: float) -> float:
    return min((tvl / 1_000_000) * 10, 100)


def score_pool_for_pt(pool: Pool, now: float | None = None) -> float:
    """Score a pool for a PT strategy; higher is better."""
    days = pool.days_to_maturity(now)
    discount = pool.pt_discount * 100
    yield_diff = (pool.implied_yield - pool.apy) * 100
    maturity = 100 if 30 < days < 180 else 50

    return (
        discount * 0.4
        + max(0.0, yield_diff * 3) * 0.3
        + _legacy_tvl_score(pool.tvl) * 0.2
        + maturity * 0.1
    )


def score_pool_for_yt(pool: Pool, now: float | None = None) -> float:
    """Score a pool for a YT strategy; higher is better."""
    days = pool.days_to_maturity(now)
    apy = min(pool.apy * 100, 50)
    discount = 100 if pool.pt_discount < 0.02 else 50
    maturity = 100 if days > 60 else 50

    return (
        apy * 0.4
        + discount * 0.3
        + _legacy_tvl_score(pool.tvl) * 0.2
        + maturity * 0.1
    )


def strategy_tag(
    apy: float, implied_yield: float, pt_discount: float, days_to_maturity: int
) -> StrategyTag:
    """Classify a market for display.

    Args:
        apy: Trailing APY (decimal)
        implied_yield: Implied yield (decimal)
        pt_discount: PT discount to par
        days_to_maturity: Days until maturity

    Returns:
        One of Best PT, Best YT, Risky, Neutral
    """
    apy_pct = apy * 100
    yield_diff_pct = (implied_yield - apy) * 100
    discount_pct = pt_discount * 100

    if discount_pct > 3 and yield_diff_pct > 1:
        return "Best PT"
    if apy_pct > 20 and discount_pct < 2 and days_to_maturity > 60:
        return "Best YT"
    if apy_pct > 30 or discount_pct > 10:
        return "Risky"
    return "Neutral"
