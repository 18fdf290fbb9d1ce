"""Portfolio recommender: wallet assets against matching pools."""

from typing import Literal

import structlog

from ..core.types import (
    Allocation,
    AssetSummary,
    Pool,
    PoolRecommendation,
    RankedPool,
    RecommendationSummary,
    RiskProfile,
    StrategyDistribution,
    StrategySuggestion,
    WalletAsset,
)
from .analyzer import analyze_pool
from .suggester import rank_pools_by_strategy, suggest_strategy

logger = structlog.get_logger(__name__)

DEFAULT_INVESTMENT_USD = 1000.0
MAX_ALTERNATIVES = 3
MAX_TOP_POOLS = 5

RiskLabel = Literal["conservative", "neutral", "moderate", "aggressive"]


def map_risk_level(level: str) -> RiskProfile:
    """Map a risk label onto a risk profile; neutral reads as moderate."""
    if level == "conservative":
        return "conservative"
    if level == "aggressive":
        return "aggressive"
    return "moderate"


def is_asset_match(asset_symbol: str, pool_symbol: str) -> bool:
    """Case-insensitive equality or containment in either direction."""
    a = asset_symbol.upper().strip()
    p = pool_symbol.upper().strip()
    if not a or not p:
        return False
    return a == p or a in p or p in a


def find_matching_pools(asset: WalletAsset, pools: list[Pool]) -> list[Pool]:
    """Pools whose underlying asset matches the held token."""
    address = asset.token.address.lower()
    matches = []
    for pool in pools:
        pool_address = pool.underlying.address.lower()
        if address and pool_address and address == pool_address:
            matches.append(pool)
        elif is_asset_match(asset.token.symbol, pool.underlying.symbol):
            matches.append(pool)
    return matches


def unique_underlying_assets(pools: list[Pool]) -> list[str]:
    """Upper-cased underlying symbols, first-seen order."""
    seen: dict[str, None] = {}
    for pool in pools:
        if pool.underlying.symbol:
            seen.setdefault(pool.underlying.symbol.upper(), None)
    return list(seen)


def recommend_pools_for_asset(
    asset: WalletAsset,
    matching_pools: list[Pool],
    risk_profile: RiskProfile = "moderate",
    now: float | None = None,
) -> PoolRecommendation | None:
    """Pick best-PT, best-YT, best-overall and alternatives for one asset.

    Args:
        asset: Wallet holding
        matching_pools: Pools matched to the holding
        risk_profile: Risk profile for the suggester
        now: Optional clock override

    Returns:
        PoolRecommendation, or None when nothing matched
    """
    if not matching_pools:
        return None

    amount = asset.value_usd or DEFAULT_INVESTMENT_USD
    evaluated = [
        (pool, suggest_strategy(pool, amount, risk_profile, now=now))
        for pool in matching_pools
    ]

    # max() keeps the first maximal element, matching a stable sort
    best_pt = max(evaluated, key=lambda ps: ps[1].allocation.pt)
    best_yt = max(evaluated, key=lambda ps: ps[1].allocation.yt)
    best_overall = max(evaluated, key=lambda ps: ps[1].confidence)

    excluded = {best_pt[0].address, best_yt[0].address}
    alternatives = sorted(
        (ps for ps in evaluated if ps[0].address not in excluded),
        key=lambda ps: ps[1].confidence,
        reverse=True,
    )[:MAX_ALTERNATIVES]

    return PoolRecommendation(
        asset=AssetSummary(
            symbol=asset.token.symbol or "UNKNOWN",
            balance=asset.balance,
            value_usd=asset.value_usd,
        ),
        best_pt=best_pt[0],
        best_yt=best_yt[0],
        alternatives=[pool for pool, _ in alternatives],
        strategy=best_overall[1].model_copy(deep=True),
        analysis=analyze_pool(best_overall[0], risk_profile, now=now),
    )


def _apply_risk_overlay(
    recommendation: PoolRecommendation, risk_profile: RiskProfile
) -> None:
    strategy = recommendation.strategy
    if risk_profile == "conservative" and strategy.type == "YT":
        strategy.type = "SPLIT"
        strategy.allocation = Allocation(pt=70, yt=30)
    elif risk_profile == "aggressive" and strategy.type == "PT":
        strategy.type = "SPLIT"
        strategy.allocation = Allocation(pt=30, yt=70)


def get_recommendations_for_portfolio(
    assets: list[WalletAsset],
    pools: list[Pool],
    risk_level: RiskLabel = "neutral",
    now: float | None = None,
) -> RecommendationSummary:
    """Recommend pools for every held asset and summarize.

    Args:
        assets: Wallet holdings
        pools: Candidate pools
        risk_level: conservative, neutral/moderate or aggressive
        now: Optional clock override

    Returns:
        RecommendationSummary; assets without matches are skipped
    """
    risk_profile = map_risk_level(risk_level)

    recommendations: list[PoolRecommendation] = []
    for asset in assets:
        matching = find_matching_pools(asset, pools)
        recommendation = recommend_pools_for_asset(asset, matching, risk_profile, now)
        if recommendation is None:
            logger.debug("No matching pools", symbol=asset.token.symbol)
            continue
        _apply_risk_overlay(recommendation, risk_profile)
        recommendations.append(recommendation)

    best_apy = max((r.strategy.expected_apy for r in recommendations), default=0.0)
    total_value = sum(r.asset.value_usd for r in recommendations)
    top_pools = rank_pools_by_strategy(
        pools, risk_profile, DEFAULT_INVESTMENT_USD, now
    )[:MAX_TOP_POOLS]

    logger.info(
        "Portfolio recommendations built",
        assets=len(assets),
        pools=len(pools),
        opportunities=len(recommendations),
        risk_profile=risk_profile,
    )

    return RecommendationSummary(
        total_opportunities=len(recommendations),
        best_overall_apy=best_apy,
        total_potential_value=total_value,
        recommendations=recommendations,
        top_pools=top_pools,
    )


def get_pool_suggestion(
    pool: Pool,
    investment_amount: float = DEFAULT_INVESTMENT_USD,
    risk_profile: RiskProfile = "moderate",
) -> StrategySuggestion:
    return suggest_strategy(pool, investment_amount, risk_profile)


def compare_pool_strategies(
    pools: list[Pool],
    investment_amount: float = DEFAULT_INVESTMENT_USD,
    risk_profile: RiskProfile = "moderate",
) -> list[RankedPool]:
    return rank_pools_by_strategy(pools, risk_profile, investment_amount)


def get_best_opportunity(
    pools: list[Pool], risk_profile: RiskProfile = "moderate"
) -> RankedPool | None:
    """Top-ranked pool, or None if there are no live pools."""
    ranked = rank_pools_by_strategy(pools, risk_profile)
    return ranked[0] if ranked else None


def strategy_distribution(
    recommendations: list[PoolRecommendation],
) -> StrategyDistribution:
    """Count PT-heavy, YT-heavy and balanced recommendations."""
    if not recommendations:
        return StrategyDistribution()

    dist = StrategyDistribution()
    total_pt = total_yt = 0
    for rec in recommendations:
        pt, yt = rec.strategy.allocation.pt, rec.strategy.allocation.yt
        total_pt += pt
        total_yt += yt
        if pt >= 70:
            dist.pt_heavy += 1
        elif yt >= 70:
            dist.yt_heavy += 1
        else:
            dist.balanced += 1

    n = len(recommendations)
    dist.avg_pt_allocation = round(total_pt / n)
    dist.avg_yt_allocation = round(total_yt / n)
    return dist
