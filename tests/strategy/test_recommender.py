"""Tests for the portfolio recommender."""

from yieldnav.core.types import Pool, Token, WalletAsset
from yieldnav.strategy.recommender import (
    compare_pool_strategies,
    find_matching_pools,
    get_best_opportunity,
    get_pool_suggestion,
    get_recommendations_for_portfolio,
    is_asset_match,
    map_risk_level,
    recommend_pools_for_asset,
    strategy_distribution,
    unique_underlying_assets,
)

NOW = 1_700_000_000.0
DAY = 86400
SUSDE = "0x" + "a" * 40


def make_pool(address_digit: str = "1", symbol: str = "sUSDe", **overrides) -> Pool:
    data = {
        "address": "0x" + address_digit * 40,
        "name": f"PT-{symbol}",
        "underlying": Token(address=SUSDE if symbol == "sUSDe" else "", symbol=symbol),
        "maturity": int(NOW + 90 * DAY),
        "tvl": 5_000_000,
        "apy": 0.08,
        "implied_yield": 0.10,
        "pt_price": 0.98,
    }
    data.update(overrides)
    return Pool(**data)


def make_asset(
    symbol: str = "sUSDe", value: float = 10_000, address: str = ""
) -> WalletAsset:
    return WalletAsset(
        token=Token(address=address, symbol=symbol),
        balance=value,
        value_usd=value,
        captured_at=NOW,
    )


class TestMatching:
    """Test asset-to-pool matching helpers."""

    def test_map_risk_level(self):
        assert map_risk_level("conservative") == "conservative"
        assert map_risk_level("neutral") == "moderate"
        assert map_risk_level("moderate") == "moderate"
        assert map_risk_level("aggressive") == "aggressive"

    def test_is_asset_match(self):
        assert is_asset_match("usdc", "USDC")
        assert is_asset_match("USDC", "USDC.e")
        assert is_asset_match("sUSDe", "USDe")
        assert not is_asset_match("WETH", "USDC")
        assert not is_asset_match("", "USDC")

    def test_match_by_address(self):
        pool = make_pool(underlying=Token(address="0x" + "A" * 40, symbol="X"))
        matches = find_matching_pools(make_asset("Y", address=SUSDE), [pool])
        assert matches == [pool]

    def test_match_by_symbol(self):
        pools = [make_pool("1"), make_pool("2", symbol="WETH")]
        matches = find_matching_pools(make_asset("SUSDE"), pools)
        assert [p.address for p in matches] == ["0x" + "1" * 40]

    def test_unique_underlying_assets(self):
        pools = [make_pool("1"), make_pool("2", symbol="USDC"), make_pool("3")]
        assert unique_underlying_assets(pools) == ["SUSDE", "USDC"]


class TestRecommendForAsset:
    """Test per-asset recommendations."""

    def test_no_matching_pools(self):
        assert recommend_pools_for_asset(make_asset(), [], "moderate", now=NOW) is None

    def test_single_pool(self):
        pool = make_pool()
        rec = recommend_pools_for_asset(make_asset(), [pool], "moderate", now=NOW)

        assert rec is not None
        assert rec.best_pt == pool
        assert rec.best_yt == pool
        assert rec.alternatives == []
        assert rec.strategy.allocation.pt + rec.strategy.allocation.yt == 100
        assert rec.analysis is not None
        assert rec.asset.symbol == "sUSDe"
        assert rec.asset.value_usd == 10_000

    def test_alternatives_exclude_best_pools(self):
        pools = [
            make_pool("1", implied_yield=0.06),
            make_pool("2", pt_price=0.99),
            make_pool("3"),
            make_pool("4", tvl=40_000_000),
            make_pool("5", maturity=int(NOW + 120 * DAY)),
            make_pool("6", pt_price=0.96),
        ]
        rec = recommend_pools_for_asset(make_asset(), pools, "moderate", now=NOW)

        excluded = {rec.best_pt.address, rec.best_yt.address}
        assert rec.best_pt.address == "0x" + "1" * 40
        assert len(rec.alternatives) == 3
        assert not excluded & {p.address for p in rec.alternatives}

    def test_expected_return_uses_asset_value(self):
        rec = recommend_pools_for_asset(
            make_asset(value=2_000), [make_pool()], "moderate", now=NOW
        )
        assert rec.strategy.expected_return_usd == (
            2_000 * rec.strategy.expected_apy * 90 / 365
        )


class TestPortfolioRecommendations:
    """Test portfolio-level recommendations."""

    def test_empty_pool_list(self):
        summary = get_recommendations_for_portfolio([make_asset()], [], "neutral", now=NOW)
        assert summary.total_opportunities == 0
        assert summary.recommendations == []
        assert summary.best_overall_apy == 0.0
        assert summary.top_pools == []

    def test_single_matching_pool(self):
        pool = make_pool()
        summary = get_recommendations_for_portfolio(
            [make_asset()], [pool], "moderate", now=NOW
        )

        assert summary.total_opportunities == 1
        rec = summary.recommendations[0]
        assert rec.best_pt == pool
        assert rec.best_yt == pool
        assert rec.strategy.allocation.pt + rec.strategy.allocation.yt == 100
        assert summary.total_potential_value == 10_000
        assert summary.best_overall_apy == rec.strategy.expected_apy
        assert summary.top_pools[0].pool == pool

    def test_unmatched_assets_skipped(self):
        summary = get_recommendations_for_portfolio(
            [make_asset(), make_asset("WETH", 3_000)], [make_pool()], "neutral", now=NOW
        )
        assert summary.total_opportunities == 1
        assert summary.total_potential_value == 10_000

    def test_conservative_high_apy_pool(self):
        pool = make_pool(apy=0.30, implied_yield=0.05, pt_price=0.99)
        summary = get_recommendations_for_portfolio(
            [make_asset()], [pool], "conservative", now=NOW
        )
        allocation = summary.recommendations[0].strategy.allocation
        assert allocation.pt >= allocation.yt

    def test_conservative_overlay_caps_yt(self):
        pool = make_pool(sensitivity=5.0)
        summary = get_recommendations_for_portfolio(
            [make_asset()], [pool], "conservative", now=NOW
        )
        strategy = summary.recommendations[0].strategy
        assert strategy.type == "SPLIT"
        assert (strategy.allocation.pt, strategy.allocation.yt) == (70, 30)

    def test_aggressive_overlay_adds_yt(self):
        pool = make_pool(implied_yield=0.06)
        summary = get_recommendations_for_portfolio(
            [make_asset()], [pool], "aggressive", now=NOW
        )
        strategy = summary.recommendations[0].strategy
        assert strategy.type == "SPLIT"
        assert (strategy.allocation.pt, strategy.allocation.yt) == (30, 70)

    def test_overlay_leaves_ranking_untouched(self):
        pool = make_pool(implied_yield=0.06)
        summary = get_recommendations_for_portfolio(
            [make_asset()], [pool], "aggressive", now=NOW
        )
        assert summary.top_pools[0].suggestion.type == "PT"

    def test_top_pools_capped(self):
        pools = [make_pool(str(i)) for i in range(1, 9)]
        summary = get_recommendations_for_portfolio([], pools, "neutral", now=NOW)
        assert len(summary.top_pools) == 5
        assert summary.total_opportunities == 0


class TestHelpers:
    """Test distribution and best-opportunity helpers."""

    def test_strategy_distribution(self):
        assets = [make_asset(), make_asset("USDC", 500)]
        pools = [make_pool("1", implied_yield=0.06), make_pool("2", symbol="USDC")]
        summary = get_recommendations_for_portfolio(assets, pools, "moderate", now=NOW)

        dist = strategy_distribution(summary.recommendations)
        assert dist.pt_heavy + dist.yt_heavy + dist.balanced == 2
        assert dist.pt_heavy >= 1

    def test_strategy_distribution_empty(self):
        dist = strategy_distribution([])
        assert dist.pt_heavy == dist.yt_heavy == dist.balanced == 0

    def test_get_best_opportunity_none(self):
        assert get_best_opportunity([]) is None

    def test_compare_and_single_pool_helpers(self):
        live = [
            make_pool("1", maturity=4_000_000_000),
            make_pool("2", maturity=4_000_000_000, tvl=50_000),
        ]

        ranked = compare_pool_strategies(live, 2000)
        suggestion = get_pool_suggestion(live[0], 2000)

        assert [r.rank for r in ranked] == [1, 2]
        assert ranked[0].pool.address == live[0].address
        assert suggestion.allocation.pt + suggestion.allocation.yt == 100
        assert get_best_opportunity(live).pool.address == ranked[0].pool.address
