"""Tests for the pool analyzer and legacy scorers."""

import itertools
import math

import pytest

from yieldnav.core.types import Pool, Token
from yieldnav.strategy.analyzer import (
    DEFAULT_MAX_DRAWDOWN,
    DEFAULT_SENSITIVITY,
    DEFAULT_VOLATILITY,
    analyze_pool,
    composite_score,
    discount_score,
    liquidity_score,
    maturity_score,
    resolve_signals,
    score_pool_for_pt,
    score_pool_for_yt,
    strategy_tag,
    trend_score,
)

NOW = 1_700_000_000.0
DAY = 86400


@pytest.fixture
def pool():
    """Ninety-day sUSDe pool with a 3% PT discount."""
    return Pool(
        address="0x" + "1" * 40,
        name="PT-sUSDe",
        underlying=Token(address="0x" + "a" * 40, symbol="sUSDe"),
        maturity=int(NOW + 90 * DAY),
        tvl=5_000_000,
        apy=0.08,
        implied_yield=0.10,
        pt_price=0.97,
    )


class TestSubScores:
    """Test normalized sub-scores."""

    def test_discount_score(self):
        assert discount_score(0.15) == pytest.approx(1.0)
        assert discount_score(0.075) == pytest.approx(0.5)
        assert discount_score(-0.05) == 0.0
        assert discount_score(0.5) == 1.0

    def test_trend_score(self):
        assert trend_score(0.11, 0.10) == pytest.approx(1.0)
        assert trend_score(0.105, 0.10) == pytest.approx(0.5)
        assert trend_score(0.09, 0.10) == 0.0
        assert trend_score(0.10, 0.0) == 0.0

    def test_maturity_score(self):
        assert maturity_score(120) == 1.0
        assert maturity_score(60) == pytest.approx(0.5)
        assert maturity_score(0) == 0.0
        assert maturity_score(400) == 0.0

    def test_liquidity_score(self):
        assert liquidity_score(50_000_000) == pytest.approx(1.0)
        assert liquidity_score(1e12) == 1.0
        assert 0.0 < liquidity_score(5_000_000) < 1.0

    def test_liquidity_score_tiny_tvl(self):
        """TVL at or below one dollar has no liquidity."""
        assert liquidity_score(0) == 0.0
        assert liquidity_score(0.5) == 0.0
        assert liquidity_score(1) == 0.0


class TestCompositeScore:
    """Test the weighted composite score."""

    def test_weights(self):
        assert composite_score(1, 1, 1, 1, 1) == 100
        assert composite_score(0, 0, 0, 0, 0) == 0
        assert composite_score(1, 0, 0, 0, 0) == 30
        assert composite_score(0, 0, 0, 0, 1) == 10

    def test_always_within_bounds(self):
        values = [-5.0, -1.0, 0.0, 0.5, 1.0, 3.0, 1e9]
        for combo in itertools.product(values, repeat=5):
            score = composite_score(*combo)
            assert 0 <= score <= 100

    def test_nan_scores_zero(self):
        assert composite_score(math.nan, 0, 0, 0, 0) == 0


class TestResolveSignals:
    """Test input resolution for a pool."""

    def test_proxies_when_trend_missing(self, pool):
        """Implied yield stands in for the short window, APY for the long one."""
        signals = resolve_signals(pool, now=NOW)
        assert signals.apy_7d == pytest.approx(0.10)
        assert signals.apy_30d == pytest.approx(0.08)
        assert signals.maturity_days == 90
        assert signals.sensitivity == DEFAULT_SENSITIVITY
        assert signals.max_drawdown == DEFAULT_MAX_DRAWDOWN
        assert signals.volatility == DEFAULT_VOLATILITY

    def test_explicit_values_win(self, pool):
        pool = pool.model_copy(
            update={"apy_7d": 0.2, "apy_30d": 0.1, "max_drawdown": 0.2}
        )
        signals = resolve_signals(pool, now=NOW, max_drawdown=0.05, volatility=0.3)
        assert signals.apy_7d == 0.2
        assert signals.apy_30d == 0.1
        assert signals.max_drawdown == 0.05
        assert signals.volatility == 0.3


class TestAnalyzePool:
    """Test full pool analysis."""

    def test_analysis(self, pool):
        analysis = analyze_pool(pool, "moderate", now=NOW)

        assert analysis.discount_score == pytest.approx(0.2)
        assert analysis.trend_score == 1.0
        assert analysis.maturity_score == pytest.approx(0.75)
        assert analysis.risk_factor == pytest.approx(0.28)
        assert 0 <= analysis.score <= 100

    def test_expired_pool_scores(self, pool):
        """Expired pools still produce a bounded score."""
        pool = pool.model_copy(update={"maturity": int(NOW - DAY)})
        analysis = analyze_pool(pool, "aggressive", now=NOW)
        assert analysis.maturity_score == 0.0
        assert 0 <= analysis.score <= 100


class TestLegacyScorers:
    """Test the percent-based PT/YT scorers."""

    def test_pt_score(self, pool):
        assert score_pool_for_pt(pool, now=NOW) == pytest.approx(23.0)

    def test_yt_score(self, pool):
        assert score_pool_for_yt(pool, now=NOW) == pytest.approx(38.2)

    def test_pt_score_ignores_negative_yield_diff(self, pool):
        pool = pool.model_copy(update={"implied_yield": 0.02})
        assert score_pool_for_pt(pool, now=NOW) == pytest.approx(21.2)


class TestStrategyTag:
    """Test market classification."""

    def test_best_pt(self):
        assert strategy_tag(0.08, 0.10, 0.04, 90) == "Best PT"

    def test_best_yt(self):
        assert strategy_tag(0.25, 0.25, 0.01, 90) == "Best YT"

    def test_best_yt_needs_time(self):
        assert strategy_tag(0.25, 0.25, 0.01, 30) == "Neutral"

    def test_risky(self):
        assert strategy_tag(0.35, 0.30, 0.05, 90) == "Risky"
        assert strategy_tag(0.05, 0.05, 0.12, 90) == "Risky"

    def test_neutral(self):
        assert strategy_tag(0.05, 0.05, 0.01, 90) == "Neutral"
