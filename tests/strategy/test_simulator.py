"""Tests for the PT/YT what-if simulator."""

import pytest

from yieldnav.core.errors import InvalidInputError
from yieldnav.core.types import SimulatorInput
from yieldnav.strategy.simulator import (
    PT_RISK_SCORE,
    YT_RISK_SCORE,
    calculate_optimal_allocation,
    calculate_risk_score,
    pt_price_for,
    risk_level_label,
    run_simulation,
    simulate_pt,
    simulate_yt,
)


def make_input(**overrides) -> SimulatorInput:
    data = {
        "amount": 1000.0,
        "type": "PT",
        "duration": 365,
        "expected_apy": 10.0,
        "asset": "sUSDe",
    }
    data.update(overrides)
    return SimulatorInput(**data)


class TestSimulatePT:
    """Test the fixed-yield leg."""

    def test_one_year_hold(self):
        result = simulate_pt(make_input())

        assert result.future_value == pytest.approx(1100.0)
        assert result.total_yield == pytest.approx(100.0)
        assert result.annualized_return == pytest.approx(10.0)
        assert result.vs_holding == pytest.approx(10.0)
        assert result.risk_score == PT_RISK_SCORE
        assert result.sensitivity_curve == []

    def test_half_year_hold(self):
        result = simulate_pt(make_input(duration=182.5))

        assert result.future_value == pytest.approx(1050.0)
        assert result.annualized_return == pytest.approx(10.0)

    def test_zero_apy_returns_principal(self):
        result = simulate_pt(make_input(expected_apy=0.0))
        assert result.future_value == pytest.approx(1000.0)
        assert result.total_yield == pytest.approx(0.0)

    def test_pt_price(self):
        assert pt_price_for(10.0, 365) == pytest.approx(1 / 1.1)
        assert pt_price_for(0.0, 90) == 1.0


class TestSimulateYT:
    """Test the yield leg and its sensitivity."""

    def test_breaks_even_at_expected_apy(self):
        result = simulate_yt(make_input(type="YT", duration=90))

        assert result.future_value == pytest.approx(1000.0)
        assert result.total_yield == pytest.approx(0.0)
        assert result.risk_score == YT_RISK_SCORE
        assert "No value at maturity" in result.risks

    def test_profits_when_realized_apy_is_higher(self):
        result = simulate_yt(make_input(type="YT", duration=90, realized_apy=15.0))

        assert result.future_value == pytest.approx(1500.0)
        assert result.vs_holding == pytest.approx(50.0)
        assert result.annualized_return == pytest.approx(50.0 / 90 * 365)

    def test_negative_realized_apy_loses_everything(self):
        result = simulate_yt(make_input(type="YT", realized_apy=-5.0))
        assert result.future_value == 0.0
        assert result.vs_holding == pytest.approx(-100.0)

    def test_sensitivity_curve(self):
        curve = simulate_yt(make_input(type="YT")).sensitivity_curve

        assert len(curve) == 11
        assert curve[0].apy == pytest.approx(5.0)
        assert curve[0].value == pytest.approx(500.0)
        assert curve[-1].apy == pytest.approx(20.0)
        assert curve[-1].value == pytest.approx(2000.0)
        values = [p.value for p in curve]
        assert values == sorted(values)

    def test_requires_positive_expected_apy(self):
        with pytest.raises(InvalidInputError):
            simulate_yt(make_input(type="YT", expected_apy=0.0))

    def test_rejects_non_finite_realized_apy(self):
        with pytest.raises(InvalidInputError):
            simulate_yt(make_input(type="YT", realized_apy=float("nan")))


class TestRunSimulation:
    """Test dispatch and input validation."""

    def test_dispatches_on_type(self):
        assert run_simulation(make_input()).risk_score == PT_RISK_SCORE
        assert run_simulation(make_input(type="YT")).risk_score == YT_RISK_SCORE

    @pytest.mark.parametrize(
        "overrides",
        [
            {"amount": 0.0},
            {"amount": -10.0},
            {"duration": 0},
            {"expected_apy": -1.0},
            {"amount": float("inf")},
        ],
    )
    def test_invalid_inputs(self, overrides):
        with pytest.raises(InvalidInputError):
            run_simulation(make_input(**overrides))


class TestRiskScore:
    """Test the rough risk score and its labels."""

    def test_scores(self):
        assert calculate_risk_score(make_input(expected_apy=5.0, duration=30)) == 10
        assert calculate_risk_score(make_input(expected_apy=15.0, duration=30)) == 20
        assert (
            calculate_risk_score(make_input(type="YT", expected_apy=25.0, duration=100))
            == 70
        )
        assert (
            calculate_risk_score(make_input(type="YT", expected_apy=35.0, duration=200))
            == 90
        )

    def test_labels(self):
        assert risk_level_label(90) == "High Risk"
        assert risk_level_label(70) == "High Risk"
        assert risk_level_label(69) == "Medium Risk"
        assert risk_level_label(40) == "Medium Risk"
        assert risk_level_label(39) == "Low Risk"


class TestOptimalAllocation:
    """Test the allocation for a simulated stable market."""

    def test_stable_market_is_pt(self):
        result = calculate_optimal_allocation(make_input(duration=90), "moderate")

        assert result.pt_percentage == 100
        assert result.yt_percentage == 0
        assert result.comment == "Prefer PT (risk model suppresses YT)"
        assert result.risk_factor == pytest.approx((1 - 0.1 / 0.3) * 0.4 * 0.7)

    def test_no_discount_no_signal(self):
        result = calculate_optimal_allocation(make_input(expected_apy=0.0))

        assert result.pt_percentage + result.yt_percentage == 100
        assert result.comment == "YT suppressed by risk model"

    def test_invalid_input(self):
        with pytest.raises(InvalidInputError):
            calculate_optimal_allocation(make_input(duration=0))
