"""What-if simulator for single-leg PT or YT positions.

PT is bought at the discount implied by the expected APY and redeems at par.
YT is priced at the yield it is expected to collect and pays out whatever
yield is actually realized, so its value scales with the realized APY.
"""

import math

import structlog

from ..core.errors import InvalidInputError
from ..core.types import (
    OptimalAllocation,
    SensitivityPoint,
    SimulatorInput,
    SimulatorOutput,
)
from .allocation import calculate_allocation_with_risk

logger = structlog.get_logger(__name__)

PT_RISK_SCORE = 20
YT_RISK_SCORE = 75

CURVE_LOW = 0.5
CURVE_HIGH = 2.0
CURVE_STEPS = 10

SIM_SENSITIVITY = 1.5
SIM_MAX_DRAWDOWN = 0.1
SIM_VOLATILITY = 0.15

PT_RISKS = [
    "Fixed yield - not affected by APY changes",
    "Low risk investment",
    "Guaranteed return at maturity",
    "No upside if APY increases",
]

YT_RISKS = [
    "High risk - value depends on APY changes",
    "Profits if APY increases",
    "Losses if APY decreases",
    "Volatile returns",
    "No value at maturity",
]


def _validate(sim: SimulatorInput) -> None:
    for label, value in (
        ("amount", sim.amount),
        ("duration", sim.duration),
        ("expected APY", sim.expected_apy),
    ):
        if not math.isfinite(value):
            raise InvalidInputError(f"Simulation {label} must be finite, got {value}")
    if sim.amount <= 0:
        raise InvalidInputError(f"Simulation amount must be positive, got {sim.amount}")
    if sim.duration <= 0:
        raise InvalidInputError(
            f"Simulation duration must be positive, got {sim.duration}"
        )
    if sim.expected_apy < 0:
        raise InvalidInputError(
            f"Expected APY must not be negative, got {sim.expected_apy}"
        )


def _annualized(amount: float, future_value: float, days: float) -> tuple[float, float]:
    pct = (future_value - amount) / amount * 100
    return pct, pct / days * 365


def pt_price_for(expected_apy: float, duration: float) -> float:
    """PT price as fraction of par under simple interest to maturity."""
    return 1 / (1 + expected_apy / 100 * duration / 365)


def simulate_pt(sim: SimulatorInput) -> SimulatorOutput:
    """Buy PT at the implied discount and hold to maturity.

    Raises:
        InvalidInputError: On non-positive amount or duration
    """
    _validate(sim)
    pt_tokens = sim.amount / pt_price_for(sim.expected_apy, sim.duration)
    # Each PT redeems for one unit of the underlying at maturity
    future_value = pt_tokens
    pct, apy = _annualized(sim.amount, future_value, sim.duration)

    return SimulatorOutput(
        future_value=future_value,
        total_yield=future_value - sim.amount,
        annualized_return=apy,
        risks=list(PT_RISKS),
        risk_score=PT_RISK_SCORE,
        vs_holding=pct,
    )


def _yt_value(amount: float, expected_apy: float, realized_apy: float) -> float:
    return amount * max(realized_apy, 0.0) / expected_apy


def sensitivity_curve(sim: SimulatorInput) -> list[SensitivityPoint]:
    """YT value when the realized APY lands between half and twice the expected."""
    low = sim.expected_apy * CURVE_LOW
    step = (sim.expected_apy * CURVE_HIGH - low) / CURVE_STEPS
    points = []
    for i in range(CURVE_STEPS + 1):
        apy = low + step * i
        points.append(
            SensitivityPoint(
                apy=apy, value=_yt_value(sim.amount, sim.expected_apy, apy)
            )
        )
    return points


def simulate_yt(sim: SimulatorInput) -> SimulatorOutput:
    """Buy YT priced at its expected yield and collect the realized yield.

    Args:
        sim: Simulation input; realized_apy defaults to expected_apy

    Returns:
        SimulatorOutput with a sensitivity curve over realized APYs

    Raises:
        InvalidInputError: On non-positive amount, duration or expected APY
    """
    _validate(sim)
    if sim.expected_apy <= 0:
        raise InvalidInputError("YT simulation needs a positive expected APY")

    realized = sim.expected_apy if sim.realized_apy is None else sim.realized_apy
    if not math.isfinite(realized):
        raise InvalidInputError(f"Realized APY must be finite, got {realized}")
    future_value = _yt_value(sim.amount, sim.expected_apy, realized)
    pct, apy = _annualized(sim.amount, future_value, sim.duration)

    return SimulatorOutput(
        future_value=future_value,
        total_yield=future_value - sim.amount,
        annualized_return=apy,
        risks=list(YT_RISKS),
        risk_score=YT_RISK_SCORE,
        sensitivity_curve=sensitivity_curve(sim),
        vs_holding=pct,
    )


def run_simulation(sim: SimulatorInput) -> SimulatorOutput:
    """Simulate the leg named by ``sim.type``."""
    if sim.type == "PT":
        return simulate_pt(sim)
    return simulate_yt(sim)


def calculate_risk_score(sim: SimulatorInput) -> int:
    """Rough 0-100 risk score from leg, APY level and holding period."""
    score = 40 if sim.type == "YT" else 10

    if sim.expected_apy > 30:
        score += 30
    elif sim.expected_apy > 20:
        score += 20
    elif sim.expected_apy > 10:
        score += 10

    if sim.duration > 180:
        score += 20
    elif sim.duration > 90:
        score += 10

    return min(score, 100)


def risk_level_label(score: int) -> str:
    if score >= 70:
        return "High Risk"
    if score >= 40:
        return "Medium Risk"
    return "Low Risk"


def calculate_optimal_allocation(
    sim: SimulatorInput, risk_profile: str = "moderate"
) -> OptimalAllocation:
    """PT/YT split for the simulated market.

    The expected APY stands in for both trend windows, so a stable market
    carries no YT trend signal. Drawdown and volatility use fixed proxies.

    Args:
        sim: Simulation input
        risk_profile: conservative, moderate or aggressive

    Returns:
        OptimalAllocation with percentages summing to 100
    """
    _validate(sim)
    apy = sim.expected_apy / 100
    result = calculate_allocation_with_risk(
        pt_price=pt_price_for(sim.expected_apy, sim.duration),
        apy_7d=apy,
        apy_30d=apy,
        maturity_days=sim.duration,
        sensitivity=SIM_SENSITIVITY,
        max_drawdown=SIM_MAX_DRAWDOWN,
        volatility=SIM_VOLATILITY,
        risk_profile=risk_profile,
    )

    pt = int(round(result.pt_fraction * 100))
    logger.debug(
        "Simulated allocation", pt=pt, risk_profile=risk_profile, type=sim.type
    )
    return OptimalAllocation(
        pt_percentage=pt,
        yt_percentage=100 - pt,
        comment=result.comment,
        risk_factor=result.risk_factor,
    )
