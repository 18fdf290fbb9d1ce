"""PT/YT allocation calculator.

Splits capital between the principal token and the yield token from the PT
discount, time to maturity and the short-vs-long APY trend. The risk-adjusted
variant scales the YT signal down by drawdown, volatility and risk profile.
"""

import math

import structlog

from ..core.types import PROFILE_FACTORS, AllocationResult

logger = structlog.get_logger(__name__)

MDD_NORMALIZER = 0.3
VOL_NORMALIZER = 0.25


def _finite(value: float) -> float:
    # NaN or infinite market data contributes no signal
    return value if math.isfinite(value) else 0.0


def _pt_score(pt_price: float, maturity_days: float) -> float:
    # PT above par carries no PT signal
    discount = max(1.0 - pt_price, 0.0)
    return _finite(discount * math.sqrt(max(maturity_days, 1) / 365))


def apy_trend(apy_7d: float, apy_30d: float) -> float:
    """Relative change of the 7-day APY against the 30-day APY."""
    if apy_30d > 0:
        return _finite((apy_7d - apy_30d) / apy_30d)
    return 0.0


def _yt_score(apy_7d: float, apy_30d: float, sensitivity: float) -> float:
    return _finite(max(apy_trend(apy_7d, apy_30d) * sensitivity, 0.0))


def risk_factor(
    max_drawdown: float, volatility: float, risk_profile: str = "moderate"
) -> float:
    """Compute the YT risk dampener in [0, 1].

    Args:
        max_drawdown: YT max drawdown over the last 30 days (fraction)
        volatility: APY volatility
        risk_profile: conservative, moderate or aggressive

    Returns:
        (1 - MDD_norm) * (1 - vol_norm) * profile factor
    """
    mdd_norm = min(max(max_drawdown, 0.0) / MDD_NORMALIZER, 1.0)
    vol_norm = min(max(volatility, 0.0) / VOL_NORMALIZER, 1.0)
    profile = PROFILE_FACTORS.get(risk_profile, PROFILE_FACTORS["aggressive"])
    return _finite((1 - mdd_norm) * (1 - vol_norm) * profile)


def calculate_allocation(
    pt_price: float,
    apy_7d: float,
    apy_30d: float,
    maturity_days: float,
    sensitivity: float,
) -> AllocationResult:
    """Base PT/YT allocation without risk adjustment.

    Args:
        pt_price: PT price as fraction of par
        apy_7d: 7-day APY (decimal)
        apy_30d: 30-day APY (decimal)
        maturity_days: Days until maturity
        sensitivity: YT sensitivity to APY changes

    Returns:
        AllocationResult with fractions summing to 1
    """
    pt_score = _pt_score(pt_price, maturity_days)
    yt_score = _yt_score(apy_7d, apy_30d, sensitivity)

    total = pt_score + yt_score
    if total == 0:
        return AllocationResult(
            pt_fraction=1.0,
            yt_fraction=0.0,
            comment="No valid YT signal; allocate fully to PT",
            risk_factor=0.0,
        )

    pt_fraction = pt_score / total
    yt_fraction = 1.0 - pt_fraction

    if yt_fraction > 0.7:
        comment = "Strong YT signal (APY trending up)"
    elif yt_fraction > 0.4:
        comment = "Moderate YT allocation"
    elif yt_fraction < 0.1:
        comment = "Market weak; focus PT"
    else:
        comment = "Balanced PT/YT positioning"

    return AllocationResult(
        pt_fraction=pt_fraction,
        yt_fraction=yt_fraction,
        comment=comment,
        risk_factor=0.0,
    )


def calculate_allocation_with_risk(
    pt_price: float,
    apy_7d: float,
    apy_30d: float,
    maturity_days: float,
    sensitivity: float,
    max_drawdown: float,
    volatility: float,
    risk_profile: str = "moderate",
) -> AllocationResult:
    """Risk-adjusted PT/YT allocation.

    Same PT and YT scores as the base allocation, with the YT score scaled
    by the risk factor before the split is taken.

    Returns:
        AllocationResult carrying the risk factor used
    """
    pt_score = _pt_score(pt_price, maturity_days)
    yt_score = _yt_score(apy_7d, apy_30d, sensitivity)
    factor = risk_factor(max_drawdown, volatility, risk_profile)
    yt_adjusted = yt_score * factor

    total = pt_score + yt_adjusted
    if total == 0:
        return AllocationResult(
            pt_fraction=1.0,
            yt_fraction=0.0,
            comment="YT suppressed by risk model",
            risk_factor=factor,
        )

    pt_fraction = pt_score / total
    yt_fraction = 1.0 - pt_fraction

    if yt_fraction > 0.7:
        comment = "Aggressive YT (trend strong + low risk)"
    elif yt_fraction > 0.4:
        comment = "Balanced allocation"
    elif yt_fraction < 0.1:
        comment = "Prefer PT (risk model suppresses YT)"
    else:
        comment = "Mild YT positioning"

    logger.debug(
        "Risk-adjusted allocation",
        pt=round(pt_fraction, 4),
        yt=round(yt_fraction, 4),
        risk_factor=round(factor, 4),
        risk_profile=risk_profile,
    )

    return AllocationResult(
        pt_fraction=pt_fraction,
        yt_fraction=yt_fraction,
        comment=comment,
        risk_factor=factor,
    )
