import numpy as np
from scipy.interpolate import CubicSpline
from typing import Union
import logging

from ..exceptions import InvalidInputError, NumericalDegeneracyError

logger = logging.getLogger(__name__)


def rmse(model_prices: np.ndarray, market_prices: np.ndarray) -> float:
    """
    Root mean squared error between model and market prices.

    Args:
        model_prices: Model prices
        market_prices: Observed (mid) prices

    Returns:
        RMSE
    """
    errors = np.asarray(model_prices, dtype=float) - np.asarray(market_prices, dtype=float)
    return float(np.sqrt(np.mean(errors**2)))


def rmse_spread_adjusted(
    model_prices: np.ndarray,
    market_prices: np.ndarray,
    bid: np.ndarray,
    ask: np.ndarray
) -> float:
    """
    RMSE that counts zero error for model prices already inside the bid-ask spread.

    Outside the spread the error is the distance to the mid price, so the
    result never exceeds the plain RMSE against the same mid prices.

    Args:
        model_prices: Model prices
        market_prices: Observed mid prices
        bid: Bid prices
        ask: Ask prices

    Returns:
        Spread-adjusted RMSE
    """
    model_prices = np.asarray(model_prices, dtype=float)
    errors = model_prices - np.asarray(market_prices, dtype=float)
    inside = (model_prices >= np.asarray(bid, dtype=float)) & (model_prices <= np.asarray(ask, dtype=float))
    errors = np.where(inside, 0.0, errors)
    return float(np.sqrt(np.mean(errors**2)))


def put_call_parity_check(
    call_price: Union[float, np.ndarray],
    put_price: Union[float, np.ndarray],
    S: float,
    K: Union[float, np.ndarray],
    r: Union[float, np.ndarray],
    q: float,
    T: Union[float, np.ndarray],
    tolerance: float = 1e-6
) -> bool:
    """
    Check if call and put prices satisfy put-call parity.

    Args:
        call_price: Call option price(s)
        put_price: Put option price(s)
        S: Current stock price
        K: Strike price(s)
        r: Risk-free rate(s)
        q: Dividend yield
        T: Time(s) to expiration
        tolerance: Absolute tolerance for parity check

    Returns:
        True if parity holds within tolerance for every pair
    """
    left_side = np.asarray(call_price) - np.asarray(put_price)
    right_side = S * np.exp(-q * np.asarray(T)) - np.asarray(K) * np.exp(-np.asarray(r) * np.asarray(T))
    return bool(np.all(np.abs(left_side - right_side) < tolerance))


def days_to_years(days: Union[float, np.ndarray], basis: float = 365.0) -> np.ndarray:
    """Convert a maturity in calendar days to a year fraction (act/365 by default)."""
    return np.asarray(days, dtype=float) / basis


def interpolate_rates(
    tenors: np.ndarray,
    rates: np.ndarray,
    targets: np.ndarray,
    method: str = "spline"
) -> np.ndarray:
    """
    Interpolate a sampled yield curve at the required maturities.

    Args:
        tenors: Tenors at which the curve is observed (any consistent unit)
        rates: Observed rates
        targets: Maturities to interpolate at, in the same unit as tenors
        method: "spline" (not-a-knot cubic spline) or "linear"

    Returns:
        Interpolated rates
    """
    tenors = np.asarray(tenors, dtype=float)
    rates = np.asarray(rates, dtype=float)
    targets = np.asarray(targets, dtype=float)

    if tenors.shape != rates.shape or tenors.size == 0:
        raise InvalidInputError("rate_curve", "Tenors and rates must be non-empty and of equal length")

    if method not in ("spline", "linear"):
        raise InvalidInputError("interpolation_method", f"Unsupported interpolation method: {method}")

    order = np.argsort(tenors)
    tenors, rates = tenors[order], rates[order]

    if method == "spline" and tenors.size >= 4:
        return CubicSpline(tenors, rates)(targets)
    if method == "spline":
        logger.debug(f"Only {tenors.size} curve points; falling back to linear interpolation")
    return np.interp(targets, tenors, rates)


def check_finite(values: np.ndarray, what: str = "values") -> np.ndarray:
    """
    Strict finiteness check for results leaving the package boundary.

    Raises:
        NumericalDegeneracyError: If any entry is NaN or infinite
    """
    values = np.asarray(values)
    bad = ~np.isfinite(values)
    if np.any(bad):
        raise NumericalDegeneracyError("non_finite", f"{int(np.sum(bad))} non-finite {what}")
    return values
