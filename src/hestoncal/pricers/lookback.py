import numpy as np
from scipy.optimize import minimize
from scipy.stats import norm
from typing import Sequence, Union
import logging

from ..exceptions import InvalidInputError
from .option_types import OptionType, parse_option_types

logger = logging.getLogger(__name__)

ArrayLike = Union[float, Sequence[float], np.ndarray]


def lookback_price(
    sigma: ArrayLike,
    spot: float,
    extremes: ArrayLike,
    maturities: ArrayLike,
    rate: ArrayLike,
    dividend_yield: float = 0.0,
    option_types=OptionType.CALL
) -> np.ndarray:
    """
    Floating-strike lookback option prices (Goldman-Sosin-Gatto) under Black-Scholes.

    Args:
        sigma: Volatility, scalar or one per option
        spot: Current underlying price
        extremes: Running minimum observed so far for calls, running maximum for puts
        maturities: Time(s) to expiration in years
        rate: Continuously compounded risk-free rate(s)
        dividend_yield: Continuous dividend yield
        option_types: 0/1 or "call"/"put" code(s)

    Returns:
        Array of lookback option prices

    Raises:
        InvalidInputError: If the cost of carry r - q is zero
    """
    types = parse_option_types(option_types)
    try:
        sigma, extremes, maturities, rate, types = (
            np.atleast_1d(a) for a in np.broadcast_arrays(
                np.asarray(sigma, dtype=float), np.asarray(extremes, dtype=float),
                np.asarray(maturities, dtype=float), np.asarray(rate, dtype=float),
                types if len(types) > 1 else types[0]
            )
        )
    except ValueError as exc:
        raise InvalidInputError("length_mismatch", str(exc)) from None

    carry = rate - dividend_yield
    if np.any(carry == 0):
        raise InvalidInputError("cost_of_carry", "Lookback formula requires r - q != 0")

    sqrt_t = np.sqrt(maturities)
    vol_t = sigma * sqrt_t
    spot_disc = spot * np.exp((carry - rate) * maturities)
    growth = np.exp(carry * maturities)
    reflection = spot * np.exp(-rate * maturities) * sigma**2 / (2 * carry)
    shift = 2 * carry * sqrt_t / sigma

    # calls use the running minimum, puts the running maximum
    e1 = (np.log(spot / extremes) + (carry + 0.5 * sigma**2) * maturities) / vol_t
    e2 = e1 - vol_t
    power = (spot / extremes) ** (-2 * carry / sigma**2)

    call = (spot_disc * norm.cdf(e1) - extremes * np.exp(-rate * maturities) * norm.cdf(e2)
            + reflection * (power * norm.cdf(-e1 + shift) - growth * norm.cdf(-e1)))
    put = (extremes * np.exp(-rate * maturities) * norm.cdf(-e2) - spot_disc * norm.cdf(-e1)
           + reflection * (-power * norm.cdf(e1 - shift) + growth * norm.cdf(e1)))

    return np.where(types == OptionType.PUT, put, call)


def lookback_rho(sigma, spot, extremes, maturities, rate, dividend_yield: float = 0.0,
                 option_types=OptionType.CALL) -> np.ndarray:
    """Rho by forward finite difference with dR = 1e-4."""
    d_rate = 1e-4
    up = lookback_price(sigma, spot, extremes, maturities, np.asarray(rate, dtype=float) + d_rate,
                        dividend_yield, option_types)
    base = lookback_price(sigma, spot, extremes, maturities, rate, dividend_yield, option_types)
    return (up - base) / d_rate


def lookback_sum_squared_errors(sigma, target_prices, spot, extremes, maturities, rate,
                                dividend_yield: float = 0.0, option_types=OptionType.CALL) -> float:
    model = lookback_price(sigma, spot, extremes, maturities, rate, dividend_yield, option_types)
    return float(np.sum((model - np.asarray(target_prices, dtype=float)) ** 2))


def lookback_implied_vol(
    target_prices: ArrayLike,
    spot: float,
    extremes: ArrayLike,
    maturities: ArrayLike,
    rate: ArrayLike,
    dividend_yield: float = 0.0,
    option_types=OptionType.CALL,
    calibrate_all: bool = True,
    initial_guess: float = 0.25
) -> np.ndarray:
    """
    Implied volatility for lookback options by Nelder-Mead on squared pricing error.

    Returns:
        Array of implied volatilities, one per option
    """
    options = {"xatol": 1e-6, "fatol": 1e-6, "maxfev": 10000}
    types = parse_option_types(option_types)
    targets, extremes, maturities, rate, types = (
        np.atleast_1d(a) for a in np.broadcast_arrays(
            np.asarray(target_prices, dtype=float), np.asarray(extremes, dtype=float),
            np.asarray(maturities, dtype=float), np.asarray(rate, dtype=float),
            types if len(types) > 1 else types[0]
        )
    )

    if calibrate_all:
        result = minimize(
            lambda x: lookback_sum_squared_errors(x[0], targets, spot, extremes, maturities, rate,
                                                  dividend_yield, types),
            x0=np.array([initial_guess]), method="Nelder-Mead", options=options,
        )
        if not result.success:
            logger.warning(f"Lookback implied volatility did not converge: {result.message}")
        return np.full(len(targets), float(result.x[0]))

    vols = np.empty(len(targets))
    for i in range(len(targets)):
        result = minimize(
            lambda x: lookback_sum_squared_errors(x[0], targets[i], spot, extremes[i], maturities[i], rate[i],
                                                  dividend_yield, types[i]),
            x0=np.array([initial_guess]), method="Nelder-Mead", options=options,
        )
        if not result.success:
            logger.warning(f"Lookback implied volatility did not converge for option {i}: {result.message}")
        vols[i] = result.x[0]
    return vols
