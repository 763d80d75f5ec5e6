import numpy as np
from scipy.optimize import minimize
from scipy.stats import norm
from typing import Sequence, Union
import logging

from ..exceptions import InvalidInputError
from .option_types import OptionType, parse_option_types

logger = logging.getLogger(__name__)

ArrayLike = Union[float, Sequence[float], np.ndarray]


def _d1_d2(sigma, spot, strikes, rates, dividend_yield, maturities):
    sqrt_t = np.sqrt(maturities)
    d1 = (np.log(spot / strikes) + (rates - dividend_yield + 0.5 * sigma**2) * maturities) / (sigma * sqrt_t)
    return d1, d1 - sigma * sqrt_t


def bs_price(
    sigma: ArrayLike,
    spot: float,
    strikes: ArrayLike,
    rates: ArrayLike,
    dividend_yield: float,
    maturities: ArrayLike,
    option_types: Union[int, str, Sequence, np.ndarray] = OptionType.CALL
) -> np.ndarray:
    """
    Black-Scholes European option prices with continuous dividend yield.

    Puts are obtained from the call through put-call parity.

    Args:
        sigma: Volatility, scalar or one per option
        spot: Current underlying price
        strikes: Strike price(s)
        rates: Risk-free rate(s)
        dividend_yield: Continuous dividend yield
        maturities: Time(s) to expiration in years
        option_types: 0/1 or "call"/"put" code(s)

    Returns:
        Array of option prices
    """
    types = parse_option_types(option_types)
    sigma, strikes, rates, maturities, types = np.broadcast_arrays(
        np.asarray(sigma, dtype=float), np.asarray(strikes, dtype=float),
        np.asarray(rates, dtype=float), np.asarray(maturities, dtype=float), types
    )
    sigma, strikes, rates, maturities = (np.atleast_1d(a) for a in (sigma, strikes, rates, maturities))
    types = np.atleast_1d(types)

    d1, d2 = _d1_d2(sigma, spot, strikes, rates, dividend_yield, maturities)
    discounted_strike = strikes * np.exp(-rates * maturities)
    discounted_spot = spot * np.exp(-dividend_yield * maturities)

    call = discounted_spot * norm.cdf(d1) - discounted_strike * norm.cdf(d2)
    return np.where(types == OptionType.PUT, call + discounted_strike - discounted_spot, call)


def bs_vega(
    sigma: ArrayLike,
    spot: float,
    strikes: ArrayLike,
    rates: ArrayLike,
    dividend_yield: float,
    maturities: ArrayLike
) -> np.ndarray:
    """
    Black-Scholes vega, identical for calls and puts.

    Returns:
        Vega per unit change in volatility (not per percentage point)
    """
    sigma, strikes, rates, maturities = (
        np.atleast_1d(a) for a in np.broadcast_arrays(
            np.asarray(sigma, dtype=float), np.asarray(strikes, dtype=float),
            np.asarray(rates, dtype=float), np.asarray(maturities, dtype=float)
        )
    )
    d1, _ = _d1_d2(sigma, spot, strikes, rates, dividend_yield, maturities)
    return spot * np.exp(-dividend_yield * maturities) * norm.pdf(d1) * np.sqrt(maturities)


def _solve_vol(objective, initial_guess: float, label: str) -> float:
    result = minimize(
        objective,
        x0=np.array([initial_guess]),
        method="Nelder-Mead",
        options={"xatol": 1e-6, "fatol": 1e-6, "maxfev": 10000},
    )
    if not result.success:
        logger.warning(f"Implied volatility search did not converge for {label}: {result.message}")
    return float(result.x[0])


def bs_implied_vol(
    prices: ArrayLike,
    spot: float,
    strikes: ArrayLike,
    rates: ArrayLike,
    dividend_yield: float,
    maturities: ArrayLike,
    option_types: Union[int, str, Sequence, np.ndarray] = OptionType.CALL,
    calibrate_all: bool = False,
    initial_guess: float = 0.5
) -> np.ndarray:
    """
    Black-Scholes implied volatility by derivative-free minimisation of squared pricing error.

    Target prices outside the no-arbitrage bounds are not guarded against; the
    search returns whatever point it converges to.

    Args:
        prices: Target option price(s)
        spot: Current underlying price
        strikes: Strike price(s)
        rates: Risk-free rate(s)
        dividend_yield: Continuous dividend yield
        maturities: Time(s) to expiration in years
        option_types: 0/1 or "call"/"put" code(s)
        calibrate_all: Fit one volatility to the whole batch instead of one per option
        initial_guess: Starting volatility

    Returns:
        One implied volatility per option (constant when calibrate_all is set)
    """
    types = parse_option_types(option_types)
    prices, strikes, rates, maturities, types = (
        np.atleast_1d(a) for a in np.broadcast_arrays(
            np.asarray(prices, dtype=float), np.asarray(strikes, dtype=float),
            np.asarray(rates, dtype=float), np.asarray(maturities, dtype=float), types
        )
    )

    if calibrate_all:
        def batch_error(x):
            model = bs_price(x[0], spot, strikes, rates, dividend_yield, maturities, types)
            return float(np.sum((model - prices) ** 2))

        sigma = _solve_vol(batch_error, initial_guess, f"{len(prices)} options")
        return np.full(len(prices), sigma)

    vols = np.empty(len(prices))
    for i in range(len(prices)):
        def single_error(x, i=i):
            model = bs_price(x[0], spot, strikes[i], rates[i], dividend_yield, maturities[i], types[i])
            return float((model[0] - prices[i]) ** 2)

        vols[i] = _solve_vol(single_error, initial_guess, f"K={strikes[i]}, T={maturities[i]}")
    return vols


class BlackScholesPricer:
    """
    Black-Scholes pricer class wrapper around the functional implementation.
    """

    def __init__(self, dividend_yield: float = 0.0):
        if not np.isfinite(dividend_yield):
            raise InvalidInputError("dividend_yield", f"Dividend yield must be finite, got {dividend_yield}")
        self.dividend_yield = dividend_yield

    def price(self, sigma, spot, strikes, rates, maturities, option_types=OptionType.CALL) -> np.ndarray:
        """Calculate option prices."""
        return bs_price(sigma, spot, strikes, rates, self.dividend_yield, maturities, option_types)

    def vega(self, sigma, spot, strikes, rates, maturities) -> np.ndarray:
        """Calculate vega."""
        return bs_vega(sigma, spot, strikes, rates, self.dividend_yield, maturities)

    def implied_vol(self, prices, spot, strikes, rates, maturities, option_types=OptionType.CALL,
                    calibrate_all: bool = False) -> np.ndarray:
        """Calculate implied volatility."""
        return bs_implied_vol(prices, spot, strikes, rates, self.dividend_yield, maturities,
                              option_types, calibrate_all=calibrate_all)
