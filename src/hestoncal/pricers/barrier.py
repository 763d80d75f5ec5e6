"""
Single-barrier European options under Black-Scholes (Reiner-Rubinstein).

Prices are built from the six standard building blocks A..F of Haug's
"Complete Guide to Option Pricing Formulas" with continuous cost of carry
b = r - q. A and B are vanilla-like terms, C and D their reflections at the
barrier, E the rebate of an "in" option paid at expiry and F the rebate of
an "out" option paid at the hit.
"""

import numpy as np
from enum import Enum
from scipy.optimize import minimize
from scipy.stats import norm
from typing import Dict, NamedTuple, Sequence, Tuple, Union
import logging

from ..exceptions import InvalidInputError

logger = logging.getLogger(__name__)

ArrayLike = Union[float, Sequence[float], np.ndarray]


class BarrierType(Enum):
    """Single-barrier option types, valued by their four-letter codes."""
    DOWN_IN_CALL = "dibc"
    DOWN_OUT_CALL = "dobc"
    UP_IN_CALL = "uibc"
    UP_OUT_CALL = "uobc"
    DOWN_IN_PUT = "dibp"
    DOWN_OUT_PUT = "dobp"
    UP_IN_PUT = "uibp"
    UP_OUT_PUT = "uobp"

    @property
    def is_down(self) -> bool:
        return self.value[0] == "d"


class BarrierFormula(NamedTuple):
    """Sign pair and building-block coefficients (A, B, C, D, E, F) for one barrier type."""
    phi: int
    eta: int
    strike_above_barrier: Tuple[int, int, int, int, int, int]
    strike_at_or_below_barrier: Tuple[int, int, int, int, int, int]


BARRIER_FORMULAS: Dict[BarrierType, BarrierFormula] = {
    BarrierType.DOWN_IN_CALL: BarrierFormula(1, 1, (0, 0, 1, 0, 1, 0), (1, -1, 0, 1, 1, 0)),
    BarrierType.UP_IN_CALL: BarrierFormula(1, -1, (1, 0, 0, 0, 1, 0), (0, 1, -1, 1, 1, 0)),
    BarrierType.DOWN_IN_PUT: BarrierFormula(-1, 1, (0, 1, -1, 1, 1, 0), (1, 0, 0, 0, 1, 0)),
    BarrierType.UP_IN_PUT: BarrierFormula(-1, -1, (1, -1, 0, 1, 1, 0), (0, 0, 1, 0, 1, 0)),
    BarrierType.DOWN_OUT_CALL: BarrierFormula(1, 1, (1, 0, -1, 0, 0, 1), (0, 1, 0, -1, 0, 1)),
    BarrierType.UP_OUT_CALL: BarrierFormula(1, -1, (0, 0, 0, 0, 0, 1), (1, -1, 1, -1, 0, 1)),
    BarrierType.DOWN_OUT_PUT: BarrierFormula(-1, 1, (1, -1, 1, -1, 0, 1), (0, 0, 0, 0, 0, 1)),
    BarrierType.UP_OUT_PUT: BarrierFormula(-1, -1, (0, 1, 0, -1, 0, 1), (1, 0, -1, 0, 0, 1)),
}


def parse_barrier_types(codes) -> np.ndarray:
    """
    Convert barrier type codes ("dobc", ... or BarrierType members) to an object array of BarrierType.

    Raises:
        InvalidInputError: On an unknown code
    """
    if isinstance(codes, (str, BarrierType)):
        codes = [codes]
    parsed = []
    for code in codes:
        if isinstance(code, BarrierType):
            parsed.append(code)
            continue
        try:
            parsed.append(BarrierType(str(code).strip().lower()))
        except ValueError:
            raise InvalidInputError("barrier_type", f"Unknown barrier type: {code!r}") from None
    return np.array(parsed, dtype=object)


def _building_blocks(phi, eta, sigma, spot, strikes, barriers, rebates, maturities, rate, dividend_yield):
    carry = rate - dividend_yield
    vol_t = sigma * np.sqrt(maturities)
    mu = (carry - 0.5 * sigma**2) / sigma**2
    lam = np.sqrt(mu**2 + 2 * rate / sigma**2)
    h_s = barriers / spot

    x1 = np.log(spot / strikes) / vol_t + (1 + mu) * vol_t
    x2 = np.log(spot / barriers) / vol_t + (1 + mu) * vol_t
    y1 = np.log(barriers**2 / (spot * strikes)) / vol_t + (1 + mu) * vol_t
    y2 = np.log(h_s) / vol_t + (1 + mu) * vol_t
    z = np.log(h_s) / vol_t + lam * vol_t

    spot_disc = spot * np.exp((carry - rate) * maturities)
    strike_disc = strikes * np.exp(-rate * maturities)

    a = phi * spot_disc * norm.cdf(phi * x1) - phi * strike_disc * norm.cdf(phi * x1 - phi * vol_t)
    b = phi * spot_disc * norm.cdf(phi * x2) - phi * strike_disc * norm.cdf(phi * x2 - phi * vol_t)
    c = (phi * spot_disc * h_s ** (2 * (mu + 1)) * norm.cdf(eta * y1)
         - phi * strike_disc * h_s ** (2 * mu) * norm.cdf(eta * y1 - eta * vol_t))
    d = (phi * spot_disc * h_s ** (2 * (mu + 1)) * norm.cdf(eta * y2)
         - phi * strike_disc * h_s ** (2 * mu) * norm.cdf(eta * y2 - eta * vol_t))
    e = rebates * np.exp(-rate * maturities) * (
        norm.cdf(eta * x2 - eta * vol_t) - h_s ** (2 * mu) * norm.cdf(eta * y2 - eta * vol_t)
    )
    f = rebates * (h_s ** (mu + lam) * norm.cdf(eta * z)
                   + h_s ** (mu - lam) * norm.cdf(eta * z - 2 * eta * lam * vol_t))
    return np.stack([a, b, c, d, e, f])


def barrier_price(
    sigma: ArrayLike,
    spot: float,
    strikes: ArrayLike,
    barriers: ArrayLike,
    rebates: ArrayLike,
    maturities: ArrayLike,
    rate: ArrayLike,
    dividend_yield: float = 0.0,
    barrier_types=BarrierType.DOWN_OUT_CALL
) -> np.ndarray:
    """
    Black-Scholes prices of single-barrier European options.

    Args:
        sigma: Volatility, scalar or one per option
        spot: Current underlying price
        strikes: Strike price(s)
        barriers: Barrier level(s)
        rebates: Rebate(s); paid at expiry if an "in" option never knocks in,
            at the hit if an "out" option knocks out
        maturities: Time(s) to expiration in years
        rate: Continuously compounded risk-free rate(s)
        dividend_yield: Continuous dividend or foreign yield
        barrier_types: Barrier type code(s), default down-and-out call

    Returns:
        Array of barrier option prices

    Raises:
        InvalidInputError: On unknown types, mismatched lengths, or a spot
            already beyond the barrier
    """
    types = parse_barrier_types(barrier_types)
    type_index = np.arange(len(types)) if len(types) > 1 else 0
    try:
        arrays = np.broadcast_arrays(sigma, strikes, barriers, rebates, maturities, rate, type_index)
    except ValueError as exc:
        raise InvalidInputError("length_mismatch", str(exc)) from None
    sigma, strikes, barriers, rebates, maturities, rate, type_index = (
        np.atleast_1d(np.asarray(a, dtype=float)) for a in arrays
    )
    types = types[type_index.astype(int)]

    is_down = np.array([t.is_down for t in types])
    breached = np.where(is_down, spot <= barriers, spot >= barriers)
    if np.any(breached):
        raise InvalidInputError(
            "barrier_breached",
            f"Spot {spot} is already at or beyond the barrier for {int(np.sum(breached))} option(s)"
        )

    formulas = [BARRIER_FORMULAS[t] for t in types]
    phi = np.array([f.phi for f in formulas], dtype=float)
    eta = np.array([f.eta for f in formulas], dtype=float)
    coefficients = np.array([
        f.strike_above_barrier if k > h else f.strike_at_or_below_barrier
        for f, k, h in zip(formulas, strikes, barriers)
    ], dtype=float)

    blocks = _building_blocks(phi, eta, sigma, spot, strikes, barriers, rebates, maturities, rate, dividend_yield)
    return np.einsum("ij,ji->i", coefficients, blocks)


def barrier_vega(sigma, spot, strikes, barriers, rebates, maturities, rate,
                 dividend_yield: float = 0.0, barrier_types=BarrierType.DOWN_OUT_CALL) -> np.ndarray:
    """Vega by forward finite difference with dSigma = 1e-4."""
    d_sigma = 1e-4
    up = barrier_price(np.asarray(sigma, dtype=float) + d_sigma, spot, strikes, barriers, rebates,
                       maturities, rate, dividend_yield, barrier_types)
    base = barrier_price(sigma, spot, strikes, barriers, rebates, maturities, rate, dividend_yield, barrier_types)
    return (up - base) / d_sigma


def barrier_sum_squared_errors(sigma, target_prices, spot, strikes, barriers, rebates, maturities, rate,
                               dividend_yield: float = 0.0, barrier_types=BarrierType.DOWN_OUT_CALL) -> float:
    """Sum of squared differences between model and target barrier prices."""
    model = barrier_price(sigma, spot, strikes, barriers, rebates, maturities, rate, dividend_yield, barrier_types)
    return float(np.sum((model - np.asarray(target_prices, dtype=float)) ** 2))


def barrier_implied_vol(
    target_prices: ArrayLike,
    spot: float,
    strikes: ArrayLike,
    barriers: ArrayLike,
    rebates: ArrayLike,
    maturities: ArrayLike,
    rate: ArrayLike,
    dividend_yield: float = 0.0,
    barrier_types=BarrierType.DOWN_OUT_CALL,
    calibrate_all: bool = True,
    initial_guess: float = 0.25
) -> np.ndarray:
    """
    Implied volatility for barrier options by Nelder-Mead on squared pricing error.

    Args:
        target_prices: Observed barrier option prices
        calibrate_all: Fit one volatility across all options (default) or one per option
        initial_guess: Starting volatility

    Returns:
        Array of implied volatilities, one per option
    """
    options = {"xatol": 1e-6, "fatol": 1e-6, "maxfev": 10000}
    types = parse_barrier_types(barrier_types)
    targets, strikes, barriers, rebates, maturities, rate = (
        np.atleast_1d(np.asarray(a, dtype=float)) for a in np.broadcast_arrays(
            target_prices, strikes, barriers, rebates, maturities, rate
        )
    )
    if len(types) == 1:
        types = np.repeat(types, len(targets))

    if calibrate_all:
        result = minimize(
            lambda x: barrier_sum_squared_errors(x[0], targets, spot, strikes, barriers, rebates,
                                                 maturities, rate, dividend_yield, types),
            x0=np.array([initial_guess]), method="Nelder-Mead", options=options,
        )
        if not result.success:
            logger.warning(f"Barrier implied volatility did not converge: {result.message}")
        return np.full(len(targets), float(result.x[0]))

    vols = np.empty(len(targets))
    for i in range(len(targets)):
        result = minimize(
            lambda x: barrier_sum_squared_errors(x[0], targets[i], spot, strikes[i], barriers[i], rebates[i],
                                                 maturities[i], rate[i], dividend_yield, types[i]),
            x0=np.array([initial_guess]), method="Nelder-Mead", options=options,
        )
        if not result.success:
            logger.warning(f"Barrier implied volatility did not converge for option {i}: {result.message}")
        vols[i] = result.x[0]
    return vols
