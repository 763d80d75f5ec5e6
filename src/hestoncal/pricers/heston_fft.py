import numpy as np
from scipy.interpolate import CubicSpline
from typing import Optional, Sequence, Union
import logging

from ..exceptions import InvalidInputError
from ..utils.math_helpers import check_finite
from .fourier_grid import FourierGrid, FourierGridConfig, build_fourier_grid
from .heston_charfn import (
    CharFunctionPrecompute,
    HestonParameters,
    heston_charfn,
    precompute_charfn_terms,
)
from .option_types import OptionType, parse_option_types

logger = logging.getLogger(__name__)


def carr_madan_call_grid(
    grid: FourierGrid,
    pre: CharFunctionPrecompute,
    t: float,
    r: float,
    q: float
) -> np.ndarray:
    """
    Call prices on the grid's real-strike axis for one maturity.

    The damped call transform rho_j = e^{-rt} phi(u_j) / D_j is weighted with the
    precomputed FFT multiplier, transformed, and undamped with e^{-alpha k} / pi.

    Args:
        grid: Precomputed Fourier grid
        pre: Characteristic function precompute built on grid.u
        t: Maturity in years
        r: Risk-free rate
        q: Dividend yield

    Returns:
        Array of N call prices, aligned with grid.real_strikes
    """
    with np.errstate(all="ignore"):
        rho = np.exp(-r * t) * heston_charfn(grid.u, t, r, q, pre) / grid.denominator
        transformed = np.real(np.fft.fft(rho * grid.fft_multiplier, grid.n_points))
        return np.exp(-grid.alpha * grid.log_strikes) * transformed / np.pi


def carr_madan_prices(
    strikes: np.ndarray,
    option_types: np.ndarray,
    t: float,
    spot: float,
    r: float,
    q: float,
    grid: FourierGrid,
    pre: CharFunctionPrecompute
) -> np.ndarray:
    """
    Price options sharing one maturity, rate and yield with a single FFT.

    Call prices are cubic-spline interpolated from the grid; puts follow from
    put-call parity. Strikes outside the grid's strike axis are clamped to the
    nearest grid boundary before interpolation.

    Args:
        strikes: Strikes of the options in this maturity group
        option_types: 0 for call, 1 for put
        t: Common maturity in years
        spot: Spot price
        r: Common risk-free rate
        q: Dividend yield
        grid: Precomputed Fourier grid
        pre: Characteristic function precompute

    Returns:
        Option prices; NaN where the characteristic function degenerated
    """
    strikes = np.asarray(strikes, dtype=float)
    option_types = np.asarray(option_types, dtype=int)

    call_grid = carr_madan_call_grid(grid, pre, t, r, q)
    if not np.all(np.isfinite(call_grid)):
        logger.debug(f"Non-finite FFT call prices for T={t:.4f}")
        return np.full(strikes.shape, np.nan)

    lo, hi = grid.real_strikes[0], grid.real_strikes[-1]
    clamped = np.clip(strikes, lo, hi)
    if np.any(clamped != strikes):
        logger.warning(f"{int(np.sum(clamped != strikes))} strike(s) outside FFT strike range "
                       f"[{lo:.4g}, {hi:.4g}] clamped to the grid boundary")

    prices = CubicSpline(grid.real_strikes, call_grid)(clamped)

    puts = option_types == OptionType.PUT
    prices[puts] = prices[puts] + strikes[puts] * np.exp(-r * t) - spot * np.exp(-q * t)
    return prices


class HestonFFTPricer:
    """
    Carr-Madan FFT pricer for batches of European options.

    Options are grouped by distinct maturity and each group is priced with one
    FFT. The rate of the first option seen in a group is used for the whole
    group, so callers must guarantee that a maturity implies a unique rate.
    """

    def __init__(self, grid: Optional[FourierGrid] = None, config: Optional[FourierGridConfig] = None):
        self.grid = grid if grid is not None else build_fourier_grid(config)

    def price(
        self,
        params: HestonParameters,
        strikes: np.ndarray,
        maturities: np.ndarray,
        option_types: np.ndarray,
        spot: float,
        rates: np.ndarray,
        dividend_yield: float = 0.0
    ) -> np.ndarray:
        """
        Price a batch of options. Inputs are assumed validated (see price_heston).

        Returns:
            One price per option, in input order
        """
        strikes = np.asarray(strikes, dtype=float)
        maturities = np.asarray(maturities, dtype=float)
        option_types = np.asarray(option_types, dtype=int)
        rates = np.asarray(rates, dtype=float)

        pre = precompute_charfn_terms(params, self.grid.u, spot)
        results = np.zeros(len(strikes))

        for t in np.unique(maturities):
            members = np.flatnonzero(maturities == t)
            r = rates[members[0]]
            if np.any(rates[members] != r):
                logger.warning(f"Several rates quoted for maturity T={t:.4f}; using first-seen rate {r:.6f}")
            results[members] = carr_madan_prices(
                strikes[members], option_types[members], t, spot, r, dividend_yield, self.grid, pre
            )

        return results


def price_heston(
    params: HestonParameters,
    strikes: Union[float, Sequence[float], np.ndarray],
    maturities: Union[float, Sequence[float], np.ndarray],
    option_types: Union[int, str, Sequence, np.ndarray],
    spot: float,
    rates: Union[float, Sequence[float], np.ndarray],
    dividend_yield: float = 0.0,
    grid: Optional[FourierGrid] = None
) -> np.ndarray:
    """
    Validated public entry point for Heston prices.

    Scalars are broadcast against the longest input once, here.

    Args:
        params: Heston parameters
        strikes: Strike(s)
        maturities: Maturity/maturities in years
        option_types: 0/1 or "call"/"put" code(s)
        spot: Spot price
        rates: Risk-free rate(s)
        dividend_yield: Continuous dividend or foreign yield
        grid: Optional precomputed Fourier grid; a default grid is built if omitted

    Returns:
        Array of option prices

    Raises:
        InvalidInputError: On mismatched lengths, non-finite or non-positive
            strikes, maturities or spot, unknown option types or invalid parameters
        NumericalDegeneracyError: If the parameters produce non-finite prices
    """
    params.validate()
    types = parse_option_types(option_types)
    strikes, maturities, types, rates = broadcast_option_inputs(strikes, maturities, types, rates)

    if not np.isfinite(spot) or spot <= 0:
        raise InvalidInputError("spot_positive", f"Spot must be positive, got {spot}")
    if not np.isfinite(dividend_yield):
        raise InvalidInputError("dividend_yield", f"Dividend yield must be finite, got {dividend_yield}")
    for name, values in (("strikes", strikes), ("maturities", maturities), ("rates", rates)):
        if not np.all(np.isfinite(values)):
            raise InvalidInputError(f"{name}_finite", f"All {name} values must be finite")
    if np.any(strikes <= 0):
        raise InvalidInputError("strike_positive", "All strikes must be positive")
    if np.any(maturities <= 0):
        raise InvalidInputError("maturity_positive", "All maturities must be positive")

    prices = HestonFFTPricer(grid=grid).price(params, strikes, maturities, types, spot, rates, dividend_yield)
    return check_finite(prices, f"Heston prices for {params}")


def broadcast_option_inputs(*arrays) -> list:
    """
    Broadcast scalars and 1-D sequences to a common length.

    Raises:
        InvalidInputError: If two non-scalar inputs disagree in length
    """
    arrays = [np.atleast_1d(np.asarray(a)) for a in arrays]
    lengths = {len(a) for a in arrays if len(a) != 1}
    if len(lengths) > 1:
        raise InvalidInputError("length_mismatch", f"Input sequences have different lengths: {sorted(lengths)}")
    n = lengths.pop() if lengths else 1
    return [np.broadcast_to(a, (n,)).astype(a.dtype if a.dtype.kind in "iu" else float) for a in arrays]
