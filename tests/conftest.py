import sys
import os

import numpy as np
import pytest

# Add the src directory to the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from hestoncal.calibration.quotes import MarketQuoteSet
from hestoncal.pricers.fourier_grid import FourierGridConfig, build_fourier_grid
from hestoncal.pricers.heston_charfn import HestonParameters
from hestoncal.pricers.heston_fft import HestonFFTPricer


@pytest.fixture(scope="session")
def default_grid():
    """Production grid: N=4096, alpha=1.5, spacing 0.25, Simpson weights."""
    return build_fourier_grid()


@pytest.fixture(scope="session")
def small_grid():
    """Coarser grid that keeps calibration tests fast."""
    return build_fourier_grid(FourierGridConfig(n_points=1024))


@pytest.fixture
def true_params():
    return HestonParameters(kappa=2.0, eta=0.3, theta=0.04, rho=-0.7, v0=0.04)


@pytest.fixture
def synthetic_quotes(small_grid, true_params):
    """Out-of-the-money options priced with known Heston parameters, with a 2% spread."""
    spot = 100.0
    strikes = np.tile(np.arange(80.0, 125.0, 5.0), 3)
    maturities = np.repeat([0.25, 0.5, 1.0], 9)
    option_types = np.where(strikes < spot, 1, 0)
    rates = np.full(len(strikes), 0.03)

    mid = HestonFFTPricer(grid=small_grid).price(true_params, strikes, maturities, option_types, spot, rates)
    half_spread = np.maximum(0.05, 0.02 * mid) / 2

    return MarketQuoteSet(
        spot=spot,
        strikes=strikes,
        maturities=maturities,
        option_types=option_types,
        mid=mid,
        bid=mid - half_spread,
        ask=mid + half_spread,
        rates=rates,
    )
