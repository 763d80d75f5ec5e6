"""
Option pricing engines.

This package contains the Carr-Madan FFT pricer for the Heston stochastic
volatility model together with the closed-form Black-Scholes, barrier and
lookback pricers used for weighting and comparison.
"""

from .option_types import OptionType, parse_option_types
from .fourier_grid import FourierGrid, FourierGridConfig, build_fourier_grid
from .heston_charfn import (
    CharFunctionPrecompute,
    HestonParameters,
    heston_charfn,
    heston_charfn_direct,
    precompute_charfn_terms,
)
from .heston_fft import HestonFFTPricer, carr_madan_prices, price_heston
from .bs import BlackScholesPricer, bs_implied_vol, bs_price, bs_vega
from .barrier import BarrierType, barrier_implied_vol, barrier_price, barrier_vega
from .lookback import lookback_implied_vol, lookback_price, lookback_rho

__all__ = [
    'OptionType',
    'parse_option_types',
    'FourierGrid',
    'FourierGridConfig',
    'build_fourier_grid',
    'CharFunctionPrecompute',
    'HestonParameters',
    'heston_charfn',
    'heston_charfn_direct',
    'precompute_charfn_terms',
    'HestonFFTPricer',
    'carr_madan_prices',
    'price_heston',
    'BlackScholesPricer',
    'bs_implied_vol',
    'bs_price',
    'bs_vega',
    'BarrierType',
    'barrier_implied_vol',
    'barrier_price',
    'barrier_vega',
    'lookback_implied_vol',
    'lookback_price',
    'lookback_rho',
]
