"""
hestoncal: Heston stochastic volatility calibration toolkit.

Carr-Madan FFT pricing under the Heston model, a Feller-reparameterized
bounded Nelder-Mead optimizer, and a cross-validated calibration loop,
together with Black-Scholes, barrier and lookback closed-form pricers.
"""

__version__ = "0.1.0"

from .exceptions import HestonCalibrationError, InvalidInputError, NumericalDegeneracyError
from .pricers import HestonParameters, price_heston
from .calibration import CalibrationSettings, calibrate_heston

__all__ = [
    'HestonCalibrationError',
    'InvalidInputError',
    'NumericalDegeneracyError',
    'HestonParameters',
    'price_heston',
    'CalibrationSettings',
    'calibrate_heston',
]
