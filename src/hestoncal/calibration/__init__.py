"""
Heston model calibration.

Market quotes, the bounded local optimizer and the cross-validated
calibration loop built on top of the Carr-Madan pricer.
"""

from .quotes import MarketQuoteSet, Split, load_quotes_csv, train_test_split
from .objective import (
    BoundedSimplexTransform,
    ConstrainedLocalOptimizer,
    LocalOptimizationResult,
    OptimizerConfig,
    ParameterBounds,
    WeightingScheme,
    compute_weights,
    weighted_squared_error,
)
from .engine import (
    CalibrationPhase,
    CalibrationResult,
    CalibrationSettings,
    CalibrationState,
    CrossValidatedCalibrator,
    CrossValidationConfig,
    calibrate_heston,
    load_calibration_settings,
)

__all__ = [
    'MarketQuoteSet',
    'Split',
    'load_quotes_csv',
    'train_test_split',
    'BoundedSimplexTransform',
    'ConstrainedLocalOptimizer',
    'LocalOptimizationResult',
    'OptimizerConfig',
    'ParameterBounds',
    'WeightingScheme',
    'compute_weights',
    'weighted_squared_error',
    'CalibrationPhase',
    'CalibrationResult',
    'CalibrationSettings',
    'CalibrationState',
    'CrossValidatedCalibrator',
    'CrossValidationConfig',
    'calibrate_heston',
    'load_calibration_settings',
]
