"""Shared helpers: configuration, logging, timing, file IO and error metrics."""

from .config import get_nested_value, load_config
from .logging_utils import LoggerMixin, log_execution_time, setup_logging
from .math_helpers import (
    check_finite,
    days_to_years,
    interpolate_rates,
    put_call_parity_check,
    rmse,
    rmse_spread_adjusted,
)
from .timers import Timer
