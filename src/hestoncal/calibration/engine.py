"""
Cross-validated Heston calibration.

The calibrator holds out a random test subset of the quotes, then repeatedly
runs short bursts of the local optimizer on the training subset. A burst's
candidate replaces the current best only if it strictly lowers the
spread-adjusted RMSE on the held-out quotes; the first burst that does not
ends the calibration.
"""

import numpy as np
import pandas as pd
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union
import logging

from ..exceptions import InvalidInputError
from ..pricers.fourier_grid import FourierGridConfig, build_fourier_grid
from ..pricers.heston_charfn import HestonParameters
from ..pricers.heston_fft import HestonFFTPricer
from ..utils.config import load_config
from ..utils.logging_utils import LoggerMixin, log_execution_time
from ..utils.math_helpers import rmse, rmse_spread_adjusted
from .objective import (
    ConstrainedLocalOptimizer,
    OptimizerConfig,
    WeightingScheme,
    compute_weights,
)
from .quotes import MarketQuoteSet, Split, train_test_split

logger = logging.getLogger(__name__)


class CalibrationPhase(Enum):
    """States of the cross-validation loop."""
    INITIALIZING = "initializing"
    OPTIMIZING = "optimizing"
    EVALUATING = "evaluating"
    IMPROVED = "improved"
    CONVERGED = "converged"


@dataclass(frozen=True)
class CrossValidationConfig:
    """Settings for the train/test loop."""

    test_fraction: float = 0.25
    max_bursts: int = 10000       # Hard ceiling on optimizer bursts
    seed: Optional[int] = None    # Split seed; None draws a fresh split every run

    def __post_init__(self):
        if not 0 < self.test_fraction < 1:
            raise InvalidInputError("test_fraction", f"test_fraction must be in (0, 1), got {self.test_fraction}")
        if self.max_bursts < 1:
            raise InvalidInputError("max_bursts", f"max_bursts must be positive, got {self.max_bursts}")

    @classmethod
    def from_dict(cls, config: Optional[Dict[str, Any]] = None) -> "CrossValidationConfig":
        config = config or {}
        seed = config.get("seed")
        return cls(
            test_fraction=float(config.get("test_fraction", 0.25)),
            max_bursts=int(config.get("max_bursts", 10000)),
            seed=None if seed is None else int(seed),
        )


@dataclass(frozen=True)
class CalibrationSettings:
    """Everything a calibration run is configured with."""
    grid: FourierGridConfig = field(default_factory=FourierGridConfig)
    optimizer: OptimizerConfig = field(default_factory=OptimizerConfig)
    cross_validation: CrossValidationConfig = field(default_factory=CrossValidationConfig)
    initial_guess: HestonParameters = field(default_factory=HestonParameters.default_initial_guess)

    @classmethod
    def from_dict(cls, config: Optional[Dict[str, Any]] = None) -> "CalibrationSettings":
        """
        Build settings from a nested dictionary with optional sections
        `grid`, `optimizer`, `cross_validation` and `initial_guess`.
        """
        config = config or {}
        guess = config.get("initial_guess")
        return cls(
            grid=FourierGridConfig.from_dict(config.get("grid")),
            optimizer=OptimizerConfig.from_dict(config.get("optimizer")),
            cross_validation=CrossValidationConfig.from_dict(config.get("cross_validation")),
            initial_guess=(HestonParameters.from_dict(guess).validate() if guess
                           else HestonParameters.default_initial_guess()),
        )


def load_calibration_settings(path: Union[str, Path]) -> CalibrationSettings:
    """Read CalibrationSettings from a YAML file."""
    return CalibrationSettings.from_dict(load_config(path))


@dataclass
class BurstRecord:
    """Test-set errors of one optimizer burst."""
    burst: int
    rmse: float
    rmse_adjusted: float
    accepted: bool


@dataclass
class CalibrationState:
    """
    Mutable state of one calibration run.

    Only `accept` changes the current best, and it refuses candidates that
    do not strictly lower the adjusted RMSE.
    """
    params: HestonParameters
    rmse: float = np.inf
    rmse_adjusted: float = np.inf
    phase: CalibrationPhase = CalibrationPhase.INITIALIZING
    n_bursts: int = 0
    n_accepted: int = 0

    def improves(self, rmse_adjusted: float) -> bool:
        # NaN never improves
        return bool(rmse_adjusted < self.rmse_adjusted)

    def accept(self, params: HestonParameters, rmse_value: float, rmse_adjusted: float) -> None:
        if not self.improves(rmse_adjusted):
            raise ValueError(
                f"Refusing candidate with adjusted RMSE {rmse_adjusted} >= current best {self.rmse_adjusted}"
            )
        self.params = params
        self.rmse = rmse_value
        self.rmse_adjusted = rmse_adjusted
        self.n_accepted += 1
        self.phase = CalibrationPhase.IMPROVED


@dataclass
class CalibrationResult:
    """
    Calibrated parameters and their out-of-sample errors.

    `stalled` is set when no burst ever beat the initial guess, in which case
    `params` is the initial guess and the errors are those of the initial
    guess on the test set. `hit_burst_ceiling` is set when the loop was cut
    off by the burst limit rather than by a failed improvement.
    """
    params: HestonParameters
    rmse: float
    rmse_adjusted: float
    n_bursts: int
    stalled: bool
    hit_burst_ceiling: bool
    split: Split
    history: List[BurstRecord] = field(default_factory=list)
    in_sample_report: Optional[pd.DataFrame] = None
    out_of_sample_report: Optional[pd.DataFrame] = None

    def as_public_tuple(self) -> Tuple[float, float, float, float, float]:
        """Calibrated parameters as (kappa, eta, theta, rho, v0)."""
        return self.params.as_public_tuple()

    def history_frame(self) -> pd.DataFrame:
        """Burst history as a DataFrame."""
        return pd.DataFrame(
            [vars(record) for record in self.history],
            columns=["burst", "rmse", "rmse_adjusted", "accepted"],
        )


class CrossValidatedCalibrator(LoggerMixin):
    """
    Greedy hill-climb over short local-optimizer bursts, validated on a fixed
    held-out test set.
    """

    def __init__(
        self,
        settings: Optional[CalibrationSettings] = None,
        pricer: Optional[HestonFFTPricer] = None,
        optimizer: Optional[ConstrainedLocalOptimizer] = None
    ):
        self.settings = settings or CalibrationSettings()
        self.pricer = pricer or HestonFFTPricer(grid=build_fourier_grid(self.settings.grid))
        self.optimizer = optimizer or ConstrainedLocalOptimizer(self.pricer, self.settings.optimizer)

    def evaluate(self, params: HestonParameters, quotes: MarketQuoteSet) -> Tuple[float, float]:
        """Unweighted and spread-adjusted RMSE of `params` on `quotes`."""
        prices = self._price(params, quotes)
        return rmse(prices, quotes.mid), rmse_spread_adjusted(prices, quotes.mid, quotes.bid, quotes.ask)

    def calibrate(
        self,
        quotes: MarketQuoteSet,
        initial_guess: Optional[HestonParameters] = None,
        weights: Optional[np.ndarray] = None,
        split: Optional[Split] = None,
        diagnostics: bool = False
    ) -> CalibrationResult:
        """
        Run the cross-validation loop.

        Args:
            quotes: Full quote set
            initial_guess: Starting parameters; the configured guess if omitted
            weights: Per-option training weights for the full quote set;
                equal weights if omitted
            split: Fixed train/test split; a random one is drawn if omitted
            diagnostics: Attach (and log) in-sample and out-of-sample
                price tables to the result

        Returns:
            CalibrationResult
        """
        cv = self.settings.cross_validation
        initial_guess = (initial_guess or self.settings.initial_guess).validate()
        weights = np.ones(len(quotes)) if weights is None else np.asarray(weights, dtype=float)
        if len(weights) != len(quotes):
            raise InvalidInputError("length_mismatch", f"{len(weights)} weights for {len(quotes)} quotes")

        state = CalibrationState(params=initial_guess)
        split = split or train_test_split(len(quotes), cv.test_fraction, seed=cv.seed)
        _check_split(split, len(quotes))
        train, test = quotes.subset(split.train), quotes.subset(split.test)
        train_weights = weights[split.train]

        self.logger.info(f"Calibrating on {len(train)} training / {len(test)} test quotes from {initial_guess}")

        history: List[BurstRecord] = []
        hit_ceiling = False

        while True:
            if state.n_bursts >= cv.max_bursts:
                hit_ceiling = True
                self.logger.warning(f"Burst ceiling of {cv.max_bursts} reached; stopping with current best")
                break

            state.phase = CalibrationPhase.OPTIMIZING
            candidate = self.optimizer.optimize(state.params, train, train_weights, early_stopping=True).params
            state.n_bursts += 1

            state.phase = CalibrationPhase.EVALUATING
            candidate_rmse, candidate_adjusted = self.evaluate(candidate, test)
            accepted = state.improves(candidate_adjusted)
            history.append(BurstRecord(state.n_bursts, candidate_rmse, candidate_adjusted, accepted))

            if not accepted:
                self.logger.debug(
                    f"Burst {state.n_bursts}: adjusted RMSE {candidate_adjusted:.6f} "
                    f"does not improve on {state.rmse_adjusted:.6f}"
                )
                break

            state.accept(candidate, candidate_rmse, candidate_adjusted)
            self.logger.info(
                f"Burst {state.n_bursts}: test RMSE {candidate_rmse:.6f}, adjusted {candidate_adjusted:.6f}"
            )

        state.phase = CalibrationPhase.CONVERGED
        stalled = state.n_accepted == 0
        if stalled:
            state.rmse, state.rmse_adjusted = self.evaluate(initial_guess, test)
            self.logger.warning("First burst did not improve on the initial guess; returning it unchanged")

        self.logger.info(
            f"Calibration finished after {state.n_bursts} burst(s): {state.params}, "
            f"test RMSE {state.rmse:.6f}, adjusted {state.rmse_adjusted:.6f}"
        )

        result = CalibrationResult(
            params=state.params,
            rmse=state.rmse,
            rmse_adjusted=state.rmse_adjusted,
            n_bursts=state.n_bursts,
            stalled=stalled,
            hit_burst_ceiling=hit_ceiling,
            split=split,
            history=history,
        )
        if diagnostics:
            result.in_sample_report = self._report(state.params, train)
            result.out_of_sample_report = self._report(state.params, test)
            self.logger.info(f"In-sample results:\n{result.in_sample_report.to_string()}")
            self.logger.info(f"Out-of-sample results:\n{result.out_of_sample_report.to_string()}")
        return result

    def _price(self, params: HestonParameters, quotes: MarketQuoteSet) -> np.ndarray:
        return self.pricer.price(params, quotes.strikes, quotes.maturities, quotes.option_types,
                                 quotes.spot, quotes.rates, quotes.dividend_yield)

    def _report(self, params: HestonParameters, quotes: MarketQuoteSet) -> pd.DataFrame:
        report = quotes.to_dataframe()
        report["model"] = self._price(params, quotes)
        report["inside_spread"] = (report["model"] >= report["bid"]) & (report["model"] <= report["ask"])
        return report


def _check_split(split: Split, n: int) -> None:
    train, test = np.asarray(split.train, dtype=int), np.asarray(split.test, dtype=int)
    if len(train) == 0 or len(test) == 0:
        raise InvalidInputError("split_empty", "Train and test sets must both be non-empty")
    if np.intersect1d(train, test).size or np.any(np.concatenate([train, test]) >= n):
        raise InvalidInputError("split_invalid", "Split indices must be disjoint and within the quote set")


@log_execution_time
def calibrate_heston(
    spot: float,
    strikes: Sequence[float],
    maturities: Sequence[float],
    option_types: Sequence,
    mid: Sequence[float],
    bid: Sequence[float],
    ask: Sequence[float],
    rates: Sequence[float],
    dividend_yield: float = 0.0,
    weighting: Union[WeightingScheme, str, int] = WeightingScheme.EQUAL,
    diagnostics: bool = False,
    settings: Optional[CalibrationSettings] = None,
    initial_guess: Optional[HestonParameters] = None
) -> CalibrationResult:
    """
    Calibrate the Heston model to option quotes with cross-validation.

    All inputs are validated before any optimization starts.

    Args:
        spot: Spot price
        strikes: Option strikes
        maturities: Times to maturity in years
        option_types: 0/1 or "call"/"put" per option
        mid: Mid prices
        bid: Bid prices
        ask: Ask prices
        rates: Risk-free rate per option (one rate per maturity)
        dividend_yield: Continuous dividend or foreign yield
        weighting: EQUAL, IMPLIED_VOL or BID_ASK (or codes 0/1/2)
        diagnostics: Attach and log in/out-of-sample price tables
        settings: Grid, optimizer and cross-validation settings
        initial_guess: Starting parameters, overriding the settings' guess

    Returns:
        CalibrationResult; `result.as_public_tuple()` gives
        (kappa, eta, theta, rho, v0) and `result.rmse` / `result.rmse_adjusted`
        the out-of-sample errors
    """
    quotes = MarketQuoteSet(
        spot=spot,
        strikes=strikes,
        maturities=maturities,
        option_types=option_types,
        mid=mid,
        bid=bid,
        ask=ask,
        rates=rates,
        dividend_yield=dividend_yield,
    )
    weights = compute_weights(quotes, weighting)
    calibrator = CrossValidatedCalibrator(settings=settings)
    return calibrator.calibrate(quotes, initial_guess=initial_guess, weights=weights, diagnostics=diagnostics)
