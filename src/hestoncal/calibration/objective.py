import numpy as np
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union
import logging
from scipy.optimize import minimize

from ..exceptions import InvalidInputError
from ..pricers.bs import bs_implied_vol
from ..pricers.heston_charfn import HestonParameters, from_optimizer_vector, to_optimizer_vector
from ..pricers.heston_fft import HestonFFTPricer
from ..utils.logging_utils import LoggerMixin
from ..utils.timers import Timer
from .quotes import MarketQuoteSet

logger = logging.getLogger(__name__)


class WeightingScheme(Enum):
    """Per-option weights of the training objective."""
    EQUAL = "equal"                  # All options weigh the same
    IMPLIED_VOL = "implied_vol"      # 1 / Black-Scholes implied volatility
    BID_ASK = "bid_ask"              # 1 / |ask - bid|

    @classmethod
    def parse(cls, value: Union["WeightingScheme", str, int]) -> "WeightingScheme":
        """Accept an enum member, its name or value, or the legacy integer codes 0, 1, 2."""
        if isinstance(value, cls):
            return value
        if isinstance(value, (int, np.integer)) and not isinstance(value, bool):
            codes = {0: cls.EQUAL, 1: cls.IMPLIED_VOL, 2: cls.BID_ASK}
            if int(value) in codes:
                return codes[int(value)]
        if isinstance(value, str):
            key = value.strip().lower()
            for scheme in cls:
                if key in (scheme.value, scheme.name.lower()):
                    return scheme
        raise InvalidInputError("weighting_scheme", f"Unknown weighting scheme: {value!r}")


@dataclass(frozen=True)
class ParameterBounds:
    """Box bounds in optimizer coordinates (feller, theta, eta, rho, v0)."""
    feller: Tuple[float, float] = (0.0, 20.0)
    theta: Tuple[float, float] = (0.0, 1.0)
    eta: Tuple[float, float] = (0.0, 5.0)
    rho: Tuple[float, float] = (-1.0, 0.0)
    v0: Tuple[float, float] = (0.0, 1.0)

    def __post_init__(self):
        for name in ("feller", "theta", "eta", "rho", "v0"):
            low, high = getattr(self, name)
            if not (np.isfinite(low) and np.isfinite(high) and low < high):
                raise InvalidInputError("parameter_bounds", f"Invalid bounds for {name}: ({low}, {high})")

    @property
    def lower(self) -> np.ndarray:
        return np.array([self.feller[0], self.theta[0], self.eta[0], self.rho[0], self.v0[0]], dtype=float)

    @property
    def upper(self) -> np.ndarray:
        return np.array([self.feller[1], self.theta[1], self.eta[1], self.rho[1], self.v0[1]], dtype=float)

    @classmethod
    def from_dict(cls, bounds: Optional[Dict[str, Any]] = None) -> "ParameterBounds":
        bounds = bounds or {}
        defaults = cls()
        return cls(**{
            name: tuple(float(v) for v in bounds.get(name, getattr(defaults, name)))
            for name in ("feller", "theta", "eta", "rho", "v0")
        })


@dataclass(frozen=True)
class OptimizerConfig:
    """Settings for the bounded Nelder-Mead search."""

    bounds: ParameterBounds = field(default_factory=ParameterBounds)
    xtol: float = 1e-6
    ftol: float = 1e-6
    max_evaluations: int = 10000
    max_iterations: int = 1000
    early_stopping_evaluations: int = 75
    penalty: float = 1e10  # Objective value for parameter sets that fail to price

    def __post_init__(self):
        if self.xtol <= 0 or self.ftol <= 0:
            raise InvalidInputError("optimizer_tolerance", "Tolerances must be positive")
        if self.max_evaluations < 1 or self.max_iterations < 1 or self.early_stopping_evaluations < 1:
            raise InvalidInputError("optimizer_budget", "Evaluation and iteration budgets must be positive")

    @classmethod
    def from_dict(cls, config: Optional[Dict[str, Any]] = None) -> "OptimizerConfig":
        config = config or {}
        defaults = cls()
        return cls(
            bounds=ParameterBounds.from_dict(config.get("bounds")),
            xtol=float(config.get("xtol", defaults.xtol)),
            ftol=float(config.get("ftol", defaults.ftol)),
            max_evaluations=int(config.get("max_evaluations", defaults.max_evaluations)),
            max_iterations=int(config.get("max_iterations", defaults.max_iterations)),
            early_stopping_evaluations=int(config.get("early_stopping_evaluations",
                                                      defaults.early_stopping_evaluations)),
            penalty=float(config.get("penalty", defaults.penalty)),
        )


@dataclass
class LocalOptimizationResult:
    """Outcome of one local optimizer run."""
    params: HestonParameters
    objective_value: float
    n_evaluations: int
    n_iterations: int
    converged: bool
    message: str = ""


def compute_weights(quotes: MarketQuoteSet, scheme: Union[WeightingScheme, str, int] = WeightingScheme.EQUAL) -> np.ndarray:
    """
    Per-option weights for the training objective.

    Args:
        quotes: Market quotes
        scheme: Weighting scheme or its code

    Returns:
        Array of strictly positive, finite weights

    Raises:
        InvalidInputError: If a zero spread (bid-ask weighting) or a
            non-positive/non-finite implied volatility makes a weight undefined
    """
    scheme = WeightingScheme.parse(scheme)

    if scheme is WeightingScheme.EQUAL:
        return np.ones(len(quotes))

    if scheme is WeightingScheme.BID_ASK:
        spreads = np.abs(quotes.spreads)
        if np.any(spreads == 0):
            raise InvalidInputError(
                "zero_spread", f"{int(np.sum(spreads == 0))} quote(s) have zero bid-ask spread"
            )
        return 1.0 / spreads

    vols = bs_implied_vol(quotes.mid, quotes.spot, quotes.strikes, quotes.rates, quotes.dividend_yield,
                          quotes.maturities, quotes.option_types, calibrate_all=False)
    bad = ~np.isfinite(vols) | (vols <= 0)
    if np.any(bad):
        raise InvalidInputError(
            "implied_vol_weight", f"{int(np.sum(bad))} quote(s) have no positive implied volatility"
        )
    return 1.0 / vols


class BoundedSimplexTransform:
    """
    Sine transform mapping unconstrained simplex coordinates into a box.

    x = lower + (upper - lower) * (sin(z) + 1) / 2
    """

    def __init__(self, lower: np.ndarray, upper: np.ndarray):
        self.lower = np.asarray(lower, dtype=float)
        self.upper = np.asarray(upper, dtype=float)

    def to_bounded(self, z: np.ndarray) -> np.ndarray:
        return self.lower + (self.upper - self.lower) * (np.sin(z) + 1) / 2

    def to_unconstrained(self, x: np.ndarray) -> np.ndarray:
        scaled = 2 * (np.asarray(x, dtype=float) - self.lower) / (self.upper - self.lower) - 1
        return 2 * np.pi + np.arcsin(np.clip(scaled, -1.0, 1.0))


def weighted_squared_error(
    params: HestonParameters,
    quotes: MarketQuoteSet,
    weights: np.ndarray,
    pricer: HestonFFTPricer
) -> float:
    """Sum over options of w_i * (model_i - mid_i)^2; NaN if any price is degenerate."""
    model = pricer.price(params, quotes.strikes, quotes.maturities, quotes.option_types,
                         quotes.spot, quotes.rates, quotes.dividend_yield)
    return float(np.sum(weights * (model - quotes.mid) ** 2))


class ConstrainedLocalOptimizer(LoggerMixin):
    """
    Derivative-free local search over the box-constrained, Feller-reparameterized space.

    The search runs on (feller, theta, eta, rho, v0) with kappa recovered as
    (feller + eta^2) / (2 theta), so the surrogate 2*kappa*theta - eta^2
    stays inside its bounds without an explicit constraint.
    """

    def __init__(self, pricer: Optional[HestonFFTPricer] = None, config: Optional[OptimizerConfig] = None):
        self.pricer = pricer or HestonFFTPricer()
        self.config = config or OptimizerConfig()
        self.transform = BoundedSimplexTransform(self.config.bounds.lower, self.config.bounds.upper)

    def optimize(
        self,
        initial: HestonParameters,
        quotes: MarketQuoteSet,
        weights: Optional[np.ndarray] = None,
        early_stopping: bool = False
    ) -> LocalOptimizationResult:
        """
        Minimize the weighted squared pricing error starting from `initial`.

        Args:
            initial: Starting parameters
            quotes: Quotes to fit (usually the training subset)
            weights: Per-option weights; equal weights if omitted
            early_stopping: Stop after `early_stopping_evaluations` objective
                evaluations instead of running to convergence

        Returns:
            LocalOptimizationResult; exhausting the budget is reported through
            `converged=False`, never raised
        """
        weights = np.ones(len(quotes)) if weights is None else np.array(weights, dtype=float)
        if len(weights) != len(quotes):
            raise InvalidInputError("length_mismatch", f"{len(weights)} weights for {len(quotes)} quotes")

        x0 = to_optimizer_vector(initial)
        lower, upper = self.config.bounds.lower, self.config.bounds.upper
        if np.any(x0 < lower) or np.any(x0 > upper):
            self.logger.warning(f"Initial guess {initial} lies outside the optimizer bounds; clipping")
            x0 = np.clip(x0, lower, upper)

        penalty = self.config.penalty

        def objective(z: np.ndarray) -> float:
            params = from_optimizer_vector(self.transform.to_bounded(z))
            value = weighted_squared_error(params, quotes, weights, self.pricer)
            return value if np.isfinite(value) else penalty

        max_evaluations = self.config.early_stopping_evaluations if early_stopping else self.config.max_evaluations

        with Timer("local optimization burst" if early_stopping else "local optimization", logging.DEBUG):
            result = minimize(
                objective,
                x0=self.transform.to_unconstrained(x0),
                method="Nelder-Mead",
                options={
                    "xatol": self.config.xtol,
                    "fatol": self.config.ftol,
                    "maxfev": max_evaluations,
                    "maxiter": self.config.max_iterations,
                },
            )

        params = from_optimizer_vector(self.transform.to_bounded(result.x))
        if not result.success:
            log = self.logger.debug if early_stopping else self.logger.warning
            log(f"Local optimizer stopped without convergence after {result.nfev} evaluations: {result.message}")

        return LocalOptimizationResult(
            params=params,
            objective_value=float(result.fun),
            n_evaluations=int(result.nfev),
            n_iterations=int(result.nit),
            converged=bool(result.success),
            message=str(result.message),
        )
