"""
Heston characteristic function with maturity-independent precomputation.

Parameter conventions
---------------------
Public ordering (what callers pass in and get back) is

    (kappa, eta, theta, rho, v0)

with eta the vol-of-vol, theta the long-run variance and v0 the initial
variance. Engine vectors use the internal ordering

    (kappa, theta, eta, rho, v0)

and the optimizer works on

    (feller, theta, eta, rho, v0),  feller = 2 * kappa * theta - eta**2

The named-field HestonParameters container is the only thing that crosses
between the two; `to_internal_vector` / `from_internal_vector` and
`to_optimizer_vector` / `from_optimizer_vector` are the only places where the
slot order is decided.
"""

import numpy as np
from dataclasses import dataclass, asdict
from typing import Dict, Tuple, Union
import logging

from ..exceptions import InvalidInputError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HestonParameters:
    """Heston model parameters, stored by name."""

    kappa: float  # Mean reversion speed
    eta: float    # Vol of vol
    theta: float  # Long-run variance
    rho: float    # Correlation between spot and variance
    v0: float     # Initial variance

    def validate(self) -> "HestonParameters":
        """
        Check the model constraints and raise on the first violation.

        Raises:
            InvalidInputError: If any parameter is non-finite or out of range
        """
        values = asdict(self)
        for name, value in values.items():
            if not np.isfinite(value):
                raise InvalidInputError("parameter_finite", f"{name} must be finite, got {value}")

        for name in ("kappa", "eta", "theta", "v0"):
            if values[name] <= 0:
                raise InvalidInputError(f"{name}_positive", f"{name} must be positive, got {values[name]}")

        if not -1 < self.rho < 1:
            raise InvalidInputError("rho_range", f"rho must be in (-1, 1), got {self.rho}")

        return self

    @property
    def feller_surrogate(self) -> float:
        """2*kappa*theta - eta^2; non-negative when the Feller condition holds."""
        return 2 * self.kappa * self.theta - self.eta**2

    @property
    def satisfies_feller(self) -> bool:
        return self.feller_surrogate >= 0

    def as_public_tuple(self) -> Tuple[float, float, float, float, float]:
        """Public ordering (kappa, eta, theta, rho, v0)."""
        return (self.kappa, self.eta, self.theta, self.rho, self.v0)

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)

    @classmethod
    def from_dict(cls, params: Dict[str, float]) -> "HestonParameters":
        return cls(
            kappa=float(params["kappa"]),
            eta=float(params["eta"]),
            theta=float(params["theta"]),
            rho=float(params["rho"]),
            v0=float(params["v0"]),
        )

    @classmethod
    def from_public_tuple(cls, values) -> "HestonParameters":
        """Inverse of as_public_tuple."""
        kappa, eta, theta, rho, v0 = (float(x) for x in values)
        return cls(kappa=kappa, eta=eta, theta=theta, rho=rho, v0=v0)

    @classmethod
    def default_initial_guess(cls) -> "HestonParameters":
        """Starting point used when the caller does not provide one."""
        return cls(kappa=7.0, eta=0.7, theta=0.7, rho=-0.5, v0=0.18**2)

    def __str__(self) -> str:
        return (f"HestonParameters(kappa={self.kappa:.4f}, eta={self.eta:.4f}, "
                f"theta={self.theta:.4f}, rho={self.rho:.4f}, v0={self.v0:.4f})")


def to_internal_vector(params: HestonParameters) -> np.ndarray:
    """Engine ordering (kappa, theta, eta, rho, v0)."""
    return np.array([params.kappa, params.theta, params.eta, params.rho, params.v0], dtype=float)


def from_internal_vector(x: np.ndarray) -> HestonParameters:
    kappa, theta, eta, rho, v0 = (float(val) for val in x)
    return HestonParameters(kappa=kappa, eta=eta, theta=theta, rho=rho, v0=v0)


def recover_kappa(feller: float, theta: float, eta: float) -> float:
    """Invert feller = 2*kappa*theta - eta^2 for kappa."""
    with np.errstate(divide="ignore", invalid="ignore"):
        return float(np.divide(feller + eta**2, 2 * theta))


def to_optimizer_vector(params: HestonParameters) -> np.ndarray:
    """Optimizer coordinates (feller, theta, eta, rho, v0)."""
    x = to_internal_vector(params)
    x[0] = params.feller_surrogate
    return x


def from_optimizer_vector(x: np.ndarray) -> HestonParameters:
    feller, theta, eta, rho, v0 = (float(val) for val in x)
    return from_internal_vector([recover_kappa(feller, theta, eta), theta, eta, rho, v0])


@dataclass(frozen=True)
class CharFunctionPrecompute:
    """Maturity-independent terms of the characteristic function for one parameter set."""
    x0: float            # log(spot)
    d: np.ndarray
    g: np.ndarray
    param2: np.ndarray   # kappa - rho*eta*u*i - d
    param3: float        # kappa*theta / eta^2
    param4: float        # v0 / eta^2


def precompute_charfn_terms(
    params: HestonParameters,
    u: np.ndarray,
    spot: float
) -> CharFunctionPrecompute:
    """
    Compute the terms of the characteristic function that do not depend on maturity.

    Args:
        params: Heston parameters
        u: Complex frequency nodes (usually FourierGrid.u)
        spot: Current spot price

    Returns:
        CharFunctionPrecompute reused across all maturities of one pricing call
    """
    u = np.asarray(u, dtype=complex)
    kappa, eta, theta, rho, v0 = params.kappa, params.eta, params.theta, params.rho, params.v0

    with np.errstate(all="ignore"):
        param1 = kappa - rho * eta * u * 1j
        d = np.sqrt(param1**2 - eta**2 * (-1j * u - u**2))
        param2 = param1 - d
        g = param2 / (param1 + d)
        param3 = np.divide(kappa * theta, eta**2)
        param4 = np.divide(v0, eta**2)

    if not np.all(np.isfinite(d)):
        logger.debug(f"Non-finite discriminant for {params}")

    return CharFunctionPrecompute(
        x0=float(np.log(spot)),
        d=d,
        g=g,
        param2=param2,
        param3=param3,
        param4=param4,
    )


def heston_charfn(
    u: np.ndarray,
    t: float,
    r: float,
    q: float,
    pre: CharFunctionPrecompute
) -> np.ndarray:
    """
    Characteristic function of log(S_t) under the Heston model.

    Uses the "little trap" form exp(A + B + C) with
        A = iu(x0 + (r - q)t)
        B = kappa*theta/eta^2 * (param2*t - 2 log((1 - g e^{-dt}) / (1 - g)))
        C = v0/eta^2 * param2 * (1 - e^{-dt}) / (1 - g e^{-dt})

    Args:
        u: Frequency nodes the precompute was built on
        t: Maturity in years
        r: Risk-free rate
        q: Dividend yield
        pre: Output of precompute_charfn_terms for the same u

    Returns:
        Complex array of characteristic function values; degenerate
        parameter sets produce NaN entries rather than raising.
    """
    u = np.asarray(u, dtype=complex)
    with np.errstate(all="ignore"):
        p1 = np.exp(-pre.d * t)
        p2 = 1 - pre.g * p1

        A = 1j * u * (pre.x0 + (r - q) * t)
        B = pre.param3 * (pre.param2 * t - 2 * np.log(p2 / (1 - pre.g)))
        C = pre.param4 * pre.param2 * (1 - p1) / p2
        return np.exp(A + B + C)


def heston_charfn_direct(
    u: Union[complex, np.ndarray],
    t: float,
    r: float,
    q: float,
    spot: float,
    params: HestonParameters
) -> np.ndarray:
    """Characteristic function without a shared precompute, for one-off evaluations."""
    u = np.atleast_1d(np.asarray(u, dtype=complex))
    return heston_charfn(u, t, r, q, precompute_charfn_terms(params, u, spot))
