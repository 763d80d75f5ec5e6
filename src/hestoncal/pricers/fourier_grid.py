import numpy as np
from dataclasses import dataclass
from typing import Any, Dict, Optional
import logging

from ..exceptions import InvalidInputError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FourierGridConfig:
    """Settings for the Carr-Madan FFT grid."""

    n_points: int = 4096           # FFT length, power of 2 recommended
    alpha: float = 1.5             # Damping factor
    grid_spacing: float = 0.25     # Spacing of the integration nodes
    use_simpson_weights: bool = True

    def __post_init__(self):
        if int(self.n_points) != self.n_points or self.n_points < 2:
            raise InvalidInputError("fft_length", f"n_points must be an integer >= 2, got {self.n_points}")
        if self.alpha <= 0:
            raise InvalidInputError("damping_factor", f"alpha must be positive, got {self.alpha}")
        if self.grid_spacing <= 0:
            raise InvalidInputError("grid_spacing", f"grid_spacing must be positive, got {self.grid_spacing}")
        if int(self.n_points) & (int(self.n_points) - 1):
            logger.warning(f"FFT length {self.n_points} is not a power of 2; FFT will be slower")

    @classmethod
    def from_dict(cls, config: Optional[Dict[str, Any]] = None) -> "FourierGridConfig":
        """Build from a (possibly partial) dictionary, e.g. the `grid` section of a YAML file."""
        config = config or {}
        defaults = cls()
        return cls(
            n_points=int(config.get("n_points", defaults.n_points)),
            alpha=float(config.get("alpha", defaults.alpha)),
            grid_spacing=float(config.get("grid_spacing", defaults.grid_spacing)),
            use_simpson_weights=bool(config.get("use_simpson_weights", defaults.use_simpson_weights)),
        )


@dataclass(frozen=True)
class FourierGrid:
    """
    Model-independent Carr-Madan quantities.

    Built once per pricing session and shared read-only by every pricing call;
    all arrays are flagged non-writeable.
    """
    n_points: int
    alpha: float
    grid_spacing: float
    lam: float                    # Log-strike spacing, 2*pi / (N * grid_spacing)
    b: float                      # Log-strike half width
    log_strikes: np.ndarray       # k_j = -b + j * lam
    v: np.ndarray                 # Integration nodes v_j = j * grid_spacing
    u: np.ndarray                 # Shifted nodes v_j - (alpha + 1)i
    denominator: np.ndarray       # alpha^2 + alpha - v^2 + i(2 alpha + 1)v
    fft_multiplier: np.ndarray    # exp(i v b) * grid_spacing (* Simpson weights)
    real_strikes: np.ndarray      # exp(k_j)


def simpson_weights(n: int) -> np.ndarray:
    """
    Simpson's rule weights used inside the FFT sum.

    Returns [1/3, 4/3, 2/3, 4/3, 2/3, ...] of length n.
    """
    j = np.arange(1, n + 1)
    weights = (3 + (-1.0) ** j) / 3
    weights[0] = 1.0 / 3.0
    return weights


def build_fourier_grid(config: Optional[FourierGridConfig] = None) -> FourierGrid:
    """
    Precompute the Carr-Madan grid for a given FFT configuration.

    Args:
        config: Grid configuration; defaults to N=4096, alpha=1.5, spacing 0.25
            with Simpson weights

    Returns:
        Immutable FourierGrid
    """
    config = config or FourierGridConfig()
    n = int(config.n_points)
    alpha = config.alpha
    spacing = config.grid_spacing

    lam = 2 * np.pi / (n * spacing)
    b = lam * n / 2
    log_strikes = -b + lam * np.arange(n)
    v = spacing * np.arange(n)
    u = v - (alpha + 1) * 1j

    denominator = alpha**2 + alpha - v**2 + 1j * (2 * alpha + 1) * v
    fft_multiplier = np.exp(1j * v * b) * spacing
    if config.use_simpson_weights:
        fft_multiplier = fft_multiplier * simpson_weights(n)

    real_strikes = np.exp(log_strikes)

    for arr in (log_strikes, v, u, denominator, fft_multiplier, real_strikes):
        arr.setflags(write=False)

    logger.debug(f"Fourier grid: N={n}, alpha={alpha}, spacing={spacing}, lambda={lam:.6f}, b={b:.4f}")

    return FourierGrid(
        n_points=n,
        alpha=alpha,
        grid_spacing=spacing,
        lam=lam,
        b=b,
        log_strikes=log_strikes,
        v=v,
        u=u,
        denominator=denominator,
        fft_multiplier=fft_multiplier,
        real_strikes=real_strikes,
    )
