import numpy as np
import pandas as pd
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Tuple, Union
import logging

from ..exceptions import InvalidInputError
from ..pricers.option_types import parse_option_types
from ..utils.io import read_csv
from ..utils.math_helpers import days_to_years, interpolate_rates

logger = logging.getLogger(__name__)

QUOTE_COLUMNS = ["maturity", "strike", "option_type", "mid", "bid", "ask"]


@dataclass(frozen=True)
class MarketQuoteSet:
    """
    Immutable snapshot of the option quotes used for one calibration.

    All per-option sequences are stored as read-only numpy arrays of equal
    length; maturities are in years.
    """
    spot: float
    strikes: np.ndarray
    maturities: np.ndarray
    option_types: np.ndarray
    mid: np.ndarray
    bid: np.ndarray
    ask: np.ndarray
    rates: np.ndarray
    dividend_yield: float = 0.0

    def __post_init__(self):
        fields = {
            "strikes": np.atleast_1d(np.array(self.strikes, dtype=float)),
            "maturities": np.atleast_1d(np.array(self.maturities, dtype=float)),
            "option_types": parse_option_types(self.option_types),
            "mid": np.atleast_1d(np.array(self.mid, dtype=float)),
            "bid": np.atleast_1d(np.array(self.bid, dtype=float)),
            "ask": np.atleast_1d(np.array(self.ask, dtype=float)),
            "rates": np.atleast_1d(np.array(self.rates, dtype=float)),
        }

        lengths = {name: len(values) for name, values in fields.items()}
        if len(set(lengths.values())) != 1:
            raise InvalidInputError("length_mismatch", f"Quote sequences differ in length: {lengths}")
        if lengths["strikes"] == 0:
            raise InvalidInputError("empty_quotes", "At least one option quote is required")

        if not np.isfinite(self.spot) or self.spot <= 0:
            raise InvalidInputError("spot_positive", f"Spot must be positive, got {self.spot}")
        if not np.isfinite(self.dividend_yield):
            raise InvalidInputError("dividend_yield", f"Dividend yield must be finite, got {self.dividend_yield}")
        for name in ("strikes", "maturities", "mid", "bid", "ask", "rates"):
            if not np.all(np.isfinite(fields[name])):
                raise InvalidInputError(f"{name}_finite", f"All {name} values must be finite")
        if np.any(fields["strikes"] <= 0):
            raise InvalidInputError("strike_positive", "All strikes must be positive")
        if np.any(fields["maturities"] <= 0):
            raise InvalidInputError("maturity_positive", "All maturities must be positive")

        crossed = fields["bid"] > fields["ask"]
        if np.any(crossed):
            logger.warning(f"{int(np.sum(crossed))} quote(s) have bid above ask")

        for name, values in fields.items():
            values.setflags(write=False)
            object.__setattr__(self, name, values)
        object.__setattr__(self, "spot", float(self.spot))
        object.__setattr__(self, "dividend_yield", float(self.dividend_yield))

    def __len__(self) -> int:
        return len(self.strikes)

    @property
    def spreads(self) -> np.ndarray:
        """Bid-ask spread per option."""
        return self.ask - self.bid

    def subset(self, indices: Sequence[int]) -> "MarketQuoteSet":
        """New quote set restricted to the given option indices."""
        indices = np.asarray(indices, dtype=int)
        return MarketQuoteSet(
            spot=self.spot,
            strikes=self.strikes[indices],
            maturities=self.maturities[indices],
            option_types=self.option_types[indices],
            mid=self.mid[indices],
            bid=self.bid[indices],
            ask=self.ask[indices],
            rates=self.rates[indices],
            dividend_yield=self.dividend_yield,
        )

    def to_dataframe(self) -> pd.DataFrame:
        """Quotes as a DataFrame with maturities in years."""
        return pd.DataFrame({
            "maturity": self.maturities,
            "strike": self.strikes,
            "option_type": self.option_types,
            "mid": self.mid,
            "bid": self.bid,
            "ask": self.ask,
            "rate": self.rates,
        })

    @classmethod
    def from_dataframe(
        cls,
        df: pd.DataFrame,
        spot: float,
        dividend_yield: float = 0.0,
        rate_curve: Optional[Tuple[Sequence[float], Sequence[float]]] = None,
        maturity_unit: str = "days",
        rate_method: str = "spline"
    ) -> "MarketQuoteSet":
        """
        Build a quote set from a table of option quotes.

        Args:
            df: Columns maturity, strike, option_type, mid, bid, ask and
                optionally rate
            spot: Spot price of the underlying
            dividend_yield: Continuous dividend or foreign yield
            rate_curve: Optional (tenors_in_days, rates) yield curve; when
                given, each option's rate is interpolated at its maturity and
                any rate column is ignored
            maturity_unit: "days" (converted with /365) or "years"
            rate_method: "spline" or "linear" curve interpolation

        Returns:
            Validated MarketQuoteSet
        """
        missing = [col for col in QUOTE_COLUMNS if col not in df.columns]
        if missing:
            raise InvalidInputError("quote_columns", f"Missing quote columns: {missing}")

        if maturity_unit == "days":
            maturity_days = df["maturity"].to_numpy(dtype=float)
        elif maturity_unit == "years":
            maturity_days = df["maturity"].to_numpy(dtype=float) * 365.0
        else:
            raise InvalidInputError("maturity_unit", f"Unknown maturity unit: {maturity_unit}")

        if rate_curve is not None:
            tenors, curve_rates = rate_curve
            rates = interpolate_rates(tenors, curve_rates, maturity_days, method=rate_method)
        elif "rate" in df.columns:
            rates = df["rate"].to_numpy(dtype=float)
        else:
            raise InvalidInputError("rates", "Provide a 'rate' column or a rate curve")

        logger.info(f"Loaded {len(df)} option quotes (spot={spot}, yield={dividend_yield})")

        return cls(
            spot=spot,
            strikes=df["strike"].to_numpy(dtype=float),
            maturities=days_to_years(maturity_days),
            option_types=df["option_type"].to_numpy(),
            mid=df["mid"].to_numpy(dtype=float),
            bid=df["bid"].to_numpy(dtype=float),
            ask=df["ask"].to_numpy(dtype=float),
            rates=rates,
            dividend_yield=dividend_yield,
        )


def load_quotes_csv(
    path: Union[str, Path],
    spot: float,
    dividend_yield: float = 0.0,
    rate_curve: Optional[Tuple[Sequence[float], Sequence[float]]] = None,
    maturity_unit: str = "days"
) -> MarketQuoteSet:
    """Read a quote CSV (see MarketQuoteSet.from_dataframe for the columns)."""
    return MarketQuoteSet.from_dataframe(
        read_csv(path), spot, dividend_yield=dividend_yield,
        rate_curve=rate_curve, maturity_unit=maturity_unit
    )


@dataclass(frozen=True)
class Split:
    """Disjoint train/test partition of quote indices."""
    train: np.ndarray
    test: np.ndarray

    @property
    def n_total(self) -> int:
        return len(self.train) + len(self.test)


def train_test_split(
    n: int,
    test_fraction: float = 0.25,
    seed: Optional[int] = None,
    rng: Optional[np.random.Generator] = None
) -> Split:
    """
    Random train/test split of n quote indices, sampling without replacement.

    The test set has ceil(n * test_fraction) members; both sets are returned
    in ascending index order.

    Args:
        n: Number of quotes
        test_fraction: Share of quotes held out for validation
        seed: Seed for a fresh generator (ignored when rng is given)
        rng: Optional numpy Generator

    Returns:
        Split with disjoint train and test indices covering range(n)

    Raises:
        InvalidInputError: If either side of the split would be empty
    """
    if not 0 < test_fraction < 1:
        raise InvalidInputError("test_fraction", f"test_fraction must be in (0, 1), got {test_fraction}")

    n_test = int(np.ceil(round(n * test_fraction, 9)))
    if n_test < 1 or n - n_test < 1:
        raise InvalidInputError(
            "split_empty",
            f"Cannot split {n} quotes into non-empty train and test sets at test_fraction={test_fraction}"
        )

    rng = rng if rng is not None else np.random.default_rng(seed)
    test = np.sort(rng.choice(n, size=n_test, replace=False))
    train = np.setdiff1d(np.arange(n), test)
    return Split(train=train, test=test)
