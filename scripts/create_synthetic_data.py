#!/usr/bin/env python3
"""
Create a synthetic option chain priced with known Heston parameters
"""

import argparse
import sys
from pathlib import Path

import numpy as np
import pandas as pd
import logging

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from hestoncal.pricers.heston_charfn import HestonParameters
from hestoncal.pricers.heston_fft import price_heston
from hestoncal.utils.io import write_csv
from hestoncal.utils.logging_utils import setup_logging

logger = logging.getLogger(__name__)


def create_synthetic_chain(
    params: HestonParameters,
    spot: float = 100.0,
    rate: float = 0.03,
    dividend_yield: float = 0.0,
    maturity_days=(30, 60, 91, 182, 365),
    moneyness=np.arange(0.8, 1.21, 0.05),
    relative_spread: float = 0.02,
    noise: float = 0.0,
    seed: int = 42
) -> pd.DataFrame:
    """
    Price an out-of-the-money option chain and wrap it in a bid-ask spread.

    Args:
        params: True Heston parameters
        spot: Spot price
        rate: Flat risk-free rate
        dividend_yield: Continuous dividend yield
        maturity_days: Maturities in calendar days
        moneyness: Strikes as fractions of spot
        relative_spread: Full spread as a fraction of the mid price
        noise: Standard deviation of multiplicative noise on the mid price
        seed: Random seed for the noise

    Returns:
        DataFrame with columns maturity (days), strike, option_type, mid, bid, ask, rate
    """
    rng = np.random.default_rng(seed)

    days = np.repeat(np.asarray(maturity_days, dtype=float), len(moneyness))
    strikes = np.round(np.tile(spot * np.asarray(moneyness), len(maturity_days)), 2)
    option_types = np.where(strikes < spot, 1, 0)

    mid = price_heston(params, strikes, days / 365.0, option_types, spot, rate, dividend_yield)
    mid = mid * (1 + noise * rng.standard_normal(len(mid)))
    half_spread = np.maximum(0.01, relative_spread * mid) / 2

    chain = pd.DataFrame({
        "maturity": days.astype(int),
        "strike": strikes,
        "option_type": option_types,
        "mid": mid,
        "bid": np.maximum(0.0, mid - half_spread),
        "ask": mid + half_spread,
        "rate": rate,
    })

    logger.info(f"Synthetic chain: {len(chain)} quotes from {params}")
    return chain


def main():
    """Main function"""
    parser = argparse.ArgumentParser(description="Create a synthetic Heston option chain")
    parser.add_argument("--output", default="data/synthetic_chain.csv", help="Output CSV path")
    parser.add_argument("--spot", type=float, default=100.0, help="Spot price (default: 100)")
    parser.add_argument("--rate", type=float, default=0.03, help="Flat risk-free rate (default: 0.03)")
    parser.add_argument("--dividend-yield", type=float, default=0.0, help="Continuous dividend yield")
    parser.add_argument("--noise", type=float, default=0.0, help="Relative noise on mid prices")
    parser.add_argument("--seed", type=int, default=42, help="Random seed")
    parser.add_argument("--params", type=float, nargs=5, default=[2.0, 0.3, 0.04, -0.7, 0.04],
                        metavar=("KAPPA", "ETA", "THETA", "RHO", "V0"), help="True Heston parameters")
    args = parser.parse_args()

    setup_logging("INFO")

    params = HestonParameters.from_public_tuple(args.params).validate()
    chain = create_synthetic_chain(params, spot=args.spot, rate=args.rate, dividend_yield=args.dividend_yield,
                                   noise=args.noise, seed=args.seed)
    write_csv(chain, args.output)

    print(f"\nSynthetic chain created: {len(chain)} quotes")
    print(f"  - True parameters (kappa, eta, theta, rho, v0): {params.as_public_tuple()}")
    print(f"  - Saved to: {args.output}")


if __name__ == "__main__":
    main()
