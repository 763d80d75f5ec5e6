#!/usr/bin/env python3
"""
Calibrate the Heston model to an option chain CSV
"""

import argparse
import sys
from pathlib import Path

import logging

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from hestoncal.calibration.engine import CalibrationSettings, CrossValidatedCalibrator, load_calibration_settings
from hestoncal.calibration.objective import compute_weights
from hestoncal.calibration.quotes import load_quotes_csv
from hestoncal.exceptions import HestonCalibrationError
from hestoncal.utils.io import write_csv
from hestoncal.utils.logging_utils import setup_logging

logger = logging.getLogger(__name__)


def main():
    """Main function"""
    parser = argparse.ArgumentParser(
        description="Cross-validated Heston calibration",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/run_calibration.py data/synthetic_chain.csv --spot 100
  python scripts/run_calibration.py chain.csv --spot 4500 --config configs/calibration.yaml --weighting bid_ask
        """
    )
    parser.add_argument("quotes", help="Quote CSV with maturity, strike, option_type, mid, bid, ask, rate")
    parser.add_argument("--spot", type=float, required=True, help="Spot price of the underlying")
    parser.add_argument("--dividend-yield", type=float, default=0.0, help="Continuous dividend yield")
    parser.add_argument("--maturity-unit", choices=["days", "years"], default="days",
                        help="Unit of the maturity column (default: days)")
    parser.add_argument("--config", help="YAML calibration settings (default: built-in settings)")
    parser.add_argument("--weighting", default="equal", help="equal, implied_vol or bid_ask (or 0/1/2)")
    parser.add_argument("--diagnostics", action="store_true", help="Log in/out-of-sample price tables")
    parser.add_argument("--history", help="Optional CSV path for the burst history")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    parser.add_argument("--log-file", help="Optional log file")
    args = parser.parse_args()

    setup_logging(args.log_level, log_file=args.log_file)

    try:
        settings = load_calibration_settings(args.config) if args.config else CalibrationSettings()
        quotes = load_quotes_csv(args.quotes, spot=args.spot, dividend_yield=args.dividend_yield,
                                 maturity_unit=args.maturity_unit)
        weighting = int(args.weighting) if args.weighting.isdigit() else args.weighting
        weights = compute_weights(quotes, weighting)

        result = CrossValidatedCalibrator(settings=settings).calibrate(
            quotes, weights=weights, diagnostics=args.diagnostics
        )
    except HestonCalibrationError as e:
        logger.error(f"Calibration failed: {e}")
        sys.exit(1)

    if args.history:
        write_csv(result.history_frame(), args.history)

    kappa, eta, theta, rho, v0 = result.as_public_tuple()
    print("\nCalibrated Heston parameters:")
    print(f"  kappa = {kappa:.6f}")
    print(f"  eta   = {eta:.6f}")
    print(f"  theta = {theta:.6f}")
    print(f"  rho   = {rho:.6f}")
    print(f"  v0    = {v0:.6f}")
    print(f"\nOut-of-sample RMSE: {result.rmse:.6f} (spread-adjusted {result.rmse_adjusted:.6f})")
    print(f"Bursts: {result.n_bursts}" + (" (stalled)" if result.stalled else "")
          + (" (burst ceiling reached)" if result.hit_burst_ceiling else ""))


if __name__ == "__main__":
    main()
