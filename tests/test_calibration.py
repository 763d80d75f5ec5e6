import pytest
import numpy as np
import logging

from hestoncal.calibration.engine import (
    CalibrationPhase,
    CalibrationSettings,
    CalibrationState,
    CrossValidatedCalibrator,
    CrossValidationConfig,
    calibrate_heston,
)
from hestoncal.calibration.objective import (
    BoundedSimplexTransform,
    ConstrainedLocalOptimizer,
    LocalOptimizationResult,
    OptimizerConfig,
    ParameterBounds,
    WeightingScheme,
    compute_weights,
    weighted_squared_error,
)
from hestoncal.calibration.quotes import MarketQuoteSet, Split, train_test_split
from hestoncal.exceptions import InvalidInputError
from hestoncal.pricers.bs import bs_price
from hestoncal.pricers.fourier_grid import FourierGridConfig
from hestoncal.pricers.heston_charfn import (
    HestonParameters,
    from_internal_vector,
    from_optimizer_vector,
    to_internal_vector,
    to_optimizer_vector,
)
from hestoncal.pricers.heston_fft import HestonFFTPricer
from hestoncal.utils.math_helpers import rmse, rmse_spread_adjusted


def make_candidate(kappa: float) -> HestonParameters:
    return HestonParameters(kappa=kappa, eta=0.3, theta=0.04, rho=-0.5, v0=0.04)


class ScriptedOptimizer:
    """Stand-in optimizer returning a fixed sequence of candidates."""

    def __init__(self, candidates):
        self.candidates = list(candidates)
        self.calls = []

    def optimize(self, initial, quotes, weights=None, early_stopping=False):
        self.calls.append((initial, len(quotes), early_stopping))
        params = self.candidates[len(self.calls) - 1]
        return LocalOptimizationResult(params, 0.0, 75, 10, False)


class ScriptedCalibrator(CrossValidatedCalibrator):
    """Calibrator whose test-set errors are looked up instead of priced."""

    def __init__(self, errors, **kwargs):
        super().__init__(**kwargs)
        self.errors = errors

    def evaluate(self, params, quotes):
        return self.errors[params]


class TestParameterTransforms:
    """Test cases for the Feller reparameterization and sine bounds."""

    def test_feller_round_trip(self, true_params):
        """Test Feller reparameterization of the true parameters."""
        x = to_optimizer_vector(true_params)
        np.testing.assert_allclose(x, [2 * 2.0 * 0.04 - 0.09, 0.04, 0.3, -0.7, 0.04])

        recovered = from_optimizer_vector(x)
        np.testing.assert_allclose(recovered.as_public_tuple(), true_params.as_public_tuple(), rtol=1e-12)

    def test_feller_round_trip_across_bounds(self):
        """Test that kappa recovery preserves the Feller surrogate anywhere inside the bounds."""
        bounds = ParameterBounds()
        rng = np.random.default_rng(2024)
        for x in rng.uniform(bounds.lower, bounds.upper, size=(200, 5)):
            params = from_optimizer_vector(x)
            assert params.kappa > 0
            np.testing.assert_allclose(to_optimizer_vector(params), x, rtol=1e-12, atol=1e-10)

    def test_internal_order(self, true_params):
        """Test the (kappa, theta, eta, rho, v0) engine ordering."""
        x = to_internal_vector(true_params)
        np.testing.assert_array_equal(x, [2.0, 0.04, 0.3, -0.7, 0.04])
        assert from_internal_vector(x) == true_params

    def test_sine_transform_is_bijective_inside_box(self):
        """Test the sine transform round trip."""
        bounds = ParameterBounds()
        transform = BoundedSimplexTransform(bounds.lower, bounds.upper)
        x = np.array([3.0, 0.2, 1.1, -0.4, 0.05])
        np.testing.assert_allclose(transform.to_bounded(transform.to_unconstrained(x)), x, atol=1e-12)

    def test_sine_transform_stays_in_bounds(self):
        """Test that any unconstrained point maps into the box."""
        bounds = ParameterBounds()
        transform = BoundedSimplexTransform(bounds.lower, bounds.upper)
        for z in np.random.default_rng(3).normal(scale=50.0, size=(100, 5)):
            x = transform.to_bounded(z)
            assert np.all(x >= bounds.lower) and np.all(x <= bounds.upper)

    def test_invalid_bounds(self):
        """Test rejection of inverted bounds."""
        with pytest.raises(InvalidInputError):
            ParameterBounds(rho=(0.0, -1.0))

    def test_bounds_from_dict(self):
        """Test building bounds from a partial mapping."""
        bounds = ParameterBounds.from_dict({"eta": [0.1, 2.0]})
        assert bounds.eta == (0.1, 2.0)
        assert bounds.feller == (0.0, 20.0)


class TestWeights:
    """Test cases for per-option weighting schemes."""

    def test_scheme_parsing(self):
        """Test weighting scheme parsing."""
        assert WeightingScheme.parse(0) is WeightingScheme.EQUAL
        assert WeightingScheme.parse(1) is WeightingScheme.IMPLIED_VOL
        assert WeightingScheme.parse(2) is WeightingScheme.BID_ASK
        assert WeightingScheme.parse("BID_ASK") is WeightingScheme.BID_ASK
        with pytest.raises(InvalidInputError):
            WeightingScheme.parse(3)

    def test_equal_and_bid_ask(self, synthetic_quotes):
        """Test equal and bid-ask weights."""
        np.testing.assert_array_equal(compute_weights(synthetic_quotes, "equal"), np.ones(len(synthetic_quotes)))
        weights = compute_weights(synthetic_quotes, WeightingScheme.BID_ASK)
        np.testing.assert_allclose(weights, 1.0 / (synthetic_quotes.ask - synthetic_quotes.bid))
        np.testing.assert_allclose(weights, 1.0 / synthetic_quotes.spreads)

    def test_zero_spread(self):
        """Test that zero spreads are rejected for bid-ask weights."""
        quotes = MarketQuoteSet(100.0, [100.0, 105.0], [1.0, 1.0], [0, 0], [10.0, 8.0], [9.0, 8.0],
                                [11.0, 8.0], [0.05, 0.05])
        with pytest.raises(InvalidInputError) as excinfo:
            compute_weights(quotes, WeightingScheme.BID_ASK)
        assert excinfo.value.rule == "zero_spread"

    def test_implied_vol_weights(self):
        """Test implied volatility weights."""
        strikes = np.array([90.0, 100.0, 110.0])
        mid = bs_price(0.2, 100.0, strikes, 0.05, 0.0, 1.0, 0)
        quotes = MarketQuoteSet(100.0, strikes, np.ones(3), np.zeros(3, dtype=int), mid, mid - 0.1,
                                mid + 0.1, np.full(3, 0.05))
        np.testing.assert_allclose(compute_weights(quotes, 1), 5.0, rtol=1e-2)


class TestErrorMeasures:
    """Test cases for plain and spread-adjusted RMSE."""

    def test_adjusted_never_exceeds_plain(self):
        """Test that the spread-adjusted RMSE is bounded by the plain one."""
        rng = np.random.default_rng(7)
        mid = rng.uniform(1.0, 10.0, 50)
        model = mid + rng.normal(scale=0.3, size=50)
        bid, ask = mid - 0.2, mid + 0.2
        assert rmse_spread_adjusted(model, mid, bid, ask) <= rmse(model, mid)

    def test_inside_spread_is_free(self):
        """Test that model prices inside the spread cost nothing."""
        assert rmse_spread_adjusted([10.1, 5.0], [10.0, 5.0], [9.9, 4.9], [10.2, 5.1]) == 0.0
        assert rmse_spread_adjusted([11.0], [10.0], [9.9], [10.2]) == pytest.approx(1.0)


class TestTrainTestSplit:
    """Test cases for random quote splits."""

    def test_sizes_and_coverage(self):
        """Test split sizes and coverage."""
        split = train_test_split(100, 0.25, seed=1)
        assert len(split.test) == 25
        assert len(split.train) == 75
        assert np.intersect1d(split.train, split.test).size == 0
        np.testing.assert_array_equal(np.sort(np.concatenate([split.train, split.test])), np.arange(100))

    def test_seed_is_reproducible(self):
        """Test split reproducibility from a seed."""
        first = train_test_split(40, seed=11)
        second = train_test_split(40, seed=11)
        np.testing.assert_array_equal(first.test, second.test)

    def test_rounds_test_size_up(self):
        """Test that the test set size is rounded up."""
        assert len(train_test_split(10, 0.25, seed=0).test) == 3

    def test_too_few_quotes(self):
        """Test rejection of splits with an empty side."""
        with pytest.raises(InvalidInputError) as excinfo:
            train_test_split(1, 0.25)
        assert excinfo.value.rule == "split_empty"


class TestConstrainedLocalOptimizer:
    """Test cases for the bounded Nelder-Mead search."""

    def test_burst_improves_objective(self, synthetic_quotes, small_grid):
        """Test that an early-stopping burst never worsens the objective."""
        pricer = HestonFFTPricer(grid=small_grid)
        optimizer = ConstrainedLocalOptimizer(pricer)
        initial = HestonParameters.default_initial_guess()
        weights = np.ones(len(synthetic_quotes))
        weights_before = weights.copy()

        result = optimizer.optimize(initial, synthetic_quotes, weights, early_stopping=True)

        start = weighted_squared_error(initial, synthetic_quotes, weights_before, pricer)
        assert result.objective_value <= start * (1 + 1e-9)
        assert result.n_evaluations <= 81
        assert not result.converged
        np.testing.assert_array_equal(weights, weights_before)

    def test_candidate_respects_bounds(self, synthetic_quotes, small_grid):
        """Test that candidates stay inside the optimizer bounds."""
        config = OptimizerConfig(early_stopping_evaluations=40)
        optimizer = ConstrainedLocalOptimizer(HestonFFTPricer(grid=small_grid), config)
        result = optimizer.optimize(HestonParameters.default_initial_guess(), synthetic_quotes, early_stopping=True)

        x = to_optimizer_vector(result.params)
        assert np.all(x >= config.bounds.lower - 1e-9)
        assert np.all(x <= config.bounds.upper + 1e-9)

    def test_full_mode_reports_convergence(self, true_params, synthetic_quotes, small_grid, caplog):
        """Test that a full run within tolerance reports convergence without warning."""
        config = OptimizerConfig(xtol=1.0, ftol=1e12)
        optimizer = ConstrainedLocalOptimizer(HestonFFTPricer(grid=small_grid), config)
        with caplog.at_level(logging.WARNING):
            result = optimizer.optimize(true_params, synthetic_quotes)

        assert result.converged
        assert result.n_evaluations < config.max_evaluations
        assert "without convergence" not in caplog.text

    def test_full_mode_evaluation_cap(self, synthetic_quotes, small_grid, caplog):
        """Test that a full run stops at max_evaluations and logs a warning."""
        config = OptimizerConfig(max_evaluations=20)
        optimizer = ConstrainedLocalOptimizer(HestonFFTPricer(grid=small_grid), config)
        with caplog.at_level(logging.WARNING):
            result = optimizer.optimize(HestonParameters.default_initial_guess(), synthetic_quotes)

        assert not result.converged
        assert result.n_evaluations <= 27
        assert np.isfinite(result.objective_value)
        assert "without convergence" in caplog.text

    def test_full_mode_from_true_parameters(self, true_params, synthetic_quotes, small_grid):
        """Test that a full run started at the generating parameters does not move uphill."""
        pricer = HestonFFTPricer(grid=small_grid)
        config = OptimizerConfig(max_evaluations=300)
        result = ConstrainedLocalOptimizer(pricer, config).optimize(true_params, synthetic_quotes)

        start = weighted_squared_error(true_params, synthetic_quotes, np.ones(len(synthetic_quotes)), pricer)
        assert result.objective_value <= start * (1 + 1e-9) + 1e-12
        assert result.converged or result.n_evaluations >= config.max_evaluations

    def test_weight_length_checked(self, synthetic_quotes, small_grid):
        """Test rejection of mismatched weights."""
        optimizer = ConstrainedLocalOptimizer(HestonFFTPricer(grid=small_grid))
        with pytest.raises(InvalidInputError):
            optimizer.optimize(HestonParameters.default_initial_guess(), synthetic_quotes, np.ones(3))

    def test_invalid_config(self):
        """Test optimizer config validation."""
        with pytest.raises(InvalidInputError):
            OptimizerConfig(xtol=0.0)
        with pytest.raises(InvalidInputError):
            OptimizerConfig(early_stopping_evaluations=0)


class TestCalibrationState:
    """Test cases for the monotone best-candidate state."""

    def test_accept_requires_strict_improvement(self):
        """Test that only strict improvements are accepted."""
        state = CalibrationState(params=make_candidate(1.0))
        assert state.phase is CalibrationPhase.INITIALIZING
        state.accept(make_candidate(2.0), 0.5, 0.4)
        assert state.phase is CalibrationPhase.IMPROVED

        with pytest.raises(ValueError):
            state.accept(make_candidate(3.0), 0.5, 0.4)
        with pytest.raises(ValueError):
            state.accept(make_candidate(3.0), 0.5, np.nan)
        assert state.params == make_candidate(2.0)
        assert state.n_accepted == 1


class TestCrossValidatedCalibrator:
    """Test cases for the burst-and-validate loop."""

    @pytest.fixture
    def split(self, synthetic_quotes):
        return train_test_split(len(synthetic_quotes), seed=5)

    def run(self, synthetic_quotes, small_grid, split, candidates, errors, max_bursts=10000):
        settings = CalibrationSettings(cross_validation=CrossValidationConfig(max_bursts=max_bursts))
        optimizer = ScriptedOptimizer(candidates)
        calibrator = ScriptedCalibrator(errors, settings=settings, pricer=HestonFFTPricer(grid=small_grid),
                                        optimizer=optimizer)
        result = calibrator.calibrate(synthetic_quotes, initial_guess=make_candidate(1.0), split=split)
        return result, optimizer

    def test_stops_at_first_non_improvement(self, synthetic_quotes, small_grid, split):
        """Test that the loop stops at the first rejected burst."""
        candidates = [make_candidate(2.0), make_candidate(3.0), make_candidate(4.0)]
        errors = {
            make_candidate(2.0): (0.6, 0.5),
            make_candidate(3.0): (0.4, 0.3),
            make_candidate(4.0): (0.5, 0.35),
        }
        result, optimizer = self.run(synthetic_quotes, small_grid, split, candidates, errors)

        assert [record.accepted for record in result.history] == [True, True, False]
        assert result.params == make_candidate(3.0)
        assert (result.rmse, result.rmse_adjusted) == (0.4, 0.3)
        assert result.n_bursts == 3
        assert not result.stalled and not result.hit_burst_ceiling

        # Each burst starts from the current best and runs in early-stopping mode
        assert [call[0] for call in optimizer.calls] == [make_candidate(1.0), make_candidate(2.0),
                                                         make_candidate(3.0)]
        assert all(call[1] == len(split.train) and call[2] for call in optimizer.calls)

    def test_stall_returns_initial_guess(self, synthetic_quotes, small_grid, split):
        """Test the stalled outcome."""
        errors = {
            make_candidate(2.0): (np.nan, np.nan),
            make_candidate(1.0): (0.9, 0.8),
        }
        result, _ = self.run(synthetic_quotes, small_grid, split, [make_candidate(2.0)], errors)

        assert result.stalled
        assert result.params == make_candidate(1.0)
        assert (result.rmse, result.rmse_adjusted) == (0.9, 0.8)
        assert result.n_bursts == 1

    def test_burst_ceiling(self, synthetic_quotes, small_grid, split, caplog):
        """Test stopping at the burst ceiling."""
        candidates = [make_candidate(2.0 + i) for i in range(10)]
        errors = {candidate: (1.0 - 0.1 * i, 0.9 - 0.1 * i) for i, candidate in enumerate(candidates)}
        with caplog.at_level(logging.WARNING):
            result, optimizer = self.run(synthetic_quotes, small_grid, split, candidates, errors, max_bursts=5)

        assert result.hit_burst_ceiling
        assert result.n_bursts == 5
        assert len(optimizer.calls) == 5
        assert result.params == candidates[4]
        assert all(record.accepted for record in result.history)
        assert "Burst ceiling" in caplog.text

    def test_invalid_split(self, synthetic_quotes, small_grid):
        """Test rejection of overlapping splits."""
        calibrator = CrossValidatedCalibrator(pricer=HestonFFTPricer(grid=small_grid))
        overlapping = Split(train=np.array([0, 1, 2]), test=np.array([2, 3]))
        with pytest.raises(InvalidInputError):
            calibrator.calibrate(synthetic_quotes, split=overlapping)

    def test_end_to_end(self, synthetic_quotes):
        """Test a full cross-validated calibration on synthetic quotes."""
        settings = CalibrationSettings(
            grid=FourierGridConfig(n_points=1024),
            cross_validation=CrossValidationConfig(max_bursts=20, seed=0),
        )
        calibrator = CrossValidatedCalibrator(settings=settings)
        result = calibrator.calibrate(synthetic_quotes, diagnostics=True)

        assert np.isfinite(result.rmse) and np.isfinite(result.rmse_adjusted)
        assert result.rmse_adjusted <= result.rmse
        assert result.split.n_total == len(synthetic_quotes)
        assert len(result.split.test) == 7

        history = result.history_frame()
        assert len(history) == result.n_bursts
        accepted = history["rmse_adjusted"][history["accepted"]].to_numpy()
        assert np.all(np.diff(accepted) < 0)
        if not result.stalled:
            assert result.rmse_adjusted == pytest.approx(accepted[-1])
        if not result.hit_burst_ceiling:
            assert not history["accepted"].iloc[-1]

        assert len(result.in_sample_report) == len(result.split.train)
        assert len(result.out_of_sample_report) == len(result.split.test)
        assert {"model", "inside_spread"} <= set(result.out_of_sample_report.columns)
        assert len(result.as_public_tuple()) == 5


class TestCalibrateHeston:
    """Test cases for the top-level entry point."""

    def test_mismatched_lengths_fail_fast(self):
        """Test rejection of mismatched quote lengths."""
        with pytest.raises(InvalidInputError) as excinfo:
            calibrate_heston(100.0, [90.0, 100.0], [1.0], [0, 0], [12.0, 8.0], [11.9, 7.9], [12.1, 8.1],
                             [0.05, 0.05])
        assert excinfo.value.rule == "length_mismatch"

    def test_non_finite_quotes_fail_fast(self, monkeypatch):
        """Test that NaN or infinite strikes and maturities are rejected before optimizing."""
        def fail(*args, **kwargs):
            raise AssertionError("optimizer must not run on invalid quotes")

        monkeypatch.setattr(ConstrainedLocalOptimizer, "optimize", fail)
        with pytest.raises(InvalidInputError) as excinfo:
            calibrate_heston(100.0, [90.0, 100.0], [1.0, np.nan], [0, 0], [12.0, 8.0], [11.9, 7.9],
                             [12.1, 8.1], [0.05, 0.05])
        assert excinfo.value.rule == "maturities_finite"

        with pytest.raises(InvalidInputError) as excinfo:
            calibrate_heston(100.0, [90.0, np.inf], [1.0, 1.0], [0, 0], [12.0, 8.0], [11.9, 7.9],
                             [12.1, 8.1], [0.05, 0.05])
        assert excinfo.value.rule == "strikes_finite"

        with pytest.raises(InvalidInputError) as excinfo:
            calibrate_heston(np.nan, [90.0, 100.0], [1.0, 1.0], [0, 0], [12.0, 8.0], [11.9, 7.9],
                             [12.1, 8.1], [0.05, 0.05])
        assert excinfo.value.rule == "spot_positive"

    def test_invalid_initial_guess(self, synthetic_quotes):
        """Test rejection of an invalid initial guess."""
        settings = CalibrationSettings(grid=FourierGridConfig(n_points=256))
        bad = HestonParameters(kappa=2.0, eta=0.3, theta=0.04, rho=-1.5, v0=0.04)
        with pytest.raises(InvalidInputError):
            calibrate_heston(
                synthetic_quotes.spot, synthetic_quotes.strikes, synthetic_quotes.maturities,
                synthetic_quotes.option_types, synthetic_quotes.mid, synthetic_quotes.bid,
                synthetic_quotes.ask, synthetic_quotes.rates, settings=settings, initial_guess=bad,
            )

    def test_zero_spread_with_bid_ask_weighting(self):
        """Test zero spread rejection through the entry point."""
        with pytest.raises(InvalidInputError):
            calibrate_heston(100.0, [90.0, 100.0], [1.0, 1.0], [0, 0], [12.0, 8.0], [12.0, 7.9],
                             [12.0, 8.1], [0.05, 0.05], weighting="bid_ask")


if __name__ == "__main__":
    pytest.main([__file__])
