import pytest
import numpy as np

from hestoncal.exceptions import InvalidInputError
from hestoncal.pricers.barrier import (
    BARRIER_FORMULAS,
    BarrierType,
    barrier_implied_vol,
    barrier_price,
    barrier_sum_squared_errors,
    barrier_vega,
)
from hestoncal.pricers.bs import bs_price
from hestoncal.pricers.lookback import (
    lookback_implied_vol,
    lookback_price,
    lookback_rho,
    lookback_sum_squared_errors,
)

IN_OUT_PAIRS = [
    ("dibc", "dobc", 0, 90.0),
    ("uibc", "uobc", 0, 115.0),
    ("dibp", "dobp", 1, 90.0),
    ("uibp", "uobp", 1, 115.0),
]


class TestBarrierOptions:
    """Test cases for closed-form barrier option prices."""

    def test_lookup_table_covers_all_types(self):
        """Test that every barrier type has a pricing formula."""
        assert set(BARRIER_FORMULAS) == set(BarrierType)

    @pytest.mark.parametrize("knock_in,knock_out,option_type,barrier", IN_OUT_PAIRS)
    def test_in_plus_out_equals_vanilla(self, knock_in, knock_out, option_type, barrier):
        """Test knock-in plus knock-out parity with the vanilla price."""
        strikes = np.array([80.0, 95.0, 100.0, 110.0, 125.0])
        args = (0.25, 100.0, strikes, barrier, 0.0, 0.75, 0.06, 0.02)

        total = barrier_price(*args, barrier_types=knock_in) + barrier_price(*args, barrier_types=knock_out)
        vanilla = bs_price(0.25, 100.0, strikes, 0.06, 0.02, 0.75, option_type)
        np.testing.assert_allclose(total, vanilla, rtol=1e-10, atol=1e-10)

    def test_reference_values(self):
        """Test barrier prices against published reference values."""
        # S=100, r=0.08, b=0.04, T=0.5, sigma=0.25, rebate 3, X=90, H=95
        args = (0.25, 100.0, 90.0, 95.0, 3.0, 0.5, 0.08, 0.04)
        assert barrier_price(*args, barrier_types="dobp")[0] == pytest.approx(2.2798, abs=5e-4)
        assert barrier_price(*args, barrier_types="dibp")[0] == pytest.approx(2.9586, abs=5e-4)

    def test_down_and_out_call_scenario(self):
        """Test a down-and-out call with and without rebate."""
        vanilla = bs_price(0.2, 50.0, 55.0, 0.05, 0.0, 1.5, 0)[0]

        without_rebate = barrier_price(0.2, 50.0, 55.0, 40.0, 0.0, 1.5, 0.05, 0.0, "dobc")[0]
        assert 0 < without_rebate < vanilla

        with_rebate = barrier_price(0.2, 50.0, 55.0, 40.0, 2.0, 1.5, 0.05, 0.0, "dobc")[0]
        assert with_rebate > without_rebate > 0

    def test_mixed_types_in_one_call(self):
        """Test pricing several barrier types in one call."""
        prices = barrier_price(0.2, 100.0, [100.0, 100.0], [90.0, 110.0], 0.0, 1.0, 0.05, 0.0,
                               [BarrierType.DOWN_OUT_CALL, "uobp"])
        assert prices[0] == pytest.approx(barrier_price(0.2, 100.0, 100.0, 90.0, 0.0, 1.0, 0.05, 0.0, "dobc")[0])
        assert prices[1] == pytest.approx(barrier_price(0.2, 100.0, 100.0, 110.0, 0.0, 1.0, 0.05, 0.0, "uobp")[0])

    def test_breached_barrier(self):
        """Test that an already breached barrier is rejected."""
        with pytest.raises(InvalidInputError) as excinfo:
            barrier_price(0.2, 50.0, 55.0, 60.0, 0.0, 1.0, 0.05, 0.0, "dobc")
        assert excinfo.value.rule == "barrier_breached"

    def test_unknown_type(self):
        """Test rejection of unknown barrier codes."""
        with pytest.raises(InvalidInputError):
            barrier_price(0.2, 50.0, 55.0, 40.0, 0.0, 1.0, 0.05, 0.0, "double_knock")

    def test_vega_matches_central_difference(self):
        """Test barrier vega against a finite difference."""
        args = (100.0, 100.0, 85.0, 0.0, 1.0, 0.05, 0.0, "dobc")
        vega = barrier_vega(0.2, *args)[0]
        numeric = (barrier_price(0.2 + 1e-4, *args)[0] - barrier_price(0.2 - 1e-4, *args)[0]) / 2e-4
        assert vega == pytest.approx(numeric, rel=1e-2)

    def test_implied_vol_recovers_sigma(self):
        """Test barrier implied volatility recovery."""
        strikes = np.array([45.0, 50.0, 55.0])
        targets = barrier_price(0.3, 50.0, strikes, 40.0, 1.0, 1.0, 0.05, 0.0, "dobc")
        assert barrier_sum_squared_errors(0.3, targets, 50.0, strikes, 40.0, 1.0, 1.0, 0.05) == pytest.approx(0.0)

        together = barrier_implied_vol(targets, 50.0, strikes, 40.0, 1.0, 1.0, 0.05, 0.0, "dobc")
        np.testing.assert_allclose(together, 0.3, atol=1e-3)

        separately = barrier_implied_vol(targets, 50.0, strikes, 40.0, 1.0, 1.0, 0.05, 0.0, "dobc",
                                         calibrate_all=False)
        np.testing.assert_allclose(separately, 0.3, atol=1e-3)


class TestLookbackOptions:
    """Test cases for floating-strike lookback options."""

    def test_lookback_dominates_vanilla(self):
        """Test that lookbacks are worth more than vanillas."""
        call = lookback_price(0.3, 100.0, 100.0, 1.0, 0.05, 0.0, "call")[0]
        put = lookback_price(0.3, 100.0, 100.0, 1.0, 0.05, 0.0, "put")[0]
        assert call > bs_price(0.3, 100.0, 100.0, 0.05, 0.0, 1.0, "call")[0]
        assert put > bs_price(0.3, 100.0, 100.0, 0.05, 0.0, 1.0, "put")[0]

    def test_call_at_least_discounted_intrinsic(self):
        """Test the lookback call lower bound."""
        # payoff S_T - min >= S_T - current minimum
        call = lookback_price(0.2, 120.0, 100.0, 0.5, 0.1, 0.0, 0)[0]
        assert call >= 120.0 - 100.0 * np.exp(-0.1 * 0.5)

    def test_zero_cost_of_carry(self):
        """Test rejection of a zero cost of carry."""
        with pytest.raises(InvalidInputError) as excinfo:
            lookback_price(0.2, 100.0, 100.0, 1.0, 0.03, 0.03, 0)
        assert excinfo.value.rule == "cost_of_carry"

    def test_rho_is_finite(self):
        """Test lookback rho sensitivity."""
        rho = lookback_rho(0.25, 100.0, [95.0, 105.0], 1.0, 0.05, 0.0, [0, 1])
        assert np.all(np.isfinite(rho))

    def test_implied_vol_recovers_sigma(self):
        """Test lookback implied volatility recovery."""
        extremes = np.array([90.0, 95.0, 100.0])
        targets = lookback_price(0.25, 100.0, extremes, 1.0, 0.05, 0.0, 0)
        assert lookback_sum_squared_errors(0.25, targets, 100.0, extremes, 1.0, 0.05) == pytest.approx(0.0)

        together = lookback_implied_vol(targets, 100.0, extremes, 1.0, 0.05, 0.0, 0)
        np.testing.assert_allclose(together, 0.25, atol=1e-3)

        separately = lookback_implied_vol(targets, 100.0, extremes, 1.0, 0.05, 0.0, 0, calibrate_all=False)
        np.testing.assert_allclose(separately, 0.25, atol=1e-3)


if __name__ == "__main__":
    pytest.main([__file__])
