# tests/test_clearing/test_real_time.py

"""
Tests for rolling-horizon real-time dispatch.

Tests cover:
- The no-storage baseline (N-ED) as a pure economic dispatch
- Storage bidding its value function (S-ED)
- DA+RT coupling to a day-ahead schedule (schedule and bid modes)
- Wind realization, ramp limits, idempotence
- Infeasibility and configuration errors
"""

import numpy as np
import pytest

from esmarket.errors import ConfigurationError, InfeasibleClearingError
from esmarket.interfaces import ClearingResult, Generator, SystemSnapshot, StorageSpec
from esmarket.bidding import build_value_function
from esmarket.clearing import DayAheadClearing, RealTimeClearing


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def all_on():
    """Hand-built day-ahead result committing every unit of a two-unit fleet."""
    def make(snapshot):
        G, T = len(snapshot.generators), snapshot.horizon
        return ClearingResult(
            stage='day_ahead',
            label='UC',
            generator_names=snapshot.generator_names,
            dispatch=np.zeros((G, T)),
            commitment=np.ones((G, T)),
            startup=np.zeros((G, T)),
            price=np.zeros(T),
            demand=snapshot.demand,
            wind=snapshot.wind_forecast,
            wind_dispatch=np.zeros(T),
        )
    return make


@pytest.fixture
def two_unit_uc(backend, two_unit_snapshot):
    return DayAheadClearing(backend).clear(two_unit_snapshot)


# =============================================================================
# Validation Tests (no solver)
# =============================================================================

class TestRealTimeValidation:
    """Errors raised before any solve."""

    def test_window(self):
        with pytest.raises(ConfigurationError):
            RealTimeClearing(window=0)

    def test_unknown_mode(self, two_unit_snapshot, all_on):
        with pytest.raises(ConfigurationError, match="mode"):
            RealTimeClearing().clear(all_on(two_unit_snapshot), two_unit_snapshot, mode='spot')

    def test_storage_needs_value_function(self, two_unit_snapshot, all_on, storage):
        with pytest.raises(ConfigurationError, match="value function"):
            RealTimeClearing().clear(all_on(two_unit_snapshot), two_unit_snapshot, storage)

    def test_schedule_needs_day_ahead_storage(self, two_unit_snapshot, all_on, storage):
        """A day-ahead result without storage has no schedule to follow."""
        with pytest.raises(ConfigurationError, match="schedule"):
            RealTimeClearing().clear(
                all_on(two_unit_snapshot), two_unit_snapshot, storage, mode='schedule'
            )

    def test_schedule_length(self, two_unit_snapshot, all_on, storage):
        with pytest.raises(ConfigurationError, match="periods"):
            RealTimeClearing().clear(
                all_on(two_unit_snapshot), two_unit_snapshot, storage,
                schedule=[0, 0], mode='schedule',
            )

    def test_commitment_shape(self, two_unit_snapshot, single_unit_snapshot, all_on):
        with pytest.raises(ConfigurationError):
            RealTimeClearing().clear(all_on(single_unit_snapshot), two_unit_snapshot)


# =============================================================================
# Baseline Tests (solver)
# =============================================================================

class TestBaseline:
    """Test the no-storage dispatch."""

    def test_single_unit_flat_price(self, backend, single_unit_snapshot):
        """Without storage every period clears at 20."""
        uc = DayAheadClearing(backend).clear(single_unit_snapshot)
        ned = RealTimeClearing(window=4, backend=backend).clear(uc, single_unit_snapshot)
        assert ned.label == 'N-ED'
        assert ned.stage == 'real_time'
        np.testing.assert_allclose(ned.price, 20.0, atol=1e-6)
        np.testing.assert_allclose(ned.dispatch[0], [60, 90, 60, 90], atol=1e-6)
        ned.validate()

    def test_merit_order(self, backend, two_unit_snapshot, two_unit_uc):
        """N-ED is a pure economic dispatch."""
        ned = RealTimeClearing(backend=backend).clear(two_unit_uc, two_unit_snapshot)
        np.testing.assert_allclose(ned.dispatch[0], [60, 80, 60, 80], atol=1e-6)
        np.testing.assert_allclose(ned.dispatch[1], [0, 40, 0, 40], atol=1e-6)
        np.testing.assert_allclose(ned.price, [20, 50, 20, 50], atol=1e-6)
        assert not ned.has_storage

    def test_zero_rating_matches_no_storage(self, backend, two_unit_snapshot, two_unit_uc):
        """A zero-rated unit gives exactly the baseline."""
        rt = RealTimeClearing(backend=backend)
        none = rt.clear(two_unit_uc, two_unit_snapshot, None)
        zero = rt.clear(two_unit_uc, two_unit_snapshot, StorageSpec(power=0))
        assert zero.label == 'N-ED'
        np.testing.assert_allclose(zero.dispatch, none.dispatch)
        np.testing.assert_allclose(zero.price, none.price)

    def test_uses_wind_realization(self, backend):
        """Committed periods see realised wind, not the forecast."""
        snap = SystemSnapshot(
            generators=(Generator('G1', p_max=100, marginal_cost=20),),
            demand=[60, 60],
            wind_forecast=[0, 0],
            wind_realization=[20, 0],
        )
        uc = DayAheadClearing(backend).clear(snap)
        ned = RealTimeClearing(backend=backend).clear(uc, snap)
        np.testing.assert_allclose(ned.wind_dispatch, [20, 0], atol=1e-6)
        np.testing.assert_allclose(ned.dispatch[0], [40, 60], atol=1e-6)
        np.testing.assert_array_equal(ned.wind, [20, 0])

    def test_ramp_limits(self, backend):
        """Real-time dispatch respects ramp limits between committed periods."""
        snap = SystemSnapshot(
            generators=(
                Generator('BASE', p_max=100, marginal_cost=10, ramp_up=20),
                Generator('PEAKER', p_max=100, marginal_cost=60),
            ),
            demand=[40, 90],
            wind_forecast=[0, 0],
        )
        uc = DayAheadClearing(backend).clear(snap)
        ned = RealTimeClearing(backend=backend).clear(uc, snap)
        assert ned.dispatch[0, 1] - ned.dispatch[0, 0] <= 20 + 1e-6
        np.testing.assert_allclose(ned.dispatch[1], [0, 30], atol=1e-6)

    def test_infeasible_period(self, backend):
        """A wind shortfall the fleet cannot cover names the period."""
        snap = SystemSnapshot(
            generators=(Generator('G1', p_max=100, marginal_cost=20),),
            demand=[140, 60],
            wind_forecast=[50, 50],
            wind_realization=[0, 50],
        )
        uc = DayAheadClearing(backend).clear(snap)
        with pytest.raises(InfeasibleClearingError) as info:
            RealTimeClearing(backend=backend).clear(uc, snap)
        assert info.value.context['period'] == 0
        assert info.value.context['label'] == 'N-ED'
        assert info.value.context['mode'] is None

    def test_reserve_covers_wind_shortfall(self, backend):
        """Day-ahead reserve keeps a lost wind forecast within committed capacity."""
        generators = (
            Generator('BASE', p_max=100, marginal_cost=20),
            Generator('PEAKER', p_max=100, marginal_cost=50, startup_cost=10,
                      initial_status=False),
        )
        kwargs = dict(
            generators=generators,
            demand=[140, 60],
            wind_forecast=[50, 50],
            wind_realization=[0, 50],
        )
        unreserved = SystemSnapshot(**kwargs)
        uc = DayAheadClearing(backend).clear(unreserved)
        with pytest.raises(InfeasibleClearingError):
            RealTimeClearing(backend=backend).clear(uc, unreserved)

        reserved = SystemSnapshot(reserve=[50, 50], **kwargs)
        uc = DayAheadClearing(backend).clear(reserved)
        assert uc.commitment[1, 0] == 1
        ned = RealTimeClearing(backend=backend).clear(uc, reserved)
        np.testing.assert_allclose(ned.dispatch[:, 0], [100, 40], atol=1e-6)
        assert ned.price[0] == pytest.approx(50, abs=1e-6)
        ned.validate()


# =============================================================================
# Storage Tests (solver)
# =============================================================================

class TestStorageDispatch:
    """Test storage bidding its value function."""

    def test_arbitrage(self, backend, two_unit_snapshot, two_unit_uc, storage):
        """Charge 10 MW off-peak, deliver 16.2 MWh across the peaks."""
        vf = build_value_function(two_unit_uc.price, storage)
        sed = RealTimeClearing(window=4, backend=backend).clear(
            two_unit_uc, two_unit_snapshot, storage, vf
        )
        assert sed.label == 'S-ED'
        # With look-ahead the split of discharge between the peaks is a tie
        np.testing.assert_allclose(sed.charge, [10, 0, 10, 0], atol=1e-6)
        np.testing.assert_allclose(sed.discharge[[0, 2]], 0.0, atol=1e-6)
        assert sed.discharge.sum() == pytest.approx(16.2, abs=1e-5)
        assert sed.soc[-1] == pytest.approx(0.0, abs=1e-6)
        assert (sed.soc >= -1e-9).all() and (sed.soc <= 1 + 1e-9).all()
        np.testing.assert_allclose(sed.price, [20, 50, 20, 50], atol=1e-6)
        assert (sed.storage_net[[1, 3]] > 0).all()
        assert sed.storage_profit() == pytest.approx(2 * (50 * 8.1 - 20 * 10), abs=1e-4)
        sed.validate()

    def test_single_period_window(self, backend, two_unit_snapshot, two_unit_uc, storage):
        """With no look-ahead the value function alone drives the bids."""
        vf = build_value_function(two_unit_uc.price, storage)
        sed = RealTimeClearing(window=1, backend=backend).clear(
            two_unit_uc, two_unit_snapshot, storage, vf
        )
        np.testing.assert_allclose(sed.charge, [10, 0, 10, 0], atol=1e-6)
        np.testing.assert_allclose(sed.discharge, [0, 8.1, 0, 8.1], atol=1e-6)
        sed.validate()

    def test_soc_bounds_and_balance(self, backend, storage):
        """SoC stays in [0, 1] and balance holds over a 24-period day."""
        hours = np.arange(24)
        demand = 120 + 60 * np.sin(2 * np.pi * (hours - 8) / 24)
        snap = SystemSnapshot(
            generators=(
                Generator('BASE', p_max=120, marginal_cost=15, ramp_up=40, ramp_down=40),
                Generator('MID', p_max=60, marginal_cost=35),
                Generator('PEAK', p_max=60, marginal_cost=80),
            ),
            demand=demand,
            wind_forecast=20 + 10 * np.cos(2 * np.pi * hours / 24),
            wind_realization=25 + 10 * np.cos(2 * np.pi * hours / 24),
        )
        uc = DayAheadClearing(backend).clear(snap)
        vf = build_value_function(uc.price, storage)
        sed = RealTimeClearing(backend=backend).clear(uc, snap, storage, vf)
        assert (sed.soc >= -1e-9).all() and (sed.soc <= 1 + 1e-9).all()
        assert (sed.charge <= storage.power + 1e-6).all()
        assert (sed.discharge <= storage.power + 1e-6).all()
        np.testing.assert_allclose(sed.balance_residual(), 0.0, atol=1e-5)

    def test_idempotent(self, backend, two_unit_snapshot, two_unit_uc, storage):
        vf = build_value_function(two_unit_uc.price, storage)
        rt = RealTimeClearing(backend=backend)
        a = rt.clear(two_unit_uc, two_unit_snapshot, storage, vf)
        b = rt.clear(two_unit_uc, two_unit_snapshot, storage, vf)
        np.testing.assert_array_equal(a.price, b.price)
        np.testing.assert_array_equal(a.charge, b.charge)
        np.testing.assert_array_equal(a.discharge, b.discharge)


class TestDayAheadCoupling:
    """Test the DA+RT modes."""

    def test_schedule_followed(self, backend, two_unit_snapshot, storage):
        """Net storage output equals the day-ahead schedule."""
        da = DayAheadClearing(backend).clear(two_unit_snapshot, storage)
        dart = RealTimeClearing(backend=backend).clear(
            da, two_unit_snapshot, storage, mode='schedule'
        )
        assert dart.label == 'DA+RT'
        np.testing.assert_allclose(dart.storage_net, da.storage_net, atol=1e-6)
        np.testing.assert_allclose(dart.soc, da.soc, atol=1e-6)
        np.testing.assert_allclose(
            dart.metadata['day_ahead_schedule'], da.storage_net, atol=1e-9
        )
        dart.validate()

    def test_explicit_schedule(self, backend, two_unit_snapshot, two_unit_uc, storage):
        """A schedule can be passed directly."""
        schedule = [-10, 8.1, 0, 0]
        dart = RealTimeClearing(backend=backend).clear(
            two_unit_uc, two_unit_snapshot, storage, schedule=schedule, mode='schedule'
        )
        np.testing.assert_allclose(dart.storage_net, schedule, atol=1e-6)
        np.testing.assert_allclose(dart.charge, [10, 0, 0, 0], atol=1e-6)
        np.testing.assert_allclose(dart.discharge, [0, 8.1, 0, 0], atol=1e-6)
        np.testing.assert_allclose(dart.soc, [0, 0.225, 0, 0, 0], atol=1e-6)
        dart.validate()

    def test_rebid(self, backend, two_unit_snapshot, storage):
        """Bid mode re-optimises against the re-derived value function."""
        da = DayAheadClearing(backend).clear(two_unit_snapshot, storage)
        vf = build_value_function(da.price, storage)
        dart = RealTimeClearing(backend=backend).clear(
            da, two_unit_snapshot, storage, vf, mode='bid'
        )
        assert dart.label == 'DA+RT'
        assert dart.metadata['mode'] == 'bid'
        assert 'day_ahead_schedule' in dart.metadata
        np.testing.assert_allclose(dart.charge, [10, 0, 10, 0], atol=1e-6)
        dart.validate()

    @pytest.mark.parametrize("window", [1, 4])
    def test_schedule_emptied_to_zero(self, backend, two_unit_snapshot, window):
        """A lossy unit following a schedule that empties it stays on the day-ahead SoC path."""
        unit = StorageSpec.from_rating(5, efficiency=0.9, degradation_cost=0)
        da = DayAheadClearing(backend).clear(two_unit_snapshot, unit)
        assert da.soc[-1] == pytest.approx(0.0, abs=1e-6)
        dart = RealTimeClearing(window=window, backend=backend).clear(
            da, two_unit_snapshot, unit, mode='schedule'
        )
        np.testing.assert_allclose(dart.charge, da.charge, atol=1e-6)
        np.testing.assert_allclose(dart.discharge, da.discharge, atol=1e-6)
        np.testing.assert_allclose(dart.soc, da.soc, atol=1e-6)
        assert (dart.soc >= -1e-9).all()
        dart.validate()


class TestFlatPriceDay:
    """One 100 MW unit at 20, demand [60, 90, 60, 90], 10 MW / 40 MWh storage."""

    def test_value_function_rows(self, storage):
        """Buying at 20 is never recovered at 20 after losses."""
        vf = build_value_function([20, 20, 20, 20], storage)
        assert vf.marginal.shape == (5, 21)
        np.testing.assert_array_equal(vf.marginal[4], 0.0)
        # Only energy within one full-power discharge of empty is worth 20 * 0.9
        np.testing.assert_allclose(vf.marginal[3], [18] * 6 + [0] * 15, atol=1e-9)
        assert vf.marginal.max() <= 18 + 1e-9
        assert (vf.marginal >= 0).all()
        assert (np.diff(vf.marginal, axis=1) <= 1e-9).all()
        _, charge, _ = vf.simulate(0.0)
        np.testing.assert_allclose(charge, 0.0, atol=1e-12)

    def test_storage_dispatch(self, backend, single_unit_snapshot, storage):
        """Storage leaves the flat price alone and never charges at the peaks."""
        uc = DayAheadClearing(backend).clear(single_unit_snapshot)
        vf = build_value_function(uc.price, storage)
        sed = RealTimeClearing(window=4, backend=backend).clear(
            uc, single_unit_snapshot, storage, vf
        )
        np.testing.assert_allclose(sed.price, 20.0, atol=1e-6)
        assert (sed.storage_net[[1, 3]] >= -1e-6).all()
        np.testing.assert_allclose(sed.charge, 0.0, atol=1e-6)
        np.testing.assert_allclose(sed.dispatch[0], [60, 90, 60, 90], atol=1e-6)
        sed.validate()
