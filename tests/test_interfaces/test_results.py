# tests/test_interfaces/test_results.py

"""
Tests for ClearingResult and IterationRecord.

Results are built by hand here; solver-backed results are checked in
tests/test_clearing.
"""

import numpy as np
import pytest

from esmarket.interfaces import ClearingResult, IterationRecord, records_to_frame


# =============================================================================
# Fixtures
# =============================================================================

def make_result(label='S-ED', **overrides):
    """Two periods, one generator, storage charging then discharging."""
    kwargs = dict(
        stage='real_time',
        label=label,
        generator_names=('G1',),
        dispatch=[[70, 80]],
        commitment=[[1, 1]],
        startup=[[0, 0]],
        price=[20, 50],
        demand=[70, 100],
        wind=[10, 10],
        wind_dispatch=[10, 10],
        charge=[10, 0],
        discharge=[0, 10],
        soc=[0.0, 0.225, 0.0],
        generation_cost=5400,
    )
    kwargs.update(overrides)
    return ClearingResult(**kwargs)


class _Point:
    def as_dict(self):
        return {'SCENARIO': 1, 'STORAGE_POWER': 10.0}


# =============================================================================
# ClearingResult Tests
# =============================================================================

class TestClearingResult:
    """Test derived quantities and validation."""

    def test_storage_net(self):
        np.testing.assert_array_equal(make_result().storage_net, [-10, 10])

    def test_balance_residual(self):
        """Generation + wind + net storage equals demand."""
        np.testing.assert_allclose(make_result().balance_residual(), 0.0)
        make_result().validate()

    def test_curtailment(self):
        result = make_result(wind=[15, 10])
        np.testing.assert_array_equal(result.curtailment, [5, 0])

    def test_storage_profit(self):
        """Revenue at clearing prices minus discharge cost."""
        result = make_result()
        assert result.storage_profit() == pytest.approx(-200 + 500)
        assert result.storage_profit(degradation_cost=5) == pytest.approx(300 - 50)

    def test_no_storage(self):
        """Without storage the net is zero and profit is zero."""
        result = make_result(
            label='N-ED', dispatch=[[60, 90]], charge=None, discharge=None, soc=None
        )
        assert not result.has_storage
        np.testing.assert_array_equal(result.storage_net, [0, 0])
        assert result.storage_profit() == 0.0
        result.validate()

    def test_validate_balance(self):
        """A balance violation names the period."""
        with pytest.raises(ValueError, match="period 1"):
            make_result(dispatch=[[70, 70]]).validate()

    def test_validate_soc(self):
        with pytest.raises(ValueError, match="SoC"):
            make_result(soc=[0.0, 1.2, 0.0]).validate()

    def test_validate_shape(self):
        with pytest.raises(ValueError):
            make_result(commitment=[[1, 1, 1]]).validate()

    def test_arrays_read_only(self):
        result = make_result()
        with pytest.raises(ValueError):
            result.price[0] = 0

    def test_to_frame(self):
        """One row per period with end-of-period SoC."""
        df = make_result().to_frame()
        assert len(df) == 2
        assert df['SOC'].tolist() == [0.225, 0.0]
        assert df['GENERATION'].tolist() == [70, 80]

    def test_dispatch_frame(self):
        df = make_result().dispatch_frame()
        assert df.loc['G1', 1] == 80

    def test_summary(self):
        summary = make_result().summary()
        assert summary['MEAN_PRICE'] == pytest.approx(35)
        assert summary['STORAGE_THROUGHPUT'] == pytest.approx(10)


# =============================================================================
# IterationRecord Tests
# =============================================================================

class TestIterationRecord:
    """Test record flattening."""

    def test_summary_row(self):
        """Point fields come first, then one block per result."""
        record = IterationRecord(
            point=_Point(),
            uc=make_result('UC', stage='day_ahead', charge=None, discharge=None,
                           soc=None, dispatch=[[60, 90]]),
            value_function=None,
            storage_dispatch=make_result('S-ED'),
            baseline=make_result('N-ED', charge=None, discharge=None, soc=None,
                                 dispatch=[[60, 90]]),
        )
        row = record.summary()
        assert row['SCENARIO'] == 1
        assert set(record.results) == {'UC', 'S-ED', 'N-ED'}
        assert row['S-ED_STORAGE_PROFIT'] == pytest.approx(300)
        assert 'N-ED_STORAGE_PROFIT' not in row

        df = records_to_frame([record, record])
        assert len(df) == 2
        assert 'UC_MEAN_PRICE' in df.columns
