# tests/test_interfaces/test_storage.py

"""
Tests for StorageSpec.
"""

import numpy as np
import pytest

from esmarket.errors import ConfigurationError
from esmarket.interfaces import StorageSpec


class TestStorageSpec:
    """Test StorageSpec ratings and SoC grid."""

    def test_energy_and_power(self, storage):
        """10 MW for 4 hours is 40 MWh, a quarter of it per hour."""
        assert storage.energy == 40
        assert storage.normalized_power(1.0) == pytest.approx(0.25)
        assert storage.normalized_power(0.5) == pytest.approx(0.125)

    def test_from_rating(self):
        """Power ratio 0.25 with hourly steps gives a 4-hour unit."""
        unit = StorageSpec.from_rating(20, power_ratio=0.25)
        assert unit.duration == pytest.approx(4.0)
        assert unit.energy == pytest.approx(80.0)

    def test_grid(self, storage):
        """ed = 0.05 gives 21 samples including both bounds."""
        assert storage.n_samples == 21
        grid = storage.soc_grid
        assert grid[0] == 0.0 and grid[-1] == 1.0
        np.testing.assert_allclose(np.diff(grid), 0.05)

    def test_unit_resolution(self):
        """ed = 1 gives the two-sample grid [0, 1]."""
        unit = StorageSpec(power=1, soc_resolution=1.0)
        assert unit.n_samples == 2
        np.testing.assert_array_equal(unit.soc_grid, [0.0, 1.0])

    def test_default_resolution(self):
        """ed = 0.01 gives 101 samples."""
        assert StorageSpec(power=1).n_samples == 101

    def test_zero_power_is_inactive(self):
        """A zero rating is the no-storage baseline."""
        unit = StorageSpec(power=0)
        assert not unit.active
        assert unit.energy == 0.0
        assert unit.normalized_power() == 0.0

    def test_terminal_target(self, storage):
        """No target reads as zero."""
        assert storage.terminal_target == 0.0
        assert StorageSpec(power=1, terminal_soc=0.5).terminal_target == 0.5

    @pytest.mark.parametrize("kwargs", [
        {'power': -1},
        {'power': 1, 'duration': 0},
        {'power': 1, 'efficiency': 0},
        {'power': 1, 'efficiency': 1.1},
        {'power': 1, 'degradation_cost': -1},
        {'power': 1, 'soc_resolution': 0},
        {'power': 1, 'soc_resolution': 1.5},
        {'power': 1, 'terminal_soc': 1.2},
        {'power': 1, 'initial_soc': -0.1},
    ])
    def test_invalid(self, kwargs):
        """Out-of-range parameters raise ConfigurationError."""
        with pytest.raises(ConfigurationError):
            StorageSpec(**kwargs)

    def test_invalid_power_ratio(self):
        with pytest.raises(ConfigurationError):
            StorageSpec.from_rating(10, power_ratio=0)
