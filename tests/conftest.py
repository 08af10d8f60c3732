# tests/conftest.py

"""
Shared fixtures for esmarket tests.

Provides:
- Small single-bus systems with known clearing prices
- Storage units with round-number ratings
- A system data directory (generators.csv, profiles.csv)
- A solver backend fixture that skips when HiGHS is not installed
"""

import pytest
import pandas as pd

from esmarket.interfaces import Generator, SystemSnapshot, StorageSpec
from esmarket.clearing import PyomoBackend


# =============================================================================
# Solver
# =============================================================================

@pytest.fixture(scope="session")
def backend():
    """HiGHS backend; tests using it are skipped when it is unavailable."""
    backend = PyomoBackend()
    if not backend.available():
        pytest.skip("HiGHS solver backend not available")
    return backend


# =============================================================================
# System Fixtures
# =============================================================================

@pytest.fixture
def single_unit_snapshot():
    """
    One 100 MW unit at 20 $/MWh, demand [60, 90, 60, 90], no wind.

    Every period clears at 20 without storage.
    """
    return SystemSnapshot(
        generators=(Generator('G1', p_max=100, marginal_cost=20),),
        demand=[60, 90, 60, 90],
        wind_forecast=[0, 0, 0, 0],
    )


@pytest.fixture
def two_unit_snapshot():
    """
    80 MW base unit at 20 and 100 MW peaker at 50, demand [60, 120, 60, 120].

    Prices alternate 20 / 50 without storage.
    """
    return SystemSnapshot(
        generators=(
            Generator('BASE', p_max=80, marginal_cost=20),
            Generator('PEAKER', p_max=100, marginal_cost=50),
        ),
        demand=[60, 120, 60, 120],
        wind_forecast=[0, 0, 0, 0],
    )


@pytest.fixture
def storage():
    """10 MW / 40 MWh, 90% one-way efficiency, no degradation cost."""
    return StorageSpec(
        power=10, duration=4, efficiency=0.9,
        degradation_cost=0, soc_resolution=0.05,
    )


# =============================================================================
# Directory Fixtures
# =============================================================================

@pytest.fixture
def system_dir(tmp_path):
    """
    System data directory with the two-unit fleet and two scenarios.

    Scenario 1: demand [60, 120, 60, 120]; scenario 2: demand [70, 110, 70, 110].
    Wind capacity factor 0.1 in every period.
    """
    system = tmp_path / "system"
    system.mkdir()
    pd.DataFrame({
        'NAME': ['BASE', 'PEAKER'],
        'P_MAX': [80, 100],
        'COST': [20, 50],
    }).to_csv(system / "generators.csv", index=False)
    rows = []
    for scenario, demand in ((1, [60, 120, 60, 120]), (2, [70, 110, 70, 110])):
        for period, load in enumerate(demand):
            rows.append({'PERIOD': period, 'SCENARIO': scenario, 'DEMAND': load, 'WIND': 0.1})
    pd.DataFrame(rows).to_csv(system / "profiles.csv", index=False)
    return system
