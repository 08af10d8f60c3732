# esmarket/interfaces/loader.py

"""
System data loading and per-scenario snapshot preparation.

A system directory holds two CSV files:

- ``generators.csv``: one row per thermal unit. Required columns NAME, P_MAX
  and COST; optional P_MIN, RAMP_UP, RAMP_DOWN, MIN_UP, MIN_DOWN,
  STARTUP_COST, INITIAL_STATUS.
- ``profiles.csv``: long-format trajectories with columns PERIOD, SCENARIO,
  DEMAND (MW) and WIND (capacity factor in [0, 1]).

Example
-------
>>> data = SystemData.from_directory('data/example')
>>> snap = data.snapshot(scenario=1, wind_capacity=500, wind_error=0.2, seed=7)
>>> snap.horizon
24
"""

import logging
import math
import numpy as np
import pandas as pd
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple, Union

from ..constants import DEFAULT_STEP_HOURS
from ..errors import ConfigurationError
from .system import Generator, SystemSnapshot

logger = logging.getLogger(__name__)

GENERATOR_FILE = 'generators.csv'
PROFILE_FILE = 'profiles.csv'

GENERATOR_COLUMNS = {
    'NAME': 'name',
    'P_MAX': 'p_max',
    'P_MIN': 'p_min',
    'COST': 'marginal_cost',
    'RAMP_UP': 'ramp_up',
    'RAMP_DOWN': 'ramp_down',
    'MIN_UP': 'min_up',
    'MIN_DOWN': 'min_down',
    'STARTUP_COST': 'startup_cost',
    'INITIAL_STATUS': 'initial_status',
}
PROFILE_COLUMNS = ['PERIOD', 'SCENARIO', 'DEMAND', 'WIND']


def _require_columns(df: pd.DataFrame, columns, source: str) -> None:
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise ConfigurationError(f"{source} is missing columns {missing}")


def generators_from_frame(df: pd.DataFrame) -> Tuple[Generator, ...]:
    """
    Build generators from a table with upper-case column names.

    Empty optional cells fall back to the Generator defaults.
    """
    _require_columns(df, ['NAME', 'P_MAX', 'COST'], GENERATOR_FILE)
    units = []
    for _, row in df.iterrows():
        kwargs = {}
        for column, attr in GENERATOR_COLUMNS.items():
            if column not in df.columns or pd.isna(row[column]):
                continue
            val = row[column]
            if attr == 'name':
                val = str(val)
            elif attr in ('min_up', 'min_down'):
                val = int(val)
            elif attr == 'initial_status':
                val = bool(int(val))
            else:
                val = float(val)
            kwargs[attr] = val
        units.append(Generator(**kwargs))
    return tuple(units)


@dataclass(frozen=True, eq=False)
class SystemData:
    """
    Generator fleet and demand/wind profiles for every scenario.

    Attributes
    ----------
    generators : tuple of Generator
        Thermal fleet shared by all scenarios.
    profiles : pd.DataFrame
        Columns PERIOD, SCENARIO, DEMAND, WIND (wind capacity factor).
    step_hours : float
        Period length (hours).
    """
    generators: Tuple[Generator, ...]
    profiles: pd.DataFrame
    step_hours: float = DEFAULT_STEP_HOURS

    def __post_init__(self):
        object.__setattr__(self, 'generators', tuple(self.generators))
        self.validate()

    def validate(self) -> None:
        """
        Raises
        ------
        ConfigurationError
            If profile columns are missing, wind factors leave [0, 1], or a
            scenario has missing or duplicate periods.
        """
        _require_columns(self.profiles, PROFILE_COLUMNS, PROFILE_FILE)
        if not self.generators:
            raise ConfigurationError("System data has no generators")
        wind = self.profiles['WIND']
        if (wind < 0).any() or (wind > 1).any():
            raise ConfigurationError("WIND capacity factors must lie in [0, 1]")
        for scenario, group in self.profiles.groupby('SCENARIO'):
            periods = np.sort(group['PERIOD'].to_numpy())
            if not np.array_equal(periods, np.arange(len(periods))):
                raise ConfigurationError(
                    f"Scenario {scenario} periods must be 0..T-1 without gaps",
                    scenario=scenario,
                )

    @classmethod
    def from_directory(cls, path: Union[str, Path], step_hours: float = DEFAULT_STEP_HOURS
                       ) -> 'SystemData':
        """
        Load ``generators.csv`` and ``profiles.csv`` from a directory.

        Raises
        ------
        FileNotFoundError
            If the directory or either file is missing.
        ConfigurationError
            If the tables fail validation.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"System data directory not found: {path}")
        for name in (GENERATOR_FILE, PROFILE_FILE):
            if not (path / name).exists():
                raise FileNotFoundError(f"Required file missing: {path / name}")

        generators = generators_from_frame(pd.read_csv(path / GENERATOR_FILE))
        profiles = pd.read_csv(path / PROFILE_FILE)
        logger.info(
            f"Loaded {len(generators)} generators and "
            f"{profiles['SCENARIO'].nunique()} scenarios from {path}"
        )
        return cls(generators=generators, profiles=profiles, step_hours=step_hours)

    @property
    def scenarios(self) -> List[int]:
        return sorted(int(s) for s in self.profiles['SCENARIO'].unique())

    def profile(self, scenario: int) -> pd.DataFrame:
        """Rows of one scenario ordered by period."""
        rows = self.profiles[self.profiles['SCENARIO'] == scenario]
        if rows.empty:
            raise ConfigurationError(
                f"Unknown scenario {scenario}; available {self.scenarios}",
                scenario=scenario,
            )
        return rows.sort_values('PERIOD').reset_index(drop=True)

    def snapshot(
        self,
        scenario: int,
        wind_capacity: float,
        wind_error: float = 0.0,
        seed: Optional[int] = None,
        reserve_factor: float = 0.0,
    ) -> SystemSnapshot:
        """
        Prepare the clearing inputs for one scenario.

        The forecast is the capacity factor profile scaled to
        ``wind_capacity``. The realization multiplies the forecast by
        ``1 + wind_error * z`` with z standard normal, clipped to
        [0, wind_capacity]. The day-ahead reserve requirement is
        ``reserve_factor`` times the wind forecast.

        Parameters
        ----------
        scenario : int
            Demand scenario identifier.
        wind_capacity : float
            Installed wind capacity (MW).
        wind_error : float
            Relative standard deviation of the real-time wind error.
        seed : int, optional
            Seed of the error draw; equal seeds give equal realizations.
        reserve_factor : float
            Spinning reserve held against the wind forecast (MW per MW).

        Returns
        -------
        SystemSnapshot
        """
        if wind_capacity < 0 or not math.isfinite(wind_capacity):
            raise ConfigurationError(
                f"wind_capacity must be finite and non-negative, got {wind_capacity}"
            )
        if wind_error < 0:
            raise ConfigurationError(f"wind_error must be non-negative, got {wind_error}")
        if reserve_factor < 0:
            raise ConfigurationError(
                f"reserve_factor must be non-negative, got {reserve_factor}"
            )

        rows = self.profile(scenario)
        forecast = rows['WIND'].to_numpy(dtype=float) * wind_capacity
        if wind_error > 0:
            rng = np.random.default_rng(seed)
            noise = rng.standard_normal(len(forecast))
            realization = np.clip(forecast * (1.0 + wind_error * noise), 0.0, wind_capacity)
        else:
            realization = forecast.copy()

        return SystemSnapshot(
            generators=self.generators,
            demand=rows['DEMAND'].to_numpy(dtype=float),
            wind_forecast=forecast,
            wind_realization=realization,
            reserve=reserve_factor * forecast,
            step_hours=self.step_hours,
            metadata={
                'scenario': scenario,
                'wind_capacity': wind_capacity,
                'wind_error': wind_error,
                'seed': seed,
                'reserve_factor': reserve_factor,
            },
        )
