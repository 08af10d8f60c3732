# esmarket/interfaces/system.py

"""
Single-bus power system inputs for market clearing.

This module defines the immutable containers consumed by the day-ahead and
real-time clearing problems:

- Generator: one thermal unit with cost, ramp and commitment parameters
- SystemSnapshot: generators plus demand and wind trajectories for one
  scenario

Design principles:
- Immutable after construction (frozen dataclass, read-only arrays)
- Validation runs automatically in __post_init__
- Invalid inputs raise ConfigurationError before any solve is attempted
"""

import math
import numpy as np
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..constants import DEFAULT_STEP_HOURS
from ..errors import ConfigurationError


def _frozen_array(values, name: str) -> np.ndarray:
    """Copy values into a read-only 1-D float array."""
    arr = np.array(values, dtype=float).reshape(-1)
    if not np.all(np.isfinite(arr)):
        raise ConfigurationError(f"{name} contains non-finite values")
    arr.flags.writeable = False
    return arr


@dataclass(frozen=True)
class Generator:
    """
    Thermal generating unit.

    Attributes
    ----------
    name : str
        Unique unit name.
    p_max : float
        Maximum output (MW).
    p_min : float
        Minimum stable output when committed (MW).
    marginal_cost : float
        Energy offer price ($/MWh).
    ramp_up : float
        Maximum increase in output between consecutive periods (MW).
    ramp_down : float
        Maximum decrease in output between consecutive periods (MW).
    min_up : int
        Minimum number of periods online after a startup.
    min_down : int
        Minimum number of periods offline after a shutdown.
    startup_cost : float
        Cost per startup ($).
    initial_status : bool
        Whether the unit is online before the first period.
    """
    name: str
    p_max: float
    p_min: float = 0.0
    marginal_cost: float = 0.0
    ramp_up: float = math.inf
    ramp_down: float = math.inf
    min_up: int = 1
    min_down: int = 1
    startup_cost: float = 0.0
    initial_status: bool = True

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """
        Check capacity, ramp and commitment parameters.

        Raises
        ------
        ConfigurationError
            If any parameter is out of range.
        """
        if not self.name:
            raise ConfigurationError("Generator name must not be empty")
        if not self.p_max > 0:
            raise ConfigurationError(
                f"Generator '{self.name}' must have p_max > 0, got {self.p_max}"
            )
        if not 0 <= self.p_min <= self.p_max:
            raise ConfigurationError(
                f"Generator '{self.name}' must have 0 <= p_min <= p_max, "
                f"got p_min={self.p_min}, p_max={self.p_max}"
            )
        if self.ramp_up <= 0 or self.ramp_down <= 0:
            raise ConfigurationError(
                f"Generator '{self.name}' ramp limits must be positive"
            )
        if int(self.min_up) < 1 or int(self.min_down) < 1:
            raise ConfigurationError(
                f"Generator '{self.name}' min_up/min_down must be >= 1"
            )
        if self.startup_cost < 0:
            raise ConfigurationError(
                f"Generator '{self.name}' startup_cost must be non-negative"
            )


@dataclass(frozen=True, eq=False)
class SystemSnapshot:
    """
    Immutable per-scenario input to the clearing problems.

    Attributes
    ----------
    generators : tuple of Generator
        Thermal units on the single bus.
    demand : np.ndarray
        Demand per period (MW), length T.
    wind_forecast : np.ndarray
        Day-ahead wind forecast per period (MW), length T.
    wind_realization : np.ndarray
        Real-time wind availability per period (MW), length T. Defaults to
        the forecast when not given.
    reserve : np.ndarray
        Spinning reserve the day-ahead commitment must hold above the
        scheduled dispatch (MW), length T. Defaults to zero.
    step_hours : float
        Length of one period (hours).
    metadata : dict
        Scenario tags (scenario index, wind capacity, wind error, seed ...).

    Examples
    --------
    >>> snap = SystemSnapshot(
    ...     generators=(Generator('G1', p_max=100, marginal_cost=20),),
    ...     demand=[60, 90, 60, 90],
    ...     wind_forecast=[0, 0, 0, 0],
    ... )
    >>> snap.horizon
    4
    """
    generators: Tuple[Generator, ...]
    demand: np.ndarray
    wind_forecast: np.ndarray
    wind_realization: Optional[np.ndarray] = None
    reserve: Optional[np.ndarray] = None
    step_hours: float = DEFAULT_STEP_HOURS
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False)

    def __post_init__(self):
        object.__setattr__(self, 'generators', tuple(self.generators))
        object.__setattr__(self, 'demand', _frozen_array(self.demand, 'demand'))
        object.__setattr__(
            self, 'wind_forecast', _frozen_array(self.wind_forecast, 'wind_forecast')
        )
        realization = (
            self.wind_forecast if self.wind_realization is None
            else self.wind_realization
        )
        object.__setattr__(
            self, 'wind_realization', _frozen_array(realization, 'wind_realization')
        )
        reserve = np.zeros(len(self.demand)) if self.reserve is None else self.reserve
        object.__setattr__(self, 'reserve', _frozen_array(reserve, 'reserve'))
        self.validate()

    def validate(self) -> None:
        """
        Validate horizon, step size and trajectory consistency.

        Raises
        ------
        ConfigurationError
            If the horizon is empty, trajectories differ in length, values
            are negative, the step size is not positive, or generator names
            are duplicated.
        """
        if not self.step_hours > 0:
            raise ConfigurationError(
                f"step_hours must be positive, got {self.step_hours}"
            )
        if self.horizon < 1:
            raise ConfigurationError("Horizon must contain at least one period")
        for name in ('wind_forecast', 'wind_realization', 'reserve'):
            if len(getattr(self, name)) != self.horizon:
                raise ConfigurationError(
                    f"{name} has {len(getattr(self, name))} periods, "
                    f"demand has {self.horizon}"
                )
        for name in ('demand', 'wind_forecast', 'wind_realization', 'reserve'):
            if (getattr(self, name) < 0).any():
                raise ConfigurationError(f"{name} must be non-negative")
        if not self.generators:
            raise ConfigurationError("At least one generator is required")
        names = self.generator_names
        if len(set(names)) != len(names):
            raise ConfigurationError(f"Duplicate generator names in {names}")

    @property
    def horizon(self) -> int:
        """Number of periods T."""
        return len(self.demand)

    @property
    def generator_names(self) -> List[str]:
        return [g.name for g in self.generators]
