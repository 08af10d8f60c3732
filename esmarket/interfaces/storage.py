# esmarket/interfaces/storage.py

"""
Energy storage parameters shared by the bid generator and both clearing
stages.
"""

import math
import numpy as np
from dataclasses import dataclass
from typing import Optional

from ..constants import (
    TOL,
    DEFAULT_EFFICIENCY,
    DEFAULT_DEGRADATION_COST,
    DEFAULT_POWER_RATIO,
    DEFAULT_SOC_RESOLUTION,
    DEFAULT_STEP_HOURS,
)
from ..errors import ConfigurationError


@dataclass(frozen=True)
class StorageSpec:
    """
    Grid-scale storage unit.

    Attributes
    ----------
    power : float
        Power rating P (MW), same for charge and discharge. Zero means the
        unit is absent.
    duration : float
        Hours at full power; the energy rating is ``power * duration``.
    efficiency : float
        One-way efficiency in (0, 1]. Charging 1 MWh stores ``efficiency``
        MWh, delivering 1 MWh withdraws ``1 / efficiency`` MWh.
    degradation_cost : float
        Marginal cost per MWh discharged ($/MWh).
    soc_resolution : float
        SoC grid step ed in (0, 1] used by the value function.
    terminal_soc : float, optional
        End-of-horizon SoC target ef; None or 0 for no target.
    initial_soc : float
        SoC at the start of the horizon, in [0, 1].

    Notes
    -----
    SoC is normalised to the energy rating, so all SoC values lie in [0, 1].
    """
    power: float
    duration: float = 1.0 / DEFAULT_POWER_RATIO
    efficiency: float = DEFAULT_EFFICIENCY
    degradation_cost: float = DEFAULT_DEGRADATION_COST
    soc_resolution: float = DEFAULT_SOC_RESOLUTION
    terminal_soc: Optional[float] = None
    initial_soc: float = 0.0

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """
        Raises
        ------
        ConfigurationError
            If ratings, efficiency, cost or SoC settings are out of range.
        """
        if self.power < 0:
            raise ConfigurationError(f"Storage power must be non-negative, got {self.power}")
        if self.power > 0 and not self.duration > 0:
            raise ConfigurationError(
                f"Storage duration must be positive, got {self.duration}"
            )
        if not 0 < self.efficiency <= 1:
            raise ConfigurationError(
                f"Storage efficiency must be in (0, 1], got {self.efficiency}"
            )
        if self.degradation_cost < 0:
            raise ConfigurationError(
                f"Degradation cost must be non-negative, got {self.degradation_cost}"
            )
        if not 0 < self.soc_resolution <= 1:
            raise ConfigurationError(
                f"SoC resolution must be in (0, 1], got {self.soc_resolution}"
            )
        if self.terminal_soc is not None and not 0 <= self.terminal_soc <= 1:
            raise ConfigurationError(
                f"Terminal SoC must be in [0, 1], got {self.terminal_soc}"
            )
        if not 0 <= self.initial_soc <= 1:
            raise ConfigurationError(
                f"Initial SoC must be in [0, 1], got {self.initial_soc}"
            )

    @classmethod
    def from_rating(
        cls,
        power: float,
        power_ratio: float = DEFAULT_POWER_RATIO,
        step_hours: float = DEFAULT_STEP_HOURS,
        **kwargs,
    ) -> 'StorageSpec':
        """
        Build a unit from its power rating and normalised power ratio.

        ``power_ratio`` is the fraction of the energy rating that can be
        moved in one period, so the duration is ``step_hours / power_ratio``
        (0.25 with hourly steps gives a 4-hour unit).
        """
        if not power_ratio > 0:
            raise ConfigurationError(f"power_ratio must be positive, got {power_ratio}")
        return cls(power=power, duration=step_hours / power_ratio, **kwargs)

    @property
    def active(self) -> bool:
        """False for the zero-rating unit used by the no-storage baseline."""
        return self.power > 0

    @property
    def energy(self) -> float:
        """Energy rating (MWh)."""
        return self.power * self.duration if self.active else 0.0

    @property
    def n_samples(self) -> int:
        """Number of SoC samples, floor(1/ed) + 1."""
        return int(math.floor(1.0 / self.soc_resolution + TOL)) + 1

    @property
    def soc_grid(self) -> np.ndarray:
        """Evenly spaced SoC samples on [0, 1], both bounds included."""
        return np.linspace(0.0, 1.0, self.n_samples)

    @property
    def terminal_target(self) -> float:
        """Terminal SoC target, 0 when unconstrained."""
        return self.terminal_soc or 0.0

    def normalized_power(self, step_hours: float = DEFAULT_STEP_HOURS) -> float:
        """SoC moved by one period at full power."""
        if not self.active:
            return 0.0
        return self.power * step_hours / self.energy
