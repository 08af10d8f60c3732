# esmarket/interfaces/results.py

"""
Immutable containers for clearing outcomes.

Design mirrors the input side:

    SystemSnapshot / StorageSpec  (immutable inputs)
              ↓
    ClearingResult                (immutable output of one clearing pass)
              ↓
    IterationRecord               (all passes for one sweep point)

Arrays are copied and made read-only on construction, and shared between the
pipeline and reporting code.
"""

import numpy as np
import pandas as pd
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence, Tuple, TYPE_CHECKING

from ..constants import SOLVER_TOL, DEFAULT_STEP_HOURS

if TYPE_CHECKING:
    from ..bidding.value_function import ValueFunction


def _frozen(values, ndim: int = 1) -> np.ndarray:
    arr = np.array(values, dtype=float)
    if ndim == 2:
        arr = np.atleast_2d(arr)
    arr.flags.writeable = False
    return arr


# ------------------------------------------------------------------
# ClearingResult
# ------------------------------------------------------------------

@dataclass(frozen=True, eq=False)
class ClearingResult:
    """
    Outcome of one day-ahead or real-time clearing pass.

    Attributes
    ----------
    stage : str
        ``'day_ahead'`` or ``'real_time'``.
    label : str
        Case name, e.g. ``'UC'``, ``'DA'``, ``'S-ED'``, ``'N-ED'``,
        ``'DA+RT'``.
    generator_names : tuple of str
        Row order of the generator arrays.
    dispatch : np.ndarray
        Generator output (MW), shape (G, T).
    commitment : np.ndarray
        Online status (0/1), shape (G, T).
    startup : np.ndarray
        Startup indicators (0/1), shape (G, T).
    price : np.ndarray
        Clearing price per period ($/MWh), the dual of the period's power
        balance.
    demand : np.ndarray
        Demand per period (MW).
    wind : np.ndarray
        Wind available per period (MW): forecast day-ahead, realization
        in real time.
    wind_dispatch : np.ndarray
        Wind used per period (MW); the rest is curtailed.
    charge, discharge : np.ndarray, optional
        Storage grid-side charge and discharge (MW) per period.
    soc : np.ndarray, optional
        Storage SoC at the start of each period plus the end state,
        length T + 1.
    objective : float
        Objective value of the clearing problem(s).
    generation_cost : float
        Thermal energy plus startup cost ($).
    step_hours : float
        Period length (hours).
    metadata : dict
        Mode, rating and any case-specific extras.
    """
    stage: str
    label: str
    generator_names: Tuple[str, ...]
    dispatch: np.ndarray
    commitment: np.ndarray
    startup: np.ndarray
    price: np.ndarray
    demand: np.ndarray
    wind: np.ndarray
    wind_dispatch: np.ndarray
    charge: Optional[np.ndarray] = None
    discharge: Optional[np.ndarray] = None
    soc: Optional[np.ndarray] = None
    objective: float = 0.0
    generation_cost: float = 0.0
    step_hours: float = DEFAULT_STEP_HOURS
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, 'generator_names', tuple(self.generator_names))
        for name in ('dispatch', 'commitment', 'startup'):
            object.__setattr__(self, name, _frozen(getattr(self, name), ndim=2))
        for name in ('price', 'demand', 'wind', 'wind_dispatch',
                     'charge', 'discharge', 'soc'):
            values = getattr(self, name)
            if values is not None:
                object.__setattr__(self, name, _frozen(values))

    @property
    def horizon(self) -> int:
        return len(self.price)

    @property
    def has_storage(self) -> bool:
        return self.charge is not None

    @property
    def storage_net(self) -> np.ndarray:
        """Storage discharge minus charge (MW); zeros without storage."""
        if not self.has_storage:
            return np.zeros(self.horizon)
        return self.discharge - self.charge

    @property
    def total_generation(self) -> np.ndarray:
        return self.dispatch.sum(axis=0)

    @property
    def curtailment(self) -> np.ndarray:
        return self.wind - self.wind_dispatch

    def balance_residual(self) -> np.ndarray:
        """Generation + wind used + storage net - demand, per period."""
        return (
            self.total_generation + self.wind_dispatch
            + self.storage_net - self.demand
        )

    def storage_profit(self, degradation_cost: float = 0.0) -> float:
        """Energy revenue at clearing prices minus degradation cost ($)."""
        if not self.has_storage:
            return 0.0
        revenue = float(np.sum(self.price * self.storage_net) * self.step_hours)
        wear = float(degradation_cost * np.sum(self.discharge) * self.step_hours)
        return revenue - wear

    def validate(self, tol: float = SOLVER_TOL) -> None:
        """
        Check the physical invariants of the result.

        Raises
        ------
        ValueError
            If power balance is violated, dispatch is negative, or the SoC
            leaves [0, 1].
        """
        shapes = {self.dispatch.shape, self.commitment.shape, self.startup.shape}
        if len(shapes) != 1:
            raise ValueError(f"Generator arrays have mismatched shapes: {shapes}")
        if self.dispatch.shape != (len(self.generator_names), self.horizon):
            raise ValueError(
                f"dispatch has shape {self.dispatch.shape}, expected "
                f"({len(self.generator_names)}, {self.horizon})"
            )
        residual = np.abs(self.balance_residual())
        if (residual > tol * max(1.0, float(np.max(self.demand)))).any():
            worst = int(np.argmax(residual))
            raise ValueError(
                f"{self.label}: power balance violated by {residual[worst]:.6f} MW "
                f"in period {worst}"
            )
        if (self.dispatch < -tol).any():
            raise ValueError(f"{self.label}: negative generator dispatch")
        if self.soc is not None:
            if (self.soc < -tol).any() or (self.soc > 1 + tol).any():
                raise ValueError(f"{self.label}: SoC outside [0, 1]")

    def to_frame(self) -> pd.DataFrame:
        """
        Return per-period results.

        Returns
        -------
        pd.DataFrame
            Columns: PERIOD, PRICE, DEMAND, WIND, WIND_DISPATCH,
            GENERATION, CHARGE, DISCHARGE, SOC (end of period).
        """
        soc_end = self.soc[1:] if self.soc is not None else np.full(self.horizon, np.nan)
        return pd.DataFrame({
            'PERIOD': np.arange(self.horizon),
            'PRICE': self.price,
            'DEMAND': self.demand,
            'WIND': self.wind,
            'WIND_DISPATCH': self.wind_dispatch,
            'GENERATION': self.total_generation,
            'CHARGE': self.charge if self.has_storage else np.zeros(self.horizon),
            'DISCHARGE': self.discharge if self.has_storage else np.zeros(self.horizon),
            'SOC': soc_end,
        })

    def dispatch_frame(self) -> pd.DataFrame:
        """Generator dispatch with one row per unit and one column per period."""
        return pd.DataFrame(
            self.dispatch,
            index=pd.Index(self.generator_names, name='GENERATOR'),
            columns=pd.RangeIndex(self.horizon, name='PERIOD'),
        )

    def summary(self) -> Dict[str, float]:
        """Scalar indicators used by sweep reports."""
        return {
            'MEAN_PRICE': float(np.mean(self.price)),
            'MAX_PRICE': float(np.max(self.price)),
            'PRICE_STD': float(np.std(self.price)),
            'GENERATION_COST': float(self.generation_cost),
            'CURTAILMENT': float(np.sum(self.curtailment) * self.step_hours),
            'STORAGE_THROUGHPUT': (
                float(np.sum(self.discharge) * self.step_hours)
                if self.has_storage else 0.0
            ),
        }


# ------------------------------------------------------------------
# IterationRecord
# ------------------------------------------------------------------

@dataclass(frozen=True, eq=False)
class IterationRecord:
    """
    All clearing results and value functions for one sweep point.

    Attributes
    ----------
    point : SweepPoint
        Parameter tuple that produced the record.
    uc : ClearingResult
        Day-ahead unit commitment without storage.
    value_function : ValueFunction
        Built from the ``uc`` prices.
    storage_dispatch : ClearingResult
        Real-time dispatch with storage bidding its value function (S-ED).
    baseline : ClearingResult
        Real-time dispatch without storage (N-ED).
    day_ahead : ClearingResult, optional
        Day-ahead clearing with storage (DA+RT participation only).
    day_ahead_value_function : ValueFunction, optional
        Re-derived from the ``day_ahead`` prices.
    day_ahead_real_time : ClearingResult, optional
        Real-time dispatch around the day-ahead storage schedule (DA+RT).
    """
    point: Any
    uc: ClearingResult
    value_function: 'ValueFunction'
    storage_dispatch: ClearingResult
    baseline: ClearingResult
    day_ahead: Optional[ClearingResult] = None
    day_ahead_value_function: Optional['ValueFunction'] = None
    day_ahead_real_time: Optional[ClearingResult] = None

    @property
    def results(self) -> Dict[str, ClearingResult]:
        """Clearing results present in the record, keyed by label."""
        found = [self.uc, self.storage_dispatch, self.baseline,
                 self.day_ahead, self.day_ahead_real_time]
        return {r.label: r for r in found if r is not None}

    def summary(self, degradation_cost: float = 0.0) -> Dict[str, Any]:
        """
        Flatten the record into one report row.

        Keys are the point fields followed by ``<LABEL>_<INDICATOR>``
        entries for every result and the storage profit of each storage
        case.
        """
        row: Dict[str, Any] = {}
        if hasattr(self.point, 'as_dict'):
            row.update(self.point.as_dict())
        for label, result in self.results.items():
            for key, val in result.summary().items():
                row[f"{label}_{key}"] = val
            if result.has_storage:
                row[f"{label}_STORAGE_PROFIT"] = result.storage_profit(degradation_cost)
        return row


def records_to_frame(records: Sequence[IterationRecord],
                     degradation_cost: float = 0.0) -> pd.DataFrame:
    """Stack ``IterationRecord.summary`` rows into one DataFrame."""
    return pd.DataFrame([r.summary(degradation_cost) for r in records])
