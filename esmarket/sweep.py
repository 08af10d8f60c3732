# esmarket/sweep.py

"""
Sweep driver for storage market participation studies.

Iterates demand scenario x bid uncertainty x wind capacity x wind error x
storage power rating, and for every point runs the pipeline

    UC (no storage) -> value function -> S-ED -> N-ED
        [-> DA with storage -> value function -> DA+RT]

Each point yields an immutable ``IterationRecord``; records are collected
in an ordered mapping keyed by ``SweepPoint``.

Example
-------
>>> from esmarket import SystemData, SweepConfig, run_sweep, records_to_frame
>>> data = SystemData.from_directory('data/example')
>>> config = SweepConfig.from_yaml('data/example/config.yaml')
>>> records = run_sweep(data, config)
>>> records_to_frame(records.values()).head()
"""

import logging
from collections import OrderedDict
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple, Union

import pandas as pd
import yaml

from .constants import (
    CO_OPTIMIZED,
    DAY_AHEAD_MODES,
    DART_COUPLINGS,
    DEFAULT_DEGRADATION_COST,
    DEFAULT_EFFICIENCY,
    DEFAULT_POWER_RATIO,
    DEFAULT_SOC_RESOLUTION,
    DEFAULT_SOLVER,
    DEFAULT_STEP_HOURS,
    DEFAULT_WINDOW,
    SCHEDULE,
    STORAGE_BIDS,
)
from .errors import ConfigurationError, MarketSimulationError, SweepPointError
from .interfaces.loader import SystemData
from .interfaces.results import ClearingResult, IterationRecord
from .interfaces.storage import StorageSpec
from .bidding.value_function import ValueFunction, build_value_function
from .clearing.solver import OptimizationBackend, PyomoBackend
from .clearing.day_ahead import DayAheadClearing
from .clearing.real_time import RealTimeClearing

logger = logging.getLogger(__name__)

AXES = ('scenarios', 'bid_uncertainty', 'wind_capacity', 'wind_error', 'storage_power')


# =============================================================================
# Configuration
# =============================================================================

def _as_tuple(values) -> Tuple:
    if values is None:
        return ()
    if isinstance(values, (list, tuple)):
        return tuple(values)
    return (values,)


@dataclass(frozen=True)
class SweepConfig:
    """
    Parameters of a sweep.

    Axis fields accept a scalar or a list; an empty ``scenarios`` runs
    every scenario in the system data.

    Attributes
    ----------
    scenarios : tuple of int
        Demand scenarios.
    bid_uncertainty : tuple of float
        Price standard deviations used to build the value function.
    wind_capacity : tuple of float
        Installed wind capacity (MW).
    wind_error : tuple of float
        Relative standard deviation of the real-time wind error.
    storage_power : tuple of float
        Storage power ratings (MW), all positive.
    power_ratio : float
        Normalised power rating with respect to the energy rating.
    efficiency, degradation_cost, soc_resolution, terminal_soc, initial_soc
        Storage parameters, see ``StorageSpec``.
    segments : int
        Value-function bid segments (1 = power-quantity bid).
    window : int
        Real-time look-ahead window (periods).
    reserve_factor : float
        Day-ahead spinning reserve as a multiple of the wind forecast.
    day_ahead_participation : bool
        Also run the DA-with-storage and DA+RT passes.
    day_ahead_mode : str
        Storage mode in the DA pass, ``'co_optimized'`` or ``'price_taker'``.
    dart_coupling : str
        DA+RT real-time coupling, ``'schedule'`` or ``'bid'``.
    seed : int
        Base seed of the wind error draws.
    solver : str
        Pyomo solver name.
    solver_options : dict
        Options passed to the solver.
    skip_failures : bool
        Log and collect failed points instead of stopping the sweep.
    """
    scenarios: Tuple[int, ...] = ()
    bid_uncertainty: Tuple[float, ...] = (0.0,)
    wind_capacity: Tuple[float, ...] = (0.0,)
    wind_error: Tuple[float, ...] = (0.0,)
    storage_power: Tuple[float, ...] = (10.0,)
    power_ratio: float = DEFAULT_POWER_RATIO
    efficiency: float = DEFAULT_EFFICIENCY
    degradation_cost: float = DEFAULT_DEGRADATION_COST
    soc_resolution: float = DEFAULT_SOC_RESOLUTION
    terminal_soc: Optional[float] = None
    initial_soc: float = 0.0
    segments: int = 1
    window: int = DEFAULT_WINDOW
    reserve_factor: float = 0.0
    day_ahead_participation: bool = True
    day_ahead_mode: str = CO_OPTIMIZED
    dart_coupling: str = SCHEDULE
    seed: int = 0
    solver: str = DEFAULT_SOLVER
    solver_options: Dict[str, Any] = field(default_factory=dict)
    skip_failures: bool = False

    def __post_init__(self):
        for name in AXES:
            object.__setattr__(self, name, _as_tuple(getattr(self, name)))
        object.__setattr__(self, 'solver_options', dict(self.solver_options or {}))
        self.validate()

    def validate(self) -> None:
        """
        Raises
        ------
        ConfigurationError
            If an axis is empty or out of range, or a mode is unknown.
        """
        for name in AXES[1:]:
            if not getattr(self, name):
                raise ConfigurationError(f"Sweep axis '{name}' must not be empty")
        if any(p <= 0 for p in self.storage_power):
            raise ConfigurationError(
                f"storage_power values must be positive, got {self.storage_power}"
            )
        if any(s < 0 for s in self.bid_uncertainty):
            raise ConfigurationError("bid_uncertainty values must be non-negative")
        if any(w < 0 for w in self.wind_capacity) or any(e < 0 for e in self.wind_error):
            raise ConfigurationError("wind_capacity and wind_error must be non-negative")
        if not self.power_ratio > 0:
            raise ConfigurationError(f"power_ratio must be positive, got {self.power_ratio}")
        if int(self.segments) < 1:
            raise ConfigurationError(f"segments must be >= 1, got {self.segments}")
        if int(self.window) < 1:
            raise ConfigurationError(f"window must be >= 1, got {self.window}")
        if self.reserve_factor < 0:
            raise ConfigurationError(
                f"reserve_factor must be non-negative, got {self.reserve_factor}"
            )
        if self.day_ahead_mode not in DAY_AHEAD_MODES:
            raise ConfigurationError(
                f"day_ahead_mode must be one of {DAY_AHEAD_MODES}, got '{self.day_ahead_mode}'"
            )
        if self.dart_coupling not in DART_COUPLINGS:
            raise ConfigurationError(
                f"dart_coupling must be one of {DART_COUPLINGS}, got '{self.dart_coupling}'"
            )
        # Storage parameters are checked by StorageSpec
        self.storage(self.storage_power[0])

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> 'SweepConfig':
        """Build from a mapping; unknown keys raise ConfigurationError."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(config) - known)
        if unknown:
            raise ConfigurationError(f"Unknown sweep config keys: {unknown}")
        return cls(**config)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> 'SweepConfig':
        """Read a YAML file whose top level maps field names to values."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Sweep config not found: {path}")
        with open(path, 'r') as f:
            config = yaml.safe_load(f) or {}
        if not isinstance(config, dict):
            raise ConfigurationError(f"Sweep config {path} must be a mapping")
        return cls.from_dict(config)

    def to_dict(self) -> Dict[str, Any]:
        config = asdict(self)
        for name in AXES:
            config[name] = list(config[name])
        return config

    def storage(self, power: float, step_hours: float = DEFAULT_STEP_HOURS) -> StorageSpec:
        """Storage unit of the given rating with the sweep's parameters."""
        return StorageSpec.from_rating(
            power,
            power_ratio=self.power_ratio,
            step_hours=step_hours,
            efficiency=self.efficiency,
            degradation_cost=self.degradation_cost,
            soc_resolution=self.soc_resolution,
            terminal_soc=self.terminal_soc,
            initial_soc=self.initial_soc,
        )

    def points(self, scenarios: Optional[Sequence[int]] = None) -> Iterator['SweepPoint']:
        """Sweep points in iteration order (scenario outermost, rating innermost)."""
        for scenario in (self.scenarios or tuple(scenarios or ())):
            for sigma in self.bid_uncertainty:
                for capacity in self.wind_capacity:
                    for error in self.wind_error:
                        for power in self.storage_power:
                            yield SweepPoint(scenario, sigma, capacity, error, power)


@dataclass(frozen=True)
class SweepPoint:
    """Parameter tuple identifying one sweep point."""
    scenario: int
    bid_uncertainty: float
    wind_capacity: float
    wind_error: float
    storage_power: float

    @property
    def base(self) -> Tuple[int, float, float, float]:
        """Key shared by every rating of a (scenario, sigma, capacity, error)."""
        return (self.scenario, self.bid_uncertainty, self.wind_capacity, self.wind_error)

    def as_dict(self) -> Dict[str, Any]:
        return {
            'SCENARIO': self.scenario,
            'BID_UNCERTAINTY': self.bid_uncertainty,
            'WIND_CAPACITY': self.wind_capacity,
            'WIND_ERROR': self.wind_error,
            'STORAGE_POWER': self.storage_power,
        }


# =============================================================================
# Pipeline
# =============================================================================

def _backend(config: SweepConfig) -> OptimizationBackend:
    return PyomoBackend(config.solver, options=config.solver_options)


def _base_stage(point: SweepPoint, data: SystemData, config: SweepConfig,
                backend: OptimizationBackend
                ) -> Tuple[Any, ClearingResult, ValueFunction, ClearingResult]:
    """Snapshot, UC, value function and N-ED, shared across ratings."""
    snapshot = data.snapshot(
        point.scenario, point.wind_capacity, point.wind_error,
        seed=config.seed + int(point.scenario),
        reserve_factor=config.reserve_factor,
    )
    uc = DayAheadClearing(backend).clear(snapshot)
    reference = config.storage(point.storage_power, snapshot.step_hours)
    value_function = build_value_function(
        uc.price, reference, snapshot.step_hours,
        segments=config.segments, bid_uncertainty=point.bid_uncertainty,
    )
    baseline = RealTimeClearing(config.window, backend).clear(uc, snapshot, None)
    return snapshot, uc, value_function, baseline


def run_point(
    point: SweepPoint,
    data: SystemData,
    config: SweepConfig,
    backend: Optional[OptimizationBackend] = None,
    cache: Optional[Dict[Tuple, Tuple]] = None,
) -> IterationRecord:
    """
    Run the full pipeline for one sweep point.

    Parameters
    ----------
    point : SweepPoint
        Parameter tuple.
    data : SystemData
        System fleet and profiles.
    config : SweepConfig
        Storage and clearing settings.
    backend : OptimizationBackend, optional
        Solver backend; built from ``config`` when omitted.
    cache : dict, optional
        Reuses the UC, value function and N-ED of points sharing
        ``point.base``. The value function depends on the rating only
        through the power ratio, which is fixed by the config.

    Returns
    -------
    IterationRecord

    Raises
    ------
    SweepPointError
        Wrapping any ConfigurationError, InfeasibleClearingError or
        SolverError, with the point's parameters as context.
    """
    backend = backend or _backend(config)
    try:
        if cache is not None and point.base in cache:
            snapshot, uc, value_function, baseline = cache[point.base]
        else:
            snapshot, uc, value_function, baseline = _base_stage(point, data, config, backend)
            if cache is not None:
                cache[point.base] = (snapshot, uc, value_function, baseline)

        storage = config.storage(point.storage_power, snapshot.step_hours)
        real_time = RealTimeClearing(config.window, backend)
        logger.info(f"Running S-ED with P = {point.storage_power} MW")
        storage_dispatch = real_time.clear(
            uc, snapshot, storage, value_function, mode=STORAGE_BIDS
        )

        day_ahead = day_ahead_vf = day_ahead_real_time = None
        if config.day_ahead_participation:
            logger.info(f"Running DA with P = {point.storage_power} MW")
            day_ahead = DayAheadClearing(backend).clear(
                snapshot, storage, value_function, mode=config.day_ahead_mode
            )
            day_ahead_vf = build_value_function(
                day_ahead.price, storage, snapshot.step_hours,
                segments=config.segments, bid_uncertainty=point.bid_uncertainty,
            )
            day_ahead_real_time = real_time.clear(
                day_ahead, snapshot, storage, day_ahead_vf, mode=config.dart_coupling
            )
    except MarketSimulationError as exc:
        logger.error(f"Sweep point {point} failed: {exc}")
        raise SweepPointError(f"Sweep point failed: {exc}", **asdict(point)) from exc

    return IterationRecord(
        point=point,
        uc=uc,
        value_function=value_function,
        storage_dispatch=storage_dispatch,
        baseline=baseline,
        day_ahead=day_ahead,
        day_ahead_value_function=day_ahead_vf,
        day_ahead_real_time=day_ahead_real_time,
    )


def run_sweep(
    data: SystemData,
    config: SweepConfig,
    backend: Optional[OptimizationBackend] = None,
    failures: Optional[List[SweepPointError]] = None,
) -> 'OrderedDict[SweepPoint, IterationRecord]':
    """
    Run every point of the sweep in order.

    Parameters
    ----------
    data : SystemData
        System fleet and profiles.
    config : SweepConfig
        Sweep axes and settings.
    backend : OptimizationBackend, optional
        Shared solver backend; built from ``config`` when omitted.
    failures : list, optional
        Receives the ``SweepPointError`` of each failed point when
        ``config.skip_failures`` is set.

    Returns
    -------
    OrderedDict
        ``SweepPoint -> IterationRecord`` in iteration order.

    Raises
    ------
    SweepPointError
        On the first failed point unless ``config.skip_failures`` is set.
    """
    backend = backend or _backend(config)
    scenarios = config.scenarios or tuple(data.scenarios)
    points = list(config.points(scenarios))
    logger.info(f"Starting sweep of {len(points)} points over scenarios {list(scenarios)}")

    records: 'OrderedDict[SweepPoint, IterationRecord]' = OrderedDict()
    cache: Dict[Tuple, Tuple] = {}
    current: Dict[str, Any] = {}
    for point in points:
        if current.get('scenario') != point.scenario:
            logger.info(f"Start scenario {point.scenario}")
            cache.clear()
        if current.get('base') != point.base:
            logger.info(
                f"Scenario {point.scenario}: bid uncertainty {point.bid_uncertainty}, "
                f"wind capacity {point.wind_capacity} MW, wind error {point.wind_error}"
            )
        current = {'scenario': point.scenario, 'base': point.base}

        try:
            records[point] = run_point(point, data, config, backend, cache)
        except SweepPointError as exc:
            if not config.skip_failures:
                raise
            logger.error(f"Skipping failed point {point}")
            if failures is not None:
                failures.append(exc)

    logger.info(f"Sweep finished: {len(records)} of {len(points)} points succeeded")
    return records


def _stack_results(records: Sequence[IterationRecord],
                   frame_of: Callable[[ClearingResult], pd.DataFrame]) -> pd.DataFrame:
    """Concatenate one frame per clearing pass, tagged with the point and label."""
    frames = []
    for record in records:
        for label, result in record.results.items():
            frame = frame_of(result)
            frame.insert(0, 'LABEL', label)
            for i, (key, val) in enumerate(record.point.as_dict().items()):
                frame.insert(i, key, val)
            frames.append(frame)
    if not frames:
        return pd.DataFrame()
    return pd.concat(frames, ignore_index=True)


def period_frame(records: Sequence[IterationRecord]) -> pd.DataFrame:
    """
    Per-period results of every clearing pass, in long format.

    Returns
    -------
    pd.DataFrame
        Point columns, LABEL, then the ``ClearingResult.to_frame`` columns.
    """
    return _stack_results(records, lambda result: result.to_frame())


def generation_frame(records: Sequence[IterationRecord]) -> pd.DataFrame:
    """
    Generator dispatch of every clearing pass, one row per unit and period.

    Returns
    -------
    pd.DataFrame
        Point columns, LABEL, GENERATOR, PERIOD, DISPATCH.
    """
    def melted(result: ClearingResult) -> pd.DataFrame:
        return result.dispatch_frame().reset_index().melt(
            id_vars='GENERATOR', var_name='PERIOD', value_name='DISPATCH'
        )
    return _stack_results(records, melted)
