# esmarket/__init__.py

"""
Energy Storage Market Participation Simulator (esmarket).

Simulates how a grid-scale storage unit bids into a two-stage wholesale
electricity market on a single bus: day-ahead unit commitment followed by
sequential rolling-horizon real-time economic dispatch.

Main Components
---------------
SystemSnapshot, StorageSpec : dataclasses
    Validated, immutable clearing inputs.
build_value_function : function
    Backward dynamic program turning day-ahead prices into storage bids.
DayAheadClearing, RealTimeClearing : classes
    The two market stages, solved with Pyomo.
run_sweep : function
    Runs the full pipeline over scenario, wind and storage rating axes.

Subpackages
-----------
interfaces : Data containers (system, storage, results, CSV loading)
bidding : Value function and bid construction
clearing : Day-ahead and real-time clearing and the solver backend
logs : Logger setup for runs

Example
-------
>>> from esmarket import SystemData, SweepConfig, run_sweep, records_to_frame
>>> data = SystemData.from_directory('data/example')
>>> records = run_sweep(data, SweepConfig(storage_power=[10, 50]))
>>> print(records_to_frame(records.values()))
"""

from .errors import (
    MarketSimulationError,
    ConfigurationError,
    InfeasibleClearingError,
    SolverError,
    SweepPointError,
)
from .interfaces import (
    Generator,
    SystemSnapshot,
    StorageSpec,
    SystemData,
    ClearingResult,
    IterationRecord,
    records_to_frame,
)
from .bidding import ValueFunction, build_value_function
from .clearing import (
    OptimizationBackend,
    PyomoBackend,
    DayAheadClearing,
    RealTimeClearing,
)
from .sweep import (
    SweepConfig,
    SweepPoint,
    run_point,
    run_sweep,
    period_frame,
    generation_frame,
)

__all__ = [
    # Inputs
    'Generator',
    'SystemSnapshot',
    'StorageSpec',
    'SystemData',
    # Bidding
    'ValueFunction',
    'build_value_function',
    # Clearing
    'OptimizationBackend',
    'PyomoBackend',
    'DayAheadClearing',
    'RealTimeClearing',
    # Results
    'ClearingResult',
    'IterationRecord',
    'records_to_frame',
    'period_frame',
    'generation_frame',
    # Sweep
    'SweepConfig',
    'SweepPoint',
    'run_point',
    'run_sweep',
    # Errors
    'MarketSimulationError',
    'ConfigurationError',
    'InfeasibleClearingError',
    'SolverError',
    'SweepPointError',
]

__version__ = '0.1.0'
