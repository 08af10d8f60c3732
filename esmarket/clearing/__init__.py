# esmarket/clearing/__init__.py

"""
Day-ahead and real-time market clearing on a single bus.
"""

from .solver import OptimizationBackend, PyomoBackend
from .day_ahead import DayAheadClearing, build_day_ahead_model, commitment_transitions
from .real_time import RealTimeClearing

__all__ = [
    # Backends
    'OptimizationBackend',
    'PyomoBackend',
    # Clearing stages
    'DayAheadClearing',
    'RealTimeClearing',
    # Helper functions
    'build_day_ahead_model',
    'commitment_transitions',
]
