# esmarket/interfaces/__init__.py

"""
Typed inputs and outputs shared by the bidding and clearing modules.

Inputs (system snapshot, storage unit) are validated on construction;
outputs (clearing results, sweep records) are immutable once built.
"""

from .system import Generator, SystemSnapshot
from .storage import StorageSpec
from .results import ClearingResult, IterationRecord, records_to_frame
from .loader import SystemData, generators_from_frame

__all__ = [
    # Inputs
    'Generator',
    'SystemSnapshot',
    'StorageSpec',
    'SystemData',
    # Outputs
    'ClearingResult',
    'IterationRecord',
    # Helper functions
    'generators_from_frame',
    'records_to_frame',
]
