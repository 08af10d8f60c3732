# esmarket/bidding/__init__.py

"""
Storage bid generation from day-ahead price trajectories.
"""

from .value_function import ValueFunction, build_value_function

__all__ = [
    'ValueFunction',
    'build_value_function',
]
