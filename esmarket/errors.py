# esmarket/errors.py

"""
Error taxonomy for market simulation.

All errors are fatal to the sweep point that raised them. Each carries a
``context`` dict (scenario, rating, clearing label, period, ...) that is
rendered into the message so a failure report names the exact inputs.
"""

from typing import Any, Dict


class MarketSimulationError(Exception):
    """Base class for errors raised by esmarket."""

    def __init__(self, message: str, **context: Any):
        self.context: Dict[str, Any] = context
        if context:
            details = ", ".join(f"{k}={v!r}" for k, v in context.items())
            message = f"{message} [{details}]"
        super().__init__(message)


class ConfigurationError(MarketSimulationError, ValueError):
    """Invalid inputs detected before any solve is attempted."""
    pass


class InfeasibleClearingError(MarketSimulationError):
    """A day-ahead or real-time clearing problem has no feasible solution."""
    pass


class SolverError(MarketSimulationError):
    """The optimisation backend failed or reported numerical trouble."""
    pass


class SweepPointError(MarketSimulationError):
    """A sweep point failed; ``context`` holds the parameter tuple."""
    pass
