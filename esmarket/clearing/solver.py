# esmarket/clearing/solver.py

"""
Optimisation backend for the clearing problems.

The clearing modules build Pyomo ConcreteModels and hand them to a backend;
this is the only module that talks to a solver. Termination conditions are
mapped onto the package error taxonomy:

- infeasible (or infeasible-or-unbounded) -> InfeasibleClearingError
- any other non-optimal outcome, or a solver crash -> SolverError
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from pyomo.environ import ConcreteModel, Suffix
from pyomo.opt import SolverFactory, TerminationCondition

from ..constants import DEFAULT_SOLVER
from ..errors import InfeasibleClearingError, SolverError

logger = logging.getLogger(__name__)

_OPTIMAL = (
    TerminationCondition.optimal,
    TerminationCondition.locallyOptimal,
    TerminationCondition.globallyOptimal,
)
_INFEASIBLE = (
    TerminationCondition.infeasible,
    TerminationCondition.infeasibleOrUnbounded,
)


class OptimizationBackend(ABC):
    """
    Capability the clearing stages need from a solver.

    Implementations solve a Pyomo model in place, loading the primal
    solution (and duals when the model carries a ``dual`` suffix), or raise
    ``InfeasibleClearingError`` / ``SolverError``.
    """

    @abstractmethod
    def solve(self, model: ConcreteModel, **context: Any) -> None:
        """Solve ``model`` in place; ``context`` is attached to any error."""

    @staticmethod
    def request_duals(model: ConcreteModel) -> None:
        """Ask the solver to return constraint duals for an LP."""
        model.dual = Suffix(direction=Suffix.IMPORT)

    @staticmethod
    def dual(model: ConcreteModel, constraint, **context: Any) -> float:
        """
        Dual of a constraint after a solve.

        Follows the Pyomo sign convention: for a minimisation, the dual of
        an equality constraint is the change in objective per unit increase
        of its right-hand side.
        """
        val = model.dual.get(constraint) if hasattr(model, 'dual') else None
        if val is None:
            raise SolverError(
                f"No dual available for constraint '{constraint.name}'", **context
            )
        return float(val)


class PyomoBackend(OptimizationBackend):
    """
    Solve through ``pyomo.opt.SolverFactory``.

    Parameters
    ----------
    solver_name : str
        Any Pyomo solver name; defaults to the HiGHS APPSI interface.
    options : dict, optional
        Solver options passed through unchanged.
    tee : bool
        Stream solver output to the console.

    Examples
    --------
    >>> backend = PyomoBackend()
    >>> backend.available()
    True
    """

    def __init__(self, solver_name: str = DEFAULT_SOLVER,
                 options: Optional[Dict[str, Any]] = None,
                 tee: bool = False):
        self.solver_name = solver_name
        self.options = dict(options or {})
        self.tee = tee
        self._solver = None

    def __repr__(self) -> str:
        return f"PyomoBackend(solver_name={self.solver_name!r})"

    @property
    def solver(self):
        if self._solver is None:
            opt = SolverFactory(self.solver_name)
            if opt is None or not opt.available(exception_flag=False):
                raise SolverError(
                    f"Solver '{self.solver_name}' is not available",
                    solver=self.solver_name,
                )
            for key, val in self.options.items():
                opt.options[key] = val
            self._solver = opt
        return self._solver

    def available(self) -> bool:
        """True if the configured solver can be used."""
        try:
            self.solver
        except SolverError:
            return False
        return True

    def solve(self, model: ConcreteModel, **context: Any) -> None:
        """
        Solve ``model`` in place.

        Raises
        ------
        InfeasibleClearingError
            If the solver proves the model infeasible.
        SolverError
            If the solver is unavailable, crashes, or stops without an
            optimal solution.
        """
        solver = self.solver
        try:
            results = solver.solve(model, tee=self.tee, load_solutions=False)
        except (RuntimeError, ValueError, OSError) as exc:
            logger.error(f"Solver '{self.solver_name}' failed on {model.name}: {exc}")
            raise SolverError(
                f"Solver '{self.solver_name}' failed: {exc}",
                solver=self.solver_name, **context,
            ) from exc

        condition = results.solver.termination_condition
        if condition in _INFEASIBLE:
            raise InfeasibleClearingError(
                f"{model.name} is infeasible", termination=str(condition), **context
            )
        if condition not in _OPTIMAL:
            raise SolverError(
                f"{model.name} stopped without an optimal solution",
                termination=str(condition), **context,
            )
        model.solutions.load_from(results)
        logger.debug(f"Solved {model.name} ({condition})")
