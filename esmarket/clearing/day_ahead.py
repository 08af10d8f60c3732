# esmarket/clearing/day_ahead.py

"""
Day-ahead unit commitment clearing on a single bus.

The market is cleared in two passes:

1. A MILP over the whole horizon decides commitment, startups, shutdowns,
   generator dispatch, wind use and (optionally) storage.
2. Commitment is fixed at the MILP optimum and the problem is re-solved as
   an LP; the dual of each period's power balance, divided by the period
   length, is the clearing price.

When the snapshot carries a reserve requirement, committed capacity must
exceed the scheduled dispatch by that margin in every period.

Storage participates in one of two ways:

- ``co_optimized``: charge, discharge and SoC are decision variables, so
  storage is price-making.
- ``price_taker``: storage self-schedules against its value function and
  enters the balance as a fixed injection.
"""

import logging
import numpy as np
from typing import Dict, Optional, Tuple

from pyomo.environ import (
    Binary,
    ConcreteModel,
    Constraint,
    NonNegativeReals,
    Objective,
    RangeSet,
    Set,
    Var,
    minimize,
    value,
)

from ..constants import CO_OPTIMIZED, PRICE_TAKER, DAY_AHEAD_MODES
from ..errors import ConfigurationError
from ..interfaces.results import ClearingResult
from ..interfaces.storage import StorageSpec
from ..interfaces.system import SystemSnapshot
from ..bidding.value_function import ValueFunction
from .solver import OptimizationBackend, PyomoBackend

logger = logging.getLogger(__name__)


def commitment_transitions(commitment: np.ndarray, initial_status
                           ) -> Tuple[np.ndarray, np.ndarray]:
    """
    Startup and shutdown indicators implied by a commitment schedule.

    Parameters
    ----------
    commitment : np.ndarray
        Online status, shape (G, T).
    initial_status : sequence of bool
        Status of each unit before the first period.

    Returns
    -------
    startup, shutdown : np.ndarray
        0/1 arrays of shape (G, T).
    """
    commitment = np.asarray(commitment, dtype=float)
    before = np.asarray(initial_status, dtype=float).reshape(-1, 1)
    previous = np.hstack([before, commitment[:, :-1]])
    startup = np.maximum(commitment - previous, 0.0)
    shutdown = np.maximum(previous - commitment, 0.0)
    return startup, shutdown


def build_day_ahead_model(
    snapshot: SystemSnapshot,
    storage: Optional[StorageSpec] = None,
    injection: Optional[np.ndarray] = None,
    commitment: Optional[np.ndarray] = None,
    name: str = 'day_ahead',
) -> ConcreteModel:
    """
    Build the day-ahead clearing model.

    Parameters
    ----------
    snapshot : SystemSnapshot
        System data; the wind forecast bounds wind use.
    storage : StorageSpec, optional
        Co-optimised storage unit. None or zero power for no storage
        variables.
    injection : np.ndarray, optional
        Fixed net storage injection per period (MW), subtracted from demand.
    commitment : np.ndarray, optional
        Fixed (G, T) commitment. When given, the model is an LP with
        startups and shutdowns derived from it; otherwise commitment,
        startup and shutdown are decision variables.
    name : str
        Model name used in log and error messages.

    Returns
    -------
    ConcreteModel
        Model with a ``balance`` constraint indexed by period, and a
        ``reserve`` constraint where the snapshot requires reserve.
    """
    T = snapshot.horizon
    dt = snapshot.step_hours
    gens = {g.name: g for g in snapshot.generators}
    row = {g: i for i, g in enumerate(snapshot.generator_names)}
    injection = np.zeros(T) if injection is None else np.asarray(injection, dtype=float)

    m = ConcreteModel(name=name)
    m.G = Set(initialize=snapshot.generator_names, ordered=True)
    m.T = RangeSet(0, T - 1)

    m.p = Var(m.G, m.T, within=NonNegativeReals)
    m.y = Var(m.T, bounds=lambda m, t: (0.0, float(snapshot.wind_forecast[t])))

    # ---- Commitment: decision variables or constants ----
    if commitment is None:
        m.u = Var(m.G, m.T, within=Binary)
        m.v = Var(m.G, m.T, bounds=(0, 1))
        m.w = Var(m.G, m.T, bounds=(0, 1))

        def u(g, t):
            return m.u[g, t] if t >= 0 else float(gens[g].initial_status)

        def v(g, t):
            return m.v[g, t]

        def w(g, t):
            return m.w[g, t]
    else:
        status = np.asarray(commitment, dtype=float)
        startup, shutdown = commitment_transitions(
            status, [gens[g].initial_status for g in m.G]
        )

        def u(g, t):
            return float(status[row[g], t])

        def v(g, t):
            return float(startup[row[g], t])

        def w(g, t):
            return float(shutdown[row[g], t])

    def max_output_rule(m, g, t):
        return m.p[g, t] <= gens[g].p_max * u(g, t)
    m.max_output = Constraint(m.G, m.T, rule=max_output_rule)

    def min_output_rule(m, g, t):
        if gens[g].p_min <= 0:
            return Constraint.Skip
        return m.p[g, t] >= gens[g].p_min * u(g, t)
    m.min_output = Constraint(m.G, m.T, rule=min_output_rule)

    if commitment is None:
        # v = max(u[t] - u[t-1], 0) and w = max(u[t-1] - u[t], 0) exactly
        def startup_rule(m, g, t):
            return m.v[g, t] >= m.u[g, t] - u(g, t - 1)
        m.startup = Constraint(m.G, m.T, rule=startup_rule)

        def startup_on_rule(m, g, t):
            return m.v[g, t] <= m.u[g, t]
        m.startup_on = Constraint(m.G, m.T, rule=startup_on_rule)

        def startup_was_off_rule(m, g, t):
            return m.v[g, t] <= 1 - u(g, t - 1)
        m.startup_was_off = Constraint(m.G, m.T, rule=startup_was_off_rule)

        def shutdown_rule(m, g, t):
            return m.w[g, t] >= u(g, t - 1) - m.u[g, t]
        m.shutdown = Constraint(m.G, m.T, rule=shutdown_rule)

        def shutdown_off_rule(m, g, t):
            return m.w[g, t] <= 1 - m.u[g, t]
        m.shutdown_off = Constraint(m.G, m.T, rule=shutdown_off_rule)

        def shutdown_was_on_rule(m, g, t):
            return m.w[g, t] <= u(g, t - 1)
        m.shutdown_was_on = Constraint(m.G, m.T, rule=shutdown_was_on_rule)

        def min_up_rule(m, g, t):
            window = int(gens[g].min_up)
            if window <= 1:
                return Constraint.Skip
            return sum(m.v[g, k] for k in range(max(0, t - window + 1), t + 1)) <= m.u[g, t]
        m.min_up = Constraint(m.G, m.T, rule=min_up_rule)

        def min_down_rule(m, g, t):
            window = int(gens[g].min_down)
            if window <= 1:
                return Constraint.Skip
            return sum(m.w[g, k] for k in range(max(0, t - window + 1), t + 1)) <= 1 - m.u[g, t]
        m.min_down = Constraint(m.G, m.T, rule=min_down_rule)

    def ramp_up_rule(m, g, t):
        unit = gens[g]
        if t == 0 or unit.ramp_up >= unit.p_max:
            return Constraint.Skip
        return m.p[g, t] - m.p[g, t - 1] <= unit.ramp_up + unit.p_max * v(g, t)
    m.ramp_up = Constraint(m.G, m.T, rule=ramp_up_rule)

    def ramp_down_rule(m, g, t):
        unit = gens[g]
        if t == 0 or unit.ramp_down >= unit.p_max:
            return Constraint.Skip
        return m.p[g, t - 1] - m.p[g, t] <= unit.ramp_down + unit.p_max * w(g, t)
    m.ramp_down = Constraint(m.G, m.T, rule=ramp_down_rule)

    # ---- Storage ----
    with_storage = storage is not None and storage.active
    if with_storage:
        power = storage.power
        eta = storage.efficiency
        scale = dt / storage.energy
        m.S = RangeSet(0, T)
        m.charge = Var(m.T, bounds=(0.0, power))
        m.discharge = Var(m.T, bounds=(0.0, power))
        m.soc = Var(m.S, bounds=(0.0, 1.0))
        m.soc_initial = Constraint(expr=m.soc[0] == storage.initial_soc)

        def soc_rule(m, t):
            return m.soc[t + 1] == m.soc[t] + (eta * m.charge[t] - m.discharge[t] / eta) * scale
        m.soc_balance = Constraint(m.T, rule=soc_rule)

        if storage.terminal_target > 0:
            m.soc_terminal = Constraint(expr=m.soc[T] >= storage.terminal_target)

    def balance_rule(m, t):
        supply = sum(m.p[g, t] for g in m.G) + m.y[t]
        if with_storage:
            supply = supply + m.discharge[t] - m.charge[t]
        return supply == float(snapshot.demand[t] - injection[t])
    m.balance = Constraint(m.T, rule=balance_rule)

    def reserve_rule(m, t):
        requirement = float(snapshot.reserve[t])
        if requirement <= 0:
            return Constraint.Skip
        return sum(gens[g].p_max * u(g, t) - m.p[g, t] for g in m.G) >= requirement
    m.reserve = Constraint(m.T, rule=reserve_rule)

    # ---- Objective ----
    def objective_rule(m):
        cost = sum(gens[g].marginal_cost * m.p[g, t] * dt for g in m.G for t in m.T)
        if commitment is None:
            cost = cost + sum(gens[g].startup_cost * m.v[g, t] for g in m.G for t in m.T)
        if with_storage:
            cost = cost + sum(storage.degradation_cost * m.discharge[t] * dt for t in m.T)
        return cost
    m.objective = Objective(rule=objective_rule, sense=minimize)

    return m


class DayAheadClearing:
    """
    Day-ahead unit commitment with locational-marginal-style pricing.

    Parameters
    ----------
    backend : OptimizationBackend, optional
        Solver backend; a default ``PyomoBackend`` when omitted.

    Examples
    --------
    >>> uc = DayAheadClearing().clear(snapshot)
    >>> uc.price
    array([20., 20., 20., 20.])
    """

    def __init__(self, backend: Optional[OptimizationBackend] = None):
        self.backend = backend or PyomoBackend()

    def clear(
        self,
        snapshot: SystemSnapshot,
        storage: Optional[StorageSpec] = None,
        value_function: Optional[ValueFunction] = None,
        mode: str = CO_OPTIMIZED,
        label: Optional[str] = None,
    ) -> ClearingResult:
        """
        Clear the day-ahead market.

        Parameters
        ----------
        snapshot : SystemSnapshot
            System data for the scenario.
        storage : StorageSpec, optional
            Participating storage; None or zero power clears without it.
        value_function : ValueFunction, optional
            Required for ``mode='price_taker'``.
        mode : str
            ``'co_optimized'`` or ``'price_taker'``.
        label : str, optional
            Result label; ``'UC'`` without storage, ``'DA'`` with it.

        Returns
        -------
        ClearingResult
            Commitment, dispatch and prices for every period.

        Raises
        ------
        ConfigurationError
            For an unknown mode, or a price-taking unit without a value
            function of matching horizon.
        InfeasibleClearingError
            If no commitment meets demand.
        SolverError
            On any other solver failure.
        """
        if mode not in DAY_AHEAD_MODES:
            raise ConfigurationError(
                f"Unknown day-ahead mode '{mode}'; expected one of {DAY_AHEAD_MODES}"
            )
        T = snapshot.horizon
        dt = snapshot.step_hours
        with_storage = storage is not None and storage.active
        label = label or ('DA' if with_storage else 'UC')
        context = {'label': label, 'mode': mode}

        injection = None
        schedule = None
        if with_storage and mode == PRICE_TAKER:
            schedule = self._self_schedule(snapshot, storage, value_function)
            injection = schedule['discharge'] - schedule['charge']

        co_optimized = storage if with_storage and mode == CO_OPTIMIZED else None
        logger.info(
            f"Clearing day-ahead {label}: T={T}, "
            f"storage={storage.power if with_storage else 0} MW, mode={mode}"
        )

        milp = build_day_ahead_model(
            snapshot, co_optimized, injection, name=f'day_ahead_{label}'
        )
        self.backend.solve(milp, **context)
        commitment = np.array(
            [[round(value(milp.u[g, t])) for t in milp.T] for g in milp.G], dtype=float
        )
        startup = np.array(
            [[round(value(milp.v[g, t])) for t in milp.T] for g in milp.G], dtype=float
        )

        pricing = build_day_ahead_model(
            snapshot, co_optimized, injection, commitment=commitment,
            name=f'day_ahead_{label}_pricing',
        )
        self.backend.request_duals(pricing)
        self.backend.solve(pricing, stage='pricing', **context)
        price = np.array([
            self.backend.dual(pricing, pricing.balance[t], period=t, **context) / dt
            for t in pricing.T
        ])

        dispatch = np.array([[value(milp.p[g, t]) for t in milp.T] for g in milp.G])
        costs = np.array([g.marginal_cost for g in snapshot.generators])
        startup_costs = np.array([g.startup_cost for g in snapshot.generators])
        generation_cost = float(
            np.sum(costs[:, None] * dispatch) * dt + np.sum(startup_costs[:, None] * startup)
        )

        charge = discharge = soc = None
        if co_optimized is not None:
            charge = np.array([value(milp.charge[t]) for t in milp.T])
            discharge = np.array([value(milp.discharge[t]) for t in milp.T])
            soc = np.clip([value(milp.soc[t]) for t in milp.S], 0.0, 1.0)
        elif schedule is not None:
            charge, discharge, soc = schedule['charge'], schedule['discharge'], schedule['soc']

        result = ClearingResult(
            stage='day_ahead',
            label=label,
            generator_names=snapshot.generator_names,
            dispatch=dispatch,
            commitment=commitment,
            startup=startup,
            price=price,
            demand=snapshot.demand,
            wind=snapshot.wind_forecast,
            wind_dispatch=np.array([value(milp.y[t]) for t in milp.T]),
            charge=charge,
            discharge=discharge,
            soc=soc,
            objective=float(value(milp.objective)),
            generation_cost=generation_cost,
            step_hours=dt,
            metadata={
                'mode': mode,
                'storage_power': storage.power if with_storage else 0.0,
                'storage_energy': storage.energy if with_storage else 0.0,
            },
        )
        logger.info(
            f"Day-ahead {label} cleared: objective={result.objective:.2f}, "
            f"mean price={np.mean(price):.2f}"
        )
        return result

    @staticmethod
    def _self_schedule(snapshot: SystemSnapshot, storage: StorageSpec,
                       value_function: Optional[ValueFunction]) -> Dict[str, np.ndarray]:
        """Price-taking schedule in MW from the value function policy."""
        if value_function is None:
            raise ConfigurationError(
                "Price-taking day-ahead storage needs a value function",
                mode=PRICE_TAKER,
            )
        if value_function.horizon != snapshot.horizon:
            raise ConfigurationError(
                f"Value function covers {value_function.horizon} periods, "
                f"snapshot has {snapshot.horizon}",
                mode=PRICE_TAKER,
            )
        soc, charge, discharge = value_function.simulate(storage.initial_soc)
        to_mw = storage.energy / snapshot.step_hours
        return {
            'soc': soc,
            'charge': np.minimum(charge * to_mw, storage.power),
            'discharge': np.minimum(discharge * to_mw, storage.power),
        }
