# esmarket/clearing/real_time.py

"""
Rolling-horizon real-time economic dispatch.

The day is cleared as T sequential LPs. Step t looks ahead over periods
t .. min(t + window, T) - 1 with commitment fixed from the day-ahead
result, uses the realised wind for period t and the forecast beyond it,
and commits only period t. The committed dispatch seeds the ramp limits and
the storage SoC of the next step.

Storage modes
-------------
storage (S-ED)
    Storage bids its value function: the SoC left at the end of the window
    is valued with the value-function tiers of the period after the window.
schedule (DA+RT)
    Storage charge and discharge are pinned to the day-ahead schedule;
    only the generators re-dispatch.
bid (DA+RT)
    As ``storage``, with a value function re-derived from day-ahead prices
    cleared with storage; the day-ahead schedule is kept in the metadata.

Without storage (no unit, or zero power) the steps are a pure economic
dispatch (N-ED).
"""

import logging
import numpy as np
from typing import Optional, Sequence, Tuple

from pyomo.environ import (
    ConcreteModel,
    Constraint,
    Expression,
    Objective,
    RangeSet,
    Set,
    Var,
    minimize,
    value,
)

from ..constants import (
    DEFAULT_WINDOW,
    STORAGE_BIDS,
    SCHEDULE,
    BID,
    REAL_TIME_MODES,
)
from ..errors import ConfigurationError, InfeasibleClearingError
from ..interfaces.results import ClearingResult
from ..interfaces.storage import StorageSpec
from ..interfaces.system import SystemSnapshot
from ..bidding.value_function import ValueFunction
from .day_ahead import commitment_transitions
from .solver import OptimizationBackend, PyomoBackend

logger = logging.getLogger(__name__)


class RealTimeClearing:
    """
    Sequential real-time dispatch with a look-ahead window.

    Parameters
    ----------
    window : int
        Number of periods optimised at each step, including the committed
        one.
    backend : OptimizationBackend, optional
        Solver backend; a default ``PyomoBackend`` when omitted.
    """

    def __init__(self, window: int = DEFAULT_WINDOW,
                 backend: Optional[OptimizationBackend] = None):
        if int(window) < 1:
            raise ConfigurationError(f"window must be >= 1, got {window}")
        self.window = int(window)
        self.backend = backend or PyomoBackend()

    def clear(
        self,
        day_ahead: ClearingResult,
        snapshot: SystemSnapshot,
        storage: Optional[StorageSpec] = None,
        value_function: Optional[ValueFunction] = None,
        schedule: Optional[Sequence[float]] = None,
        mode: str = STORAGE_BIDS,
        label: Optional[str] = None,
    ) -> ClearingResult:
        """
        Run the T real-time steps.

        Parameters
        ----------
        day_ahead : ClearingResult
            Supplies the fixed commitment, and the default storage
            schedule in the DA+RT modes.
        snapshot : SystemSnapshot
            System data; the wind realization is used for committed periods.
        storage : StorageSpec, optional
            Storage unit; None or zero power dispatches without storage.
        value_function : ValueFunction, optional
            Prices the end-of-window SoC in the ``storage`` and ``bid``
            modes.
        schedule : sequence of float, optional
            Day-ahead storage net output (MW) for the DA+RT modes; defaults
            to ``day_ahead.storage_net``. In ``schedule`` mode a day-ahead
            result with storage pins charge and discharge separately; an
            explicit schedule is split into pure charge and pure discharge.
        mode : str
            ``'storage'``, ``'schedule'`` or ``'bid'``.
        label : str, optional
            Defaults to ``'S-ED'``, ``'N-ED'`` or ``'DA+RT'``.

        Returns
        -------
        ClearingResult
            Committed dispatch and prices of every period.

        Raises
        ------
        ConfigurationError
            For an unknown mode, a missing value function or schedule, or a
            day-ahead result that does not match the snapshot.
        InfeasibleClearingError
            If a step has no feasible dispatch; ``context['period']`` names
            the step.
        SolverError
            On any other solver failure.
        """
        if mode not in REAL_TIME_MODES:
            raise ConfigurationError(
                f"Unknown real-time mode '{mode}'; expected one of {REAL_TIME_MODES}"
            )
        T = snapshot.horizon
        if day_ahead.commitment.shape != (len(snapshot.generators), T):
            raise ConfigurationError(
                f"Day-ahead commitment has shape {day_ahead.commitment.shape}, "
                f"expected ({len(snapshot.generators)}, {T})"
            )
        if tuple(day_ahead.generator_names) != tuple(snapshot.generator_names):
            raise ConfigurationError("Day-ahead generators do not match the snapshot")

        with_storage = storage is not None and storage.active
        if label is None:
            if mode in (SCHEDULE, BID):
                label = 'DA+RT'
            else:
                label = 'S-ED' if with_storage else 'N-ED'

        if with_storage and mode in (STORAGE_BIDS, BID) and value_function is None:
            raise ConfigurationError(
                f"Real-time mode '{mode}' needs a value function", label=label
            )
        plan = None
        if with_storage and mode in (SCHEDULE, BID):
            if schedule is None:
                if not day_ahead.has_storage:
                    raise ConfigurationError(
                        "DA+RT needs a storage schedule or a day-ahead result with storage",
                        label=label,
                    )
                schedule = day_ahead.storage_net
                plan = (day_ahead.charge, day_ahead.discharge)
            schedule = np.asarray(schedule, dtype=float)
            if len(schedule) != T:
                raise ConfigurationError(
                    f"Storage schedule has {len(schedule)} periods, expected {T}",
                    label=label,
                )
            if plan is None:
                plan = (np.maximum(-schedule, 0.0), np.maximum(schedule, 0.0))
            # Charge and discharge are pinned separately; a net pin admits
            # simultaneous charge and discharge
            plan = tuple(np.clip(np.asarray(x, dtype=float), 0.0, storage.power) for x in plan)
        storage_mode = mode if with_storage else None

        logger.info(
            f"Running real-time {label}: T={T}, window={self.window}, "
            f"storage={storage.power if with_storage else 0} MW, mode={storage_mode}"
        )

        G = len(snapshot.generators)
        dt = snapshot.step_hours
        dispatch = np.zeros((G, T))
        wind_dispatch = np.zeros(T)
        price = np.zeros(T)
        charge = np.zeros(T)
        discharge = np.zeros(T)
        soc = np.zeros(T + 1)
        soc[0] = storage.initial_soc if with_storage else 0.0
        objective = 0.0

        for t in range(T):
            horizon = min(t + self.window, T) - t
            previous = dispatch[:, t - 1] if t > 0 else None
            m = self._build_step(
                snapshot, day_ahead, t, horizon, previous,
                storage if with_storage else None,
                value_function, plan if mode == SCHEDULE else None, soc[t],
            )
            self.backend.request_duals(m)
            context = {'label': label, 'mode': storage_mode, 'period': t}
            try:
                self.backend.solve(m, **context)
            except InfeasibleClearingError:
                logger.error(f"Real-time {label} infeasible at period {t}")
                raise

            dispatch[:, t] = [value(m.p[g, 0]) for g in m.G]
            wind_dispatch[t] = value(m.y[0])
            price[t] = self.backend.dual(m, m.balance[0], **context) / dt
            objective += value(m.period_cost[0])
            if with_storage:
                charge[t] = value(m.charge[0])
                discharge[t] = value(m.discharge[0])
                step = (storage.efficiency * charge[t]
                        - discharge[t] / storage.efficiency) * dt / storage.energy
                soc[t + 1] = min(max(soc[t] + step, 0.0), 1.0)
            logger.debug(f"{label} period {t}: price={price[t]:.2f}, soc={soc[t + 1]:.3f}")

        costs = np.array([g.marginal_cost for g in snapshot.generators])
        startup_costs = np.array([g.startup_cost for g in snapshot.generators])
        generation_cost = float(
            np.sum(costs[:, None] * dispatch) * dt
            + np.sum(startup_costs[:, None] * day_ahead.startup)
        )
        metadata = {
            'mode': storage_mode,
            'window': self.window,
            'storage_power': storage.power if with_storage else 0.0,
            'storage_energy': storage.energy if with_storage else 0.0,
        }
        if with_storage and mode in (SCHEDULE, BID):
            metadata['day_ahead_schedule'] = schedule.copy()

        result = ClearingResult(
            stage='real_time',
            label=label,
            generator_names=snapshot.generator_names,
            dispatch=dispatch,
            commitment=day_ahead.commitment,
            startup=day_ahead.startup,
            price=price,
            demand=snapshot.demand,
            wind=snapshot.wind_realization,
            wind_dispatch=wind_dispatch,
            charge=charge if with_storage else None,
            discharge=discharge if with_storage else None,
            soc=soc if with_storage else None,
            objective=objective,
            generation_cost=generation_cost,
            step_hours=dt,
            metadata=metadata,
        )
        logger.info(
            f"Real-time {label} done: cost={generation_cost:.2f}, "
            f"mean price={np.mean(price):.2f}"
        )
        return result

    def _build_step(
        self,
        snapshot: SystemSnapshot,
        day_ahead: ClearingResult,
        t: int,
        horizon: int,
        previous: Optional[np.ndarray],
        storage: Optional[StorageSpec],
        value_function: Optional[ValueFunction],
        plan: Optional[Tuple[np.ndarray, np.ndarray]],
        soc_now: float,
    ) -> ConcreteModel:
        """LP for the window starting at period t; index k is t + k."""
        dt = snapshot.step_hours
        gens = snapshot.generators
        names = snapshot.generator_names
        row = {g: i for i, g in enumerate(names)}
        unit = {g.name: g for g in gens}
        status = day_ahead.commitment
        startup, shutdown = commitment_transitions(status, [g.initial_status for g in gens])

        def wind(k):
            if k == 0:
                return float(snapshot.wind_realization[t])
            return float(snapshot.wind_forecast[t + k])

        m = ConcreteModel(name=f'real_time_t{t}')
        m.G = Set(initialize=names, ordered=True)
        m.K = RangeSet(0, horizon - 1)

        def output_bounds(m, g, k):
            on = status[row[g], t + k]
            return (unit[g].p_min * on, unit[g].p_max * on)
        m.p = Var(m.G, m.K, bounds=output_bounds)
        m.y = Var(m.K, bounds=lambda m, k: (0.0, wind(k)))

        def ramp_up_rule(m, g, k):
            gen = unit[g]
            if gen.ramp_up >= gen.p_max:
                return Constraint.Skip
            limit = gen.ramp_up + gen.p_max * startup[row[g], t + k]
            if k > 0:
                return m.p[g, k] - m.p[g, k - 1] <= limit
            if previous is None:
                return Constraint.Skip
            return m.p[g, k] - float(previous[row[g]]) <= limit
        m.ramp_up = Constraint(m.G, m.K, rule=ramp_up_rule)

        def ramp_down_rule(m, g, k):
            gen = unit[g]
            if gen.ramp_down >= gen.p_max:
                return Constraint.Skip
            limit = gen.ramp_down + gen.p_max * shutdown[row[g], t + k]
            if k > 0:
                return m.p[g, k - 1] - m.p[g, k] <= limit
            if previous is None:
                return Constraint.Skip
            return float(previous[row[g]]) - m.p[g, k] <= limit
        m.ramp_down = Constraint(m.G, m.K, rule=ramp_down_rule)

        with_storage = storage is not None
        if with_storage:
            eta = storage.efficiency
            scale = dt / storage.energy
            m.S = RangeSet(0, horizon)
            m.charge = Var(m.K, bounds=(0.0, storage.power))
            m.discharge = Var(m.K, bounds=(0.0, storage.power))
            m.soc = Var(m.S, bounds=(0.0, 1.0))
            m.soc_initial = Constraint(expr=m.soc[0] == float(soc_now))

            def soc_rule(m, k):
                return m.soc[k + 1] == m.soc[k] + (eta * m.charge[k] - m.discharge[k] / eta) * scale
            m.soc_balance = Constraint(m.K, rule=soc_rule)

            if plan is not None:
                planned_charge, planned_discharge = plan

                def schedule_charge_rule(m, k):
                    return m.charge[k] == float(planned_charge[t + k])
                m.schedule_charge = Constraint(m.K, rule=schedule_charge_rule)

                def schedule_discharge_rule(m, k):
                    return m.discharge[k] == float(planned_discharge[t + k])
                m.schedule_discharge = Constraint(m.K, rule=schedule_discharge_rule)
            else:
                tiers = value_function.tiers(t + horizon, soc_now)
                m.J = RangeSet(0, len(tiers) - 1)
                m.tier = Var(m.J, bounds=lambda m, j: (0.0, tiers[j][1] - tiers[j][0]))
                m.end_value = Constraint(expr=m.soc[horizon] == sum(m.tier[j] for j in m.J))

        def balance_rule(m, k):
            supply = sum(m.p[g, k] for g in m.G) + m.y[k]
            if with_storage:
                supply = supply + m.discharge[k] - m.charge[k]
            return supply == float(snapshot.demand[t + k])
        m.balance = Constraint(m.K, rule=balance_rule)

        def period_cost_rule(m, k):
            cost = sum(unit[g].marginal_cost * m.p[g, k] * dt for g in m.G)
            if with_storage:
                cost = cost + storage.degradation_cost * m.discharge[k] * dt
            return cost
        m.period_cost = Expression(m.K, rule=period_cost_rule)

        def objective_rule(m):
            total = sum(m.period_cost[k] for k in m.K)
            if with_storage and plan is None:
                total = total - sum(
                    tiers[j][2] * m.tier[j] * storage.energy for j in m.J
                )
            return total
        m.objective = Objective(rule=objective_rule, sense=minimize)
        return m
