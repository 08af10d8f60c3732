# esmarket/bidding/value_function.py

"""
Storage opportunity-value functions and the bids derived from them.

The value function is built by backward induction over a discretised
state-of-charge (SoC) grid. For each period t and SoC sample e it holds the
marginal value of one more MWh stored at the start of period t, given the
price trajectory the storage expects to face from t onwards.

Recursion (one-way efficiency eta, discharge cost c, normalised power P,
price lambda, next-period marginal value v)::

    v_b = v(e + P*eta)        value after a full-power charge
    v_d = v(e - P/eta)        value after a full-power discharge

    lambda <= v_b*eta          -> v_b            charge at full power
    lambda <= v*eta            -> lambda/eta     charge partially
    lambda <= v/eta + c        -> v              stay idle
    lambda <= v_d/eta + c      -> (lambda-c)*eta discharge partially
    otherwise                  -> v_d            discharge at full power

Each row is non-increasing in SoC because the map above preserves that
property, so the total value (the integral of a row) is concave in SoC. The
non-increasing rows are read directly as stepwise bid/offer curves by the
clearing stages.

With bid uncertainty the price is treated as Gaussian around the forecast
and each row is the expectation of the same map.

Example
-------
>>> storage = StorageSpec(power=10, duration=4, efficiency=0.9,
...                       degradation_cost=0, soc_resolution=0.05)
>>> vf = build_value_function([20, 50, 20, 50], storage)
>>> vf.marginal.shape
(5, 21)
"""

import logging
import numpy as np
import pandas as pd
from dataclasses import dataclass
from typing import List, Sequence, Tuple
from scipy.stats import norm

from ..constants import TOL, TERMINAL_SOC_PENALTY, DEFAULT_STEP_HOURS
from ..errors import ConfigurationError
from ..interfaces.storage import StorageSpec

logger = logging.getLogger(__name__)


# =============================================================================
# Backward induction
# =============================================================================

def _terminal_marginal(grid: np.ndarray, target: float) -> np.ndarray:
    """Marginal value after the last period: penalty below the SoC target."""
    terminal = np.zeros_like(grid)
    if target > 0:
        terminal[grid < target - TOL] = TERMINAL_SOC_PENALTY
    return terminal


def _shifted(v: np.ndarray, grid: np.ndarray, power: float, eta: float
             ) -> Tuple[np.ndarray, np.ndarray]:
    """
    Next-period marginal value after a full charge and a full discharge.

    Points past full are padded with a large negative value (no room left to
    charge), points below empty with a large positive value (nothing left to
    discharge).
    """
    v_charge = np.interp(grid + power * eta, grid, v, right=-TERMINAL_SOC_PENALTY)
    v_discharge = np.interp(grid - power / eta, grid, v, left=TERMINAL_SOC_PENALTY)
    return v_charge, v_discharge


def _backward_step(v: np.ndarray, price: float, grid: np.ndarray,
                   power: float, eta: float, cost: float) -> np.ndarray:
    """One deterministic step of the marginal-value recursion."""
    v_charge, v_discharge = _shifted(v, grid, power, eta)
    conditions = [
        price <= v_charge * eta,
        price <= v * eta,
        price <= v / eta + cost,
        price <= v_discharge / eta + cost,
    ]
    choices = [
        v_charge,
        np.full_like(v, price / eta),
        v,
        np.full_like(v, (price - cost) * eta),
    ]
    return np.select(conditions, choices, default=v_discharge)


def _expected_backward_step(v: np.ndarray, price: float, sigma: float,
                            grid: np.ndarray, power: float, eta: float,
                            cost: float) -> np.ndarray:
    """
    Expectation of the recursion when the price is N(price, sigma**2).

    Uses the partial expectation of a normal variable on an interval,
    E[d; a < d <= b] = mu*(F(b) - F(a)) + sigma*(f(a) - f(b)), with F and f
    the standard normal CDF and PDF of the standardised bounds.
    """
    v_charge, v_discharge = _shifted(v, grid, power, eta)
    # Branches are tested in order, so a threshold below its predecessor
    # leaves an empty interval
    thresholds = np.maximum.accumulate(np.array([
        v_charge * eta,
        v * eta,
        v / eta + cost,
        v_discharge / eta + cost,
    ]), axis=0)
    z = [(a - price) / sigma for a in thresholds]
    cdf = [norm.cdf(zi) for zi in z]
    pdf = [norm.pdf(zi) for zi in z]

    def partial(i, j):
        return price * (cdf[j] - cdf[i]) + sigma * (pdf[i] - pdf[j])

    return (
        v_charge * cdf[0]
        + partial(0, 1) / eta
        + v * (cdf[2] - cdf[1])
        + eta * (partial(2, 3) - cost * (cdf[3] - cdf[2]))
        + v_discharge * (1.0 - cdf[3])
    )


# =============================================================================
# ValueFunction
# =============================================================================

@dataclass(frozen=True, eq=False)
class ValueFunction:
    """
    Marginal value of stored energy over (period, SoC sample).

    Attributes
    ----------
    prices : np.ndarray
        Price trajectory the function was built from ($/MWh), length T.
    soc_grid : np.ndarray
        SoC samples on [0, 1], length N.
    marginal : np.ndarray
        Array of shape (T + 1, N). ``marginal[t, s]`` is the value of one
        more MWh stored at SoC ``soc_grid[s]`` at the start of period t;
        row T is the terminal value.
    efficiency : float
        One-way storage efficiency.
    degradation_cost : float
        Discharge cost ($/MWh).
    power : float
        Normalised power (SoC moved by one full-power period).
    segments : int
        Number of SoC tiers in the bid; 1 means a single power-quantity bid
        priced at the current SoC.
    bid_uncertainty : float
        Standard deviation of the price used when building ($/MWh).
    """
    prices: np.ndarray
    soc_grid: np.ndarray
    marginal: np.ndarray
    efficiency: float
    degradation_cost: float
    power: float
    segments: int = 1
    bid_uncertainty: float = 0.0

    @property
    def horizon(self) -> int:
        return len(self.prices)

    @property
    def n_samples(self) -> int:
        return len(self.soc_grid)

    def _row(self, t: int) -> np.ndarray:
        return self.marginal[min(max(int(t), 0), self.horizon)]

    def total(self, t: int) -> np.ndarray:
        """
        Total value of stored energy at each SoC sample, zero at empty.

        Integrates the marginal row with the trapezoid rule. Values are per
        unit of energy rating; multiply by the rating for dollars.
        """
        row = self._row(t)
        areas = 0.5 * (row[1:] + row[:-1]) * np.diff(self.soc_grid)
        return np.concatenate([[0.0], np.cumsum(areas)])

    def marginal_at(self, t: int, soc: float) -> float:
        """Marginal value at an arbitrary SoC, interpolated on the grid."""
        return float(np.interp(soc, self.soc_grid, self._row(t)))

    def value_at(self, t: int, soc: float) -> float:
        return float(np.interp(soc, self.soc_grid, self.total(t)))

    def offer_prices(self, t: int, soc: float) -> Tuple[float, float]:
        """
        Charge bid and discharge offer implied at a SoC.

        Returns
        -------
        tuple of float
            ``(v * eta, v / eta + c)``: the highest price at which the unit
            buys and the lowest at which it sells.
        """
        v = self.marginal_at(t, soc)
        return v * self.efficiency, v / self.efficiency + self.degradation_cost

    def tiers(self, t: int, soc: float = 0.0) -> List[Tuple[float, float, float]]:
        """
        Storage bid for period t as SoC tiers.

        Parameters
        ----------
        t : int
            Period whose value row prices the bid.
        soc : float
            Current SoC; only used by the single-tier bid.

        Returns
        -------
        list of (lower, upper, price)
            Tiers covering [0, 1] in increasing SoC order. Prices are
            non-increasing.
        """
        if self.segments == 1:
            return [(0.0, 1.0, self.marginal_at(t, soc))]
        edges = np.linspace(0.0, 1.0, self.segments + 1)
        values = np.interp(edges, self.soc_grid, self.total(t))
        prices = np.diff(values) / np.diff(edges)
        return [
            (float(lo), float(hi), float(p))
            for lo, hi, p in zip(edges[:-1], edges[1:], prices)
        ]

    def bid_curve(self, t: int, soc: float = 0.0) -> pd.DataFrame:
        """
        Return the period-t tiers with implied charge and discharge prices.

        Returns
        -------
        pd.DataFrame
            Columns: SOC_FROM, SOC_TO, VALUE, CHARGE_PRICE, DISCHARGE_PRICE.
        """
        rows = []
        for lo, hi, price in self.tiers(t, soc):
            rows.append({
                'SOC_FROM': lo,
                'SOC_TO': hi,
                'VALUE': price,
                'CHARGE_PRICE': price * self.efficiency,
                'DISCHARGE_PRICE': price / self.efficiency + self.degradation_cost,
            })
        return pd.DataFrame(rows)

    def policy(self, t: int, soc: float) -> float:
        """
        SoC after period t when trading optimally at ``prices[t]``.

        The payoff of moving to SoC e' is concave and piecewise linear with
        kinks at the grid samples and at the current SoC, so it is maximised
        over those candidates. Staying idle wins ties.
        """
        eta = self.efficiency
        lo = max(0.0, soc - self.power / eta)
        hi = min(1.0, soc + self.power * eta)
        inner = self.soc_grid[(self.soc_grid > lo) & (self.soc_grid < hi)]
        candidates = np.unique(np.concatenate([inner, [lo, hi, soc]]))

        charge = np.maximum(candidates - soc, 0.0) / eta
        discharge = np.maximum(soc - candidates, 0.0) * eta
        payoff = (
            self.prices[t] * (discharge - charge)
            - self.degradation_cost * discharge
            + np.interp(candidates, self.soc_grid, self.total(t + 1))
        )
        idle = payoff[np.searchsorted(candidates, soc)]
        best = int(np.argmax(payoff))
        if idle >= payoff[best] - TOL:
            return float(soc)
        return float(candidates[best])

    def simulate(self, initial_soc: float = 0.0
                 ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Follow the policy through the whole price trajectory.

        Returns
        -------
        soc : np.ndarray
            SoC path, length T + 1.
        charge : np.ndarray
            Energy drawn from the grid per period, as a fraction of the
            energy rating, length T.
        discharge : np.ndarray
            Energy delivered to the grid per period, as a fraction of the
            energy rating, length T.
        """
        soc = np.empty(self.horizon + 1)
        charge = np.zeros(self.horizon)
        discharge = np.zeros(self.horizon)
        soc[0] = initial_soc
        for t in range(self.horizon):
            nxt = min(max(self.policy(t, soc[t]), 0.0), 1.0)
            if nxt > soc[t]:
                charge[t] = (nxt - soc[t]) / self.efficiency
            else:
                discharge[t] = (soc[t] - nxt) * self.efficiency
            soc[t + 1] = nxt
        return soc, charge, discharge

    def to_frame(self) -> pd.DataFrame:
        """
        Return the marginal values in long format.

        Returns
        -------
        pd.DataFrame
            Columns: PERIOD, SOC, VALUE. PERIOD T is the terminal row.
        """
        periods, socs = np.meshgrid(
            np.arange(self.horizon + 1), self.soc_grid, indexing='ij'
        )
        return pd.DataFrame({
            'PERIOD': periods.ravel(),
            'SOC': socs.ravel(),
            'VALUE': self.marginal.ravel(),
        })


# =============================================================================
# Builder
# =============================================================================

def build_value_function(
    prices: Sequence[float],
    storage: StorageSpec,
    step_hours: float = DEFAULT_STEP_HOURS,
    segments: int = 1,
    bid_uncertainty: float = 0.0,
) -> ValueFunction:
    """
    Build the value function for a price trajectory by backward induction.

    Parameters
    ----------
    prices : sequence of float
        Expected clearing prices, one per period ($/MWh).
    storage : StorageSpec
        Supplies efficiency, degradation cost, SoC grid, terminal target
        and the normalised power. Only the power-to-energy ratio matters,
        so one function serves every rating with the same duration.
    step_hours : float
        Period length (hours).
    segments : int
        Number of SoC tiers in the derived bids (1 = power-quantity bid).
    bid_uncertainty : float
        Standard deviation of the price around ``prices`` ($/MWh). Zero for
        a deterministic recursion.

    Returns
    -------
    ValueFunction
        Marginal values of shape (T + 1, N).

    Raises
    ------
    ConfigurationError
        If the grid has fewer than 2 samples, the efficiency is not
        positive, prices are empty or non-finite, segments < 1,
        bid_uncertainty < 0, or the storage has no power rating.
    """
    prices = np.array(prices, dtype=float).reshape(-1)
    if len(prices) == 0:
        raise ConfigurationError("Price trajectory must not be empty")
    if not np.all(np.isfinite(prices)):
        raise ConfigurationError("Price trajectory contains non-finite values")
    if storage.n_samples < 2:
        raise ConfigurationError(
            f"SoC grid needs at least 2 samples, got {storage.n_samples}"
        )
    if not storage.efficiency > 0:
        raise ConfigurationError(
            f"Efficiency must be positive, got {storage.efficiency}"
        )
    if not storage.active:
        raise ConfigurationError("Value function needs a storage unit with positive power")
    if int(segments) < 1:
        raise ConfigurationError(f"segments must be >= 1, got {segments}")
    if bid_uncertainty < 0:
        raise ConfigurationError(
            f"bid_uncertainty must be non-negative, got {bid_uncertainty}"
        )
    if not step_hours > 0:
        raise ConfigurationError(f"step_hours must be positive, got {step_hours}")

    grid = storage.soc_grid
    eta = storage.efficiency
    cost = storage.degradation_cost
    power = storage.normalized_power(step_hours)
    horizon = len(prices)

    marginal = np.empty((horizon + 1, len(grid)))
    marginal[horizon] = _terminal_marginal(grid, storage.terminal_target)
    for t in range(horizon - 1, -1, -1):
        if bid_uncertainty > 0:
            marginal[t] = _expected_backward_step(
                marginal[t + 1], prices[t], bid_uncertainty, grid, power, eta, cost
            )
        else:
            marginal[t] = _backward_step(
                marginal[t + 1], prices[t], grid, power, eta, cost
            )

    prices.flags.writeable = False
    marginal.flags.writeable = False
    logger.debug(
        f"Built value function: T={horizon}, N={len(grid)}, P={power:.3f}, "
        f"sigma={bid_uncertainty}"
    )
    return ValueFunction(
        prices=prices,
        soc_grid=grid,
        marginal=marginal,
        efficiency=eta,
        degradation_cost=cost,
        power=power,
        segments=int(segments),
        bid_uncertainty=float(bid_uncertainty),
    )
