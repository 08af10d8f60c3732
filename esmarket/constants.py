# esmarket/constants.py

"""
Constants shared by the bidding and clearing modules.

Defaults mirror the reference experiment: a 24-period day of hourly steps,
a 4-period real-time look-ahead, 10 MW / 40 MWh storage (power ratio 0.25)
with 90% one-way efficiency and 25 $/MWh degradation cost.
"""

# Tolerance for floating point comparisons
TOL = 1e-8

# Tolerance for checks on solver output (power balance, SoC bounds)
SOLVER_TOL = 1e-5

# Period length of the reference experiment (hours)
DEFAULT_STEP_HOURS = 1.0

# Real-time look-ahead window (periods)
DEFAULT_WINDOW = 4

# Storage defaults
DEFAULT_POWER_RATIO = 0.25
DEFAULT_EFFICIENCY = 0.9
DEFAULT_DEGRADATION_COST = 25.0
DEFAULT_SOC_RESOLUTION = 0.01

# Marginal value ($/MWh) assigned below a terminal SoC target and used to pad
# the value function outside [0, 1]. Must exceed any clearing price.
TERMINAL_SOC_PENALTY = 1e3

# Pyomo solver used when none is configured
DEFAULT_SOLVER = "appsi_highs"

# Day-ahead storage participation modes
CO_OPTIMIZED = "co_optimized"
PRICE_TAKER = "price_taker"
DAY_AHEAD_MODES = (CO_OPTIMIZED, PRICE_TAKER)

# Real-time storage modes
STORAGE_BIDS = "storage"
SCHEDULE = "schedule"
BID = "bid"
REAL_TIME_MODES = (STORAGE_BIDS, SCHEDULE, BID)

# Coupling of the DA+RT real-time pass to the day-ahead storage schedule
DART_COUPLINGS = (SCHEDULE, BID)
