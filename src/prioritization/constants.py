"""
Shared default constants for the prioritization workflow.
Keeping them in one place helps newcomers see the key knobs quickly.
"""

from __future__ import annotations

# Input layers expected in the practical data directory
SPECIES_FILE = "species.tif"
COST_FILE = "cost.tif"
LOCKED_IN_FILE = "locked_in.tif"
LOCKED_OUT_FILE = "locked_out.tif"

# Cost is much finer than the species layers (12 fine cells per coarse cell)
AGGREGATION_FACTOR = 12
COST_REDUCER = "median"
LOCK_REDUCER = "modal"

# Targets and budget
RELATIVE_TARGET = 0.3
HIGH_RELATIVE_TARGET = 0.7
BUDGET_FRACTION = 0.3

# Boundary penalties (boundary length modifier and edge factor)
BOUNDARY_PENALTY = 0.003
EDGE_FACTOR = 0.5

# Solver tuning
SOLVER = "SCIP"
SOLVERS = ["SCIP", "CBC", "CPSAT", "GUROBI"]
GAP = 0.1
NUM_THREADS = 1
TIME_LIMIT_MS: int | None = None

# CP-SAT needs integer coefficients
MAX_SCALING_FACTOR = 10**6
OBJECTIVE_RESOLUTION = 10**4

# Status classification
OPTIMALITY_TOLERANCE = 1e-6
SELECTION_THRESHOLD = 0.5

# Importance map styling (gray cells are not selected)
IMPORTANCE_BREAKS = [0.0, 1e-10, 0.005, 0.01, 0.025]
IMPORTANCE_COLORS = ["#e5e5e5", "#fff7ec", "#fc8d59", "#7f0000"]
