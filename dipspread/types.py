"""Core data types for dipspread.

This module is the SINGLE SOURCE OF TRUTH for:
  - CellState enumeration and the state groupings used by every engine
  - Timer / neighbour sentinels
  - CELL_DTYPE: NumPy structured array dtype for the lattice
  - Inter-module data transfer objects (SimulationCounters, StepMetrics)

All modules import these types from here. No other module defines cell fields.
"""

from dataclasses import asdict, dataclass
from enum import IntEnum

import numpy as np


# ═══════════════════════════════════════════════════════════════════════
# ENUMERATIONS
# ═══════════════════════════════════════════════════════════════════════

class CellState(IntEnum):
    """Mutually exclusive cell states.

    SUSCEPTIBLE / REGROWTH  →  INFECTED_VIRION | INFECTED_DIP | INFECTED_BOTH
    INFECTED_VIRION | INFECTED_DIP  →  INFECTED_BOTH  (acquires the other agent)
    INFECTED_VIRION | INFECTED_BOTH →  DEAD           (lysis, releases burst)
    SUSCEPTIBLE | REGROWTH | INFECTED_DIP  →  ANTIVIRAL  (sustained IFN)
    DEAD  →  REGROWTH                               (needs a live neighbour)

    Codes are stable so exported state arrays stay comparable across runs.
    """
    SUSCEPTIBLE     = 0
    INFECTED_VIRION = 1
    DEAD            = 2
    ANTIVIRAL       = 3
    REGROWTH        = 4
    INFECTED_DIP    = 5
    INFECTED_BOTH   = 6


N_STATES = len(CellState)

# State groupings (tuples of codes, usable with np.isin)
INFECTABLE_STATES = (CellState.SUSCEPTIBLE, CellState.REGROWTH)
ANTIVIRAL_ELIGIBLE_STATES = (
    CellState.SUSCEPTIBLE, CellState.REGROWTH, CellState.INFECTED_DIP,
)
INFECTED_STATES = (
    CellState.INFECTED_VIRION, CellState.INFECTED_DIP, CellState.INFECTED_BOTH,
)
LYTIC_STATES = (CellState.INFECTED_VIRION, CellState.INFECTED_BOTH)
# Neighbour states that allow a dead cell to regrow
REGROWTH_SUPPORT_STATES = (CellState.SUSCEPTIBLE, CellState.ANTIVIRAL)


# ═══════════════════════════════════════════════════════════════════════
# SENTINELS
# ═══════════════════════════════════════════════════════════════════════

INACTIVE = -1   # timer not running / value not drawn yet
EXPIRED = -2    # antiviral exposure timer consumed by a conversion
INVALID = -1    # off-grid neighbour coordinate (both components)


# ═══════════════════════════════════════════════════════════════════════
# CELL_DTYPE — Canonical structured array for the lattice
# ═══════════════════════════════════════════════════════════════════════

CELL_DTYPE = np.dtype([
    # --- State ---
    ('state',              np.int8),     # CellState code
    ('previous_state',     np.int8),     # state before antiviral conversion (-1 none)
    ('state_changed',      np.bool_),    # dirty flag, reset every step
    ('antiviral_flag',     np.bool_),    # already counted as antiviral

    # --- Extracellular particles / signal ---
    ('virions',            np.int64),    # free virions at the cell (>= 0)
    ('dips',               np.int64),    # free DIPs at the cell (>= 0)
    ('ifn',                np.float64),  # IFN concentration (>= 0)

    # --- Timers (steps; -1 inactive, -2 expired) ---
    ('t_infection',        np.int32),    # since virion / both infection
    ('t_infection_dip',    np.int32),    # since DIP-only infection
    ('t_dead',             np.int32),
    ('t_regrowth',         np.int32),
    ('t_susceptible',      np.int32),
    ('t_antiviral',        np.int32),    # IFN exposure time

    # --- Per-cell draws ---
    ('lysis_threshold',    np.int32),    # -1 until drawn, cleared on lysis
    ('antiviral_duration', np.int32),    # -1 until first IFN exposure
])

_TIMER_FIELDS = (
    't_infection', 't_infection_dip', 't_dead', 't_regrowth', 't_antiviral',
    'lysis_threshold', 'antiviral_duration', 'previous_state',
)


def allocate_cells(n: int) -> np.ndarray:
    """Allocate an (n, n) lattice with every cell SUSCEPTIBLE and idle.

    Particle counts and IFN start at zero, every timer is INACTIVE except
    `t_susceptible`, which starts counting from 0.

    Args:
        n: Lattice side length.

    Returns:
        Structured array of shape (n, n) with CELL_DTYPE.
    """
    cells = np.zeros((n, n), dtype=CELL_DTYPE)
    cells['state'] = CellState.SUSCEPTIBLE
    for name in _TIMER_FIELDS:
        cells[name] = INACTIVE
    cells['t_susceptible'] = 0
    return cells


# ═══════════════════════════════════════════════════════════════════════
# DATA TRANSFER OBJECTS
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class SimulationCounters:
    """Run-level mutable state threaded through every step.

    Attributes:
        step: Number of completed steps.
        global_ifn: Global IFN pool (GLOBAL mode) or sum of the local field.
        global_ifn_per_cell: global_ifn / lattice area.
        max_global_ifn: Running maximum of global_ifn.
        total_dead_from_virion: Lyses of INFECTED_VIRION cells.
        total_dead_from_both: Lyses of INFECTED_BOTH cells.
        total_random_jump_virions: Virions moved by the partition random leg.
        total_random_jump_dips: DIPs moved by the partition random leg.
        antiviral_cell_count: Distinct cells that ever turned antiviral.
        total_antiviral_time: Sum of antiviral durations at conversion.
        regrowth_events: DEAD → REGROWTH transitions.
    """
    step: int = 0
    global_ifn: float = 0.0
    global_ifn_per_cell: float = 0.0
    max_global_ifn: float = 0.0
    total_dead_from_virion: int = 0
    total_dead_from_both: int = 0
    total_random_jump_virions: int = 0
    total_random_jump_dips: int = 0
    antiviral_cell_count: int = 0
    total_antiviral_time: int = 0
    regrowth_events: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class StepMetrics:
    """Per-step population statistics (percentages are of the lattice area)."""
    step: int
    total_virions: int
    total_dips: int
    total_particles: int
    pct_susceptible: float
    pct_infected: float
    pct_infected_dip_only: float
    pct_infected_both: float
    pct_antiviral: float
    pct_dead: float
    pct_regrowth_or_antiviral: float
    pct_uninfected: float
    pct_plaque: float
    n_virion_only: int
    n_dip_only: int
    n_both: int
    n_regrowth: int
    n_plaques: int
    global_ifn: float
    global_ifn_per_cell: float
    max_global_ifn: float
    total_dead_from_virion: int
    total_dead_from_both: int
    total_random_jump_virions: int
    total_random_jump_dips: int
    antiviral_cell_count: int
    total_antiviral_time: int
    regrowth_events: int

    def to_dict(self) -> dict:
        return asdict(self)
