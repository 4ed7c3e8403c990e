"""Interferon production, decay and spread.

Two mutually exclusive transport modes, fixed for the whole run:

  LOCAL  — every cell owns an IFN concentration (`cells['ifn']`). Producers
           split their output evenly over their IFN-influence area. The
           infection engine reads the regional average over that area.
  GLOBAL — one scalar pool (`counters.global_ifn`) collects all production;
           pool / lattice area is broadcast to every cell.
  NONE   — IFN disabled: production constants and tau are zero, so the
           pool stays empty. Handled by the GLOBAL code path.

Per step:
  1. begin_step_ifn()  — half-life decay, effective IFN for infection
  2. infected cells record production into a ProductionLedger
  3. finish_step_ifn() — commit production, update running totals

Production rates (per step, once the production delay has elapsed):
  INFECTED_VIRION  R                       (0 if virions do not stimulate)
  INFECTED_BOTH    R + both_stimulation
  INFECTED_DIP     dip_only_stimulation
"""

from __future__ import annotations

from enum import Enum
import math

import numpy as np

from dipspread.config import ModelParameters
from dipspread.topology import HexTopology
from dipspread.types import CellState, SimulationCounters


class IFNMode(str, Enum):
    GLOBAL = 'global'
    LOCAL = 'local'
    NONE = 'none'


# ═══════════════════════════════════════════════════════════════════════
# DECAY
# ═══════════════════════════════════════════════════════════════════════

def half_life_factor(dt: float, half_life: float) -> float:
    """Multiplicative decay over `dt` for a given half-life.

    A zero half-life means no decay (factor 1.0).
    """
    if half_life <= 0:
        return 1.0
    return 0.5 ** (dt / half_life)


def decay_field(
    field: np.ndarray,
    half_life: float,
    threshold: float,
    dt: float = 1.0,
) -> None:
    """Decay a concentration field in place.

    Values that fall below `threshold` are cleared to exactly 0. Negative
    inputs are clamped to 0.

    Args:
        field: Concentration array (modified in place).
        half_life: Half-life in steps (0 = no decay).
        threshold: Clearance threshold.
        dt: Elapsed time.
    """
    if half_life > 0:
        field *= half_life_factor(dt, half_life)
        field[field < threshold] = 0.0
    np.maximum(field, 0.0, out=field)


def decay_pool(value: float, half_life: float, threshold: float, dt: float = 1.0) -> float:
    """Scalar counterpart of decay_field() for the global pool."""
    if half_life > 0:
        value *= half_life_factor(dt, half_life)
        if value < threshold:
            return 0.0
    return max(value, 0.0)


# ═══════════════════════════════════════════════════════════════════════
# SPREAD
# ═══════════════════════════════════════════════════════════════════════

def regional_average(field: np.ndarray, topology: HexTopology) -> np.ndarray:
    """Mean of `field` over every cell's IFN-influence area.

    Args:
        field: (n, n) concentration field.
        topology: Topology with an IFN area (local spread).

    Returns:
        (n, n) array of regional averages.
    """
    n = topology.grid_size
    sums = topology.ifn_area @ field.ravel()
    with np.errstate(divide='ignore', invalid='ignore'):
        avg = np.where(topology.ifn_area_size > 0, sums / topology.ifn_area_size, 0.0)
    return avg.reshape(n, n)


def production_rate(state: int, params: ModelParameters) -> float:
    """IFN produced per step by one infected cell in `state`."""
    if state == CellState.INFECTED_VIRION:
        return float(params.virion_ifn_rate)
    if state == CellState.INFECTED_BOTH:
        return params.virion_ifn_rate + params.both_stimulation
    if state == CellState.INFECTED_DIP:
        return params.dip_only_stimulation
    return 0.0


def ifn_delay_elapsed(elapsed: int, params: ModelParameters, rng: np.random.Generator) -> bool:
    """Whether a cell infected `elapsed` steps ago produces IFN this step.

    The delay is redrawn every call as delay + floor(N(0, 1) * delay_std).
    """
    jitter = math.floor(rng.standard_normal() * params.ifn_delay_std)
    return elapsed > params.ifn_delay + jitter


class ProductionLedger:
    """Per-cell IFN production accumulated during one step."""

    def __init__(self, grid_size: int):
        self.grid_size = grid_size
        self.amount = np.zeros(grid_size * grid_size, dtype=np.float64)

    def add(self, i: int, j: int, amount: float) -> None:
        if amount > 0:
            self.amount[i * self.grid_size + j] += amount

    @property
    def total(self) -> float:
        return float(self.amount.sum())


def apply_production(
    cells: np.ndarray,
    ledger: ProductionLedger,
    topology: HexTopology,
    params: ModelParameters,
    counters: SimulationCounters,
) -> None:
    """Commit one step of production to the active IFN store.

    LOCAL: each producer's amount is split evenly over its IFN area and
    added once per target cell. GLOBAL / NONE: the total joins the pool.
    """
    if params.ifn_mode == IFNMode.LOCAL:
        n = topology.grid_size
        share = np.zeros_like(ledger.amount)
        producing = ledger.amount > 0
        share[producing] = ledger.amount[producing] / topology.ifn_area_size[producing]
        cells['ifn'] += (topology.ifn_area.T @ share).reshape(n, n)
    else:
        counters.global_ifn += ledger.total


# ═══════════════════════════════════════════════════════════════════════
# STEP HOOKS
# ═══════════════════════════════════════════════════════════════════════

def begin_step_ifn(
    cells: np.ndarray,
    topology: HexTopology,
    params: ModelParameters,
    counters: SimulationCounters,
) -> np.ndarray:
    """Decay IFN and return the effective IFN seen by the infection engine.

    LOCAL: the field decays per cell; effective IFN is the regional average.
    GLOBAL / NONE: the pool decays; pool / area is written into every cell
    and is also the effective IFN.

    Returns:
        (n, n) effective IFN.
    """
    threshold = params.ifn_threshold
    if params.ifn_mode == IFNMode.LOCAL:
        decay_field(cells['ifn'], params.ifn_half_life, threshold, params.timestep)
        return regional_average(cells['ifn'], topology)

    counters.global_ifn = decay_pool(
        counters.global_ifn, params.ifn_half_life, threshold, params.timestep)
    counters.global_ifn_per_cell = counters.global_ifn / params.n_cells
    cells['ifn'] = counters.global_ifn_per_cell
    return np.full(cells.shape, counters.global_ifn_per_cell)


def finish_step_ifn(
    cells: np.ndarray,
    ledger: ProductionLedger,
    topology: HexTopology,
    params: ModelParameters,
    counters: SimulationCounters,
) -> None:
    """Commit production and refresh the running IFN totals."""
    apply_production(cells, ledger, topology, params, counters)
    if params.ifn_mode == IFNMode.LOCAL:
        counters.global_ifn = float(cells['ifn'].sum())
    counters.global_ifn_per_cell = counters.global_ifn / params.n_cells
    counters.max_global_ifn = max(counters.max_global_ifn, counters.global_ifn)
