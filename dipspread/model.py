"""Simulation driver: lattice setup, seeding and the per-step update.

Step order (one call to `step()`):
  1. IFN decay; effective IFN for infection (regional or global average)
  2. Antiviral induction, then new infections       → next-state buffer
  3. Infected cells, row-major: lysis + dispersal, co-infection upgrade,
     IFN production (ledger)
  4. Dead-cell regrowth                             → next-state buffer
  5. Commit next-state buffer
  6. Commit IFN production, refresh IFN totals
  7. Free-particle half-life decay
  8. Metrics

State transitions in 2–4 read the start-of-step states; particle counts
and timers are read from the live, in-progress lattice.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import math
from typing import Callable, List, Optional

import numpy as np
import pandas as pd

from dipspread.config import (
    ModelParameters,
    SeedingSection,
    SimulationConfig,
    default_config,
    resolve_parameters,
)
from dipspread.dispersal import decay_particles
from dipspread.ifn import ProductionLedger, begin_step_ifn, finish_step_ifn
from dipspread.infection import antiviral_pass, infected_pass, infection_pass
from dipspread.metrics import compute_step_metrics, metrics_frame, metrics_record
from dipspread.perf import PerfMonitor
from dipspread.regrowth import regrowth_pass
from dipspread.rng import create_rng
from dipspread.snapshots import SnapshotRecorder
from dipspread.topology import HexTopology, build_topology
from dipspread.types import (
    INACTIVE,
    CellState,
    SimulationCounters,
    StepMetrics,
    allocate_cells,
)


# ═══════════════════════════════════════════════════════════════════════
# INITIALISATION
# ═══════════════════════════════════════════════════════════════════════

def initialize_grid(n: int) -> np.ndarray:
    """All-SUSCEPTIBLE (n, n) lattice with idle timers."""
    return allocate_cells(n)


def _round_count(value: float) -> int:
    """Round half away from zero; counts are non-negative."""
    return int(math.floor(value + 0.5))


def seed_infection(
    cells: np.ndarray,
    seeding: SeedingSection,
    params: ModelParameters,
    rng: np.random.Generator,
) -> None:
    """Place the initial inoculum.

    Modes:
      particles — counts placed at the seed cell
      infected  — counts placed at the seed cell, which also starts infected
                  (BOTH if both counts are positive, else VIRION or DIP)
      scatter   — every particle dropped on a uniform random cell

    DIP counts are ignored when DIPs are disabled.
    """
    n = cells.shape[0]
    v_init = _round_count(seeding.virion_pfu)
    d_init = _round_count(seeding.dip_pfu) if params.dip_enabled else 0
    row = seeding.row if seeding.row is not None else n // 2
    col = seeding.col if seeding.col is not None else n // 2

    if seeding.mode == 'scatter':
        for name, count in (('virions', v_init), ('dips', d_init)):
            targets = rng.integers(0, n * n, size=count)
            cells[name] += np.bincount(targets, minlength=n * n).reshape(n, n)
        return

    cells['virions'][row, col] += v_init
    cells['dips'][row, col] += d_init
    if seeding.mode != 'infected' or (v_init == 0 and d_init == 0):
        return

    if v_init > 0 and d_init > 0:
        state = CellState.INFECTED_BOTH
    elif v_init > 0:
        state = CellState.INFECTED_VIRION
    else:
        state = CellState.INFECTED_DIP
    cells['state'][row, col] = state
    cells['t_susceptible'][row, col] = INACTIVE
    if state == CellState.INFECTED_DIP:
        cells['t_infection_dip'][row, col] = 0
    else:
        cells['t_infection'][row, col] = 0


# ═══════════════════════════════════════════════════════════════════════
# STEP
# ═══════════════════════════════════════════════════════════════════════

def step(
    cells: np.ndarray,
    topology: HexTopology,
    params: ModelParameters,
    counters: SimulationCounters,
    rng: np.random.Generator,
    perf: Optional[PerfMonitor] = None,
) -> StepMetrics:
    """Advance the lattice by one timestep in place.

    Args:
        cells: Lattice (modified in place).
        topology: Neighbour tables for this run.
        params: Resolved model parameters.
        counters: Run counters (modified in place).
        rng: Run generator.
        perf: Optional phase timer.

    Returns:
        Metrics of the lattice after the step.
    """
    if perf is None:
        perf = PerfMonitor(enabled=False)

    cells['state_changed'] = False

    with perf.track('ifn_decay'):
        effective_ifn = begin_step_ifn(cells, topology, params, counters)

    new_state = cells['state'].copy()

    with perf.track('antiviral'):
        antiviral_pass(cells, new_state, params, counters, rng)
    with perf.track('infection'):
        infection_pass(cells, new_state, effective_ifn, params, rng)

    ledger = ProductionLedger(params.grid_size)
    with perf.track('infected_cells'):
        infected_pass(cells, new_state, effective_ifn, topology, params,
                      counters, ledger, rng)

    with perf.track('regrowth'):
        regrowth_pass(cells, new_state, topology, params, counters, rng)

    cells['state'] = new_state

    with perf.track('ifn_production'):
        finish_step_ifn(cells, ledger, topology, params, counters)
    with perf.track('particle_decay'):
        decay_particles(cells, params)

    counters.step += 1
    with perf.track('metrics'):
        return compute_step_metrics(cells, counters, params.timestep, topology)


# ═══════════════════════════════════════════════════════════════════════
# RUN
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class SimulationResult:
    """Results from one run."""
    config: SimulationConfig
    params: ModelParameters
    seed: int                                   # seed that replays this run
    cells: np.ndarray                           # final lattice
    counters: SimulationCounters
    metrics: List[StepMetrics] = field(default_factory=list)
    snapshot_recorder: Optional[SnapshotRecorder] = None

    def records(self) -> List[dict]:
        """Flat per-step rows (metrics + config echo)."""
        return [metrics_record(m, self.config, self.seed) for m in self.metrics]

    def to_frame(self) -> pd.DataFrame:
        return metrics_frame(self.records())


def run_simulation(
    config: Optional[SimulationConfig] = None,
    seed: Optional[int] = None,
    progress_callback: Optional[Callable[[int, int], None]] = None,
    snapshot_recorder: Optional[SnapshotRecorder] = None,
    perf: Optional[PerfMonitor] = None,
) -> SimulationResult:
    """Run a full simulation.

    Args:
        config: Simulation configuration (defaults if None).
        seed: RNG seed; overrides config.simulation.seed. None in both
            means fresh entropy (reported in the result).
        progress_callback: Optional callable(step, n_steps), called after
            every step.
        snapshot_recorder: Optional recorder; step 0 is the seeded lattice.
        perf: Optional phase timer.

    Returns:
        SimulationResult.

    Raises:
        ValueError: If the configuration is invalid.
    """
    if config is None:
        config = default_config()
    if perf is None:
        perf = PerfMonitor(enabled=False)
    params = resolve_parameters(config)
    if seed is None:
        seed = config.simulation.seed
    rng, seed_used = create_rng(seed)

    perf.start()
    with perf.track('topology'):
        topology = build_topology(params, rng)
    cells = initialize_grid(params.grid_size)
    seed_infection(cells, config.seeding, params, rng)
    counters = SimulationCounters()

    if snapshot_recorder is not None:
        snapshot_recorder.capture(0, cells)

    history = []
    for t in range(1, params.n_steps + 1):
        history.append(step(cells, topology, params, counters, rng, perf))
        if snapshot_recorder is not None:
            snapshot_recorder.capture(t, cells)
        if progress_callback is not None:
            progress_callback(t, params.n_steps)
    perf.stop()

    return SimulationResult(
        config=config,
        params=params,
        seed=seed_used,
        cells=cells,
        counters=counters,
        metrics=history,
        snapshot_recorder=snapshot_recorder,
    )
