"""Per-step population metrics.

compute_step_metrics() is a read-only pass over the lattice with two
deliberate side effects that downstream reporting relies on: every
SUSCEPTIBLE cell's `t_susceptible` and every REGROWTH cell's `t_regrowth`
advance by one timestep.

Plaques are connected components of DEAD cells over distance-1 hex
adjacency.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd
from scipy.sparse.csgraph import connected_components

from dipspread.config import SimulationConfig, config_to_dict
from dipspread.topology import HexTopology
from dipspread.types import CellState, SimulationCounters, StepMetrics


def count_plaques(cells: np.ndarray, topology: HexTopology) -> int:
    """Number of connected DEAD regions (distance-1 adjacency)."""
    dead = np.flatnonzero(cells['state'] == CellState.DEAD)
    if not len(dead):
        return 0
    sub = topology.adjacency()[dead, :][:, dead]
    n_components, _ = connected_components(sub, directed=False)
    return int(n_components)


def compute_step_metrics(
    cells: np.ndarray,
    counters: SimulationCounters,
    timestep: int = 1,
    topology: Optional[HexTopology] = None,
) -> StepMetrics:
    """Aggregate the lattice into one StepMetrics row.

    Args:
        cells: Lattice after the step committed.
        counters: Run counters (read only).
        timestep: Increment applied to the susceptible / regrowth timers.
        topology: When given, plaques are counted; otherwise n_plaques = 0.

    Returns:
        StepMetrics for counters.step.
    """
    state = cells['state']
    area = state.size
    counts = np.bincount(state.ravel().astype(np.int64), minlength=len(CellState))

    susceptible = state == CellState.SUSCEPTIBLE
    regrowth = state == CellState.REGROWTH
    cells['t_susceptible'][susceptible] += timestep
    cells['t_regrowth'][regrowth] += timestep

    def pct(*states: CellState) -> float:
        return float(sum(counts[s] for s in states)) / area * 100.0

    total_virions = int(cells['virions'].sum())
    total_dips = int(cells['dips'].sum())
    return StepMetrics(
        step=counters.step,
        total_virions=total_virions,
        total_dips=total_dips,
        total_particles=total_virions + total_dips,
        pct_susceptible=pct(CellState.SUSCEPTIBLE),
        pct_infected=pct(CellState.INFECTED_VIRION, CellState.INFECTED_DIP,
                         CellState.INFECTED_BOTH),
        pct_infected_dip_only=pct(CellState.INFECTED_DIP),
        pct_infected_both=pct(CellState.INFECTED_BOTH),
        pct_antiviral=pct(CellState.ANTIVIRAL),
        pct_dead=pct(CellState.DEAD),
        pct_regrowth_or_antiviral=pct(CellState.REGROWTH, CellState.ANTIVIRAL),
        pct_uninfected=pct(CellState.SUSCEPTIBLE, CellState.REGROWTH),
        pct_plaque=pct(CellState.DEAD),
        n_virion_only=int(counts[CellState.INFECTED_VIRION]),
        n_dip_only=int(counts[CellState.INFECTED_DIP]),
        n_both=int(counts[CellState.INFECTED_BOTH]),
        n_regrowth=int(counts[CellState.REGROWTH]),
        n_plaques=count_plaques(cells, topology) if topology is not None else 0,
        global_ifn=counters.global_ifn,
        global_ifn_per_cell=counters.global_ifn_per_cell,
        max_global_ifn=counters.max_global_ifn,
        total_dead_from_virion=counters.total_dead_from_virion,
        total_dead_from_both=counters.total_dead_from_both,
        total_random_jump_virions=counters.total_random_jump_virions,
        total_random_jump_dips=counters.total_random_jump_dips,
        antiviral_cell_count=counters.antiviral_cell_count,
        total_antiviral_time=counters.total_antiviral_time,
        regrowth_events=counters.regrowth_events,
    )


def flatten_config(config: SimulationConfig) -> Dict[str, Any]:
    """Dotted-key echo of a config, e.g. {'ifn.spread': 'local', ...}."""
    flat = {}
    for section, values in config_to_dict(config).items():
        for key, value in values.items():
            flat[f"{section}.{key}"] = value
    return flat


def metrics_record(
    metrics: StepMetrics,
    config: SimulationConfig,
    seed: Optional[int] = None,
) -> Dict[str, Any]:
    """Flat row: step metrics + DIP advantage + seed + config echo."""
    record = metrics.to_dict()
    burst_v = config.dispersal.burst_size_virion
    burst_d = config.dispersal.burst_size_dip if config.dispersal.dip_enabled else 0
    record['dip_advantage'] = burst_d / burst_v if burst_v > 0 else 0.0
    record['seed'] = seed
    record.update(flatten_config(config))
    return record


def metrics_frame(records: List[Dict[str, Any]]) -> pd.DataFrame:
    """Tabulate metric records, one row per step."""
    return pd.DataFrame.from_records(records)
