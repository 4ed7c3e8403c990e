"""Dead-cell regrowth.

A DEAD cell ages by one timestep per step. While at least one valid
distance-1 neighbour is SUSCEPTIBLE or ANTIVIRAL, a fresh waiting time
~ Normal(mean, std) (truncated to int) is drawn each step, and the cell
becomes REGROWTH once its dead time reaches it. A dead cell without such a
neighbour never regrows.
"""

from __future__ import annotations

import numpy as np

from dipspread.config import ModelParameters
from dipspread.topology import HexTopology
from dipspread.types import (
    INACTIVE,
    INVALID,
    REGROWTH_SUPPORT_STATES,
    CellState,
    SimulationCounters,
)


def has_support_neighbor(state: np.ndarray, ring1: np.ndarray) -> np.ndarray:
    """Cells with a SUSCEPTIBLE or ANTIVIRAL cell among their valid distance-1 neighbours.

    Args:
        state: (n, n) state codes.
        ring1: (n, n, 6, 2) distance-1 table with (-1, -1) sentinels.

    Returns:
        (n, n) bool array.
    """
    valid = ring1[..., 0] != INVALID
    ni = np.where(valid, ring1[..., 0], 0)
    nj = np.where(valid, ring1[..., 1], 0)
    supportive = np.isin(state[ni, nj], REGROWTH_SUPPORT_STATES)
    return (valid & supportive).any(axis=-1)


def regrowth_pass(
    cells: np.ndarray,
    new_state: np.ndarray,
    topology: HexTopology,
    params: ModelParameters,
    counters: SimulationCounters,
    rng: np.random.Generator,
) -> int:
    """Age dead cells and regrow the eligible ones.

    Reads `cells['state']`, in which cells lysed earlier this step are
    already DEAD.

    Returns:
        Number of cells that regrew this step.
    """
    dead = cells['state'] == CellState.DEAD
    if not dead.any():
        return 0
    cells['t_dead'][dead] += params.timestep

    eligible = dead & has_support_neighbor(cells['state'], topology.ring1)
    if not eligible.any():
        return 0

    rows, cols = np.nonzero(eligible)
    waits = rng.normal(params.regrowth_mean, params.regrowth_std, size=len(rows))
    regrow = cells['t_dead'][rows, cols] >= waits.astype(np.int64)
    ri, ci = rows[regrow], cols[regrow]

    new_state[ri, ci] = CellState.REGROWTH
    cells['t_regrowth'][ri, ci] = 0
    cells['t_dead'][ri, ci] = INACTIVE
    # fresh cell: no carried-over IFN exposure
    cells['t_antiviral'][ri, ci] = INACTIVE
    cells['antiviral_duration'][ri, ci] = INACTIVE
    counters.regrowth_events += len(ri)
    return len(ri)
