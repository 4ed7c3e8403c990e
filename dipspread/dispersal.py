"""Particle dispersal on lysis, and free-particle clearance.

A lysing cell releases `burst_size_virion` virions and a DIP burst boosted by
the DIP:virion ratio at the lysing cell (DIP advantage). One of four
mutually exclusive policies, fixed for the run, moves the burst:

  diffusion   — split over the distance-1/2/3 hex rings with group weights
                1 : 0.5 : √3/3 (each times the ring size, 6). Each group's
                share is floor-divided evenly over its six slots. Distance-1
                targets only receive particles while SUSCEPTIBLE; distance-2
                and -3 targets are unguarded.
  jump_random — every particle lands on a uniform random lattice cell.
  jump_radius — every particle lands on a uniform random entry of the
                origin's jump ring (virion and DIP rings are independent).
  partition   — floor(fraction * burst) jumps randomly, the rest diffuses.

All dispersal is synchronous: particles are on the lattice before the
caller moves on to the next cell.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import math
from typing import Tuple

import numpy as np

from dipspread.config import ModelParameters
from dipspread.ifn import half_life_factor
from dipspread.topology import RING_SIZE, HexTopology
from dipspread.types import CellState, SimulationCounters


class DispersalPolicy(str, Enum):
    DIFFUSION = 'diffusion'
    JUMP_RANDOM = 'jump_random'
    JUMP_RADIUS = 'jump_radius'
    PARTITION = 'partition'


# Relative weight per target at hex distance 1, 2, 3
DIFFUSION_WEIGHTS = (1.0, 0.5, math.sqrt(3.0) / 3.0)


@dataclass
class BurstRecord:
    """What one lysis put back on the lattice."""
    virions_released: int = 0
    dips_released: int = 0
    virions_jumped: int = 0      # via the partition random leg
    dips_jumped: int = 0
    skipped: bool = False        # diffusion origin had no live neighbour


def dip_burst_size(base: int, virions_here: int, dips_here: int) -> int:
    """DIP burst adjusted by the local DIP:virion ratio.

    base + floor(base * dips / virions); no virions ⇒ no ratio boost.
    """
    if virions_here <= 0:
        return base
    return base + int(base * (dips_here / virions_here))


# ═══════════════════════════════════════════════════════════════════════
# DIFFUSION
# ═══════════════════════════════════════════════════════════════════════

def _isolated(topology: HexTopology, i: int, j: int) -> bool:
    return not any(len(topology.valid_neighbors(i, j, d)) for d in (1, 2, 3))


def diffusion_shares(total: int, rng: np.random.Generator) -> np.ndarray:
    """Split `total` particles over the three hex rings.

    Floor shares by weight, then the remainder goes out one particle at a
    time to a ring drawn with probability proportional to its weight.

    Returns:
        int64 array of length 3 summing to `total`.
    """
    weights = np.array(DIFFUSION_WEIGHTS) * RING_SIZE
    p = weights / weights.sum()
    shares = np.floor(total * p).astype(np.int64)
    remainder = int(total - shares.sum())
    if remainder > 0:
        extra = rng.choice(3, size=remainder, p=p)
        shares += np.bincount(extra, minlength=3)
    return shares


def diffuse(
    cells: np.ndarray,
    topology: HexTopology,
    i: int,
    j: int,
    n_virions: int,
    n_dips: int,
    rng: np.random.Generator,
) -> Tuple[int, int]:
    """Spread particles from (i, j) over its hex rings.

    Per-slot amounts are floor(share / 6), so up to 5 particles per ring and
    type are absorbed, and edge cells deliver less than the nominal burst.

    Returns:
        (virions_delivered, dips_delivered). (0, 0) when (i, j) has no live
        neighbour at any distance; the caller carries on with the next cell.
    """
    targets = [topology.valid_neighbors(i, j, d) for d in (1, 2, 3)]
    if not any(len(t) for t in targets) or n_virions + n_dips == 0:
        return 0, 0

    v_shares = diffusion_shares(n_virions, rng)
    d_shares = diffusion_shares(n_dips, rng)
    delivered_v = delivered_d = 0
    for ring, nbrs in enumerate(targets):
        if ring == 0 and len(nbrs):
            keep = cells['state'][nbrs[:, 0], nbrs[:, 1]] == CellState.SUSCEPTIBLE
            nbrs = nbrs[keep]
        if not len(nbrs):
            continue
        per_v = int(v_shares[ring]) // RING_SIZE
        per_d = int(d_shares[ring]) // RING_SIZE
        cells['virions'][nbrs[:, 0], nbrs[:, 1]] += per_v
        cells['dips'][nbrs[:, 0], nbrs[:, 1]] += per_d
        delivered_v += per_v * len(nbrs)
        delivered_d += per_d * len(nbrs)
    return delivered_v, delivered_d


# ═══════════════════════════════════════════════════════════════════════
# JUMPS
# ═══════════════════════════════════════════════════════════════════════

def _drop(field: np.ndarray, flat_targets: np.ndarray) -> None:
    """Add one particle at every flat index in `flat_targets`."""
    if len(flat_targets):
        field += np.bincount(flat_targets, minlength=field.size).reshape(field.shape)


def jump_random(
    cells: np.ndarray,
    n_virions: int,
    n_dips: int,
    rng: np.random.Generator,
) -> Tuple[int, int]:
    """Land every particle on a uniform random cell. Conserves the burst."""
    n_cells = cells.size
    _drop(cells['virions'], rng.integers(0, n_cells, size=n_virions))
    _drop(cells['dips'], rng.integers(0, n_cells, size=n_dips))
    return n_virions, n_dips


def jump_within_radius(
    cells: np.ndarray,
    topology: HexTopology,
    i: int,
    j: int,
    n_virions: int,
    n_dips: int,
    rng: np.random.Generator,
) -> Tuple[int, int]:
    """Land every particle on a uniform entry of the origin's jump ring.

    Rings hold in-bounds targets only, so the burst is conserved unless a
    ring is empty.
    """
    origin = i * topology.grid_size + j
    delivered = []
    for field, rings, count in (
        ('virions', topology.jump_ring_virion, n_virions),
        ('dips', topology.jump_ring_dip, n_dips),
    ):
        ring = rings[origin]
        if len(ring) == 0 or count == 0:
            delivered.append(0)
            continue
        _drop(cells[field], ring[rng.integers(0, len(ring), size=count)])
        delivered.append(count)
    return delivered[0], delivered[1]


def partition(
    cells: np.ndarray,
    topology: HexTopology,
    i: int,
    j: int,
    n_virions: int,
    n_dips: int,
    fraction: float,
    counters: SimulationCounters,
    rng: np.random.Generator,
) -> BurstRecord:
    """Random-jump floor(fraction * burst) of each type, diffuse the rest."""
    jump_v = int(math.floor(n_virions * fraction))
    jump_d = int(math.floor(n_dips * fraction))
    jump_random(cells, jump_v, jump_d, rng)
    counters.total_random_jump_virions += jump_v
    counters.total_random_jump_dips += jump_d

    rest_v, rest_d = n_virions - jump_v, n_dips - jump_d
    diff_v, diff_d = diffuse(cells, topology, i, j, rest_v, rest_d, rng)
    return BurstRecord(
        virions_released=jump_v + diff_v,
        dips_released=jump_d + diff_d,
        virions_jumped=jump_v,
        dips_jumped=jump_d,
        skipped=(rest_v > 0 or rest_d > 0) and _isolated(topology, i, j),
    )


# ═══════════════════════════════════════════════════════════════════════
# DISPATCH
# ═══════════════════════════════════════════════════════════════════════

def release_burst(
    cells: np.ndarray,
    topology: HexTopology,
    i: int,
    j: int,
    params: ModelParameters,
    counters: SimulationCounters,
    rng: np.random.Generator,
) -> BurstRecord:
    """Release the lysis burst of cell (i, j) under the configured policy.

    The DIP burst is sized from the particle counts at (i, j) before any
    particle of this burst is placed.

    Raises:
        ValueError: On an unknown dispersal policy.
    """
    n_virions = params.burst_size_virion
    n_dips = dip_burst_size(
        params.burst_size_dip, int(cells['virions'][i, j]), int(cells['dips'][i, j]))
    policy = params.dispersal_policy

    if policy == DispersalPolicy.PARTITION:
        return partition(cells, topology, i, j, n_virions, n_dips,
                         params.partition_fraction, counters, rng)
    if policy == DispersalPolicy.JUMP_RANDOM:
        v, d = jump_random(cells, n_virions, n_dips, rng)
        return BurstRecord(virions_released=v, dips_released=d)
    if policy == DispersalPolicy.JUMP_RADIUS:
        v, d = jump_within_radius(cells, topology, i, j, n_virions, n_dips, rng)
        return BurstRecord(virions_released=v, dips_released=d)
    if policy == DispersalPolicy.DIFFUSION:
        if _isolated(topology, i, j):
            return BurstRecord(skipped=True)
        v, d = diffuse(cells, topology, i, j, n_virions, n_dips, rng)
        return BurstRecord(virions_released=v, dips_released=d)
    raise ValueError(f"Unknown dispersal policy: '{policy}'")


# ═══════════════════════════════════════════════════════════════════════
# CLEARANCE
# ═══════════════════════════════════════════════════════════════════════

def decay_particles(cells: np.ndarray, params: ModelParameters) -> None:
    """Apply one step of free-particle half-life decay in place.

    count → floor(count * 0.5^(dt / half_life) + 0.5), floored at 0. Each
    type decays only when its half-life is non-zero.
    """
    for field, half_life in (('virions', params.virion_half_life),
                             ('dips', params.dip_half_life)):
        if half_life > 0:
            factor = half_life_factor(params.timestep, half_life)
            decayed = np.floor(cells[field] * factor + 0.5).astype(np.int64)
            cells[field] = np.maximum(decayed, 0)
