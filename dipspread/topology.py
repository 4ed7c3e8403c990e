"""Hex lattice topology: neighbour rings, jump rings and IFN-influence areas.

Everything here is built once per run, before the first step, and is
read-only afterwards.

Coordinates are (row i, column j). The lattice is stored as a square array;
hexagonal adjacency is expressed through fixed offset tables:

  distance 1: (i-1,j) (i+1,j) (i,j-1) (i,j+1) (i-1,j+1) (i+1,j+1)
  distance 2: (i,j-2) (i,j+2) (i-2,j-1) (i+2,j-1) (i-2,j+1) (i+2,j+1)
  distance 3: (i-2,j) (i+2,j) (i-1,j-1) (i+1,j-1) then
              (i-1,j-2) (i+1,j-2)  for even rows
              (i-1,j+2) (i+1,j+2)  for odd rows

Ring tables keep all six slots per cell; off-grid slots hold the
(INVALID, INVALID) sentinel so edge cells have fewer live neighbours.

Jump rings and IFN areas are variable length per cell, so no slot is ever
a sentinel and no particle is lost to an off-grid target.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np
from scipy.sparse import csr_matrix

from dipspread.config import ModelParameters
from dipspread.types import INVALID


# ═══════════════════════════════════════════════════════════════════════
# HEX RING OFFSETS
# ═══════════════════════════════════════════════════════════════════════

_RING1 = ((-1, 0), (1, 0), (0, -1), (0, 1), (-1, 1), (1, 1))
_RING2 = ((0, -2), (0, 2), (-2, -1), (2, -1), (-2, 1), (2, 1))
_RING3_EVEN = ((-2, 0), (2, 0), (-1, -1), (1, -1), (-1, -2), (1, -2))
_RING3_ODD = ((-2, 0), (2, 0), (-1, -1), (1, -1), (-1, 2), (1, 2))

RING_SIZE = 6


def hex_ring_offsets(i: int, j: int, distance: int) -> Tuple[Tuple[int, int], ...]:
    """Six (di, dj) offsets of the hex ring at `distance` around (i, j).

    Args:
        i: Row of the centre cell (only its parity matters).
        j: Column of the centre cell.
        distance: 1, 2 or 3.

    Raises:
        ValueError: For any other distance.
    """
    if distance == 1:
        return _RING1
    if distance == 2:
        return _RING2
    if distance == 3:
        return _RING3_EVEN if i % 2 == 0 else _RING3_ODD
    raise ValueError(f"hex ring distance must be 1, 2 or 3, got {distance}")


def build_ring_table(n: int, distance: int) -> np.ndarray:
    """Absolute neighbour coordinates for every cell at one hex distance.

    Args:
        n: Lattice side length.
        distance: 1, 2 or 3.

    Returns:
        int32 array of shape (n, n, 6, 2). Off-grid entries are (-1, -1).
    """
    ii, jj = np.meshgrid(np.arange(n), np.arange(n), indexing='ij')
    even = np.array(hex_ring_offsets(0, 0, distance), dtype=np.int32)
    odd = np.array(hex_ring_offsets(1, 0, distance), dtype=np.int32)
    offsets = np.where((ii % 2 == 0)[..., None, None], even, odd)  # (n, n, 6, 2)

    ni = ii[..., None] + offsets[..., 0]
    nj = jj[..., None] + offsets[..., 1]
    off_grid = (ni < 0) | (ni >= n) | (nj < 0) | (nj >= n)
    table = np.stack([ni, nj], axis=-1).astype(np.int32)
    table[off_grid] = INVALID
    return table


# ═══════════════════════════════════════════════════════════════════════
# DISC OFFSETS (jump rings, IFN areas)
# ═══════════════════════════════════════════════════════════════════════

def disc_offsets(radius: int) -> np.ndarray:
    """All integer (dx, dy) with dx² + dy² <= radius², row-major order.

    Returns:
        int32 array of shape (k, 2). Includes (0, 0).
    """
    span = np.arange(-radius, radius + 1)
    dx, dy = np.meshgrid(span, span, indexing='ij')
    inside = dx * dx + dy * dy <= radius * radius
    return np.stack([dx[inside], dy[inside]], axis=1).astype(np.int32)


def _disc_targets(n: int, i: int, j: int, offsets: np.ndarray) -> np.ndarray:
    """Flat indices of in-bounds cells at (i, j) + offsets, order preserved."""
    ti = i + offsets[:, 0]
    tj = j + offsets[:, 1]
    ok = (ti >= 0) & (ti < n) & (tj >= 0) & (tj < n)
    return (ti[ok] * n + tj[ok]).astype(np.int64)


def build_jump_rings(
    n: int,
    radius: int,
    rng: np.random.Generator,
    capacity: Optional[int] = None,
) -> List[np.ndarray]:
    """Per-cell candidate jump targets within `radius`.

    The disc offsets are shuffled once (one draw from `rng`) and every cell
    keeps its in-bounds targets in that shuffled order, optionally truncated
    to `capacity` entries.

    Args:
        n: Lattice side length.
        radius: Jump radius (cells).
        rng: Run generator.
        capacity: Maximum targets per cell (None = no limit).

    Returns:
        List of length n*n; entry c is an int64 array of flat target indices.
    """
    offsets = disc_offsets(radius)
    offsets = offsets[rng.permutation(len(offsets))]
    rings = []
    for i in range(n):
        for j in range(n):
            targets = _disc_targets(n, i, j, offsets)
            if capacity is not None:
                targets = targets[:capacity]
            rings.append(targets)
    return rings


def build_ifn_area(n: int, radius: int) -> Tuple[csr_matrix, np.ndarray]:
    """IFN-influence neighbourhoods as a sparse membership operator.

    Row c of the matrix has a 1 at every in-bounds cell within Euclidean
    distance `radius` of cell c (c itself included).

    Args:
        n: Lattice side length.
        radius: Influence radius (cells).

    Returns:
        (area, area_size): (n*n, n*n) csr_matrix and per-cell row counts.
    """
    offsets = disc_offsets(radius)
    rows, cols = [], []
    for i in range(n):
        for j in range(n):
            targets = _disc_targets(n, i, j, offsets)
            rows.append(np.full(len(targets), i * n + j, dtype=np.int64))
            cols.append(targets)
    rows = np.concatenate(rows)
    cols = np.concatenate(cols)
    data = np.ones(len(rows), dtype=np.float64)
    area = csr_matrix((data, (rows, cols)), shape=(n * n, n * n))
    area_size = np.asarray(area.sum(axis=1)).ravel()
    return area, area_size


# ═══════════════════════════════════════════════════════════════════════
# TOPOLOGY BUNDLE
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class HexTopology:
    """Read-only neighbour tables for one run.

    Attributes:
        grid_size: Lattice side length.
        ring1, ring2, ring3: (n, n, 6, 2) hex rings with (-1, -1) sentinels.
        jump_ring_virion, jump_ring_dip: Per-cell flat target indices, or
            None when radius-limited jumps are not configured.
        ifn_area, ifn_area_size: Sparse IFN-influence operator and row
            counts, or None unless local IFN spread is configured.
    """
    grid_size: int
    ring1: np.ndarray
    ring2: np.ndarray
    ring3: np.ndarray
    jump_ring_virion: Optional[List[np.ndarray]] = None
    jump_ring_dip: Optional[List[np.ndarray]] = None
    ifn_area: Optional[csr_matrix] = None
    ifn_area_size: Optional[np.ndarray] = None
    _adjacency: Optional[csr_matrix] = field(default=None, repr=False)

    @property
    def rings(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        return self.ring1, self.ring2, self.ring3

    def valid_neighbors(self, i: int, j: int, distance: int) -> np.ndarray:
        """In-bounds (row, col) pairs of the ring at `distance` around (i, j)."""
        ring = self.rings[distance - 1][i, j]
        return ring[ring[:, 0] != INVALID]

    def adjacency(self) -> csr_matrix:
        """Distance-1 adjacency over flat indices (built lazily, cached)."""
        if self._adjacency is None:
            n = self.grid_size
            src = np.repeat(np.arange(n * n), RING_SIZE)
            ni = self.ring1[..., 0].ravel()
            nj = self.ring1[..., 1].ravel()
            ok = ni != INVALID
            dst = ni[ok] * n + nj[ok]
            self._adjacency = csr_matrix(
                (np.ones(int(ok.sum()), dtype=np.int8), (src[ok], dst)),
                shape=(n * n, n * n),
            )
        return self._adjacency


def build_topology(params: ModelParameters, rng: np.random.Generator) -> HexTopology:
    """Build every table the configured policies need.

    Jump rings are only built for the "jump_radius" dispersal policy (virion
    ring shuffled first, then the DIP ring). The IFN area is only built for
    local IFN spread.

    Args:
        params: Resolved model parameters.
        rng: Run generator (consumed by the jump-ring shuffles only).

    Returns:
        HexTopology. Same parameters + same generator state give identical
        tables.
    """
    n = params.grid_size
    topology = HexTopology(
        grid_size=n,
        ring1=build_ring_table(n, 1),
        ring2=build_ring_table(n, 2),
        ring3=build_ring_table(n, 3),
    )
    if params.dispersal_policy == 'jump_radius':
        topology.jump_ring_virion = build_jump_rings(
            n, params.jump_radius_virion, rng, params.ring_capacity)
        topology.jump_ring_dip = build_jump_rings(
            n, params.jump_radius_dip, rng, params.ring_capacity)
    if params.ifn_mode == 'local':
        topology.ifn_area, topology.ifn_area_size = build_ifn_area(
            n, params.ifn_local_radius)
    return topology
