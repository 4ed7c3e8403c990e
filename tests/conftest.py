"""Shared fixtures for the dipspread test suite."""

import numpy as np
import pytest

from dipspread.config import SimulationConfig, resolve_parameters
from dipspread.topology import build_topology
from dipspread.types import SimulationCounters, allocate_cells


def _make_config(grid_size=10, n_steps=5, **sections):
    """Small-lattice config; keyword args map section name → {field: value}."""
    config = SimulationConfig()
    config.simulation.grid_size = grid_size
    config.simulation.n_steps = n_steps
    config.ifn.local_radius = 3
    for section, values in sections.items():
        for key, value in values.items():
            setattr(getattr(config, section), key, value)
    return config


@pytest.fixture
def make_config():
    return _make_config


@pytest.fixture
def make_world():
    """Factory → (cells, topology, params, counters, rng) for a config."""
    def factory(config, seed=0):
        params = resolve_parameters(config)
        rng = np.random.default_rng(seed)
        topology = build_topology(params, rng)
        cells = allocate_cells(params.grid_size)
        return cells, topology, params, SimulationCounters(), rng
    return factory


@pytest.fixture
def rng():
    return np.random.default_rng(12345)
