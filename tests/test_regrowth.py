"""Tests for dipspread.regrowth."""

import numpy as np

from dipspread.regrowth import has_support_neighbor, regrowth_pass
from dipspread.types import INACTIVE, CellState


def _regrowth_world(make_config, make_world, mean, std=0.0):
    return make_world(make_config(regrowth={'mean': mean, 'std': std}))


class TestSupportNeighbor:
    def test_all_susceptible(self, make_config, make_world):
        cells, topo, params, counters, rng = make_world(make_config())
        assert has_support_neighbor(cells['state'], topo.ring1).all()

    def test_only_susceptible_or_antiviral_support(self, make_config, make_world):
        cells, topo, params, counters, rng = make_world(make_config())
        cells['state'][:] = CellState.REGROWTH
        cells['state'][0, 0] = CellState.DEAD
        assert not has_support_neighbor(cells['state'], topo.ring1)[0, 0]
        cells['state'][1, 1] = CellState.ANTIVIRAL
        assert has_support_neighbor(cells['state'], topo.ring1)[0, 0]


class TestRegrowthPass:
    def test_immediate_with_zero_wait(self, make_config, make_world):
        cells, topo, params, counters, rng = _regrowth_world(make_config, make_world, 0.0)
        cells['state'][5, 5] = CellState.DEAD
        cells['t_dead'][5, 5] = 0
        cells['t_antiviral'][5, 5] = 7
        cells['antiviral_duration'][5, 5] = 9
        new_state = cells['state'].copy()
        assert regrowth_pass(cells, new_state, topo, params, counters, rng) == 1
        assert new_state[5, 5] == CellState.REGROWTH
        assert cells['t_regrowth'][5, 5] == 0
        assert cells['t_dead'][5, 5] == INACTIVE
        assert cells['t_antiviral'][5, 5] == INACTIVE
        assert cells['antiviral_duration'][5, 5] == INACTIVE
        assert counters.regrowth_events == 1

    def test_exact_wait(self, make_config, make_world):
        cells, topo, params, counters, rng = _regrowth_world(make_config, make_world, 5.0)
        cells['state'][5, 5] = CellState.DEAD
        cells['t_dead'][5, 5] = 0
        for t in range(1, 5):
            new_state = cells['state'].copy()
            assert regrowth_pass(cells, new_state, topo, params, counters, rng) == 0
            assert cells['t_dead'][5, 5] == t
        new_state = cells['state'].copy()
        assert regrowth_pass(cells, new_state, topo, params, counters, rng) == 1
        assert new_state[5, 5] == CellState.REGROWTH

    def test_no_support_never_regrows(self, make_config, make_world):
        cells, topo, params, counters, rng = _regrowth_world(make_config, make_world, 0.0)
        cells['state'][:] = CellState.DEAD
        cells['t_dead'][:] = 0
        for _ in range(50):
            new_state = cells['state'].copy()
            assert regrowth_pass(cells, new_state, topo, params, counters, rng) == 0
        assert np.all(cells['t_dead'] == 50)
        assert counters.regrowth_events == 0

    def test_infected_neighbours_do_not_support(self, make_config, make_world):
        cells, topo, params, counters, rng = _regrowth_world(make_config, make_world, 0.0)
        cells['state'][:] = CellState.INFECTED_VIRION
        cells['state'][5, 5] = CellState.DEAD
        cells['t_dead'][5, 5] = 0
        new_state = cells['state'].copy()
        assert regrowth_pass(cells, new_state, topo, params, counters, rng) == 0
        assert new_state[5, 5] == CellState.DEAD

    def test_no_dead_cells(self, make_config, make_world):
        cells, topo, params, counters, rng = make_world(make_config())
        before = cells.copy()
        assert regrowth_pass(cells, cells['state'].copy(), topo, params, counters, rng) == 0
        assert (cells == before).all()
