"""Integration tests for dipspread.model — seeding, stepping and full runs."""

import numpy as np
import pytest

from dipspread.config import SeedingSection, resolve_parameters
from dipspread.model import initialize_grid, run_simulation, seed_infection, step
from dipspread.perf import STEP_PHASES, PerfMonitor
from dipspread.snapshots import SnapshotRecorder
from dipspread.types import INACTIVE, N_STATES, CellState


# ── seeding ──────────────────────────────────────────────────────────

class TestSeeding:
    def test_particles_mode(self, make_config, rng):
        params = resolve_parameters(make_config())
        cells = initialize_grid(10)
        seed_infection(cells, SeedingSection(mode='particles', row=4, col=5,
                                             virion_pfu=1.0, dip_pfu=2.4), params, rng)
        assert cells['virions'][4, 5] == 1
        assert cells['dips'][4, 5] == 2
        assert np.all(cells['state'] == CellState.SUSCEPTIBLE)

    def test_infected_mode_centre(self, make_config, rng):
        params = resolve_parameters(make_config())
        cells = initialize_grid(10)
        seed_infection(cells, SeedingSection(mode='infected'), params, rng)
        assert cells['state'][5, 5] == CellState.INFECTED_VIRION
        assert cells['t_infection'][5, 5] == 0
        assert cells['t_susceptible'][5, 5] == INACTIVE
        assert cells['virions'][5, 5] == 1

    def test_infected_mode_both(self, make_config, rng):
        params = resolve_parameters(make_config())
        cells = initialize_grid(10)
        seed_infection(cells, SeedingSection(mode='infected', virion_pfu=1, dip_pfu=1),
                       params, rng)
        assert cells['state'][5, 5] == CellState.INFECTED_BOTH

    def test_infected_mode_dip_only(self, make_config, rng):
        params = resolve_parameters(make_config())
        cells = initialize_grid(10)
        seed_infection(cells, SeedingSection(mode='infected', row=2, col=3,
                                             virion_pfu=0, dip_pfu=3), params, rng)
        assert cells['state'][2, 3] == CellState.INFECTED_DIP
        assert cells['t_infection_dip'][2, 3] == 0
        assert cells['t_infection'][2, 3] == INACTIVE

    def test_dips_ignored_when_disabled(self, make_config, rng):
        params = resolve_parameters(make_config(dispersal={'dip_enabled': False}))
        cells = initialize_grid(10)
        seed_infection(cells, SeedingSection(mode='infected', virion_pfu=1, dip_pfu=5),
                       params, rng)
        assert cells['state'][5, 5] == CellState.INFECTED_VIRION
        assert cells['dips'].sum() == 0

    def test_scatter(self, make_config, rng):
        params = resolve_parameters(make_config())
        cells = initialize_grid(10)
        seed_infection(cells, SeedingSection(mode='scatter', virion_pfu=40, dip_pfu=25),
                       params, rng)
        assert cells['virions'].sum() == 40
        assert cells['dips'].sum() == 25
        assert np.all(cells['state'] == CellState.SUSCEPTIBLE)


# ── single steps ─────────────────────────────────────────────────────

class TestStep:
    def test_single_virion_infects_with_certain_rho(self, make_config):
        config = make_config(
            n_steps=1,
            infection={'rho': 1.0},
            ifn={'spread': 'none'},
            seeding={'mode': 'particles', 'row': 4, 'col': 5,
                     'virion_pfu': 1.0, 'dip_pfu': 0.0},
        )
        result = run_simulation(config, seed=3)
        assert result.cells['state'][4, 5] == CellState.INFECTED_VIRION
        assert result.metrics[0].n_virion_only == 1
        assert result.metrics[0].step == 1

    def test_jump_random_burst_conserved(self, make_config, make_world):
        config = make_config(
            infection={'virion_half_life': 0.0},
            dispersal={'dip_enabled': False},
            ifn={'spread': 'none'},
            regrowth={'mean': 100.0, 'std': 0.0},
        )
        cells, topo, params, counters, rng = make_world(config)
        cells['state'][5, 5] = CellState.INFECTED_VIRION
        cells['t_infection'][5, 5] = 0
        cells['lysis_threshold'][5, 5] = 1
        metrics = step(cells, topo, params, counters, rng)
        assert cells['state'][5, 5] == CellState.DEAD
        assert metrics.total_virions == 50
        assert metrics.total_dips == 0
        assert counters.total_dead_from_virion == 1
        assert counters.step == 1

    def test_state_changed_reset_each_step(self, make_config, make_world):
        cells, topo, params, counters, rng = make_world(make_config())
        cells['state_changed'][:] = True
        step(cells, topo, params, counters, rng)
        assert not cells['state_changed'].any()

    def test_perf_phases_tracked(self, make_config, make_world):
        cells, topo, params, counters, rng = make_world(make_config())
        perf = PerfMonitor(enabled=True)
        step(cells, topo, params, counters, rng, perf)
        assert set(perf.get_stats()) == set(STEP_PHASES)


# ── full runs ────────────────────────────────────────────────────────

POLICIES = ['diffusion', 'jump_random', 'jump_radius', 'partition']


class TestRunSimulation:
    @pytest.mark.parametrize("policy", POLICIES)
    @pytest.mark.parametrize("spread", ['global', 'local', 'none'])
    def test_invariants(self, make_config, policy, spread):
        config = make_config(
            n_steps=40,
            infection={'rho': 0.3},
            dispersal={'policy': policy, 'jump_radius_virion': 3, 'jump_radius_dip': 3},
            ifn={'spread': spread, 'delay': 1},
            regrowth={'mean': 6.0, 'std': 2.0},
            seeding={'virion_pfu': 1.0, 'dip_pfu': 1.0},
        )
        recorder = SnapshotRecorder(enabled=True, interval=1)
        result = run_simulation(config, seed=1, snapshot_recorder=recorder)
        assert len(result.metrics) == 40
        assert recorder.get_steps() == list(range(41))
        valid_states = [int(s) for s in CellState]
        for t in recorder.get_steps():
            snap = recorder.get_snapshot(t)
            assert np.isin(snap.state, valid_states).all(), f"step {t}"
            assert snap.virions.min() >= 0, f"step {t}"
            assert snap.dips.min() >= 0, f"step {t}"
            assert snap.ifn.min() >= 0.0, f"step {t}"
        cells = result.cells
        assert cells['state'].min() >= 0 and cells['state'].max() < N_STATES
        assert cells['virions'].min() >= 0
        assert cells['dips'].min() >= 0
        assert cells['ifn'].min() >= 0.0
        for m in result.metrics:
            assert m.total_virions >= 0 and m.total_dips >= 0
            assert m.global_ifn >= 0.0
            assert m.max_global_ifn >= m.global_ifn
        if spread == 'none':
            assert all(m.global_ifn == 0.0 for m in result.metrics)
            assert result.counters.antiviral_cell_count == 0

    def test_reproducible(self, make_config):
        config = make_config(n_steps=25, infection={'rho': 0.3},
                             dispersal={'policy': 'partition'})
        a = run_simulation(config, seed=42)
        b = run_simulation(config, seed=42)
        assert (a.cells == b.cells).all()
        assert a.to_frame().equals(b.to_frame())

    def test_entropy_seed_replays(self, make_config):
        config = make_config(n_steps=15, infection={'rho': 0.3})
        a = run_simulation(config)
        b = run_simulation(config, seed=a.seed)
        assert (a.cells == b.cells).all()

    def test_config_seed_used(self, make_config):
        config = make_config(n_steps=3, simulation={'seed': 17})
        assert run_simulation(config).seed == 17

    def test_progress_callback(self, make_config):
        calls = []
        run_simulation(make_config(n_steps=7), seed=0,
                       progress_callback=lambda t, n: calls.append((t, n)))
        assert calls == [(t, 7) for t in range(1, 8)]

    def test_snapshots(self, make_config):
        recorder = SnapshotRecorder(enabled=True, interval=5)
        result = run_simulation(make_config(n_steps=10), seed=0, snapshot_recorder=recorder)
        assert recorder.get_steps() == [0, 5, 10]
        np.testing.assert_array_equal(recorder.get_snapshot(10).state, result.cells['state'])
        assert recorder.get_snapshot(0).state[5, 5] == CellState.INFECTED_VIRION

    def test_global_ifn_uniform(self, make_config):
        config = make_config(n_steps=30, infection={'rho': 0.3},
                             ifn={'spread': 'global', 'delay': 0},
                             dispersal={'policy': 'diffusion'})
        result = run_simulation(config, seed=5)
        ifn = result.cells['ifn']
        assert np.all(ifn == ifn[0, 0])

    def test_local_ifn_total_matches_field(self, make_config):
        config = make_config(n_steps=30, infection={'rho': 0.3}, ifn={'delay': 0})
        result = run_simulation(config, seed=5)
        assert result.counters.global_ifn == pytest.approx(result.cells['ifn'].sum())

    def test_single_cell_lattice(self, make_config):
        config = make_config(grid_size=1, n_steps=30, dispersal={'policy': 'diffusion'},
                             ifn={'spread': 'global'})
        result = run_simulation(config, seed=0)
        assert len(result.metrics) == 30

    def test_result_frame(self, make_config):
        result = run_simulation(make_config(n_steps=4), seed=9)
        frame = result.to_frame()
        assert len(frame) == 4
        assert (frame['seed'] == 9).all()
        assert frame['dispersal.policy'].iloc[0] == 'jump_random'

    def test_invalid_config_raises(self, make_config):
        with pytest.raises(ValueError):
            run_simulation(make_config(dispersal={'policy': 'bogus'}))
