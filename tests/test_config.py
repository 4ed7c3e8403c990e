"""Tests for dipspread.config — loading, validation and parameter resolution."""

import dataclasses
from pathlib import Path

import pytest
import yaml

from dipspread.config import (
    DispersalSection,
    IFNSection,
    SimulationConfig,
    config_to_dict,
    deep_merge,
    default_config,
    load_config,
    resolve_parameters,
    validate_config,
)

CONFIG_DIR = Path(__file__).resolve().parent.parent / "configs"


# ── deep_merge tests ──────────────────────────────────────────────────

class TestDeepMerge:
    def test_simple_override(self):
        assert deep_merge({'a': 1, 'b': 2}, {'b': 3}) == {'a': 1, 'b': 3}

    def test_nested_merge(self):
        base = {'ifn': {'tau': 12, 'spread': 'local'}, 'x': 1}
        result = deep_merge(base, {'ifn': {'tau': 0}})
        assert result == {'ifn': {'tau': 0, 'spread': 'local'}, 'x': 1}

    def test_new_key(self):
        assert deep_merge({'a': 1}, {'b': 2}) == {'a': 1, 'b': 2}

    def test_override_dict_with_scalar(self):
        assert deep_merge({'a': {'nested': 1}}, {'a': 'replaced'}) == {'a': 'replaced'}

    def test_modifies_base_in_place(self):
        base = {'a': {'b': 1}}
        deep_merge(base, {'a': {'c': 2}})
        assert base == {'a': {'b': 1, 'c': 2}}


# ── default_config tests ─────────────────────────────────────────────

class TestDefaultConfig:
    def test_validates(self):
        config = default_config()
        assert isinstance(config, SimulationConfig)

    def test_reference_defaults(self):
        config = default_config()
        assert config.simulation.grid_size == 50
        assert config.simulation.n_steps == 502
        assert config.dispersal.policy == 'jump_random'
        assert config.dispersal.burst_size_virion == 50
        assert config.dispersal.burst_size_dip == 100
        assert config.infection.rho == pytest.approx(0.026)
        assert config.ifn.spread == 'local'
        assert config.ifn.local_radius == 10
        assert config.ifn.tau == 12
        assert config.seeding.mode == 'infected'

    def test_base_yaml_matches_defaults(self):
        loaded = load_config(CONFIG_DIR / "base.yaml")
        assert config_to_dict(loaded) == config_to_dict(SimulationConfig())


# ── validation tests ─────────────────────────────────────────────────

class TestValidation:
    def test_unknown_dispersal_policy_is_fatal(self):
        config = SimulationConfig()
        config.dispersal.policy = 'teleport'
        with pytest.raises(ValueError, match="dispersal.policy"):
            validate_config(config)

    def test_unknown_ifn_spread_is_fatal(self):
        config = SimulationConfig()
        config.ifn.spread = 'noIFN'
        with pytest.raises(ValueError, match="ifn.spread"):
            validate_config(config)

    def test_unknown_seeding_mode(self):
        config = SimulationConfig()
        config.seeding.mode = 'everywhere'
        with pytest.raises(ValueError, match="seeding.mode"):
            validate_config(config)

    @pytest.mark.parametrize("section,key,value", [
        ('simulation', 'grid_size', 0),
        ('simulation', 'n_steps', 0),
        ('simulation', 'seed', -1),
        ('dispersal', 'partition_fraction', 1.5),
        ('dispersal', 'burst_size_virion', -1),
        ('dispersal', 'ring_capacity', 0),
        ('infection', 'rho', 1.2),
        ('infection', 'mean_lysis_time', 0.0),
        ('infection', 'virion_half_life', -1.0),
        ('ifn', 'tau', -1),
        ('ifn', 'half_life', -0.5),
        ('regrowth', 'std', -1.0),
        ('seeding', 'virion_pfu', -1.0),
        ('seeding', 'row', 50),
    ])
    def test_out_of_range_values(self, section, key, value):
        config = SimulationConfig()
        setattr(getattr(config, section), key, value)
        with pytest.raises(ValueError):
            validate_config(config)

    def test_jump_radius_must_be_positive(self):
        config = SimulationConfig()
        config.dispersal.policy = 'jump_radius'
        config.dispersal.jump_radius_dip = 0
        with pytest.raises(ValueError, match="jump_radius_dip"):
            validate_config(config)

    def test_large_ifn_radius_warns(self):
        config = SimulationConfig()
        config.simulation.grid_size = 8
        with pytest.warns(UserWarning, match="local_radius"):
            validate_config(config)

    def test_ring_capacity_truncation_warns(self):
        config = SimulationConfig()
        config.dispersal.policy = 'jump_radius'
        config.dispersal.ring_capacity = 60
        with pytest.warns(UserWarning, match="ring_capacity"):
            validate_config(config)


# ── load_config tests ────────────────────────────────────────────────

class TestLoadConfig:
    def _write(self, path, data):
        with open(path, 'w') as f:
            yaml.safe_dump(data, f)
        return path

    def test_missing_base(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_missing_scenario(self, tmp_path):
        base = self._write(tmp_path / "base.yaml", {})
        with pytest.raises(FileNotFoundError):
            load_config(base, tmp_path / "nope.yaml")

    def test_merge_order(self, tmp_path):
        base = self._write(tmp_path / "base.yaml", {
            'simulation': {'grid_size': 30},
            'ifn': {'tau': 6, 'spread': 'global'},
        })
        scenario = self._write(tmp_path / "scenario.yaml", {'ifn': {'tau': 8}})
        config = load_config(base, scenario, {'ifn': {'half_life': 2.0}})
        assert config.simulation.grid_size == 30
        assert config.ifn.tau == 8
        assert config.ifn.spread == 'global'
        assert config.ifn.half_life == 2.0

    def test_unknown_keys_ignored(self, tmp_path):
        base = self._write(tmp_path / "base.yaml", {
            'dispersal': {'policy': 'diffusion', 'warp_factor': 9},
            'not_a_section': {'a': 1},
        })
        config = load_config(base)
        assert config.dispersal.policy == 'diffusion'

    def test_bad_policy_in_yaml(self, tmp_path):
        base = self._write(tmp_path / "base.yaml", {'dispersal': {'policy': 'celltocell'}})
        with pytest.raises(ValueError):
            load_config(base)

    @pytest.mark.parametrize("name", ["coinfection_diffusion.yaml", "radius_jump_no_ifn.yaml"])
    def test_shipped_scenarios_load(self, name):
        config = load_config(CONFIG_DIR / "base.yaml", CONFIG_DIR / "scenarios" / name)
        assert isinstance(config, SimulationConfig)
        resolve_parameters(config)


# ── resolve_parameters tests ─────────────────────────────────────────

class TestResolveParameters:
    def test_passthrough(self):
        params = resolve_parameters(default_config())
        assert params.grid_size == 50
        assert params.dispersal_policy == 'jump_random'
        assert params.std_lysis_time == pytest.approx(3.0)
        assert params.virion_ifn_rate == 1
        assert params.both_stimulation == pytest.approx(10.0)
        assert params.dip_only_stimulation == pytest.approx(5.0)
        assert params.ifn_threshold == pytest.approx(1 / 2500)

    def test_frozen(self):
        params = resolve_parameters(default_config())
        with pytest.raises(dataclasses.FrozenInstanceError):
            params.rho = 1.0

    def test_ifn_none_zeroes_pathway(self):
        config = SimulationConfig(ifn=IFNSection(spread='none'))
        params = resolve_parameters(config)
        assert params.alpha == 0.0
        assert params.tau == 0
        assert params.ifn_half_life == 0.0
        assert params.ifn_delay == 0 and params.ifn_delay_std == 0
        assert params.virion_ifn_rate == 0
        assert params.both_stimulation == 0.0
        assert params.dip_only_stimulation == 0.0

    def test_dip_disabled(self):
        config = SimulationConfig(dispersal=DispersalSection(dip_enabled=False))
        params = resolve_parameters(config)
        assert params.burst_size_dip == 0
        assert params.dip_only_stimulation == 0.0
        assert params.both_stimulation == pytest.approx(10.0)

    def test_virion_rate_follows_flag(self):
        config = SimulationConfig(ifn=IFNSection(both_fold=2.0, virion_stimulates=False))
        params = resolve_parameters(config)
        assert params.virion_ifn_rate == 0
        assert params.both_stimulation == pytest.approx(20.0)

        config.ifn.virion_stimulates = True
        assert resolve_parameters(config).virion_ifn_rate == 2

    def test_invalid_config_rejected(self):
        config = SimulationConfig()
        config.ifn.spread = 'sideways'
        with pytest.raises(ValueError):
            resolve_parameters(config)
