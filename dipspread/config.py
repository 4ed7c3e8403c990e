"""Configuration system for dipspread.

Hierarchical YAML configuration with deep-merge support:
  base.yaml → scenario override → sweep overrides

The mutable `SimulationConfig` (one dataclass per YAML section) is what users
edit. `resolve_parameters()` turns it into the frozen `ModelParameters` that
every engine receives, applying the policy-derived overrides exactly once:
  - ifn.spread == 'none' zeroes alpha, tau, IFN half-life, IFN delays and the
    stimulation fold (so every IFN production constant is zero)
  - dispersal.dip_enabled == False zeroes the DIP burst and the DIP-only
    stimulation constant
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union
import warnings

import yaml


# ═══════════════════════════════════════════════════════════════════════
# CONFIGURATION DATACLASSES
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class SimulationSection:
    """Lattice size, run length and randomness."""
    grid_size: int = 50          # Lattice side length (cells)
    n_steps: int = 502           # Steps per run
    timestep: int = 1            # Step length (h); timers advance by 1 per step
    seed: Optional[int] = None   # None = fresh OS entropy (recorded in result)


@dataclass
class DispersalSection:
    """Particle release and transport on lysis.

    policy: "diffusion"   — split over distance-1/2/3 hex neighbours
            "jump_random" — every particle lands on a uniform random cell
            "jump_radius" — every particle lands in the origin's jump ring
            "partition"   — partition_fraction jumps randomly, rest diffuses
    """
    policy: str = "jump_random"
    burst_size_virion: int = 50      # Virions released per lysis
    burst_size_dip: int = 100        # Base DIPs released per lysis
    dip_enabled: bool = True         # False → no DIP release, no DIP-only IFN
    jump_radius_virion: int = 5      # Jump-ring radius for virions (cells)
    jump_radius_dip: int = 5         # Jump-ring radius for DIPs (cells)
    partition_fraction: float = 0.5  # Random-jump share in "partition"
    ring_capacity: Optional[int] = None  # Truncate jump rings (None = full disc)


@dataclass
class InfectionSection:
    """Infection kinetics and free-particle clearance."""
    rho: float = 0.026               # Per-particle infection probability
    alpha: float = 1.0               # IFN sensitivity of infection
    mean_lysis_time: float = 12.0    # Mean infection → lysis delay (steps); std = mean/4
    virion_half_life: float = 3.2    # Free virion half-life (steps; 0 = no decay)
    dip_half_life: float = 3.2       # Free DIP half-life (steps; 0 = no decay)


@dataclass
class IFNSection:
    """Interferon production, spread and antiviral response.

    spread: "global" — one shared pool, divided evenly over the lattice
            "local"  — per-cell field, production split over a disc of
                       radius local_radius around the producer
            "none"   — IFN pathway disabled
    """
    spread: str = "local"
    local_radius: int = 10           # IFN-influence radius (cells, Euclidean)
    tau: int = 12                    # Mean antiviral exposure time; 0 disables
    half_life: float = 4.0           # IFN half-life (steps; 0 = no decay)
    both_fold: float = 1.0           # Stimulation fold; virion rate R = int(fold)
    virion_stimulates: bool = True   # False → virion-only cells produce no IFN
    delay: int = 5                   # Steps from infection to IFN production
    delay_std: int = 1               # Std of the production delay jitter
    dip_only_ratio: float = 5.0      # DIP-only stimulation per unit fold
    both_ratio: float = 10.0         # Extra co-infection stimulation per unit fold


@dataclass
class RegrowthSection:
    """Dead-cell replacement."""
    mean: float = 24.0               # Mean dead → regrowth wait (steps)
    std: float = 6.0


@dataclass
class SeedingSection:
    """Initial inoculum.

    mode: "particles" — place the counts at one cell
          "infected"  — place the counts and preset the cell's infection state
          "scatter"   — drop each particle on a uniform random cell
    """
    mode: str = "infected"
    row: Optional[int] = None        # Seed cell row (None = lattice centre)
    col: Optional[int] = None        # Seed cell column (None = lattice centre)
    virion_pfu: float = 1.0          # Initial virions (rounded)
    dip_pfu: float = 0.0             # Initial DIPs (rounded)


@dataclass
class OutputSection:
    """Output control for runner scripts."""
    directory: str = "results/"
    metrics_csv: str = "metrics.csv"
    snapshot_interval: int = 0       # Capture grid arrays every N steps (0 = off)


@dataclass
class SimulationConfig:
    """Complete simulation configuration.

    Load from YAML via `load_config()`. Sections map 1:1 to YAML top-level keys.
    """
    simulation: SimulationSection = field(default_factory=SimulationSection)
    dispersal: DispersalSection = field(default_factory=DispersalSection)
    infection: InfectionSection = field(default_factory=InfectionSection)
    ifn: IFNSection = field(default_factory=IFNSection)
    regrowth: RegrowthSection = field(default_factory=RegrowthSection)
    seeding: SeedingSection = field(default_factory=SeedingSection)
    output: OutputSection = field(default_factory=OutputSection)


# ═══════════════════════════════════════════════════════════════════════
# RESOLVED PARAMETERS
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ModelParameters:
    """Immutable, policy-resolved parameters passed to every engine."""
    grid_size: int
    n_steps: int
    timestep: int

    dispersal_policy: str
    burst_size_virion: int
    burst_size_dip: int
    dip_enabled: bool
    jump_radius_virion: int
    jump_radius_dip: int
    partition_fraction: float
    ring_capacity: Optional[int]

    rho: float
    alpha: float
    mean_lysis_time: float
    std_lysis_time: float
    virion_half_life: float
    dip_half_life: float

    ifn_mode: str
    ifn_local_radius: int
    tau: int
    ifn_half_life: float
    both_fold: float
    virion_stimulates_ifn: bool
    virion_ifn_rate: int             # R
    dip_only_stimulation: float
    both_stimulation: float
    ifn_delay: int
    ifn_delay_std: int

    regrowth_mean: float
    regrowth_std: float

    @property
    def n_cells(self) -> int:
        return self.grid_size * self.grid_size

    @property
    def ifn_threshold(self) -> float:
        """IFN concentrations below this are cleared to exactly zero."""
        return 1.0 / self.n_cells


def resolve_parameters(config: SimulationConfig) -> ModelParameters:
    """Validate a config and derive the frozen per-run parameters.

    Args:
        config: Simulation configuration.

    Returns:
        ModelParameters with IFN-off / DIP-off overrides applied.

    Raises:
        ValueError: If the configuration is invalid.
    """
    validate_config(config)
    sim, disp, inf, ifn, reg = (
        config.simulation, config.dispersal, config.infection,
        config.ifn, config.regrowth,
    )

    alpha = inf.alpha
    tau = ifn.tau
    ifn_half_life = ifn.half_life
    delay, delay_std = ifn.delay, ifn.delay_std
    fold = ifn.both_fold
    if ifn.spread == 'none':
        alpha = 0.0
        tau = 0
        ifn_half_life = 0.0
        delay, delay_std = 0, 0
        fold = 0.0

    burst_dip = disp.burst_size_dip if disp.dip_enabled else 0
    dip_only = ifn.dip_only_ratio * fold if disp.dip_enabled else 0.0
    r = int(fold) if ifn.virion_stimulates else 0

    return ModelParameters(
        grid_size=sim.grid_size,
        n_steps=sim.n_steps,
        timestep=sim.timestep,
        dispersal_policy=disp.policy,
        burst_size_virion=disp.burst_size_virion,
        burst_size_dip=burst_dip,
        dip_enabled=disp.dip_enabled,
        jump_radius_virion=disp.jump_radius_virion,
        jump_radius_dip=disp.jump_radius_dip,
        partition_fraction=disp.partition_fraction,
        ring_capacity=disp.ring_capacity,
        rho=inf.rho,
        alpha=alpha,
        mean_lysis_time=inf.mean_lysis_time,
        std_lysis_time=inf.mean_lysis_time / 4.0,
        virion_half_life=inf.virion_half_life,
        dip_half_life=inf.dip_half_life,
        ifn_mode=ifn.spread,
        ifn_local_radius=ifn.local_radius,
        tau=tau,
        ifn_half_life=ifn_half_life,
        both_fold=fold,
        virion_stimulates_ifn=ifn.virion_stimulates,
        virion_ifn_rate=r,
        dip_only_stimulation=dip_only,
        both_stimulation=ifn.both_ratio * fold,
        ifn_delay=delay,
        ifn_delay_std=delay_std,
        regrowth_mean=reg.mean,
        regrowth_std=reg.std,
    )


# ═══════════════════════════════════════════════════════════════════════
# YAML LOADING & MERGING
# ═══════════════════════════════════════════════════════════════════════

_SECTION_MAP = {
    'simulation': SimulationSection,
    'dispersal': DispersalSection,
    'infection': InfectionSection,
    'ifn': IFNSection,
    'regrowth': RegrowthSection,
    'seeding': SeedingSection,
    'output': OutputSection,
}


def deep_merge(base: Dict, override: Dict) -> Dict:
    """Recursively merge override into base. Modifies base in place.

    - Dict values are merged recursively
    - Non-dict values are replaced
    - Keys in override but not base are added

    Args:
        base: Base dictionary (modified in place).
        override: Override dictionary.

    Returns:
        The merged base dictionary.
    """
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _dict_to_section(section_cls, data: Dict) -> Any:
    """Convert a dict to a section dataclass, ignoring unknown keys."""
    valid_fields = {f.name for f in dataclasses.fields(section_cls)}
    return section_cls(**{k: v for k, v in data.items() if k in valid_fields})


def _yaml_to_config(data: Dict) -> SimulationConfig:
    """Convert a merged YAML dict to a SimulationConfig."""
    sections = {}
    for key, cls in _SECTION_MAP.items():
        if isinstance(data.get(key), dict):
            sections[key] = _dict_to_section(cls, data[key])
        else:
            sections[key] = cls()
    return SimulationConfig(**sections)


def config_to_dict(config: SimulationConfig) -> Dict[str, Dict[str, Any]]:
    """Nested plain-dict view of a config (YAML round-trippable)."""
    return dataclasses.asdict(config)


def _read_yaml(path: Path) -> Dict:
    with open(path) as f:
        return yaml.safe_load(f) or {}


def validate_config(config: SimulationConfig) -> None:
    """Validate configuration constraints. Raises ValueError on failure.

    Unknown policy strings are fatal: the simulation never guesses a default.
    Legal-but-suspicious settings emit a UserWarning.
    """
    sim = config.simulation
    if sim.grid_size < 1:
        raise ValueError(f"simulation.grid_size must be >= 1, got {sim.grid_size}")
    if sim.n_steps < 1:
        raise ValueError(f"simulation.n_steps must be >= 1, got {sim.n_steps}")
    if sim.timestep < 1:
        raise ValueError(f"simulation.timestep must be >= 1, got {sim.timestep}")
    if sim.seed is not None and sim.seed < 0:
        raise ValueError("simulation.seed must be non-negative")

    # Dispersal
    disp = config.dispersal
    valid_policies = {"diffusion", "jump_random", "jump_radius", "partition"}
    if disp.policy not in valid_policies:
        raise ValueError(
            f"dispersal.policy must be one of {valid_policies}, "
            f"got '{disp.policy}'"
        )
    if disp.burst_size_virion < 0 or disp.burst_size_dip < 0:
        raise ValueError(
            f"dispersal burst sizes must be non-negative, got "
            f"virion={disp.burst_size_virion}, dip={disp.burst_size_dip}"
        )
    if not 0.0 <= disp.partition_fraction <= 1.0:
        raise ValueError(
            f"dispersal.partition_fraction must be in [0, 1], "
            f"got {disp.partition_fraction}"
        )
    if disp.policy == "jump_radius":
        for name in ("jump_radius_virion", "jump_radius_dip"):
            radius = getattr(disp, name)
            if radius < 1:
                raise ValueError(f"dispersal.{name} must be >= 1, got {radius}")
            if radius >= sim.grid_size:
                warnings.warn(
                    f"dispersal.{name}={radius} spans the whole "
                    f"{sim.grid_size}x{sim.grid_size} lattice",
                    UserWarning,
                    stacklevel=2,
                )
    if disp.ring_capacity is not None:
        if disp.ring_capacity < 1:
            raise ValueError(
                f"dispersal.ring_capacity must be >= 1 or null, "
                f"got {disp.ring_capacity}"
            )
        if disp.policy == "jump_radius":
            radius = max(disp.jump_radius_virion, disp.jump_radius_dip)
            if disp.ring_capacity < (2 * radius + 1) ** 2:
                warnings.warn(
                    f"dispersal.ring_capacity={disp.ring_capacity} may truncate "
                    f"jump rings of radius {radius}",
                    UserWarning,
                    stacklevel=2,
                )

    # Infection
    inf = config.infection
    if not 0.0 <= inf.rho <= 1.0:
        raise ValueError(f"infection.rho must be in [0, 1], got {inf.rho}")
    if inf.alpha < 0:
        raise ValueError(f"infection.alpha must be non-negative, got {inf.alpha}")
    if inf.mean_lysis_time <= 0:
        raise ValueError(
            f"infection.mean_lysis_time must be positive, got {inf.mean_lysis_time}"
        )
    if inf.virion_half_life < 0 or inf.dip_half_life < 0:
        raise ValueError("infection half-lives must be non-negative")

    # IFN
    ifn = config.ifn
    valid_spread = {"global", "local", "none"}
    if ifn.spread not in valid_spread:
        raise ValueError(
            f"ifn.spread must be one of {valid_spread}, got '{ifn.spread}'"
        )
    if ifn.local_radius < 0:
        raise ValueError(f"ifn.local_radius must be non-negative, got {ifn.local_radius}")
    if ifn.spread == "local" and ifn.local_radius >= sim.grid_size:
        warnings.warn(
            f"ifn.local_radius={ifn.local_radius} covers the whole lattice; "
            f"local spread behaves like a global pool",
            UserWarning,
            stacklevel=2,
        )
    for name in ("tau", "half_life", "both_fold", "delay", "delay_std",
                 "dip_only_ratio", "both_ratio"):
        value = getattr(ifn, name)
        if value < 0:
            raise ValueError(f"ifn.{name} must be non-negative, got {value}")

    # Regrowth
    if config.regrowth.mean < 0 or config.regrowth.std < 0:
        raise ValueError("regrowth.mean and regrowth.std must be non-negative")

    # Seeding
    seed = config.seeding
    valid_modes = {"particles", "infected", "scatter"}
    if seed.mode not in valid_modes:
        raise ValueError(
            f"seeding.mode must be one of {valid_modes}, got '{seed.mode}'"
        )
    if seed.virion_pfu < 0 or seed.dip_pfu < 0:
        raise ValueError(
            f"seeding counts must be non-negative, got "
            f"virion_pfu={seed.virion_pfu}, dip_pfu={seed.dip_pfu}"
        )
    for name in ("row", "col"):
        value = getattr(seed, name)
        if value is not None and not 0 <= value < sim.grid_size:
            raise ValueError(
                f"seeding.{name}={value} outside lattice of size {sim.grid_size}"
            )

    if config.output.snapshot_interval < 0:
        raise ValueError("output.snapshot_interval must be non-negative")


def load_config(
    base_path: Union[str, Path],
    scenario_path: Optional[Union[str, Path]] = None,
    sweep_overrides: Optional[Dict] = None,
) -> SimulationConfig:
    """Load and merge hierarchical YAML configuration.

    Merge order: base → scenario → sweep overrides.
    Each layer overrides only the fields it specifies.

    Args:
        base_path: Path to base configuration YAML.
        scenario_path: Optional scenario override YAML.
        sweep_overrides: Optional dict of parameter sweep overrides.

    Returns:
        Validated SimulationConfig.

    Raises:
        FileNotFoundError: If base_path or scenario_path doesn't exist.
        ValueError: If validation fails.
    """
    base_path = Path(base_path)
    if not base_path.exists():
        raise FileNotFoundError(f"Config file not found: {base_path}")
    config_dict = _read_yaml(base_path)

    if scenario_path is not None:
        scenario_path = Path(scenario_path)
        if not scenario_path.exists():
            raise FileNotFoundError(f"Scenario file not found: {scenario_path}")
        deep_merge(config_dict, _read_yaml(scenario_path))

    if sweep_overrides is not None:
        deep_merge(config_dict, sweep_overrides)

    config = _yaml_to_config(config_dict)
    validate_config(config)
    return config


def default_config() -> SimulationConfig:
    """Return a SimulationConfig with all default values."""
    config = SimulationConfig()
    validate_config(config)
    return config
