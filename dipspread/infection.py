"""Infection, antiviral induction and lysis state machine.

One step is evaluated against a start-of-step snapshot of cell states:
`cells['state']` is only overwritten when the step commits `new_state`.
Particle counts and timers, in contrast, are mutated in place and later
cells see earlier cells' changes within the same pass.

Passes (in order, called from model.step):
  1. antiviral_pass   — SUSCEPTIBLE / REGROWTH / INFECTED_DIP cells exposed to
                        IFN for longer than their drawn duration → ANTIVIRAL
  2. infection_pass   — SUSCEPTIBLE / REGROWTH cells with free particles draw
                        independent virion and DIP infections
  3. infected_pass    — every cell infected at step start, row-major:
                        lysis timer / lysis + dispersal, co-infection
                        upgrade, IFN production

Per-particle infection probability:
  virion: ρ                         if τ = 0, or virions stimulate IFN and R = 0
          ρ·exp(-α·IFN / R)         if virions stimulate IFN
          ρ·exp(-α·IFN)             otherwise
  DIP:    ρ·exp(-α·IFN)
Cell-level probability from n particles: 1 − (1 − p)^n.
"""

from __future__ import annotations

import numpy as np

from dipspread.config import ModelParameters
from dipspread.dispersal import BurstRecord, release_burst
from dipspread.ifn import ProductionLedger, ifn_delay_elapsed, production_rate
from dipspread.topology import HexTopology
from dipspread.types import (
    ANTIVIRAL_ELIGIBLE_STATES,
    EXPIRED,
    INACTIVE,
    INFECTABLE_STATES,
    INFECTED_STATES,
    LYTIC_STATES,
    CellState,
    SimulationCounters,
)


# ═══════════════════════════════════════════════════════════════════════
# PROBABILITIES
# ═══════════════════════════════════════════════════════════════════════

def virion_particle_probability(
    rho: float,
    alpha: float,
    effective_ifn,
    r: int,
    tau: int,
    virion_stimulates: bool,
):
    """Per-virion infection probability under IFN exposure.

    Args:
        rho: Baseline per-particle probability.
        alpha: IFN sensitivity.
        effective_ifn: Scalar or array of effective IFN.
        r: Virion IFN rate R; 0 leaves virions unattenuated.
        tau: Antiviral time scale; 0 disables the IFN response.
        virion_stimulates: Whether virion-infected cells produce IFN.

    Returns:
        Probability with the shape of effective_ifn.
    """
    ifn = np.asarray(effective_ifn, dtype=np.float64)
    if tau == 0 or r == 0:
        return np.full_like(ifn, rho)
    if virion_stimulates:
        return rho * np.exp(-alpha * ifn / r)
    return rho * np.exp(-alpha * ifn)


def dip_particle_probability(rho: float, alpha: float, effective_ifn):
    """Per-DIP infection probability: ρ·exp(-α·IFN)."""
    return rho * np.exp(-alpha * np.asarray(effective_ifn, dtype=np.float64))


def cell_infection_probability(p_particle, n_particles):
    """Probability that at least one of n independent particles infects.

    Zero particles give probability 0.
    """
    p = np.asarray(p_particle, dtype=np.float64)
    n = np.asarray(n_particles, dtype=np.float64)
    return np.where(n > 0, 1.0 - np.power(1.0 - p, n), 0.0)


def _draw_infection(virions, dips, effective_ifn, params, rng):
    """Independent virion / DIP Bernoulli draws for a batch of cells."""
    p_v = cell_infection_probability(
        virion_particle_probability(
            params.rho, params.alpha, effective_ifn, params.virion_ifn_rate,
            params.tau, params.virion_stimulates_ifn),
        virions,
    )
    p_d = cell_infection_probability(
        dip_particle_probability(params.rho, params.alpha, effective_ifn), dips)
    by_virion = (np.asarray(virions) > 0) & (_uniform(rng, p_v) < p_v)
    by_dip = (np.asarray(dips) > 0) & (_uniform(rng, p_d) < p_d)
    return by_virion, by_dip


def _uniform(rng: np.random.Generator, like: np.ndarray):
    return rng.random(like.shape) if like.ndim else rng.random()


# ═══════════════════════════════════════════════════════════════════════
# TIMER DRAWS
# ═══════════════════════════════════════════════════════════════════════

def draw_lysis_threshold(params: ModelParameters, rng: np.random.Generator) -> int:
    """Lysis delay ~ Normal(mean, mean/4), truncated to int, at least 1."""
    return max(1, int(rng.normal(params.mean_lysis_time, params.std_lysis_time)))


def draw_antiviral_durations(n: int, tau: int, rng: np.random.Generator) -> np.ndarray:
    """Antiviral exposure durations ~ floor(Normal(τ, τ/4)), at least 0."""
    durations = np.floor(rng.normal(tau, tau / 4.0, size=n))
    return np.maximum(durations, 0).astype(np.int32)


# ═══════════════════════════════════════════════════════════════════════
# PASS 1: ANTIVIRAL INDUCTION + NEW INFECTION
# ═══════════════════════════════════════════════════════════════════════

def antiviral_pass(
    cells: np.ndarray,
    new_state: np.ndarray,
    params: ModelParameters,
    counters: SimulationCounters,
    rng: np.random.Generator,
) -> int:
    """Advance IFN-exposure timers and convert cells to ANTIVIRAL.

    A cell's own IFN concentration is the exposure signal. On first exposure
    a duration is drawn and the timer starts at 0; the timer then advances
    while it is <= the duration; the next exposed step converts the cell.

    Returns:
        Number of cells converted this step.
    """
    if params.tau <= 0:
        return 0
    state = cells['state']
    exposed = np.isin(state, ANTIVIRAL_ELIGIBLE_STATES) & (cells['ifn'] > 0)
    if not exposed.any():
        return 0

    first = exposed & (cells['antiviral_duration'] <= INACTIVE)
    timing = exposed & ~first & (cells['t_antiviral'] <= cells['antiviral_duration'])
    convert = exposed & ~first & ~timing

    cells['antiviral_duration'][first] = draw_antiviral_durations(
        int(first.sum()), params.tau, rng)
    cells['t_antiviral'][first] = 0
    cells['t_antiviral'][timing] += params.timestep

    if convert.any():
        cells['previous_state'][convert] = state[convert]
        new_state[convert] = CellState.ANTIVIRAL
        cells['t_antiviral'][convert] = EXPIRED
        cells['state_changed'][convert] = True
        counters.total_antiviral_time += int(cells['antiviral_duration'][convert].sum())
        newly_counted = convert & ~cells['antiviral_flag']
        cells['antiviral_flag'][newly_counted] = True
        counters.antiviral_cell_count += int(newly_counted.sum())
    return int(convert.sum())


def infection_pass(
    cells: np.ndarray,
    new_state: np.ndarray,
    effective_ifn: np.ndarray,
    params: ModelParameters,
    rng: np.random.Generator,
) -> int:
    """Infect SUSCEPTIBLE / REGROWTH cells holding free particles.

    Candidates are read from the start-of-step state, so an infection
    overrides an ANTIVIRAL conversion written earlier in the same step.

    Returns:
        Number of newly infected cells.
    """
    state = cells['state']
    candidates = (
        np.isin(state, INFECTABLE_STATES)
        & ((cells['virions'] > 0) | (cells['dips'] > 0))
    )
    if not candidates.any():
        return 0

    rows, cols = np.nonzero(candidates)
    by_virion, by_dip = _draw_infection(
        cells['virions'][rows, cols], cells['dips'][rows, cols],
        effective_ifn[rows, cols], params, rng,
    )
    infected = by_virion | by_dip
    if not infected.any():
        return 0

    outcome = np.where(
        by_virion & by_dip, CellState.INFECTED_BOTH,
        np.where(by_virion, CellState.INFECTED_VIRION, CellState.INFECTED_DIP),
    )
    ri, ci = rows[infected], cols[infected]
    outcome = outcome[infected]
    new_state[ri, ci] = outcome
    cells['t_susceptible'][ri, ci] = INACTIVE
    cells['t_regrowth'][ri, ci] = INACTIVE
    cells['state_changed'][ri, ci] = True

    lytic = outcome != CellState.INFECTED_DIP
    cells['t_infection'][ri[lytic], ci[lytic]] = 0
    cells['t_infection_dip'][ri[~lytic], ci[~lytic]] = 0
    return int(infected.sum())


# ═══════════════════════════════════════════════════════════════════════
# PASS 2: INFECTED CELLS
# ═══════════════════════════════════════════════════════════════════════

def advance_lysis_timer(
    cells: np.ndarray,
    i: int,
    j: int,
    params: ModelParameters,
    rng: np.random.Generator,
) -> bool:
    """Tick the lysis clock of a virion / both infected cell.

    The threshold is drawn on the first visit after infection.

    Returns:
        True if the cell lyses this step (elapsed >= threshold).
    """
    if cells['lysis_threshold'][i, j] == INACTIVE:
        cells['lysis_threshold'][i, j] = draw_lysis_threshold(params, rng)
    if cells['t_infection'][i, j] < 0:
        cells['t_infection'][i, j] = 0
    cells['t_infection'][i, j] += params.timestep
    cells['t_infection_dip'][i, j] = INACTIVE
    return bool(cells['t_infection'][i, j] >= cells['lysis_threshold'][i, j])


def lyse_cell(
    cells: np.ndarray,
    new_state: np.ndarray,
    i: int,
    j: int,
    topology: HexTopology,
    params: ModelParameters,
    counters: SimulationCounters,
    rng: np.random.Generator,
) -> BurstRecord:
    """Kill (i, j) and release its burst.

    The cell is marked DEAD in both the live and the next-state buffers, so
    later cells in the same pass (dispersal guards, regrowth support) see it
    dead immediately.
    """
    if cells['state'][i, j] == CellState.INFECTED_VIRION:
        counters.total_dead_from_virion += 1
    else:
        counters.total_dead_from_both += 1

    new_state[i, j] = CellState.DEAD
    cells['state'][i, j] = CellState.DEAD
    cells['t_dead'][i, j] = 0
    cells['t_infection'][i, j] = INACTIVE
    cells['t_infection_dip'][i, j] = INACTIVE
    cells['lysis_threshold'][i, j] = INACTIVE
    return release_burst(cells, topology, i, j, params, counters, rng)


def upgrade_cell(
    cells: np.ndarray,
    new_state: np.ndarray,
    i: int,
    j: int,
    effective_ifn: np.ndarray,
    params: ModelParameters,
    rng: np.random.Generator,
) -> bool:
    """Let a singly infected cell acquire the other agent.

    Only cells whose state did not change earlier this step are eligible.

    Returns:
        True if the cell became INFECTED_BOTH.
    """
    state = cells['state'][i, j]
    if cells['state_changed'][i, j]:
        return False
    virions, dips = cells['virions'][i, j], cells['dips'][i, j]
    if virions <= 0 and dips <= 0:
        return False

    by_virion, by_dip = _draw_infection(virions, dips, effective_ifn[i, j], params, rng)
    gains_other = by_dip if state == CellState.INFECTED_VIRION else by_virion
    if not gains_other:
        return False

    new_state[i, j] = CellState.INFECTED_BOTH
    cells['state_changed'][i, j] = True
    if state == CellState.INFECTED_DIP:
        cells['t_infection'][i, j] = 0
    return True


def infected_pass(
    cells: np.ndarray,
    new_state: np.ndarray,
    effective_ifn: np.ndarray,
    topology: HexTopology,
    params: ModelParameters,
    counters: SimulationCounters,
    ledger: ProductionLedger,
    rng: np.random.Generator,
) -> int:
    """Visit every cell infected at step start, in row-major order.

    Returns:
        Number of lyses.
    """
    lysed = 0
    for i, j in np.argwhere(np.isin(cells['state'], INFECTED_STATES)):
        state = int(cells['state'][i, j])

        # ── Lysis ──
        if state in LYTIC_STATES and advance_lysis_timer(cells, i, j, params, rng):
            lyse_cell(cells, new_state, i, j, topology, params, counters, rng)
            lysed += 1
            continue

        # ── Co-infection ──
        if state in (CellState.INFECTED_VIRION, CellState.INFECTED_DIP):
            upgrade_cell(cells, new_state, i, j, effective_ifn, params, rng)

        # ── IFN production ──
        if params.tau <= 0:
            continue
        if state in LYTIC_STATES:
            if ifn_delay_elapsed(int(cells['t_infection'][i, j]), params, rng):
                ledger.add(i, j, production_rate(state, params))
        else:
            cells['t_infection_dip'][i, j] += params.timestep
            if ifn_delay_elapsed(int(cells['t_infection_dip'][i, j]), params, rng):
                ledger.add(i, j, production_rate(state, params))
    return lysed
