#!/usr/bin/env python3
"""Run one plaque simulation and write per-step metrics to CSV.

Examples:
    python scripts/run_plaque.py
    python scripts/run_plaque.py --scenario configs/scenarios/coinfection_diffusion.yaml --seed 7
    python scripts/run_plaque.py --set dispersal.policy=partition --set ifn.tau=0 --steps 200
"""

import argparse
import sys
import time
from pathlib import Path

import yaml

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from dipspread.config import deep_merge, load_config  # noqa: E402
from dipspread.model import run_simulation  # noqa: E402
from dipspread.perf import PerfMonitor  # noqa: E402
from dipspread.snapshots import SnapshotRecorder  # noqa: E402


def parse_override(text: str) -> dict:
    """'ifn.tau=0' → {'ifn': {'tau': 0}} (value parsed as YAML)."""
    if '=' not in text:
        raise argparse.ArgumentTypeError(f"expected section.key=value, got '{text}'")
    dotted, raw = text.split('=', 1)
    keys = dotted.split('.')
    override = yaml.safe_load(raw)
    for key in reversed(keys):
        override = {key: override}
    return override


def main():
    parser = argparse.ArgumentParser(description="Run a dipspread plaque simulation")
    parser.add_argument("--config", default=str(PROJECT_ROOT / "configs" / "base.yaml"),
                        help="Base configuration YAML")
    parser.add_argument("--scenario", default=None, help="Scenario override YAML")
    parser.add_argument("--set", dest="overrides", action="append", default=[],
                        type=parse_override, metavar="SECTION.KEY=VALUE",
                        help="Override one config value (repeatable)")
    parser.add_argument("--seed", type=int, default=None, help="RNG seed")
    parser.add_argument("--steps", type=int, default=None, help="Override simulation.n_steps")
    parser.add_argument("--out", default=None, help="Output directory")
    parser.add_argument("--perf", action="store_true", help="Print phase timing")
    args = parser.parse_args()

    sweep = {}
    for override in args.overrides:
        deep_merge(sweep, override)
    if args.steps is not None:
        deep_merge(sweep, {'simulation': {'n_steps': args.steps}})

    try:
        config = load_config(args.config, args.scenario, sweep or None)
    except (FileNotFoundError, ValueError) as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        sys.exit(2)

    out_dir = Path(args.out or config.output.directory)
    out_dir.mkdir(parents=True, exist_ok=True)

    recorder = SnapshotRecorder(
        enabled=config.output.snapshot_interval > 0,
        interval=config.output.snapshot_interval,
    )
    perf = PerfMonitor(enabled=args.perf)

    print("=== dipspread plaque simulation ===")
    print(f"  Lattice:    {config.simulation.grid_size}x{config.simulation.grid_size}, "
          f"{config.simulation.n_steps} steps")
    print(f"  Dispersal:  {config.dispersal.policy} "
          f"(burst V={config.dispersal.burst_size_virion}, D={config.dispersal.burst_size_dip}, "
          f"DIPs {'on' if config.dispersal.dip_enabled else 'off'})")
    print(f"  IFN:        {config.ifn.spread} (tau={config.ifn.tau}, "
          f"half-life={config.ifn.half_life})")
    print(f"  Seeding:    {config.seeding.mode} "
          f"(V={config.seeding.virion_pfu}, D={config.seeding.dip_pfu})")

    def progress(step, n_steps):
        if step % 50 == 0 or step == n_steps:
            print(f"  step {step:>5d}/{n_steps}", flush=True)

    t0 = time.time()
    result = run_simulation(
        config,
        seed=args.seed,
        progress_callback=progress,
        snapshot_recorder=recorder,
        perf=perf,
    )
    elapsed = time.time() - t0

    csv_path = out_dir / config.output.metrics_csv
    result.to_frame().to_csv(csv_path, index=False)

    final = result.metrics[-1]
    print(f"\nDone in {elapsed:.1f}s (seed {result.seed})")
    print(f"  Dead: {final.pct_dead:.2f}%  Antiviral: {final.pct_antiviral:.2f}%  "
          f"Infected: {final.pct_infected:.2f}%  Plaques: {final.n_plaques}")
    print(f"  Lysed from V: {result.counters.total_dead_from_virion}  "
          f"from both: {result.counters.total_dead_from_both}")
    print(f"  Metrics -> {csv_path}")

    if recorder.enabled:
        snap_path = out_dir / "snapshots.npz"
        recorder.save(str(snap_path))
        print(f"  Snapshots -> {snap_path}")
    if perf.enabled:
        print(perf.report())


if __name__ == "__main__":
    main()
