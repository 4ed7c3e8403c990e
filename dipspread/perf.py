"""Per-phase timing for dipspread runs.

Off by default; a disabled monitor's methods return immediately.

Usage:
    from dipspread.perf import PerfMonitor

    perf = PerfMonitor(enabled=True)
    result = run_simulation(config, perf=perf)
    print(perf.report())
"""

import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Optional


# Phase names used by model.step(), in execution order
STEP_PHASES = (
    'ifn_decay',
    'antiviral',
    'infection',
    'infected_cells',
    'regrowth',
    'ifn_production',
    'particle_decay',
    'metrics',
)


@dataclass
class PhaseStats:
    """Accumulated wall-clock time for one phase."""
    total_time: float = 0.0
    call_count: int = 0
    min_time: float = float('inf')
    max_time: float = 0.0

    @property
    def mean_time(self) -> float:
        return self.total_time / self.call_count if self.call_count else 0.0

    def add(self, elapsed: float) -> None:
        self.total_time += elapsed
        self.call_count += 1
        self.min_time = min(self.min_time, elapsed)
        self.max_time = max(self.max_time, elapsed)


class PerfMonitor:
    """Wall-clock timer keyed by step phase."""

    def __init__(self, enabled: bool = False):
        self.enabled = enabled
        self._stats: Dict[str, PhaseStats] = defaultdict(PhaseStats)
        self._start_time: Optional[float] = None
        self._total_time: float = 0.0

    def start(self) -> None:
        if self.enabled:
            self._start_time = time.perf_counter()

    def stop(self) -> None:
        if self.enabled and self._start_time is not None:
            self._total_time = time.perf_counter() - self._start_time

    @contextmanager
    def track(self, phase: str):
        """Time the enclosed block under `phase`."""
        if not self.enabled:
            yield
            return
        t0 = time.perf_counter()
        try:
            yield
        finally:
            self.record(phase, time.perf_counter() - t0)

    def record(self, phase: str, elapsed: float) -> None:
        if self.enabled:
            self._stats[phase].add(elapsed)

    def get_stats(self) -> Dict[str, PhaseStats]:
        return dict(self._stats)

    def _total(self) -> float:
        return self._total_time or sum(s.total_time for s in self._stats.values())

    def summary(self) -> dict:
        """JSON-serializable breakdown, slowest phase first."""
        total = self._total()
        result = {}
        for name, stats in sorted(self._stats.items(), key=lambda x: -x[1].total_time):
            result[name] = {
                'total_s': round(stats.total_time, 4),
                'calls': stats.call_count,
                'mean_ms': round(stats.mean_time * 1000, 3),
                'pct': round(stats.total_time / total * 100, 1) if total > 0 else 0.0,
            }
        result['_total_s'] = round(total, 4)
        return result

    def report(self, title: str = "Step phase timing") -> str:
        """Human-readable table of summary()."""
        rows = self.summary()
        total = rows.pop('_total_s')
        lines = [
            f"\n{'='*60}",
            f" {title}",
            f"{'='*60}",
            f"{'Phase':<25} {'Total (s)':>10} {'Calls':>8} {'Mean (ms)':>10} {'%':>6}",
            f"{'-'*25} {'-'*10} {'-'*8} {'-'*10} {'-'*6}",
        ]
        for name, row in rows.items():
            lines.append(
                f"{name:<25} {row['total_s']:>10.4f} {row['calls']:>8} "
                f"{row['mean_ms']:>10.3f} {row['pct']:>5.1f}%"
            )
        lines.append(f"{'-'*25} {'-'*10} {'-'*8} {'-'*10} {'-'*6}")
        lines.append(f"{'TOTAL':<25} {total:>10.4f}")
        lines.append(f"{'='*60}\n")
        return '\n'.join(lines)

    def reset(self) -> None:
        self._stats.clear()
        self._start_time = None
        self._total_time = 0.0
