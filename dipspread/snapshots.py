"""Optional per-step lattice snapshots.

Copies the state / virion / DIP / IFN arrays at configurable step intervals
so external renderers can replay a run without re-simulating it.

Usage:
    recorder = SnapshotRecorder(enabled=True, interval=10)
    result = run_simulation(config, snapshot_recorder=recorder)
    recorder.save("results/snapshots.npz")
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np


@dataclass
class GridSnapshot:
    """Lattice arrays at one step."""
    step: int
    state: np.ndarray     # int8 (n, n)
    virions: np.ndarray   # int64 (n, n)
    dips: np.ndarray      # int64 (n, n)
    ifn: np.ndarray       # float64 (n, n)


class SnapshotRecorder:
    """Records lattice snapshots. When enabled=False, every method is a no-op."""

    def __init__(
        self,
        enabled: bool = False,
        interval: int = 1,
        start_step: int = 0,
        end_step: Optional[int] = None,
    ):
        """
        Args:
            enabled: Master switch.
            interval: Capture every N steps (1 = every step).
            start_step: First step to record.
            end_step: Last step to record (None = run end).
        """
        self.enabled = enabled
        self.interval = max(1, interval)
        self.start_step = start_step
        self.end_step = end_step
        self.snapshots: Dict[int, GridSnapshot] = {}

    def should_capture(self, step: int) -> bool:
        if not self.enabled:
            return False
        if step < self.start_step:
            return False
        if self.end_step is not None and step > self.end_step:
            return False
        return (step - self.start_step) % self.interval == 0

    def capture(self, step: int, cells: np.ndarray) -> None:
        """Copy the lattice arrays if `step` is on the schedule."""
        if not self.should_capture(step):
            return
        self.snapshots[step] = GridSnapshot(
            step=step,
            state=cells['state'].copy(),
            virions=cells['virions'].copy(),
            dips=cells['dips'].copy(),
            ifn=cells['ifn'].copy(),
        )

    def get_steps(self) -> List[int]:
        return sorted(self.snapshots)

    def get_snapshot(self, step: int) -> Optional[GridSnapshot]:
        return self.snapshots.get(step)

    def save(self, path: str) -> None:
        """Save as compressed npz: stacked (k, n, n) arrays plus `steps`."""
        if not self.snapshots:
            return
        steps = self.get_steps()
        snaps = [self.snapshots[s] for s in steps]
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        np.savez_compressed(
            path,
            steps=np.array(steps, dtype=np.int32),
            state=np.stack([s.state for s in snaps]),
            virions=np.stack([s.virions for s in snaps]),
            dips=np.stack([s.dips for s in snaps]),
            ifn=np.stack([s.ifn for s in snaps]),
        )

    @classmethod
    def load(cls, path: str) -> 'SnapshotRecorder':
        """Load snapshots saved by save(). The returned recorder is disabled."""
        recorder = cls(enabled=False)
        with np.load(path) as data:
            arrays = {key: data[key] for key in ('steps', 'state', 'virions', 'dips', 'ifn')}
        for k, step in enumerate(arrays['steps']):
            step = int(step)
            recorder.snapshots[step] = GridSnapshot(
                step=step,
                state=arrays['state'][k],
                virions=arrays['virions'][k],
                dips=arrays['dips'][k],
                ifn=arrays['ifn'][k],
            )
        return recorder
