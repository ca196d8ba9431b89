from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator


@dataclass
class StageTimer:
    """Lightweight per-stage timing for a single frame."""

    start_ts: float = field(default_factory=time.perf_counter)
    stages_ms: Dict[str, float] = field(default_factory=dict)

    def mark(self, stage_name: str, stage_start_ts: float) -> float:
        elapsed = (time.perf_counter() - stage_start_ts) * 1000.0
        self.stages_ms[stage_name] = elapsed
        return elapsed

    @contextmanager
    def stage(self, stage_name: str) -> Iterator[None]:
        t0 = time.perf_counter()
        try:
            yield
        finally:
            self.mark(stage_name, t0)

    @property
    def total_ms(self) -> float:
        return (time.perf_counter() - self.start_ts) * 1000.0


@dataclass
class Profiler:
    """Accumulates stage latencies across frames; reported at shutdown."""

    totals_ms: Dict[str, float] = field(default_factory=dict)
    counts: Dict[str, int] = field(default_factory=dict)

    def add(self, stage_name: str, ms: float) -> None:
        self.totals_ms[stage_name] = self.totals_ms.get(stage_name, 0.0) + ms
        self.counts[stage_name] = self.counts.get(stage_name, 0) + 1

    def merge(self, stages_ms: Dict[str, float]) -> None:
        for name, ms in stages_ms.items():
            self.add(name, ms)

    def mean_ms(self, stage_name: str) -> float:
        count = self.counts.get(stage_name, 0)
        return self.totals_ms.get(stage_name, 0.0) / count if count else 0.0

    def summary(self) -> Dict[str, Dict[str, float]]:
        return {
            name: {"total_ms": total, "mean_ms": self.mean_ms(name), "count": float(self.counts[name])}
            for name, total in self.totals_ms.items()
        }


@dataclass
class FPSMeter:
    """Exponential moving average FPS estimator."""

    smoothing: float = 0.9
    fps: float = 0.0
    _last_ts: float = field(default_factory=time.perf_counter)

    def tick(self) -> float:
        now = time.perf_counter()
        dt = max(now - self._last_ts, 1e-9)
        inst_fps = 1.0 / dt
        self.fps = inst_fps if self.fps <= 0 else (self.smoothing * self.fps + (1 - self.smoothing) * inst_fps)
        self._last_ts = now
        return self.fps
