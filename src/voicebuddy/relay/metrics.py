from __future__ import annotations

import time
from collections import Counter, deque
from dataclasses import dataclass
from typing import Deque, Optional


@dataclass
class RelaySample:
    ts: float
    model: str
    outcome: str  # completed | upstream_error | cancelled
    ttff_ms: Optional[float]  # time to first fragment; None when nothing arrived
    fragments: int
    chars: int
    duration_ms: float


class MetricsAggregator:
    def __init__(self, capacity: int = 500):
        self.capacity = capacity
        self.samples: Deque[RelaySample] = deque(maxlen=capacity)
        self.start_ts = time.time()
        self.outcomes: Counter[str] = Counter()
        self.request_index = 0

    def add(self, sample: RelaySample):
        self.samples.append(sample)
        self.outcomes[sample.outcome] += 1
        self.request_index += 1

    def summary(self) -> dict:
        base = {
            "uptime_seconds": time.time() - self.start_ts,
            "total_requests": self.request_index,
            "requests_by_outcome": dict(self.outcomes),
            "schema_version": 1,
        }
        if not self.samples:
            base["rolling"] = {"count": 0}
            return base
        ttffs = sorted(s.ttff_ms for s in self.samples if s.ttff_ms is not None)
        durations = [s.duration_ms for s in self.samples]
        p95 = ttffs[int(0.95 * (len(ttffs) - 1))] if ttffs else None
        base["rolling"] = {
            "count": len(self.samples),
            "avg_ttff_ms": (sum(ttffs) / len(ttffs)) if ttffs else None,
            "p95_ttff_ms": p95,
            "avg_duration_ms": sum(durations) / len(durations),
            "avg_fragments": sum(s.fragments for s in self.samples)
            / len(self.samples),
        }
        return base
