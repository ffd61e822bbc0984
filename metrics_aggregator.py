"""Thread-safe aggregation of per-attempt outcomes.

Counters are exact. Latency keeps an exact count, sum, min and max and a
bounded reservoir sample for percentiles, so memory stays flat however long
the run is.
"""

from __future__ import annotations

import random
import statistics
import threading
import time
from collections import Counter
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from response_validator import Outcome, OutcomeKind

DEFAULT_RESERVOIR_SIZE = 10_000
ERROR_STATUS_LABEL = "error"


class Reservoir:
    """Uniform fixed-size sample of a stream (Vitter's algorithm R). Not thread-safe."""

    def __init__(self, capacity: int = DEFAULT_RESERVOIR_SIZE, seed: Optional[int] = None) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self.seen = 0
        self._samples: List[float] = []
        self._rng = random.Random(seed)

    def add(self, value: float) -> None:
        self.seen += 1
        if len(self._samples) < self.capacity:
            self._samples.append(value)
            return
        slot = self._rng.randrange(self.seen)
        if slot < self.capacity:
            self._samples[slot] = value

    def samples(self) -> List[float]:
        return list(self._samples)

    def __len__(self) -> int:
        return len(self._samples)


def percentiles(samples: List[float]) -> Dict[int, float]:
    """p50/p90/p95/p99 with linear interpolation between closest ranks."""

    if not samples:
        return {50: 0.0, 90: 0.0, 95: 0.0, 99: 0.0}
    if len(samples) == 1:
        only = samples[0]
        return {50: only, 90: only, 95: only, 99: only}
    cuts = statistics.quantiles(samples, n=100, method="inclusive")
    return {p: cuts[p - 1] for p in (50, 90, 95, 99)}


@dataclass(frozen=True)
class LatencySummary:
    count: int = 0
    mean: float = 0.0
    min: float = 0.0
    max: float = 0.0
    p50: float = 0.0
    p90: float = 0.0
    p95: float = 0.0
    p99: float = 0.0


@dataclass(frozen=True)
class MetricsSnapshot:
    total: int
    by_kind: Dict[str, int]
    by_status: Dict[str, int]
    failed_checks: Dict[str, int]
    skipped_skus: int
    latency: LatencySummary
    elapsed_seconds: float

    def count(self, kind: OutcomeKind) -> int:
        return self.by_kind.get(kind.value, 0)

    @property
    def successes(self) -> int:
        return self.count(OutcomeKind.SUCCESS)

    @property
    def success_rate(self) -> float:
        return self.successes / self.total if self.total else 0.0

    @property
    def failed_request_rate(self) -> float:
        """Share of attempts that did not get a 2xx response."""

        if not self.total:
            return 0.0
        ok = sum(count for status, count in self.by_status.items() if status.startswith("2"))
        return (self.total - ok) / self.total

    @property
    def throughput(self) -> float:
        return self.total / self.elapsed_seconds if self.elapsed_seconds > 0 else 0.0


class MetricsAggregator:
    """Owns all run metrics behind a single lock."""

    def __init__(
        self,
        reservoir_size: int = DEFAULT_RESERVOIR_SIZE,
        *,
        seed: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._lock = threading.Lock()
        self._clock = clock
        self._started = clock()
        self._total = 0
        self._by_kind: Counter[str] = Counter()
        self._by_status: Counter[str] = Counter()
        self._failed_checks: Counter[str] = Counter()
        self._skipped_skus = 0
        self._latency_sum = 0.0
        self._latency_min: Optional[float] = None
        self._latency_max = 0.0
        self._reservoir = Reservoir(reservoir_size, seed=seed)

    def record(self, outcome: Outcome) -> None:
        status_label = str(outcome.status) if outcome.status is not None else ERROR_STATUS_LABEL
        latency = outcome.latency_ms
        with self._lock:
            self._total += 1
            self._by_kind[outcome.kind.value] += 1
            self._by_status[status_label] += 1
            self._failed_checks.update(outcome.failed_checks)
            self._latency_sum += latency
            self._latency_max = max(self._latency_max, latency)
            if self._latency_min is None or latency < self._latency_min:
                self._latency_min = latency
            self._reservoir.add(latency)

    def record_skipped_skus(self, count: int) -> None:
        if count <= 0:
            return
        with self._lock:
            self._skipped_skus += count

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            total = self._total
            by_kind = dict(self._by_kind)
            by_status = dict(self._by_status)
            failed_checks = dict(self._failed_checks)
            skipped = self._skipped_skus
            latency_sum = self._latency_sum
            latency_min = self._latency_min or 0.0
            latency_max = self._latency_max
            samples = self._reservoir.samples()
            elapsed = self._clock() - self._started

        cuts = percentiles(samples)
        latency = LatencySummary(
            count=total,
            mean=latency_sum / total if total else 0.0,
            min=latency_min,
            max=latency_max,
            p50=cuts[50],
            p90=cuts[90],
            p95=cuts[95],
            p99=cuts[99],
        )
        return MetricsSnapshot(
            total=total,
            by_kind=by_kind,
            by_status=by_status,
            failed_checks=failed_checks,
            skipped_skus=skipped,
            latency=latency,
            elapsed_seconds=elapsed,
        )
