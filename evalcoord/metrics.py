"""Metrics capability injected into the orchestrator."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Protocol

EVALUATIONS_STARTED = "evaluation_coordinator_evaluations_started"
STEP_FAILURES = "evaluation_coordinator_step_failures_total"
WORKFLOW_DURATION = "evaluation_coordinator_workflow_duration_seconds"

DURATION_BUCKETS = (0.1, 0.5, 1, 2, 5, 10, 30)


class Metrics(Protocol):
    def increment(self, name: str, **labels: str) -> None:
        """Add one to the counter ``name`` for ``labels``."""

    def observe(self, name: str, value: float, **labels: str) -> None:
        """Record ``value`` in the histogram ``name`` for ``labels``."""

    def snapshot(self) -> dict[str, Any]:
        """Current values of every series, JSON serialisable."""


def _key(labels: dict[str, str]) -> tuple[tuple[str, str], ...]:
    return tuple(sorted(labels.items()))


@dataclass
class Histogram:
    """Cumulative bucket counts; memory does not grow with observations."""

    buckets: tuple[float, ...] = DURATION_BUCKETS
    count: int = 0
    sum: float = 0.0
    bucket_counts: list[int] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.bucket_counts:
            self.bucket_counts = [0] * len(self.buckets)

    def observe(self, value: float) -> None:
        self.count += 1
        self.sum += value
        for i, bound in enumerate(self.buckets):
            if value <= bound:
                self.bucket_counts[i] += 1

    def as_dict(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "sum": self.sum,
            "buckets": {str(b): c for b, c in zip(self.buckets, self.bucket_counts)},
        }


class InMemoryMetrics:
    """Keeps counters and histograms in process memory."""

    def __init__(self) -> None:
        self.counters: dict[str, dict[tuple, int]] = defaultdict(lambda: defaultdict(int))
        self.histograms: dict[str, dict[tuple, Histogram]] = defaultdict(
            lambda: defaultdict(Histogram)
        )

    def increment(self, name: str, **labels: str) -> None:
        self.counters[name][_key(labels)] += 1

    def observe(self, name: str, value: float, **labels: str) -> None:
        self.histograms[name][_key(labels)].observe(value)

    def count(self, name: str, **labels: str) -> int:
        """Counter value; without labels, the sum over every label set."""
        series = self.counters.get(name, {})
        if labels:
            return series.get(_key(labels), 0)
        return sum(series.values())

    def histogram(self, name: str, **labels: str) -> Histogram | None:
        return self.histograms.get(name, {}).get(_key(labels))

    def snapshot(self) -> dict[str, Any]:
        return {
            "counters": {
                name: [{"labels": dict(key), "value": value} for key, value in series.items()]
                for name, series in self.counters.items()
            },
            "histograms": {
                name: [{"labels": dict(key), **hist.as_dict()} for key, hist in series.items()]
                for name, series in self.histograms.items()
            },
        }
