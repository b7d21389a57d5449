"""Runtime metrics aggregation for generation runs."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from statistics import mean
from typing import Dict, List


@dataclass
class MetricRecord:
    key: str
    elapsed: float
    status: str
    origin: str


class RunMetrics:
    def __init__(self) -> None:
        self.records: List[MetricRecord] = []
        self._lock = threading.Lock()
        self._in_flight = 0
        self.peak_in_flight = 0

    def call_started(self) -> None:
        with self._lock:
            self._in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self._in_flight)

    def record(self, key: str, elapsed: float, *, status: str, origin: str = "run") -> None:
        with self._lock:
            self._in_flight = max(0, self._in_flight - 1)
            self.records.append(
                MetricRecord(key=key, elapsed=float(elapsed), status=status, origin=origin)
            )

    def summary(self) -> Dict[str, object]:
        with self._lock:
            records = list(self.records)
            peak = self.peak_in_flight
        elapsed = [record.elapsed for record in records]
        return {
            "calls": len(records),
            "success": sum(1 for record in records if record.status == "done"),
            "failure": sum(1 for record in records if record.status == "error"),
            "regenerations": sum(1 for record in records if record.origin == "regenerate"),
            "avg_elapsed": mean(elapsed) if elapsed else 0.0,
            "max_elapsed": max(elapsed) if elapsed else 0.0,
            "peak_in_flight": peak,
        }


__all__ = ["MetricRecord", "RunMetrics"]
