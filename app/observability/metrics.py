from __future__ import annotations

from collections import Counter
from dataclasses import asdict, dataclass
from threading import Lock
from typing import Any


@dataclass
class _LatencyAgg:
    count: int = 0
    sum_ms: float = 0.0
    max_ms: float = 0.0

    def observe(self, elapsed_ms: float) -> None:
        self.count += 1
        self.sum_ms += float(elapsed_ms)
        if elapsed_ms > self.max_ms:
            self.max_ms = float(elapsed_ms)


class InMemoryMetrics:
    """Thread-safe, process-local metrics (resets on restart)."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._init_state()

    def _init_state(self) -> None:
        self.http_requests_total: int = 0
        self.pixel_requests_total: int = 0
        self.opens_recorded_total: int = 0
        self.opens_missed_total: int = 0
        self.open_failures_total: Counter[str] = Counter()
        self.store_connects_total: int = 0
        self.store_connect_failures_total: int = 0
        self.http_request_ms = _LatencyAgg()
        # Time to write the pixel; must stay flat whatever the store does.
        self.pixel_response_ms = _LatencyAgg()
        self.record_open_ms = _LatencyAgg()

    def observe_http_request(self, elapsed_ms: float, pixel: bool = False) -> None:
        with self._lock:
            self.http_requests_total += 1
            self.http_request_ms.observe(elapsed_ms)
            if pixel:
                self.pixel_requests_total += 1
                self.pixel_response_ms.observe(elapsed_ms)

    def observe_open(self, outcome: str, elapsed_ms: float) -> None:
        with self._lock:
            self.record_open_ms.observe(elapsed_ms)
            if outcome == "recorded":
                self.opens_recorded_total += 1
            elif outcome == "not_found":
                self.opens_missed_total += 1
            elif outcome != "skipped":
                self.open_failures_total[outcome] += 1

    def observe_store_connect(self) -> None:
        with self._lock:
            self.store_connects_total += 1

    def observe_store_connect_failure(self) -> None:
        with self._lock:
            self.store_connect_failures_total += 1

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "counters": {
                    "http_requests_total": self.http_requests_total,
                    "pixel_requests_total": self.pixel_requests_total,
                    "opens_recorded_total": self.opens_recorded_total,
                    "opens_missed_total": self.opens_missed_total,
                    "open_failures_total": dict(self.open_failures_total),
                    "store_connects_total": self.store_connects_total,
                    "store_connect_failures_total": self.store_connect_failures_total,
                },
                "latency_ms": {
                    "http_request_ms": asdict(self.http_request_ms),
                    "pixel_response_ms": asdict(self.pixel_response_ms),
                    "record_open_ms": asdict(self.record_open_ms),
                },
            }

    def reset(self) -> None:
        with self._lock:
            self._init_state()


_METRICS: InMemoryMetrics | None = None


def get_metrics() -> InMemoryMetrics:
    global _METRICS
    if _METRICS is None:
        _METRICS = InMemoryMetrics()
    return _METRICS


def reset_metrics() -> None:
    """Reset metrics counters/aggregates (used by tests)."""

    get_metrics().reset()
