# ─────────────────────────────────────────────────────────────────────────────
# Generation Metrics — thread-safe outcome and latency tracking
# ─────────────────────────────────────────────────────────────────────────────
# Tracks request counts per outcome kind ("succeeded", "RateLimitedError",
# "GenerationTimeoutError", ...), provider polls, and latency percentiles.
# Exposed via GET /metrics and /metrics/prometheus.
#
# Bounded: latency history uses deque(maxlen=1000), auto-evicts oldest.
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import threading
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Any

SUCCESS = "succeeded"


@dataclass
class GenerationMetrics:
    """Thread-safe generation metrics."""

    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    requests_total: int = 0
    successes: int = 0
    errors_total: int = 0
    polls_total: int = 0
    outcomes: Counter[str] = field(default_factory=Counter)

    _latency_history: deque[float] = field(default_factory=lambda: deque(maxlen=1000), repr=False)
    _start_time: float = field(default_factory=time.time, repr=False)

    def record_outcome(self, outcome: str, latency_ms: float, polls: int = 0) -> None:
        """Record one finished generation. ``outcome`` is SUCCESS or an error kind."""
        with self._lock:
            self.requests_total += 1
            self.polls_total += polls
            self.outcomes[outcome] += 1
            if outcome == SUCCESS:
                self.successes += 1
                # Only provider round-trips say anything about provider latency.
                self._latency_history.append(latency_ms)
            else:
                self.errors_total += 1

    def to_dict(self) -> dict[str, Any]:
        """Serialize metrics for the /metrics endpoint."""
        with self._lock:
            latencies = sorted(self._latency_history)
            n = len(latencies)
            return {
                "requests_total": self.requests_total,
                "successes": self.successes,
                "errors_total": self.errors_total,
                "success_rate": round(self.successes / max(self.requests_total, 1), 3),
                "polls_total": self.polls_total,
                "outcomes": dict(self.outcomes),
                "latency_p50_ms": round(latencies[n // 2], 1) if n else 0,
                "latency_p95_ms": round(latencies[int(n * 0.95)], 1) if n else 0,
                "latency_mean_ms": round(sum(latencies) / n, 1) if n else 0,
                "uptime_seconds": int(time.time() - self._start_time),
            }
