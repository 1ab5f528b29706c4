# ─────────────────────────────────────────────────────────────────────────────
# Pipeline Metrics — thread-safe outcome and latency tracking
# ─────────────────────────────────────────────────────────────────────────────
# Per-operation run counts, stage outcomes, gate rejections, and latency
# percentiles. Exposed via GET /metrics and GET /metrics/prometheus.
#
# Bounded: latency history uses deque(maxlen=1000), auto-evicts oldest.
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import threading
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Any


@dataclass
class PipelineMetrics:
    """Thread-safe pipeline metrics."""

    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    runs_total: int = 0
    cooldown_rejections: int = 0
    credential_failures: int = 0
    source_image_failures: int = 0
    descriptions_ok: int = 0
    descriptions_degraded: int = 0
    syntheses_ok: int = 0
    syntheses_failed: int = 0

    _runs_by_operation: Counter[str] = field(default_factory=Counter, repr=False)
    _latency_history: deque[float] = field(default_factory=lambda: deque(maxlen=1000), repr=False)
    _start_time: float = field(default_factory=time.time, repr=False)

    def record_run(self, operation: str, latency_ms: float) -> None:
        """Record a run that got past the gate (whatever its outcome)."""
        with self._lock:
            self.runs_total += 1
            self._runs_by_operation[operation] += 1
            self._latency_history.append(latency_ms)

    def record_rejection(self, reason: str) -> None:
        with self._lock:
            if reason == "cooldown":
                self.cooldown_rejections += 1
            elif reason == "credential":
                self.credential_failures += 1

    def record_description(self, ok: bool) -> None:
        with self._lock:
            if ok:
                self.descriptions_ok += 1
            else:
                self.descriptions_degraded += 1

    def record_source_image_failure(self) -> None:
        with self._lock:
            self.source_image_failures += 1

    def record_synthesis(self, ok: bool) -> None:
        with self._lock:
            if ok:
                self.syntheses_ok += 1
            else:
                self.syntheses_failed += 1

    def to_dict(self) -> dict[str, Any]:
        """Serialize metrics for the /metrics endpoint."""
        with self._lock:
            latencies = sorted(self._latency_history)
            n = len(latencies)
            return {
                "runs_total": self.runs_total,
                "runs_by_operation": dict(self._runs_by_operation),
                "cooldown_rejections": self.cooldown_rejections,
                "credential_failures": self.credential_failures,
                "source_image_failures": self.source_image_failures,
                "descriptions_ok": self.descriptions_ok,
                "descriptions_degraded": self.descriptions_degraded,
                "syntheses_ok": self.syntheses_ok,
                "syntheses_failed": self.syntheses_failed,
                "latency_p50_ms": round(latencies[n // 2], 1) if n else 0,
                "latency_p95_ms": round(latencies[int(n * 0.95)], 1) if n else 0,
                "latency_mean_ms": round(sum(latencies) / n, 1) if n else 0,
                "uptime_seconds": int(time.time() - self._start_time),
            }
