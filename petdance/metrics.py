"""
Thread-safe in-memory metrics for the worker.

  - Counters:  requests.*, jobs.created / succeeded / failed, errors.*
  - Latency:   end-to-end generation time (last 100 samples)
  - Gauges:    queue_depth, processing_count, start_time
  - Errors:    last 50 failures, for quick root-cause lookups

Resets on restart. Job history itself lives in the `videos` table.
"""

import time
import threading
from collections import defaultdict, deque
from typing import Deque, Dict

_lock = threading.Lock()

MAX_SAMPLES = 100
MAX_ERRORS = 50

_counters: Dict[str, int] = defaultdict(int)
_latency_samples: Dict[str, Deque[float]] = defaultdict(lambda: deque(maxlen=MAX_SAMPLES))
_gauges: Dict[str, float] = {}
_recent_errors: Deque[dict] = deque(maxlen=MAX_ERRORS)


def inc_counter(name: str, amount: int = 1):
    with _lock:
        _counters[name] += amount


def record_latency(name: str, duration_ms: float):
    with _lock:
        _latency_samples[name].append(duration_ms)


def set_gauge(name: str, value: float):
    with _lock:
        _gauges[name] = value


def record_error(where: str, error_type: str, message: str, user_id: str = ""):
    with _lock:
        _counters[f"errors.{error_type}"] += 1
        _recent_errors.append({
            "timestamp": time.time(),
            "where": where,
            "error_type": error_type,
            "message": message[:300],
            "user_id": user_id,
        })


def _percentiles(samples) -> dict:
    ordered = sorted(samples)
    n = len(ordered)
    return {
        "p50": ordered[n // 2],
        "p95": ordered[int(n * 0.95)] if n >= 20 else ordered[-1],
        "avg": sum(ordered) / n,
        "count": n,
    }


def get_snapshot() -> dict:
    """Everything collected so far, for the /metrics endpoint."""
    now = time.time()
    with _lock:
        return {
            "timestamp": now,
            "counters": dict(_counters),
            "gauges": dict(_gauges),
            "latency": {k: _percentiles(v) for k, v in _latency_samples.items() if v},
            "recent_errors": list(_recent_errors)[-10:],
            "uptime_seconds": now - _gauges.get("start_time", now),
        }


def reset():
    with _lock:
        _counters.clear()
        _latency_samples.clear()
        _gauges.clear()
        _recent_errors.clear()
