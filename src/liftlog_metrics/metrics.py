"""In-process counters for engine operations.

Asyncio is single-threaded, so plain dicts are safe without locking.
"""

import time

_start_time = time.monotonic()

_operations: dict[str, dict] = {}


def record_operation(name: str, duration_ms: float, success: bool) -> None:
    """Count one engine call and add its duration."""
    stats = _operations.setdefault(name, {
        "invocations": 0,
        "successes": 0,
        "failures": 0,
        "total_duration_ms": 0.0,
    })
    stats["invocations"] += 1
    stats["total_duration_ms"] += duration_ms
    stats["successes" if success else "failures"] += 1


def reset_metrics() -> None:
    _operations.clear()


def get_metrics() -> dict:
    """Snapshot of all operation counters, with mean duration per operation."""
    operations = {}
    for name, stats in _operations.items():
        snapshot = dict(stats)
        snapshot["avg_duration_ms"] = round(stats["total_duration_ms"] / stats["invocations"], 3)
        operations[name] = snapshot
    return {
        "uptime_seconds": round(time.monotonic() - _start_time, 1),
        "operations": operations,
    }
