"""
Run metrics: counters, batch latencies and the per-batch throughput line.
"""
import time
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Dict, Optional


# Counter names shared by the pipeline stages
RECORDS_PARSED = "records_parsed"
RECORDS_FAILED = "records_failed"
OPERATIONS_SKIPPED = "operations_skipped"
BATCHES_EXECUTED = "batches_executed"
BATCHES_CONFLICTED = "batches_conflicted"
BATCHES_FAILED = "batches_failed"
RATE_LIMIT_RETRIES = "rate_limit_retries"
RECORDS_SUBMITTED = "records_submitted"

BATCH_TIMER = "batch_execute"


@dataclass
class TimerStats:
    """Latency of one kind of store call."""
    total: float = 0.0
    count: int = 0
    max: float = 0.0

    def add(self, seconds: float):
        self.total += seconds
        self.count += 1
        self.max = max(self.max, seconds)

    @property
    def average(self) -> float:
        return self.total / self.count if self.count else 0.0


class Stopwatch:
    """
    Measures one operation.

    Kept separate from the collector so concurrent batches each own their
    own start time.
    """

    def __init__(self):
        self._start: Optional[float] = None
        self.elapsed: float = 0.0

    def start(self) -> "Stopwatch":
        self._start = time.perf_counter()
        return self

    def stop(self) -> float:
        """Stop timing and return elapsed seconds."""
        if self._start is not None:
            self.elapsed = time.perf_counter() - self._start
            self._start = None
        return self.elapsed

    @property
    def elapsed_ms(self) -> int:
        return int(round(self.elapsed * 1000))


def format_batch_line(elapsed_ms: int, batch_size: int, now: Optional[datetime] = None) -> str:
    """
    Format the per-batch throughput line.

    Args:
        elapsed_ms: Wall time of the store call in milliseconds
        batch_size: Number of operations in the batch
        now: Timestamp to print (defaults to current UTC time)

    Returns:
        "<ISO-8601 UTC timestamp>, <elapsed ms>, <batch size>"
    """
    now = now or datetime.now(timezone.utc)
    return f"{now:%Y-%m-%dT%H:%M:%SZ}, {elapsed_ms}, {batch_size}"


class MetricsCollector:
    """
    Thread-safe counters and timers for one run.

    Rates are measured against the collector's lifetime, so they read as
    "per second of run time".
    """

    def __init__(self):
        self._counts: Counter = Counter()
        self._timers: Dict[str, TimerStats] = {}
        self._lock = Lock()
        self._started = time.monotonic()

    def record_duration(self, name: str, seconds: float):
        with self._lock:
            self._timers.setdefault(name, TimerStats()).add(seconds)

    def record_count(self, name: str, amount: int = 1):
        with self._lock:
            self._counts[name] += amount

    def get_count(self, name: str) -> int:
        with self._lock:
            return self._counts.get(name, 0)

    def get_rate(self, name: str) -> float:
        """Items per second of run time."""
        elapsed = self.elapsed_time()
        return self.get_count(name) / elapsed if elapsed > 0 else 0.0

    def get_timer_stats(self, name: str) -> Dict[str, float]:
        with self._lock:
            stats = self._timers.get(name, TimerStats())
            return {
                "total": stats.total,
                "count": stats.count,
                "average": stats.average,
                "max": stats.max,
            }

    def elapsed_time(self) -> float:
        return time.monotonic() - self._started

    def format_summary(self) -> str:
        """Multi-line report printed by the CLI after a run."""
        elapsed = self.elapsed_time()
        with self._lock:
            counts = sorted(self._counts.items())
            timers = sorted(self._timers.items())

        rule = "-" * 60
        lines = ["", rule, f"Run time: {self._format_duration(elapsed)}"]

        for name, count in counts:
            rate = count / elapsed if elapsed > 0 else 0.0
            lines.append(f"  {name:<22} {count:>10,}  ({rate:.1f}/s)")

        for name, stats in timers:
            lines.append(
                f"  {name:<22} {stats.count:>10,} calls, "
                f"avg {stats.average * 1000:.0f} ms, max {stats.max * 1000:.0f} ms"
            )

        lines.append(rule)
        return "\n".join(lines)

    @staticmethod
    def _format_duration(seconds: float) -> str:
        for limit, divisor, unit in ((60, 1, "s"), (3600, 60, "m")):
            if seconds < limit:
                return f"{seconds / divisor:.1f}{unit}"
        return f"{seconds / 3600:.1f}h"
