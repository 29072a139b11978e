"""Counters for one write run.

Workers never touch ``Statistics`` directly. Each keeps a private ``Tally``
and hands it back when it finishes; the engine folds the tallies in on its
own task, so no lock is needed.
"""

import math
import time
from dataclasses import dataclass, field


@dataclass
class Tally:
    """Local counts kept by a single worker."""

    total_bytes: int = 0
    success_count: int = 0
    failure_count: int = 0

    def record_success(self, nbytes: int) -> None:
        self.total_bytes += nbytes
        self.success_count += 1

    def record_failure(self) -> None:
        self.failure_count += 1

    @property
    def attempts(self) -> int:
        return self.success_count + self.failure_count


@dataclass
class Statistics:
    """Aggregate counts and throughput for a whole run.

    ``start_time`` is captured on construction and never reset. Throughput
    is derived once, at the end of a run, from whole elapsed seconds.
    """

    total_bytes: int = 0
    success_count: int = 0
    failure_count: int = 0
    throughput: float = math.nan
    start_time: float = field(default_factory=time.monotonic)

    def merge(self, tally: Tally) -> None:
        """Fold a worker's local counts into the run totals."""
        self.total_bytes += tally.total_bytes
        self.success_count += tally.success_count
        self.failure_count += tally.failure_count

    def successful_requests(self) -> int:
        return self.success_count

    def request_count(self) -> int:
        return self.success_count + self.failure_count

    def success_percentage(self) -> float:
        attempts = self.request_count()
        if attempts == 0:
            return math.nan
        return self.success_count / attempts * 100.0

    def elapsed(self) -> int:
        """Milliseconds since the run started."""
        return int((time.monotonic() - self.start_time) * 1000)

    def elapsed_seconds(self) -> int:
        """Whole seconds since the run started; sub-second precision is dropped."""
        return int(time.monotonic() - self.start_time)

    def record_throughput(self) -> float:
        """Compute and store bytes per second over the whole run.

        Elapsed time is truncated to whole seconds, so a run shorter than one
        second divides by zero: the result is ``inf`` when bytes were written
        and ``nan`` when none were.
        """
        seconds = self.elapsed_seconds()
        if seconds:
            self.throughput = self.total_bytes / seconds
        elif self.total_bytes:
            self.throughput = math.inf
        else:
            self.throughput = math.nan
        return self.throughput

    def summary(self) -> dict:
        return {
            "bytes_written": self.total_bytes,
            "throughput_bps": self.throughput,
            "successful_requests": self.success_count,
            "failed_requests": self.failure_count,
            "success_percentage": self.success_percentage(),
            "elapsed_ms": self.elapsed(),
        }
