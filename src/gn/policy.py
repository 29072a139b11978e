"""Write-scheduling policies.

A policy is one of five frozen dataclasses. Dispatchers match on the
``WritePolicy`` union and end with ``assert_never`` so a type checker flags
any policy that is added without a matching branch.
"""

from dataclasses import asdict, dataclass
from typing import Union


@dataclass(frozen=True)
class Count:
    """Write exactly ``count`` times per resolved address."""

    count: int


@dataclass(frozen=True)
class Duration:
    """Write continuously for ``duration`` seconds."""

    duration: float


@dataclass(frozen=True)
class CountOrDuration:
    """Write ``count`` times or for ``duration`` seconds, whichever comes first."""

    count: int
    duration: float


@dataclass(frozen=True)
class ConcurrentCount:
    """Split ``count`` writes across ``concurrency`` workers.

    Each worker writes ``count // concurrency`` times; the remainder is dropped.
    """

    concurrency: int
    count: int

    @property
    def per_worker(self) -> int:
        return self.count // self.concurrency


@dataclass(frozen=True)
class ConcurrentDuration:
    """Run ``concurrency`` workers, each writing for ``duration`` seconds."""

    concurrency: int
    duration: float


WritePolicy = Union[Count, Duration, CountOrDuration, ConcurrentCount, ConcurrentDuration]


def from_flags(
    count: int,
    duration: float | None = None,
    concurrency: int | None = None,
) -> WritePolicy:
    """Pick a policy from the user-facing count/duration/concurrency flags.

    Concurrency always wins over a plain count or duration, and duration with
    concurrency ignores the count entirely.
    """
    match (duration, concurrency):
        case (None, None):
            return Count(count)
        case (d, None) if count > 1:
            return CountOrDuration(count, d)
        case (d, None):
            return Duration(d)
        case (None, c):
            return ConcurrentCount(c, count)
        case (d, c):
            return ConcurrentDuration(c, d)


def describe(policy: WritePolicy) -> dict:
    """Serializable form of a policy: its kind plus its fields."""
    return {"kind": type(policy).__name__, **asdict(policy)}
