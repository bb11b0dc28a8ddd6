from dataclasses import dataclass
from datetime import datetime, timedelta


@dataclass(frozen=True)
class Progress:
    elapsed: timedelta
    remaining: timedelta
    percent: float
    has_arrived: bool

    @property
    def elapsed_seconds(self) -> int:
        return int(self.elapsed.total_seconds())

    @property
    def remaining_seconds(self) -> int:
        return int(self.remaining.total_seconds())


def progress(start: datetime, duration: timedelta, now: datetime) -> Progress:
    """
    Converts a start time, a fixed duration and the current time into travel progress.

    Pure: the same inputs always give the same answer, and percent never
    decreases as `now` advances. A zero duration counts as already arrived.
    """
    if duration < timedelta(0):
        raise ValueError("Duration must be non-negative.")

    elapsed = max(timedelta(0), min(now - start, duration))
    remaining = duration - elapsed

    if duration == timedelta(0):
        percent = 100.0
    else:
        percent = elapsed / duration * 100.0
    percent = max(0.0, min(100.0, percent))

    return Progress(
        elapsed=elapsed,
        remaining=remaining,
        percent=percent,
        has_arrived=remaining <= timedelta(0),
    )


def days_elapsed(start: datetime, now: datetime, day_length_seconds: int) -> int:
    """Number of whole day boundaries crossed between start and now."""
    if now <= start:
        return 0
    return int((now - start).total_seconds() // day_length_seconds)
