from datetime import timedelta

import pytest

from src.tradesim.core.progress import days_elapsed, progress

from conftest import T0


def test_progress_midway():
    p = progress(T0, timedelta(minutes=10), T0 + timedelta(minutes=4))
    assert p.elapsed_seconds == 240
    assert p.remaining_seconds == 360
    assert p.percent == pytest.approx(40.0)
    assert not p.has_arrived


def test_progress_is_monotonic_and_clamped():
    duration = timedelta(seconds=97)
    last = -1.0
    for offset in range(-20, 150, 3):
        p = progress(T0, duration, T0 + timedelta(seconds=offset))
        assert 0.0 <= p.percent <= 100.0
        assert p.percent >= last
        assert p.has_arrived == (p.remaining <= timedelta(0))
        last = p.percent


def test_progress_before_start_is_zero():
    p = progress(T0, timedelta(hours=1), T0 - timedelta(minutes=5))
    assert p.percent == 0.0
    assert p.elapsed == timedelta(0)
    assert p.remaining == timedelta(hours=1)


def test_progress_after_arrival_stays_at_100():
    p = progress(T0, timedelta(hours=1), T0 + timedelta(hours=5))
    assert p.percent == 100.0
    assert p.remaining == timedelta(0)
    assert p.has_arrived


def test_progress_zero_duration_has_arrived():
    p = progress(T0, timedelta(0), T0)
    assert p.has_arrived
    assert p.percent == 100.0


def test_progress_is_idempotent():
    now = T0 + timedelta(seconds=30)
    assert progress(T0, timedelta(seconds=60), now) == progress(T0, timedelta(seconds=60), now)


def test_progress_rejects_negative_duration():
    with pytest.raises(ValueError):
        progress(T0, timedelta(seconds=-1), T0)


def test_days_elapsed_counts_whole_boundaries():
    assert days_elapsed(T0, T0, 86400) == 0
    assert days_elapsed(T0, T0 + timedelta(hours=23, minutes=59), 86400) == 0
    assert days_elapsed(T0, T0 + timedelta(days=1), 86400) == 1
    assert days_elapsed(T0, T0 + timedelta(days=3, hours=5), 86400) == 3
    assert days_elapsed(T0, T0 - timedelta(days=2), 86400) == 0
