from datetime import datetime, timedelta, timezone
from core.clock import SystemClock, FrozenClock


def test_system_clock_is_utc_aware():
    now = SystemClock().now()

    assert now.tzinfo is not None
    assert now.utcoffset() == timedelta(0)
    assert abs(now - datetime.now(timezone.utc)) < timedelta(seconds=5)


def test_random_secret_is_urlsafe():
    secret = SystemClock().random_secret(32)

    assert len(secret) == 43
    assert all(c.isalnum() or c in "-_" for c in secret)


def test_frozen_clock_only_moves_when_told():
    start = datetime(2025, 1, 1, tzinfo=timezone.utc)
    clock = FrozenClock(start)

    assert clock.now() == start
    assert clock.now() == start

    clock.advance(minutes=5)
    assert clock.now() == start + timedelta(minutes=5)

    clock.set(start)
    assert clock.now() == start


def test_frozen_clock_assumes_utc_for_naive_start():
    clock = FrozenClock(datetime(2025, 1, 1))

    assert clock.now().tzinfo == timezone.utc
