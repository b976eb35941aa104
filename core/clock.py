"""
Time and randomness sources for the session core.

Everything that needs "now" or a fresh secret takes one of these objects,
so tests can freeze time without patching the standard library.
"""

import secrets
from datetime import datetime, timezone, timedelta


class SystemClock:
    """
    Wall clock in UTC plus a cryptographically secure secret generator.
    """

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def random_secret(self, nbytes: int = 32) -> str:
        """
        Returns a URL-safe string encoding `nbytes` random bytes.

        32 bytes (256 bits) is the minimum used for refresh secrets.
        """
        return secrets.token_urlsafe(nbytes)


class FrozenClock(SystemClock):
    """
    Clock that only moves when told to.

    Usage:
        clock = FrozenClock()
        clock.advance(minutes=16)
    """

    def __init__(self, start: datetime | None = None):
        self._now = start or datetime.now(timezone.utc)
        if self._now.tzinfo is None:
            self._now = self._now.replace(tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance(self, **kwargs) -> datetime:
        self._now = self._now + timedelta(**kwargs)
        return self._now

    def set(self, moment: datetime) -> None:
        self._now = moment
