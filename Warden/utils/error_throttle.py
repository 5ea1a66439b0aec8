# -*- coding: utf-8 -*-

import time
from dataclasses import dataclass


@dataclass
class _Bucket:
    last_sent: float
    repeats: int = 0


class ErrorThrottle:
    """Rate limit for the operator reports sent by ``notify_error``.

    Reports are bucketed by the failing area, the exception type and, for platform failures, the
    ``code`` the platform returned. A burst of failed kicks for one missing permission therefore
    yields a single report, while a different error code in the same area still goes out.

    The first report of a bucket is sent; repeats inside ``window`` seconds are only counted and the
    count rides along with the next report that is let through.
    """

    WINDOW = 900

    def __init__(self, window: float | None = None):
        self.window = self.WINDOW if window is None else window
        self._buckets: dict[tuple[str, str, int | None], _Bucket] = {}

    @staticmethod
    def key_for(area: str, error: Exception) -> tuple[str, str, int | None]:
        return area, type(error).__name__, getattr(error, "code", None)

    def admit(self, area: str, error: Exception) -> int | None:
        """Return None when the report is throttled, otherwise the number of repeats it stands for."""
        now = time.monotonic()
        key = self.key_for(area, error)
        bucket = self._buckets.get(key)
        if bucket is not None and now - bucket.last_sent < self.window:
            bucket.repeats += 1
            return None

        repeats = bucket.repeats if bucket is not None else 0
        self._buckets[key] = _Bucket(now)
        return repeats

    def pending_repeats(self, area: str, error: Exception) -> int:
        bucket = self._buckets.get(self.key_for(area, error))
        return bucket.repeats if bucket is not None else 0
