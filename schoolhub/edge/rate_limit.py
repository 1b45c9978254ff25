import time
from dataclasses import dataclass

from limits import RateLimitItem, RateLimitItemPerMinute
from limits.storage import MemoryStorage
from limits.strategies import FixedWindowRateLimiter

from .config import settings


LOGIN_LIMIT = RateLimitItemPerMinute(settings.login_max_attempts, settings.login_window_minutes)
CHANGE_PASSWORD_LIMIT = RateLimitItemPerMinute(
    settings.change_password_max_attempts, settings.change_password_window_minutes
)


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: float

    def wait_minutes(self, now: float | None = None) -> int:
        now = time.time() if now is None else now
        return max(1, -(-int(self.reset_at - now) // 60))


class RateLimiter:
    """Fixed-window attempt counter backed by ``limits`` in-memory storage.

    Expired windows are evicted by the storage, so keys for abandoned
    e-mails do not accumulate.
    """

    def __init__(self, storage=None):
        self.storage = storage or MemoryStorage()
        self._strategy = FixedWindowRateLimiter(self.storage)

    def check(self, key: str, item: RateLimitItem) -> RateLimitResult:
        allowed = self._strategy.hit(item, key)
        reset_at, remaining = self._strategy.get_window_stats(item, key)
        return RateLimitResult(allowed=allowed, remaining=remaining, reset_at=reset_at)

    def reset(self, key: str, item: RateLimitItem) -> None:
        self._strategy.clear(item, key)

    def clear(self) -> None:
        self.storage.reset()


limiter = RateLimiter()
