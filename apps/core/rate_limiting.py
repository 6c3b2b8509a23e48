"""
Rate limiting utilities backed by the shared cache.

Implements a sliding-window counter on top of the Django cache API so
that every process in a deployment sees the same counts (Redis through
django-redis in production). Two fixed windows are kept per identifier;
the previous window's count is weighted by how much of it still overlaps
the sliding window.

Report submission is throttled through django-ratelimit against the same
cache.
"""
import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Optional

from django.conf import settings
from django.core.cache import cache
from django_ratelimit.core import get_usage

logger = logging.getLogger(__name__)


class RateLimitExceeded(Exception):
    """Raised when rate limit is exceeded."""

    def __init__(self, message: str, retry_after: int, limit_name: Optional[str] = None):
        super().__init__(message)
        self.retry_after = retry_after
        self.limit_name = limit_name


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after: int = 0


class SlidingWindowRateLimiter:
    """
    Sliding-window rate limiter keyed by an arbitrary identifier.

    Usage:
        limiter = SlidingWindowRateLimiter('password_reset', limit=3, window_seconds=900)
        decision = limiter.hit(email.lower())
        if not decision.allowed:
            ...
    """
    KEY_PREFIX = 'ratelimit'

    def __init__(self, name: str, limit: int, window_seconds: int,
                 clock: Callable[[], float] = time.time):
        if limit < 1 or window_seconds < 1:
            raise ValueError("limit and window_seconds must be positive")
        self.name = name
        self.limit = limit
        self.window_seconds = window_seconds
        self.clock = clock

    def _key(self, identifier: str, window_index: int) -> str:
        return f"{self.KEY_PREFIX}:{self.name}:{identifier}:{window_index}"

    def _counts(self, identifier: str, now: float):
        window_index = int(now // self.window_seconds)
        values = cache.get_many([
            self._key(identifier, window_index),
            self._key(identifier, window_index - 1),
        ])
        current = values.get(self._key(identifier, window_index), 0)
        previous = values.get(self._key(identifier, window_index - 1), 0)
        return window_index, current, previous

    def _evaluate(self, identifier: str, now: float):
        window_index, current, previous = self._counts(identifier, now)
        offset = now - window_index * self.window_seconds
        overlap = 1 - offset / self.window_seconds
        estimate = previous * overlap + current
        return window_index, current, previous, offset, estimate

    def _retry_after(self, current: int, previous: int, offset: float) -> int:
        """Seconds until the weighted estimate drops below the limit."""
        if current >= self.limit:
            # Wait for the next window, then for this window's weight to decay.
            wait = (self.window_seconds - offset) + self.window_seconds * (1 - self.limit / (current + 1))
        else:
            needed_fraction = 1 - (self.limit - current) / previous
            wait = needed_fraction * self.window_seconds - offset
        return max(1, math.ceil(wait))

    def peek(self, identifier: str) -> RateLimitDecision:
        """Report the current state without counting a hit."""
        _, current, previous, offset, estimate = self._evaluate(identifier, self.clock())
        if estimate >= self.limit:
            return RateLimitDecision(False, self.limit, 0, self._retry_after(current, previous, offset))
        return RateLimitDecision(True, self.limit, self.limit - math.ceil(estimate))

    def hit(self, identifier: str) -> RateLimitDecision:
        """Count one attempt if it fits in the window."""
        now = self.clock()
        window_index, current, previous, offset, estimate = self._evaluate(identifier, now)

        if estimate >= self.limit:
            retry_after = self._retry_after(current, previous, offset)
            logger.warning(
                f"Rate limit '{self.name}' exceeded",
                extra={
                    'limit_name': self.name,
                    'limit': self.limit,
                    'window_seconds': self.window_seconds,
                    'retry_after': retry_after,
                }
            )
            return RateLimitDecision(False, self.limit, 0, retry_after)

        key = self._key(identifier, window_index)
        # Both windows must survive until the next window has fully elapsed.
        cache.add(key, 0, timeout=self.window_seconds * 2)
        try:
            cache.incr(key)
        except ValueError:
            # Key expired between add and incr.
            cache.set(key, 1, timeout=self.window_seconds * 2)

        remaining = max(0, self.limit - math.ceil(estimate + 1))
        return RateLimitDecision(True, self.limit, remaining)

    def check(self, identifier: str) -> RateLimitDecision:
        """Like ``hit`` but raises ``RateLimitExceeded`` when denied."""
        decision = self.hit(identifier)
        if not decision.allowed:
            raise RateLimitExceeded(
                f"Rate limit '{self.name}' exceeded",
                retry_after=decision.retry_after,
                limit_name=self.name,
            )
        return decision

    def reset(self, identifier: str) -> None:
        window_index = int(self.clock() // self.window_seconds)
        cache.delete_many([
            self._key(identifier, window_index),
            self._key(identifier, window_index - 1),
        ])


DEFAULT_RATE_LIMITS = {
    'report_submission': (10, 3600),
    'password_reset': (3, 15 * 60),
}


def get_rate_limiter(name: str) -> SlidingWindowRateLimiter:
    """Build the limiter configured under ``settings.RATE_LIMITS[name]``."""
    limits = {**DEFAULT_RATE_LIMITS, **getattr(settings, 'RATE_LIMITS', {})}
    if name not in limits:
        raise KeyError(f"No rate limit configured for '{name}'")
    limit, window_seconds = limits[name]
    return SlidingWindowRateLimiter(name, limit, window_seconds)


def check_password_reset_allowed(email: str) -> RateLimitDecision:
    """
    Count a password-reset request for ``email``.

    The password reset flow itself lives outside this service; it calls
    this before sending a reset link.
    """
    return get_rate_limiter('password_reset').hit(f"reset_attempt_{email.strip().lower()}")


def _submission_key(group, request):
    if request.user and request.user.is_authenticated:
        return f"user:{request.user.id}"
    from apps.rbac.models import AuditLog
    return f"ip:{AuditLog._get_client_ip(request) or 'unknown'}"


def _configured_rate(group, request):
    limits = {**DEFAULT_RATE_LIMITS, **getattr(settings, 'RATE_LIMITS', {})}
    return limits[group]


def check_report_submission_allowed(request) -> None:
    """
    Count one report submission for the requesting principal or client IP.

    Counts live in the django-ratelimit cache (``RATELIMIT_USE_CACHE``).

    Args:
        request: The DRF request making the submission.

    Raises:
        RateLimitExceeded: When the submitter is over
            ``RATE_LIMITS['report_submission']``.
    """
    usage = get_usage(
        request,
        group='report_submission',
        key=_submission_key,
        rate=_configured_rate,
        method='POST',
        increment=True,
    )
    if usage is not None and usage['should_limit']:
        logger.warning(
            "Rate limit 'report_submission' exceeded",
            extra={'limit_name': 'report_submission', 'limit': usage['limit']},
        )
        raise RateLimitExceeded(
            "Rate limit 'report_submission' exceeded",
            retry_after=max(1, usage['time_left']),
            limit_name='report_submission',
        )
