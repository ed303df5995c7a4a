"""
api/limiter.py -- Quota checkers for the edge rate-limiter gate.

The gate (see rate_limit_gate in api/main.py) consults a QuotaChecker for
every request under RATE_LIMIT_PATH_PREFIX. Two variants exist:

  AllowAll            -- chosen when RATE_LIMIT_STORAGE_URI is empty. The gate
                         becomes a no-op (fail open).
  SlidingWindowQuota  -- a moving-window counter from the `limits` library
                         (the engine behind slowapi) over any limits storage:
                         "memory://" for a single process, "redis://..." when
                         several workers must share counters.

build_quota_checker() picks the variant once, in the app lifespan, and the
instance lives on app.state.quota_checker for the life of the process. No
module-level limiter instance exists; tests hand the app their own checker.
"""

from __future__ import annotations

import logging

from limits import RateLimitItemPerSecond
from limits.aio.strategies import MovingWindowRateLimiter
from limits.storage import storage_from_string

from core.config import Settings

logger = logging.getLogger("crmauth.api")

LOOPBACK = "127.0.0.1"


def first_forwarded_ip(forwarded_for: str | None) -> str | None:
    """Return the first comma-separated, trimmed entry of X-Forwarded-For, or None."""
    if not forwarded_for:
        return None
    first = forwarded_for.split(",")[0].strip()
    return first or None


def client_key(forwarded_for: str | None) -> str:
    """Identity the gate counts against: first forwarded IP, else loopback."""
    return first_forwarded_ip(forwarded_for) or LOOPBACK


class QuotaChecker:
    """Decides whether one more request from a client fits in its quota."""

    #: Seconds a rejected client should wait, sent as Retry-After.
    retry_after: int = 0

    async def hit(self, key: str) -> bool:
        """Count one request for key. Return False when the quota is exceeded."""
        raise NotImplementedError


class AllowAll(QuotaChecker):
    """Quota checker used when no counter backend is configured."""

    async def hit(self, key: str) -> bool:
        return True


class SlidingWindowQuota(QuotaChecker):
    """At most `requests` hits per key in any trailing `window_seconds` interval."""

    def __init__(self, storage_uri: str, requests: int, window_seconds: int) -> None:
        if requests < 1 or window_seconds < 1:
            raise ValueError("Rate limit requests and window must both be positive.")
        # The gate runs inside the event loop, so always use the asyncio
        # flavour of the storage ("memory://" -> "async+memory://").
        if not storage_uri.startswith("async+"):
            storage_uri = f"async+{storage_uri}"
        self._storage = storage_from_string(storage_uri)
        self._strategy = MovingWindowRateLimiter(self._storage)
        self._item = RateLimitItemPerSecond(requests, window_seconds)
        self.requests = requests
        self.retry_after = window_seconds

    async def hit(self, key: str) -> bool:
        return await self._strategy.hit(self._item, key)


def build_quota_checker(settings: Settings) -> QuotaChecker:
    """Return the quota checker the configuration asks for."""
    if not settings.rate_limit_storage_uri:
        logger.info("Rate limiting disabled (RATE_LIMIT_STORAGE_URI not set)")
        return AllowAll()
    checker = SlidingWindowQuota(
        settings.rate_limit_storage_uri,
        settings.rate_limit_requests,
        settings.rate_limit_window_seconds,
    )
    logger.info(
        "Rate limiting enabled (%d requests / %ds, prefix %s)",
        settings.rate_limit_requests,
        settings.rate_limit_window_seconds,
        settings.rate_limit_path_prefix,
    )
    return checker
