"""Scoped rate limiting.

Two layers:

1. ``RateLimiter``: admission control for the sign-in protocol. Start and
   code redemption check a list of ``RateLimitRule`` dimensions (ip, client,
   email per minute / hour) in order and stop at the first denial. Each
   dimension is one ``RateLimitBackend.consume`` call.
2. ``limiter``: a slowapi per-IP guard for the magic-link landing route,
   configured the same way as every other slowapi limiter.

Backends share one contract: fixed windows, counters monotonic within a
window, atomic reset at the window boundary, no lost concurrent increments.

- ``DatabaseRateLimitBackend``: one upsert per hit on ``rate_limits``.
- ``CacheRateLimitBackend``: the ``limits`` fixed-window strategy over
  in-process memory or Redis (the library slowapi itself is built on).

Usage in the orchestrator:
    decision = await rate_limiter.admit(config.start_rules, identities)
    if not decision.allowed:
        raise RateLimitedError(decision.retry_after_seconds)
"""

import logging
import math
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime

from fastapi import Request, Response
from limits import RateLimitItemPerSecond
from limits.aio.storage import MemoryStorage, Storage
from limits.aio.strategies import FixedWindowRateLimiter
from limits.storage import storage_from_string
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.responses import PlainTextResponse

from authbroker.core.config import RateLimitRule, Settings, settings
from authbroker.models.base import utcnow
from authbroker.repositories.rate_limit_repository import RateLimitRepository

logger = logging.getLogger(__name__)

_LIMITS_NAMESPACE = "AUTHBROKER"


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one admission check.

    Attributes:
        allowed: Whether the request may proceed.
        retry_after_seconds: Remaining time in the denying window; 0 when
            allowed, otherwise at least 1.
    """

    allowed: bool
    retry_after_seconds: int = 0


_ALLOWED = RateLimitDecision(allowed=True)


def _denied(seconds_left: float) -> RateLimitDecision:
    return RateLimitDecision(
        allowed=False, retry_after_seconds=max(1, math.ceil(seconds_left))
    )


# =============================================================================
# Backends
# =============================================================================


class RateLimitBackend(ABC):
    """Counter store behind the rate limiter."""

    @abstractmethod
    async def consume(
        self,
        scope: str,
        scope_id: str,
        window_seconds: int,
        max_count: int,
    ) -> RateLimitDecision:
        """Count one hit and decide whether it is within the limit.

        Args:
            scope: Counter family ("ip", "client", "email").
            scope_id: Identifier within the scope.
            window_seconds: Fixed window length.
            max_count: Hits admitted per window.

        Returns:
            RateLimitDecision for this hit.
        """


class DatabaseRateLimitBackend(RateLimitBackend):
    """Durable counters in the ``rate_limits`` table.

    Each hit runs in its own short transaction so counters persist whatever
    happens to the request that triggered them.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    async def consume(
        self,
        scope: str,
        scope_id: str,
        window_seconds: int,
        max_count: int,
    ) -> RateLimitDecision:
        now = self._clock()
        async with self._session_factory() as session:
            count, reset_at = await RateLimitRepository.hit(
                session,
                scope=scope,
                scope_id=scope_id,
                window_seconds=window_seconds,
                now=now,
            )
            await session.commit()

        if count <= max_count:
            return _ALLOWED
        return _denied((reset_at - now).total_seconds())


class CacheRateLimitBackend(RateLimitBackend):
    """Fast counters in memory or Redis via the ``limits`` library."""

    def __init__(self, storage: Storage | None = None) -> None:
        self._storage = storage or MemoryStorage()
        self._strategy = FixedWindowRateLimiter(self._storage)

    async def consume(
        self,
        scope: str,
        scope_id: str,
        window_seconds: int,
        max_count: int,
    ) -> RateLimitDecision:
        item = RateLimitItemPerSecond(
            max_count, window_seconds, namespace=_LIMITS_NAMESPACE
        )
        if await self._strategy.hit(item, scope, scope_id):
            return _ALLOWED

        stats = await self._strategy.get_window_stats(item, scope, scope_id)
        return _denied(stats.reset_time - time.time())


def build_rate_limit_backend(
    source: Settings,
    session_factory: async_sessionmaker[AsyncSession],
) -> RateLimitBackend:
    """Select the backend configured by RATE_LIMIT_BACKEND.

    Args:
        source: Application settings.
        session_factory: Session factory for the database backend.

    Returns:
        Configured backend instance.
    """
    if source.resolved_rate_limit_backend == "cache":
        if source.rate_limit_storage_uri:
            storage = storage_from_string(source.rate_limit_storage_uri)
            logger.info("Rate limiting with cache storage %s", storage.__class__.__name__)
            return CacheRateLimitBackend(storage)
        logger.info("Rate limiting with in-process memory storage")
        return CacheRateLimitBackend()

    logger.info("Rate limiting with database counters")
    return DatabaseRateLimitBackend(session_factory)


# =============================================================================
# Admission control
# =============================================================================


class RateLimiter:
    """Evaluates ordered rate-limit dimensions against a backend.

    A denial is terminal for the request: later dimensions are not
    evaluated and nothing is retried.
    """

    def __init__(self, backend: RateLimitBackend, *, enabled: bool = True) -> None:
        self.backend = backend
        self.enabled = enabled

    async def admit(
        self,
        rules: Sequence[RateLimitRule],
        identities: Mapping[str, str],
    ) -> RateLimitDecision:
        """Check each rule in order, short-circuiting on the first denial.

        Args:
            rules: Dimensions to evaluate.
            identities: scope -> identifier (e.g. {"ip": "203.0.113.9"}).

        Returns:
            The first denying decision, or an allowed decision.
        """
        if not self.enabled:
            return _ALLOWED

        for rule in rules:
            decision = await self.backend.consume(
                rule.scope,
                identities[rule.scope],
                rule.window_seconds,
                rule.max_count,
            )
            if not decision.allowed:
                logger.info(
                    "Rate limit denied",
                    extra={
                        "scope": rule.scope,
                        "window_seconds": rule.window_seconds,
                        "retry_after": decision.retry_after_seconds,
                    },
                )
                return decision
        return _ALLOWED


# =============================================================================
# Per-IP route guard (slowapi)
# =============================================================================


def client_ip(request: Request) -> str:
    """Best-effort client IP for rate limiting and audit columns.

    Uses the first X-Forwarded-For hop when TRUST_FORWARDED_FOR is set
    (deployment behind a reverse proxy), else the socket peer.

    Args:
        request: The incoming request.

    Returns:
        IP address string, or "unknown" when none is available.
    """
    if settings.trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    if request.client is not None and request.client.host:
        return request.client.host
    return "unknown"


# Global limiter instance
# In-memory storage; the protocol's own scoped limits live in RateLimiter.
limiter = Limiter(
    key_func=client_ip,
    enabled=settings.rate_limit_enabled,
)


def rate_limit_exceeded_handler(
    _request: Request,
    exc: RateLimitExceeded,
) -> Response:
    """Handle slowapi rate limit errors on browser routes.

    Returns 429 as plain text with a Retry-After header.

    Args:
        request: The incoming request.
        exc: The rate limit exception.

    Returns:
        PlainTextResponse with 429 status and retry-after header.
    """
    # Parse window from exception detail (e.g., "30 per 1 minute")
    # Fallback to 60 seconds if parsing fails
    retry_after = "60"
    try:
        unit = str(exc.detail).split()[-1]
        retry_after = str(
            {"second": 1, "minute": 60, "hour": 3600, "day": 86400}[unit.rstrip("s")]
        )
    except (KeyError, AttributeError, IndexError):
        pass

    return PlainTextResponse(
        "Rate limited. Try again soon.",
        status_code=429,
        headers={"Retry-After": retry_after},
    )
