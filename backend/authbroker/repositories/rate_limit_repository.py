"""Repository for durable rate-limit counters.

The whole read-modify-write happens in one INSERT ... ON CONFLICT DO UPDATE
statement, so the database serializes concurrent hits on the same key and
no increment is lost. The window reset is evaluated server-side against the
row's current ``reset_at``.
"""

from datetime import datetime, timedelta

from sqlalchemy import case, literal
from sqlalchemy.ext.asyncio import AsyncSession

from authbroker.core.database import dialect_insert
from authbroker.models.rate_limit import RateLimitCounter


class RateLimitRepository:
    """Stateless repository for RateLimitCounter operations."""

    @staticmethod
    async def hit(
        db: AsyncSession,
        *,
        scope: str,
        scope_id: str,
        window_seconds: int,
        now: datetime,
    ) -> tuple[int, datetime]:
        """Count one hit against a scoped fixed window.

        A missing row starts at 1. An existing row whose window has ended
        (``reset_at <= now``) restarts at 1 with a new ``reset_at``;
        otherwise its count increments.

        Args:
            db: Async database session.
            scope: Counter family ("ip", "client", "email").
            scope_id: Identifier within the scope.
            window_seconds: Window length.
            now: Current time (aware UTC).

        Returns:
            Tuple of (count, reset_at) after this hit.
        """
        next_reset = now + timedelta(seconds=window_seconds)
        next_reset_value = literal(next_reset, type_=RateLimitCounter.reset_at.type)
        window_ended = RateLimitCounter.reset_at <= now

        stmt = dialect_insert(db, RateLimitCounter).values(
            scope=scope,
            scope_id=scope_id,
            window_seconds=window_seconds,
            count=1,
            reset_at=next_reset,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[
                RateLimitCounter.scope,
                RateLimitCounter.scope_id,
                RateLimitCounter.window_seconds,
            ],
            set_={
                "count": case(
                    (window_ended, 1), else_=RateLimitCounter.count + 1
                ),
                "reset_at": case(
                    (window_ended, next_reset_value),
                    else_=RateLimitCounter.reset_at,
                ),
            },
        ).returning(RateLimitCounter.count, RateLimitCounter.reset_at)

        result = await db.execute(stmt)
        count, reset_at = result.one()
        return count, reset_at
