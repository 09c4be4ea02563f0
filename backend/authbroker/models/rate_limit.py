"""RateLimitCounter model - durable fixed-window counters.

Keyed by (scope, scope_id, window_seconds). Written only through the
single-statement upsert in RateLimitRepository so concurrent increments
are serialized by the database.
"""

from datetime import datetime

from sqlalchemy import Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from authbroker.models.base import Base


class RateLimitCounter(Base):
    """One rate-limit window for one scoped key.

    Attributes:
        scope: Counter family ("ip", "client", "email").
        scope_id: The IP, client_id or normalized email.
        window_seconds: Window length; part of the key.
        count: Hits in the current window.
        reset_at: When the current window ends.
    """

    __tablename__ = "rate_limits"
    __table_args__ = (Index("ix_rate_limits_reset_at", "reset_at"),)

    scope: Mapped[str] = mapped_column(String(16), primary_key=True)
    scope_id: Mapped[str] = mapped_column(String(320), primary_key=True)
    window_seconds: Mapped[int] = mapped_column(Integer, primary_key=True)
    count: Mapped[int] = mapped_column(Integer, nullable=False)
    reset_at: Mapped[datetime] = mapped_column(nullable=False)
