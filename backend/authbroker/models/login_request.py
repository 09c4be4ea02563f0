"""LoginRequest model - one outstanding sign-in attempt.

Created by Start, redeemed once by either the magic link or the 6-digit
code. Stores only digests of both secrets.

Lifecycle (EXPIRED and LOCKED are derived, never stored):
    PENDING --redeem--> USED
    PENDING --expires_at <= now--> EXPIRED
    PENDING --attempts >= max--> LOCKED
"""

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Index, Integer, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from authbroker.models.base import Base, CreatedAtMixin


class LoginRequest(Base, CreatedAtMixin):
    """Pending passwordless login.

    Attributes:
        id: UUID primary key.
        client_id: FK to clients.
        user_id: FK to users.
        redirect_uri: Callback copied from Start; immutable.
        state: Opaque CSRF value from the client app, passed through.
        app_return_to: Optional opaque passthrough.
        magic_token_hash: Digest of the emailed link token. Unique.
        code_hash: Digest of the normalized 6-digit code.
        expires_at: End of the request's lifetime (exclusive).
        used_at: Set exactly once by the winning redemption.
        attempts: Redemption attempts, incremented on every try.
        ip: Requesting client IP.
        user_agent: Requesting user agent.
        created_at: Creation timestamp (from CreatedAtMixin).
    """

    __tablename__ = "login_requests"
    __table_args__ = (
        Index(
            "ix_login_requests_client_user_created",
            "client_id",
            "user_id",
            "created_at",
        ),
        Index("ix_login_requests_magic_token_hash", "magic_token_hash", unique=True),
        Index("ix_login_requests_code_hash", "code_hash"),
        Index("ix_login_requests_expires_at", "expires_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=uuid.uuid4,
    )
    client_id: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("clients.client_id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    redirect_uri: Mapped[str] = mapped_column(Text(), nullable=False)
    state: Mapped[str] = mapped_column(Text(), nullable=False)
    app_return_to: Mapped[str | None] = mapped_column(Text(), nullable=True)
    magic_token_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    code_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    used_at: Mapped[datetime | None] = mapped_column(nullable=True, default=None)
    attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
    )
    ip: Mapped[str] = mapped_column(String(64), nullable=False)
    user_agent: Mapped[str | None] = mapped_column(Text(), nullable=True)

    def is_expired(self, now: datetime) -> bool:
        """A request whose expires_at equals ``now`` is already expired."""
        return self.expires_at <= now
