"""AuthCode model - the exchangeable authorization code.

Minted after a successful login redemption and bound to the login's
(client_id, user_id, redirect_uri). Single use, short lived.

Lifecycle:
    ISSUED --exchange--> USED
    ISSUED --expires_at <= now--> EXPIRED
"""

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from authbroker.models.base import Base, CreatedAtMixin


class AuthCode(Base, CreatedAtMixin):
    """Authorization code awaiting exchange.

    Attributes:
        id: UUID primary key.
        client_id: FK to clients; must match at exchange.
        user_id: FK to users; the identity returned by exchange.
        redirect_uri: Copied from the login request; must match at exchange.
        code_hash: Digest of the plain code.
        expires_at: End of the code's lifetime (exclusive).
        used_at: Set exactly once by the winning exchange.
        created_at: Creation timestamp (from CreatedAtMixin).
    """

    __tablename__ = "auth_codes"
    __table_args__ = (
        Index(
            "ix_auth_codes_client_redirect_hash",
            "client_id",
            "redirect_uri",
            "code_hash",
            unique=True,
        ),
        Index("ix_auth_codes_expires_at", "expires_at"),
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
    code_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    used_at: Mapped[datetime | None] = mapped_column(nullable=True, default=None)

    def is_expired(self, now: datetime) -> bool:
        """A code whose expires_at equals ``now`` is already expired."""
        return self.expires_at <= now
