"""User model - the user directory.

One row per normalized email address, created lazily on the first sign-in
attempt.
"""

import uuid

from sqlalchemy import String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from authbroker.models.base import Base, CreatedAtMixin


class User(Base, CreatedAtMixin):
    """End user identity.

    Attributes:
        id: UUID primary key (the stable user_id returned to clients).
        email: Normalized (trimmed, lowercase) email address. Unique.
        created_at: Creation timestamp (from CreatedAtMixin).
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=uuid.uuid4,
    )
    email: Mapped[str] = mapped_column(
        String(320),
        unique=True,
        nullable=False,
    )
