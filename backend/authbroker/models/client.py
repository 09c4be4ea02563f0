"""Client model - registered third-party applications.

Read-only to the sign-in protocol: it resolves a client by id and checks
the redirect and origin allowlists. Secrets are bcrypt hashes.
"""

from sqlalchemy import JSON, Boolean, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from authbroker.models.base import Base, CreatedAtMixin


class Client(Base, CreatedAtMixin):
    """Registered client application.

    Attributes:
        client_id: Public identifier, primary key.
        client_secret_hash: bcrypt hash of the client secret.
        redirect_uris: Exact-match callback allowlist.
        allowed_origins: Exact-match CORS origin allowlist for Start.
        is_enabled: Disabled clients are treated as unknown.
        app_name: Display name used in emails.
        email_subject: Optional subject line override.
        email_button_color: Optional branding color.
        created_at: Creation timestamp (from CreatedAtMixin).
    """

    __tablename__ = "clients"

    client_id: Mapped[str] = mapped_column(
        String(128),
        primary_key=True,
    )
    client_secret_hash: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    redirect_uris: Mapped[list[str]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )
    allowed_origins: Mapped[list[str]] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )
    is_enabled: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        server_default=text("true"),
        default=True,
    )
    app_name: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    email_subject: Mapped[str | None] = mapped_column(
        Text(),
        nullable=True,
    )
    email_button_color: Mapped[str | None] = mapped_column(
        String(32),
        nullable=True,
    )

    def redirect_uri_allowed(self, redirect_uri: str) -> bool:
        """Exact string match against the redirect allowlist."""
        return redirect_uri in (self.redirect_uris or [])

    def origin_allowed(self, origin: str | None) -> bool:
        """Exact string match against the origin allowlist."""
        if not origin:
            return False
        return origin in (self.allowed_origins or [])
