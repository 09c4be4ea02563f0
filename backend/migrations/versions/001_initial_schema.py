"""Initial schema: users, clients, login_requests, auth_codes, rate_limits.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19

Secrets are stored only as SHA-256 base64url digests (43 chars); client
secrets as bcrypt hashes.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision: str = "001_initial_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )


def upgrade() -> None:
    # =========================================================================
    # Users
    # =========================================================================
    op.create_table(
        "users",
        sa.Column(
            "id",
            UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            primary_key=True,
        ),
        sa.Column("email", sa.String(320), unique=True, nullable=False),
        _created_at(),
    )

    # =========================================================================
    # Clients
    # =========================================================================
    op.create_table(
        "clients",
        sa.Column("client_id", sa.String(128), primary_key=True),
        sa.Column("client_secret_hash", sa.String(255), nullable=False),
        sa.Column(
            "redirect_uris",
            JSONB(),
            server_default=sa.text("'[]'::jsonb"),
            nullable=False,
        ),
        sa.Column(
            "allowed_origins",
            JSONB(),
            server_default=sa.text("'[]'::jsonb"),
            nullable=False,
        ),
        sa.Column(
            "is_enabled",
            sa.Boolean(),
            server_default=sa.text("true"),
            nullable=False,
        ),
        sa.Column("app_name", sa.String(255), nullable=True),
        sa.Column("email_subject", sa.Text(), nullable=True),
        sa.Column("email_button_color", sa.String(32), nullable=True),
        _created_at(),
    )

    # =========================================================================
    # Login requests
    # =========================================================================
    op.create_table(
        "login_requests",
        sa.Column(
            "id",
            UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            primary_key=True,
        ),
        sa.Column(
            "client_id",
            sa.String(128),
            sa.ForeignKey("clients.client_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "user_id",
            UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("redirect_uri", sa.Text(), nullable=False),
        sa.Column("state", sa.Text(), nullable=False),
        sa.Column("app_return_to", sa.Text(), nullable=True),
        sa.Column("magic_token_hash", sa.String(64), nullable=False),
        sa.Column("code_hash", sa.String(64), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "attempts",
            sa.Integer(),
            server_default=sa.text("0"),
            nullable=False,
        ),
        sa.Column("ip", sa.String(64), nullable=False),
        sa.Column("user_agent", sa.Text(), nullable=True),
        _created_at(),
    )
    op.create_index(
        "ix_login_requests_client_user_created",
        "login_requests",
        ["client_id", "user_id", "created_at"],
    )
    op.create_index(
        "ix_login_requests_magic_token_hash",
        "login_requests",
        ["magic_token_hash"],
        unique=True,
    )
    op.create_index("ix_login_requests_code_hash", "login_requests", ["code_hash"])
    op.create_index("ix_login_requests_expires_at", "login_requests", ["expires_at"])

    # =========================================================================
    # Auth codes
    # =========================================================================
    op.create_table(
        "auth_codes",
        sa.Column(
            "id",
            UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            primary_key=True,
        ),
        sa.Column(
            "client_id",
            sa.String(128),
            sa.ForeignKey("clients.client_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "user_id",
            UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("redirect_uri", sa.Text(), nullable=False),
        sa.Column("code_hash", sa.String(64), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
    )
    op.create_index(
        "ix_auth_codes_client_redirect_hash",
        "auth_codes",
        ["client_id", "redirect_uri", "code_hash"],
        unique=True,
    )
    op.create_index("ix_auth_codes_expires_at", "auth_codes", ["expires_at"])

    # =========================================================================
    # Rate limit counters
    # =========================================================================
    op.create_table(
        "rate_limits",
        sa.Column("scope", sa.String(16), nullable=False),
        sa.Column("scope_id", sa.String(320), nullable=False),
        sa.Column("window_seconds", sa.Integer(), nullable=False),
        sa.Column("count", sa.Integer(), nullable=False),
        sa.Column("reset_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint(
            "scope", "scope_id", "window_seconds", name="pk_rate_limits"
        ),
    )
    op.create_index("ix_rate_limits_reset_at", "rate_limits", ["reset_at"])


def downgrade() -> None:
    # Reverse order of creation
    op.drop_index("ix_rate_limits_reset_at", table_name="rate_limits")
    op.drop_table("rate_limits")

    op.drop_index("ix_auth_codes_expires_at", table_name="auth_codes")
    op.drop_index("ix_auth_codes_client_redirect_hash", table_name="auth_codes")
    op.drop_table("auth_codes")

    op.drop_index("ix_login_requests_expires_at", table_name="login_requests")
    op.drop_index("ix_login_requests_code_hash", table_name="login_requests")
    op.drop_index("ix_login_requests_magic_token_hash", table_name="login_requests")
    op.drop_index("ix_login_requests_client_user_created", table_name="login_requests")
    op.drop_table("login_requests")

    op.drop_table("clients")
    op.drop_table("users")
