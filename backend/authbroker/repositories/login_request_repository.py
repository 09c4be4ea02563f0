"""Repository for LoginRequest operations.

Lookups always reload rows from the database (``populate_existing``) so a
session that already saw a request never acts on stale ``used_at`` or
``attempts`` values. ``mark_used`` is a compare-and-set on ``used_at``.
"""

import uuid
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from authbroker.models.login_request import LoginRequest
from authbroker.models.user import User


class LoginRequestRepository:
    """Stateless repository for LoginRequest table operations."""

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        client_id: str,
        user_id: uuid.UUID,
        redirect_uri: str,
        state: str,
        app_return_to: str | None,
        magic_token_hash: str,
        code_hash: str | None,
        expires_at: datetime,
        ip: str,
        user_agent: str | None,
    ) -> LoginRequest:
        """Store a new pending login request.

        No uniqueness beyond the primary key: a user may hold several
        outstanding requests for the same client.

        Returns:
            Created LoginRequest with id populated.
        """
        login_request = LoginRequest(
            client_id=client_id,
            user_id=user_id,
            redirect_uri=redirect_uri,
            state=state,
            app_return_to=app_return_to,
            magic_token_hash=magic_token_hash,
            code_hash=code_hash,
            expires_at=expires_at,
            attempts=0,
            ip=ip,
            user_agent=user_agent,
        )
        db.add(login_request)
        await db.flush()
        return login_request

    @staticmethod
    async def has_recent_active(
        db: AsyncSession,
        *,
        client_id: str,
        user_id: uuid.UUID,
        since: datetime,
        now: datetime,
    ) -> bool:
        """Whether an unused, unexpired request was created after ``since``.

        Backs the resend cooldown on Start.
        """
        stmt = (
            select(LoginRequest.id)
            .where(
                LoginRequest.client_id == client_id,
                LoginRequest.user_id == user_id,
                LoginRequest.used_at.is_(None),
                LoginRequest.expires_at > now,
                LoginRequest.created_at > since,
            )
            .limit(1)
        )
        result = await db.execute(stmt)
        return result.first() is not None

    @staticmethod
    async def code_hash_is_active(
        db: AsyncSession, code_hash: str, *, now: datetime
    ) -> bool:
        """Whether an unused, unexpired request already holds ``code_hash``."""
        stmt = (
            select(LoginRequest.id)
            .where(
                LoginRequest.code_hash == code_hash,
                LoginRequest.used_at.is_(None),
                LoginRequest.expires_at > now,
            )
            .limit(1)
        )
        result = await db.execute(stmt)
        return result.first() is not None

    @staticmethod
    async def get_by_id(
        db: AsyncSession, request_id: uuid.UUID
    ) -> LoginRequest | None:
        """Fetch a request by primary key, bypassing the identity map."""
        stmt = (
            select(LoginRequest)
            .where(LoginRequest.id == request_id)
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_magic_token_hash(
        db: AsyncSession, token_hash: str
    ) -> LoginRequest | None:
        """Find the request a magic-link token was issued for."""
        stmt = (
            select(LoginRequest)
            .where(LoginRequest.magic_token_hash == token_hash)
            .limit(1)
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_latest_by_email_and_code_hash(
        db: AsyncSession, *, email: str, code_hash: str
    ) -> LoginRequest | None:
        """Find the most recent request for an email holding ``code_hash``.

        Several requests (across clients, or after cooldown) may share an
        email, so the newest one wins.
        """
        stmt = (
            select(LoginRequest)
            .join(User, User.id == LoginRequest.user_id)
            .where(User.email == email, LoginRequest.code_hash == code_hash)
            .order_by(LoginRequest.created_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return result.scalars().first()

    @staticmethod
    async def record_attempt(db: AsyncSession, request_id: uuid.UUID) -> None:
        """Unconditionally increment the attempt counter."""
        stmt = (
            update(LoginRequest)
            .where(LoginRequest.id == request_id)
            .values(attempts=LoginRequest.attempts + 1)
            .execution_options(synchronize_session=False)
        )
        await db.execute(stmt)

    @staticmethod
    async def mark_used(
        db: AsyncSession, request_id: uuid.UUID, *, now: datetime
    ) -> bool:
        """Set used_at if and only if it is still NULL.

        Returns:
            True if this call won the transition, False if another
            redemption already did.
        """
        stmt = (
            update(LoginRequest)
            .where(LoginRequest.id == request_id, LoginRequest.used_at.is_(None))
            .values(used_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        return result.rowcount == 1
