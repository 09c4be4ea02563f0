"""Repository for AuthCode operations.

Codes are looked up by the full binding (client_id, redirect_uri,
code_hash), so a code minted for one client or callback is simply not
found for another. ``mark_used`` is a compare-and-set on ``used_at``.
"""

import uuid
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from authbroker.models.auth_code import AuthCode


class AuthCodeRepository:
    """Stateless repository for AuthCode table operations."""

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        client_id: str,
        user_id: uuid.UUID,
        redirect_uri: str,
        code_hash: str,
        expires_at: datetime,
    ) -> AuthCode:
        """Store a freshly minted authorization code."""
        auth_code = AuthCode(
            client_id=client_id,
            user_id=user_id,
            redirect_uri=redirect_uri,
            code_hash=code_hash,
            expires_at=expires_at,
        )
        db.add(auth_code)
        await db.flush()
        return auth_code

    @staticmethod
    async def get_by_client_redirect_and_hash(
        db: AsyncSession,
        *,
        client_id: str,
        redirect_uri: str,
        code_hash: str,
    ) -> AuthCode | None:
        """Find a code by its exact (client_id, redirect_uri, code_hash) binding."""
        stmt = (
            select(AuthCode)
            .where(
                AuthCode.client_id == client_id,
                AuthCode.redirect_uri == redirect_uri,
                AuthCode.code_hash == code_hash,
            )
            .limit(1)
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def mark_used(
        db: AsyncSession, code_id: uuid.UUID, *, now: datetime
    ) -> bool:
        """Set used_at if and only if it is still NULL.

        Returns:
            True if this call won the exchange, False otherwise.
        """
        stmt = (
            update(AuthCode)
            .where(AuthCode.id == code_id, AuthCode.used_at.is_(None))
            .values(used_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        return result.rowcount == 1
