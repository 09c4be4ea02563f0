"""Repository for User operations (the user directory).

Provides get-or-create semantics keyed by normalized email.
"""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from authbroker.core.database import dialect_insert
from authbroker.models.base import utcnow
from authbroker.models.user import User


class UserRepository:
    """Stateless repository for User table operations.

    All methods are static with no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def get_by_id(db: AsyncSession, user_id: uuid.UUID) -> User | None:
        """Fetch a user by primary key.

        Args:
            db: Async database session.
            user_id: UUID primary key.

        Returns:
            User if found, None otherwise.
        """
        stmt = (
            select(User)
            .where(User.id == user_id)
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_email(db: AsyncSession, email: str) -> User | None:
        """Fetch a user by email address (case-insensitive).

        Args:
            db: Async database session.
            email: Email address to look up.

        Returns:
            User if found, None otherwise.
        """
        stmt = select(User).where(User.email == email.strip().lower())
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def create(db: AsyncSession, *, email: str) -> User:
        """Create a new user.

        Email is normalized to lowercase before storage.

        Raises:
            sqlalchemy.exc.IntegrityError: If email already exists.
        """
        user = User(email=email.strip().lower())
        db.add(user)
        await db.flush()
        await db.refresh(user)
        return user

    @staticmethod
    async def get_or_create(db: AsyncSession, email: str) -> tuple[User, bool]:
        """Return the user for an email, creating it if needed.

        The insert uses ON CONFLICT DO NOTHING, so two concurrent first
        sign-ins for the same address both end up with the same row and
        only one of them reports ``created``.

        Args:
            db: Async database session.
            email: Normalized email address.

        Returns:
            Tuple of (User, created).
        """
        existing = await UserRepository.get_by_email(db, email)
        if existing is not None:
            return existing, False

        stmt = (
            dialect_insert(db, User)
            .values(id=uuid.uuid4(), email=email, created_at=utcnow())
            .on_conflict_do_nothing(index_elements=[User.email])
            .returning(User.id)
        )
        result = await db.execute(stmt)
        inserted_id = result.scalar_one_or_none()

        user = await UserRepository.get_by_email(db, email)
        if user is None:
            msg = f"User row for {email!r} vanished during get_or_create"
            raise RuntimeError(msg)
        return user, inserted_id is not None
