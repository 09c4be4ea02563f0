"""Repository for Client operations (the client registry).

The sign-in protocol only reads clients. ``create`` exists for seeding and
tests; managing clients is outside this service.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from authbroker.core.credentials import hash_client_secret
from authbroker.models.client import Client


class ClientRepository:
    """Stateless repository for Client table operations."""

    @staticmethod
    async def get(db: AsyncSession, client_id: str) -> Client | None:
        """Fetch a client by id (enabled or not)."""
        return await db.get(Client, client_id)

    @staticmethod
    async def get_enabled(db: AsyncSession, client_id: str) -> Client | None:
        """Fetch a client by id, treating disabled clients as absent."""
        client = await db.get(Client, client_id)
        if client is None or not client.is_enabled:
            return None
        return client

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        client_id: str,
        client_secret: str,
        redirect_uris: list[str],
        allowed_origins: list[str] | None = None,
        is_enabled: bool = True,
        app_name: str | None = None,
        email_subject: str | None = None,
        email_button_color: str | None = None,
    ) -> Client:
        """Register a client, storing a bcrypt hash of its secret.

        Raises:
            sqlalchemy.exc.IntegrityError: If client_id already exists.
        """
        client = Client(
            client_id=client_id,
            client_secret_hash=hash_client_secret(client_secret),
            redirect_uris=list(redirect_uris),
            allowed_origins=list(allowed_origins or []),
            is_enabled=is_enabled,
            app_name=app_name,
            email_subject=email_subject,
            email_button_color=email_button_color,
        )
        db.add(client)
        await db.flush()
        return client
