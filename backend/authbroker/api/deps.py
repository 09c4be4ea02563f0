"""Shared dependencies for API endpoints.

The protocol collaborators (BrokerConfig, RateLimiter, Notifier, clock) are
built once by ``create_app`` and stored on ``app.state``; each request gets
its own ``AuthBroker`` bound to its database session.
"""

from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from authbroker.core.database import get_db
from authbroker.core.rate_limiting import client_ip
from authbroker.services.auth_flow import AuthBroker

DbSession = Annotated[AsyncSession, Depends(get_db)]


def get_client_ip(request: Request) -> str:
    """Client IP as seen through the configured proxy policy."""
    return client_ip(request)


def get_auth_broker(request: Request, db: DbSession) -> AuthBroker:
    """Build the per-request protocol orchestrator.

    Args:
        request: HTTP request (injected by FastAPI).
        db: Database session (injected).

    Returns:
        AuthBroker wired to the application's shared collaborators.
    """
    state = request.app.state
    return AuthBroker(
        db,
        state.broker_config,
        state.rate_limiter,
        state.notifier,
        clock=state.clock,
    )


ClientIp = Annotated[str, Depends(get_client_ip)]
Broker = Annotated[AuthBroker, Depends(get_auth_broker)]
