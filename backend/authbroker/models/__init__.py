"""SQLAlchemy ORM models for the authentication broker.

All models are exported from this module for convenient imports:
    from authbroker.models import User, Client, LoginRequest, ...

Models are organized by domain:
- user.py: User (user directory)
- client.py: Client (client registry)
- login_request.py: LoginRequest (pending sign-in)
- auth_code.py: AuthCode (exchangeable authorization code)
- rate_limit.py: RateLimitCounter (durable rate-limit windows)
"""

from authbroker.models.auth_code import AuthCode
from authbroker.models.base import Base, CreatedAtMixin, UTCDateTime, utcnow
from authbroker.models.client import Client
from authbroker.models.login_request import LoginRequest
from authbroker.models.rate_limit import RateLimitCounter
from authbroker.models.user import User

__all__ = [
    # Base classes
    "Base",
    "CreatedAtMixin",
    "UTCDateTime",
    "utcnow",
    # Registry and directory
    "Client",
    "User",
    # Protocol state
    "LoginRequest",
    "AuthCode",
    "RateLimitCounter",
]
