"""Sign-in protocol orchestration.

Ties the rate limiter, credential issuer and the login-request / auth-code
stores together into the four protocol operations:

1. start: issue a magic link and 6-digit code for (client, email)
2. redeem_link: trade the emailed token for an authorization code
3. redeem_code: trade (email, 6-digit code) for an authorization code
4. exchange: trade the authorization code for the user's identity

State machines (terminal states reject every later redemption):
    LoginRequest: PENDING -> USED | EXPIRED | LOCKED
    AuthCode:     ISSUED  -> USED | EXPIRED

Transactions: the attempt counter is committed before a redemption is
judged, so rejected attempts still count. The login request is committed
before the email goes out, so a failed delivery never loses it.
"""

import asyncio
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal
from urllib.parse import quote, urlencode

import httpx
import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from authbroker.core.config import BrokerConfig
from authbroker.core.credentials import (
    hash_login_code,
    hash_secret,
    issue_login_code,
    issue_token,
    normalize_email,
    normalize_login_code,
    redact_email,
    verify_client_secret,
)
from authbroker.core.email import (
    ClientBranding,
    EmailDeliveryError,
    LoginEmail,
    Notifier,
)
from authbroker.core.errors import (
    Channel,
    CodeExpiredError,
    CodeUsedError,
    InvalidClientError,
    InvalidClientSecretError,
    InvalidCodeError,
    InvalidRedirectUriError,
    LoginRejectedError,
    RateLimitedError,
    RejectionReason,
    UserMissingError,
    ValidationError,
)
from authbroker.core.rate_limiting import RateLimiter
from authbroker.models.base import utcnow
from authbroker.models.client import Client
from authbroker.models.login_request import LoginRequest
from authbroker.repositories.auth_code_repository import AuthCodeRepository
from authbroker.repositories.client_repository import ClientRepository
from authbroker.repositories.login_request_repository import LoginRequestRepository
from authbroker.repositories.user_repository import UserRepository

logger = structlog.get_logger()

_COOLDOWN_MSG = "A sign-in link was recently sent. Please check your inbox."
_SENT_MSG = "We sent you an email with a magic link and a 6-digit code."
_CREATED_MSG = (
    "Created account and sent you an email with a magic link and a 6-digit code."
)

# Column width of stored emails and rate-limit keys.
_MAX_EMAIL_LENGTH = 320


# =============================================================================
# Commands and results
# =============================================================================


@dataclass(frozen=True)
class StartCommand:
    """Input of the start operation.

    Attributes:
        client_id: Registered client identifier.
        email: Raw email as typed by the user.
        redirect_uri: Callback the auth code is delivered to.
        state: Opaque CSRF value, passed through unchanged.
        app_return_to: Optional opaque passthrough.
        app_name: Optional display name for the email.
        origin: Browser Origin header, for the CORS allowlist.
        ip: Requesting client IP.
        user_agent: Requesting user agent.
    """

    client_id: str
    email: str
    redirect_uri: str
    state: str
    app_return_to: str | None = None
    app_name: str | None = None
    origin: str | None = None
    ip: str = "unknown"
    user_agent: str | None = None


@dataclass(frozen=True)
class StartResult:
    """Outcome of start.

    Attributes:
        status: "ok" when a credential was issued, "cooldown" otherwise.
        user_created: Whether the user was created by this call.
        message: Text for the client app to show.
        cors_headers: Headers to echo for an allowlisted Origin.
    """

    status: Literal["ok", "cooldown"]
    user_created: bool
    message: str
    cors_headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class RedeemResult:
    """Successful redemption: where to send the user agent."""

    redirect_url: str
    client_id: str
    user_id: uuid.UUID


@dataclass(frozen=True)
class ExchangeCommand:
    """Input of the token exchange."""

    client_id: str
    client_secret: str
    code: str
    redirect_uri: str


@dataclass(frozen=True)
class Identity:
    """Verified identity returned by the token exchange.

    Attributes:
        user_id: Stable user identifier.
        email: Normalized email address.
        issued_at: Exchange time.
        expires_in: Auth code lifetime in seconds.
    """

    user_id: uuid.UUID
    email: str
    issued_at: datetime
    expires_in: int


def build_redirect_url(redirect_uri: str, *, code: str, state: str) -> str:
    """Append ``code`` and ``state`` to a registered redirect URI.

    Uses ``&`` when the URI already carries a query string.
    """
    separator = "&" if "?" in redirect_uri else "?"
    params = urlencode({"code": code, "state": state}, quote_via=quote)
    return f"{redirect_uri}{separator}{params}"


# =============================================================================
# Orchestrator
# =============================================================================


class AuthBroker:
    """Runs the sign-in protocol for one request.

    Args:
        db: Request-scoped database session.
        config: Immutable protocol configuration.
        rate_limiter: Scoped admission control.
        notifier: Email delivery channel.
        clock: Source of "now" (aware UTC).
    """

    def __init__(
        self,
        db: AsyncSession,
        config: BrokerConfig,
        rate_limiter: RateLimiter,
        notifier: Notifier,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._db = db
        self._config = config
        self._rate_limiter = rate_limiter
        self._notifier = notifier
        self._clock = clock

    def _log_email(self, email: str) -> str:
        return redact_email(email) if self._config.redact_pii else email

    async def _resolve_client(self, client_id: str, redirect_uri: str) -> Client:
        client = await ClientRepository.get_enabled(self._db, client_id)
        if client is None:
            raise InvalidClientError()
        if not client.redirect_uri_allowed(redirect_uri):
            raise InvalidRedirectUriError()
        return client

    # -------------------------------------------------------------------------
    # Start
    # -------------------------------------------------------------------------

    async def start(self, command: StartCommand) -> StartResult:
        """Issue a magic link and 6-digit code and email them.

        Raises:
            InvalidClientError: Unknown or disabled client.
            InvalidRedirectUriError: redirect_uri not allowlisted.
            ValidationError: Email is blank after normalization.
            RateLimitedError: A rate-limit dimension denied the request.
        """
        try:
            client = await self._resolve_client(
                command.client_id, command.redirect_uri
            )
        except (InvalidClientError, InvalidRedirectUriError) as exc:
            logger.info(
                "auth_start_rejected",
                client_id=command.client_id,
                error=exc.code.value,
            )
            raise

        cors_headers: dict[str, str] = {}
        if client.origin_allowed(command.origin):
            cors_headers = {
                "Access-Control-Allow-Origin": command.origin,
                "Vary": "Origin",
            }

        email = normalize_email(command.email)
        if "@" not in email:
            raise ValidationError("A valid email address is required")

        decision = await self._rate_limiter.admit(
            self._config.start_rules,
            {"ip": command.ip, "client": client.client_id, "email": email},
        )
        if not decision.allowed:
            logger.info(
                "auth_start_rate_limited",
                client_id=client.client_id,
                email=self._log_email(email),
                retry_after=decision.retry_after_seconds,
            )
            exc = RateLimitedError(decision.retry_after_seconds)
            exc.headers.update(cors_headers)
            raise exc

        user, created = await UserRepository.get_or_create(self._db, email)

        now = self._clock()
        if self._config.resend_cooldown.total_seconds() > 0:
            recently_sent = await LoginRequestRepository.has_recent_active(
                self._db,
                client_id=client.client_id,
                user_id=user.id,
                since=now - self._config.resend_cooldown,
                now=now,
            )
            if recently_sent:
                await self._db.commit()
                logger.info(
                    "auth_start_cooldown",
                    client_id=client.client_id,
                    email=self._log_email(email),
                )
                return StartResult(
                    status="cooldown",
                    user_created=created,
                    message=_COOLDOWN_MSG,
                    cors_headers=cors_headers,
                )

        magic_token, magic_token_hash = issue_token()

        async def code_is_active(code_hash: str) -> bool:
            return await LoginRequestRepository.code_hash_is_active(
                self._db, code_hash, now=now
            )

        login_code, login_code_hash = await issue_login_code(
            code_is_active, attempts=self._config.login_code_attempts
        )

        await LoginRequestRepository.create(
            self._db,
            client_id=client.client_id,
            user_id=user.id,
            redirect_uri=command.redirect_uri,
            state=command.state,
            app_return_to=command.app_return_to,
            magic_token_hash=magic_token_hash,
            code_hash=login_code_hash,
            expires_at=now + self._config.token_ttl,
            ip=command.ip,
            user_agent=command.user_agent,
        )
        await self._db.commit()

        await self._notify(
            LoginEmail(
                to_email=email,
                magic_link_url=self._magic_link_url(magic_token),
                code=login_code,
                code_entry_url=self._code_entry_url(email, login_code),
                expires_minutes=int(self._config.token_ttl.total_seconds() // 60),
                branding=ClientBranding(
                    client_id=client.client_id,
                    app_name=command.app_name or client.app_name,
                    email_subject=client.email_subject,
                    button_color=client.email_button_color,
                ),
            ),
            client_id=client.client_id,
        )

        logger.info(
            "auth_start_ok",
            client_id=client.client_id,
            email=self._log_email(email),
            user_created=created,
        )
        return StartResult(
            status="ok",
            user_created=created,
            message=_CREATED_MSG if created else _SENT_MSG,
            cors_headers=cors_headers,
        )

    def _magic_link_url(self, token: str) -> str:
        params = urlencode({"t": token}, quote_via=quote)
        return f"{self._config.public_base_url}/magic?{params}"

    def _code_entry_url(self, email: str, code: str) -> str:
        params = urlencode({"email": email, "c": code}, quote_via=quote)
        return f"{self._config.public_base_url}/code?{params}"

    async def _notify(self, email: LoginEmail, *, client_id: str) -> None:
        """Deliver the sign-in email; failures are logged, never raised."""
        try:
            receipt = await asyncio.wait_for(
                self._notifier.send(email),
                timeout=self._config.notification_timeout_seconds,
            )
        except (httpx.HTTPError, EmailDeliveryError, TimeoutError) as exc:
            logger.warning(
                "email_send_failed",
                client_id=client_id,
                email=self._log_email(email.to_email),
                error=type(exc).__name__,
            )
            return

        logger.info(
            "email_sent",
            client_id=client_id,
            email=self._log_email(email.to_email),
            provider=receipt.provider,
            message_id=receipt.message_id,
        )

    # -------------------------------------------------------------------------
    # Redemption
    # -------------------------------------------------------------------------

    async def redeem_link(self, token: str | None) -> RedeemResult:
        """Redeem an emailed magic-link token.

        Raises:
            LoginRejectedError: Missing, unknown, used, expired or locked.
        """
        if not token:
            raise self._rejected(RejectionReason.MISSING, Channel.LINK)

        login_request = await LoginRequestRepository.get_by_magic_token_hash(
            self._db, hash_secret(token)
        )
        if login_request is None:
            raise self._rejected(RejectionReason.NOT_FOUND, Channel.LINK)

        result = await self._redeem(login_request, Channel.LINK)
        logger.info("magic_redeem_ok", client_id=result.client_id)
        return result

    async def redeem_code(
        self, email: str | None, code: str | None, *, ip: str
    ) -> RedeemResult:
        """Redeem a typed 6-digit code for the given email.

        The rate limit is checked before the input is validated.

        Raises:
            RateLimitedError: A rate-limit dimension denied the request.
            LoginRejectedError: Missing input, unknown, used, expired or locked.
        """
        email_normalized = normalize_email(email or "")
        code_normalized = normalize_login_code(code or "")

        decision = await self._rate_limiter.admit(
            self._config.code_rules,
            {"ip": ip, "email": email_normalized[:_MAX_EMAIL_LENGTH]},
        )
        if not decision.allowed:
            raise RateLimitedError(decision.retry_after_seconds)

        if not email_normalized or not code_normalized:
            raise self._rejected(RejectionReason.MISSING, Channel.CODE)

        login_request = await LoginRequestRepository.get_latest_by_email_and_code_hash(
            self._db,
            email=email_normalized,
            code_hash=hash_login_code(code_normalized),
        )
        if login_request is None:
            raise self._rejected(RejectionReason.NOT_FOUND, Channel.CODE)

        result = await self._redeem(login_request, Channel.CODE)
        logger.info("code_redeem_ok", client_id=result.client_id)
        return result

    async def _redeem(
        self, login_request: LoginRequest, channel: Channel
    ) -> RedeemResult:
        attempts_before = login_request.attempts
        await LoginRequestRepository.record_attempt(self._db, login_request.id)
        await self._db.commit()

        now = self._clock()
        if login_request.used_at is not None:
            raise self._rejected(RejectionReason.USED, channel)
        if login_request.is_expired(now):
            raise self._rejected(RejectionReason.EXPIRED, channel)
        if attempts_before >= self._config.max_attempts:
            raise self._rejected(RejectionReason.LOCKED, channel)

        won = await LoginRequestRepository.mark_used(
            self._db, login_request.id, now=now
        )
        if not won:
            raise self._rejected(RejectionReason.USED, channel)

        auth_code, auth_code_hash = issue_token()
        await AuthCodeRepository.create(
            self._db,
            client_id=login_request.client_id,
            user_id=login_request.user_id,
            redirect_uri=login_request.redirect_uri,
            code_hash=auth_code_hash,
            expires_at=now + self._config.code_ttl,
        )
        await self._db.commit()

        return RedeemResult(
            redirect_url=build_redirect_url(
                login_request.redirect_uri,
                code=auth_code,
                state=login_request.state,
            ),
            client_id=login_request.client_id,
            user_id=login_request.user_id,
        )

    @staticmethod
    def _rejected(reason: RejectionReason, channel: Channel) -> LoginRejectedError:
        logger.info("login_rejected", reason=reason.value, channel=channel.value)
        return LoginRejectedError(reason, channel)

    # -------------------------------------------------------------------------
    # Token exchange
    # -------------------------------------------------------------------------

    async def exchange(self, command: ExchangeCommand) -> Identity:
        """Trade an authorization code for the bound user's identity.

        Raises:
            InvalidClientError: Unknown or disabled client.
            InvalidRedirectUriError: redirect_uri not allowlisted.
            InvalidClientSecretError: Secret does not match.
            InvalidCodeError: No code for (client_id, redirect_uri, code).
            CodeUsedError: Code already exchanged.
            CodeExpiredError: Code lifetime elapsed.
            UserMissingError: The bound user no longer exists.
        """
        try:
            return await self._exchange(command)
        except (
            InvalidClientError,
            InvalidRedirectUriError,
            InvalidClientSecretError,
            InvalidCodeError,
            CodeUsedError,
            CodeExpiredError,
        ) as exc:
            logger.info(
                "token_exchange_failed",
                client_id=command.client_id,
                error=exc.code.value,
            )
            raise

    async def _exchange(self, command: ExchangeCommand) -> Identity:
        client = await self._resolve_client(command.client_id, command.redirect_uri)
        if not verify_client_secret(command.client_secret, client.client_secret_hash):
            raise InvalidClientSecretError()

        auth_code = await AuthCodeRepository.get_by_client_redirect_and_hash(
            self._db,
            client_id=client.client_id,
            redirect_uri=command.redirect_uri,
            code_hash=hash_secret(command.code),
        )
        if auth_code is None:
            raise InvalidCodeError()

        now = self._clock()
        if auth_code.used_at is not None:
            raise CodeUsedError()
        if auth_code.is_expired(now):
            raise CodeExpiredError()

        if not await AuthCodeRepository.mark_used(self._db, auth_code.id, now=now):
            raise CodeUsedError()

        user = await UserRepository.get_by_id(self._db, auth_code.user_id)
        if user is None:
            await self._db.commit()
            logger.error(
                "user_missing",
                client_id=client.client_id,
                user_id=str(auth_code.user_id),
                auth_code_id=str(auth_code.id),
            )
            raise UserMissingError()

        await self._db.commit()
        logger.info(
            "token_exchange_ok",
            client_id=client.client_id,
            user_id=str(user.id),
        )
        return Identity(
            user_id=user.id,
            email=user.email,
            issued_at=now,
            expires_in=int(self._config.code_ttl.total_seconds()),
        )
