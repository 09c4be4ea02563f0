"""Application configuration loaded from environment variables.

Settings for the database, public URLs, credential lifetimes, rate limits
and email delivery. Uses pydantic-settings for validation and .env file
support.

``Settings`` is the raw environment view. ``BrokerConfig`` is the frozen
subset the sign-in protocol needs; it is built once by the app factory and
handed to the orchestrator so nothing in the protocol reads ambient state
at call time.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Literal

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Known insecure default password that must not be used in production
# Security: Runtime check in check_production_security() prevents use in production
_INSECURE_DEFAULT_PASSWORD = "authbroker_dev_password"  # nosec B105

# Probe budget for the best-effort 6-digit code collision check
_LOGIN_CODE_ISSUE_ATTEMPTS = 4

# Rate-limit windows
_MINUTE = 60
_HOUR = 3600


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database
    database_host: str = "localhost"
    database_port: int = 5432
    database_name: str = "authbroker"
    database_user: str = "authbroker"
    database_password: str = _INSECURE_DEFAULT_PASSWORD
    database_command_timeout_seconds: float = 10.0
    database_pool_timeout_seconds: float = 10.0

    # Application
    environment: str = "development"
    log_level: str = "INFO"
    log_redact_pii: bool = True

    # Public base URL used to build magic-link and code-entry URLs
    public_base_url: str = "http://localhost:8080"
    require_https: bool = True
    trust_forwarded_for: bool = True

    # Credential lifetimes
    token_ttl_minutes: int = 10
    code_ttl_minutes: int = 5
    resend_cooldown_seconds: int = 60
    max_magic_attempts: int = 5

    # Rate Limiting (Security)
    rl_ip_per_minute: int = 10
    rl_client_per_minute: int = 20
    rl_email_per_minute: int = 3
    rl_email_per_hour: int = 10
    rate_limit_backend: Literal["auto", "db", "cache"] = "auto"
    # Storage URI for the cache backend (e.g. "async+redis://localhost:6379").
    # Empty means in-process memory when the cache backend is forced.
    rate_limit_storage_uri: str = ""
    rate_limit_enabled: bool = True  # Disable for testing
    # Coarse per-IP guard on the magic-link landing endpoint
    redeem_rate_limit: str = "30/minute"

    # Email
    email_backend: Literal["auto", "resend", "console"] = "auto"
    email_from: str = "noreply@authbroker.local"
    email_from_name: str = "Authbroker"
    resend_api_key: SecretStr = SecretStr("")
    notification_timeout_seconds: float = 10.0

    @property
    def database_url(self) -> str:
        """Async database URL for SQLAlchemy."""
        return (
            f"postgresql+asyncpg://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @property
    def database_url_sync(self) -> str:
        """Sync database URL for Alembic."""
        return (
            f"postgresql://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @property
    def resolved_email_backend(self) -> Literal["resend", "console"]:
        """Email backend after resolving ``auto``.

        ``auto`` sends through Resend when an API key is configured and
        falls back to logging the link otherwise.
        """
        if self.email_backend != "auto":
            return self.email_backend
        return "resend" if self.resend_api_key.get_secret_value() else "console"

    @property
    def resolved_rate_limit_backend(self) -> Literal["db", "cache"]:
        """Rate-limit backend after resolving ``auto``."""
        if self.rate_limit_backend != "auto":
            return self.rate_limit_backend
        return "cache" if self.rate_limit_storage_uri else "db"

    @model_validator(mode="after")
    def check_production_security(self) -> "Settings":
        """Validate configuration invariants.

        Checks:
        - Lifetimes, attempt budget and rate limits must be positive (all environments)
        - Database password must not be the default in production
        - PUBLIC_BASE_URL must use https in production
        - Resend delivery in production needs an API key
        """
        positive = {
            "TOKEN_TTL_MINUTES": self.token_ttl_minutes,
            "CODE_TTL_MINUTES": self.code_ttl_minutes,
            "MAX_MAGIC_ATTEMPTS": self.max_magic_attempts,
            "RL_IP_PER_MINUTE": self.rl_ip_per_minute,
            "RL_CLIENT_PER_MINUTE": self.rl_client_per_minute,
            "RL_EMAIL_PER_MINUTE": self.rl_email_per_minute,
            "RL_EMAIL_PER_HOUR": self.rl_email_per_hour,
        }
        for name, value in positive.items():
            if value <= 0:
                msg = f"{name} must be positive. Got: {value}"
                raise ValueError(msg)

        if self.resend_cooldown_seconds < 0:
            msg = (
                "RESEND_COOLDOWN_SECONDS cannot be negative. "
                f"Got: {self.resend_cooldown_seconds}"
            )
            raise ValueError(msg)

        if self.environment == "production":
            if self.database_password == _INSECURE_DEFAULT_PASSWORD:
                msg = (
                    "Cannot use default database password in production. "
                    "Set DATABASE_PASSWORD environment variable to a secure value."
                )
                raise ValueError(msg)

            if not self.public_base_url.startswith("https://"):
                msg = (
                    "PUBLIC_BASE_URL must use https in production. "
                    f"Got: {self.public_base_url}"
                )
                raise ValueError(msg)

            if not self.resend_api_key.get_secret_value():
                msg = "RESEND_API_KEY must be set in production."
                raise ValueError(msg)

            if self.resolved_email_backend == "console":
                msg = (
                    "EMAIL_BACKEND=console logs sign-in links and codes. "
                    "Use resend in production."
                )
                raise ValueError(msg)

        return self


settings = Settings()


# =============================================================================
# Protocol configuration
# =============================================================================


@dataclass(frozen=True)
class RateLimitRule:
    """One scoped admission dimension.

    Attributes:
        scope: Counter family ("ip", "client" or "email").
        window_seconds: Fixed window length.
        max_count: Requests admitted per window.
    """

    scope: Literal["ip", "client", "email"]
    window_seconds: int
    max_count: int


@dataclass(frozen=True)
class BrokerConfig:
    """Immutable protocol settings passed into the orchestrator.

    Attributes:
        public_base_url: Base URL for magic-link and code-entry links.
        token_ttl: LoginRequest lifetime.
        code_ttl: AuthCode lifetime (also reported as ``expires_in``).
        resend_cooldown: Window in which a repeated Start is a no-op.
        max_attempts: Redemption attempts allowed per LoginRequest.
        login_code_attempts: Probe budget for 6-digit code collisions.
        notification_timeout_seconds: Bound on one email delivery.
        redact_pii: Redact email addresses in log events.
        start_rules: Dimensions checked by Start, in evaluation order.
        code_rules: Dimensions checked by code redemption, in order.
    """

    public_base_url: str
    token_ttl: timedelta
    code_ttl: timedelta
    resend_cooldown: timedelta
    max_attempts: int
    login_code_attempts: int = _LOGIN_CODE_ISSUE_ATTEMPTS
    notification_timeout_seconds: float = 10.0
    redact_pii: bool = True
    start_rules: tuple[RateLimitRule, ...] = ()
    code_rules: tuple[RateLimitRule, ...] = ()

    @classmethod
    def from_settings(cls, source: Settings) -> "BrokerConfig":
        """Build the protocol configuration from environment settings."""
        ip_minute = RateLimitRule("ip", _MINUTE, source.rl_ip_per_minute)
        client_minute = RateLimitRule(
            "client", _MINUTE, source.rl_client_per_minute
        )
        email_minute = RateLimitRule("email", _MINUTE, source.rl_email_per_minute)
        email_hour = RateLimitRule("email", _HOUR, source.rl_email_per_hour)

        return cls(
            public_base_url=source.public_base_url.rstrip("/"),
            token_ttl=timedelta(minutes=source.token_ttl_minutes),
            code_ttl=timedelta(minutes=source.code_ttl_minutes),
            resend_cooldown=timedelta(seconds=source.resend_cooldown_seconds),
            max_attempts=source.max_magic_attempts,
            notification_timeout_seconds=source.notification_timeout_seconds,
            redact_pii=source.log_redact_pii,
            start_rules=(ip_minute, client_minute, email_minute, email_hour),
            code_rules=(ip_minute, email_minute, email_hour),
        )
