"""API error classes.

Every failure the broker can report is one member of ``ErrorCode``; each
member has exactly one ``APIError`` subclass that fixes its HTTP status.
Exception handlers in ``authbroker.main`` turn these into the standard
error envelope, and the browser-facing routes render the login errors as
plain text.

Taxonomy:
- Client configuration: invalid_client, invalid_redirect_uri,
  invalid_client_secret. Caller misconfiguration, never retried.
- Admission: rate_limited. Transient; carries a Retry-After delay.
- Credential lifecycle: invalid_code, code_used, code_expired (token
  exchange) and login_rejected (browser redemption, reason kept server-side
  in ``RejectionReason``).
- Integrity: user_missing. A broken reference; generic 500 to the caller.
"""

from enum import Enum


class ErrorCode(str, Enum):
    """Closed set of machine-readable error codes."""

    VALIDATION_ERROR = "validation_error"
    INVALID_CLIENT = "invalid_client"
    INVALID_REDIRECT_URI = "invalid_redirect_uri"
    INVALID_CLIENT_SECRET = "invalid_client_secret"
    RATE_LIMITED = "rate_limited"
    INVALID_CODE = "invalid_code"
    CODE_USED = "code_used"
    CODE_EXPIRED = "code_expired"
    LOGIN_REJECTED = "login_rejected"
    USER_MISSING = "user_missing"
    INTERNAL_ERROR = "internal_error"


class RejectionReason(str, Enum):
    """Why a magic-link or 6-digit code redemption was refused.

    Values:
        MISSING: The request carried no token or code.
        NOT_FOUND: No login request matches the submitted secret.
        USED: The login request was already redeemed.
        EXPIRED: The login request's lifetime has elapsed.
        LOCKED: The attempt budget is exhausted.
    """

    MISSING = "missing"
    NOT_FOUND = "not_found"
    USED = "used"
    EXPIRED = "expired"
    LOCKED = "locked"


class Channel(str, Enum):
    """Browser redemption path a login error belongs to."""

    LINK = "link"
    CODE = "code"


_REJECTION_MESSAGES: dict[tuple[Channel, RejectionReason], str] = {
    (Channel.LINK, RejectionReason.MISSING): "Missing token",
    (Channel.LINK, RejectionReason.NOT_FOUND): "Invalid or expired token",
    (Channel.LINK, RejectionReason.USED): "Token already used",
    (Channel.LINK, RejectionReason.EXPIRED): "Token expired",
    (Channel.LINK, RejectionReason.LOCKED): "Too many attempts",
    (Channel.CODE, RejectionReason.MISSING): "Missing email or code",
    (Channel.CODE, RejectionReason.NOT_FOUND): "Invalid or expired code",
    (Channel.CODE, RejectionReason.USED): "Code already used",
    (Channel.CODE, RejectionReason.EXPIRED): "Code expired",
    (Channel.CODE, RejectionReason.LOCKED): "Too many attempts",
}


class APIError(Exception):
    """Base class for API errors.

    Attributes:
        code: Machine-readable error code.
        message: Human-readable error message.
        status_code: HTTP status code to return.
        details: Optional list of additional error details.
        headers: Extra response headers (e.g. Retry-After, CORS).
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: int = 500,
        details: list[dict] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        self.headers: dict[str, str] = {}
        super().__init__(message)


class ValidationError(APIError):
    """Field validation failed (400)."""

    def __init__(
        self,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code=ErrorCode.VALIDATION_ERROR,
            message=message,
            status_code=400,
            details=details,
        )


# =============================================================================
# Client configuration errors
# =============================================================================


class InvalidClientError(APIError):
    """Unknown or disabled client_id (400)."""

    def __init__(self) -> None:
        super().__init__(
            code=ErrorCode.INVALID_CLIENT,
            message="Unknown or disabled client",
            status_code=400,
        )


class InvalidRedirectUriError(APIError):
    """redirect_uri is not in the client's exact-match allowlist (400)."""

    def __init__(self) -> None:
        super().__init__(
            code=ErrorCode.INVALID_REDIRECT_URI,
            message="redirect_uri is not registered for this client",
            status_code=400,
        )


class InvalidClientSecretError(APIError):
    """client_secret does not match the stored hash (401).

    Deliberately distinct from invalid_client: the token endpoint is
    server-to-server and never reached from a browser.
    """

    def __init__(self) -> None:
        super().__init__(
            code=ErrorCode.INVALID_CLIENT_SECRET,
            message="Client authentication failed",
            status_code=401,
        )


# =============================================================================
# Admission errors
# =============================================================================


class RateLimitedError(APIError):
    """A rate-limit dimension denied the request (429).

    Args:
        retry_after_seconds: Remaining time in the denying window (>= 1).
    """

    def __init__(self, retry_after_seconds: int) -> None:
        super().__init__(
            code=ErrorCode.RATE_LIMITED,
            message="Rate limited. Try again soon.",
            status_code=429,
        )
        self.retry_after_seconds = max(1, retry_after_seconds)
        self.headers["Retry-After"] = str(self.retry_after_seconds)


# =============================================================================
# Credential lifecycle errors
# =============================================================================


class InvalidCodeError(APIError):
    """No auth code matches (client_id, redirect_uri, code) (400)."""

    def __init__(self) -> None:
        super().__init__(
            code=ErrorCode.INVALID_CODE,
            message="Authorization code is invalid",
            status_code=400,
        )


class CodeUsedError(APIError):
    """The auth code was already exchanged (400)."""

    def __init__(self) -> None:
        super().__init__(
            code=ErrorCode.CODE_USED,
            message="Authorization code was already used",
            status_code=400,
        )


class CodeExpiredError(APIError):
    """The auth code's lifetime has elapsed (400)."""

    def __init__(self) -> None:
        super().__init__(
            code=ErrorCode.CODE_EXPIRED,
            message="Authorization code has expired",
            status_code=400,
        )


class LoginRejectedError(APIError):
    """Magic-link or 6-digit code redemption refused (400).

    All reasons share one client-visible class; ``reason`` stays available
    for logging and tests.

    Args:
        reason: Why the redemption was refused.
        channel: Which browser path was used.
    """

    def __init__(self, reason: RejectionReason, channel: Channel) -> None:
        super().__init__(
            code=ErrorCode.LOGIN_REJECTED,
            message=_REJECTION_MESSAGES[(channel, reason)],
            status_code=400,
        )
        self.reason = reason
        self.channel = channel


# =============================================================================
# Integrity errors
# =============================================================================


class UserMissingError(APIError):
    """An auth code references a user that no longer exists (500).

    Security: the message stays generic; details go to the server log only.
    """

    def __init__(self) -> None:
        super().__init__(
            code=ErrorCode.USER_MISSING,
            message="An unexpected error occurred",
            status_code=500,
        )

