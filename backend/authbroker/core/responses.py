"""Response models.

JSON endpoints answer with flat protocol bodies on success and the
``{"error": {...}}`` envelope on failure.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel


class ErrorDetail(BaseModel):
    """Error detail for response body.

    Attributes:
        code: Machine-readable error code (e.g., "invalid_client").
        message: Human-readable error message.
        details: Optional list of field-level errors (for validation).
    """

    code: str
    message: str
    details: list[dict] | None = None


class ErrorResponse(BaseModel):
    """Standard error response envelope.

    Usage in exception handlers:
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(
                error=ErrorDetail(code=exc.code.value, message=exc.message)
            ).model_dump(),
        )
    """

    error: ErrorDetail


class StartResponse(BaseModel):
    """Body of POST /v1/auth/start.

    Attributes:
        status: "ok" when a credential was issued, "cooldown" when a recent
            one is still outstanding.
        user_created: Whether this call created the user.
        message: Text the client app can show to the user.
    """

    status: Literal["ok", "cooldown"]
    user_created: bool
    message: str


class TokenResponse(BaseModel):
    """Body of POST /v1/auth/token."""

    user_id: str
    email: str
    issued_at: datetime
    expires_in: int
