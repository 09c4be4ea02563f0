"""Client-facing protocol endpoints.

Endpoints:
- POST /v1/auth/start: begin a passwordless sign-in (browser or server)
- POST /v1/auth/token: exchange an authorization code (server-to-server)

Start echoes Access-Control-Allow-Origin only for origins on the client's
allowlist, on success and on 429 alike. There is no global CORS policy.
"""

from fastapi import APIRouter, Request, Response
from pydantic import BaseModel, ConfigDict, Field

from authbroker.api.deps import Broker, ClientIp
from authbroker.core.responses import StartResponse, TokenResponse
from authbroker.services.auth_flow import ExchangeCommand, StartCommand

router = APIRouter()


# ===================================================================
# Request models
# ===================================================================


class StartRequest(BaseModel):
    """Request body for POST /v1/auth/start."""

    model_config = ConfigDict(extra="forbid")

    client_id: str = Field(min_length=1, max_length=128)
    email: str = Field(min_length=1, max_length=320)
    redirect_uri: str = Field(min_length=1, max_length=2048)
    state: str = Field(max_length=1024)
    app_return_to: str | None = Field(default=None, max_length=2048)
    app_name: str | None = Field(default=None, max_length=255)


class TokenRequest(BaseModel):
    """Request body for POST /v1/auth/token."""

    model_config = ConfigDict(extra="forbid")

    client_id: str = Field(min_length=1, max_length=128)
    client_secret: str = Field(min_length=1, max_length=256)
    code: str = Field(min_length=1, max_length=256)
    redirect_uri: str = Field(min_length=1, max_length=2048)


# ===================================================================
# POST /v1/auth/start
# ===================================================================


@router.post("/start")
async def start_login(
    request: Request,
    response: Response,
    body: StartRequest,
    broker: Broker,
    ip: ClientIp,
) -> StartResponse:
    """Email a magic link and 6-digit code to the user.

    A repeat within the resend cooldown answers ``status: "cooldown"``
    without creating a second login request or sending a second email.
    """
    result = await broker.start(
        StartCommand(
            client_id=body.client_id,
            email=body.email,
            redirect_uri=body.redirect_uri,
            state=body.state,
            app_return_to=body.app_return_to,
            app_name=body.app_name,
            origin=request.headers.get("origin"),
            ip=ip,
            user_agent=request.headers.get("user-agent"),
        )
    )
    response.headers.update(result.cors_headers)
    return StartResponse(
        status=result.status,
        user_created=result.user_created,
        message=result.message,
    )


# ===================================================================
# POST /v1/auth/token
# ===================================================================


@router.post("/token")
async def exchange_token(body: TokenRequest, broker: Broker) -> TokenResponse:
    """Exchange a single-use authorization code for the user's identity."""
    identity = await broker.exchange(
        ExchangeCommand(
            client_id=body.client_id,
            client_secret=body.client_secret,
            code=body.code,
            redirect_uri=body.redirect_uri,
        )
    )
    return TokenResponse(
        user_id=str(identity.user_id),
        email=identity.email,
        issued_at=identity.issued_at,
        expires_in=identity.expires_in,
    )
