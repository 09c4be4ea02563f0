"""Browser-facing redemption endpoints.

Endpoints:
- GET /magic: redeem the emailed magic link
- GET /code: code entry form (cross-device / manual flow)
- POST /code: redeem a typed 6-digit code

Success is a 302 to ``redirect_uri?code=...&state=...``. Failures are
plain text so the user sees a readable message, never the JSON envelope.
"""

import html
from typing import Annotated

from fastapi import APIRouter, Form, Query, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, RedirectResponse
from starlette.responses import Response

from authbroker.api.deps import Broker, ClientIp
from authbroker.core.config import settings
from authbroker.core.errors import APIError, LoginRejectedError, RateLimitedError
from authbroker.core.rate_limiting import limiter

router = APIRouter()

_CODE_FORM = """<!doctype html>
<html lang="en">
  <head>
    <meta charset="utf-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1" />
    <title>Enter sign-in code</title>
  </head>
  <body>
    <h1>Enter your sign-in code</h1>
    <p>Use the 6-digit code from the email.</p>
    <form method="post" action="/code">
      <label for="email">Email</label>
      <input id="email" name="email" type="email" autocomplete="email" required value="{email}">
      <label for="code">Code</label>
      <input id="code" name="code" inputmode="numeric" autocomplete="one-time-code" required value="{code}">
      <button type="submit">Continue</button>
    </form>
    <p>If you didn't request this, you can ignore it.</p>
  </body>
</html>
"""


def _plain_error(exc: APIError) -> PlainTextResponse:
    return PlainTextResponse(
        exc.message,
        status_code=exc.status_code,
        headers=exc.headers,
    )


# ===================================================================
# GET /magic
# ===================================================================


@router.get("/magic")
@limiter.limit(settings.redeem_rate_limit)
async def redeem_magic_link(
    request: Request,  # noqa: ARG001
    broker: Broker,
    t: Annotated[str | None, Query()] = None,
) -> Response:
    """Redeem a magic-link token and redirect to the client's callback."""
    try:
        result = await broker.redeem_link(t)
    except LoginRejectedError as exc:
        return _plain_error(exc)
    return RedirectResponse(result.redirect_url, status_code=302)


# ===================================================================
# GET /code
# ===================================================================


@router.get("/code")
async def code_entry_form(
    email: Annotated[str, Query()] = "",
    c: Annotated[str, Query()] = "",
) -> HTMLResponse:
    """Render the code entry form, prefilled from the emailed URL."""
    return HTMLResponse(
        _CODE_FORM.format(
            email=html.escape(email.strip(), quote=True),
            code=html.escape(c.strip(), quote=True),
        )
    )


# ===================================================================
# POST /code
# ===================================================================


@router.post("/code")
async def redeem_login_code(
    broker: Broker,
    ip: ClientIp,
    email: Annotated[str | None, Form()] = None,
    code: Annotated[str | None, Form()] = None,
) -> Response:
    """Redeem a 6-digit code and redirect to the client's callback."""
    try:
        result = await broker.redeem_code(email, code, ip=ip)
    except (LoginRejectedError, RateLimitedError) as exc:
        return _plain_error(exc)
    return RedirectResponse(result.redirect_url, status_code=302)
