"""API v1 router aggregator.

JSON protocol endpoints live under /v1/auth; the browser redemption pages
are mounted at the root because their URLs go out in emails.
"""

from fastapi import APIRouter

from authbroker.api.v1 import auth, redeem

router = APIRouter()

# =============================================================================
# Protocol (JSON)
# =============================================================================

router.include_router(auth.router, prefix="/v1/auth", tags=["auth"])

# =============================================================================
# Browser redemption
# =============================================================================

router.include_router(redeem.router, tags=["redeem"])
