"""Authentication route handlers.

Endpoints:
    POST /api/auth/admin/login  -- Admin JWT login.
    GET  /api/auth/me           -- Return current caller info (admin or collector).
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field

from collectdesk.auth.dependencies import get_admin_or_collector
from collectdesk.auth.jwt import create_admin_token
from collectdesk.config import settings
from collectdesk.middleware.rate_limit import rate_limiter
from collectdesk.models.common import AuthType

logger = logging.getLogger("collectdesk.routes.auth")

router = APIRouter(prefix="/auth", tags=["Auth"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class AdminLoginRequest(BaseModel):
    """Request body for admin login."""
    username: str = Field(..., min_length=1, max_length=50)
    password: str = Field(..., min_length=1, max_length=128)


class AdminLoginUser(BaseModel):
    """User info returned in admin login response."""
    user_id: str
    role: str = "ADMIN"
    username: str


class AdminLoginResponse(BaseModel):
    """Response for a successful admin login."""
    access_token: str
    token_type: str = "bearer"
    user: AdminLoginUser


# ---------------------------------------------------------------------------
# POST /api/auth/admin/login
# ---------------------------------------------------------------------------

@router.post(
    "/admin/login",
    response_model=AdminLoginResponse,
    status_code=status.HTTP_200_OK,
)
async def admin_login(request: Request, body: AdminLoginRequest) -> AdminLoginResponse:
    """Authenticate admin and return a JWT.

    Validates the provided credentials against ``ADMIN_USERNAME`` and
    ``ADMIN_PASSWORD`` from the application configuration.

    Raises:
        HTTPException 401: Invalid credentials.
        HTTPException 429: Too many failed login attempts.
    """
    rate_limiter.check_rate_limit(request, "admin_login")

    if body.username != settings.ADMIN_USERNAME or body.password != settings.ADMIN_PASSWORD:
        # Never reveal which field was wrong.  Never log credentials.
        logger.warning("Failed admin login attempt")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
        )

    token = create_admin_token(body.username)
    logger.info("Admin login successful for user=%s", body.username)
    return AdminLoginResponse(
        access_token=token,
        user=AdminLoginUser(user_id="admin", username=body.username),
    )


# ---------------------------------------------------------------------------
# GET /api/auth/me
# ---------------------------------------------------------------------------

@router.get("/me")
async def get_me(
    caller: dict[str, Any] = Depends(get_admin_or_collector),
) -> dict[str, Any]:
    """Return info about the authenticated caller.

    Returns:
        Admin: ``{"role": "admin", "username": ...}``
        Collector: ``{"role": "collector", "username": ..., "display_name": ...,
        "assigned_location_ids": [...]}``
    """
    if caller["auth_type"] == AuthType.ADMIN:
        return {"role": "admin", "username": caller["username"]}

    collector = caller["collector"]
    return {
        "role": "collector",
        "id": collector.id,
        "username": collector.username,
        "display_name": collector.display_name,
        "assigned_location_ids": collector.assigned_location_ids,
    }
