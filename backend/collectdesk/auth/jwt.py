"""JWT helpers for the admin session.

Only admins hold JWTs; collectors authenticate with their own token. An
admin token is HS256-signed with ``JWT_SECRET`` and carries:

    sub   -- the admin username, used as the actor in the activity log.
    role  -- always ``"admin"``. ``get_current_admin`` rejects any other
             value with 403, so a token signed with the right secret but
             minted for another role never reaches admin routes.
    exp   -- expiry, ``JWT_EXPIRE_HOURS`` after issue unless overridden.
    iat   -- issue time.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from jose import jwt

from collectdesk.config import settings

logger = logging.getLogger("collectdesk.auth.jwt")

ALGORITHM = "HS256"
ADMIN_ROLE = "admin"


def create_access_token(
    data: dict[str, Any],
    expires_delta: timedelta | None = None,
) -> str:
    """Sign the given claims, adding ``exp`` and ``iat``.

    Args:
        data: Claims to embed. Admin tokens need ``sub`` and ``role``.
        expires_delta: Custom token lifetime.

    Returns:
        A compact JWS string.
    """
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(hours=settings.JWT_EXPIRE_HOURS))
    claims = {**data, "exp": expire, "iat": now}
    logger.debug("Issuing JWT for sub=%s until %s", data.get("sub"), expire.isoformat())
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=ALGORITHM)


def create_admin_token(username: str, expires_delta: timedelta | None = None) -> str:
    """Issue the token returned by a successful admin login."""
    return create_access_token({"sub": username, "role": ADMIN_ROLE}, expires_delta)


def decode_token(token: str) -> dict[str, Any]:
    """Verify signature and expiry and return the claims.

    The role is not checked here; see ``admin_username``.

    Raises:
        ExpiredSignatureError: If the token has expired.
        JWTError: If the token is malformed or the signature is invalid.
    """
    return jwt.decode(token, settings.JWT_SECRET, algorithms=[ALGORITHM])


def admin_username(claims: dict[str, Any]) -> Optional[str]:
    """Return the admin username of decoded claims, or None for any other role."""
    if claims.get("role") != ADMIN_ROLE:
        return None
    return claims.get("sub") or ADMIN_ROLE
