"""FastAPI dependency-injection callables for authentication and authorization.

Each callable is designed to be used with ``Depends()`` in route signatures.
They extract credentials from request headers, validate them, and return
either an admin context dict, a Collector model, or a combined caller
context that carries the locations the caller may access.
"""

import logging
from typing import Any

from fastapi import Header, HTTPException, status
from jose import ExpiredSignatureError, JWTError

from collectdesk.auth.collector_token import validate_collector_token
from collectdesk.auth.jwt import ADMIN_ROLE, admin_username, decode_token
from collectdesk.dal.collectors_dal import CollectorDAL
from collectdesk.dal.database import get_database
from collectdesk.models.collector import Collector
from collectdesk.models.common import AuthType

logger = logging.getLogger("collectdesk.auth.dependencies")


# ---------------------------------------------------------------------------
# Admin JWT dependency
# ---------------------------------------------------------------------------

async def get_current_admin(
    authorization: str | None = Header(None),
) -> dict[str, Any]:
    """Validate an admin JWT from the Authorization header.

    Returns:
        A dict with admin context, e.g. ``{"role": "admin", "username": ...}``.

    Raises:
        HTTPException 401: Missing or invalid token.
        HTTPException 403: Token is valid but lacks admin role.
    """
    if authorization is None or not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid Authorization header",
        )

    token = authorization[len("Bearer "):]

    try:
        payload = decode_token(token)
    except ExpiredSignatureError:
        logger.warning("Expired admin JWT presented")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
        )
    except JWTError:
        logger.warning("Invalid admin JWT presented")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        )

    username = admin_username(payload)
    if username is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin role required",
        )

    return {"role": ADMIN_ROLE, "username": username}


# ---------------------------------------------------------------------------
# Collector token dependency
# ---------------------------------------------------------------------------

async def get_current_collector(
    x_collector_token: str | None = Header(None),
) -> Collector:
    """Look up an active collector by the ``X-Collector-Token`` header.

    Raises:
        HTTPException 401: Header missing, malformed, or unknown token.
    """
    if x_collector_token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Collector-Token header",
        )

    if not validate_collector_token(x_collector_token):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid collector token format",
        )

    collector = await CollectorDAL(get_database()).get_by_token(x_collector_token)
    if collector is None:
        logger.warning("Unknown or deactivated collector token presented")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Collector not found or inactive",
        )
    return collector


# ---------------------------------------------------------------------------
# Combined: admin OR collector
# ---------------------------------------------------------------------------

async def get_admin_or_collector(
    authorization: str | None = Header(None),
    x_collector_token: str | None = Header(None),
) -> dict[str, Any]:
    """Accept either an admin JWT or a collector token.

    Tries admin JWT first; if the header is absent, falls through to
    the collector token path.

    Returns:
        A context dict with ``auth_type``, ``username`` and
        ``location_ids`` (None for admins, who see every location). For
        collectors the Collector model is under ``"collector"``.

    Raises:
        HTTPException 401/403: Depending on which auth path fails.
    """
    if authorization is not None and authorization.startswith("Bearer "):
        admin_ctx = await get_current_admin(authorization=authorization)
        return {
            "auth_type": AuthType.ADMIN,
            "username": admin_ctx["username"],
            "location_ids": None,
        }

    collector = await get_current_collector(x_collector_token=x_collector_token)
    return {
        "auth_type": AuthType.COLLECTOR,
        "username": collector.username,
        "location_ids": list(collector.assigned_location_ids),
        "collector": collector,
    }


def require_location_access(caller: dict[str, Any], location_id: str) -> None:
    """Raise 403 unless the caller may work on the given location."""
    allowed = caller.get("location_ids")
    if allowed is not None and location_id not in allowed:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not assigned to this location",
        )
