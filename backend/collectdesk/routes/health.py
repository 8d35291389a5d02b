"""Health check endpoint."""

import logging

from fastapi import APIRouter

from collectdesk.config import settings
from collectdesk.dal.database import get_database
from collectdesk.models.common import utcnow

logger = logging.getLogger("collectdesk.routes.health")
router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check():
    """Report service status and MongoDB connectivity.

    Always answers 200 so the service stays routable while MongoDB is
    unavailable; ``status`` drops to ``degraded`` and the database check
    reads ``down`` in that case.
    """
    checks = {"database": "unknown"}
    service_status = "healthy"

    try:
        db = get_database()
        await db.command("ping")
        checks["database"] = "ok"
    except Exception as e:
        logger.warning("Database health check failed: %s", str(e))
        checks["database"] = "down"
        service_status = "degraded"

    return {
        "status": service_status,
        "service": "collectdesk",
        "version": settings.APP_VERSION,
        "time": utcnow().isoformat(),
        "checks": checks,
    }
