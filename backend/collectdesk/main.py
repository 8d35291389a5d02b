"""
CollectDesk FastAPI Application Entry Point.

Configures FastAPI, sets up middleware, registers routes and manages the
MongoDB connection lifecycle.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from collectdesk.config import settings
from collectdesk.dal.database import close_mongo_connection, connect_to_mongo, ensure_indexes, get_database
from collectdesk.routes.admin import router as admin_router
from collectdesk.routes.auth import router as auth_router
from collectdesk.routes.collection_reports import report_router as collection_report_router
from collectdesk.routes.collection_reports import router as collection_reports_router
from collectdesk.routes.collections import router as collections_router
from collectdesk.routes.health import router as health_router
from collectdesk.routes.locations import router as locations_router
from collectdesk.routes.machines import router as machines_router
from collectdesk.routes.profile import router as profile_router

logger = logging.getLogger("collectdesk.app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan context manager.
    Connects to MongoDB and ensures indexes on startup, closes on shutdown.
    """
    try:
        await connect_to_mongo()
        await ensure_indexes(get_database())
        logger.info("CollectDesk v%s started with database connection", settings.APP_VERSION)
    except Exception as e:
        # Start anyway so /health can report the outage
        logger.warning(
            "Failed to connect to MongoDB during startup: %s. "
            "Application will start but database operations will fail until connection is established.",
            str(e)
        )
        logger.info("CollectDesk v%s started WITHOUT database connection", settings.APP_VERSION)

    yield

    await close_mongo_connection()
    logger.info("CollectDesk shutdown complete")


app = FastAPI(
    title="CollectDesk API",
    description="Collection reports for gaming-machine locations - REST API",
    version=settings.APP_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID", "X-Collector-Token"],
    expose_headers=["X-Request-ID"],
    max_age=600,  # Cache preflight requests for 10 minutes
)

app.include_router(health_router)  # Health endpoint at root level
app.include_router(health_router, prefix="/api")
app.include_router(auth_router, prefix="/api")
app.include_router(locations_router, prefix="/api")
app.include_router(machines_router, prefix="/api")
app.include_router(collections_router, prefix="/api")
app.include_router(collection_reports_router, prefix="/api")
app.include_router(collection_report_router, prefix="/api")
app.include_router(profile_router, prefix="/api")
app.include_router(admin_router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint - API information."""
    return {
        "name": "CollectDesk API",
        "version": settings.APP_VERSION,
        "status": "operational",
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "collectdesk.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info",
    )
