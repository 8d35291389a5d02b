"""MongoDB database connection management using Motor async driver.

Includes connection lifecycle and index management for all collections.
"""

import logging
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import IndexModel, ASCENDING, DESCENDING

from collectdesk.config import settings

logger = logging.getLogger("collectdesk.dal.database")

# Global database client and database instances
_client: AsyncIOMotorClient | None = None
_database: AsyncIOMotorDatabase | None = None


async def connect_to_mongo() -> None:
    """Establish connection to MongoDB.

    Called during FastAPI application startup.
    """
    global _client, _database

    _client = AsyncIOMotorClient(
        settings.MONGO_URL,
        serverSelectionTimeoutMS=5000  # 5 second timeout
    )
    _database = _client[settings.DATABASE_NAME]

    # Verify connection by pinging the database
    await _client.admin.command("ping")
    logger.info("Connected to MongoDB: %s", settings.DATABASE_NAME)


async def close_mongo_connection() -> None:
    """Close MongoDB connection.

    Called during FastAPI application shutdown.
    """
    global _client

    if _client:
        _client.close()
        logger.info("Closed MongoDB connection")


def get_database() -> AsyncIOMotorDatabase:
    """Get the MongoDB database instance.

    Returns:
        AsyncIOMotorDatabase: The database instance.

    Raises:
        RuntimeError: If database is not initialized.
    """
    if _database is None:
        raise RuntimeError(
            "Database not initialized. Call connect_to_mongo() first."
        )
    return _database


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    """Create all indexes used by the DAL queries.

    This is idempotent -- MongoDB silently ignores indexes that already exist.
    Should be called on application startup after the connection is established.

    Args:
        db: The Motor database instance to create indexes on.
    """
    logger.info("Ensuring indexes for all collections...")

    # --- locations ---
    await db.locations.create_indexes([
        IndexModel([("name", ASCENDING)], name="idx_name"),
    ])

    # --- machines ---
    await db.machines.create_indexes([
        IndexModel([("location_id", ASCENDING)], name="idx_location"),
        IndexModel([("serial_number", ASCENDING)], unique=True, name="uq_serial_number"),
    ])

    # --- collections ---
    await db.collections.create_indexes([
        # Previous-meters lookup: latest completed collection of a machine.
        IndexModel(
            [
                ("machine_id", ASCENDING),
                ("is_completed", ASCENDING),
                ("timestamp", DESCENDING),
            ],
            name="idx_machine_completed_ts",
        ),
        IndexModel([("location_report_id", ASCENDING)], name="idx_report"),
        # In-progress collections of a location.
        IndexModel(
            [("location_id", ASCENDING), ("is_completed", ASCENDING)],
            name="idx_location_completed",
        ),
    ])

    # --- collection_reports ---
    await db.collection_reports.create_indexes([
        IndexModel([("location_report_id", ASCENDING)], unique=True, name="uq_location_report_id"),
        IndexModel(
            [("location_id", ASCENDING), ("timestamp", DESCENDING)],
            name="idx_location_ts",
        ),
        IndexModel([("timestamp", DESCENDING)], name="idx_ts"),
    ])

    # --- meters (SAS readings) ---
    await db.meters.create_indexes([
        IndexModel(
            [("machine_id", ASCENDING), ("read_at", ASCENDING)],
            name="idx_machine_read_at",
        ),
    ])

    # --- collectors ---
    await db.collectors.create_indexes([
        IndexModel([("collector_token", ASCENDING)], unique=True, name="uq_collector_token"),
        IndexModel([("username", ASCENDING)], unique=True, name="uq_username"),
    ])

    # --- activity_logs ---
    await db.activity_logs.create_indexes([
        IndexModel([("resource", ASCENDING), ("resource_id", ASCENDING)], name="idx_resource"),
        # TTL: auto-delete activity entries after 90 days.
        IndexModel(
            [("created_at", ASCENDING)],
            expireAfterSeconds=90 * 24 * 3600,
            name="ttl_activity_90d",
        ),
    ])

    logger.info("All indexes ensured successfully.")
