"""Collection Report Data Access Layer -- MongoDB operations for collection_reports.

Reports are addressed by their ``location_report_id`` (the id shared with
their collections and machine history entries). Lookups also accept the
document's ObjectId.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from collectdesk.models.collection_report import CollectionReport
from collectdesk.models.common import mongo_ready, to_naive_utc, utcnow

logger = logging.getLogger("collectdesk.dal.collection_reports")

COLLECTION = "collection_reports"


def _to_report(doc: dict) -> CollectionReport:
    doc["_id"] = str(doc["_id"])
    return CollectionReport(**doc)


def _report_filter(report_id: str) -> dict[str, Any]:
    if ObjectId.is_valid(report_id):
        return {"$or": [{"location_report_id": report_id}, {"_id": ObjectId(report_id)}]}
    return {"location_report_id": report_id}


def _time_range(start: Optional[datetime], end: Optional[datetime]) -> dict[str, Any]:
    bounds: dict[str, Any] = {}
    if start is not None:
        bounds["$gte"] = to_naive_utc(start)
    if end is not None:
        bounds["$lte"] = to_naive_utc(end)
    return bounds


class CollectionReportDAL:
    """Data access layer for the collection_reports collection."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db[COLLECTION]

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create(self, report: CollectionReport) -> CollectionReport:
        """Insert a new report document and return it with its generated id."""
        doc = report.to_mongo_dict()
        result = await self._collection.insert_one(doc)
        report.id = str(result.inserted_id)
        logger.info(
            "Created collection report %s for location %s (to collect=%s)",
            report.location_report_id, report.location_name, report.amount_to_collect,
        )
        return report

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def get(self, report_id: str) -> Optional[CollectionReport]:
        """Find a report by ``location_report_id`` or ObjectId.

        Returns:
            A CollectionReport instance, or None if not found.
        """
        doc = await self._collection.find_one(_report_filter(report_id))
        if doc is None:
            return None
        return _to_report(doc)

    async def get_latest_for_location(self, location_id: str) -> Optional[CollectionReport]:
        """Find the most recent report of a location."""
        cursor = (
            self._collection.find({"location_id": location_id})
            .sort("timestamp", -1)
            .limit(1)
        )
        async for doc in cursor:
            return _to_report(doc)
        return None

    async def query(
        self,
        *,
        location_ids: Optional[list[str]] = None,
        location_name: Optional[str] = None,
        collector: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 100,
        skip: int = 0,
    ) -> list[CollectionReport]:
        """List reports, newest first.

        Args:
            location_ids: Only reports of these locations.
            location_name: Only reports of this location name.
            collector: Only reports by this collector.
            start: Inclusive lower bound on the report timestamp.
            end: Inclusive upper bound on the report timestamp.
            limit: Maximum number of results.
            skip: Number of documents to skip (for pagination).

        Returns:
            A list of CollectionReport instances.
        """
        query: dict[str, Any] = {}
        if location_ids is not None:
            query["location_id"] = {"$in": location_ids}
        if location_name is not None:
            query["location_name"] = location_name
        if collector is not None:
            query["collector"] = collector
        bounds = _time_range(start, end)
        if bounds:
            query["timestamp"] = bounds

        cursor = (
            self._collection.find(query)
            .sort("timestamp", -1)
            .skip(skip)
            .limit(limit)
        )
        return [_to_report(doc) async for doc in cursor]

    async def list_chronological(self) -> list[CollectionReport]:
        """List every report, oldest first."""
        cursor = self._collection.find({}).sort("timestamp", 1)
        return [_to_report(doc) async for doc in cursor]

    async def summarize_by_location(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        location_name: Optional[str] = None,
        location_ids: Optional[list[str]] = None,
    ) -> list[dict[str, Any]]:
        """Sum report totals per location name over a time range.

        Returns:
            One dict per location name with location_name, drop,
            cancelled_credits, gross, sas_gross and report_count, sorted by
            location name.
        """
        match: dict[str, Any] = {}
        bounds = _time_range(start, end)
        if bounds:
            match["timestamp"] = bounds
        if location_name is not None:
            match["location_name"] = location_name
        if location_ids is not None:
            match["location_id"] = {"$in": location_ids}

        pipeline = [
            {"$match": match},
            {
                "$group": {
                    "_id": "$location_name",
                    "drop": {"$sum": "$total_drop"},
                    "cancelled_credits": {"$sum": "$total_cancelled"},
                    "gross": {"$sum": "$total_gross"},
                    "sas_gross": {"$sum": "$total_sas_gross"},
                    "report_count": {"$sum": 1},
                }
            },
            {"$sort": {"_id": 1}},
        ]
        rows: list[dict[str, Any]] = []
        async for doc in self._collection.aggregate(pipeline):
            doc["location_name"] = doc.pop("_id")
            rows.append(doc)
        return rows

    async def count_all(self) -> int:
        """Count all report documents."""
        return await self._collection.count_documents({})

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    async def update(self, location_report_id: str, fields: dict[str, Any]) -> bool:
        """Set arbitrary fields on a report.

        Returns:
            True if the report exists, False otherwise.
        """
        result = await self._collection.update_one(
            {"location_report_id": location_report_id},
            {"$set": mongo_ready({**fields, "updated_at": utcnow()})},
        )
        return result.matched_count > 0

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete(self, location_report_id: str) -> bool:
        """Delete a report by its ``location_report_id``."""
        result = await self._collection.delete_one(
            {"location_report_id": location_report_id}
        )
        if result.deleted_count > 0:
            logger.info("Deleted collection report %s", location_report_id)
        return result.deleted_count > 0
