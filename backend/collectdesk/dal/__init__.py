"""Data Access Layer -- MongoDB repository classes and connection management."""

from collectdesk.dal.database import (
    connect_to_mongo,
    close_mongo_connection,
    ensure_indexes,
    get_database,
)
from collectdesk.dal.activity_dal import ActivityDAL
from collectdesk.dal.collection_reports_dal import CollectionReportDAL
from collectdesk.dal.collections_dal import CollectionDAL
from collectdesk.dal.collectors_dal import CollectorDAL
from collectdesk.dal.locations_dal import LocationDAL
from collectdesk.dal.machines_dal import MachineDAL
from collectdesk.dal.meters_dal import MeterDAL

__all__ = [
    # Connection management
    "connect_to_mongo",
    "close_mongo_connection",
    "ensure_indexes",
    "get_database",
    # DAL classes
    "ActivityDAL",
    "CollectionReportDAL",
    "CollectionDAL",
    "CollectorDAL",
    "LocationDAL",
    "MachineDAL",
    "MeterDAL",
]
