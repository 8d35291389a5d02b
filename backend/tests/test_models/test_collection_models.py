"""Tests for collection, report and shared model helpers."""

from datetime import datetime, timedelta, timezone

import pytest
from bson import ObjectId
from pydantic import ValidationError

from collectdesk.models.collection import Collection, Movement, SasMeters
from collectdesk.models.collection_report import CollectionReport
from collectdesk.models.common import mongo_ready, to_naive_utc


def _collection(**overrides) -> Collection:
    data = {
        "machine_id": "m1",
        "machine_name": "Lucky 7",
        "location_id": "loc1",
        "location_name": "Harbor Bar",
        "collector": "sam",
        "meters_in": 1500,
        "meters_out": 600,
    }
    data.update(overrides)
    return Collection(**data)


class TestCollection:

    def test_defaults(self):
        collection = _collection()
        assert collection.prev_in == 0
        assert collection.prev_out == 0
        assert collection.ram_clear is False
        assert collection.movement == Movement()
        assert collection.sas_meters == SasMeters()
        assert collection.location_report_id == ""
        assert collection.timestamp.tzinfo is not None

    def test_in_progress_until_reported(self):
        assert _collection().in_progress is True
        assert _collection(location_report_id="r1").in_progress is False
        assert _collection(is_completed=True, location_report_id="r1").in_progress is False

    def test_meters_required(self):
        with pytest.raises(ValidationError):
            Collection(
                machine_id="m1",
                machine_name="Lucky 7",
                location_id="loc1",
                location_name="Harbor Bar",
                collector="sam",
            )

    def test_naive_timestamp_becomes_utc(self):
        collection = _collection(timestamp=datetime(2024, 5, 2, 10, 0))
        assert collection.timestamp == datetime(2024, 5, 2, 10, 0, tzinfo=timezone.utc)

    def test_offset_timestamp_normalised_to_utc(self):
        eastern = timezone(timedelta(hours=-4))
        collection = _collection(timestamp=datetime(2024, 5, 2, 6, 0, tzinfo=eastern))
        assert collection.timestamp == datetime(2024, 5, 2, 10, 0, tzinfo=timezone.utc)
        assert collection.timestamp.utcoffset() == timedelta(0)

    def test_object_id_accepted(self):
        oid = ObjectId()
        collection = _collection(_id=oid)
        assert collection.id == str(oid)

    def test_to_mongo_dict(self):
        collection = _collection(
            timestamp=datetime(2024, 5, 2, 10, 0, tzinfo=timezone.utc),
            sas_meters=SasMeters(sas_start_time=datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)),
        )
        data = collection.to_mongo_dict()
        assert "_id" not in data
        assert data["timestamp"] == datetime(2024, 5, 2, 10, 0)
        assert data["timestamp"].tzinfo is None
        assert data["sas_meters"]["sas_start_time"] == datetime(2024, 5, 1, 9, 0)
        assert data["movement"] == {"drop": 0, "cancelled_credits": 0, "gross": 0}

    def test_json_dump_is_iso(self):
        collection = _collection(timestamp=datetime(2024, 5, 2, 10, 0, tzinfo=timezone.utc))
        assert collection.model_dump(mode="json")["timestamp"] == "2024-05-02T10:00:00+00:00"


class TestCollectionReport:

    def test_variation(self):
        report = CollectionReport(
            location_report_id="r1",
            location_id="loc1",
            location_name="Harbor Bar",
            collector="sam",
            total_gross=900.5,
            total_sas_gross=880.25,
        )
        assert report.variation == 20.25

    def test_defaults(self):
        report = CollectionReport(
            location_report_id="r1",
            location_id="loc1",
            location_name="Harbor Bar",
            collector="sam",
        )
        assert report.profit_share == 50
        assert report.amount_to_collect == 0
        assert report.machines_collected == 0
        assert report.variation == 0


class TestMongoHelpers:

    def test_to_naive_utc(self):
        plus_two = timezone(timedelta(hours=2))
        assert to_naive_utc(datetime(2024, 1, 1, 12, 0, tzinfo=plus_two)) == datetime(2024, 1, 1, 10, 0)
        assert to_naive_utc(datetime(2024, 1, 1, 12, 0)) == datetime(2024, 1, 1, 12, 0)
        assert to_naive_utc(None) is None

    def test_mongo_ready_recurses(self):
        aware = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        data = mongo_ready({"a": aware, "b": [{"c": aware}], "d": 5})
        assert data == {
            "a": datetime(2024, 1, 1, 12, 0),
            "b": [{"c": datetime(2024, 1, 1, 12, 0)}],
            "d": 5,
        }
