"""Tests for the weekly occurrence bucket registry."""
from datetime import datetime

from sqlalchemy import inspect

from objectanalyzer.modules.weekly_buckets import BucketKey, BucketRegistry, bucket_registry


def _row(obj: str, **overrides) -> dict:
    row = {
        "object": obj,
        "object_type": "ipv4",
        "ip_decimal": 0,
        "notes": None,
        "source": "test",
        "fidelity": "Low",
        "time_imported": datetime(2026, 3, 18, 12, 0),
        "time_provided": None,
    }
    row.update(overrides)
    return row


class TestBucketKey:
    def test_iso_week_and_year(self):
        assert BucketKey.for_datetime(datetime(2026, 3, 18)) == BucketKey(year=2026, week=12)

    def test_iso_year_differs_from_calendar_year_at_boundary(self):
        # 2021-01-01 is a Friday in ISO week 53 of 2020
        key = BucketKey.for_datetime(datetime(2021, 1, 1))
        assert key == BucketKey(year=2020, week=53)
        assert key.table_name == "objects_53_2020"

    def test_table_name_is_unpadded_week_then_year(self):
        assert BucketKey(year=2026, week=3).table_name == "objects_3_2026"

    def test_from_table_name(self):
        assert BucketKey.from_table_name("objects_3_2026") == BucketKey(2026, 3)
        assert BucketKey.from_table_name("object_intel") is None
        assert BucketKey.from_table_name("objects_x_2026") is None


class TestBucketRegistry:
    def test_absent_bucket(self, db):
        key = BucketKey(2026, 12)
        assert not bucket_registry.exists(db, key)
        assert bucket_registry.count_matching(db, key, "1.2.3.4") == 0

    def test_ensure_creates_table_once(self, db):
        key = BucketKey(2026, 12)
        bucket_registry.ensure(db, key)
        bucket_registry.ensure(db, key)
        db.commit()
        assert bucket_registry.exists(db, key)
        assert inspect(db.get_bind()).has_table("objects_12_2026")

    def test_count_matches_exact_object_string(self, db):
        key = BucketKey(2026, 12)
        handle = bucket_registry.ensure(db, key)
        handle.append(**_row("1.2.3.4"))
        handle.append(**_row("1.2.3.4"))
        handle.append(**_row("1.2.3.40"))
        db.commit()
        assert handle.count_matching("1.2.3.4") == 2
        assert bucket_registry.count_matching(db, key, "1.2.3.40") == 1
        assert bucket_registry.count_matching(db, key, "9.9.9.9") == 0

    def test_rolled_back_creation_leaves_no_bucket(self, db):
        key = BucketKey(2026, 13)
        # Start a write transaction so the DDL joins it
        bucket_registry.ensure(db, BucketKey(2026, 12)).append(**_row("1.2.3.4"))
        bucket_registry.ensure(db, key)
        db.rollback()
        assert not bucket_registry.exists(db, key)

    def test_list_buckets_newest_first(self, db):
        for key in (BucketKey(2025, 52), BucketKey(2026, 2), BucketKey(2026, 1)):
            bucket_registry.ensure(db, key)
        db.commit()
        assert bucket_registry.list_buckets(db) == [
            BucketKey(2026, 2),
            BucketKey(2026, 1),
            BucketKey(2025, 52),
        ]

    def test_registries_share_no_state(self, db):
        other = BucketRegistry()
        key = BucketKey(2026, 12)
        assert other.table_for(key) is not bucket_registry.table_for(key)
        assert other.table_for(key) is other.table_for(key)
