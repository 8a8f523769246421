"""Tests for the staging queue."""
import pytest

from objectanalyzer.models.base import ObjectTypeEnum
from objectanalyzer.models.pending_import import PendingImport
from objectanalyzer.modules.staging import (
    count_pending,
    fetch_pending_batch,
    find_staged,
    stage_object,
    stage_objects,
)


def test_stage_object_sets_defaults(db):
    row = stage_object(db, {"object": "1.2.3.4", "object_type": "ipv4", "source": "feed-a"})
    db.commit()
    assert row.id is not None
    assert row.ip_decimal == 0
    assert row.fidelity == "Low"
    assert row.time_imported is not None
    assert row.notes is None


def test_stage_object_accepts_enum_kind(db):
    row = stage_object(db, {"object": "evil.example", "object_type": ObjectTypeEnum.DOMAIN})
    assert row.object_type == "domain"


def test_unknown_kind_is_staged_for_merge_to_reject(db):
    stage_object(db, {"object": "x", "object_type": "hostname"})
    assert count_pending(db) == 1


def test_missing_required_field_raises(db):
    with pytest.raises(ValueError):
        stage_objects(db, [{"object": "1.2.3.4", "object_type": "ipv4"}, {"object": "5.6.7.8"}])
    db.rollback()
    assert count_pending(db) == 0


def test_fetch_pending_batch_oldest_first_and_bounded(db):
    stage_objects(db, [{"object": f"10.0.0.{i}", "object_type": "ipv4"} for i in range(5)])
    db.commit()
    batch = fetch_pending_batch(db, 3)
    assert [r.object for r in batch] == ["10.0.0.0", "10.0.0.1", "10.0.0.2"]


def test_find_staged_returns_latest_row(db):
    stage_object(db, {"object": "1.2.3.4", "object_type": "ipv4", "notes": "first"})
    stage_object(db, {"object": "1.2.3.4", "object_type": "ipv4", "notes": "second"})
    db.commit()
    row = find_staged(db, "1.2.3.4")
    assert isinstance(row, PendingImport)
    assert row.notes == "second"
    assert find_staged(db, "9.9.9.9") is None
