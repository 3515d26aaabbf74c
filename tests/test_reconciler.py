import pytest

from featuresync.domain.models import FieldUpdate, Record, UpdateBatch
from featuresync.domain.planning.differ import FieldDiffer
from featuresync.domain.planning.matcher import SnapshotIndex
from featuresync.domain.planning.reconciler import Reconciler

EDITABLE = ("room_name", "use_type_new", "status")


def rec(identifier, **attrs) -> Record:
    return Record(id=identifier, attributes={"objectid": identifier, **attrs})


def make_reconciler() -> Reconciler:
    return Reconciler(id_field="objectid", editable_fields=EDITABLE)


def test_only_changed_field_is_sent():
    authoritative = [rec(1, room_name="A", status="open")]
    incoming = [rec("1", room_name="B", status="open")]

    plan = make_reconciler().reconcile(authoritative, incoming)

    assert len(plan.batch) == 1
    update = plan.batch[0]
    assert update.id == 1
    assert dict(update.changes) == {"room_name": "B"}
    assert plan.batch.to_payload() == [{"attributes": {"objectid": 1, "room_name": "B"}}]


def test_non_editable_fields_are_ignored():
    authoritative = [rec(1, room_name="A", floor=1)]
    incoming = [rec(1, room_name="A", floor="9")]

    plan = make_reconciler().reconcile(authoritative, incoming)

    assert not plan.batch
    assert plan.unchanged == 1


def test_unmatched_records_are_skipped_not_created():
    authoritative = [rec(1, status="open")]
    incoming = [rec(2, status="closed"), rec(1, status="closed")]

    plan = make_reconciler().reconcile(authoritative, incoming)

    assert plan.unmatched_ids == [2]
    assert plan.batch.ids() == [1]
    assert plan.matched == 1
    assert plan.incoming_total == 2


def test_identical_snapshots_give_empty_batch():
    authoritative = [rec(1, room_name="A", status="open"), rec(2, room_name="B", status="")]
    incoming = [rec("1", room_name="A", status="open"), rec("2.0", room_name="B", status=None)]

    plan = make_reconciler().reconcile(authoritative, incoming)

    assert len(plan.batch) == 0
    assert plan.unchanged == 2


def test_batch_follows_incoming_order():
    authoritative = [rec(1, status="a"), rec(2, status="a"), rec(3, status="a")]
    incoming = [rec(3, status="b"), rec(1, status="b"), rec(2, status="b")]

    plan = make_reconciler().reconcile(authoritative, incoming)

    assert plan.batch.ids() == [3, 1, 2]


def test_repeated_incoming_identifier_uses_first_occurrence():
    authoritative = [rec(1, status="open")]
    incoming = [rec("1", status="closed"), rec(1, status="archived")]

    plan = make_reconciler().reconcile(authoritative, incoming)

    assert len(plan.batch) == 1
    assert dict(plan.batch[0].changes) == {"status": "closed"}
    assert plan.duplicate_ids == [1]


def test_missing_column_is_not_compared():
    authoritative = [rec(1, room_name="A", status="open")]
    incoming = [Record(id="1", attributes={"objectid": "1", "status": "closed"})]

    plan = make_reconciler().reconcile(authoritative, incoming)

    assert dict(plan.batch[0].changes) == {"status": "closed"}


def test_identifier_field_is_never_editable():
    reconciler = Reconciler(id_field="objectid", editable_fields=("objectid", "status"))

    assert reconciler.editable_fields == ("status",)


def test_differ_keeps_allowlist_order():
    differ = FieldDiffer(("status", "room_name"))

    changes = differ.calculate_changes(rec(1, room_name="A", status="a"), rec(1, room_name="B", status="b"))

    assert list(changes) == ["status", "room_name"]


def test_snapshot_index_lookup_normalizes_numeric_ids():
    index = SnapshotIndex([rec(5, status="x"), rec(5.0, status="y")])

    assert index.find("5.0").get("status") == "x"
    assert 5 in index
    assert index.duplicate_ids == [5.0]
    assert len(index) == 1


def test_distinct_string_ids_are_not_merged():
    authoritative = [
        Record(id="007", attributes={"code": "007", "status": "open"}),
        Record(id="7", attributes={"code": "7", "status": "open"}),
    ]
    incoming = [Record(id="7", attributes={"code": "7", "status": "closed"})]

    plan = Reconciler("code", ("status",)).reconcile(authoritative, incoming)

    assert plan.batch.to_payload() == [{"attributes": {"code": "7", "status": "closed"}}]
    assert SnapshotIndex(authoritative).duplicate_ids == []


def test_string_store_id_is_not_matched_by_number_form():
    authoritative = [Record(id="007", attributes={"code": "007", "status": "open"})]
    incoming = [Record(id="7", attributes={"code": "7", "status": "closed"})]

    plan = Reconciler("code", ("status",)).reconcile(authoritative, incoming)

    assert not plan.batch
    assert plan.unmatched_ids == ["7"]


def test_field_update_requires_changes():
    with pytest.raises(ValueError):
        FieldUpdate(id_field="objectid", id=1, changes={})
    with pytest.raises(ValueError):
        FieldUpdate(id_field="objectid", id=1, changes={"objectid": 2})


def test_update_batch_rejects_duplicates_and_foreign_fields():
    batch = UpdateBatch(EDITABLE)
    batch.add(FieldUpdate(id_field="objectid", id=1, changes={"status": "a"}))

    with pytest.raises(ValueError):
        batch.add(FieldUpdate(id_field="objectid", id=1.0, changes={"status": "b"}))
    with pytest.raises(ValueError):
        batch.add(FieldUpdate(id_field="objectid", id=2, changes={"floor": 3}))
    assert len(batch) == 1
