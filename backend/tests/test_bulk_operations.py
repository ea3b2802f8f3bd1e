from __future__ import annotations

from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.sql.dml import Update

from ims_repairs.domain_errors import BatchTooLarge, FeatureDisabled, NotFound, ValidationError
from ims_repairs.models import BulkOperationLog, WorkOrder, WorkOrderReworkHistory
from ims_repairs.policies import BulkPolicy
from ims_repairs.use_cases import bulk_operations
from ims_repairs.use_cases.bulk_operations import (
    bulk_update_approval_use_case,
    bulk_update_assignment_use_case,
    bulk_update_status_use_case,
    get_bulk_operation_use_case,
    list_bulk_operations_use_case,
)


def _status(db, scope, audit, ids, status="qa", policy=None):
    return bulk_update_status_use_case(
        db=db,
        scope=scope,
        work_order_ids=ids,
        status=status,
        policy=policy or BulkPolicy(),
        audit=audit,
    )


def _approval(db, scope, audit, ids, decision):
    return bulk_update_approval_use_case(
        db=db,
        scope=scope,
        work_order_ids=ids,
        decision=decision,
        policy=BulkPolicy(),
        audit=audit,
    )


def _status_of(db, work_order):
    return db.get(WorkOrder, work_order.id).status


def test_bulk_status_reports_each_id(db, scope, audit, make_work_order) -> None:
    first = make_work_order(status="in_repair")
    second = make_work_order(status="in_repair")
    approved = make_work_order(status="approved")
    missing = str(uuid4())

    result = _status(db, scope, audit, [str(first.id), str(approved.id), str(second.id), missing])

    assert result.succeeded == [str(first.id), str(second.id)]
    assert [(error.id, error.code) for error in result.failed] == [
        (str(approved.id), "INVALID_TRANSITION"),
        (missing, "NOT_FOUND"),
    ]
    assert result.total_count == 4
    assert result.success_count + result.failure_count == result.total_count

    db.expire_all()
    assert _status_of(db, first) == "qa"
    assert _status_of(db, second) == "qa"
    assert _status_of(db, approved) == "approved"
    assert {update[1] for update in audit.updates} == {str(first.id), str(second.id)}


def test_bulk_log_row_is_finalized(db, scope, audit, make_work_order) -> None:
    ok = make_work_order(status="draft")

    result = _status(db, scope, audit, [str(ok.id), "not-a-uuid"], status="assigned")

    log = get_bulk_operation_use_case(db=db, scope=scope, operation_id=result.operation_id)
    assert log.operation_type == "status_update"
    assert log.user_id == scope.user_id
    assert log.requested_ids == [str(ok.id), "not-a-uuid"]
    assert log.successful_ids == [str(ok.id)]
    assert log.failed_ids == ["not-a-uuid"]
    assert log.errors[0]["code"] == "NOT_FOUND"
    assert log.total_count == 2
    assert log.success_count == 1
    assert log.failure_count == 1
    assert log.completed_at is not None
    assert [row.id for row in list_bulk_operations_use_case(db=db, scope=scope)] == [log.id]


def test_duplicate_ids_are_processed_once(db, scope, audit, make_work_order) -> None:
    work_order = make_work_order(status="draft")
    raw = str(work_order.id)

    result = _status(db, scope, audit, [raw, raw.upper(), raw], status="assigned")

    assert result.total_count == 1
    assert result.succeeded == [raw]


def test_empty_batch_is_rejected_without_log(db, scope, audit) -> None:
    with pytest.raises(ValidationError):
        _status(db, scope, audit, [])
    assert db.query(BulkOperationLog).count() == 0


def test_batch_too_large(db, scope, audit) -> None:
    ids = [str(uuid4()) for _ in range(3)]
    with pytest.raises(BatchTooLarge) as exc_info:
        _status(db, scope, audit, ids, policy=BulkPolicy(max_batch_size=2))
    assert exc_info.value.http_status == 413
    assert db.query(BulkOperationLog).count() == 0


def test_status_is_required(db, scope, audit) -> None:
    with pytest.raises(ValidationError):
        _status(db, scope, audit, [str(uuid4())], status=None)


def test_disabled_bulk_operations(db, scope, audit) -> None:
    with pytest.raises(FeatureDisabled):
        _status(db, scope, audit, [str(uuid4())], policy=BulkPolicy(enabled=False))


def test_storage_failure_fails_every_validated_id(db, scope, audit, make_work_order, monkeypatch) -> None:
    first = make_work_order(status="draft")
    second = make_work_order(status="draft")
    bad = make_work_order(status="qa")
    original_execute = db.execute

    def _execute(statement, *args, **kwargs):
        if isinstance(statement, Update):
            raise OperationalError("UPDATE work_orders", {}, Exception("connection lost"))
        return original_execute(statement, *args, **kwargs)

    monkeypatch.setattr(db, "execute", _execute)
    result = _status(db, scope, audit, [str(first.id), str(second.id), str(bad.id)], status="assigned")
    monkeypatch.undo()

    assert result.succeeded == []
    assert [(error.id, error.code) for error in result.failed] == [
        (str(first.id), "STORAGE_ERROR"),
        (str(second.id), "STORAGE_ERROR"),
        (str(bad.id), "INVALID_TRANSITION"),
    ]
    assert audit.updates == []

    db.expire_all()
    assert _status_of(db, first) == "draft"
    log = db.get(BulkOperationLog, result.operation_id)
    assert log.failure_count == 3
    assert log.success_count == 0


def test_bulk_assignment(db, scope, audit, make_work_order) -> None:
    first = make_work_order()
    second = make_work_order(status="qa")

    result = bulk_update_assignment_use_case(
        db=db,
        scope=scope,
        work_order_ids=[str(first.id), str(second.id)],
        assigned_staff_id="staff-9",
        service_shop_id=None,
        policy=BulkPolicy(),
        audit=audit,
    )

    assert result.success_count == 2
    db.expire_all()
    assert db.get(WorkOrder, first.id).assigned_staff_id == "staff-9"
    assert db.get(WorkOrder, second.id).service_shop_id == "shop-1"


def test_bulk_assignment_requires_a_field(db, scope, audit) -> None:
    with pytest.raises(ValidationError):
        bulk_update_assignment_use_case(
            db=db,
            scope=scope,
            work_order_ids=[str(uuid4())],
            assigned_staff_id=None,
            service_shop_id=None,
            policy=BulkPolicy(),
            audit=audit,
        )


def test_bulk_approval_only_touches_completed(db, scope, audit, make_work_order) -> None:
    completed = make_work_order(status="completed", approval_status="pending")
    in_qa = make_work_order(status="qa")

    result = _approval(db, scope, audit, [str(completed.id), str(in_qa.id)], "approved")

    assert result.succeeded == [str(completed.id)]
    assert result.failed[0].code == "INVALID_TRANSITION"
    db.expire_all()
    approved = db.get(WorkOrder, completed.id)
    assert approved.status == "approved"
    assert approved.approval_status == "approved"


def test_bulk_rejection_returns_to_qa_without_rework_history(db, scope, audit, make_work_order) -> None:
    completed = make_work_order(status="completed", approval_status="pending")

    result = _approval(db, scope, audit, [str(completed.id)], "rejected")

    assert result.success_count == 1
    db.expire_all()
    rejected = db.get(WorkOrder, completed.id)
    assert rejected.status == "qa"
    assert rejected.approval_status == "rejected"
    assert rejected.rework_count == 0
    assert db.query(WorkOrderReworkHistory).count() == 0


def test_bulk_approval_requires_decision(db, scope, audit) -> None:
    with pytest.raises(ValidationError):
        _approval(db, scope, audit, [str(uuid4())], None)


def test_unknown_bulk_operation_is_not_found(db, scope) -> None:
    with pytest.raises(NotFound):
        get_bulk_operation_use_case(db=db, scope=scope, operation_id=uuid4())


def test_log_row_is_closed_when_loading_fails(db, scope, audit, make_work_order, monkeypatch) -> None:
    work_order = make_work_order(status="draft")

    def _broken_load(*_args, **_kwargs):
        raise OperationalError("SELECT work_orders", {}, Exception("connection lost"))

    monkeypatch.setattr(bulk_operations, "_load_work_orders", _broken_load)
    with pytest.raises(OperationalError):
        _status(db, scope, audit, [str(work_order.id)], status="assigned")
    monkeypatch.undo()

    log = db.query(BulkOperationLog).one()
    assert log.completed_at is not None
    assert log.success_count == 0
    assert log.failure_count == 1
    assert log.failed_ids == [str(work_order.id)]
    assert log.errors[0]["code"] == "STORAGE_ERROR"
    assert audit.updates == []
    db.expire_all()
    assert _status_of(db, work_order) == "draft"
