from __future__ import annotations

import pytest

from ims_repairs.domain_errors import (
    FeatureDisabled,
    InvalidTransition,
    ReworkLimitExceeded,
    ValidationError,
)
from ims_repairs.models import ImmutableRecordError, WorkOrderReworkHistory
from ims_repairs.policies import ReworkPolicy
from ims_repairs.use_cases.rework import list_rework_history_use_case, reject_for_rework_use_case
from ims_repairs.use_cases.work_order_lifecycle import transition_status_use_case


def _reject(db, scope, audit, work_order, target, *, reason="bad solder", category=None, policy=None):
    return reject_for_rework_use_case(
        db=db,
        scope=scope,
        work_order_id=work_order.id,
        target_status=target,
        reason=reason,
        category=category,
        policy=policy or ReworkPolicy(),
        audit=audit,
    )


def test_reject_moves_back_and_journals(db, scope, audit, make_work_order) -> None:
    work_order = make_work_order(status="qa")

    result = _reject(db, scope, audit, work_order, "in_repair", category="defect")

    assert result.work_order.status == "in_repair"
    assert result.work_order.rework_count == 1
    assert result.work_order.last_rework_reason == "bad solder"
    assert result.work_order.last_rework_at is not None
    assert result.history.from_status == "qa"
    assert result.history.to_status == "in_repair"
    assert result.history.rework_sequence == 1
    assert result.history.rejection_category == "defect"
    assert result.history.rejected_by_user_id == scope.user_id
    assert result.history.rejected_by_name == scope.user_name
    assert audit.updates[0][2]["status"] == "qa"
    assert audit.updates[0][3]["status"] == "in_repair"
    assert audit.updates[0][3]["action"] == "reject"
    assert audit.updates[0][3]["reason"] == "bad solder"
    assert audit.updates[0][3]["category"] == "defect"
    assert audit.updates[0][3]["rework_sequence"] == 1


def test_rework_limit_and_count_matches_history(db, scope, audit, make_work_order) -> None:
    policy = ReworkPolicy(max_rework_count=2)
    work_order = make_work_order(status="qa")

    for _ in range(2):
        _reject(db, scope, audit, work_order, "in_repair", policy=policy)
        transition_status_use_case(db=db, scope=scope, work_order_id=work_order.id, next_status="qa", audit=audit)

    with pytest.raises(ReworkLimitExceeded):
        _reject(db, scope, audit, work_order, "in_repair", policy=policy)

    db.refresh(work_order)
    history = list_rework_history_use_case(db=db, scope=scope, work_order_id=work_order.id)
    assert work_order.status == "qa"
    assert work_order.rework_count == 2
    assert [entry.rework_sequence for entry in history] == [2, 1]


def test_reject_outside_rework_table_is_invalid(db, scope, audit, make_work_order) -> None:
    work_order = make_work_order(status="assigned")

    with pytest.raises(InvalidTransition):
        _reject(db, scope, audit, work_order, "qa")

    db.refresh(work_order)
    assert work_order.rework_count == 0
    assert db.query(WorkOrderReworkHistory).count() == 0


def test_reason_is_required_by_default(db, scope, audit, make_work_order) -> None:
    work_order = make_work_order(status="completed")

    with pytest.raises(ValidationError, match="reason"):
        _reject(db, scope, audit, work_order, "qa", reason="   ")

    result = _reject(
        db,
        scope,
        audit,
        work_order,
        "qa",
        reason="",
        policy=ReworkPolicy(require_reason=False),
    )
    assert result.history.rejection_reason is None
    assert result.history.rejection_category == "other"


def test_invalid_category_is_rejected(db, scope, audit, make_work_order) -> None:
    work_order = make_work_order(status="completed")

    with pytest.raises(ValidationError):
        _reject(db, scope, audit, work_order, "qa", category="cosmetic")

    result = _reject(db, scope, audit, work_order, "qa", category="incorrect-part")
    assert result.history.rejection_category == "incorrect_part"


def test_disabled_rework_is_refused(db, scope, audit, make_work_order) -> None:
    work_order = make_work_order(status="qa")

    with pytest.raises(FeatureDisabled):
        _reject(db, scope, audit, work_order, "in_repair", policy=ReworkPolicy(enabled=False))


def test_custom_backward_table(db, scope, audit, make_work_order) -> None:
    policy = ReworkPolicy(transitions={"qa": frozenset({"draft"})})
    work_order = make_work_order(status="qa")

    with pytest.raises(InvalidTransition):
        _reject(db, scope, audit, work_order, "in_repair", policy=policy)
    assert _reject(db, scope, audit, work_order, "draft", policy=policy).work_order.status == "draft"


def test_rework_history_is_append_only(db, scope, audit, make_work_order) -> None:
    work_order = make_work_order(status="approved")
    history = _reject(db, scope, audit, work_order, "completed").history

    history.rejection_reason = "rewritten"
    with pytest.raises(ImmutableRecordError):
        db.flush()
    db.rollback()

    db.delete(history)
    with pytest.raises(ImmutableRecordError):
        db.flush()
    db.rollback()

    assert db.query(WorkOrderReworkHistory).count() == 1


@pytest.mark.parametrize("target", ["", "   ", None, "shipped"])
def test_blank_or_unknown_target_is_rejected(db, scope, audit, make_work_order, target) -> None:
    work_order = make_work_order(status="assigned")

    with pytest.raises(ValidationError):
        _reject(db, scope, audit, work_order, target)

    db.refresh(work_order)
    assert work_order.status == "assigned"
    assert work_order.rework_count == 0
    assert db.query(WorkOrderReworkHistory).count() == 0
    assert audit.updates == []


def test_reworking_approved_order_keeps_approval_status(db, scope, audit, make_work_order) -> None:
    work_order = make_work_order(status="approved", approval_status="approved")

    result = _reject(db, scope, audit, work_order, "completed")

    assert result.work_order.status == "completed"
    assert result.work_order.approval_status == "approved"
