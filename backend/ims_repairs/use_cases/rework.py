"""Rework: send a work order back to an earlier status with a reason.

The history row and the work order update are written in one transaction;
the work order update is a compare-and-swap on status and rework_count so two
concurrent rejections cannot both succeed.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..auth import RequestScope
from ..database import transaction
from ..domain_errors import (
    FeatureDisabled,
    InvalidTransition,
    ReworkLimitExceeded,
    ValidationError,
)
from ..models import WorkOrder, WorkOrderReworkHistory
from ..policies import ReworkPolicy
from ..services.audit import AuditLogger, audit_update
from ..services.status_rules import (
    can_rework_to,
    ensure_rework_budget,
    normalize_rejection_category,
    normalize_status,
    parse_requested_status,
)
from .work_order_lifecycle import WORK_ORDER_ENTITY, get_work_order_or_404, now_utc, work_order_snapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReworkResult:
    work_order: WorkOrder
    history: WorkOrderReworkHistory


def _next_rework_sequence(db: Session, work_order_id: UUID) -> int:
    current = db.query(func.coalesce(func.max(WorkOrderReworkHistory.rework_sequence), 0)).filter(
        WorkOrderReworkHistory.work_order_id == work_order_id
    ).scalar()
    return int(current or 0) + 1


def reject_for_rework_use_case(
    *,
    db: Session,
    scope: RequestScope,
    work_order_id: UUID | str,
    target_status: str,
    reason: str | None,
    category: str | None,
    policy: ReworkPolicy,
    audit: AuditLogger,
) -> ReworkResult:
    """Move a work order backwards along the rework table and journal it."""
    if not policy.enabled:
        raise FeatureDisabled("Rework is disabled")

    reason_text = (reason or "").strip()
    if policy.require_reason and not reason_text:
        raise ValidationError("rejection reason is required")
    try:
        rejection_category = normalize_rejection_category(category)
    except ValueError as error:
        raise ValidationError(str(error), details={"category": category}) from error
    try:
        target = parse_requested_status(target_status)
    except ValueError as error:
        raise ValidationError(str(error), details={"target_status": target_status}) from error

    with transaction(db):
        work_order = get_work_order_or_404(db=db, scope=scope, work_order_id=work_order_id)
        before = work_order_snapshot(work_order)
        current = normalize_status(work_order.status)
        if not can_rework_to(current, target, transitions=policy.transitions):
            raise InvalidTransition(
                f"Cannot send work order back from {current} to {target}",
                details={"from": current, "to": target},
            )

        rework_count = int(work_order.rework_count or 0)
        try:
            ensure_rework_budget(rework_count=rework_count, max_rework_count=policy.max_rework_count)
        except ValueError as error:
            raise ReworkLimitExceeded(
                str(error),
                details={"rework_count": rework_count, "max_rework_count": policy.max_rework_count},
            ) from error

        rejected_at = now_utc()
        history = WorkOrderReworkHistory(
            tenant_id=scope.tenant_id,
            school_id=scope.school_id,
            work_order_id=work_order.id,
            from_status=current,
            to_status=target,
            rejection_reason=reason_text or None,
            rejection_category=rejection_category,
            rejected_by_user_id=scope.user_id,
            rejected_by_name=scope.user_name,
            rework_sequence=_next_rework_sequence(db, work_order.id),
        )
        db.add(history)
        try:
            db.flush()
        except IntegrityError as error:
            raise InvalidTransition(
                "Work order was reworked concurrently",
                details={"from": current, "to": target},
            ) from error

        result = db.execute(
            update(WorkOrder)
            .where(
                WorkOrder.id == work_order.id,
                WorkOrder.status == current,
                WorkOrder.rework_count == rework_count,
            )
            .values(
                status=target,
                rework_count=rework_count + 1,
                last_rework_at=rejected_at,
                last_rework_reason=reason_text or None,
                updated_at=rejected_at,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise InvalidTransition(
                "Work order changed concurrently",
                details={"from": current, "to": target},
            )
    db.refresh(work_order)
    db.refresh(history)

    logger.info(
        "rework.rejected work_order=%s from=%s to=%s sequence=%s category=%s",
        work_order.id,
        history.from_status,
        history.to_status,
        history.rework_sequence,
        history.rejection_category,
    )
    after = {
        **work_order_snapshot(work_order),
        "action": "reject",
        "reason": history.rejection_reason,
        "category": history.rejection_category,
        "rework_sequence": history.rework_sequence,
    }
    audit_update(audit, WORK_ORDER_ENTITY, work_order.id, before, after)
    return ReworkResult(work_order=work_order, history=history)


def list_rework_history_use_case(
    *,
    db: Session,
    scope: RequestScope,
    work_order_id: UUID | str,
) -> list[WorkOrderReworkHistory]:
    work_order = get_work_order_or_404(db=db, scope=scope, work_order_id=work_order_id)
    return (
        db.query(WorkOrderReworkHistory)
        .filter(
            WorkOrderReworkHistory.work_order_id == work_order.id,
            WorkOrderReworkHistory.tenant_id == scope.tenant_id,
        )
        .order_by(WorkOrderReworkHistory.rework_sequence.desc())
        .all()
    )
