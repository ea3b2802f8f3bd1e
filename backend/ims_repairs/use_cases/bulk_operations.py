"""Bulk work order operations with per-id outcomes and a persistent log.

Flow for every operation: validate the request, commit a log row, load the
named work orders in one query, validate each id on its own, apply a single
multi-row UPDATE, finalize the log row, then audit each changed work order.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..auth import RequestScope
from ..database import transaction
from ..domain_errors import BatchTooLarge, FeatureDisabled, NotFound, ValidationError
from ..models import BulkOperationLog, WorkOrder
from ..policies import BulkPolicy
from ..schemas import BulkOperationError, BulkOperationResult
from ..services.audit import AuditLogger, audit_update
from ..services.status_rules import (
    APPROVAL_APPROVED,
    APPROVAL_REJECTED,
    APPROVED,
    COMPLETED,
    QA,
    WORK_ORDER_STATUSES,
    can_transition,
    forward_sources,
    normalize_status,
)
from .work_order_lifecycle import WORK_ORDER_ENTITY, now_utc, parse_uuid, work_order_snapshot

logger = logging.getLogger(__name__)

OP_STATUS_UPDATE = "status_update"
OP_ASSIGNMENT = "assignment"
OP_APPROVAL = "approval"

ERR_NOT_FOUND = "NOT_FOUND"
ERR_INVALID_TRANSITION = "INVALID_TRANSITION"
ERR_STORAGE = "STORAGE_ERROR"


@dataclass
class _BulkPlan:
    """What one bulk call wants to write, and which rows it may touch."""

    operation_type: str
    values: dict[str, Any]
    # Returns an error (code, message) when the work order must be skipped.
    check: Callable[[WorkOrder], tuple[str, str] | None]
    # Extra WHERE clauses re-checked by the UPDATE itself.
    guards: tuple = ()


def _dedupe_ids(work_order_ids: list[str]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for raw in work_order_ids:
        value = str(raw).strip()
        try:
            value = str(UUID(value))
        except ValueError:
            pass
        if value and value not in seen:
            seen.add(value)
            ordered.append(value)
    return ordered


def _check_batch(policy: BulkPolicy, work_order_ids: list[str]) -> list[str]:
    if not policy.enabled:
        raise FeatureDisabled("Bulk operations are disabled")
    ids = _dedupe_ids(work_order_ids or [])
    if not ids:
        raise ValidationError("work_order_ids must not be empty")
    if len(ids) > policy.max_batch_size:
        raise BatchTooLarge(
            f"Batch exceeds maximum of {policy.max_batch_size} work orders",
            details={"max_batch_size": policy.max_batch_size, "requested": len(ids)},
        )
    return ids


def _open_log(db: Session, *, scope: RequestScope, operation_type: str, ids: list[str]) -> BulkOperationLog:
    with transaction(db):
        log = BulkOperationLog(
            tenant_id=scope.tenant_id,
            user_id=scope.user_id,
            operation_type=operation_type,
            entity_type=WORK_ORDER_ENTITY,
            requested_ids=list(ids),
            successful_ids=[],
            failed_ids=[],
            errors=[],
            started_at=now_utc(),
            total_count=len(ids),
            success_count=0,
            failure_count=0,
        )
        db.add(log)
        db.flush()
    return log


def _load_work_orders(db: Session, *, scope: RequestScope, ids: list[str]) -> dict[str, WorkOrder]:
    parsed: list[UUID] = []
    for value in ids:
        try:
            parsed.append(parse_uuid(value, what="Work order"))
        except NotFound:
            continue
    if not parsed:
        return {}
    rows = db.query(WorkOrder).filter(
        WorkOrder.tenant_id == scope.tenant_id,
        WorkOrder.school_id == scope.school_id,
        WorkOrder.id.in_(parsed),
    ).all()
    return {str(row.id): row for row in rows}


def _close_log(
    db: Session,
    log: BulkOperationLog,
    *,
    succeeded: list[str],
    errors: list[BulkOperationError],
) -> None:
    with transaction(db):
        log.successful_ids = list(succeeded)
        log.failed_ids = [error.id for error in errors]
        log.errors = [error.model_dump() for error in errors]
        log.success_count = len(succeeded)
        log.failure_count = len(errors)
        log.completed_at = now_utc()


def _apply_plan(
    *,
    db: Session,
    scope: RequestScope,
    ids: list[str],
    plan: _BulkPlan,
    operation_id: UUID,
) -> tuple[list[str], list[BulkOperationError], dict[UUID, tuple[str, dict[str, Any]]]]:
    found = _load_work_orders(db, scope=scope, ids=ids)
    errors: list[BulkOperationError] = []
    candidates: dict[UUID, tuple[str, dict[str, Any]]] = {}
    for raw_id in ids:
        work_order = found.get(raw_id)
        if work_order is None:
            errors.append(BulkOperationError(id=raw_id, code=ERR_NOT_FOUND, message="work order not found"))
            continue
        problem = plan.check(work_order)
        if problem is not None:
            code, message = problem
            errors.append(BulkOperationError(id=raw_id, code=code, message=message))
            continue
        candidates[work_order.id] = (raw_id, work_order_snapshot(work_order))

    succeeded: list[str] = []
    if candidates:
        try:
            with transaction(db):
                changed = db.execute(
                    update(WorkOrder)
                    .where(
                        WorkOrder.tenant_id == scope.tenant_id,
                        WorkOrder.school_id == scope.school_id,
                        WorkOrder.id.in_(list(candidates)),
                        *plan.guards,
                    )
                    .values(**plan.values, updated_at=now_utc())
                    .returning(WorkOrder.id)
                    .execution_options(synchronize_session=False)
                ).scalars().all()
        except SQLAlchemyError:
            logger.exception(
                "bulk.%s storage failure operation=%s ids=%s",
                plan.operation_type,
                operation_id,
                len(candidates),
            )
            for raw_id, _before in candidates.values():
                errors.append(BulkOperationError(id=raw_id, code=ERR_STORAGE, message="failed to apply update"))
        else:
            changed_ids = set(changed)
            for work_order_id, (raw_id, _before) in candidates.items():
                if work_order_id in changed_ids:
                    succeeded.append(raw_id)
                else:
                    errors.append(
                        BulkOperationError(
                            id=raw_id,
                            code=ERR_INVALID_TRANSITION,
                            message="work order changed concurrently",
                        )
                    )

    # Keep request order in the reported lists.
    order = {raw_id: index for index, raw_id in enumerate(ids)}
    succeeded.sort(key=order.__getitem__)
    errors.sort(key=lambda error: order[error.id])
    return succeeded, errors, candidates


def _run_bulk(
    *,
    db: Session,
    scope: RequestScope,
    work_order_ids: list[str],
    plan: _BulkPlan,
    policy: BulkPolicy,
    audit: AuditLogger,
) -> BulkOperationResult:
    ids = _check_batch(policy, work_order_ids)
    log = _open_log(db, scope=scope, operation_type=plan.operation_type, ids=ids)
    operation_id = log.id

    try:
        succeeded, errors, candidates = _apply_plan(
            db=db,
            scope=scope,
            ids=ids,
            plan=plan,
            operation_id=operation_id,
        )
    except Exception:
        # An aborted run still leaves a closed log row: every id counts as failed.
        logger.exception("bulk.%s aborted operation=%s", plan.operation_type, operation_id)
        db.rollback()
        aborted = [BulkOperationError(id=raw_id, code=ERR_STORAGE, message="bulk operation aborted") for raw_id in ids]
        _close_log(db, log, succeeded=[], errors=aborted)
        raise

    _close_log(db, log, succeeded=succeeded, errors=errors)

    logger.info(
        "bulk.%s completed operation=%s total=%s success=%s failure=%s",
        plan.operation_type,
        operation_id,
        len(ids),
        len(succeeded),
        len(errors),
    )

    succeeded_set = set(succeeded)
    for work_order_id, (raw_id, before) in candidates.items():
        if raw_id not in succeeded_set:
            continue
        after = {**before, **plan.values, "bulk_operation_id": str(operation_id)}
        audit_update(audit, WORK_ORDER_ENTITY, work_order_id, before, after)

    return BulkOperationResult(
        operation_id=operation_id,
        succeeded=succeeded,
        failed=errors,
        total_count=len(ids),
        success_count=len(succeeded),
        failure_count=len(errors),
    )


def bulk_update_status_use_case(
    *,
    db: Session,
    scope: RequestScope,
    work_order_ids: list[str],
    status: str | None,
    policy: BulkPolicy,
    audit: AuditLogger,
) -> BulkOperationResult:
    """Move many work orders along one forward edge each."""
    if not status:
        raise ValidationError("status is required")
    target = normalize_status(status)
    if target not in WORK_ORDER_STATUSES:
        raise ValidationError(f"Unknown work order status: {status}")

    def check(work_order: WorkOrder) -> tuple[str, str] | None:
        current = normalize_status(work_order.status)
        if not can_transition(current, target):
            return ERR_INVALID_TRANSITION, f"invalid status transition from {current} to {target}"
        return None

    plan = _BulkPlan(
        operation_type=OP_STATUS_UPDATE,
        values={"status": target},
        check=check,
        guards=(WorkOrder.status.in_(sorted(forward_sources(target))),),
    )
    return _run_bulk(
        db=db,
        scope=scope,
        work_order_ids=work_order_ids,
        plan=plan,
        policy=policy,
        audit=audit,
    )


def bulk_update_assignment_use_case(
    *,
    db: Session,
    scope: RequestScope,
    work_order_ids: list[str],
    assigned_staff_id: str | None,
    service_shop_id: str | None,
    policy: BulkPolicy,
    audit: AuditLogger,
) -> BulkOperationResult:
    values: dict[str, Any] = {}
    if assigned_staff_id is not None:
        values["assigned_staff_id"] = assigned_staff_id.strip() or None
    if service_shop_id is not None:
        values["service_shop_id"] = service_shop_id.strip() or None
    if not values:
        raise ValidationError("assigned_staff_id or service_shop_id is required")

    plan = _BulkPlan(
        operation_type=OP_ASSIGNMENT,
        values=values,
        check=lambda _work_order: None,
    )
    return _run_bulk(
        db=db,
        scope=scope,
        work_order_ids=work_order_ids,
        plan=plan,
        policy=policy,
        audit=audit,
    )


def bulk_update_approval_use_case(
    *,
    db: Session,
    scope: RequestScope,
    work_order_ids: list[str],
    decision: str | None,
    policy: BulkPolicy,
    audit: AuditLogger,
) -> BulkOperationResult:
    """Approve or reject completed work orders.

    Approval moves a work order to ``approved``; rejection sends it back to
    ``qa``. Both record the decision in ``approval_status``. A bulk rejection
    does not count as rework and writes no rework history.
    """
    if decision == "approved":
        values = {"status": APPROVED, "approval_status": APPROVAL_APPROVED}
    elif decision == "rejected":
        values = {"status": QA, "approval_status": APPROVAL_REJECTED}
    else:
        raise ValidationError("decision must be approved or rejected", details={"decision": decision})

    def check(work_order: WorkOrder) -> tuple[str, str] | None:
        current = normalize_status(work_order.status)
        if current != COMPLETED:
            return ERR_INVALID_TRANSITION, f"work order must be completed for approval (status {current})"
        return None

    plan = _BulkPlan(
        operation_type=OP_APPROVAL,
        values=values,
        check=check,
        guards=(WorkOrder.status == COMPLETED,),
    )
    return _run_bulk(
        db=db,
        scope=scope,
        work_order_ids=work_order_ids,
        plan=plan,
        policy=policy,
        audit=audit,
    )


def get_bulk_operation_use_case(*, db: Session, scope: RequestScope, operation_id: UUID | str) -> BulkOperationLog:
    log = db.query(BulkOperationLog).filter(
        BulkOperationLog.id == parse_uuid(operation_id, what="Bulk operation"),
        BulkOperationLog.tenant_id == scope.tenant_id,
    ).first()
    if not log:
        raise NotFound("Bulk operation not found", details={"id": str(operation_id)})
    return log


def list_bulk_operations_use_case(
    *,
    db: Session,
    scope: RequestScope,
    limit: int = 50,
) -> list[BulkOperationLog]:
    return (
        db.query(BulkOperationLog)
        .filter(BulkOperationLog.tenant_id == scope.tenant_id)
        .order_by(BulkOperationLog.started_at.desc())
        .limit(max(1, min(limit, 200)))
        .all()
    )
