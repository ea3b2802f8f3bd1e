"""Work order lifecycle use-cases: creation, forward transitions, approvals,
deliverables and the phase completion gate."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from ..auth import RequestScope
from ..database import transaction
from ..domain_errors import InvalidTransition, NotFound, PhaseBlocked, ValidationError
from ..models import ServicePhase, WorkOrder, WorkOrderApproval, WorkOrderDeliverable
from ..schemas import (
    DeliverableCreate,
    DeliverableReview,
    DeliverableSubmit,
    WorkOrderCreate,
)
from ..services.audit import AuditLogger, audit_create, audit_update
from ..services.status_rules import (
    APPROVAL_PENDING,
    DRAFT,
    APPROVAL_DECISIONS,
    DEFAULT_APPROVAL_TYPE,
    normalize_status,
    phase_blockers,
    validate_forward_transition,
)

WORK_ORDER_ENTITY = "work_order"
APPROVAL_ENTITY = "work_order_approval"

SNAPSHOT_FIELDS: tuple[str, ...] = (
    "id",
    "status",
    "approval_status",
    "service_shop_id",
    "assigned_staff_id",
    "phase_id",
    "rework_count",
)


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def work_order_snapshot(work_order: WorkOrder) -> dict[str, Any]:
    return {field: getattr(work_order, field) for field in SNAPSHOT_FIELDS}


def parse_uuid(value: UUID | str, *, what: str) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError as error:
        raise NotFound(f"{what} not found", details={"id": str(value)}) from error


def get_work_order_or_404(*, db: Session, scope: RequestScope, work_order_id: UUID | str) -> WorkOrder:
    work_order = db.query(WorkOrder).filter(
        WorkOrder.id == parse_uuid(work_order_id, what="Work order"),
        WorkOrder.tenant_id == scope.tenant_id,
        WorkOrder.school_id == scope.school_id,
    ).first()
    if not work_order:
        raise NotFound("Work order not found", details={"id": str(work_order_id)})
    return work_order


def create_work_order_use_case(
    *,
    db: Session,
    scope: RequestScope,
    payload: WorkOrderCreate,
    audit: AuditLogger,
) -> WorkOrder:
    """Create a work order in draft."""
    with transaction(db):
        if payload.phase_id is not None:
            phase = db.query(ServicePhase).filter(
                ServicePhase.id == payload.phase_id,
                ServicePhase.tenant_id == scope.tenant_id,
            ).first()
            if not phase:
                raise NotFound("Phase not found", details={"id": str(payload.phase_id)})

        work_order = WorkOrder(
            tenant_id=scope.tenant_id,
            school_id=scope.school_id,
            status=DRAFT,
            rework_count=0,
            created_by_user_id=scope.user_id,
            **payload.model_dump(),
        )
        db.add(work_order)
        db.flush()
    db.refresh(work_order)

    audit_create(audit, WORK_ORDER_ENTITY, work_order.id, work_order_snapshot(work_order))
    return work_order


def get_work_order_use_case(*, db: Session, scope: RequestScope, work_order_id: UUID | str) -> WorkOrder:
    return get_work_order_or_404(db=db, scope=scope, work_order_id=work_order_id)


def list_work_orders_use_case(
    *,
    db: Session,
    scope: RequestScope,
    status: str | None = None,
    phase_id: UUID | None = None,
    limit: int = 50,
) -> list[WorkOrder]:
    query = db.query(WorkOrder).filter(
        WorkOrder.tenant_id == scope.tenant_id,
        WorkOrder.school_id == scope.school_id,
    )
    if status:
        query = query.filter(WorkOrder.status == normalize_status(status))
    if phase_id is not None:
        query = query.filter(WorkOrder.phase_id == phase_id)
    return query.order_by(WorkOrder.created_at.desc(), WorkOrder.id.desc()).limit(max(1, min(limit, 200))).all()


def transition_status_use_case(
    *,
    db: Session,
    scope: RequestScope,
    work_order_id: UUID | str,
    next_status: str,
    audit: AuditLogger,
) -> WorkOrder:
    """Apply one forward edge of the lifecycle table."""
    with transaction(db):
        work_order = get_work_order_or_404(db=db, scope=scope, work_order_id=work_order_id)
        before = work_order_snapshot(work_order)
        current = normalize_status(work_order.status)
        try:
            nxt = validate_forward_transition(current_status=current, next_status=next_status)
        except ValueError as error:
            raise InvalidTransition(
                str(error),
                details={"from": current, "to": next_status},
            ) from error

        # Compare-and-swap on the status we validated against.
        result = db.execute(
            update(WorkOrder)
            .where(
                WorkOrder.id == work_order.id,
                WorkOrder.tenant_id == scope.tenant_id,
                WorkOrder.school_id == scope.school_id,
                WorkOrder.status == current,
            )
            .values(status=nxt, updated_at=now_utc())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise InvalidTransition(
                "Work order status changed concurrently",
                details={"from": current, "to": nxt},
            )
    db.refresh(work_order)

    audit_update(audit, WORK_ORDER_ENTITY, work_order.id, before, work_order_snapshot(work_order))
    return work_order


def approval_snapshot(approval: WorkOrderApproval) -> dict[str, Any]:
    return {
        "id": approval.id,
        "work_order_id": approval.work_order_id,
        "approval_type": approval.approval_type,
        "status": approval.status,
        "requested_by_user_id": approval.requested_by_user_id,
        "decided_by_user_id": approval.decided_by_user_id,
        "notes": approval.notes,
    }


def request_approval_use_case(
    *,
    db: Session,
    scope: RequestScope,
    work_order_id: UUID | str,
    audit: AuditLogger,
    approval_type: str | None = None,
) -> WorkOrderApproval:
    """Open a pending approval record and mark the work order as awaiting sign-off."""
    with transaction(db):
        work_order = get_work_order_or_404(db=db, scope=scope, work_order_id=work_order_id)
        before = work_order_snapshot(work_order)
        approval = WorkOrderApproval(
            tenant_id=scope.tenant_id,
            school_id=scope.school_id,
            work_order_id=work_order.id,
            phase_id=work_order.phase_id,
            approval_type=(approval_type or "").strip() or DEFAULT_APPROVAL_TYPE,
            status=APPROVAL_PENDING,
            requested_by_user_id=scope.user_id,
            requested_at=now_utc(),
        )
        db.add(approval)
        work_order.approval_status = APPROVAL_PENDING
        db.flush()
    db.refresh(approval)
    db.refresh(work_order)

    audit_create(audit, APPROVAL_ENTITY, approval.id, approval_snapshot(approval))
    audit_update(audit, WORK_ORDER_ENTITY, work_order.id, before, work_order_snapshot(work_order))
    return approval


def decide_approval_use_case(
    *,
    db: Session,
    scope: RequestScope,
    work_order_id: UUID | str,
    decision: str,
    notes: str | None,
    audit: AuditLogger,
    approval_id: UUID | str | None = None,
) -> WorkOrderApproval:
    """Decide a pending approval and copy the decision onto the work order.

    Without ``approval_id`` the most recent pending request is decided. The
    work order status itself is unchanged.
    """
    if decision not in APPROVAL_DECISIONS:
        raise ValidationError("decision must be approved or rejected", details={"decision": decision})

    with transaction(db):
        work_order = get_work_order_or_404(db=db, scope=scope, work_order_id=work_order_id)
        query = db.query(WorkOrderApproval).filter(
            WorkOrderApproval.work_order_id == work_order.id,
            WorkOrderApproval.tenant_id == scope.tenant_id,
            WorkOrderApproval.school_id == scope.school_id,
        )
        if approval_id is not None:
            query = query.filter(WorkOrderApproval.id == parse_uuid(approval_id, what="Approval"))
        else:
            query = query.filter(WorkOrderApproval.status == APPROVAL_PENDING)
        approval = query.order_by(WorkOrderApproval.requested_at.desc()).first()
        if approval is None:
            raise NotFound(
                "No pending approval on this work order",
                details={"work_order_id": str(work_order.id)},
            )
        if approval.status != APPROVAL_PENDING:
            raise InvalidTransition(
                "Approval already decided",
                details={"id": str(approval.id), "status": approval.status},
            )

        before_approval = approval_snapshot(approval)
        before = work_order_snapshot(work_order)
        decided = db.execute(
            update(WorkOrderApproval)
            .where(
                WorkOrderApproval.id == approval.id,
                WorkOrderApproval.status == APPROVAL_PENDING,
            )
            .values(
                status=decision,
                decided_by_user_id=scope.user_id,
                decided_at=now_utc(),
                notes=(notes or "").strip() or None,
            )
            .execution_options(synchronize_session=False)
        )
        if decided.rowcount == 0:
            raise InvalidTransition("Approval was decided concurrently", details={"id": str(approval.id)})
        work_order.approval_status = decision
    db.refresh(approval)
    db.refresh(work_order)

    audit_update(audit, APPROVAL_ENTITY, approval.id, before_approval, approval_snapshot(approval))
    audit_update(audit, WORK_ORDER_ENTITY, work_order.id, before, work_order_snapshot(work_order))
    return approval


def list_approvals_use_case(
    *,
    db: Session,
    scope: RequestScope,
    work_order_id: UUID | str,
) -> list[WorkOrderApproval]:
    work_order = get_work_order_or_404(db=db, scope=scope, work_order_id=work_order_id)
    return (
        db.query(WorkOrderApproval)
        .filter(
            WorkOrderApproval.work_order_id == work_order.id,
            WorkOrderApproval.tenant_id == scope.tenant_id,
        )
        .order_by(WorkOrderApproval.requested_at.desc(), WorkOrderApproval.id.desc())
        .all()
    )


def _get_deliverable_or_404(
    *,
    db: Session,
    scope: RequestScope,
    work_order_id: UUID,
    deliverable_id: UUID | str,
) -> WorkOrderDeliverable:
    deliverable = db.query(WorkOrderDeliverable).filter(
        WorkOrderDeliverable.id == parse_uuid(deliverable_id, what="Deliverable"),
        WorkOrderDeliverable.work_order_id == work_order_id,
        WorkOrderDeliverable.tenant_id == scope.tenant_id,
        WorkOrderDeliverable.school_id == scope.school_id,
    ).first()
    if not deliverable:
        raise NotFound("Deliverable not found", details={"id": str(deliverable_id)})
    return deliverable


def add_deliverable_use_case(
    *,
    db: Session,
    scope: RequestScope,
    work_order_id: UUID | str,
    payload: DeliverableCreate,
) -> WorkOrderDeliverable:
    title = payload.title.strip()
    if not title:
        raise ValidationError("title required")

    with transaction(db):
        work_order = get_work_order_or_404(db=db, scope=scope, work_order_id=work_order_id)
        deliverable = WorkOrderDeliverable(
            tenant_id=scope.tenant_id,
            school_id=scope.school_id,
            work_order_id=work_order.id,
            phase_id=work_order.phase_id,
            title=title,
            description=(payload.description or "").strip() or None,
            status="pending",
        )
        db.add(deliverable)
        db.flush()
    db.refresh(deliverable)
    return deliverable


def submit_deliverable_use_case(
    *,
    db: Session,
    scope: RequestScope,
    work_order_id: UUID | str,
    deliverable_id: UUID | str,
    payload: DeliverableSubmit,
) -> WorkOrderDeliverable:
    evidence = payload.evidence_attachment_id.strip()
    if not evidence:
        raise ValidationError("evidence_attachment_id required")

    with transaction(db):
        work_order = get_work_order_or_404(db=db, scope=scope, work_order_id=work_order_id)
        deliverable = _get_deliverable_or_404(
            db=db,
            scope=scope,
            work_order_id=work_order.id,
            deliverable_id=deliverable_id,
        )
        if deliverable.status == "approved":
            raise InvalidTransition("Deliverable already approved")
        deliverable.status = "submitted"
        deliverable.evidence_attachment_id = evidence
        deliverable.submitted_by_user_id = scope.user_id
        deliverable.submitted_at = now_utc()
        if payload.notes:
            deliverable.review_notes = payload.notes.strip()
    db.refresh(deliverable)
    return deliverable


def review_deliverable_use_case(
    *,
    db: Session,
    scope: RequestScope,
    work_order_id: UUID | str,
    deliverable_id: UUID | str,
    payload: DeliverableReview,
) -> WorkOrderDeliverable:
    with transaction(db):
        work_order = get_work_order_or_404(db=db, scope=scope, work_order_id=work_order_id)
        deliverable = _get_deliverable_or_404(
            db=db,
            scope=scope,
            work_order_id=work_order.id,
            deliverable_id=deliverable_id,
        )
        if deliverable.status != "submitted":
            raise InvalidTransition(
                "Deliverable must be submitted before review",
                details={"status": deliverable.status},
            )
        deliverable.status = payload.status
        deliverable.reviewed_by_user_id = scope.user_id
        deliverable.reviewed_at = now_utc()
        deliverable.review_notes = (payload.notes or "").strip() or None
    db.refresh(deliverable)
    return deliverable


def list_deliverables_use_case(
    *,
    db: Session,
    scope: RequestScope,
    work_order_id: UUID | str,
    status: str | None = None,
    limit: int = 50,
) -> list[WorkOrderDeliverable]:
    work_order = get_work_order_or_404(db=db, scope=scope, work_order_id=work_order_id)
    query = db.query(WorkOrderDeliverable).filter(
        WorkOrderDeliverable.work_order_id == work_order.id,
        WorkOrderDeliverable.tenant_id == scope.tenant_id,
        WorkOrderDeliverable.school_id == scope.school_id,
    )
    if status:
        query = query.filter(WorkOrderDeliverable.status == status.strip().lower())
    return (
        query.order_by(WorkOrderDeliverable.created_at.asc(), WorkOrderDeliverable.id.asc())
        .limit(max(1, min(int(limit), 200)))
        .all()
    )


def update_phase_status_use_case(
    *,
    db: Session,
    scope: RequestScope,
    phase_id: UUID | str,
    next_status: str,
) -> ServicePhase:
    """Change a phase status; ``done`` is gated on every work order of the phase."""
    with transaction(db):
        phase = db.query(ServicePhase).filter(
            ServicePhase.id == parse_uuid(phase_id, what="Phase"),
            ServicePhase.tenant_id == scope.tenant_id,
        ).first()
        if not phase:
            raise NotFound("Phase not found", details={"id": str(phase_id)})

        if next_status == "done":
            work_orders = db.query(WorkOrder).filter(
                WorkOrder.tenant_id == scope.tenant_id,
                WorkOrder.phase_id == phase.id,
            ).all()
            pending_counts: dict[UUID, int] = {}
            if work_orders:
                pending_counts = dict(
                    db.query(WorkOrderDeliverable.work_order_id, func.count(WorkOrderDeliverable.id))
                    .filter(
                        WorkOrderDeliverable.tenant_id == scope.tenant_id,
                        WorkOrderDeliverable.work_order_id.in_([wo.id for wo in work_orders]),
                        WorkOrderDeliverable.status != "approved",
                    )
                    .group_by(WorkOrderDeliverable.work_order_id)
                    .all()
                )

            blocked: dict[str, list[str]] = {}
            for work_order in work_orders:
                reasons = phase_blockers(
                    work_order_status=work_order.status,
                    approval_status=work_order.approval_status,
                    unapproved_deliverables=int(pending_counts.get(work_order.id, 0)),
                )
                if reasons:
                    blocked[str(work_order.id)] = reasons
            if blocked:
                raise PhaseBlocked(
                    "Phase blocked: work orders are not resolved",
                    details={"work_orders": blocked},
                )

        phase.status = next_status
    db.refresh(phase)
    return phase
