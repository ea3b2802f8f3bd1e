"""Work order endpoints: lifecycle, approvals, deliverables and rework."""
from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import RequestScope, get_request_scope
from ..config import get_settings
from ..database import get_db
from ..policies import ReworkPolicy, rework_policy_from_settings
from ..schemas import (
    ApprovalDecision,
    ApprovalRequest,
    ApprovalResponse,
    DeliverableCreate,
    DeliverableResponse,
    DeliverableReview,
    DeliverableSubmit,
    RejectWorkOrderRequest,
    RejectWorkOrderResponse,
    ReworkHistoryResponse,
    WorkOrderCreate,
    WorkOrderResponse,
    WorkOrderStatusUpdate,
)
from ..services.audit import SqlAuditLogger
from ..use_cases.rework import list_rework_history_use_case, reject_for_rework_use_case
from ..use_cases.work_order_lifecycle import (
    add_deliverable_use_case,
    create_work_order_use_case,
    decide_approval_use_case,
    get_work_order_use_case,
    list_approvals_use_case,
    list_deliverables_use_case,
    list_work_orders_use_case,
    request_approval_use_case,
    review_deliverable_use_case,
    submit_deliverable_use_case,
    transition_status_use_case,
)

router = APIRouter(tags=["work-orders"])


def get_rework_policy() -> ReworkPolicy:
    return rework_policy_from_settings(get_settings())


@router.post("/work-orders", response_model=WorkOrderResponse, status_code=201)
def create_work_order(
    payload: WorkOrderCreate,
    scope: RequestScope = Depends(get_request_scope),
    db: Session = Depends(get_db),
):
    return create_work_order_use_case(db=db, scope=scope, payload=payload, audit=SqlAuditLogger(db, scope))


@router.get("/work-orders", response_model=list[WorkOrderResponse])
def list_work_orders(
    status: Optional[str] = None,
    phase_id: Optional[UUID] = None,
    limit: int = Query(50, ge=1, le=200),
    scope: RequestScope = Depends(get_request_scope),
    db: Session = Depends(get_db),
):
    return list_work_orders_use_case(db=db, scope=scope, status=status, phase_id=phase_id, limit=limit)


@router.get("/work-orders/{work_order_id}", response_model=WorkOrderResponse)
def get_work_order(
    work_order_id: str,
    scope: RequestScope = Depends(get_request_scope),
    db: Session = Depends(get_db),
):
    return get_work_order_use_case(db=db, scope=scope, work_order_id=work_order_id)


@router.patch("/work-orders/{work_order_id}/status", response_model=WorkOrderResponse)
def update_work_order_status(
    work_order_id: str,
    payload: WorkOrderStatusUpdate,
    scope: RequestScope = Depends(get_request_scope),
    db: Session = Depends(get_db),
):
    return transition_status_use_case(
        db=db,
        scope=scope,
        work_order_id=work_order_id,
        next_status=payload.status,
        audit=SqlAuditLogger(db, scope),
    )


@router.post("/work-orders/{work_order_id}/reject", response_model=RejectWorkOrderResponse)
def reject_work_order(
    work_order_id: str,
    payload: RejectWorkOrderRequest,
    scope: RequestScope = Depends(get_request_scope),
    db: Session = Depends(get_db),
    policy: ReworkPolicy = Depends(get_rework_policy),
):
    result = reject_for_rework_use_case(
        db=db,
        scope=scope,
        work_order_id=work_order_id,
        target_status=payload.target_status,
        reason=payload.reason,
        category=payload.category,
        policy=policy,
        audit=SqlAuditLogger(db, scope),
    )
    return RejectWorkOrderResponse(
        work_order=WorkOrderResponse.model_validate(result.work_order),
        rework_history=ReworkHistoryResponse.model_validate(result.history),
    )


@router.get("/work-orders/{work_order_id}/rework-history", response_model=list[ReworkHistoryResponse])
def get_rework_history(
    work_order_id: str,
    scope: RequestScope = Depends(get_request_scope),
    db: Session = Depends(get_db),
):
    return list_rework_history_use_case(db=db, scope=scope, work_order_id=work_order_id)


@router.get("/work-orders/{work_order_id}/approvals", response_model=list[ApprovalResponse])
def list_approvals(
    work_order_id: str,
    scope: RequestScope = Depends(get_request_scope),
    db: Session = Depends(get_db),
):
    return list_approvals_use_case(db=db, scope=scope, work_order_id=work_order_id)


@router.post("/work-orders/{work_order_id}/approvals/request", response_model=ApprovalResponse, status_code=201)
def request_approval(
    work_order_id: str,
    payload: Optional[ApprovalRequest] = None,
    scope: RequestScope = Depends(get_request_scope),
    db: Session = Depends(get_db),
):
    return request_approval_use_case(
        db=db,
        scope=scope,
        work_order_id=work_order_id,
        approval_type=payload.approval_type if payload else None,
        audit=SqlAuditLogger(db, scope),
    )


@router.post("/work-orders/{work_order_id}/approvals/decide", response_model=ApprovalResponse)
def decide_approval(
    work_order_id: str,
    payload: ApprovalDecision,
    scope: RequestScope = Depends(get_request_scope),
    db: Session = Depends(get_db),
):
    return decide_approval_use_case(
        db=db,
        scope=scope,
        work_order_id=work_order_id,
        approval_id=payload.approval_id,
        decision=payload.decision,
        notes=payload.notes,
        audit=SqlAuditLogger(db, scope),
    )


@router.get("/work-orders/{work_order_id}/deliverables", response_model=list[DeliverableResponse])
def list_deliverables(
    work_order_id: str,
    status: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    scope: RequestScope = Depends(get_request_scope),
    db: Session = Depends(get_db),
):
    return list_deliverables_use_case(db=db, scope=scope, work_order_id=work_order_id, status=status, limit=limit)


@router.post(
    "/work-orders/{work_order_id}/deliverables",
    response_model=DeliverableResponse,
    status_code=201,
)
def add_deliverable(
    work_order_id: str,
    payload: DeliverableCreate,
    scope: RequestScope = Depends(get_request_scope),
    db: Session = Depends(get_db),
):
    return add_deliverable_use_case(db=db, scope=scope, work_order_id=work_order_id, payload=payload)


@router.post(
    "/work-orders/{work_order_id}/deliverables/{deliverable_id}/submit",
    response_model=DeliverableResponse,
)
def submit_deliverable(
    work_order_id: str,
    deliverable_id: str,
    payload: DeliverableSubmit,
    scope: RequestScope = Depends(get_request_scope),
    db: Session = Depends(get_db),
):
    return submit_deliverable_use_case(
        db=db,
        scope=scope,
        work_order_id=work_order_id,
        deliverable_id=deliverable_id,
        payload=payload,
    )


@router.post(
    "/work-orders/{work_order_id}/deliverables/{deliverable_id}/review",
    response_model=DeliverableResponse,
)
def review_deliverable(
    work_order_id: str,
    deliverable_id: str,
    payload: DeliverableReview,
    scope: RequestScope = Depends(get_request_scope),
    db: Session = Depends(get_db),
):
    return review_deliverable_use_case(
        db=db,
        scope=scope,
        work_order_id=work_order_id,
        deliverable_id=deliverable_id,
        payload=payload,
    )
