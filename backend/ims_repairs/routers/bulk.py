"""Bulk work order endpoints and the bulk operation log."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import RequestScope, get_request_scope
from ..config import get_settings
from ..database import get_db
from ..policies import BulkPolicy, bulk_policy_from_settings
from ..schemas import (
    BulkApprovalRequest,
    BulkAssignmentRequest,
    BulkOperationLogResponse,
    BulkOperationResult,
    BulkStatusUpdateRequest,
)
from ..services.audit import SqlAuditLogger
from ..use_cases.bulk_operations import (
    bulk_update_approval_use_case,
    bulk_update_assignment_use_case,
    bulk_update_status_use_case,
    get_bulk_operation_use_case,
    list_bulk_operations_use_case,
)

router = APIRouter(tags=["bulk"])


def get_bulk_policy() -> BulkPolicy:
    return bulk_policy_from_settings(get_settings())


@router.post("/work-orders/bulk/status", response_model=BulkOperationResult)
def bulk_update_status(
    payload: BulkStatusUpdateRequest,
    scope: RequestScope = Depends(get_request_scope),
    db: Session = Depends(get_db),
    policy: BulkPolicy = Depends(get_bulk_policy),
):
    return bulk_update_status_use_case(
        db=db,
        scope=scope,
        work_order_ids=payload.work_order_ids,
        status=payload.status,
        policy=policy,
        audit=SqlAuditLogger(db, scope),
    )


@router.post("/work-orders/bulk/assignment", response_model=BulkOperationResult)
def bulk_update_assignment(
    payload: BulkAssignmentRequest,
    scope: RequestScope = Depends(get_request_scope),
    db: Session = Depends(get_db),
    policy: BulkPolicy = Depends(get_bulk_policy),
):
    return bulk_update_assignment_use_case(
        db=db,
        scope=scope,
        work_order_ids=payload.work_order_ids,
        assigned_staff_id=payload.assigned_staff_id,
        service_shop_id=payload.service_shop_id,
        policy=policy,
        audit=SqlAuditLogger(db, scope),
    )


@router.post("/work-orders/bulk/approval", response_model=BulkOperationResult)
def bulk_update_approval(
    payload: BulkApprovalRequest,
    scope: RequestScope = Depends(get_request_scope),
    db: Session = Depends(get_db),
    policy: BulkPolicy = Depends(get_bulk_policy),
):
    return bulk_update_approval_use_case(
        db=db,
        scope=scope,
        work_order_ids=payload.work_order_ids,
        decision=payload.decision,
        policy=policy,
        audit=SqlAuditLogger(db, scope),
    )


@router.get("/bulk-operations", response_model=list[BulkOperationLogResponse])
def list_bulk_operations(
    limit: int = Query(50, ge=1, le=200),
    scope: RequestScope = Depends(get_request_scope),
    db: Session = Depends(get_db),
):
    return list_bulk_operations_use_case(db=db, scope=scope, limit=limit)


@router.get("/bulk-operations/{operation_id}", response_model=BulkOperationLogResponse)
def get_bulk_operation(
    operation_id: str,
    scope: RequestScope = Depends(get_request_scope),
    db: Session = Depends(get_db),
):
    return get_bulk_operation_use_case(db=db, scope=scope, operation_id=operation_id)
