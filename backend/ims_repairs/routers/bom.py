"""BOM line endpoints."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import RequestScope, get_request_scope
from ..config import get_settings
from ..database import get_db
from ..policies import BomPolicy, bom_policy_from_settings
from ..schemas import (
    BomLineConsume,
    BomLineCreate,
    BomLineRelease,
    BomLineResponse,
    PartSuggestionResponse,
)
from ..services.audit import SqlAuditLogger
from ..services.part_compatibility import SqlPartCompatibilityLookup
from ..use_cases.bom_lines import (
    add_bom_line_use_case,
    consume_bom_line_use_case,
    list_bom_lines_use_case,
    release_bom_line_use_case,
    suggest_parts_use_case,
)

router = APIRouter(tags=["bom"])


def get_bom_policy() -> BomPolicy:
    return bom_policy_from_settings(get_settings())


@router.get("/work-orders/{work_order_id}/bom", response_model=list[BomLineResponse])
def list_bom_lines(
    work_order_id: str,
    scope: RequestScope = Depends(get_request_scope),
    db: Session = Depends(get_db),
):
    return list_bom_lines_use_case(db=db, scope=scope, work_order_id=work_order_id)


@router.get("/work-orders/{work_order_id}/bom/suggestions", response_model=PartSuggestionResponse)
def suggest_parts(
    work_order_id: str,
    q: Optional[str] = None,
    limit: Optional[int] = None,
    scope: RequestScope = Depends(get_request_scope),
    db: Session = Depends(get_db),
):
    return suggest_parts_use_case(db=db, scope=scope, work_order_id=work_order_id, q=q, limit=limit)


@router.post("/work-orders/{work_order_id}/bom", response_model=BomLineResponse, status_code=201)
def add_bom_line(
    work_order_id: str,
    payload: BomLineCreate,
    allow_incompatible: bool = Query(False),
    scope: RequestScope = Depends(get_request_scope),
    db: Session = Depends(get_db),
    policy: BomPolicy = Depends(get_bom_policy),
):
    return add_bom_line_use_case(
        db=db,
        scope=scope,
        work_order_id=work_order_id,
        part_id=payload.part_id,
        qty_planned=payload.qty_planned,
        policy=policy,
        compatibility=SqlPartCompatibilityLookup(db, scope.tenant_id),
        audit=SqlAuditLogger(db, scope),
        allow_incompatible=allow_incompatible,
    )


@router.post("/work-orders/{work_order_id}/bom/{item_id}/consume", response_model=BomLineResponse)
def consume_bom_line(
    work_order_id: str,
    item_id: str,
    payload: BomLineConsume,
    scope: RequestScope = Depends(get_request_scope),
    db: Session = Depends(get_db),
):
    return consume_bom_line_use_case(
        db=db,
        scope=scope,
        work_order_id=work_order_id,
        line_id=item_id,
        qty=payload.qty_used,
        audit=SqlAuditLogger(db, scope),
    )


@router.post("/work-orders/{work_order_id}/bom/{item_id}/release", response_model=BomLineResponse)
def release_bom_line(
    work_order_id: str,
    item_id: str,
    payload: BomLineRelease,
    scope: RequestScope = Depends(get_request_scope),
    db: Session = Depends(get_db),
):
    return release_bom_line_use_case(
        db=db,
        scope=scope,
        work_order_id=work_order_id,
        line_id=item_id,
        qty=payload.qty,
        audit=SqlAuditLogger(db, scope),
    )
