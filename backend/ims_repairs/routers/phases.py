"""Service phase endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import RequestScope, get_request_scope
from ..database import get_db
from ..schemas import PhaseResponse, PhaseStatusUpdate
from ..use_cases.work_order_lifecycle import update_phase_status_use_case

router = APIRouter(tags=["phases"])


@router.patch("/phases/{phase_id}/status", response_model=PhaseResponse)
def update_phase_status(
    phase_id: str,
    payload: PhaseStatusUpdate,
    scope: RequestScope = Depends(get_request_scope),
    db: Session = Depends(get_db),
):
    # Marking a phase done is refused while any of its work orders is unresolved.
    return update_phase_status_use_case(db=db, scope=scope, phase_id=phase_id, next_status=payload.status)
