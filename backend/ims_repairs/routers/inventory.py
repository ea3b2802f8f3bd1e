"""Inventory read endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import RequestScope, get_request_scope
from ..database import get_db
from ..schemas import InventoryItemResponse
from ..use_cases.inventory_ledger import list_inventory_use_case

router = APIRouter(tags=["inventory"])


@router.get("/inventory", response_model=list[InventoryItemResponse])
def get_inventory(
    service_shop_id: str = Query(..., min_length=1),
    scope: RequestScope = Depends(get_request_scope),
    db: Session = Depends(get_db),
):
    return list_inventory_use_case(db=db, scope=scope, service_shop_id=service_shop_id)
