"""Inventory ledger: reserve / consume / release stock per (service shop, part).

Every mutation is a single conditional UPDATE so the availability check and
the write cannot be separated by a concurrent request. None of these functions
commit; they run inside the caller's transaction.
"""
from __future__ import annotations

import logging

from sqlalchemy import case, update
from sqlalchemy.orm import Session

from ..auth import RequestScope
from ..domain_errors import InsufficientStock, NotFound, ValidationError
from ..models import InventoryItem
from ..schemas import InventoryItemResponse

logger = logging.getLogger(__name__)


def _require_positive(qty: int) -> int:
    value = int(qty)
    if value <= 0:
        raise ValidationError("qty must be greater than 0", details={"qty": value})
    return value


def _floored_minus(column, qty: int):
    return case((column - qty < 0, 0), else_=column - qty)


def _row_filter(*, tenant_id: str, service_shop_id: str, part_id: str) -> tuple:
    return (
        InventoryItem.tenant_id == tenant_id,
        InventoryItem.service_shop_id == service_shop_id,
        InventoryItem.part_id == part_id,
    )


def _expire_loaded_inventory(db: Session) -> None:
    # Bulk UPDATEs bypass the identity map; drop cached quantities.
    for obj in list(db.identity_map.values()):
        if isinstance(obj, InventoryItem):
            db.expire(obj)


def get_inventory_item(db: Session, *, tenant_id: str, service_shop_id: str, part_id: str) -> InventoryItem | None:
    return db.query(InventoryItem).filter(
        *_row_filter(tenant_id=tenant_id, service_shop_id=service_shop_id, part_id=part_id)
    ).first()


def reserve_stock(db: Session, *, tenant_id: str, service_shop_id: str, part_id: str, qty: int) -> None:
    """Earmark ``qty`` units; fails unless available - reserved >= qty at write time."""
    qty = _require_positive(qty)
    result = db.execute(
        update(InventoryItem)
        .where(
            *_row_filter(tenant_id=tenant_id, service_shop_id=service_shop_id, part_id=part_id),
            (InventoryItem.qty_available - InventoryItem.qty_reserved) >= qty,
        )
        .values(qty_reserved=InventoryItem.qty_reserved + qty)
        .execution_options(synchronize_session=False)
    )
    _expire_loaded_inventory(db)
    if result.rowcount == 0:
        logger.warning(
            "inventory.reserve rejected shop=%s part=%s qty=%s",
            service_shop_id,
            part_id,
            qty,
        )
        raise InsufficientStock(
            "Insufficient free stock to reserve",
            details={"service_shop_id": service_shop_id, "part_id": part_id, "qty": qty},
        )


def consume_stock(db: Session, *, tenant_id: str, service_shop_id: str, part_id: str, qty: int) -> None:
    """Take ``qty`` reserved units out of stock (reserved and available both drop)."""
    qty = _require_positive(qty)
    result = db.execute(
        update(InventoryItem)
        .where(*_row_filter(tenant_id=tenant_id, service_shop_id=service_shop_id, part_id=part_id))
        .values(
            qty_reserved=_floored_minus(InventoryItem.qty_reserved, qty),
            qty_available=_floored_minus(InventoryItem.qty_available, qty),
        )
        .execution_options(synchronize_session=False)
    )
    _expire_loaded_inventory(db)
    if result.rowcount == 0:
        raise NotFound(
            "Inventory record not found",
            details={"service_shop_id": service_shop_id, "part_id": part_id},
        )


def release_stock(db: Session, *, tenant_id: str, service_shop_id: str, part_id: str, qty: int) -> None:
    """Return ``qty`` reserved units to free stock; available is untouched."""
    qty = _require_positive(qty)
    result = db.execute(
        update(InventoryItem)
        .where(*_row_filter(tenant_id=tenant_id, service_shop_id=service_shop_id, part_id=part_id))
        .values(qty_reserved=_floored_minus(InventoryItem.qty_reserved, qty))
        .execution_options(synchronize_session=False)
    )
    _expire_loaded_inventory(db)
    if result.rowcount == 0:
        raise NotFound(
            "Inventory record not found",
            details={"service_shop_id": service_shop_id, "part_id": part_id},
        )


def to_inventory_response(item: InventoryItem) -> InventoryItemResponse:
    available = int(item.qty_available or 0)
    reserved = int(item.qty_reserved or 0)
    free = available - reserved
    return InventoryItemResponse(
        id=item.id,
        service_shop_id=item.service_shop_id,
        part_id=item.part_id,
        qty_available=available,
        qty_reserved=reserved,
        qty_free=free,
        reorder_threshold=int(item.reorder_threshold or 0),
        below_reorder=free <= int(item.reorder_threshold or 0),
        updated_at=item.updated_at,
    )


def list_inventory_use_case(
    *,
    db: Session,
    scope: RequestScope,
    service_shop_id: str,
) -> list[InventoryItemResponse]:
    """Stock levels of one service shop ordered by part."""
    if not service_shop_id.strip():
        raise ValidationError("service_shop_id is required")
    items = (
        db.query(InventoryItem)
        .filter(
            InventoryItem.tenant_id == scope.tenant_id,
            InventoryItem.service_shop_id == service_shop_id,
        )
        .order_by(InventoryItem.part_id.asc())
        .all()
    )
    return [to_inventory_response(item) for item in items]
