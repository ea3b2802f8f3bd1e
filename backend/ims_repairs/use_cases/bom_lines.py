"""BOM line use-cases: plan, consume and release parts on a work order.

Each operation keeps the BOM line and the inventory ledger in step inside a
single transaction.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..auth import RequestScope
from ..database import transaction
from ..domain_errors import (
    IncompatiblePart,
    NotFound,
    OverConsumption,
    ReleaseExceedsAvailable,
    ReservationConflict,
    ValidationError,
)
from ..models import Part, WorkOrderPart
from ..policies import BomPolicy
from ..services.audit import AuditLogger, audit_create, audit_update
from ..services.part_compatibility import PartCompatibilityLookup, compatible_parts, load_part
from .inventory_ledger import consume_stock, release_stock, reserve_stock
from .work_order_lifecycle import parse_uuid, get_work_order_or_404, now_utc

logger = logging.getLogger(__name__)

BOM_LINE_ENTITY = "work_order_part"
SUGGEST_DEFAULT_LIMIT = 25
SUGGEST_MAX_LIMIT = 200


def bom_line_snapshot(line: WorkOrderPart) -> dict[str, Any]:
    return {
        "id": line.id,
        "work_order_id": line.work_order_id,
        "service_shop_id": line.service_shop_id,
        "part_id": line.part_id,
        "qty_planned": line.qty_planned,
        "qty_used": line.qty_used,
        "is_compatible": line.is_compatible,
    }


def _require_positive(value: int, *, field: str) -> int:
    qty = int(value)
    if qty <= 0:
        raise ValidationError(f"{field} must be greater than 0", details={field: qty})
    return qty


def _get_line_or_404(
    *,
    db: Session,
    scope: RequestScope,
    work_order_id: UUID,
    line_id: UUID | str,
) -> WorkOrderPart:
    line = db.query(WorkOrderPart).filter(
        WorkOrderPart.id == parse_uuid(line_id, what="BOM line"),
        WorkOrderPart.work_order_id == work_order_id,
        WorkOrderPart.tenant_id == scope.tenant_id,
        WorkOrderPart.school_id == scope.school_id,
    ).first()
    if not line:
        raise NotFound(
            "BOM line not found on this work order",
            details={"id": str(line_id), "work_order_id": str(work_order_id)},
        )
    return line


def list_bom_lines_use_case(*, db: Session, scope: RequestScope, work_order_id: UUID | str) -> list[WorkOrderPart]:
    work_order = get_work_order_or_404(db=db, scope=scope, work_order_id=work_order_id)
    return (
        db.query(WorkOrderPart)
        .filter(
            WorkOrderPart.work_order_id == work_order.id,
            WorkOrderPart.tenant_id == scope.tenant_id,
        )
        .order_by(WorkOrderPart.created_at.asc(), WorkOrderPart.id.asc())
        .all()
    )


def add_bom_line_use_case(
    *,
    db: Session,
    scope: RequestScope,
    work_order_id: UUID | str,
    part_id: str,
    qty_planned: int,
    policy: BomPolicy,
    compatibility: PartCompatibilityLookup,
    audit: AuditLogger,
    allow_incompatible: bool = False,
) -> WorkOrderPart:
    """Reserve stock and add a BOM line; neither persists unless both do."""
    qty = _require_positive(qty_planned, field="qty_planned")
    part_id = (part_id or "").strip()
    if not part_id:
        raise ValidationError("part_id required")

    work_order = get_work_order_or_404(db=db, scope=scope, work_order_id=work_order_id)
    service_shop_id = work_order.service_shop_id
    if not service_shop_id:
        raise ValidationError(
            "Work order has no service shop",
            details={"work_order_id": str(work_order.id)},
        )

    is_compatible = True
    if work_order.device_model_id:
        is_compatible = compatibility.is_compatible(part_id, work_order.device_model_id)
    if not is_compatible and policy.enforce_compatibility and not allow_incompatible:
        raise IncompatiblePart(
            "Part is not compatible with the device model",
            details={"part_id": part_id, "device_model_id": work_order.device_model_id},
        )

    part = load_part(db, tenant_id=scope.tenant_id, part_id=part_id)

    with transaction(db):
        reserve_stock(
            db,
            tenant_id=scope.tenant_id,
            service_shop_id=service_shop_id,
            part_id=part_id,
            qty=qty,
        )
        line = WorkOrderPart(
            tenant_id=scope.tenant_id,
            school_id=scope.school_id,
            work_order_id=work_order.id,
            service_shop_id=service_shop_id,
            part_id=part_id,
            part_name=part.name if part else None,
            part_puk=part.puk if part else None,
            part_category=part.category if part else None,
            device_model_id=work_order.device_model_id,
            is_compatible=is_compatible,
            qty_planned=qty,
            qty_used=0,
        )
        db.add(line)
        try:
            db.flush()
        except SQLAlchemyError as error:
            raise ReservationConflict(
                "BOM line could not be stored together with its reservation",
                details={"part_id": part_id, "qty": qty},
            ) from error
    db.refresh(line)

    logger.info(
        "bom.line_added work_order=%s part=%s qty=%s shop=%s",
        work_order.id,
        part_id,
        qty,
        service_shop_id,
    )
    audit_create(audit, BOM_LINE_ENTITY, line.id, bom_line_snapshot(line))
    return line


def consume_bom_line_use_case(
    *,
    db: Session,
    scope: RequestScope,
    work_order_id: UUID | str,
    line_id: UUID | str,
    qty: int,
    audit: AuditLogger,
) -> WorkOrderPart:
    """Mark ``qty`` planned units as used and take them out of stock."""
    qty = _require_positive(qty, field="qty_used")

    with transaction(db):
        work_order = get_work_order_or_404(db=db, scope=scope, work_order_id=work_order_id)
        line = _get_line_or_404(db=db, scope=scope, work_order_id=work_order.id, line_id=line_id)
        before = bom_line_snapshot(line)
        if int(line.qty_used) + qty > int(line.qty_planned):
            raise OverConsumption(
                "Consumption exceeds planned quantity",
                details={"qty_planned": line.qty_planned, "qty_used": line.qty_used, "qty": qty},
            )

        result = db.execute(
            update(WorkOrderPart)
            .where(
                WorkOrderPart.id == line.id,
                (WorkOrderPart.qty_planned - WorkOrderPart.qty_used) >= qty,
            )
            .values(qty_used=WorkOrderPart.qty_used + qty, updated_at=now_utc())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise OverConsumption(
                "Consumption exceeds planned quantity",
                details={"qty": qty},
            )
        consume_stock(
            db,
            tenant_id=scope.tenant_id,
            service_shop_id=line.service_shop_id,
            part_id=line.part_id,
            qty=qty,
        )
    db.refresh(line)

    audit_update(audit, BOM_LINE_ENTITY, line.id, before, bom_line_snapshot(line))
    return line


def release_bom_line_use_case(
    *,
    db: Session,
    scope: RequestScope,
    work_order_id: UUID | str,
    line_id: UUID | str,
    qty: int,
    audit: AuditLogger,
) -> WorkOrderPart:
    """Lower the planned quantity and give the reservation back."""
    qty = _require_positive(qty, field="qty")

    with transaction(db):
        work_order = get_work_order_or_404(db=db, scope=scope, work_order_id=work_order_id)
        line = _get_line_or_404(db=db, scope=scope, work_order_id=work_order.id, line_id=line_id)
        before = bom_line_snapshot(line)
        if int(line.qty_planned) - qty < int(line.qty_used):
            raise ReleaseExceedsAvailable(
                "Release exceeds unused planned quantity",
                details={"qty_planned": line.qty_planned, "qty_used": line.qty_used, "qty": qty},
            )

        result = db.execute(
            update(WorkOrderPart)
            .where(
                WorkOrderPart.id == line.id,
                (WorkOrderPart.qty_planned - qty) >= WorkOrderPart.qty_used,
            )
            .values(qty_planned=WorkOrderPart.qty_planned - qty, updated_at=now_utc())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise ReleaseExceedsAvailable(
                "Release exceeds unused planned quantity",
                details={"qty": qty},
            )
        release_stock(
            db,
            tenant_id=scope.tenant_id,
            service_shop_id=line.service_shop_id,
            part_id=line.part_id,
            qty=qty,
        )
    db.refresh(line)

    audit_update(audit, BOM_LINE_ENTITY, line.id, before, bom_line_snapshot(line))
    return line


@dataclass(frozen=True)
class PartSuggestions:
    device_model_id: str
    items: list[Part]

    @property
    def count(self) -> int:
        return len(self.items)


def clamp_suggest_limit(limit: int | None) -> int:
    if limit is None or limit <= 0:
        return SUGGEST_DEFAULT_LIMIT
    return min(int(limit), SUGGEST_MAX_LIMIT)


def suggest_parts_use_case(
    *,
    db: Session,
    scope: RequestScope,
    work_order_id: UUID | str,
    q: str | None = None,
    limit: int | None = None,
) -> PartSuggestions:
    """Catalogue parts compatible with the work order's device model."""
    work_order = get_work_order_or_404(db=db, scope=scope, work_order_id=work_order_id)
    device_model_id = (work_order.device_model_id or "").strip()
    if not device_model_id:
        raise ValidationError(
            "Work order has no device model",
            details={"work_order_id": str(work_order.id)},
        )
    items = compatible_parts(
        db,
        tenant_id=scope.tenant_id,
        device_model_id=device_model_id,
        q=q,
        limit=clamp_suggest_limit(limit),
    )
    return PartSuggestions(device_model_id=device_model_id, items=items)
