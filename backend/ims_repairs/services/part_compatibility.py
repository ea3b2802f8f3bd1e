"""Part / device-model compatibility lookup."""
from __future__ import annotations

from typing import Protocol

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..models import Part, PartCompatibility


class PartCompatibilityLookup(Protocol):
    def is_compatible(self, part_id: str, device_model_id: str) -> bool: ...


class SqlPartCompatibilityLookup:
    """Reads the tenant's part_compatibility table."""

    def __init__(self, db: Session, tenant_id: str) -> None:
        self._db = db
        self._tenant_id = tenant_id

    def is_compatible(self, part_id: str, device_model_id: str) -> bool:
        row = self._db.query(PartCompatibility.id).filter(
            PartCompatibility.tenant_id == self._tenant_id,
            PartCompatibility.part_id == part_id,
            PartCompatibility.device_model_id == device_model_id,
        ).first()
        return row is not None


def load_part(db: Session, *, tenant_id: str, part_id: str) -> Part | None:
    return db.query(Part).filter(Part.tenant_id == tenant_id, Part.id == part_id).first()


def compatible_parts(
    db: Session,
    *,
    tenant_id: str,
    device_model_id: str,
    q: str | None = None,
    limit: int,
) -> list[Part]:
    """Parts that fit ``device_model_id``, optionally filtered by a name/category/PUK substring."""
    query = (
        db.query(Part)
        .join(
            PartCompatibility,
            (PartCompatibility.part_id == Part.id) & (PartCompatibility.tenant_id == Part.tenant_id),
        )
        .filter(
            Part.tenant_id == tenant_id,
            PartCompatibility.device_model_id == device_model_id,
        )
    )
    needle = (q or "").strip().lower()
    if needle:
        pattern = f"%{needle}%"
        query = query.filter(
            or_(
                func.lower(Part.name).like(pattern),
                func.lower(func.coalesce(Part.category, "")).like(pattern),
                func.lower(func.coalesce(Part.puk, "")).like(pattern),
            )
        )
    return query.order_by(Part.name.asc(), Part.id.asc()).limit(limit).all()
