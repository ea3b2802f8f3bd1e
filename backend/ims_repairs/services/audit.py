"""Audit logging collaborator.

Audit writes are best-effort: a failure is logged and never aborts the
business operation that already committed.
"""
from __future__ import annotations

import logging
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..auth import RequestScope
from ..models import AuditEvent

logger = logging.getLogger(__name__)


class AuditLogger(Protocol):
    def log_create(self, entity_type: str, entity_id: str, snapshot: Any) -> None: ...

    def log_update(self, entity_type: str, entity_id: str, before: Any, after: Any) -> None: ...


def _jsonable(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, dict):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(item) for item in value]
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


class SqlAuditLogger:
    """Writes AuditEvent rows in their own short transaction."""

    def __init__(self, db: Session, scope: RequestScope) -> None:
        self._db = db
        self._scope = scope

    def _write(self, *, action: str, entity_type: str, entity_id: str, before: Any, after: Any) -> None:
        self._db.add(
            AuditEvent(
                tenant_id=self._scope.tenant_id,
                action=action,
                entity_type=entity_type,
                entity_id=str(entity_id),
                user_id=self._scope.user_id,
                user_name=self._scope.user_name,
                before=_jsonable(before),
                after=_jsonable(after),
            )
        )
        try:
            self._db.commit()
        except SQLAlchemyError:
            self._db.rollback()
            raise

    def log_create(self, entity_type: str, entity_id: str, snapshot: Any) -> None:
        self._write(action="create", entity_type=entity_type, entity_id=entity_id, before=None, after=snapshot)

    def log_update(self, entity_type: str, entity_id: str, before: Any, after: Any) -> None:
        self._write(action="update", entity_type=entity_type, entity_id=entity_id, before=before, after=after)


def audit_create(audit: AuditLogger, entity_type: str, entity_id: Any, snapshot: Any) -> None:
    try:
        audit.log_create(entity_type, str(entity_id), snapshot)
    except Exception:
        logger.exception("Failed to write %s create audit event id=%s", entity_type, entity_id)


def audit_update(audit: AuditLogger, entity_type: str, entity_id: Any, before: Any, after: Any) -> None:
    try:
        audit.log_update(entity_type, str(entity_id), before, after)
    except Exception:
        logger.exception("Failed to write %s update audit event id=%s", entity_type, entity_id)
