"""Request scope resolution.

Authentication happens upstream; the gateway forwards the resolved tenant,
school and actor as headers.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException, status


@dataclass(frozen=True)
class RequestScope:
    """Tenant/school the caller acts in, plus the acting user."""

    tenant_id: str
    school_id: str
    user_id: str | None = None
    user_name: str | None = None


def get_request_scope(
    x_tenant_id: Optional[str] = Header(default=None),
    x_school_id: Optional[str] = Header(default=None),
    x_user_id: Optional[str] = Header(default=None),
    x_user_name: Optional[str] = Header(default=None),
) -> RequestScope:
    tenant_id = (x_tenant_id or "").strip()
    school_id = (x_school_id or "").strip()
    if not tenant_id or not school_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Tenant and school scope required",
        )
    return RequestScope(
        tenant_id=tenant_id,
        school_id=school_id,
        user_id=(x_user_id or "").strip() or None,
        user_name=(x_user_name or "").strip() or None,
    )
