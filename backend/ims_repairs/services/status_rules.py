"""Work order status tables and pure transition checks.

Forward and backward edges are plain data so they can be inspected and
tested without a database.
"""
from __future__ import annotations

from typing import Iterable, Mapping

WorkOrderStatus = str

DRAFT: WorkOrderStatus = "draft"
ASSIGNED: WorkOrderStatus = "assigned"
IN_REPAIR: WorkOrderStatus = "in_repair"
QA: WorkOrderStatus = "qa"
COMPLETED: WorkOrderStatus = "completed"
APPROVED: WorkOrderStatus = "approved"

WORK_ORDER_STATUSES: tuple[WorkOrderStatus, ...] = (DRAFT, ASSIGNED, IN_REPAIR, QA, COMPLETED, APPROVED)
TERMINAL_STATUSES: frozenset[WorkOrderStatus] = frozenset({APPROVED})

FORWARD_TRANSITIONS: Mapping[WorkOrderStatus, frozenset[WorkOrderStatus]] = {
    DRAFT: frozenset({ASSIGNED}),
    ASSIGNED: frozenset({IN_REPAIR}),
    # QA is optional.
    IN_REPAIR: frozenset({QA, COMPLETED}),
    QA: frozenset({COMPLETED}),
    COMPLETED: frozenset({APPROVED}),
    APPROVED: frozenset(),
}

DEFAULT_REWORK_TRANSITIONS: Mapping[WorkOrderStatus, frozenset[WorkOrderStatus]] = {
    ASSIGNED: frozenset({DRAFT}),
    IN_REPAIR: frozenset({ASSIGNED, DRAFT}),
    QA: frozenset({IN_REPAIR, ASSIGNED}),
    COMPLETED: frozenset({QA, IN_REPAIR}),
    APPROVED: frozenset({COMPLETED}),
}

APPROVAL_PENDING = "pending"
APPROVAL_APPROVED = "approved"
APPROVAL_REJECTED = "rejected"
APPROVAL_NOT_REQUIRED = "not_required"
APPROVAL_STATUSES: tuple[str, ...] = (
    APPROVAL_PENDING,
    APPROVAL_APPROVED,
    APPROVAL_REJECTED,
    APPROVAL_NOT_REQUIRED,
)
RESOLVED_APPROVAL_STATUSES: frozenset[str] = frozenset({APPROVAL_APPROVED, APPROVAL_NOT_REQUIRED})
APPROVAL_DECISIONS: frozenset[str] = frozenset({APPROVAL_APPROVED, APPROVAL_REJECTED})
DEFAULT_APPROVAL_TYPE = "school_signoff"
PHASE_DONE_WORK_ORDER_STATUSES: frozenset[WorkOrderStatus] = frozenset({COMPLETED, APPROVED})

REJECTION_CATEGORIES: tuple[str, ...] = ("defect", "incomplete", "incorrect_part", "other")
DEFAULT_REJECTION_CATEGORY = "other"


def normalize_status(status: str | None) -> WorkOrderStatus:
    if not status:
        return DRAFT
    return status.strip().lower()


def parse_requested_status(status: str | None) -> WorkOrderStatus:
    """Strict form of normalize_status for caller-supplied targets; blanks are not draft."""
    value = (status or "").strip().lower()
    if value not in WORK_ORDER_STATUSES:
        raise ValueError(f"Unknown work order status: {status!r}")
    return value


def can_transition(current_status: str | None, next_status: str | None) -> bool:
    """Pure lookup in the forward table."""
    if next_status is None:
        return False
    allowed = FORWARD_TRANSITIONS.get(normalize_status(current_status), frozenset())
    return normalize_status(next_status) in allowed


def validate_forward_transition(*, current_status: str | None, next_status: str | None) -> WorkOrderStatus:
    current = normalize_status(current_status)
    nxt = parse_requested_status(next_status)
    if not can_transition(current, nxt):
        raise ValueError(f"Invalid work order status transition: {current} -> {nxt}")
    return nxt


def forward_sources(next_status: str) -> frozenset[WorkOrderStatus]:
    """Statuses from which ``next_status`` is a legal forward edge."""
    nxt = normalize_status(next_status)
    return frozenset(src for src, targets in FORWARD_TRANSITIONS.items() if nxt in targets)


def can_rework_to(
    current_status: str | None,
    target_status: str | None,
    *,
    transitions: Mapping[WorkOrderStatus, Iterable[WorkOrderStatus]] = DEFAULT_REWORK_TRANSITIONS,
) -> bool:
    if target_status is None or not target_status.strip():
        return False
    allowed = transitions.get(normalize_status(current_status), ())
    return normalize_status(target_status) in set(allowed)


def normalize_rejection_category(category: str | None) -> str:
    if category is None or not category.strip():
        return DEFAULT_REJECTION_CATEGORY
    value = category.strip().lower().replace("-", "_")
    if value not in REJECTION_CATEGORIES:
        raise ValueError(f"Invalid rejection category: {category}")
    return value


def ensure_rework_budget(*, rework_count: int | None, max_rework_count: int) -> None:
    if int(rework_count or 0) >= max_rework_count:
        raise ValueError(f"Maximum rework count ({max_rework_count}) exceeded")


def phase_blockers(
    *,
    work_order_status: str | None,
    approval_status: str | None,
    unapproved_deliverables: int,
) -> list[str]:
    """Reasons a work order keeps its phase from being marked done."""
    reasons: list[str] = []
    if unapproved_deliverables > 0:
        reasons.append("unapproved deliverables exist")
    if (approval_status or "") not in RESOLVED_APPROVAL_STATUSES:
        reasons.append("work order approval pending")
    if normalize_status(work_order_status) not in PHASE_DONE_WORK_ORDER_STATUSES:
        reasons.append("work order not complete")
    return reasons
