"""Explicit policy objects handed to use-cases at construction time."""
from __future__ import annotations

from dataclasses import dataclass, field

from .config import Settings
from .services.status_rules import DEFAULT_REWORK_TRANSITIONS, WorkOrderStatus


@dataclass(frozen=True)
class BomPolicy:
    """BOM line rules.

    ``enforce_compatibility`` defaults to on: a part that is not known to fit
    the work order's device model is rejected unless the request overrides it.
    """

    enforce_compatibility: bool = True


@dataclass(frozen=True)
class ReworkPolicy:
    """Rework budget and backward-edge table."""

    enabled: bool = True
    max_rework_count: int = 3
    require_reason: bool = True
    transitions: dict[WorkOrderStatus, frozenset[WorkOrderStatus]] = field(
        default_factory=lambda: dict(DEFAULT_REWORK_TRANSITIONS)
    )


@dataclass(frozen=True)
class BulkPolicy:
    """Bulk coordinator limits."""

    enabled: bool = True
    max_batch_size: int = 100


def bom_policy_from_settings(settings: Settings) -> BomPolicy:
    return BomPolicy(enforce_compatibility=settings.BOM_ENFORCE_COMPATIBILITY)


def rework_policy_from_settings(settings: Settings) -> ReworkPolicy:
    return ReworkPolicy(
        enabled=settings.REWORK_ENABLED,
        max_rework_count=settings.REWORK_MAX_COUNT,
        require_reason=settings.REWORK_REQUIRE_REASON,
    )


def bulk_policy_from_settings(settings: Settings) -> BulkPolicy:
    return BulkPolicy(
        enabled=settings.BULK_OPERATIONS_ENABLED,
        max_batch_size=settings.BULK_MAX_BATCH_SIZE,
    )
