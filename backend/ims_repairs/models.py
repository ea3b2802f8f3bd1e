"""SQLAlchemy models for work orders, BOM lines, inventory and their journals."""
from sqlalchemy import (
    Boolean, Column, String, Integer, BigInteger, DateTime, Text, JSON, Uuid,
    ForeignKey, CheckConstraint, Index, UniqueConstraint, event
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from .database import Base
from .services.status_rules import APPROVAL_STATUSES, REJECTION_CATEGORIES, WORK_ORDER_STATUSES

JSONType = JSON().with_variant(JSONB(), "postgresql")


class ServicePhase(Base):
    """Project phase that groups work orders."""
    __tablename__ = "service_phases"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String(64), nullable=False, index=True)
    project_id = Column(String(64), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(
            status.in_(["pending", "in_progress", "blocked", "done"]),
            name="chk_phase_status",
        ),
    )

    work_orders = relationship("WorkOrder", back_populates="phase")


class WorkOrder(Base):
    """Repair work order for one device."""
    __tablename__ = "work_orders"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String(64), nullable=False, index=True)
    school_id = Column(String(64), nullable=False, index=True)
    incident_id = Column(String(64), nullable=True, index=True)
    device_id = Column(String(64), nullable=True, index=True)
    project_id = Column(String(64), nullable=True, index=True)
    phase_id = Column(Uuid, ForeignKey("service_phases.id"), nullable=True, index=True)

    status = Column(String(20), nullable=False, default="draft", index=True)
    approval_status = Column(String(20), nullable=False, default="not_required")
    service_shop_id = Column(String(64), nullable=True, index=True)
    assigned_staff_id = Column(String(64), nullable=True)
    repair_location = Column(String(20), nullable=False, default="service_shop")
    task_type = Column(String(50), nullable=True)
    cost_estimate_cents = Column(BigInteger, nullable=False, default=0)
    notes = Column(Text, nullable=True)

    # Denormalized lookup cache (read-only here)
    school_name = Column(String(255), nullable=True)
    contact_name = Column(String(255), nullable=True)
    contact_phone = Column(String(50), nullable=True)
    contact_email = Column(String(255), nullable=True)
    device_serial = Column(String(100), nullable=True)
    device_asset_tag = Column(String(100), nullable=True)
    device_model_id = Column(String(64), nullable=True)
    device_make = Column(String(100), nullable=True)
    device_model = Column(String(100), nullable=True)

    rework_count = Column(Integer, nullable=False, default=0)
    last_rework_at = Column(DateTime(timezone=True), nullable=True)
    last_rework_reason = Column(Text, nullable=True)

    created_by_user_id = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(status.in_(list(WORK_ORDER_STATUSES)), name="chk_work_order_status"),
        CheckConstraint(approval_status.in_(list(APPROVAL_STATUSES)), name="chk_work_order_approval_status"),
        CheckConstraint(repair_location.in_(["service_shop", "on_site"]), name="chk_work_order_repair_location"),
        CheckConstraint("rework_count >= 0", name="chk_work_order_rework_count"),
        Index("idx_work_orders_scope", "tenant_id", "school_id", "status"),
    )

    # Relationships
    phase = relationship("ServicePhase", back_populates="work_orders")
    parts = relationship("WorkOrderPart", back_populates="work_order", order_by="WorkOrderPart.created_at")
    deliverables = relationship("WorkOrderDeliverable", back_populates="work_order")
    rework_history = relationship(
        "WorkOrderReworkHistory",
        back_populates="work_order",
        order_by="WorkOrderReworkHistory.rework_sequence",
    )


class Part(Base):
    """Spare part catalogue entry."""
    __tablename__ = "parts"

    id = Column(String(64), primary_key=True)
    tenant_id = Column(String(64), nullable=False, index=True)
    puk = Column(String(100), nullable=True)
    name = Column(String(255), nullable=False)
    category = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class PartCompatibility(Base):
    """Part fits a device model."""
    __tablename__ = "part_compatibility"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String(64), nullable=False)
    part_id = Column(String(64), ForeignKey("parts.id"), nullable=False)
    device_model_id = Column(String(64), nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "part_id", "device_model_id", name="uq_part_compatibility"),
    )


class InventoryItem(Base):
    """Stock of one part at one service shop."""
    __tablename__ = "inventory"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String(64), nullable=False)
    service_shop_id = Column(String(64), nullable=False)
    part_id = Column(String(64), nullable=False)
    qty_available = Column(BigInteger, nullable=False, default=0)
    qty_reserved = Column(BigInteger, nullable=False, default=0)
    reorder_threshold = Column(BigInteger, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("tenant_id", "service_shop_id", "part_id", name="uq_inventory_shop_part"),
        CheckConstraint("qty_available >= 0", name="chk_inventory_available"),
        CheckConstraint("qty_reserved >= 0", name="chk_inventory_reserved"),
    )


class WorkOrderPart(Base):
    """BOM line: planned vs. used quantity of a part on a work order."""
    __tablename__ = "work_order_parts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String(64), nullable=False)
    school_id = Column(String(64), nullable=False)
    work_order_id = Column(Uuid, ForeignKey("work_orders.id"), nullable=False, index=True)
    service_shop_id = Column(String(64), nullable=False)
    part_id = Column(String(64), nullable=False)
    part_name = Column(String(255), nullable=True)
    part_puk = Column(String(100), nullable=True)
    part_category = Column(String(100), nullable=True)
    device_model_id = Column(String(64), nullable=True)
    is_compatible = Column(Boolean, nullable=False, default=True)
    qty_planned = Column(BigInteger, nullable=False)
    qty_used = Column(BigInteger, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("qty_planned >= 0", name="chk_bom_qty_planned"),
        CheckConstraint("qty_used >= 0 AND qty_used <= qty_planned", name="chk_bom_qty_used"),
    )

    work_order = relationship("WorkOrder", back_populates="parts")


class WorkOrderDeliverable(Base):
    """Evidence item a work order must deliver before its phase can close."""
    __tablename__ = "work_order_deliverables"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String(64), nullable=False)
    school_id = Column(String(64), nullable=False)
    work_order_id = Column(Uuid, ForeignKey("work_orders.id"), nullable=False, index=True)
    phase_id = Column(Uuid, ForeignKey("service_phases.id"), nullable=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default="pending")
    evidence_attachment_id = Column(String(64), nullable=True)
    submitted_by_user_id = Column(String(64), nullable=True)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    reviewed_by_user_id = Column(String(64), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    review_notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(
            status.in_(["pending", "submitted", "approved", "rejected"]),
            name="chk_deliverable_status",
        ),
    )

    work_order = relationship("WorkOrder", back_populates="deliverables")


class WorkOrderApproval(Base):
    """A sign-off request on a work order and, once made, its decision."""
    __tablename__ = "work_order_approvals"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String(64), nullable=False)
    school_id = Column(String(64), nullable=False)
    work_order_id = Column(Uuid, ForeignKey("work_orders.id"), nullable=False, index=True)
    phase_id = Column(Uuid, ForeignKey("service_phases.id"), nullable=True)
    approval_type = Column(String(50), nullable=False, default="school_signoff")
    status = Column(String(20), nullable=False, default="pending")
    requested_by_user_id = Column(String(64), nullable=True)
    requested_at = Column(DateTime(timezone=True), nullable=False)
    decided_by_user_id = Column(String(64), nullable=True)
    decided_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint(status.in_(["pending", "approved", "rejected"]), name="chk_approval_status"),
        Index("ix_work_order_approvals_wo_status", "work_order_id", "status"),
    )


class WorkOrderReworkHistory(Base):
    """One backward transition. Append-only."""
    __tablename__ = "work_order_rework_history"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String(64), nullable=False)
    school_id = Column(String(64), nullable=False)
    work_order_id = Column(Uuid, ForeignKey("work_orders.id"), nullable=False, index=True)
    from_status = Column(String(20), nullable=False)
    to_status = Column(String(20), nullable=False)
    rejection_reason = Column(Text, nullable=True)
    rejection_category = Column(String(30), nullable=False, default="other")
    rejected_by_user_id = Column(String(64), nullable=True)
    rejected_by_name = Column(String(255), nullable=True)
    rework_sequence = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("work_order_id", "rework_sequence", name="uq_rework_sequence"),
        CheckConstraint(rejection_category.in_(list(REJECTION_CATEGORIES)), name="chk_rework_category"),
        CheckConstraint("rework_sequence >= 1", name="chk_rework_sequence"),
    )

    work_order = relationship("WorkOrder", back_populates="rework_history")


class BulkOperationLog(Base):
    """One row per bulk call; written at start and finalized once."""
    __tablename__ = "bulk_operation_log"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String(64), nullable=False, index=True)
    user_id = Column(String(64), nullable=True, index=True)
    operation_type = Column(String(30), nullable=False)
    entity_type = Column(String(50), nullable=False, default="work_order")
    requested_ids = Column(JSONType, nullable=False, default=list)
    successful_ids = Column(JSONType, nullable=False, default=list)
    failed_ids = Column(JSONType, nullable=False, default=list)
    errors = Column(JSONType, nullable=False, default=list)
    started_at = Column(DateTime(timezone=True), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    total_count = Column(Integer, nullable=False, default=0)
    success_count = Column(Integer, nullable=False, default=0)
    failure_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    __table_args__ = (
        CheckConstraint(
            operation_type.in_(["status_update", "assignment", "approval"]),
            name="chk_bulk_operation_type",
        ),
    )


class AuditEvent(Base):
    """Audit trail entry with before/after snapshots."""
    __tablename__ = "audit_events"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String(64), nullable=False, index=True)
    action = Column(String(20), nullable=False)
    entity_type = Column(String(50), nullable=False, index=True)
    entity_id = Column(String(64), nullable=False, index=True)
    user_id = Column(String(64), nullable=True)
    user_name = Column(String(255), nullable=True)
    before = Column(JSONType, nullable=True)
    after = Column(JSONType, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    __table_args__ = (
        CheckConstraint(action.in_(["create", "update"]), name="chk_audit_action"),
    )


class ImmutableRecordError(RuntimeError):
    """Raised by ORM listeners when an append-only row is mutated."""


@event.listens_for(WorkOrderReworkHistory, "before_update")
def _refuse_rework_history_update(_mapper, _connection, target):
    raise ImmutableRecordError(f"Rework history {target.id} is append-only")


@event.listens_for(WorkOrderReworkHistory, "before_delete")
def _refuse_rework_history_delete(_mapper, _connection, target):
    raise ImmutableRecordError(f"Rework history {target.id} is append-only")


@event.listens_for(WorkOrder, "before_delete")
def _refuse_work_order_delete(_mapper, _connection, target):
    raise ImmutableRecordError(f"Work order {target.id} cannot be deleted")
