"""Pydantic schemas for API."""
from pydantic import BaseModel, Field, ConfigDict
from typing import Literal, Optional
from datetime import datetime
from uuid import UUID


WorkOrderStatusLiteral = Literal["draft", "assigned", "in_repair", "qa", "completed", "approved"]
ApprovalDecisionLiteral = Literal["approved", "rejected"]


# Work orders
class WorkOrderCreate(BaseModel):
    incident_id: Optional[str] = None
    device_id: Optional[str] = None
    project_id: Optional[str] = None
    phase_id: Optional[UUID] = None
    service_shop_id: Optional[str] = None
    assigned_staff_id: Optional[str] = None
    repair_location: Literal["service_shop", "on_site"] = "service_shop"
    task_type: Optional[str] = None
    approval_status: Literal["pending", "approved", "rejected", "not_required"] = "not_required"
    cost_estimate_cents: int = Field(default=0, ge=0)
    notes: Optional[str] = None
    school_name: Optional[str] = None
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_email: Optional[str] = None
    device_serial: Optional[str] = None
    device_asset_tag: Optional[str] = None
    device_model_id: Optional[str] = None
    device_make: Optional[str] = None
    device_model: Optional[str] = None


class WorkOrderResponse(BaseModel):
    id: UUID
    tenant_id: str
    school_id: str
    incident_id: Optional[str] = None
    device_id: Optional[str] = None
    project_id: Optional[str] = None
    phase_id: Optional[UUID] = None
    status: str
    approval_status: str
    service_shop_id: Optional[str] = None
    assigned_staff_id: Optional[str] = None
    repair_location: str
    task_type: Optional[str] = None
    cost_estimate_cents: int
    notes: Optional[str] = None
    school_name: Optional[str] = None
    contact_name: Optional[str] = None
    device_serial: Optional[str] = None
    device_asset_tag: Optional[str] = None
    device_model_id: Optional[str] = None
    rework_count: int
    last_rework_at: Optional[datetime] = None
    last_rework_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class WorkOrderStatusUpdate(BaseModel):
    status: WorkOrderStatusLiteral


# Approvals and deliverables
class ApprovalRequest(BaseModel):
    approval_type: Optional[str] = None


class ApprovalDecision(BaseModel):
    decision: ApprovalDecisionLiteral
    notes: Optional[str] = None
    approval_id: Optional[UUID] = None


class ApprovalResponse(BaseModel):
    id: UUID
    work_order_id: UUID
    phase_id: Optional[UUID] = None
    approval_type: str
    status: str
    requested_by_user_id: Optional[str] = None
    requested_at: datetime
    decided_by_user_id: Optional[str] = None
    decided_at: Optional[datetime] = None
    notes: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class DeliverableCreate(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None


class DeliverableSubmit(BaseModel):
    evidence_attachment_id: str = Field(min_length=1)
    notes: Optional[str] = None


class DeliverableReview(BaseModel):
    status: ApprovalDecisionLiteral
    notes: Optional[str] = None


class DeliverableResponse(BaseModel):
    id: UUID
    work_order_id: UUID
    phase_id: Optional[UUID] = None
    title: str
    description: Optional[str] = None
    status: str
    evidence_attachment_id: Optional[str] = None
    submitted_by_user_id: Optional[str] = None
    submitted_at: Optional[datetime] = None
    reviewed_by_user_id: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    review_notes: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class PhaseStatusUpdate(BaseModel):
    status: Literal["pending", "in_progress", "blocked", "done"]


class PhaseResponse(BaseModel):
    id: UUID
    tenant_id: str
    project_id: Optional[str] = None
    name: str
    status: str
    model_config = ConfigDict(from_attributes=True)


# BOM
class BomLineCreate(BaseModel):
    part_id: str = Field(min_length=1)
    qty_planned: int


class BomLineConsume(BaseModel):
    qty_used: int


class BomLineRelease(BaseModel):
    qty: int


class BomLineResponse(BaseModel):
    id: UUID
    work_order_id: UUID
    service_shop_id: str
    part_id: str
    part_name: Optional[str] = None
    part_puk: Optional[str] = None
    part_category: Optional[str] = None
    device_model_id: Optional[str] = None
    is_compatible: bool
    qty_planned: int
    qty_used: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class PartSummary(BaseModel):
    id: str
    name: str
    category: Optional[str] = None
    puk: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class PartSuggestionResponse(BaseModel):
    device_model_id: str
    count: int
    items: list[PartSummary]
    model_config = ConfigDict(from_attributes=True)


# Inventory
class InventoryItemResponse(BaseModel):
    id: UUID
    service_shop_id: str
    part_id: str
    qty_available: int
    qty_reserved: int
    qty_free: int
    reorder_threshold: int
    below_reorder: bool
    updated_at: Optional[datetime] = None


# Rework
class RejectWorkOrderRequest(BaseModel):
    target_status: WorkOrderStatusLiteral
    reason: str = ""
    category: Optional[str] = None


class ReworkHistoryResponse(BaseModel):
    id: UUID
    work_order_id: UUID
    from_status: str
    to_status: str
    rejection_reason: Optional[str] = None
    rejection_category: str
    rejected_by_user_id: Optional[str] = None
    rejected_by_name: Optional[str] = None
    rework_sequence: int
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class RejectWorkOrderResponse(BaseModel):
    work_order: WorkOrderResponse
    rework_history: ReworkHistoryResponse


# Bulk operations
class BulkStatusUpdateRequest(BaseModel):
    work_order_ids: list[str]
    status: Optional[WorkOrderStatusLiteral] = None


class BulkAssignmentRequest(BaseModel):
    work_order_ids: list[str]
    assigned_staff_id: Optional[str] = None
    service_shop_id: Optional[str] = None


class BulkApprovalRequest(BaseModel):
    work_order_ids: list[str]
    decision: Optional[str] = None
    notes: Optional[str] = None


class BulkOperationError(BaseModel):
    id: str
    code: str
    message: str


class BulkOperationResult(BaseModel):
    operation_id: UUID
    succeeded: list[str]
    failed: list[BulkOperationError]
    total_count: int
    success_count: int
    failure_count: int


class BulkOperationLogResponse(BaseModel):
    id: UUID
    tenant_id: str
    user_id: Optional[str] = None
    operation_type: str
    entity_type: str
    requested_ids: list[str]
    successful_ids: list[str]
    failed_ids: list[str]
    errors: list[BulkOperationError]
    started_at: datetime
    completed_at: Optional[datetime] = None
    total_count: int
    success_count: int
    failure_count: int
    model_config = ConfigDict(from_attributes=True)


class HealthResponse(BaseModel):
    status: str
    version: str
    database: str
