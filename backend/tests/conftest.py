from __future__ import annotations

from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ims_repairs.auth import RequestScope
from ims_repairs.database import Base
from ims_repairs.models import InventoryItem, Part, PartCompatibility, ServicePhase, WorkOrder


class RecordingAudit:
    """AuditLogger double that keeps every call."""

    def __init__(self):
        self.creates = []
        self.updates = []

    def log_create(self, entity_type, entity_id, snapshot):
        self.creates.append((entity_type, entity_id, snapshot))

    def log_update(self, entity_type, entity_id, before, after):
        self.updates.append((entity_type, entity_id, before, after))


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def db(engine):
    session = sessionmaker(bind=engine, autoflush=False)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def scope():
    return RequestScope(tenant_id="tenant-1", school_id="school-1", user_id="user-1", user_name="Test User")


@pytest.fixture()
def audit():
    return RecordingAudit()


@pytest.fixture()
def make_work_order(db, scope):
    def _make(**overrides):
        values = dict(
            tenant_id=scope.tenant_id,
            school_id=scope.school_id,
            status="draft",
            approval_status="not_required",
            service_shop_id="shop-1",
            device_model_id="model-1",
            repair_location="service_shop",
            cost_estimate_cents=0,
            rework_count=0,
        )
        values.update(overrides)
        work_order = WorkOrder(id=uuid4(), **values)
        db.add(work_order)
        db.commit()
        return work_order

    return _make


@pytest.fixture()
def make_inventory(db, scope):
    def _make(*, part_id="part-1", service_shop_id="shop-1", qty_available=10, qty_reserved=0):
        item = InventoryItem(
            tenant_id=scope.tenant_id,
            service_shop_id=service_shop_id,
            part_id=part_id,
            qty_available=qty_available,
            qty_reserved=qty_reserved,
            reorder_threshold=2,
        )
        db.add(item)
        db.commit()
        return item

    return _make


@pytest.fixture()
def make_part(db, scope):
    def _make(*, part_id="part-1", compatible_models=("model-1",)):
        db.add(Part(id=part_id, tenant_id=scope.tenant_id, name=f"Part {part_id}", puk="PUK-1", category="screen"))
        db.flush()
        for model_id in compatible_models:
            db.add(PartCompatibility(tenant_id=scope.tenant_id, part_id=part_id, device_model_id=model_id))
        db.commit()

    return _make


@pytest.fixture()
def make_phase(db, scope):
    def _make(*, status="in_progress"):
        phase = ServicePhase(id=uuid4(), tenant_id=scope.tenant_id, name="Phase 1", status=status)
        db.add(phase)
        db.commit()
        return phase

    return _make
