from __future__ import annotations

import pytest

from ims_repairs.domain_errors import InsufficientStock, NotFound, ValidationError
from ims_repairs.use_cases.inventory_ledger import (
    consume_stock,
    get_inventory_item,
    list_inventory_use_case,
    release_stock,
    reserve_stock,
)


def _item(db, scope, part_id="part-1"):
    return get_inventory_item(db, tenant_id=scope.tenant_id, service_shop_id="shop-1", part_id=part_id)


def _reserve(db, scope, qty, part_id="part-1"):
    reserve_stock(db, tenant_id=scope.tenant_id, service_shop_id="shop-1", part_id=part_id, qty=qty)


def test_reserve_up_to_free_stock(db, scope, make_inventory) -> None:
    make_inventory(qty_available=10)

    _reserve(db, scope, 7)
    _reserve(db, scope, 3)
    db.commit()

    item = _item(db, scope)
    assert item.qty_available == 10
    assert item.qty_reserved == 10


def test_reserve_beyond_free_stock_fails_and_changes_nothing(db, scope, make_inventory) -> None:
    make_inventory(qty_available=10, qty_reserved=8)

    with pytest.raises(InsufficientStock) as exc_info:
        _reserve(db, scope, 3)
    db.rollback()

    assert exc_info.value.details["qty"] == 3
    assert _item(db, scope).qty_reserved == 8


def test_reserve_on_missing_row_is_insufficient_stock(db, scope) -> None:
    with pytest.raises(InsufficientStock):
        _reserve(db, scope, 1, part_id="unknown")


@pytest.mark.parametrize("qty", [0, -1])
def test_non_positive_quantities_are_rejected(db, scope, make_inventory, qty) -> None:
    make_inventory()
    with pytest.raises(ValidationError):
        _reserve(db, scope, qty)
    with pytest.raises(ValidationError):
        consume_stock(db, tenant_id=scope.tenant_id, service_shop_id="shop-1", part_id="part-1", qty=qty)
    with pytest.raises(ValidationError):
        release_stock(db, tenant_id=scope.tenant_id, service_shop_id="shop-1", part_id="part-1", qty=qty)


def test_consume_lowers_reserved_and_available(db, scope, make_inventory) -> None:
    make_inventory(qty_available=10, qty_reserved=10)

    consume_stock(db, tenant_id=scope.tenant_id, service_shop_id="shop-1", part_id="part-1", qty=4)
    db.commit()

    item = _item(db, scope)
    assert item.qty_available == 6
    assert item.qty_reserved == 6


def test_consume_and_release_floor_at_zero(db, scope, make_inventory) -> None:
    make_inventory(qty_available=3, qty_reserved=2)

    consume_stock(db, tenant_id=scope.tenant_id, service_shop_id="shop-1", part_id="part-1", qty=5)
    db.commit()
    item = _item(db, scope)
    assert item.qty_available == 0
    assert item.qty_reserved == 0

    release_stock(db, tenant_id=scope.tenant_id, service_shop_id="shop-1", part_id="part-1", qty=4)
    db.commit()
    assert _item(db, scope).qty_reserved == 0


def test_release_keeps_available(db, scope, make_inventory) -> None:
    make_inventory(qty_available=10, qty_reserved=6)

    release_stock(db, tenant_id=scope.tenant_id, service_shop_id="shop-1", part_id="part-1", qty=6)
    db.commit()

    item = _item(db, scope)
    assert item.qty_available == 10
    assert item.qty_reserved == 0


def test_consume_and_release_on_missing_row_are_not_found(db, scope) -> None:
    with pytest.raises(NotFound):
        consume_stock(db, tenant_id=scope.tenant_id, service_shop_id="shop-1", part_id="nope", qty=1)
    with pytest.raises(NotFound):
        release_stock(db, tenant_id=scope.tenant_id, service_shop_id="shop-1", part_id="nope", qty=1)


def test_inventory_read_model_reports_free_stock(db, scope, make_inventory) -> None:
    make_inventory(part_id="part-a", qty_available=10, qty_reserved=9)
    make_inventory(part_id="part-b", qty_available=10, qty_reserved=1)
    make_inventory(part_id="part-c", service_shop_id="shop-2")

    rows = list_inventory_use_case(db=db, scope=scope, service_shop_id="shop-1")

    assert [row.part_id for row in rows] == ["part-a", "part-b"]
    assert rows[0].qty_free == 1
    assert rows[0].below_reorder is True
    assert rows[1].qty_free == 9
    assert rows[1].below_reorder is False
