import pytest

from storeflow.errors import NotFound, ValidationError
from storeflow.models import InventoryTransaction
from storeflow.services import allocation_service


def _check(store, *lines):
    return allocation_service.check_stock_availability(
        store_id=store.id,
        items=[{"product_variant_id": v.id, "quantity": q} for v, q in lines],
    )


def test_transfer_covers_whole_shortage(db_session, store_a, store_b, variant, stock):
    stock(store_b, variant, 50)

    result = _check(store_a, (variant, 10))

    assert result["has_shortage"] is True
    [s] = result["suggestions"]
    assert s["shortage_quantity"] == 10
    assert s["available_quantity"] == 0
    assert s["transfer_options"] == [{"store_id": store_b.id, "available_quantity": 50}]
    assert s["purchase_suggestion"] is None
    assert s["mixed_solution"] is None


def test_local_stock_plus_transfer_is_mixed(db_session, store_a, store_b, variant, stock):
    stock(store_a, variant, 3)
    stock(store_b, variant, 20)

    [s] = _check(store_a, (variant, 10))["suggestions"]

    assert s["shortage_quantity"] == 7
    assert s["mixed_solution"] == {"transfer_quantity": 7, "purchase_quantity": 0}
    assert s["purchase_suggestion"] is None


def test_transfer_and_purchase_when_fleet_is_short(db_session, store_a, store_b, variant, stock):
    stock(store_b, variant, 5)

    [s] = _check(store_a, (variant, 10))["suggestions"]

    assert s["mixed_solution"] == {"transfer_quantity": 5, "purchase_quantity": 5}
    assert s["purchase_suggestion"] == {"suggested_quantity": 5}


def test_purchase_only_when_no_store_has_stock(db_session, store_a, store_b, variant):
    [s] = _check(store_a, (variant, 4))["suggestions"]

    assert s["transfer_options"] == []
    assert s["purchase_suggestion"] == {"suggested_quantity": 4}
    assert s["mixed_solution"] is None


def test_no_suggestion_when_store_covers_line(db_session, store_a, variant, stock):
    stock(store_a, variant, 10)

    result = _check(store_a, (variant, 10))

    assert result == {"has_shortage": False, "suggestions": []}


def test_transfer_options_ranked_by_stock_then_store_id(
    db_session, store_a, store_b, store_c, make_store, variant, stock
):
    store_d = make_store("Store D")
    stock(store_b, variant, 8)
    stock(store_c, variant, 20)
    stock(store_d, variant, 8)

    [s] = _check(store_a, (variant, 30))["suggestions"]

    assert [o["store_id"] for o in s["transfer_options"]] == [store_c.id, store_b.id, store_d.id]
    assert [o["available_quantity"] for o in s["transfer_options"]] == [20, 8, 8]


def test_duplicate_lines_are_merged(db_session, store_a, store_b, make_variant, stock):
    tee = make_variant("TEE")
    cap = make_variant("CAP")
    stock(store_a, tee, 4)

    result = _check(store_a, (cap, 1), (tee, 3), (tee, 3))

    assert [s["product_variant_id"] for s in result["suggestions"]] == [cap.id, tee.id]
    assert result["suggestions"][1]["requested_quantity"] == 6
    assert result["suggestions"][1]["shortage_quantity"] == 2


def test_planner_writes_nothing(db_session, store_a, store_b, variant, stock):
    stock(store_b, variant, 1)
    before = db_session.query(InventoryTransaction).count()

    _check(store_a, (variant, 5))

    assert db_session.query(InventoryTransaction).count() == before


def test_planner_input_errors(db_session, store_a, variant):
    with pytest.raises(ValidationError):
        allocation_service.check_stock_availability(store_id=store_a.id, items=[])
    with pytest.raises(NotFound):
        allocation_service.check_stock_availability(
            store_id=9999, items=[{"product_variant_id": variant.id, "quantity": 1}]
        )
    with pytest.raises(NotFound):
        allocation_service.check_stock_availability(
            store_id=store_a.id, items=[{"product_variant_id": 9999, "quantity": 1}]
        )
    with pytest.raises(ValidationError):
        allocation_service.check_stock_availability(
            store_id=store_a.id, items=[{"product_variant_id": variant.id, "quantity": 0}]
        )


def test_plan_line_is_pure():
    s = allocation_service.plan_line(
        store_id=1, variant_id=9, requested=12, stock_by_store={1: 2, 2: 3, 3: 3, 4: 0}
    )
    assert [o["store_id"] for o in s["transfer_options"]] == [2, 3]
    assert s["mixed_solution"] == {"transfer_quantity": 6, "purchase_quantity": 4}
