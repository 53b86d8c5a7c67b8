import pytest
from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError

from storeflow.errors import (
    ForeignKeyViolation,
    InsufficientStock,
    InvalidStatusTransition,
    NotFound,
    ValidationError,
)
from storeflow.models import InventoryTransfer, Order, OrderItem, OrderStatusHistory
from storeflow.services import inventory_service, order_service, payment_service, transfer_service


def _qty(store, variant):
    return inventory_service.get_quantity(store.id, variant.id)


def _order(store, variant, quantity=2, **kwargs):
    return order_service.create_order(
        store_id=store.id,
        items=[{"product_variant_id": variant.id, "quantity": quantity}],
        **kwargs,
    )


def test_create_order_totals_and_number(db_session, store_a, variant, stock):
    stock(store_a, variant, 5)

    order = order_service.create_order(
        store_id=store_a.id,
        items=[
            {"product_variant_id": variant.id, "quantity": 2},
            {"product_name": "Gift wrap", "quantity": 1, "price": 3000},
        ],
        shipping_fee=6000,
        tax=1000,
        discount_amount=10000,
        actor_user_id=3,
    )

    assert order["order_number"] == f"ORD-{store_a.id:03d}-0001"
    assert order["subtotal"] == 103000
    assert order["grand_total"] == 100000
    assert order["paid_amount"] == 0
    assert order["remaining_amount"] == 100000
    assert order["shipping_status"] == "pending"
    assert order["payment_status"] == "pending"
    assert [i["sku"] for i in order["items"]] == ["TEE-RED-M", None]
    assert order["items"][0]["price"] == 50000
    assert order["items"][1]["is_stocked_sale"] is False


def test_create_order_writes_initial_history(db_session, store_a, variant, stock):
    stock(store_a, variant, 5)

    order = _order(store_a, variant)

    rows = [(h["status_type"], h["from_status"], h["to_status"]) for h in order["status_histories"]]
    assert rows == [("shipping", None, "pending"), ("payment", None, "pending")]


def test_create_order_deducts_stocked_lines(db_session, store_a, variant, stock):
    stock(store_a, variant, 5)

    _order(store_a, variant, quantity=2)

    assert _qty(store_a, variant) == 3
    sale = list(inventory_service.inventory_history(type="sale"))
    assert len(sale) == 1
    assert sale[0].quantity_delta == -2
    assert sale[0].reference_type == "order"


def test_order_numbers_increase_per_store(db_session, store_a, store_b, variant, stock):
    stock(store_a, variant, 5)
    stock(store_b, variant, 5)

    first = _order(store_a, variant, quantity=1)
    second = _order(store_a, variant, quantity=1)
    other = _order(store_b, variant, quantity=1)

    assert first["order_number"].endswith("-0001")
    assert second["order_number"].endswith("-0002")
    assert other["order_number"] == f"ORD-{store_b.id:03d}-0001"


def test_backorder_line_takes_no_stock(db_session, store_a, variant):
    order = order_service.create_order(
        store_id=store_a.id,
        items=[{"product_variant_id": variant.id, "quantity": 4,
                "is_stocked_sale": False, "is_backorder": True}],
    )

    assert order["items"][0]["is_backorder"] is True
    assert _qty(store_a, variant) == 0


def test_create_order_insufficient_stock_rolls_back(db_session, store_a, variant, stock):
    stock(store_a, variant, 1)

    with pytest.raises(InsufficientStock):
        _order(store_a, variant, quantity=3)

    assert db_session.query(Order).count() == 0
    assert db_session.query(OrderItem).count() == 0
    assert _qty(store_a, variant) == 1


def test_create_order_input_errors(db_session, store_a, variant):
    with pytest.raises(ValidationError):
        order_service.create_order(store_id=store_a.id, items=[])
    with pytest.raises(ValidationError):
        order_service.create_order(store_id=store_a.id, items=[{"quantity": 1, "price": 100}])
    with pytest.raises(ValidationError):
        order_service.create_order(
            store_id=store_a.id,
            items=[{"product_name": "Custom", "quantity": 1, "price": 100, "is_stocked_sale": True}],
        )
    with pytest.raises(ValidationError):
        order_service.create_order(
            store_id=store_a.id,
            items=[{"product_name": "Custom", "quantity": 1, "price": 100}],
            discount_amount=200,
        )
    with pytest.raises(NotFound):
        order_service.create_order(store_id=9999, items=[{"product_name": "X", "quantity": 1, "price": 1}])


def test_ship_then_complete(db_session, store_a, variant, stock):
    stock(store_a, variant, 5)
    order = _order(store_a, variant)

    shipped = order_service.ship_order(order_id=order["id"], tracking_number="TRK1", carrier="ACME")
    assert shipped["shipping_status"] == "shipped"
    assert shipped["tracking_number"] == "TRK1"
    assert shipped["shipped_at"] is not None

    done = order_service.complete_order(order_id=order["id"])
    assert done["shipping_status"] == "completed"
    assert [i["status"] for i in done["items"]] == ["fulfilled"]
    shipping_rows = [h for h in done["status_histories"] if h["status_type"] == "shipping"]
    assert [h["to_status"] for h in shipping_rows] == ["pending", "shipped", "completed"]


def test_illegal_shipping_transitions(db_session, store_a, variant, stock):
    stock(store_a, variant, 5)
    order = _order(store_a, variant)

    with pytest.raises(InvalidStatusTransition):
        order_service.complete_order(order_id=order["id"])

    order_service.cancel_order(order_id=order["id"], reason="customer changed mind")
    with pytest.raises(InvalidStatusTransition):
        order_service.ship_order(order_id=order["id"])

    history = db_session.query(OrderStatusHistory).filter_by(order_id=order["id"]).count()
    assert history == 3


def test_cancel_order_restocks_and_cascades(db_session, store_a, store_b, store_c, variant, stock):
    stock(store_a, variant, 2)
    stock(store_b, variant, 10)
    stock(store_c, variant, 10)
    order = _order(store_a, variant, quantity=2)
    pending, moving, done = transfer_service.create_transfers_batch(
        transfers=[
            {"from_store_id": store_b.id, "to_store_id": store_a.id,
             "product_variant_id": variant.id, "quantity": 3},
            {"from_store_id": store_c.id, "to_store_id": store_a.id,
             "product_variant_id": variant.id, "quantity": 4, "status": "in_transit"},
            {"from_store_id": store_b.id, "to_store_id": store_a.id,
             "product_variant_id": variant.id, "quantity": 1, "status": "completed"},
        ],
        order_id=order["id"],
    )

    result = order_service.cancel_order(order_id=order["id"], reason="customer changed mind")

    assert result["shipping_status"] == "cancelled"
    assert result["cancellation_reason"] == "customer changed mind"
    assert result["transfers"] == []
    assert [i["status"] for i in result["items"]] == ["cancelled"]
    # 2 restocked from the order plus 1 from the completed transfer
    assert _qty(store_a, variant) == 3
    assert _qty(store_c, variant) == 10

    statuses = {t["id"]: t for t in (transfer_service.get_transfer(x["id"]) for x in (pending, moving, done))}
    assert statuses[pending["id"]]["status"] == "cancelled"
    assert statuses[moving["id"]]["status"] == "cancelled"
    assert statuses[done["id"]]["status"] == "completed"
    assert all(t["order_id"] is None for t in statuses.values())
    assert f"Unlinked from order {order['order_number']} (cancelled)" in statuses[done["id"]]["notes"]


def test_cascade_is_idempotent(db_session, store_a, store_b, variant, stock):
    stock(store_b, variant, 5)
    order = order_service.create_order(
        store_id=store_a.id,
        items=[{"product_variant_id": variant.id, "quantity": 2,
                "is_stocked_sale": False, "is_backorder": True}],
    )
    transfer_service.create_transfers_batch(
        transfers=[{"from_store_id": store_b.id, "to_store_id": store_a.id,
                    "product_variant_id": variant.id, "quantity": 2}],
        order_id=order["id"],
    )

    first = transfer_service.cancel_transfers_for_order(order_id=order["id"])
    second = transfer_service.cancel_transfers_for_order(order_id=order["id"])

    assert first == {"cancelled": 1, "unlinked": 1}
    assert second == {"cancelled": 0, "unlinked": 0}


def test_cancel_requires_reason(db_session, store_a, variant, stock):
    stock(store_a, variant, 5)
    order = _order(store_a, variant)

    with pytest.raises(ValidationError):
        order_service.cancel_order(order_id=order["id"], reason="")


def test_delete_order_unlinks_transfers_and_restocks(db_session, store_a, store_b, variant, stock):
    stock(store_a, variant, 2)
    stock(store_b, variant, 5)
    order = _order(store_a, variant, quantity=2)
    created = transfer_service.create_transfers_batch(
        transfers=[{"from_store_id": store_b.id, "to_store_id": store_a.id,
                    "product_variant_id": variant.id, "quantity": 3}],
        order_id=order["id"],
    )
    assert created[0]["notes"] == f"Stock transfer for order #{order['id']}"

    result = order_service.delete_order(order_id=order["id"])

    assert result == {
        "order_id": order["id"],
        "order_number": order["order_number"],
        "transfers_cancelled": 1,
        "transfers_unlinked": 1,
    }
    assert db_session.get(Order, order["id"]) is None
    assert db_session.query(OrderItem).count() == 0
    assert db_session.query(OrderStatusHistory).count() == 0
    transfer = db_session.get(InventoryTransfer, created[0]["id"])
    assert transfer.status == "cancelled"
    assert transfer.order_id is None
    assert _qty(store_a, variant) == 2


def test_delete_cancelled_order_does_not_restock_twice(db_session, store_a, variant, stock):
    stock(store_a, variant, 2)
    order = _order(store_a, variant, quantity=2)
    order_service.cancel_order(order_id=order["id"], reason="duplicate")

    order_service.delete_order(order_id=order["id"])

    assert _qty(store_a, variant) == 2


def test_delete_refuses_shipped_order(db_session, store_a, variant, stock):
    stock(store_a, variant, 2)
    order = _order(store_a, variant)
    order_service.ship_order(order_id=order["id"])

    with pytest.raises(ValidationError):
        order_service.delete_order(order_id=order["id"])

    assert db_session.get(Order, order["id"]) is not None


def test_delete_refuses_order_with_payments(db_session, store_a, variant, stock):
    stock(store_a, variant, 2)
    order = _order(store_a, variant, quantity=1)
    payment_service.add_payment(order_id=order["id"], amount=1000, payment_method="cash")

    with pytest.raises(ForeignKeyViolation):
        order_service.delete_order(order_id=order["id"])

    assert db_session.get(Order, order["id"]) is not None
    assert _qty(store_a, variant) == 1


def test_get_order_summary(db_session, store_a, variant, stock):
    stock(store_a, variant, 2)
    order = _order(store_a, variant, quantity=1)

    summary = order_service.get_order_summary(order["id"])

    assert summary["order_number"] == order["order_number"]
    assert summary["payments"] == []
    assert summary["transfers"] == []
    with pytest.raises(NotFound):
        order_service.get_order_summary(9999)


def test_database_refuses_deleting_order_with_linked_transfers(db_session, store_a, store_b, variant, stock):
    stock(store_b, variant, 5)
    order = order_service.create_order(
        store_id=store_a.id,
        items=[{"product_variant_id": variant.id, "quantity": 2,
                "is_stocked_sale": False, "is_backorder": True}],
    )
    created = transfer_service.create_transfers_batch(
        transfers=[{"from_store_id": store_b.id, "to_store_id": store_a.id,
                    "product_variant_id": variant.id, "quantity": 2}],
        order_id=order["id"],
    )

    with pytest.raises(IntegrityError):
        db_session.execute(delete(Order).where(Order.id == order["id"]))
        db_session.flush()
    db_session.rollback()

    transfer = db_session.get(InventoryTransfer, created[0]["id"])
    assert transfer.order_id == order["id"]
    assert transfer.status == "pending"
