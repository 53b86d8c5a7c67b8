import pytest

from storeflow.errors import InvalidStatusTransition, NotFound, ValidationError
from storeflow.models import InventoryTransaction, ProductVariant
from storeflow.services import inventory_service, purchase_service


def test_allocate_costs_prorates_shipping_by_quantity():
    lines = purchase_service.allocate_costs(
        100,
        [
            {"product_variant_id": 1, "quantity": 1, "cost_price": 500},
            {"product_variant_id": 2, "quantity": 1, "cost_price": 500},
            {"product_variant_id": 3, "quantity": 1, "cost_price": 500},
        ],
    )
    assert [l["allocated_shipping_cost"] for l in lines] == [33, 33, 34]
    assert [l["total_cost_price"] for l in lines] == [533, 533, 534]


def test_shipping_allocation_sums_to_shipping_cost():
    for shipping in (0, 1, 7, 999, 12345):
        lines = purchase_service.allocate_costs(
            shipping,
            [
                {"product_variant_id": 1, "quantity": 3, "cost_price": 10},
                {"product_variant_id": 2, "quantity": 7, "cost_price": 10},
                {"product_variant_id": 3, "quantity": 11, "cost_price": 10},
            ],
        )
        assert sum(l["allocated_shipping_cost"] for l in lines) == shipping


def test_record_purchase_updates_average_cost_and_stock(db_session, store_a, variant):
    # First lot: 100 units for 10000 total
    purchase_service.record_purchase(
        store_id=store_a.id,
        shipping_cost=0,
        items=[{"product_variant_id": variant.id, "quantity": 100, "cost_price": 100}],
    )
    # Second lot: 50 units at 120 plus 500 shipping (10 per unit)
    result = purchase_service.record_purchase(
        store_id=store_a.id,
        shipping_cost=500,
        items=[{"product_variant_id": variant.id, "quantity": 50, "cost_price": 120}],
        actor_user_id=7,
    )

    refreshed = db_session.get(ProductVariant, variant.id)
    assert refreshed.total_purchased_quantity == 150
    assert refreshed.total_cost_amount == 16500
    assert refreshed.average_cost == 110
    assert refreshed.average_cost == refreshed.computed_average_cost()

    assert result["status"] == "completed"
    assert result["inventory_processed"] is True
    assert result["total_amount"] == 6500
    assert result["items"][0]["allocated_shipping_cost"] == 500
    assert inventory_service.get_quantity(store_a.id, variant.id) == 150

    purchase_txs = db_session.query(InventoryTransaction).filter_by(type="purchase").all()
    assert len(purchase_txs) == 2
    assert purchase_txs[-1].reference_type == "purchase"
    assert purchase_txs[-1].actor_user_id == 7


def test_average_cost_rounds_half_up(db_session, store_a, variant):
    purchase_service.record_purchase(
        store_id=store_a.id,
        items=[{"product_variant_id": variant.id, "quantity": 2, "cost_price": 0}],
        shipping_cost=1,
    )
    # 1 cent over 2 units: 0.5 rounds up
    assert db_session.get(ProductVariant, variant.id).average_cost == 1


def test_purchase_total_includes_shipping_across_lines(db_session, store_a, make_variant):
    tee = make_variant("TEE")
    cap = make_variant("CAP")
    result = purchase_service.record_purchase(
        store_id=store_a.id,
        shipping_cost=100,
        items=[
            {"product_variant_id": tee.id, "quantity": 1, "cost_price": 1000},
            {"product_variant_id": cap.id, "quantity": 3, "cost_price": 200},
        ],
    )
    assert [i["allocated_shipping_cost"] for i in result["items"]] == [25, 75]
    assert result["total_amount"] == 1000 + 600 + 100
    assert result["purchase_number"] == f"PO-{store_a.id:03d}-0001"


def test_pending_purchase_applies_costs_once_on_receipt(db_session, store_a, variant):
    pending = purchase_service.record_purchase(
        store_id=store_a.id,
        status="pending",
        items=[{"product_variant_id": variant.id, "quantity": 4, "cost_price": 250}],
    )
    assert pending["inventory_processed"] is False
    assert inventory_service.get_quantity(store_a.id, variant.id) == 0
    assert db_session.get(ProductVariant, variant.id).total_purchased_quantity == 0

    for status in ("confirmed", "in_transit", "received", "completed"):
        result = purchase_service.update_purchase_status(purchase_id=pending["id"], status=status)

    assert result["inventory_processed"] is True
    assert inventory_service.get_quantity(store_a.id, variant.id) == 4
    refreshed = db_session.get(ProductVariant, variant.id)
    assert refreshed.total_purchased_quantity == 4
    assert refreshed.average_cost == 250


def test_illegal_purchase_transition(db_session, store_a, variant):
    purchase = purchase_service.record_purchase(
        store_id=store_a.id,
        status="pending",
        items=[{"product_variant_id": variant.id, "quantity": 1, "cost_price": 1}],
    )
    with pytest.raises(InvalidStatusTransition):
        purchase_service.update_purchase_status(purchase_id=purchase["id"], status="received")


def test_record_purchase_validation(db_session, store_a, variant):
    with pytest.raises(ValidationError):
        purchase_service.record_purchase(store_id=store_a.id, items=[])
    with pytest.raises(ValidationError):
        purchase_service.record_purchase(
            store_id=store_a.id,
            shipping_cost=-1,
            items=[{"product_variant_id": variant.id, "quantity": 1, "cost_price": 1}],
        )
    with pytest.raises(ValidationError):
        purchase_service.record_purchase(
            store_id=store_a.id,
            items=[{"product_variant_id": variant.id, "quantity": 0, "cost_price": 1}],
        )


def test_get_purchase(db_session, store_a, variant):
    recorded = purchase_service.record_purchase(
        store_id=store_a.id,
        shipping_cost=300,
        items=[{"product_variant_id": variant.id, "quantity": 3, "cost_price": 1000}],
    )

    fetched = purchase_service.get_purchase(recorded["id"])

    assert fetched["purchase_number"] == recorded["purchase_number"]
    assert [i["allocated_shipping_cost"] for i in fetched["items"]] == [300]
    with pytest.raises(NotFound):
        purchase_service.get_purchase(9999)
