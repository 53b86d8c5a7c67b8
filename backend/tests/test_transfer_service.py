import pytest

from storeflow.errors import InsufficientStock, InvalidTransferTransition, NotFound, ValidationError
from storeflow.models import InventoryTransaction
from storeflow.services import inventory_service, transfer_service


def _qty(store, variant):
    return inventory_service.get_quantity(store.id, variant.id)


def _create(store_from, store_to, variant, quantity, **kwargs):
    return transfer_service.create_transfer(
        from_store_id=store_from.id,
        to_store_id=store_to.id,
        variant_id=variant.id,
        quantity=quantity,
        **kwargs,
    )


def test_pending_transfer_moves_nothing(db_session, store_a, store_b, variant, stock):
    stock(store_a, variant, 10)

    transfer = _create(store_a, store_b, variant, 4, notes="restock")

    assert transfer["status"] == "pending"
    assert (_qty(store_a, variant), _qty(store_b, variant)) == (10, 0)


def test_debit_at_in_transit_credit_at_completed(db_session, store_a, store_b, variant, stock):
    stock(store_a, variant, 10)
    transfer = _create(store_a, store_b, variant, 4)

    shipped = transfer_service.update_transfer_status(transfer_id=transfer["id"], status="in_transit")
    assert shipped["shipped_at"] is not None
    assert (_qty(store_a, variant), _qty(store_b, variant)) == (6, 0)

    done = transfer_service.update_transfer_status(transfer_id=transfer["id"], status="completed")
    assert done["completed_at"] is not None
    assert (_qty(store_a, variant), _qty(store_b, variant)) == (6, 4)

    types = [tx.type for tx in inventory_service.inventory_history(variant_id=variant.id)]
    assert types == ["addition", "transfer_out", "transfer_in"]


def test_pending_to_completed_moves_both_sides(db_session, store_a, store_b, variant, stock):
    stock(store_a, variant, 5)
    transfer = _create(store_a, store_b, variant, 5)

    transfer_service.update_transfer_status(transfer_id=transfer["id"], status="completed")

    assert (_qty(store_a, variant), _qty(store_b, variant)) == (0, 5)


def test_create_in_completed_status_applies_movements(db_session, store_a, store_b, variant, stock):
    stock(store_a, variant, 5)

    transfer = _create(store_a, store_b, variant, 2, status="completed")

    assert transfer["status"] == "completed"
    assert (_qty(store_a, variant), _qty(store_b, variant)) == (3, 2)


def test_in_transit_needs_source_stock(db_session, store_a, store_b, variant, stock):
    stock(store_a, variant, 1)
    transfer = _create(store_a, store_b, variant, 3)

    with pytest.raises(InsufficientStock):
        transfer_service.update_transfer_status(transfer_id=transfer["id"], status="in_transit")

    assert transfer_service.get_transfer(transfer["id"])["status"] == "pending"
    assert _qty(store_a, variant) == 1


def test_same_status_is_noop(db_session, store_a, store_b, variant, stock):
    stock(store_a, variant, 5)
    transfer = _create(store_a, store_b, variant, 2)

    again = transfer_service.update_transfer_status(transfer_id=transfer["id"], status="pending")

    assert again["version_id"] == transfer["version_id"]


def test_terminal_transfers_reject_changes(db_session, store_a, store_b, variant, stock):
    stock(store_a, variant, 5)
    transfer = _create(store_a, store_b, variant, 2, status="completed")

    with pytest.raises(InvalidTransferTransition):
        transfer_service.update_transfer_status(transfer_id=transfer["id"], status="in_transit")
    with pytest.raises(InvalidTransferTransition):
        transfer_service.cancel_transfer(transfer_id=transfer["id"], reason="too late")


def test_cancel_in_transit_returns_stock_to_source(db_session, store_a, store_b, variant, stock):
    stock(store_a, variant, 10)
    transfer = _create(store_a, store_b, variant, 4, notes="weekly balance")
    transfer_service.update_transfer_status(transfer_id=transfer["id"], status="in_transit")

    cancelled = transfer_service.cancel_transfer(transfer_id=transfer["id"], reason="damaged")

    assert cancelled["status"] == "cancelled"
    assert cancelled["notes"] == "Cancelled. Reason: damaged\nOriginal notes: weekly balance"
    assert (_qty(store_a, variant), _qty(store_b, variant)) == (10, 0)
    last = list(inventory_service.inventory_history(store_id=store_a.id))[-1]
    assert last.type == "transfer_cancel"
    assert last.quantity_delta == 4


def test_update_to_cancelled_uses_cancel_rules(db_session, store_a, store_b, variant, stock):
    stock(store_a, variant, 3)
    transfer = _create(store_a, store_b, variant, 3)

    result = transfer_service.update_transfer_status(
        transfer_id=transfer["id"], status="cancelled", notes="not needed"
    )

    assert result["status"] == "cancelled"
    assert result["notes"].startswith("Cancelled. Reason: not needed")
    assert _qty(store_a, variant) == 3


def test_create_transfer_validation(db_session, store_a, store_b, variant):
    with pytest.raises(ValidationError):
        _create(store_a, store_a, variant, 1)
    with pytest.raises(ValidationError):
        _create(store_a, store_b, variant, 0)
    with pytest.raises(ValidationError):
        _create(store_a, store_b, variant, 1, status="cancelled")
    with pytest.raises(NotFound):
        _create(store_a, store_b, variant, 1, order_id=424242)
    with pytest.raises(ValidationError):
        transfer_service.cancel_transfer(transfer_id=1, reason="  ")


def test_batch_is_all_or_nothing(db_session, store_a, store_b, store_c, variant, stock):
    stock(store_b, variant, 5)
    stock(store_c, variant, 2)

    with pytest.raises(InsufficientStock):
        transfer_service.create_transfers_batch(transfers=[
            {"from_store_id": store_b.id, "to_store_id": store_a.id,
             "product_variant_id": variant.id, "quantity": 5},
            {"from_store_id": store_c.id, "to_store_id": store_a.id,
             "product_variant_id": variant.id, "quantity": 3},
        ])

    assert transfer_service.list_transfers_for_order(None) == []
    assert db_session.query(InventoryTransaction).count() == 2


def test_batch_counts_earlier_lines_against_source(db_session, store_a, store_b, store_c, variant, stock):
    stock(store_b, variant, 5)

    with pytest.raises(InsufficientStock):
        transfer_service.create_transfers_batch(transfers=[
            {"from_store_id": store_b.id, "to_store_id": store_a.id,
             "product_variant_id": variant.id, "quantity": 3},
            {"from_store_id": store_b.id, "to_store_id": store_c.id,
             "product_variant_id": variant.id, "quantity": 3},
        ])


def test_batch_creates_pending_and_completed_lines(db_session, store_a, store_b, store_c, variant, stock):
    stock(store_b, variant, 5)
    stock(store_c, variant, 5)

    created = transfer_service.create_transfers_batch(transfers=[
        {"from_store_id": store_b.id, "to_store_id": store_a.id,
         "product_variant_id": variant.id, "quantity": 2},
        {"from_store_id": store_c.id, "to_store_id": store_a.id,
         "product_variant_id": variant.id, "quantity": 3, "status": "completed", "notes": "rush"},
    ], actor_user_id=11)

    assert [t["status"] for t in created] == ["pending", "completed"]
    assert created[1]["notes"] == "rush"
    assert created[0]["created_by_user_id"] == 11
    assert _qty(store_a, variant) == 3
    assert _qty(store_c, variant) == 2


def test_batch_does_not_double_count_moved_lines(db_session, store_a, store_b, store_c, variant, stock):
    stock(store_b, variant, 10)

    created = transfer_service.create_transfers_batch(transfers=[
        {"from_store_id": store_b.id, "to_store_id": store_a.id,
         "product_variant_id": variant.id, "quantity": 5, "status": "in_transit"},
        {"from_store_id": store_b.id, "to_store_id": store_c.id,
         "product_variant_id": variant.id, "quantity": 5},
    ])

    assert [t["status"] for t in created] == ["in_transit", "pending"]
    assert _qty(store_b, variant) == 5


def test_batch_pending_claim_still_limits_moved_line(db_session, store_a, store_b, store_c, variant, stock):
    stock(store_b, variant, 10)

    with pytest.raises(InsufficientStock):
        transfer_service.create_transfers_batch(transfers=[
            {"from_store_id": store_b.id, "to_store_id": store_a.id,
             "product_variant_id": variant.id, "quantity": 6},
            {"from_store_id": store_b.id, "to_store_id": store_c.id,
             "product_variant_id": variant.id, "quantity": 5, "status": "completed"},
        ])

    assert _qty(store_b, variant) == 10
