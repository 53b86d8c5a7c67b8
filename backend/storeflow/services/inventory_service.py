# Overview: Inventory ledger; the single writer of Inventory.quantity.

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Iterator

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import InsufficientStock, NotFound, ValidationError
from ..extensions import db
from ..models import Inventory, InventoryTransaction, ProductVariant, Store
from ..time_utils import parse_iso_datetime, utcnow
from ..validation import coerce_int, require_choice
from .concurrency import lock_for_update, run_with_retry
"""
Inventory Ledger Invariants (authoritative)

Storage:
- Inventory.quantity is the on-hand count for one (store, variant) pair.
- apply_adjustment() is the only code path that writes it. Transfers,
  purchases and orders all go through it.

Business invariants:
- quantity never goes below zero. A delta that would do so raises
  InsufficientStock and nothing is written.
- Every successful mutation appends exactly one InventoryTransaction in the
  same DB transaction, carrying before/after quantities.
- Rows are created lazily on the first mutation for a pair; a pair with no
  row reads as quantity 0.

Time semantics:
- All internal datetimes are UTC-naive (tzinfo=None).
- History is ordered by occurred_at ascending, ties broken by id.
"""


TX_ADDITION = "addition"
TX_REDUCTION = "reduction"
TX_ADJUSTMENT = "adjustment"
TX_TRANSFER_IN = "transfer_in"
TX_TRANSFER_OUT = "transfer_out"
TX_TRANSFER_CANCEL = "transfer_cancel"
TX_PURCHASE = "purchase"
TX_SALE = "sale"
TX_RETURN = "return"

TRANSACTION_TYPES = (
    TX_ADDITION,
    TX_REDUCTION,
    TX_ADJUSTMENT,
    TX_TRANSFER_IN,
    TX_TRANSFER_OUT,
    TX_TRANSFER_CANCEL,
    TX_PURCHASE,
    TX_SALE,
    TX_RETURN,
)

ACTION_ADD = "add"
ACTION_REDUCE = "reduce"
ACTION_SET = "set"

_ACTION_TYPES = {
    ACTION_ADD: TX_ADDITION,
    ACTION_REDUCE: TX_REDUCTION,
    ACTION_SET: TX_ADJUSTMENT,
}


def get_store(store_id: int) -> Store:
    store = db.session.get(Store, store_id)
    if store is None:
        raise NotFound(f"Store {store_id} not found", payload={"store_id": store_id})
    return store


def get_variant(variant_id: int, *, lock: bool = False) -> ProductVariant:
    query = db.session.query(ProductVariant).filter_by(id=variant_id)
    if lock:
        query = lock_for_update(query)
    variant = query.first()
    if variant is None:
        raise NotFound(
            f"Product variant {variant_id} not found",
            payload={"product_variant_id": variant_id},
        )
    return variant


def _locked_inventory_row(store_id: int, variant_id: int) -> Inventory:
    """Lock the (store, variant) row, creating it on first use."""
    query = lock_for_update(
        db.session.query(Inventory).filter_by(store_id=store_id, product_variant_id=variant_id)
    )
    inventory = query.first()
    if inventory is not None:
        return inventory

    try:
        with db.session.begin_nested():
            inventory = Inventory(
                store_id=store_id,
                product_variant_id=variant_id,
                quantity=0,
                low_stock_threshold=current_app.config.get("DEFAULT_LOW_STOCK_THRESHOLD", 5),
            )
            db.session.add(inventory)
    except IntegrityError:
        # Concurrent first insert won; lock theirs instead
        inventory = query.first()
        if inventory is None:
            raise
    return inventory


def apply_adjustment(
    *,
    store_id: int,
    variant_id: int,
    delta: int,
    reason: str | None = None,
    actor_user_id: int | None = None,
    type: str = TX_ADJUSTMENT,
    metadata: dict | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
) -> InventoryTransaction:
    """Core ledger mutation without retry or commit.

    Called by adjust() and by every service that moves stock as part of a
    larger transaction.
    """
    delta = coerce_int(delta, "delta")
    if delta == 0:
        raise ValidationError("delta must be non-zero")
    require_choice(type, "type", TRANSACTION_TYPES)

    get_store(store_id)
    get_variant(variant_id)

    inventory = _locked_inventory_row(store_id, variant_id)
    before = inventory.quantity
    after = before + delta
    if after < 0:
        current_app.logger.warning(
            "Refused %s of %d for variant %s at store %s: on-hand %d",
            type, delta, variant_id, store_id, before,
        )
        raise InsufficientStock(store_id, variant_id, before, -delta)

    inventory.quantity = after

    tx = InventoryTransaction(
        inventory_id=inventory.id,
        store_id=store_id,
        product_variant_id=variant_id,
        type=type,
        quantity_delta=delta,
        before_quantity=before,
        after_quantity=after,
        notes=reason,
        metadata_json=metadata,
        reference_type=reference_type,
        reference_id=reference_id,
        actor_user_id=actor_user_id,
        occurred_at=utcnow(),
    )
    db.session.add(tx)
    db.session.flush()
    return tx


def adjust(
    *,
    store_id: int,
    variant_id: int,
    delta: int,
    reason: str | None = None,
    actor_user_id: int | None = None,
    type: str = TX_ADJUSTMENT,
    metadata: dict | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
) -> int:
    """Apply one ledger mutation in its own transaction; returns the new quantity."""
    def _op():
        tx = apply_adjustment(
            store_id=store_id,
            variant_id=variant_id,
            delta=delta,
            reason=reason,
            actor_user_id=actor_user_id,
            type=type,
            metadata=metadata,
            reference_type=reference_type,
            reference_id=reference_id,
        )
        db.session.commit()
        return tx.after_quantity

    return run_with_retry(_op)


def get_quantity(store_id: int, variant_id: int, *, lock: bool = False) -> int:
    """Snapshot read; 0 when the pair has never been stocked."""
    query = db.session.query(Inventory.quantity).filter_by(
        store_id=store_id, product_variant_id=variant_id
    )
    if lock:
        query = lock_for_update(query)
    qty = query.scalar()
    return int(qty or 0)


def quantity_map(variant_ids: Iterable[int]) -> dict[int, dict[int, int]]:
    """
    Bulk snapshot of on-hand stock for many variants across every store.

    Returns {variant_id: {store_id: quantity}}; pairs with no row are absent.
    """
    variant_ids = list(set(variant_ids))
    result: dict[int, dict[int, int]] = {vid: {} for vid in variant_ids}
    if not variant_ids:
        return result
    rows = (
        db.session.query(Inventory.product_variant_id, Inventory.store_id, Inventory.quantity)
        .filter(Inventory.product_variant_id.in_(variant_ids))
        .all()
    )
    for variant_id, store_id, quantity in rows:
        result[variant_id][store_id] = quantity
    return result


def _parse_bound(value, field: str) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, str):
        try:
            return parse_iso_datetime(value)
        except ValueError:
            raise ValidationError(f"invalid {field}")
    raise ValidationError(f"invalid {field}")


class InventoryHistory:
    """
    Lazy, restartable view over InventoryTransaction rows.

    Nothing is read until iteration starts; every iteration re-runs the
    query, so a second pass sees rows committed since the first.
    """

    def __init__(self, *, store_id=None, variant_id=None, type=None, start=None, end=None):
        if type is not None:
            require_choice(type, "type", TRANSACTION_TYPES)
        self.store_id = store_id
        self.variant_id = variant_id
        self.type = type
        self.start = _parse_bound(start, "start")
        self.end = _parse_bound(end, "end")

    def query(self):
        q = db.session.query(InventoryTransaction)
        if self.store_id is not None:
            q = q.filter(InventoryTransaction.store_id == self.store_id)
        if self.variant_id is not None:
            q = q.filter(InventoryTransaction.product_variant_id == self.variant_id)
        if self.type is not None:
            q = q.filter(InventoryTransaction.type == self.type)
        # Inclusive bounds
        if self.start is not None:
            q = q.filter(InventoryTransaction.occurred_at >= self.start)
        if self.end is not None:
            q = q.filter(InventoryTransaction.occurred_at <= self.end)
        return q.order_by(InventoryTransaction.occurred_at.asc(), InventoryTransaction.id.asc())

    def __iter__(self) -> Iterator[InventoryTransaction]:
        return iter(self.query().yield_per(200))


def inventory_history(*, store_id=None, variant_id=None, type=None, start=None, end=None) -> InventoryHistory:
    return InventoryHistory(store_id=store_id, variant_id=variant_id, type=type, start=start, end=end)


def adjust_inventory(
    *,
    variant_id: int,
    store_id: int,
    action: str,
    quantity,
    notes: str | None = None,
    metadata: dict | None = None,
    actor_user_id: int | None = None,
) -> dict:
    """
    Manual stock correction at the caller boundary.

    add/reduce move stock by `quantity` (> 0). set makes on-hand equal to
    `quantity` (>= 0) by recording the difference; setting the current value
    records nothing.
    """
    require_choice(action, "action", _ACTION_TYPES)
    if action == ACTION_SET:
        quantity = coerce_int(quantity, "quantity", minimum=0)
    else:
        quantity = coerce_int(quantity, "quantity", minimum=1)

    def _op():
        get_store(store_id)
        get_variant(variant_id)

        if action == ACTION_ADD:
            delta = quantity
        elif action == ACTION_REDUCE:
            delta = -quantity
        else:
            delta = quantity - get_quantity(store_id, variant_id, lock=True)

        tx = None
        if delta:
            tx = apply_adjustment(
                store_id=store_id,
                variant_id=variant_id,
                delta=delta,
                reason=notes,
                actor_user_id=actor_user_id,
                type=_ACTION_TYPES[action],
                metadata=metadata,
            )

        inventory = (
            db.session.query(Inventory)
            .filter_by(store_id=store_id, product_variant_id=variant_id)
            .first()
        )
        db.session.commit()

        current_app.logger.info(
            "Inventory %s for variant %s at store %s: delta %d",
            action, variant_id, store_id, delta,
        )
        return {
            "inventory": inventory.to_dict() if inventory else {
                "store_id": store_id,
                "product_variant_id": variant_id,
                "quantity": 0,
            },
            "transaction": tx.to_dict() if tx else None,
        }

    return run_with_retry(_op)


def list_low_stock(*, store_id: int | None = None) -> list[dict]:
    """Inventory rows at or below their low-stock threshold, lowest first."""
    q = db.session.query(Inventory).filter(Inventory.quantity <= Inventory.low_stock_threshold)
    if store_id is not None:
        q = q.filter(Inventory.store_id == store_id)
    rows = q.order_by(Inventory.quantity.asc(), Inventory.id.asc()).all()
    return [row.to_dict() for row in rows]


def batch_check(variant_ids: Iterable[int], *, store_id: int | None = None) -> list[dict]:
    """Per-variant stock snapshot, optionally restricted to one store."""
    variant_ids = [coerce_int(vid, "product_variant_id", minimum=1) for vid in variant_ids]
    if store_id is not None:
        get_store(store_id)
    for vid in dict.fromkeys(variant_ids):
        get_variant(vid)

    snapshot = quantity_map(variant_ids)
    results = []
    for vid in dict.fromkeys(variant_ids):
        per_store = snapshot[vid]
        if store_id is not None:
            per_store = {store_id: per_store.get(store_id, 0)}
        results.append({
            "product_variant_id": vid,
            "total_quantity": sum(per_store.values()),
            "stores": [
                {"store_id": sid, "quantity": qty}
                for sid, qty in sorted(per_store.items())
            ],
        })
    return results
