# Overview: Purchase recording, shipping-cost allocation and weighted-average cost.

"""
Purchase Service

Records inbound supplier purchases into one store and keeps each variant's
running cost aggregates.

COST ALLOCATION (per purchase):
1. Shipping is prorated over the lines by quantity (money.prorate; the
   rounding remainder lands on the last line).
2. total_cost_price = cost_price * quantity + allocated_shipping_cost
3. purchase.total_amount = sum(total_cost_price), so it includes shipping.

RECEIPT (once per purchase, when it first reaches received/completed):
- Per variant, under a row lock:
    total_purchased_quantity += quantity
    total_cost_amount        += total_cost_price
    average_cost              = divide_half_up(total_cost_amount, total_purchased_quantity)
- Stock at the purchase store increases through the inventory ledger.
- purchase.inventory_processed flips to True.

LIFECYCLE:
    pending -> confirmed -> in_transit -> received -> completed
    in_transit -> partially_received -> received
    pending -> completed (immediate receipt; the default for record_purchase)
    pending | confirmed -> cancelled
"""
from __future__ import annotations

from typing import Sequence

from flask import current_app

from ..errors import NotFound, ValidationError
from ..extensions import db
from ..models import Purchase, PurchaseItem
from ..money import divide_half_up, prorate
from ..state_machines import (
    PURCHASE_CANCELLED,
    PURCHASE_COMPLETED,
    PURCHASE_RECEIPT_STATUSES,
    PURCHASE_STATUS,
)
from ..time_utils import utcnow
from ..validation import coerce_int
from .concurrency import lock_for_update, run_with_retry
from .document_service import PURCHASE_DOCUMENT, next_document_number
from .inventory_service import TX_PURCHASE, apply_adjustment, get_store, get_variant


def allocate_costs(shipping_cost: int, lines: Sequence[dict]) -> list[dict]:
    """
    Pure cost allocation for purchase lines.

    Each line needs product_variant_id, quantity (> 0) and cost_price (>= 0).
    Returns copies with allocated_shipping_cost and total_cost_price added.
    """
    shipping_cost = coerce_int(shipping_cost, "shipping_cost", minimum=0)
    normalized = []
    for idx, line in enumerate(lines):
        normalized.append({
            "product_variant_id": coerce_int(
                line.get("product_variant_id"), f"items[{idx}].product_variant_id", minimum=1
            ),
            "quantity": coerce_int(line.get("quantity"), f"items[{idx}].quantity", minimum=1),
            "cost_price": coerce_int(line.get("cost_price"), f"items[{idx}].cost_price", minimum=0),
        })

    shares = prorate(shipping_cost, [line["quantity"] for line in normalized])
    for line, share in zip(normalized, shares):
        line["allocated_shipping_cost"] = share
        line["total_cost_price"] = line["cost_price"] * line["quantity"] + share
    return normalized


def _apply_receipt(purchase: Purchase, actor_user_id: int | None) -> None:
    """Fold received lines into variant cost aggregates and store stock."""
    if purchase.inventory_processed:
        return

    # Lock variants in id order so concurrent purchases cannot deadlock
    by_variant: dict[int, list[PurchaseItem]] = {}
    for item in purchase.items:
        by_variant.setdefault(item.product_variant_id, []).append(item)

    for variant_id in sorted(by_variant):
        variant = get_variant(variant_id, lock=True)
        for item in by_variant[variant_id]:
            variant.total_purchased_quantity += item.quantity
            variant.total_cost_amount += item.total_cost_price
        variant.average_cost = divide_half_up(
            variant.total_cost_amount, variant.total_purchased_quantity
        )

    for item in purchase.items:
        apply_adjustment(
            store_id=purchase.store_id,
            variant_id=item.product_variant_id,
            delta=item.quantity,
            reason="purchase receipt",
            actor_user_id=actor_user_id,
            type=TX_PURCHASE,
            metadata={
                "purchase_number": purchase.purchase_number,
                "cost_price": item.cost_price,
                "allocated_shipping_cost": item.allocated_shipping_cost,
            },
            reference_type="purchase",
            reference_id=purchase.id,
        )

    purchase.inventory_processed = True
    purchase.received_at = purchase.received_at or utcnow()


def _purchase_dict(purchase: Purchase) -> dict:
    data = purchase.to_dict()
    data["items"] = [item.to_dict() for item in purchase.items]
    return data


def record_purchase(
    *,
    store_id: int,
    items: Sequence[dict],
    shipping_cost=0,
    status: str = PURCHASE_COMPLETED,
    notes: str | None = None,
    actor_user_id: int | None = None,
) -> dict:
    """
    Record a purchase and allocate its costs.

    With the default status (completed) goods are received immediately:
    variant averages and store stock update in the same transaction.
    """
    if not items:
        raise ValidationError("items must not be empty")
    PURCHASE_STATUS.validate_state(status)
    if status == PURCHASE_CANCELLED:
        raise ValidationError(f"A purchase cannot start in status '{status}'")

    shipping_cost = coerce_int(shipping_cost, "shipping_cost", minimum=0)
    lines = allocate_costs(shipping_cost, items)

    def _op():
        get_store(store_id)
        for line in lines:
            get_variant(line["product_variant_id"])

        purchase = Purchase(
            store_id=store_id,
            purchase_number=next_document_number(
                store_id=store_id, document_type=PURCHASE_DOCUMENT, prefix="PO"
            ),
            shipping_cost=shipping_cost,
            total_amount=sum(line["total_cost_price"] for line in lines),
            status=status,
            inventory_processed=False,
            notes=notes,
            created_by_user_id=actor_user_id,
            purchased_at=utcnow(),
        )
        for line in lines:
            purchase.items.append(PurchaseItem(**line))
        db.session.add(purchase)
        db.session.flush()

        if status in PURCHASE_RECEIPT_STATUSES:
            _apply_receipt(purchase, actor_user_id)

        db.session.commit()
        current_app.logger.info(
            "Recorded purchase %s at store %s: %d lines, total %d, status %s",
            purchase.purchase_number, store_id, len(lines), purchase.total_amount, status,
        )
        return _purchase_dict(purchase)

    return run_with_retry(_op)


def update_purchase_status(
    *,
    purchase_id: int,
    status: str,
    actor_user_id: int | None = None,
) -> dict:
    """Move a purchase along its lifecycle; the first receipt status applies costs and stock."""
    def _op():
        purchase = lock_for_update(db.session.query(Purchase).filter_by(id=purchase_id)).first()
        if purchase is None:
            raise NotFound(f"Purchase {purchase_id} not found", payload={"purchase_id": purchase_id})

        if purchase.status == status:
            PURCHASE_STATUS.validate_state(status)
            return _purchase_dict(purchase)

        if not PURCHASE_STATUS.can_transition(purchase.status, status):
            current_app.logger.warning(
                "Refused purchase %s transition %s -> %s", purchase.id, purchase.status, status
            )
        PURCHASE_STATUS.ensure_transition(purchase.status, status)

        from_status = purchase.status
        purchase.status = status
        if status in PURCHASE_RECEIPT_STATUSES:
            _apply_receipt(purchase, actor_user_id)

        db.session.commit()
        current_app.logger.info("Purchase %s: %s -> %s", purchase.id, from_status, status)
        return _purchase_dict(purchase)

    return run_with_retry(_op)


def get_purchase(purchase_id: int) -> dict:
    purchase = db.session.get(Purchase, purchase_id)
    if purchase is None:
        raise NotFound(f"Purchase {purchase_id} not found", payload={"purchase_id": purchase_id})
    return _purchase_dict(purchase)
