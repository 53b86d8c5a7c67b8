# Overview: Order creation, shipping lifecycle, cancellation and deletion.

"""
Order Service

DESIGN PRINCIPLES:
- A zero grand_total order is created already paid.
- Two independent status axes, validated by state_machines:
    shipping: pending -> shipped -> completed; pending | shipped -> cancelled
    payment:  pending -> partial -> paid; partial | paid -> refunded
- Every transition on either axis appends one OrderStatusHistory row in the
  same transaction. Creation writes the initial row for both axes.
- Stocked-sale lines take stock from the order's store at creation and give
  it back when the order is cancelled or deleted.
- Transfers raised for an order are cancelled and unlinked (never deleted)
  when the order is cancelled or deleted.

MONEY (all cents):
    subtotal    = sum(price * quantity)
    grand_total = subtotal + shipping_fee + tax - discount_amount   (>= 0)
"""
from __future__ import annotations

from typing import Sequence

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import ForeignKeyViolation, NotFound, ValidationError
from ..extensions import db
from ..models import (
    InventoryTransfer,
    Order,
    OrderItem,
    OrderStatusHistory,
    PaymentRecord,
)
from ..state_machines import (
    PAYMENT_PAID,
    PAYMENT_PENDING,
    SHIPPING_CANCELLED,
    SHIPPING_COMPLETED,
    SHIPPING_PENDING,
    SHIPPING_SHIPPED,
    SHIPPING_STATUS,
)
from ..time_utils import utcnow
from ..validation import coerce_int
from .concurrency import lock_for_update, run_with_retry
from .document_service import ORDER_DOCUMENT, next_document_number
from .inventory_service import TX_RETURN, TX_SALE, apply_adjustment, get_store, get_variant
from .transfer_service import cascade_for_order, list_transfers_for_order

STATUS_TYPE_SHIPPING = "shipping"
STATUS_TYPE_PAYMENT = "payment"

ITEM_STATUS_PENDING = "pending"
ITEM_STATUS_FULFILLED = "fulfilled"
ITEM_STATUS_CANCELLED = "cancelled"


def get_order_locked(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if order is None:
        raise NotFound(f"Order {order_id} not found", payload={"order_id": order_id})
    return order


def record_history(
    order: Order,
    *,
    status_type: str,
    from_status: str | None,
    to_status: str,
    actor_user_id: int | None = None,
    notes: str | None = None,
) -> OrderStatusHistory:
    row = OrderStatusHistory(
        status_type=status_type,
        from_status=from_status,
        to_status=to_status,
        actor_user_id=actor_user_id,
        notes=notes,
        created_at=utcnow(),
    )
    order.status_histories.append(row)
    return row


def _set_shipping_status(order: Order, to_status: str, actor_user_id, notes=None) -> None:
    from_status = order.shipping_status
    if not SHIPPING_STATUS.can_transition(from_status, to_status):
        current_app.logger.warning(
            "Refused order %s shipping transition %s -> %s", order.id, from_status, to_status
        )
    SHIPPING_STATUS.ensure_transition(from_status, to_status)
    order.shipping_status = to_status
    record_history(
        order,
        status_type=STATUS_TYPE_SHIPPING,
        from_status=from_status,
        to_status=to_status,
        actor_user_id=actor_user_id,
        notes=notes,
    )
    current_app.logger.info("Order %s shipping: %s -> %s", order.id, from_status, to_status)


def _normalize_items(items: Sequence[dict]) -> list[dict]:
    lines = []
    for idx, item in enumerate(items):
        variant_id = item.get("product_variant_id")
        if variant_id is not None:
            variant_id = coerce_int(variant_id, f"items[{idx}].product_variant_id", minimum=1)
        quantity = coerce_int(item.get("quantity"), f"items[{idx}].quantity", minimum=1)

        is_stocked_sale = bool(item.get("is_stocked_sale", variant_id is not None))
        is_backorder = bool(item.get("is_backorder", False))
        if variant_id is None and is_stocked_sale:
            raise ValidationError(f"items[{idx}]: custom items cannot be stocked sales")
        if is_stocked_sale and is_backorder:
            raise ValidationError(f"items[{idx}]: a line is either a stocked sale or a backorder")

        sku = item.get("sku")
        product_name = item.get("product_name")
        price = item.get("price")
        if variant_id is not None:
            variant = get_variant(variant_id)
            sku = sku or variant.sku
            product_name = product_name or variant.name
            if price is None:
                price = variant.price
        elif not product_name:
            raise ValidationError(f"items[{idx}]: custom items need a product_name")

        lines.append({
            "product_variant_id": variant_id,
            "sku": sku,
            "product_name": product_name,
            "quantity": quantity,
            "price": coerce_int(price, f"items[{idx}].price", minimum=0),
            "is_stocked_sale": is_stocked_sale,
            "is_backorder": is_backorder,
        })
    return lines


def _restock_items(order: Order, reason: str, actor_user_id) -> int:
    """Return stocked-sale quantities to the order's store; returns units restocked."""
    units = 0
    for item in order.items:
        if item.status == ITEM_STATUS_CANCELLED:
            continue
        if item.is_stocked_sale and item.product_variant_id is not None:
            apply_adjustment(
                store_id=order.store_id,
                variant_id=item.product_variant_id,
                delta=item.quantity,
                reason=f"Order {order.order_number} {reason}",
                actor_user_id=actor_user_id,
                type=TX_RETURN,
                metadata={"order_item_id": item.id},
                reference_type="order",
                reference_id=order.id,
            )
            units += item.quantity
        item.status = ITEM_STATUS_CANCELLED
    return units


def order_summary(order: Order) -> dict:
    data = order.to_dict()
    data["items"] = [item.to_dict() for item in order.items]
    data["payments"] = [
        p.to_dict()
        for p in db.session.query(PaymentRecord)
        .filter_by(order_id=order.id)
        .order_by(PaymentRecord.id.asc())
        .all()
    ]
    data["status_histories"] = [h.to_dict() for h in order.status_histories]
    data["transfers"] = list_transfers_for_order(order.id)
    return data


def create_order(
    *,
    store_id: int,
    items: Sequence[dict],
    customer_id: int | None = None,
    shipping_fee=0,
    tax=0,
    discount_amount=0,
    payment_method: str | None = None,
    shipping_address: str | None = None,
    notes: str | None = None,
    actor_user_id: int | None = None,
) -> dict:
    """
    Create an order with both status axes at pending.

    Stocked-sale lines are deducted from `store_id` in the same transaction
    and fail with InsufficientStock when the store cannot cover them; callers
    check availability first and raise transfers or backorders for the rest.
    """
    if not items:
        raise ValidationError("items must not be empty")
    shipping_fee = coerce_int(shipping_fee, "shipping_fee", minimum=0)
    tax = coerce_int(tax, "tax", minimum=0)
    discount_amount = coerce_int(discount_amount, "discount_amount", minimum=0)

    def _op():
        get_store(store_id)
        lines = _normalize_items(items)

        subtotal = sum(line["price"] * line["quantity"] for line in lines)
        grand_total = subtotal + shipping_fee + tax - discount_amount
        if grand_total < 0:
            raise ValidationError("discount_amount exceeds the order total")
        # Nothing to collect on a zero total, so it starts settled
        payment_status = PAYMENT_PAID if grand_total == 0 else PAYMENT_PENDING

        order = Order(
            store_id=store_id,
            order_number=next_document_number(
                store_id=store_id, document_type=ORDER_DOCUMENT, prefix="ORD"
            ),
            customer_id=customer_id,
            creator_user_id=actor_user_id,
            shipping_status=SHIPPING_PENDING,
            payment_status=payment_status,
            subtotal=subtotal,
            shipping_fee=shipping_fee,
            tax=tax,
            discount_amount=discount_amount,
            grand_total=grand_total,
            paid_amount=0,
            paid_at=utcnow() if payment_status == PAYMENT_PAID else None,
            refunded_amount=0,
            payment_method=payment_method,
            shipping_address=shipping_address,
            notes=notes,
        )
        for line in lines:
            order.items.append(OrderItem(status=ITEM_STATUS_PENDING, **line))
        db.session.add(order)
        db.session.flush()

        record_history(
            order, status_type=STATUS_TYPE_SHIPPING, from_status=None,
            to_status=SHIPPING_PENDING, actor_user_id=actor_user_id, notes="order created",
        )
        record_history(
            order, status_type=STATUS_TYPE_PAYMENT, from_status=None,
            to_status=payment_status, actor_user_id=actor_user_id, notes="order created",
        )

        for item in order.items:
            if item.is_stocked_sale:
                apply_adjustment(
                    store_id=store_id,
                    variant_id=item.product_variant_id,
                    delta=-item.quantity,
                    reason=f"Order {order.order_number}",
                    actor_user_id=actor_user_id,
                    type=TX_SALE,
                    metadata={"order_item_id": item.id},
                    reference_type="order",
                    reference_id=order.id,
                )

        db.session.commit()
        current_app.logger.info(
            "Created order %s at store %s: %d lines, grand total %d",
            order.order_number, store_id, len(lines), grand_total,
        )
        return order_summary(order)

    return run_with_retry(_op)


def ship_order(
    *,
    order_id: int,
    tracking_number: str | None = None,
    carrier: str | None = None,
    actor_user_id: int | None = None,
) -> dict:
    def _op():
        order = get_order_locked(order_id)
        _set_shipping_status(order, SHIPPING_SHIPPED, actor_user_id)
        order.shipped_at = utcnow()
        if tracking_number is not None:
            order.tracking_number = tracking_number
        if carrier is not None:
            order.carrier = carrier
        db.session.commit()
        return order_summary(order)

    return run_with_retry(_op)


def complete_order(*, order_id: int, actor_user_id: int | None = None) -> dict:
    def _op():
        order = get_order_locked(order_id)
        _set_shipping_status(order, SHIPPING_COMPLETED, actor_user_id)
        order.completed_at = utcnow()
        for item in order.items:
            if item.status == ITEM_STATUS_PENDING:
                item.status = ITEM_STATUS_FULFILLED
        db.session.commit()
        return order_summary(order)

    return run_with_retry(_op)


def cancel_order(
    *,
    order_id: int,
    reason: str,
    actor_user_id: int | None = None,
) -> dict:
    """
    Cancel an order (terminal).

    Restocks stocked-sale lines, cancels the order's open transfers and
    unlinks all of them. Payments are left untouched; refunds are explicit.
    """
    if not reason or not str(reason).strip():
        raise ValidationError("reason is required")

    def _op():
        order = get_order_locked(order_id)
        _set_shipping_status(order, SHIPPING_CANCELLED, actor_user_id, notes=reason)
        order.cancelled_at = utcnow()
        order.cancellation_reason = reason

        _restock_items(order, "cancelled", actor_user_id)
        cascade_for_order(order, "cancelled", actor_user_id)

        db.session.commit()
        return order_summary(order)

    return run_with_retry(_op)


def delete_order(*, order_id: int, actor_user_id: int | None = None) -> dict:
    """
    Delete an order that has not shipped.

    Transfers are cancelled and unlinked first; stocked-sale lines of a live
    order go back to stock; items and history go with the order. An order
    with recorded payments cannot be deleted (ForeignKeyViolation).
    """
    def _op():
        order = get_order_locked(order_id)
        if order.shipping_status in (SHIPPING_SHIPPED, SHIPPING_COMPLETED):
            current_app.logger.warning(
                "Refused delete of order %s in shipping status %s", order.id, order.shipping_status
            )
            raise ValidationError(
                f"Cannot delete an order that is {order.shipping_status}",
                payload={"order_id": order.id, "shipping_status": order.shipping_status},
            )

        payment_count = db.session.query(PaymentRecord).filter_by(order_id=order.id).count()
        if payment_count:
            current_app.logger.warning(
                "Refused delete of order %s: %d payment records", order.id, payment_count
            )
            raise ForeignKeyViolation(
                f"Order {order.order_number} has {payment_count} payment records",
                payload={"order_id": order.id, "payment_records": payment_count},
            )

        cascade = cascade_for_order(order, "deleted", actor_user_id)
        if order.shipping_status != SHIPPING_CANCELLED:
            _restock_items(order, "deleted", actor_user_id)

        still_linked = db.session.query(InventoryTransfer).filter_by(order_id=order.id).count()
        if still_linked:
            raise ForeignKeyViolation(
                f"Order {order.order_number} is still referenced by {still_linked} transfers",
                payload={"order_id": order.id, "transfers": still_linked},
            )

        summary = {
            "order_id": order.id,
            "order_number": order.order_number,
            "transfers_cancelled": cascade["cancelled"],
            "transfers_unlinked": cascade["unlinked"],
        }
        db.session.delete(order)
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise ForeignKeyViolation(
                f"Order {order_id} is still referenced and cannot be deleted",
                payload={"order_id": order_id},
            ) from exc

        db.session.commit()
        current_app.logger.info("Deleted order %s", summary["order_number"])
        return summary

    return run_with_retry(_op)


def get_order_summary(order_id: int) -> dict:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFound(f"Order {order_id} not found", payload={"order_id": order_id})
    return order_summary(order)
