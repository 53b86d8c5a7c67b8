# Overview: Order payments and refunds.

"""
Payment Processing Service

DESIGN PRINCIPLES:
- Payments are append-only PaymentRecord rows (many-to-one with orders)
- Partial payments accumulate until the grand total is reached exactly
- Over-payment is rejected, never turned into change or credit
- order.paid_amount always equals the sum of the order's payment records

PAYMENT STATUS:
    pending -> partial -> paid
    pending -> paid
    partial | paid -> refunded (explicit refund only; terminal)
A history row is written only when the status actually changes.
"""
from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..errors import OrderAlreadyPaid, OverpaymentRejected, ValidationError
from ..extensions import db
from ..models import Order, PaymentRecord
from ..state_machines import (
    PAYMENT_PAID,
    PAYMENT_PARTIAL,
    PAYMENT_REFUNDED,
    PAYMENT_STATUS,
    SHIPPING_CANCELLED,
)
from ..time_utils import utcnow
from ..validation import coerce_int, require_choice
from .concurrency import run_with_retry
from .order_service import STATUS_TYPE_PAYMENT, get_order_locked, order_summary, record_history


# =============================================================================
# PAYMENT METHODS (CONSTANTS)
# =============================================================================

METHOD_CASH = "cash"
METHOD_TRANSFER = "transfer"
METHOD_CREDIT_CARD = "credit_card"

VALID_PAYMENT_METHODS = [
    METHOD_CASH,
    METHOD_TRANSFER,
    METHOD_CREDIT_CARD,
]


def _set_payment_status(order: Order, to_status: str, actor_user_id, notes=None) -> bool:
    from_status = order.payment_status
    if from_status == to_status:
        return False
    PAYMENT_STATUS.ensure_transition(from_status, to_status)
    order.payment_status = to_status
    record_history(
        order,
        status_type=STATUS_TYPE_PAYMENT,
        from_status=from_status,
        to_status=to_status,
        actor_user_id=actor_user_id,
        notes=notes,
    )
    current_app.logger.info("Order %s payment: %s -> %s", order.id, from_status, to_status)
    return True


def _add_payment_locked(
    order: Order,
    *,
    amount: int,
    payment_method: str,
    notes: str | None,
    payment_date: datetime | None,
    actor_user_id: int | None,
) -> PaymentRecord:
    if order.payment_status == PAYMENT_PAID:
        current_app.logger.warning("Refused payment of %d on paid order %s", amount, order.id)
        raise OrderAlreadyPaid(
            f"Order {order.order_number} is already paid",
            payload={"order_id": order.id, "remaining_amount": 0},
        )
    if order.payment_status == PAYMENT_REFUNDED:
        raise ValidationError(f"Order {order.order_number} has been refunded")
    if order.shipping_status == SHIPPING_CANCELLED:
        raise ValidationError(f"Order {order.order_number} is cancelled")

    remaining = order.grand_total - order.paid_amount
    if amount > remaining:
        current_app.logger.warning(
            "Refused payment of %d on order %s: remaining %d", amount, order.id, remaining
        )
        raise OverpaymentRejected(
            f"Payment of {amount} exceeds remaining balance {remaining}",
            payload={"order_id": order.id, "amount": amount, "remaining_amount": remaining},
        )

    now = utcnow()
    payment = PaymentRecord(
        order_id=order.id,
        amount=amount,
        payment_method=payment_method,
        notes=notes,
        payment_date=payment_date or now,
        created_by_user_id=actor_user_id,
        created_at=now,
    )
    db.session.add(payment)
    order.paid_amount += amount

    new_status = PAYMENT_PAID if order.paid_amount == order.grand_total else PAYMENT_PARTIAL
    if _set_payment_status(order, new_status, actor_user_id, notes=f"payment of {amount}"):
        if new_status == PAYMENT_PAID:
            order.paid_at = now

    db.session.flush()
    current_app.logger.info(
        "Payment %d (%s) on order %s; paid %d of %d",
        amount, payment_method, order.id, order.paid_amount, order.grand_total,
    )
    return payment


def add_payment(
    *,
    order_id: int,
    amount,
    payment_method: str,
    notes: str | None = None,
    payment_date: datetime | None = None,
    actor_user_id: int | None = None,
) -> dict:
    """
    Record a partial or full payment against an order.

    Raises:
        ValidationError: amount <= 0, unknown method, refunded or cancelled order
        OrderAlreadyPaid: order is already paid in full
        OverpaymentRejected: amount exceeds grand_total - paid_amount
    """
    amount = coerce_int(amount, "amount")
    if amount <= 0:
        raise ValidationError("Payment amount must be positive")
    require_choice(payment_method, "payment_method", VALID_PAYMENT_METHODS)

    def _op():
        order = get_order_locked(order_id)
        payment = _add_payment_locked(
            order,
            amount=amount,
            payment_method=payment_method,
            notes=notes,
            payment_date=payment_date,
            actor_user_id=actor_user_id,
        )
        db.session.commit()
        return {"payment": payment.to_dict(), "order": order_summary(order)}

    return run_with_retry(_op)


def confirm_payment(
    *,
    order_id: int,
    payment_method: str | None = None,
    actor_user_id: int | None = None,
) -> dict:
    """Pay the whole remaining balance in one payment record."""
    def _op():
        order = get_order_locked(order_id)
        method = payment_method or order.payment_method or METHOD_CASH
        require_choice(method, "payment_method", VALID_PAYMENT_METHODS)

        payment = _add_payment_locked(
            order,
            amount=order.grand_total - order.paid_amount,
            payment_method=method,
            notes="payment confirmed",
            payment_date=None,
            actor_user_id=actor_user_id,
        )
        db.session.commit()
        return {
            "payment": payment.to_dict(),
            "order": order_summary(order),
        }

    return run_with_retry(_op)


def refund_order(
    *,
    order_id: int,
    reason: str,
    amount=None,
    actor_user_id: int | None = None,
) -> dict:
    """
    Refund money taken on an order and move its payment status to refunded.

    `amount` defaults to everything paid so far and may not exceed it.
    Payment records stay untouched; refunded_amount tracks the money returned.
    """
    if not reason or not str(reason).strip():
        raise ValidationError("reason is required")
    if amount is not None:
        amount = coerce_int(amount, "amount")
        if amount <= 0:
            raise ValidationError("Refund amount must be positive")

    def _op():
        order = get_order_locked(order_id)
        refundable = order.paid_amount - order.refunded_amount
        refund = refundable if amount is None else amount
        if refundable <= 0:
            raise ValidationError(
                f"Order {order.order_number} has nothing to refund",
                payload={"order_id": order.id, "refundable_amount": 0},
            )
        if refund > refundable:
            raise ValidationError(
                f"Refund of {refund} exceeds refundable amount {refundable}",
                payload={"order_id": order.id, "refundable_amount": refundable},
            )

        _set_payment_status(order, PAYMENT_REFUNDED, actor_user_id, notes=reason)
        order.refunded_amount += refund
        order.refunded_at = utcnow()

        db.session.commit()
        current_app.logger.info("Refunded %d on order %s: %s", refund, order.id, reason)
        return order_summary(order)

    return run_with_retry(_op)


def list_payments(order_id: int) -> list[dict]:
    rows = (
        db.session.query(PaymentRecord)
        .filter_by(order_id=order_id)
        .order_by(PaymentRecord.id.asc())
        .all()
    )
    return [p.to_dict() for p in rows]
