# Overview: Caller-boundary entry points that take major-unit money.

"""
Public operations for callers that speak major units ("150.00").

Money arguments are converted to integer cents with money.to_minor_units
(factor 100, half-up) and handed to the services, which only know cents.
Results are the services' dicts, so amounts in them are cents.
"""
from __future__ import annotations

from typing import Sequence

from .money import to_minor_units
from .services import (
    allocation_service,
    inventory_service,
    order_service,
    payment_service,
    purchase_service,
    transfer_service,
)


def _convert_lines(items: Sequence[dict], field: str) -> list[dict]:
    converted = []
    for item in items:
        line = dict(item)
        if line.get(field) is not None:
            line[field] = to_minor_units(line[field])
        converted.append(line)
    return converted


def check_stock_availability(store_id: int, items: Sequence[dict]) -> dict:
    return allocation_service.check_stock_availability(store_id=store_id, items=items)


def record_purchase(store_id: int, shipping_cost, items: Sequence[dict], **kwargs) -> dict:
    return purchase_service.record_purchase(
        store_id=store_id,
        shipping_cost=to_minor_units(shipping_cost),
        items=_convert_lines(items, "cost_price"),
        **kwargs,
    )


def create_order(store_id: int, items: Sequence[dict], *, shipping_fee=0, tax=0, discount_amount=0, **kwargs) -> dict:
    return order_service.create_order(
        store_id=store_id,
        items=_convert_lines(items, "price"),
        shipping_fee=to_minor_units(shipping_fee),
        tax=to_minor_units(tax),
        discount_amount=to_minor_units(discount_amount),
        **kwargs,
    )


def delete_order(order_id: int, *, actor_user_id: int | None = None) -> dict:
    return order_service.delete_order(order_id=order_id, actor_user_id=actor_user_id)


def cancel_order(order_id: int, reason: str, *, actor_user_id: int | None = None) -> dict:
    return order_service.cancel_order(order_id=order_id, reason=reason, actor_user_id=actor_user_id)


def add_payment(order_id: int, amount, method: str, notes: str | None = None, *, actor_user_id: int | None = None) -> dict:
    return payment_service.add_payment(
        order_id=order_id,
        amount=to_minor_units(amount),
        payment_method=method,
        notes=notes,
        actor_user_id=actor_user_id,
    )


def refund_order(order_id: int, reason: str, amount=None, *, actor_user_id: int | None = None) -> dict:
    return payment_service.refund_order(
        order_id=order_id,
        reason=reason,
        amount=to_minor_units(amount) if amount is not None else None,
        actor_user_id=actor_user_id,
    )


def create_transfers_batch(transfers: Sequence[dict], order_id: int | None = None, *, actor_user_id: int | None = None) -> list[dict]:
    return transfer_service.create_transfers_batch(
        transfers=transfers, order_id=order_id, actor_user_id=actor_user_id
    )


def update_transfer_status(transfer_id: int, status: str, notes: str | None = None, *, actor_user_id: int | None = None) -> dict:
    return transfer_service.update_transfer_status(
        transfer_id=transfer_id, status=status, notes=notes, actor_user_id=actor_user_id
    )


def cancel_transfer(transfer_id: int, reason: str, *, actor_user_id: int | None = None) -> dict:
    return transfer_service.cancel_transfer(
        transfer_id=transfer_id, reason=reason, actor_user_id=actor_user_id
    )


def adjust_inventory(
    variant_id: int,
    store_id: int,
    action: str,
    quantity,
    notes: str | None = None,
    metadata: dict | None = None,
    *,
    actor_user_id: int | None = None,
) -> dict:
    return inventory_service.adjust_inventory(
        variant_id=variant_id,
        store_id=store_id,
        action=action,
        quantity=quantity,
        notes=notes,
        metadata=metadata,
        actor_user_id=actor_user_id,
    )
