# backend/storeflow/services/transfer_service.py
"""
Inter-store transfer service.

Single-variant stock movements between two stores, optionally linked to the
order they were raised for.

LIFECYCLE (stock movements happen on the transition, through the ledger):
1. PENDING: Created, no stock moved
2. IN_TRANSIT: Source store debited (transfer_out)
3. COMPLETED: Destination store credited (transfer_in); pending -> completed
   debits and credits in the same transaction
4. CANCELLED: From pending nothing moves; from in_transit the source is
   credited back (transfer_cancel)

ORDER LINK:
order_id is a weak reference. When an order is cancelled or deleted its
open transfers are cancelled and every referencing transfer is unlinked
(order_id -> NULL); completed transfers keep their status.
"""
from __future__ import annotations

from typing import Sequence

from flask import current_app

from ..errors import InsufficientStock, NotFound, ValidationError
from ..extensions import db
from ..models import InventoryTransfer, Order
from ..state_machines import (
    OPEN_TRANSFER_STATUSES,
    TRANSFER_CANCELLED,
    TRANSFER_COMPLETED,
    TRANSFER_IN_TRANSIT,
    TRANSFER_PENDING,
    TRANSFER_STATUS,
)
from ..time_utils import utcnow
from ..validation import coerce_int
from .concurrency import lock_for_update, run_with_retry
from .inventory_service import (
    TX_TRANSFER_CANCEL,
    TX_TRANSFER_IN,
    TX_TRANSFER_OUT,
    apply_adjustment,
    get_quantity,
    get_store,
    get_variant,
)

TRANSFER_INITIAL_STATUSES = (TRANSFER_PENDING, TRANSFER_IN_TRANSIT, TRANSFER_COMPLETED)


def _get_transfer_locked(transfer_id: int) -> InventoryTransfer:
    transfer = lock_for_update(
        db.session.query(InventoryTransfer).filter_by(id=transfer_id)
    ).first()
    if transfer is None:
        raise NotFound(f"Transfer {transfer_id} not found", payload={"transfer_id": transfer_id})
    return transfer


def _move(transfer: InventoryTransfer, *, store_id: int, delta: int, type: str, reason: str, actor_user_id) -> None:
    apply_adjustment(
        store_id=store_id,
        variant_id=transfer.product_variant_id,
        delta=delta,
        reason=reason,
        actor_user_id=actor_user_id,
        type=type,
        metadata={"transfer_id": transfer.id},
        reference_type="transfer",
        reference_id=transfer.id,
    )


def _debit_source(transfer: InventoryTransfer, actor_user_id) -> None:
    reason = f"Transfer out to store #{transfer.to_store_id}"
    if transfer.notes:
        reason = f"{reason}: {transfer.notes}"
    _move(
        transfer,
        store_id=transfer.from_store_id,
        delta=-transfer.quantity,
        type=TX_TRANSFER_OUT,
        reason=reason,
        actor_user_id=actor_user_id,
    )


def _credit_destination(transfer: InventoryTransfer, actor_user_id) -> None:
    reason = f"Transfer in from store #{transfer.from_store_id}"
    if transfer.notes:
        reason = f"{reason}: {transfer.notes}"
    _move(
        transfer,
        store_id=transfer.to_store_id,
        delta=transfer.quantity,
        type=TX_TRANSFER_IN,
        reason=reason,
        actor_user_id=actor_user_id,
    )


def _transition(transfer: InventoryTransfer, to_status: str, actor_user_id) -> None:
    """Validate and apply one status change with its stock movements."""
    from_status = transfer.status
    if not TRANSFER_STATUS.can_transition(from_status, to_status):
        current_app.logger.warning(
            "Refused transfer %s transition %s -> %s", transfer.id, from_status, to_status
        )
    TRANSFER_STATUS.ensure_transition(from_status, to_status)

    now = utcnow()
    if to_status == TRANSFER_IN_TRANSIT:
        _debit_source(transfer, actor_user_id)
        transfer.shipped_at = now
    elif to_status == TRANSFER_COMPLETED:
        if from_status == TRANSFER_PENDING:
            _debit_source(transfer, actor_user_id)
            transfer.shipped_at = now
        _credit_destination(transfer, actor_user_id)
        transfer.completed_at = now

    transfer.status = to_status
    current_app.logger.info("Transfer %s: %s -> %s", transfer.id, from_status, to_status)


def _cancel_inner(transfer: InventoryTransfer, reason: str, actor_user_id) -> None:
    if not TRANSFER_STATUS.can_transition(transfer.status, TRANSFER_CANCELLED):
        current_app.logger.warning(
            "Refused cancel of transfer %s in status %s", transfer.id, transfer.status
        )
    TRANSFER_STATUS.ensure_transition(transfer.status, TRANSFER_CANCELLED)

    if transfer.status == TRANSFER_IN_TRANSIT:
        _move(
            transfer,
            store_id=transfer.from_store_id,
            delta=transfer.quantity,
            type=TX_TRANSFER_CANCEL,
            reason=f"Transfer #{transfer.id} cancelled: {reason}",
            actor_user_id=actor_user_id,
        )

    original = transfer.notes
    transfer.notes = f"Cancelled. Reason: {reason}"
    if original:
        transfer.notes += f"\nOriginal notes: {original}"

    from_status = transfer.status
    transfer.status = TRANSFER_CANCELLED
    transfer.cancelled_at = utcnow()
    current_app.logger.info("Transfer %s: %s -> %s", transfer.id, from_status, TRANSFER_CANCELLED)


def _create_inner(
    *,
    from_store_id,
    to_store_id,
    variant_id,
    quantity,
    order_id=None,
    notes=None,
    status=TRANSFER_PENDING,
    actor_user_id=None,
) -> InventoryTransfer:
    from_store_id = coerce_int(from_store_id, "from_store_id", minimum=1)
    to_store_id = coerce_int(to_store_id, "to_store_id", minimum=1)
    variant_id = coerce_int(variant_id, "product_variant_id", minimum=1)
    quantity = coerce_int(quantity, "quantity")
    if from_store_id == to_store_id:
        raise ValidationError("Cannot transfer to the same store")
    if quantity <= 0:
        raise ValidationError("quantity must be positive")
    if status not in TRANSFER_INITIAL_STATUSES:
        raise ValidationError(
            f"status must be one of: {', '.join(TRANSFER_INITIAL_STATUSES)}"
        )

    get_store(from_store_id)
    get_store(to_store_id)
    get_variant(variant_id)

    transfer = InventoryTransfer(
        from_store_id=from_store_id,
        to_store_id=to_store_id,
        product_variant_id=variant_id,
        quantity=quantity,
        status=TRANSFER_PENDING,
        order_id=order_id,
        notes=notes,
        created_by_user_id=actor_user_id,
    )
    db.session.add(transfer)
    db.session.flush()  # Get ID

    if status != TRANSFER_PENDING:
        _transition(transfer, status, actor_user_id)
    db.session.flush()
    return transfer


def _ensure_order(order_id: int | None) -> None:
    if order_id is None:
        return
    if db.session.get(Order, order_id) is None:
        raise NotFound(f"Order {order_id} not found", payload={"order_id": order_id})


def create_transfer(
    *,
    from_store_id: int,
    to_store_id: int,
    variant_id: int,
    quantity: int,
    order_id: int | None = None,
    notes: str | None = None,
    status: str = TRANSFER_PENDING,
    actor_user_id: int | None = None,
) -> dict:
    """
    Create a transfer, optionally starting in_transit or completed.

    Starting past pending applies the stock movements of the skipped
    transitions in the same transaction.
    """
    def _op():
        _ensure_order(order_id)
        transfer = _create_inner(
            from_store_id=from_store_id,
            to_store_id=to_store_id,
            variant_id=variant_id,
            quantity=quantity,
            order_id=order_id,
            notes=notes,
            status=status,
            actor_user_id=actor_user_id,
        )
        db.session.commit()
        return transfer.to_dict()

    return run_with_retry(_op)


def create_transfers_batch(
    *,
    transfers: Sequence[dict],
    order_id: int | None = None,
    actor_user_id: int | None = None,
) -> list[dict]:
    """
    Create several transfers in one transaction (all or nothing).

    Each line is checked against live source stock, less what earlier
    pending lines of the same batch claimed from that source.
    Lines without notes get a default note naming the order.
    """
    if not transfers:
        raise ValidationError("transfers must not be empty")

    def _op():
        _ensure_order(order_id)
        claimed: dict[tuple[int, int], int] = {}
        created = []
        for idx, line in enumerate(transfers):
            from_store_id = coerce_int(line.get("from_store_id"), f"transfers[{idx}].from_store_id", minimum=1)
            variant_id = coerce_int(
                line.get("product_variant_id"), f"transfers[{idx}].product_variant_id", minimum=1
            )
            quantity = coerce_int(line.get("quantity"), f"transfers[{idx}].quantity", minimum=1)

            key = (from_store_id, variant_id)
            available = get_quantity(from_store_id, variant_id, lock=True) - claimed.get(key, 0)
            if available < quantity:
                current_app.logger.warning(
                    "Refused batch transfer of %d x variant %s from store %s: available %d",
                    quantity, variant_id, from_store_id, available,
                )
                raise InsufficientStock(from_store_id, variant_id, max(available, 0), quantity)
            status = line.get("status", TRANSFER_PENDING)
            if status == TRANSFER_PENDING:
                # Non-pending lines debit the source as they are created
                claimed[key] = claimed.get(key, 0) + quantity

            notes = line.get("notes")
            if notes is None and order_id is not None:
                notes = f"Stock transfer for order #{order_id}"

            transfer = _create_inner(
                from_store_id=from_store_id,
                to_store_id=line.get("to_store_id"),
                variant_id=variant_id,
                quantity=quantity,
                order_id=order_id,
                notes=notes,
                status=status,
                actor_user_id=actor_user_id,
            )
            created.append(transfer)

        db.session.commit()
        current_app.logger.info(
            "Created %d transfers%s", len(created),
            f" for order {order_id}" if order_id is not None else "",
        )
        return [t.to_dict() for t in created]

    return run_with_retry(_op)


def update_transfer_status(
    *,
    transfer_id: int,
    status: str,
    notes: str | None = None,
    actor_user_id: int | None = None,
) -> dict:
    """
    Move a transfer to `status`.

    Same status is a no-op. cancelled goes through cancel_transfer's rules,
    with `notes` as the reason.
    """
    TRANSFER_STATUS.validate_state(status)

    def _op():
        transfer = _get_transfer_locked(transfer_id)
        if transfer.status == status:
            return transfer.to_dict()

        if status == TRANSFER_CANCELLED:
            _cancel_inner(transfer, notes or "status changed to cancelled", actor_user_id)
        else:
            if notes is not None:
                transfer.notes = notes
            _transition(transfer, status, actor_user_id)

        db.session.commit()
        return transfer.to_dict()

    return run_with_retry(_op)


def cancel_transfer(
    *,
    transfer_id: int,
    reason: str,
    actor_user_id: int | None = None,
) -> dict:
    """Cancel a pending or in-transit transfer; in-transit stock returns to the source."""
    if not reason or not str(reason).strip():
        raise ValidationError("reason is required")

    def _op():
        transfer = _get_transfer_locked(transfer_id)
        _cancel_inner(transfer, reason, actor_user_id)
        db.session.commit()
        return transfer.to_dict()

    return run_with_retry(_op)


def cascade_for_order(order: Order, reason: str, actor_user_id=None) -> dict:
    """
    Cancel open transfers raised for `order` and unlink every transfer.

    Runs inside the caller's transaction. Re-running finds nothing left to
    touch, so it is idempotent.
    """
    linked = (
        lock_for_update(db.session.query(InventoryTransfer).filter_by(order_id=order.id))
        .order_by(InventoryTransfer.id.asc())
        .all()
    )
    cancelled = 0
    for transfer in linked:
        if transfer.status in OPEN_TRANSFER_STATUSES:
            _cancel_inner(transfer, f"order {order.order_number} {reason}", actor_user_id)
            cancelled += 1
        unlink_note = f"Unlinked from order {order.order_number} ({reason})"
        transfer.notes = f"{transfer.notes}\n{unlink_note}" if transfer.notes else unlink_note
        transfer.order_id = None

    db.session.flush()
    if linked:
        current_app.logger.info(
            "Order %s %s: cancelled %d transfers, unlinked %d",
            order.id, reason, cancelled, len(linked),
        )
    return {"cancelled": cancelled, "unlinked": len(linked)}


def cancel_transfers_for_order(
    *,
    order_id: int,
    reason: str = "cancelled",
    actor_user_id: int | None = None,
) -> dict:
    def _op():
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if order is None:
            raise NotFound(f"Order {order_id} not found", payload={"order_id": order_id})
        result = cascade_for_order(order, reason, actor_user_id)
        db.session.commit()
        return result

    return run_with_retry(_op)


def get_transfer(transfer_id: int) -> dict:
    transfer = db.session.get(InventoryTransfer, transfer_id)
    if transfer is None:
        raise NotFound(f"Transfer {transfer_id} not found", payload={"transfer_id": transfer_id})
    return transfer.to_dict()


def list_transfers_for_order(order_id: int) -> list[dict]:
    rows = (
        db.session.query(InventoryTransfer)
        .filter_by(order_id=order_id)
        .order_by(InventoryTransfer.id.asc())
        .all()
    )
    return [t.to_dict() for t in rows]
