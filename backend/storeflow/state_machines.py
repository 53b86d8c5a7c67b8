# Overview: Central transition tables for every status axis.

"""
Status state machines (authoritative)

Each axis is a StateMachine with an explicit transition table. Services never
compare status strings ad hoc; they ask the machine.

ORDER SHIPPING:
    pending -> shipped -> completed
    pending | shipped -> cancelled          (terminal)

ORDER PAYMENT:
    pending -> partial -> paid
    pending -> paid                         (single full payment)
    partial | paid -> refunded              (terminal)

INVENTORY TRANSFER:
    pending -> in_transit -> completed      (completed is terminal)
    pending -> completed                    (direct receipt)
    pending | in_transit -> cancelled       (terminal)

PURCHASE:
    pending -> confirmed -> in_transit -> received -> completed
    in_transit -> partially_received -> received
    pending -> completed                    (immediate receipt)
    pending | confirmed -> cancelled        (terminal)
"""
from __future__ import annotations

from typing import Mapping

from .errors import InvalidStatusTransition, InvalidTransferTransition, ValidationError


class StateMachine:
    def __init__(
        self,
        name: str,
        transitions: Mapping[str, frozenset[str] | set[str]],
        error_cls: type[InvalidStatusTransition] = InvalidStatusTransition,
    ):
        self.name = name
        self.transitions = {state: frozenset(targets) for state, targets in transitions.items()}
        self.error_cls = error_cls

    @property
    def states(self) -> frozenset[str]:
        return frozenset(self.transitions)

    def is_terminal(self, state: str) -> bool:
        self.validate_state(state)
        return not self.transitions[state]

    def validate_state(self, state: str) -> None:
        if state not in self.transitions:
            raise ValidationError(
                f"Invalid {self.name} status '{state}'. "
                f"Must be one of: {', '.join(sorted(self.transitions))}"
            )

    def can_transition(self, from_state: str, to_state: str) -> bool:
        self.validate_state(from_state)
        self.validate_state(to_state)
        return to_state in self.transitions[from_state]

    def ensure_transition(self, from_state: str, to_state: str) -> None:
        if not self.can_transition(from_state, to_state):
            raise self.error_cls(
                f"Cannot move {self.name} from '{from_state}' to '{to_state}'",
                payload={"from_status": from_state, "to_status": to_state},
            )


# Order shipping axis
SHIPPING_PENDING = "pending"
SHIPPING_SHIPPED = "shipped"
SHIPPING_COMPLETED = "completed"
SHIPPING_CANCELLED = "cancelled"

# Order payment axis
PAYMENT_PENDING = "pending"
PAYMENT_PARTIAL = "partial"
PAYMENT_PAID = "paid"
PAYMENT_REFUNDED = "refunded"

# Inventory transfers
TRANSFER_PENDING = "pending"
TRANSFER_IN_TRANSIT = "in_transit"
TRANSFER_COMPLETED = "completed"
TRANSFER_CANCELLED = "cancelled"

# Purchases
PURCHASE_PENDING = "pending"
PURCHASE_CONFIRMED = "confirmed"
PURCHASE_IN_TRANSIT = "in_transit"
PURCHASE_PARTIALLY_RECEIVED = "partially_received"
PURCHASE_RECEIVED = "received"
PURCHASE_COMPLETED = "completed"
PURCHASE_CANCELLED = "cancelled"


SHIPPING_STATUS = StateMachine(
    "shipping",
    {
        SHIPPING_PENDING: {SHIPPING_SHIPPED, SHIPPING_CANCELLED},
        SHIPPING_SHIPPED: {SHIPPING_COMPLETED, SHIPPING_CANCELLED},
        SHIPPING_COMPLETED: set(),
        SHIPPING_CANCELLED: set(),
    },
)

PAYMENT_STATUS = StateMachine(
    "payment",
    {
        PAYMENT_PENDING: {PAYMENT_PARTIAL, PAYMENT_PAID},
        PAYMENT_PARTIAL: {PAYMENT_PAID, PAYMENT_REFUNDED},
        PAYMENT_PAID: {PAYMENT_REFUNDED},
        PAYMENT_REFUNDED: set(),
    },
)

TRANSFER_STATUS = StateMachine(
    "transfer",
    {
        TRANSFER_PENDING: {TRANSFER_IN_TRANSIT, TRANSFER_COMPLETED, TRANSFER_CANCELLED},
        TRANSFER_IN_TRANSIT: {TRANSFER_COMPLETED, TRANSFER_CANCELLED},
        TRANSFER_COMPLETED: set(),
        TRANSFER_CANCELLED: set(),
    },
    error_cls=InvalidTransferTransition,
)

PURCHASE_STATUS = StateMachine(
    "purchase",
    {
        PURCHASE_PENDING: {PURCHASE_CONFIRMED, PURCHASE_COMPLETED, PURCHASE_CANCELLED},
        PURCHASE_CONFIRMED: {PURCHASE_IN_TRANSIT, PURCHASE_CANCELLED},
        PURCHASE_IN_TRANSIT: {PURCHASE_RECEIVED, PURCHASE_PARTIALLY_RECEIVED},
        PURCHASE_PARTIALLY_RECEIVED: {PURCHASE_RECEIVED},
        PURCHASE_RECEIVED: {PURCHASE_COMPLETED},
        PURCHASE_COMPLETED: set(),
        PURCHASE_CANCELLED: set(),
    },
)

# Transfers that still hold (or are about to move) physical stock
OPEN_TRANSFER_STATUSES = (TRANSFER_PENDING, TRANSFER_IN_TRANSIT)

# Purchase statuses at which received goods hit inventory and cost
PURCHASE_RECEIPT_STATUSES = (PURCHASE_RECEIVED, PURCHASE_COMPLETED)
