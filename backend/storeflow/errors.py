# Overview: Domain error taxonomy shared by every service.

"""
Errors raised by the storeflow services.

Every error carries the HTTP status a caller layer should map it to, and
serializes to a flat dict. Nothing here is retried internally: a failed money
or stock operation is rolled back and reported, never re-applied.
"""
from __future__ import annotations


class StoreflowError(Exception):
    """Base class for storeflow domain errors."""

    status_code = 422

    def __init__(self, message: str, *, payload: dict | None = None):
        super().__init__(message)
        self.message = message
        self.payload = payload

    def to_dict(self) -> dict:
        rv = dict(self.payload or ())
        rv["error"] = type(self).__name__
        rv["message"] = self.message
        return rv


class ValidationError(StoreflowError, ValueError):
    """Malformed or missing input."""


class NotFound(StoreflowError, LookupError):
    """Referenced row does not exist."""

    status_code = 404


class InsufficientStock(StoreflowError):
    """A ledger mutation would take on-hand quantity below zero."""

    def __init__(self, store_id: int, variant_id: int, available: int, requested: int):
        super().__init__(
            f"Insufficient stock for variant {variant_id} at store {store_id}. "
            f"On-hand: {available}, requested: {requested}",
            payload={
                "store_id": store_id,
                "product_variant_id": variant_id,
                "available_quantity": available,
                "requested_quantity": requested,
            },
        )
        self.store_id = store_id
        self.variant_id = variant_id
        self.available = available
        self.requested = requested


class OverpaymentRejected(StoreflowError):
    """Payment exceeds the order's remaining balance."""


class OrderAlreadyPaid(OverpaymentRejected):
    """Order is fully paid; there is no remaining balance."""


class InvalidStatusTransition(StoreflowError):
    """Illegal state change on an order axis or purchase."""


class InvalidTransferTransition(InvalidStatusTransition):
    """Illegal state change on an inventory transfer."""


class ForeignKeyViolation(StoreflowError):
    """Row is still referenced and cannot be deleted."""

    status_code = 409
