from __future__ import annotations

from ..extensions import db
from storeflow.time_utils import to_utc_z


class Inventory(db.Model):
    """
    On-hand quantity of one variant at one store.

    INVARIANT: quantity >= 0 (enforced in the ledger and by a CHECK constraint).
    Only services.inventory_service.apply_adjustment writes quantity.
    """
    __tablename__ = "inventories"
    __table_args__ = (
        db.UniqueConstraint("store_id", "product_variant_id", name="uq_inventories_store_variant"),
        db.CheckConstraint("quantity >= 0", name="ck_inventories_quantity_nonneg"),
        db.Index("ix_inventories_variant_quantity", "product_variant_id", "quantity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    product_variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    low_stock_threshold = db.Column(db.Integer, nullable=False, default=5)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<Inventory store_id={self.store_id} "
            f"variant_id={self.product_variant_id} quantity={self.quantity}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "product_variant_id": self.product_variant_id,
            "quantity": self.quantity,
            "low_stock_threshold": self.low_stock_threshold,
            "is_low_stock": self.quantity <= self.low_stock_threshold,
            "version_id": self.version_id,
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryTransaction(db.Model):
    """
    Append-only history of every inventory quantity change.

    IMMUTABLE: rows are never updated or deleted. One row per successful
    ledger mutation, written in the same DB transaction as the change.
    """
    __tablename__ = "inventory_transactions"
    __table_args__ = (
        db.Index("ix_invtx_store_variant_occurred", "store_id", "product_variant_id", "occurred_at"),
        db.Index("ix_invtx_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    inventory_id = db.Column(db.Integer, db.ForeignKey("inventories.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    product_variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False, index=True)

    # addition, reduction, adjustment, transfer_in, transfer_out, transfer_cancel, purchase, sale, return
    type = db.Column(db.String(32), nullable=False, index=True)

    quantity_delta = db.Column(db.Integer, nullable=False)
    before_quantity = db.Column(db.Integer, nullable=False)
    after_quantity = db.Column(db.Integer, nullable=False)

    notes = db.Column(db.String(1000), nullable=True)
    # "metadata" is reserved on declarative models
    metadata_json = db.Column("metadata", db.JSON, nullable=True)

    # Weak pointer to the document that caused the change (transfer, purchase, order)
    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    actor_user_id = db.Column(db.Integer, nullable=True, index=True)

    occurred_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        index=True,
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "inventory_id": self.inventory_id,
            "store_id": self.store_id,
            "product_variant_id": self.product_variant_id,
            "type": self.type,
            "quantity_delta": self.quantity_delta,
            "before_quantity": self.before_quantity,
            "after_quantity": self.after_quantity,
            "notes": self.notes,
            "metadata": self.metadata_json,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "actor_user_id": self.actor_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class InventoryTransfer(db.Model):
    """
    Single-variant stock movement between two stores.

    LIFECYCLE:
    1. PENDING: Created, no stock moved
    2. IN_TRANSIT: Shipped, source store debited
    3. COMPLETED: Received, destination store credited (terminal)
    4. CANCELLED: Cancelled; an in-transit quantity is credited back to source

    order_id is a weak reference: cancelling or deleting the order unlinks
    its transfers first (transfer_service.cascade_for_order). The foreign key
    has no ON DELETE action, so deleting an order that still has linked
    transfers fails.
    """
    __tablename__ = "inventory_transfers"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_transfers_quantity_positive"),
        db.CheckConstraint("from_store_id <> to_store_id", name="ck_transfers_distinct_stores"),
        db.Index("ix_transfers_order_status", "order_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    from_store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    to_store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    product_variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)

    # pending, in_transit, completed, cancelled
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    order_id = db.Column(
        db.Integer,
        db.ForeignKey("orders.id"),
        nullable=True,
        index=True,
    )

    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    shipped_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<InventoryTransfer id={self.id} {self.from_store_id}->{self.to_store_id} "
            f"qty={self.quantity} status={self.status}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "from_store_id": self.from_store_id,
            "to_store_id": self.to_store_id,
            "product_variant_id": self.product_variant_id,
            "quantity": self.quantity,
            "status": self.status,
            "order_id": self.order_id,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "shipped_at": to_utc_z(self.shipped_at) if self.shipped_at else None,
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "version_id": self.version_id,
        }
