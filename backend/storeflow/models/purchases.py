from __future__ import annotations

from ..extensions import db
from storeflow.time_utils import to_utc_z


class Purchase(db.Model):
    """
    Inbound purchase from a supplier into one store.

    COSTING: shipping_cost is prorated over the lines by quantity
    (see services.purchase_service). total_amount is the sum of line
    total_cost_price values, so it always includes shipping.

    inventory_processed flips once, when received goods are applied to
    inventory and variant cost aggregates. It never flips back.
    """
    __tablename__ = "purchases"
    __table_args__ = (
        db.UniqueConstraint("store_id", "purchase_number", name="uq_purchases_store_number"),
        db.CheckConstraint("shipping_cost >= 0", name="ck_purchases_shipping_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    # Human-readable number (e.g., "PO-001-0042")
    purchase_number = db.Column(db.String(64), nullable=False)

    shipping_cost = db.Column(db.Integer, nullable=False, default=0)
    total_amount = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(24), nullable=False, default="pending", index=True)
    inventory_processed = db.Column(db.Boolean, nullable=False, default=False)

    notes = db.Column(db.Text, nullable=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)

    purchased_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    received_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "PurchaseItem",
        backref=db.backref("purchase", lazy=True),
        lazy=True,
        order_by="PurchaseItem.id",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Purchase id={self.id} number={self.purchase_number!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "purchase_number": self.purchase_number,
            "shipping_cost": self.shipping_cost,
            "total_amount": self.total_amount,
            "status": self.status,
            "inventory_processed": self.inventory_processed,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "purchased_at": to_utc_z(self.purchased_at),
            "received_at": to_utc_z(self.received_at) if self.received_at else None,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }


class PurchaseItem(db.Model):
    """One purchased variant line. Immutable once its purchase is committed."""
    __tablename__ = "purchase_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_purchase_items_quantity_positive"),
        db.CheckConstraint("cost_price >= 0", name="ck_purchase_items_cost_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_id = db.Column(db.Integer, db.ForeignKey("purchases.id"), nullable=False, index=True)
    product_variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)

    # Per-unit cost in cents
    cost_price = db.Column(db.Integer, nullable=False)

    # Share of purchase shipping_cost for the whole line (not per unit)
    allocated_shipping_cost = db.Column(db.Integer, nullable=False, default=0)

    # cost_price * quantity + allocated_shipping_cost
    total_cost_price = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_id": self.purchase_id,
            "product_variant_id": self.product_variant_id,
            "quantity": self.quantity,
            "cost_price": self.cost_price,
            "allocated_shipping_cost": self.allocated_shipping_cost,
            "total_cost_price": self.total_cost_price,
            "created_at": to_utc_z(self.created_at),
        }
