from __future__ import annotations

from ..extensions import db
from storeflow.time_utils import to_utc_z


class Order(db.Model):
    """
    Customer order with two independent status axes.

    shipping_status: pending, shipped, completed, cancelled
    payment_status:  pending, partial, paid, refunded

    MONEY (all cents):
    grand_total = subtotal + shipping_fee + tax - discount_amount
    0 <= paid_amount <= grand_total, and paid_amount always equals the sum of
    the order's PaymentRecord amounts.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("store_id", "order_number", name="uq_orders_store_number"),
        db.CheckConstraint("paid_amount >= 0", name="ck_orders_paid_nonneg"),
        db.CheckConstraint("paid_amount <= grand_total", name="ck_orders_paid_le_total"),
        db.Index("ix_orders_store_status", "store_id", "shipping_status", "payment_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    # Human-readable number (e.g., "ORD-001-0042")
    order_number = db.Column(db.String(64), nullable=False)

    customer_id = db.Column(db.Integer, nullable=True, index=True)
    creator_user_id = db.Column(db.Integer, nullable=True)

    shipping_status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    payment_status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    subtotal = db.Column(db.Integer, nullable=False, default=0)
    shipping_fee = db.Column(db.Integer, nullable=False, default=0)
    tax = db.Column(db.Integer, nullable=False, default=0)
    discount_amount = db.Column(db.Integer, nullable=False, default=0)
    grand_total = db.Column(db.Integer, nullable=False, default=0)
    paid_amount = db.Column(db.Integer, nullable=False, default=0)
    refunded_amount = db.Column(db.Integer, nullable=False, default=0)

    payment_method = db.Column(db.String(32), nullable=True)
    shipping_address = db.Column(db.Text, nullable=True)
    tracking_number = db.Column(db.String(128), nullable=True)
    carrier = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    shipped_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "OrderItem",
        backref=db.backref("order", lazy=True),
        lazy=True,
        order_by="OrderItem.id",
        cascade="all, delete-orphan",
    )
    status_histories = db.relationship(
        "OrderStatusHistory",
        backref=db.backref("order", lazy=True),
        lazy=True,
        order_by="OrderStatusHistory.id",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def remaining_amount(self) -> int:
        return self.grand_total - self.paid_amount

    def __repr__(self) -> str:
        return (
            f"<Order id={self.id} number={self.order_number!r} "
            f"shipping={self.shipping_status} payment={self.payment_status}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "order_number": self.order_number,
            "customer_id": self.customer_id,
            "creator_user_id": self.creator_user_id,
            "shipping_status": self.shipping_status,
            "payment_status": self.payment_status,
            "subtotal": self.subtotal,
            "shipping_fee": self.shipping_fee,
            "tax": self.tax,
            "discount_amount": self.discount_amount,
            "grand_total": self.grand_total,
            "paid_amount": self.paid_amount,
            "remaining_amount": self.remaining_amount,
            "refunded_amount": self.refunded_amount,
            "payment_method": self.payment_method,
            "shipping_address": self.shipping_address,
            "tracking_number": self.tracking_number,
            "carrier": self.carrier,
            "notes": self.notes,
            "cancellation_reason": self.cancellation_reason,
            "created_at": to_utc_z(self.created_at),
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
            "shipped_at": to_utc_z(self.shipped_at) if self.shipped_at else None,
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "refunded_at": to_utc_z(self.refunded_at) if self.refunded_at else None,
            "version_id": self.version_id,
        }


class OrderItem(db.Model):
    """
    Individual line on an order.

    is_stocked_sale lines are fulfilled from the order's store stock and
    deducted at creation; is_backorder lines wait for a transfer or purchase.
    """
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True, index=True)

    sku = db.Column(db.String(64), nullable=True)
    product_name = db.Column(db.String(255), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    price = db.Column(db.Integer, nullable=False)

    is_stocked_sale = db.Column(db.Boolean, nullable=False, default=True)
    is_backorder = db.Column(db.Boolean, nullable=False, default=False)

    # pending, fulfilled, cancelled
    status = db.Column(db.String(16), nullable=False, default="pending")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def line_total(self) -> int:
        return self.price * self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_variant_id": self.product_variant_id,
            "sku": self.sku,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "price": self.price,
            "line_total": self.line_total,
            "is_stocked_sale": self.is_stocked_sale,
            "is_backorder": self.is_backorder,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }


class OrderStatusHistory(db.Model):
    """
    Append-only audit trail of order status changes.

    One row per transition on either axis; from_status is NULL for the
    initial row written at order creation.
    """
    __tablename__ = "order_status_histories"
    __table_args__ = (
        db.Index("ix_order_history_order_type", "order_id", "status_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)

    # shipping, payment
    status_type = db.Column(db.String(16), nullable=False)
    from_status = db.Column(db.String(16), nullable=True)
    to_status = db.Column(db.String(16), nullable=False)

    actor_user_id = db.Column(db.Integer, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "status_type": self.status_type,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "actor_user_id": self.actor_user_id,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class PaymentRecord(db.Model):
    """
    Append-only record of money received against an order.

    IMMUTABLE: never updated or deleted. The order row cannot be deleted
    while any payment record references it.
    """
    __tablename__ = "payment_records"
    __table_args__ = (
        db.CheckConstraint("amount > 0", name="ck_payment_records_amount_positive"),
        db.Index("ix_payment_records_order_created", "order_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    amount = db.Column(db.Integer, nullable=False)

    # cash, transfer, credit_card
    payment_method = db.Column(db.String(32), nullable=False)
    notes = db.Column(db.String(500), nullable=True)

    payment_date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "amount": self.amount,
            "payment_method": self.payment_method,
            "notes": self.notes,
            "payment_date": to_utc_z(self.payment_date),
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
