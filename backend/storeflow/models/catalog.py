from __future__ import annotations

from ..extensions import db
from storeflow.money import divide_half_up
from storeflow.time_utils import to_utc_z


class ProductVariant(db.Model):
    """
    Sellable product variant (one SKU).

    COST AGGREGATES:
    total_purchased_quantity and total_cost_amount are running sums over every
    received purchase line (cost_price * quantity + allocated shipping).
    average_cost is stored for reads and is always
    divide_half_up(total_cost_amount, total_purchased_quantity).
    Only the purchase service writes these three columns.
    """
    __tablename__ = "product_variants"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_product_variants_sku"),
        db.CheckConstraint("total_purchased_quantity >= 0", name="ck_variant_total_qty_nonneg"),
        db.CheckConstraint("total_cost_amount >= 0", name="ck_variant_total_cost_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=True)

    # Authoritative storage in cents
    price = db.Column(db.Integer, nullable=False, default=0)

    total_purchased_quantity = db.Column(db.Integer, nullable=False, default=0)
    total_cost_amount = db.Column(db.Integer, nullable=False, default=0)
    average_cost = db.Column(db.Integer, nullable=False, default=0)

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
        return f"<ProductVariant id={self.id} sku={self.sku!r}>"

    def computed_average_cost(self) -> int:
        return divide_half_up(self.total_cost_amount or 0, self.total_purchased_quantity or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "price": self.price,
            "total_purchased_quantity": self.total_purchased_quantity,
            "total_cost_amount": self.total_cost_amount,
            "average_cost": self.average_cost,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
