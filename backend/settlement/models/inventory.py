from __future__ import annotations

from ..extensions import db
from ..money_utils import format_amount
from ..time_utils import to_utc_z


class Product(db.Model):
    """
    Minimal catalog row read by the settlement core.

    WHY: Checkout snapshots name, price and tax rate onto sale lines; the
    catalog itself is maintained elsewhere.
    """
    __tablename__ = "products"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False, unique=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    price = db.Column(db.Numeric(18, 2), nullable=False, default=0)
    tax_rate = db.Column(db.Numeric(7, 4), nullable=False, default=0)  # percent, e.g. 18.0000
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "price": format_amount(self.price),
            "tax_rate": str(self.tax_rate) if self.tax_rate is not None else None,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Inventory(db.Model):
    """
    Denormalized current stock per product.

    WHY: Fast reads at the till. The adjustment ledger is the history;
    this row is the running balance.

    DESIGN: Read under SELECT ... FOR UPDATE and version-counted so two
    concurrent deductions cannot both read the same quantity_before.
    """
    __tablename__ = "inventory"
    __table_args__ = (
        db.CheckConstraint("quantity >= 0", name="ck_inventory_quantity_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, unique=True, index=True)
    quantity = db.Column(db.Integer, nullable=False, default=0)
    min_stock_level = db.Column(db.Integer, nullable=False, default=0)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product", backref=db.backref("inventory", uselist=False, lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_low_stock(self) -> bool:
        return self.quantity <= self.min_stock_level

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "min_stock_level": self.min_stock_level,
            "is_low_stock": self.is_low_stock,
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class InventoryAdjustment(db.Model):
    """
    Append-only stock movement record.

    ADJUSTMENT TYPES:
    - sale: deduction for a sold line (clamped at zero, shortfall recorded)
    - purchase / return / add: stock in
    - remove: stock out (clamped at zero)
    - manual / adjustment / set: overwrite to a counted quantity

    IMMUTABLE: quantity_after == quantity_before + quantity_change always.
    """
    __tablename__ = "inventory_adjustments"
    __table_args__ = (
        db.Index("ix_inventory_adjustments_product_occurred", "product_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    operator_id = db.Column(db.String(64), nullable=True, index=True)

    adjustment_type = db.Column(db.String(16), nullable=False, index=True)
    quantity_change = db.Column(db.Integer, nullable=False)
    quantity_before = db.Column(db.Integer, nullable=False)
    quantity_after = db.Column(db.Integer, nullable=False)

    # Requested minus applied for clamped deductions
    shortfall = db.Column(db.Integer, nullable=False, default=0)
    reason = db.Column(db.String(255), nullable=True)

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    sale_line_id = db.Column(db.Integer, db.ForeignKey("sale_lines.id"), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    product = db.relationship("Product", backref=db.backref("adjustments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "operator_id": self.operator_id,
            "adjustment_type": self.adjustment_type,
            "quantity_change": self.quantity_change,
            "quantity_before": self.quantity_before,
            "quantity_after": self.quantity_after,
            "shortfall": self.shortfall,
            "reason": self.reason,
            "sale_id": self.sale_id,
            "sale_line_id": self.sale_line_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
