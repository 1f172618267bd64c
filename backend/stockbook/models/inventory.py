from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


MOVEMENT_RECEIVED = "received"
MOVEMENT_SOLD = "sold"
MOVEMENT_ADJUSTMENT_IN = "adjustment_in"
MOVEMENT_ADJUSTMENT_OUT = "adjustment_out"

MOVEMENT_TYPES = (
    MOVEMENT_RECEIVED,
    MOVEMENT_SOLD,
    MOVEMENT_ADJUSTMENT_IN,
    MOVEMENT_ADJUSTMENT_OUT,
)


class Product(db.Model):
    """
    Sellable item.

    lines_per_carton is the divisor used to show quantities as cartons + lines.
    It is frozen once the product has stock movements or sale items, since
    historical line counts would otherwise be reformatted with a new divisor.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(120), nullable=True)

    lines_per_carton = db.Column(db.Integer, nullable=False, default=1)

    # Per carton, as entered
    cost_price_per_carton = db.Column(db.Float, nullable=True)
    default_selling_price = db.Column(db.Float, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} lines_per_carton={self.lines_per_carton}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "lines_per_carton": self.lines_per_carton,
            "cost_price_per_carton": self.cost_price_per_carton,
            "default_selling_price": self.default_selling_price,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Stock ledger entry.

    quantity is signed and in lines: received/adjustment_in are positive,
    sold/adjustment_out are negative. unit_cost is per line and only set on
    received rows, which are the FIFO batches.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.CheckConstraint(
            "type IN ('received', 'sold', 'adjustment_in', 'adjustment_out')",
            name="ck_stock_movements_type",
        ),
        db.Index("ix_stock_movements_fifo", "product_id", "type", "created_at", "id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    type = db.Column(db.String(32), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_cost = db.Column(db.Float, nullable=True)

    # Lines already drawn by depleting FIFO costing (received rows only)
    consumed_quantity = db.Column(db.Integer, nullable=False, default=0)

    # Divisor in force when the row was written
    lines_per_carton = db.Column(db.Integer, nullable=False, default=1)

    notes = db.Column(db.String(1000), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    product = db.relationship("Product", backref=db.backref("stock_movements", lazy="dynamic"))

    @property
    def remaining_quantity(self) -> int:
        return max(int(self.quantity) - int(self.consumed_quantity or 0), 0)

    def __repr__(self) -> str:
        return (
            f"<StockMovement id={self.id} product_id={self.product_id} "
            f"type={self.type} quantity={self.quantity}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "type": self.type,
            "quantity": self.quantity,
            "unit_cost": self.unit_cost,
            "consumed_quantity": self.consumed_quantity,
            "lines_per_carton": self.lines_per_carton,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class CostAllocation(db.Model):
    """Lines a sale item drew from one received batch under depleting FIFO costing."""
    __tablename__ = "cost_allocations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_item_id = db.Column(
        db.Integer,
        db.ForeignKey("sale_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    stock_movement_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_cost = db.Column(db.Float, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    stock_movement = db.relationship("StockMovement")

    def __repr__(self) -> str:
        return (
            f"<CostAllocation sale_item_id={self.sale_item_id} "
            f"movement_id={self.stock_movement_id} quantity={self.quantity}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_item_id": self.sale_item_id,
            "stock_movement_id": self.stock_movement_id,
            "quantity": self.quantity,
            "unit_cost": self.unit_cost,
        }
