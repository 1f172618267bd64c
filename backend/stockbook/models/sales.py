from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


PAYMENT_CASH = "cash"
PAYMENT_CREDIT = "credit"
PAYMENT_PARTIAL = "partial"
PAYMENT_TYPES = (PAYMENT_CASH, PAYMENT_CREDIT, PAYMENT_PARTIAL)


class Sale(db.Model):
    """
    Completed sale.

    Money columns are in currency units. total = subtotal + tax (tax is 0).
    amount_paid is constrained by payment_type at creation time.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.CheckConstraint("payment_type IN ('cash', 'credit', 'partial')", name="ck_sales_payment_type"),
        db.Index("ix_sales_created_payment", "created_at", "payment_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.String(64), nullable=False, unique=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    customer_name = db.Column(db.String(255), nullable=True)

    subtotal = db.Column(db.Float, nullable=False, default=0)
    tax = db.Column(db.Float, nullable=False, default=0)
    total = db.Column(db.Float, nullable=False, default=0)

    payment_type = db.Column(db.String(16), nullable=False)
    amount_paid = db.Column(db.Float, nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default="completed")
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    items = db.relationship(
        "SaleItem",
        backref="sale",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="SaleItem.id",
    )

    def __repr__(self) -> str:
        return f"<Sale id={self.id} transaction_id={self.transaction_id!r} total={self.total}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "customer_id": self.customer_id,
            "customer_name": self.customer.name if self.customer else self.customer_name,
            "subtotal": self.subtotal,
            "tax": self.tax,
            "total": self.total,
            "payment_type": self.payment_type,
            "amount_paid": self.amount_paid,
            "balance": round(self.total - self.amount_paid, 2),
            "status": self.status,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class SaleItem(db.Model):
    """
    One product line of a sale. Quantities are lines; prices are per line.

    unit_cost_price is the FIFO cost at creation and is never recomputed.
    """
    __tablename__ = "sale_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id", ondelete="SET NULL"), nullable=True, index=True)
    product_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_selling_price = db.Column(db.Float, nullable=False)
    unit_cost_price = db.Column(db.Float, nullable=False, default=0)
    total = db.Column(db.Float, nullable=False)
    profit = db.Column(db.Float, nullable=False, default=0)

    # Costed at zero because receipt history could not cover the quantity
    cost_fallback = db.Column(db.Boolean, nullable=False, default=False)

    product = db.relationship("Product", backref=db.backref("sale_items", lazy="dynamic"))
    allocations = db.relationship(
        "CostAllocation",
        backref="sale_item",
        lazy=True,
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<SaleItem id={self.id} sale_id={self.sale_id} product_id={self.product_id} quantity={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_selling_price": self.unit_selling_price,
            "unit_cost_price": self.unit_cost_price,
            "total": self.total,
            "profit": self.profit,
            "cost_fallback": self.cost_fallback,
        }
