from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class Customer(db.Model):
    """
    Registered customer.

    Credit and partial sales must name one. What a customer owes is derived:
    credit sale totals plus the unpaid part of partial sales, less every
    CreditCollection recorded against them. No balance is stored here.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    address = db.Column(db.String(500), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<Customer id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "address": self.address,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class CreditCollection(db.Model):
    """Money received from a customer against what they owe."""
    __tablename__ = "credit_collections"
    __table_args__ = (
        db.CheckConstraint("amount_collected > 0", name="ck_credit_collections_amount_positive"),
        db.Index("ix_credit_collections_customer_collected", "customer_id", "collected_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    amount_collected = db.Column(db.Float, nullable=False)
    notes = db.Column(db.String(1000), nullable=True)

    # Business date of the payment; may be back-dated
    collected_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    customer = db.relationship("Customer", backref=db.backref("credit_collections", lazy="dynamic"))

    def __repr__(self) -> str:
        return (
            f"<CreditCollection id={self.id} customer_id={self.customer_id} "
            f"amount={self.amount_collected}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "amount_collected": self.amount_collected,
            "notes": self.notes,
            "collected_at": to_utc_z(self.collected_at),
            "created_at": to_utc_z(self.created_at),
        }
