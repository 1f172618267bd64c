# Overview: Service-layer operations for customers and credit collections; encapsulates business logic and database work.

"""
Customer Service

Debt model (authoritative):
- Only completed credit and partial sales create debt. A credit sale owes its
  total; a partial sale owes total - amount_paid.
- A CreditCollection is money received against that debt. Collections are
  not tied to individual sales.
- outstanding_balance = max(total_debt - total_collected, 0), compared to
  the cent. Nothing is stored on the customer row.
- A collection may never exceed the outstanding balance at the moment it is
  recorded or edited. The customer row is locked for that check.

Debt status buckets age the last credit activity (the later of the last
collection and the last credit/partial sale):
paid (nothing owed), current (<= 30 days), overdue_30, overdue_60,
overdue_90 (> 90 days), unknown (owes but has no dated activity).
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import case, func

from ..extensions import db
from ..models import CreditCollection, Customer, Sale, PAYMENT_CREDIT, PAYMENT_PARTIAL
from ..errors import StockbookError, PaymentValidationError
from ..time_utils import day_range, normalize_datetime, to_utc_z, today
from .concurrency import begin_immediate, lock_for_update, run_with_retry

CUSTOMER_MUTABLE_FIELDS = {"name", "phone", "email", "address"}

DEBT_PAYMENT_TYPES = (PAYMENT_CREDIT, PAYMENT_PARTIAL)

RECENT_TRANSACTIONS = 5


def _cents(value) -> float:
    return round(float(value or 0), 2)


def _get_customer(customer_id: int, *, lock: bool = False) -> Customer:
    q = db.session.query(Customer).filter_by(id=customer_id)
    if lock:
        q = lock_for_update(q)
    customer = q.first()
    if customer is None:
        raise StockbookError("Customer not found", details={"customer_id": customer_id})
    return customer


def _clean_name(name: str | None) -> str:
    if not name or not name.strip():
        raise StockbookError("Customer name is required")
    return name.strip()


def create_customer(
    *,
    name: str,
    phone: str | None = None,
    email: str | None = None,
    address: str | None = None,
) -> Customer:
    """
    Register a customer. New customers are active.

    Raises:
        StockbookError: If the name is blank
    """
    customer = Customer(
        name=_clean_name(name),
        phone=phone,
        email=email,
        address=address,
        is_active=True,
    )
    db.session.add(customer)
    db.session.commit()
    return customer


def update_customer(customer_id: int, patch: dict) -> Customer:
    """
    Update contact details.

    Args:
        customer_id: Customer to update
        patch: Any of name, phone, email, address

    Raises:
        StockbookError: If the customer is missing, a field is unknown, or
            the name would become blank
    """
    customer = _get_customer(customer_id)

    unknown = set(patch) - CUSTOMER_MUTABLE_FIELDS
    if unknown:
        raise StockbookError("Unknown customer fields", details={"fields": sorted(unknown)})

    for key, value in patch.items():
        if key == "name":
            value = _clean_name(value)
        setattr(customer, key, value)

    db.session.commit()
    return customer


def toggle_customer_status(customer_id: int) -> Customer:
    """Flip is_active. Inactive customers cannot take new credit or partial sales."""
    customer = _get_customer(customer_id)
    customer.is_active = not customer.is_active
    db.session.commit()
    current_app.logger.info(
        "Customer %s (%s) is now %s",
        customer.id,
        customer.name,
        "active" if customer.is_active else "inactive",
    )
    return customer


def get_total_debt(customer_id: int) -> float:
    owed = case(
        (Sale.payment_type == PAYMENT_CREDIT, Sale.total),
        else_=Sale.total - Sale.amount_paid,
    )
    q = db.session.query(func.coalesce(func.sum(owed), 0)).filter(
        Sale.customer_id == customer_id,
        Sale.status == "completed",
        Sale.payment_type.in_(DEBT_PAYMENT_TYPES),
    )
    return _cents(q.scalar())


def get_total_collected(customer_id: int) -> float:
    q = db.session.query(func.coalesce(func.sum(CreditCollection.amount_collected), 0)).filter(
        CreditCollection.customer_id == customer_id,
    )
    return _cents(q.scalar())


def get_outstanding_balance(customer_id: int) -> float:
    return max(_cents(get_total_debt(customer_id) - get_total_collected(customer_id)), 0.0)


def _last_collection(customer_id: int) -> CreditCollection | None:
    return (
        db.session.query(CreditCollection)
        .filter(CreditCollection.customer_id == customer_id)
        .order_by(CreditCollection.collected_at.desc(), CreditCollection.id.desc())
        .first()
    )


def _last_debt_sale(customer_id: int) -> Sale | None:
    return (
        db.session.query(Sale)
        .filter(Sale.customer_id == customer_id, Sale.payment_type.in_(DEBT_PAYMENT_TYPES))
        .order_by(Sale.created_at.desc(), Sale.id.desc())
        .first()
    )


def get_last_transaction_date(customer_id: int) -> datetime | None:
    dates = [
        row.collected_at if isinstance(row, CreditCollection) else row.created_at
        for row in (_last_collection(customer_id), _last_debt_sale(customer_id))
        if row is not None
    ]
    return max(dates) if dates else None


def debt_status(balance: float, last_transaction: datetime | None, *, as_of=None) -> str:
    if balance <= 0:
        return "paid"
    if last_transaction is None:
        return "unknown"
    days = ((as_of or today()) - last_transaction.date()).days
    if days <= 30:
        return "current"
    if days <= 60:
        return "overdue_30"
    if days <= 90:
        return "overdue_60"
    return "overdue_90"


def customer_to_display(customer: Customer) -> dict:
    data = customer.to_dict()
    debt = get_total_debt(customer.id)
    collected = get_total_collected(customer.id)
    balance = max(_cents(debt - collected), 0.0)
    last = get_last_transaction_date(customer.id)
    data.update({
        "total_debt": debt,
        "total_payments": collected,
        "outstanding_balance": balance,
        "has_outstanding_debt": balance > 0,
        "last_transaction_date": to_utc_z(last),
        "debt_status": debt_status(balance, last),
    })
    return data


def get_customer(customer_id: int) -> dict:
    return customer_to_display(_get_customer(customer_id))


def list_customers(*, include_inactive: bool = True, owing_only: bool = False) -> list[dict]:
    """Customers with their balances, by name. owing_only keeps those with a balance > 0."""
    q = db.session.query(Customer)
    if not include_inactive:
        q = q.filter(Customer.is_active.is_(True))
    rows = [customer_to_display(c) for c in q.order_by(Customer.name.asc(), Customer.id.asc()).all()]
    if owing_only:
        rows = [r for r in rows if r["has_outstanding_debt"]]
    return rows


def _sale_entry(sale: Sale) -> dict:
    owed = sale.total if sale.payment_type == PAYMENT_CREDIT else sale.total - sale.amount_paid
    return {
        "type": "debt",
        "sale_id": sale.id,
        "reference": sale.transaction_id,
        "date": sale.created_at.date().isoformat(),
        "description": "Sale: " + ", ".join(i.product_name for i in sale.items),
        "debt_amount": _cents(owed),
        "payment_amount": 0.0,
        "notes": sale.notes,
        "_at": sale.created_at,
    }


def _collection_entry(collection: CreditCollection) -> dict:
    return {
        "type": "payment",
        "payment_id": collection.id,
        "reference": f"PAY-{collection.id}",
        "date": collection.collected_at.date().isoformat(),
        "description": "Payment received",
        "debt_amount": 0.0,
        "payment_amount": _cents(collection.amount_collected),
        "notes": collection.notes,
        "_at": collection.collected_at,
    }


def customer_transactions(customer_id: int) -> list[dict]:
    """
    Credit sales and collections for a customer, newest first, each with the
    balance before and after it.
    """
    customer = _get_customer(customer_id)

    sales = (
        db.session.query(Sale)
        .filter(
            Sale.customer_id == customer.id,
            Sale.status == "completed",
            Sale.payment_type.in_(DEBT_PAYMENT_TYPES),
        )
        .all()
    )
    collections = customer.credit_collections.all()

    entries = [_sale_entry(s) for s in sales] + [_collection_entry(c) for c in collections]
    # Same instant: the debt is booked before the payment against it
    entries.sort(key=lambda e: (e["_at"], 0 if e["type"] == "debt" else 1))

    running = 0.0
    for entry in entries:
        entry["previous_balance"] = running
        running = _cents(running + entry["debt_amount"] - entry["payment_amount"])
        entry["current_balance"] = running
        entry["created_at"] = to_utc_z(entry.pop("_at"))

    entries.reverse()
    return entries


def get_transaction_summary(customer_id: int) -> dict:
    customer = _get_customer(customer_id)
    display = customer_to_display(customer)

    def _count(payment_type: str) -> int:
        return (
            db.session.query(func.count(Sale.id))
            .filter(Sale.customer_id == customer.id, Sale.payment_type == payment_type)
            .scalar()
        )

    last_payment = _last_collection(customer.id)
    last_sale = _last_debt_sale(customer.id)
    return {
        "customer_id": customer.id,
        "total_debt": display["total_debt"],
        "outstanding_balance": display["outstanding_balance"],
        "total_payments": display["total_payments"],
        "total_credit_sales": int(_count(PAYMENT_CREDIT) or 0),
        "total_partial_sales": int(_count(PAYMENT_PARTIAL) or 0),
        "total_payments_made": customer.credit_collections.count(),
        "last_payment_date": to_utc_z(last_payment.collected_at) if last_payment else None,
        "last_credit_sale_date": to_utc_z(last_sale.created_at) if last_sale else None,
        "debt_status": display["debt_status"],
        "recent_transactions": customer_transactions(customer.id)[:RECENT_TRANSACTIONS],
    }


def _check_collection_amount(amount, outstanding: float, *, customer_id: int) -> float:
    if amount is None:
        raise PaymentValidationError("Amount collected is required", details={"rule": "collection_amount_positive"})
    value = _cents(amount)
    if value <= 0:
        raise PaymentValidationError(
            "Amount collected must be greater than zero",
            details={"rule": "collection_amount_positive", "amount_collected": amount},
        )
    if value > outstanding:
        raise PaymentValidationError(
            f"Payment amount cannot exceed current debt of {outstanding:.2f}",
            details={
                "rule": "collection_exceeds_balance",
                "customer_id": customer_id,
                "amount_collected": value,
                "outstanding_balance": outstanding,
            },
        )
    return value


def record_collection(
    *,
    customer_id: int,
    amount,
    collected_on=None,
    notes: str | None = None,
) -> CreditCollection:
    """
    Record money received against a customer's debt.

    collected_on is the business date of the payment (a bare date is noon of
    that day); it defaults to now.

    Raises:
        StockbookError: If the customer is missing
        PaymentValidationError: If the amount is not positive or exceeds the
            outstanding balance
    """
    collected_at = _collected_at(collected_on)

    def _op():
        begin_immediate()
        customer = _get_customer(customer_id, lock=True)
        value = _check_collection_amount(
            amount, get_outstanding_balance(customer.id), customer_id=customer.id
        )
        collection = CreditCollection(
            customer_id=customer.id,
            amount_collected=value,
            notes=notes,
            collected_at=collected_at,
        )
        db.session.add(collection)
        db.session.commit()
        return collection

    return run_with_retry(_op)


def _collected_at(value) -> datetime:
    try:
        return normalize_datetime(value)
    except ValueError:
        raise StockbookError("Invalid payment date", details={"collected_on": value})


def _get_collection(collection_id: int) -> CreditCollection:
    collection = db.session.get(CreditCollection, collection_id)
    if collection is None:
        raise StockbookError("Payment not found", details={"payment_id": collection_id})
    return collection


def update_collection(
    collection_id: int,
    *,
    amount,
    collected_on=None,
    notes: str | None = None,
) -> CreditCollection:
    """Change a recorded payment; the new amount may not push the balance below zero."""
    def _op():
        begin_immediate()
        collection = _get_collection(collection_id)
        _get_customer(collection.customer_id, lock=True)

        # Balance as if this payment had never been made
        outstanding = max(
            _cents(
                get_total_debt(collection.customer_id)
                - get_total_collected(collection.customer_id)
                + collection.amount_collected
            ),
            0.0,
        )
        collection.amount_collected = _check_collection_amount(
            amount, outstanding, customer_id=collection.customer_id
        )
        collection.notes = notes
        if collected_on is not None:
            collection.collected_at = _collected_at(collected_on)
        db.session.commit()
        return collection

    return run_with_retry(_op)


def delete_collection(collection_id: int) -> None:
    def _op():
        begin_immediate()
        collection = _get_collection(collection_id)
        current_app.logger.info(
            "Deleting payment %s of %.2f from customer %s",
            collection.id,
            collection.amount_collected,
            collection.customer_id,
        )
        db.session.delete(collection)
        db.session.commit()

    return run_with_retry(_op)


def list_collections(
    *,
    start_date=None,
    end_date=None,
    customer_id: int | None = None,
) -> list[dict]:
    """Collections in an inclusive date range (default today), newest first, with customer names."""
    try:
        lo, hi = day_range(start_date, end_date)
    except ValueError as exc:
        raise StockbookError(str(exc), details={"start_date": start_date, "end_date": end_date})
    q = (
        db.session.query(CreditCollection, Customer.name)
        .join(Customer, Customer.id == CreditCollection.customer_id)
        .filter(CreditCollection.collected_at >= lo, CreditCollection.collected_at < hi)
    )
    if customer_id is not None:
        q = q.filter(CreditCollection.customer_id == customer_id)
    rows = q.order_by(CreditCollection.collected_at.desc(), CreditCollection.id.desc()).all()

    result = []
    for collection, customer_name in rows:
        data = collection.to_dict()
        data["customer"] = customer_name
        result.append(data)
    return result
