"""
Sales Service - atomic sale acceptance

A sale is accepted or rejected as a whole:
1. products are locked (ascending id) so availability cannot change underneath us
2. requested lines per product are checked against available stock
3. per-carton prices are converted to per-line and totals recomputed
4. payment_type / amount_paid / total are validated
5. every item is FIFO-costed; draws are committed with the item
6. one commit; any error rolls everything back
"""

from __future__ import annotations

import secrets
from datetime import datetime

from flask import current_app
from sqlalchemy import or_

from ..extensions import db
from ..models import (
    Customer,
    Product,
    Sale,
    SaleItem,
    PAYMENT_CASH,
    PAYMENT_CREDIT,
    PAYMENT_PARTIAL,
    PAYMENT_TYPES,
)
from ..errors import StockbookError, PaymentValidationError
from ..time_utils import utcnow, parse_business_date, day_range
from .quantity_codec import format_carton_line, parse_carton_line_format, price_per_carton, price_per_line, to_lines
from .inventory_service import ensure_available
from .cost_allocation_service import DepletingStrategy, get_strategy
from .concurrency import begin_immediate, lock_for_update, lock_products, run_with_retry


def _cents(value) -> float:
    return round(float(value), 2)


def validate_payment(
    payment_type: str,
    amount_paid,
    total,
    *,
    customer_id: int | None = None,
    customer_name: str | None = None,
) -> None:
    """
    Gate a sale on how it is being paid.

    cash:    amount_paid == total
    credit:  amount_paid == 0
    partial: 0 < amount_paid < total
    Amounts are compared to the cent.
    """
    if payment_type not in PAYMENT_TYPES:
        raise PaymentValidationError(
            f"Unknown payment type: {payment_type!r}",
            details={"rule": "payment_type", "allowed": list(PAYMENT_TYPES)},
        )

    if amount_paid is None or float(amount_paid) < 0:
        raise PaymentValidationError(
            "Amount paid cannot be negative",
            details={"rule": "amount_paid_non_negative", "amount_paid": amount_paid},
        )

    paid = _cents(amount_paid)
    due = _cents(total)

    if payment_type == PAYMENT_CASH and paid != due:
        raise PaymentValidationError(
            "For cash payments, the amount paid must equal the total.",
            details={"rule": "cash_paid_equals_total", "amount_paid": paid, "total": due},
        )
    if payment_type == PAYMENT_CREDIT and paid != 0:
        raise PaymentValidationError(
            "For credit sales, the amount paid must be 0.",
            details={"rule": "credit_paid_zero", "amount_paid": paid, "total": due},
        )
    if payment_type == PAYMENT_PARTIAL and (paid <= 0 or paid >= due):
        raise PaymentValidationError(
            "For partial payments, the amount paid must be greater than 0 and less than the total.",
            details={"rule": "partial_paid_between", "amount_paid": paid, "total": due},
        )

    # Money owed has to be traceable to a registered customer
    if payment_type in (PAYMENT_CREDIT, PAYMENT_PARTIAL) and customer_id is None:
        raise PaymentValidationError(
            "Credit and partial sales require a registered customer.",
            details={"rule": "customer_required"},
        )
    if payment_type == PAYMENT_CASH and customer_id is None and not (customer_name or "").strip():
        raise PaymentValidationError(
            "Either select a customer or enter a customer name.",
            details={"rule": "customer_or_name_required"},
        )


def _item_quantity(item: dict, product: Product) -> int:
    if item.get("quantity_in_cartons") is not None:
        lines = to_lines(int(item["quantity_in_cartons"]), product.lines_per_carton)
    else:
        raw = item.get("quantity")
        if isinstance(raw, str):
            lines = parse_carton_line_format(raw, product.lines_per_carton)
        elif isinstance(raw, int) and not isinstance(raw, bool):
            lines = raw
        else:
            raise StockbookError("Item quantity is required", details={"product_id": product.id})
    if lines < 1:
        raise StockbookError("Item quantity must be at least one line", details={"product_id": product.id})
    return lines


def _new_transaction_id() -> str:
    return f"TXN{utcnow():%Y%m%d%H%M%S}{secrets.token_hex(3).upper()}"


def _sale_timestamp(transaction_date) -> datetime:
    now = utcnow()
    if transaction_date is None:
        return now
    if isinstance(transaction_date, datetime):
        return transaction_date
    # Back-dated sales keep the wall-clock time so they still order after earlier entries that day
    return datetime.combine(parse_business_date(transaction_date), now.time())


def create_sale(
    *,
    items: list[dict],
    payment_type: str,
    amount_paid,
    customer_id: int | None = None,
    customer_name: str | None = None,
    transaction_date=None,
    notes: str | None = None,
    strategy=None,
) -> Sale:
    """
    Accept a sale.

    items: [{"product_id", "quantity" (lines or "2C3L") | "quantity_in_cartons",
             "unit_selling_price" (per carton)}]
    """
    if not items:
        raise StockbookError("A sale needs at least one item")

    costing = get_strategy(strategy)
    zero_cost_fallback = bool(current_app.config.get("ZERO_COST_FALLBACK", False))
    product_ids = []
    for item in items:
        if item.get("product_id") is None:
            raise StockbookError("Item product_id is required")
        product_ids.append(int(item["product_id"]))

    def _op():
        begin_immediate()
        products = lock_products(product_ids)

        missing = sorted(set(product_ids) - set(products))
        if missing:
            raise StockbookError("Product not found", details={"product_ids": missing})
        inactive = sorted(pid for pid, p in products.items() if not p.is_active)
        if inactive:
            raise StockbookError("Product is inactive", details={"product_ids": inactive})

        customer = None
        if customer_id is not None:
            customer = db.session.get(Customer, customer_id)
            if customer is None:
                raise StockbookError("Customer not found", details={"customer_id": customer_id})
            if not customer.is_active and payment_type in (PAYMENT_CREDIT, PAYMENT_PARTIAL):
                raise PaymentValidationError(
                    "Inactive customers cannot take credit.",
                    details={"rule": "customer_inactive", "customer_id": customer_id},
                )

        prepared = []
        requested: dict[int, int] = {}
        for item in items:
            product = products[int(item["product_id"])]
            lines = _item_quantity(item, product)

            carton_price = item.get("unit_selling_price")
            if carton_price is None:
                carton_price = product.default_selling_price
            if carton_price is None or carton_price < 0:
                raise StockbookError(
                    "Item selling price is required and cannot be negative",
                    details={"product_id": product.id, "unit_selling_price": carton_price},
                )

            line_price = price_per_line(carton_price, product.lines_per_carton)
            prepared.append((product, lines, line_price, _cents(line_price * lines)))
            requested[product.id] = requested.get(product.id, 0) + lines

        # Whole transaction fails if any product is short; no partial fulfilment
        for pid in sorted(requested):
            ensure_available(products[pid], requested[pid])

        subtotal = _cents(sum(total for _, _, _, total in prepared))
        total = subtotal

        validate_payment(
            payment_type,
            amount_paid,
            total,
            customer_id=customer_id,
            customer_name=customer_name,
        )

        sale = Sale(
            transaction_id=_new_transaction_id(),
            customer_id=customer_id,
            customer_name=None if customer is not None else (customer_name or "").strip() or None,
            subtotal=subtotal,
            tax=0,
            total=total,
            payment_type=payment_type,
            amount_paid=_cents(amount_paid),
            status="completed",
            notes=notes,
            created_at=_sale_timestamp(transaction_date),
        )
        db.session.add(sale)

        for product, lines, line_price, line_total in prepared:
            result = costing.allocate(product.id, lines)
            if result.success:
                unit_cost = result.unit_cost_per_line
                fallback = False
            elif zero_cost_fallback:
                current_app.logger.warning(
                    "FIFO shortfall of %s lines for product %s (%s); costing sale item at zero",
                    result.shortfall,
                    product.id,
                    product.name,
                )
                unit_cost = 0.0
                fallback = True
            else:
                result.raise_for_shortfall(product)

            sale_item = SaleItem(
                product_id=product.id,
                product_name=product.name,
                quantity=lines,
                unit_selling_price=line_price,
                unit_cost_price=unit_cost,
                total=line_total,
                profit=(line_price - unit_cost) * lines,
                cost_fallback=fallback,
            )
            sale.items.append(sale_item)
            if result.success:
                costing.commit_allocation(sale_item, result)
            # Draws must be visible to the next item of the same product
            db.session.flush()

        db.session.commit()
        return sale

    return run_with_retry(_op)


def delete_sale(sale_id: int) -> None:
    """
    Delete a sale and its items.

    Lines drawn from received batches under depleting costing are handed back.
    Remaining items keep their recorded costs.
    """
    def _op():
        begin_immediate()
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if sale is None:
            raise StockbookError("Sale not found", details={"sale_id": sale_id})

        lock_products(item.product_id for item in sale.items if item.product_id is not None)

        releaser = DepletingStrategy()
        released = sum(releaser.release_allocations(item) for item in sale.items)
        if released:
            current_app.logger.info(
                "Sale %s deleted; released %s lines back to received batches",
                sale.transaction_id,
                released,
            )

        db.session.delete(sale)
        db.session.commit()

    return run_with_retry(_op)


def sale_item_to_display(item: SaleItem) -> dict:
    lpc = item.product.lines_per_carton if item.product is not None else 1
    data = item.to_dict()
    data["quantity_display"] = format_carton_line(item.quantity, lpc)
    data["unit_selling_price_per_carton"] = price_per_carton(item.unit_selling_price, lpc)
    data["unit_cost_price_per_carton"] = price_per_carton(item.unit_cost_price, lpc)
    return data


def sale_to_display(sale: Sale) -> dict:
    data = sale.to_dict()
    data["items"] = [sale_item_to_display(i) for i in sale.items]
    data["profit"] = sum((i.unit_selling_price - i.unit_cost_price) * i.quantity for i in sale.items)
    return data


def get_sale(sale_id: int) -> dict:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise StockbookError("Sale not found", details={"sale_id": sale_id})
    return sale_to_display(sale)


def list_sales(
    *,
    start_date=None,
    end_date=None,
    payment_type: str | None = None,
    search: str | None = None,
    limit: int = 200,
) -> list[dict]:
    q = db.session.query(Sale)
    if start_date is not None or end_date is not None:
        lo, hi = day_range(start_date, end_date)
        q = q.filter(Sale.created_at >= lo, Sale.created_at < hi)
    if payment_type is not None:
        q = q.filter(Sale.payment_type == payment_type)
    if search:
        like = f"%{search.strip()}%"
        q = q.outerjoin(Customer, Customer.id == Sale.customer_id).filter(
            or_(
                Sale.transaction_id.ilike(like),
                Sale.customer_name.ilike(like),
                Customer.name.ilike(like),
                Sale.items.any(SaleItem.product_name.ilike(like)),
            )
        )
    sales = q.order_by(Sale.created_at.desc(), Sale.id.desc()).limit(limit).all()
    return [sale_to_display(s) for s in sales]

