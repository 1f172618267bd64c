# Overview: Service-layer operations for reporting; encapsulates business logic and database work.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import case, func

from ..extensions import db
from ..models import (
    Product,
    Sale,
    SaleItem,
    StockMovement,
    MOVEMENT_RECEIVED,
    MOVEMENT_SOLD,
    MOVEMENT_ADJUSTMENT_IN,
    MOVEMENT_ADJUSTMENT_OUT,
    PAYMENT_CASH,
    PAYMENT_CREDIT,
    PAYMENT_PARTIAL,
)
from ..time_utils import day_range, parse_business_date
from .quantity_codec import (
    combine_formatted_quantities,
    format_carton_line,
    price_per_carton,
    sum_formatted_quantities_legacy,
)


class ReportError(Exception):
    """Raised when report generation fails."""
    pass


def _range(start_date, end_date) -> tuple[datetime, datetime]:
    try:
        return day_range(start_date, end_date)
    except ValueError as exc:
        raise ReportError(str(exc)) from exc


def _in_range(query, lo: datetime, hi: datetime):
    return query.filter(
        Sale.created_at >= lo,
        Sale.created_at < hi,
        Sale.status == "completed",
    )


def _products_by_id(product_ids) -> dict[int, Product]:
    ids = [pid for pid in set(product_ids) if pid is not None]
    if not ids:
        return {}
    return {p.id: p for p in db.session.query(Product).filter(Product.id.in_(ids)).all()}


def _divisor(products: dict[int, Product], product_id: int | None) -> int:
    product = products.get(product_id)
    return product.lines_per_carton if product is not None else 1


def _product_summary(payment_type: str, lo: datetime, hi: datetime) -> list[dict]:
    """Per-product quantity and amount sold under one payment type."""
    columns = [
        SaleItem.product_id,
        func.max(SaleItem.product_name).label("product_name"),
        func.sum(SaleItem.quantity).label("qty"),
        func.sum(SaleItem.total).label("total_amount"),
    ]
    if payment_type == PAYMENT_PARTIAL:
        # Each item's share of what the customer actually paid on its sale
        columns.append(
            func.sum(
                case(
                    (Sale.total > 0, Sale.amount_paid * SaleItem.total / Sale.total),
                    else_=0,
                )
            ).label("amount_paid")
        )

    q = _in_range(
        db.session.query(*columns).join(Sale, Sale.id == SaleItem.sale_id),
        lo,
        hi,
    ).filter(Sale.payment_type == payment_type)

    rows = q.group_by(SaleItem.product_id).order_by(func.max(SaleItem.product_name)).all()
    products = _products_by_id(r.product_id for r in rows)

    summary = []
    for row in rows:
        product = products.get(row.product_id)
        entry = {
            "product_id": row.product_id,
            "product": product.name if product is not None else row.product_name,
            "qty_lines": int(row.qty or 0),
            "qty": format_carton_line(int(row.qty or 0), _divisor(products, row.product_id)),
            "total_amount": round(float(row.total_amount or 0), 2),
        }
        if payment_type == PAYMENT_PARTIAL:
            entry["amount_paid"] = round(float(row.amount_paid or 0), 2)
        summary.append(entry)
    return summary


def _sum_sales(column, payment_types: tuple[str, ...], lo: datetime, hi: datetime) -> float:
    q = _in_range(db.session.query(func.coalesce(func.sum(column), 0)), lo, hi)
    q = q.filter(Sale.payment_type.in_(payment_types))
    return round(float(q.scalar() or 0), 2)


def _count_sales(payment_types: tuple[str, ...], lo: datetime, hi: datetime) -> int:
    q = _in_range(db.session.query(func.count(Sale.id)), lo, hi)
    q = q.filter(Sale.payment_type.in_(payment_types))
    return int(q.scalar() or 0)


def daily_sales_report(start_date=None, end_date=None) -> dict:
    """
    Sales totals and per-product quantities for an inclusive date range.

    Cash totals count what was collected (cash + partial amount_paid); credit
    totals count what is owed (credit sale totals).
    """
    lo, hi = _range(start_date, end_date)

    products_bought = _product_summary(PAYMENT_CASH, lo, hi)
    credited_products = _product_summary(PAYMENT_CREDIT, lo, hi)
    partial_products = _product_summary(PAYMENT_PARTIAL, lo, hi)

    cash_total = _sum_sales(Sale.amount_paid, (PAYMENT_CASH, PAYMENT_PARTIAL), lo, hi)
    credit_total = _sum_sales(Sale.total, (PAYMENT_CREDIT,), lo, hi)

    total_bought_qty = combine_formatted_quantities(p["qty"] for p in products_bought)
    total_credited_qty = combine_formatted_quantities(p["qty"] for p in credited_products)
    total_partial_qty = combine_formatted_quantities(p["qty"] for p in partial_products)

    summary = {
        "cash_total": cash_total,
        "credit_total": credit_total,
        "grand_total": round(cash_total + credit_total, 2),
        "total_products_bought": total_bought_qty,
        "total_credited_products": total_credited_qty,
        "total_partial_products": total_partial_qty,
        "total_products_sold": sum_formatted_quantities_legacy(
            [total_bought_qty, total_credited_qty, total_partial_qty]
        ),
        "total_products_bought_amount": round(sum(p["total_amount"] for p in products_bought), 2),
        "total_credited_products_amount": round(sum(p["total_amount"] for p in credited_products), 2),
        "total_partial_products_amount": round(sum(p["total_amount"] for p in partial_products), 2),
        "total_partial_products_amount_paid": _sum_sales(Sale.amount_paid, (PAYMENT_PARTIAL,), lo, hi),
        "cash_transactions": _count_sales((PAYMENT_CASH, PAYMENT_PARTIAL), lo, hi),
        "credit_transactions": _count_sales((PAYMENT_CREDIT,), lo, hi),
    }

    return {
        "start_date": lo.date().isoformat(),
        "end_date": parse_business_date(end_date if end_date is not None else start_date).isoformat(),
        "products_bought": products_bought,
        "credited_products": credited_products,
        "partial_products": partial_products,
        "summary": summary,
    }


def _product_profit(lo: datetime, hi: datetime, payment_type: str | None) -> list[dict]:
    q = _in_range(
        db.session.query(
            SaleItem.product_id,
            func.max(SaleItem.product_name).label("product_name"),
            func.sum(SaleItem.quantity).label("qty"),
            func.sum(SaleItem.unit_cost_price * SaleItem.quantity).label("total_cost"),
            func.sum(SaleItem.total).label("total_amount"),
            func.sum(SaleItem.profit).label("profit"),
        ).join(Sale, Sale.id == SaleItem.sale_id),
        lo,
        hi,
    ).filter(SaleItem.unit_cost_price > 0)
    if payment_type is not None:
        q = q.filter(Sale.payment_type == payment_type)

    rows = q.group_by(SaleItem.product_id).order_by(func.max(SaleItem.product_name)).all()
    products = _products_by_id(r.product_id for r in rows)

    result = []
    for row in rows:
        lpc = _divisor(products, row.product_id)
        qty = int(row.qty or 0)
        total_cost = float(row.total_cost or 0)
        total_amount = float(row.total_amount or 0)
        avg_cost_per_line = total_cost / qty if qty > 0 else 0
        avg_selling_per_line = total_amount / qty if qty > 0 else 0
        product = products.get(row.product_id)
        result.append({
            "product_id": row.product_id,
            "product": product.name if product is not None else row.product_name,
            "units_sold": format_carton_line(qty, lpc),
            "cost_price": round(price_per_carton(avg_cost_per_line, lpc), 2),
            "total_cost": round(total_cost, 2),
            "selling_price": round(price_per_carton(avg_selling_per_line, lpc), 2),
            "total_amount": round(total_amount, 2),
            "profit": round(float(row.profit or 0), 2),
        })
    return result


def _totals(rows: list[dict]) -> dict:
    return {
        "total_cost": round(sum(r["total_cost"] for r in rows), 2),
        "total_amount": round(sum(r["total_amount"] for r in rows), 2),
        "profit": round(sum(r["profit"] for r in rows), 2),
    }


def profit_analysis(start_date=None, end_date=None) -> dict:
    """
    Profit per product for all sales and for cash-only sales.

    Items without a cost (unit_cost_price <= 0, e.g. zero-cost fallbacks)
    are left out and counted in excluded_count.
    """
    lo, hi = _range(start_date, end_date)

    excluded_count = _in_range(
        db.session.query(func.count(SaleItem.id)).join(Sale, Sale.id == SaleItem.sale_id),
        lo,
        hi,
    ).filter(
        (SaleItem.unit_cost_price <= 0) | (SaleItem.unit_cost_price.is_(None))
    ).scalar()

    total_product_sales = _product_profit(lo, hi, None)
    paid_product_sales = _product_profit(lo, hi, PAYMENT_CASH)

    return {
        "total_product_sales": total_product_sales,
        "total_product_sales_totals": _totals(total_product_sales),
        "paid_product_sales": paid_product_sales,
        "paid_product_sales_totals": _totals(paid_product_sales),
        "excluded_count": int(excluded_count or 0),
    }


def _movement_totals(lo: datetime | None, hi: datetime | None) -> dict[tuple[int, str], int]:
    q = db.session.query(
        StockMovement.product_id,
        StockMovement.type,
        func.coalesce(func.sum(StockMovement.quantity), 0),
    )
    if lo is not None:
        q = q.filter(StockMovement.created_at >= lo)
    if hi is not None:
        q = q.filter(StockMovement.created_at < hi)
    rows = q.group_by(StockMovement.product_id, StockMovement.type).all()
    return {(pid, mtype): int(total) for pid, mtype, total in rows}


def _sale_item_totals(lo: datetime | None, hi: datetime | None) -> dict[tuple[int, str], int]:
    q = db.session.query(
        SaleItem.product_id,
        Sale.payment_type,
        func.coalesce(func.sum(SaleItem.quantity), 0),
    ).join(Sale, Sale.id == SaleItem.sale_id)
    if lo is not None:
        q = q.filter(Sale.created_at >= lo)
    if hi is not None:
        q = q.filter(Sale.created_at < hi)
    rows = q.group_by(SaleItem.product_id, Sale.payment_type).all()
    return {(pid, ptype): int(total) for pid, ptype, total in rows}


def stock_activity_summary(start_date=None, end_date=None, *, include_inactive: bool = False) -> dict:
    """
    Opening stock, movements and sales within the range, and closing stock,
    per product, all formatted as cartons + lines.
    """
    lo, hi = _range(start_date, end_date)

    before_moves = _movement_totals(None, lo)
    before_sales = _sale_item_totals(None, lo)
    moves = _movement_totals(lo, hi)
    sales = _sale_item_totals(lo, hi)

    q = db.session.query(Product)
    if not include_inactive:
        q = q.filter(Product.is_active.is_(True))
    products = q.order_by(Product.name.asc(), Product.id.asc()).all()

    rows = []
    for product in products:
        pid = product.id
        lpc = product.lines_per_carton

        opening = sum(v for (p, _), v in before_moves.items() if p == pid)
        opening -= sum(v for (p, _), v in before_sales.items() if p == pid)

        received = moves.get((pid, MOVEMENT_RECEIVED), 0)
        adjustments_in = moves.get((pid, MOVEMENT_ADJUSTMENT_IN), 0)
        adjustments_out = -moves.get((pid, MOVEMENT_ADJUSTMENT_OUT), 0)
        direct_sold = -moves.get((pid, MOVEMENT_SOLD), 0)
        cash_sales = sales.get((pid, PAYMENT_CASH), 0)
        credit_sales = sales.get((pid, PAYMENT_CREDIT), 0)
        partial_sales = sales.get((pid, PAYMENT_PARTIAL), 0)
        total_sales = direct_sold + cash_sales + credit_sales + partial_sales

        total_available = opening + received + adjustments_in - adjustments_out
        closing = total_available - total_sales

        rows.append({
            "product_id": pid,
            "product": product.name,
            "lines_per_carton": lpc,
            "opening_stock": format_carton_line(opening, lpc),
            "stock_received": format_carton_line(received, lpc),
            "adjustments_in": format_carton_line(adjustments_in, lpc),
            "adjustments_out": format_carton_line(adjustments_out, lpc),
            "total_available": format_carton_line(total_available, lpc),
            "direct_sales": format_carton_line(direct_sold, lpc),
            "cash_sales": format_carton_line(cash_sales, lpc),
            "credit_sales": format_carton_line(credit_sales, lpc),
            "partial_sales": format_carton_line(partial_sales, lpc),
            "total_sales": format_carton_line(total_sales, lpc),
            "remaining_stock": format_carton_line(closing, lpc),
            "remaining_stock_lines": closing,
        })

    return {
        "start_date": lo.date().isoformat(),
        "end_date": parse_business_date(end_date if end_date is not None else start_date).isoformat(),
        "products": rows,
        "total_sales": combine_formatted_quantities(r["total_sales"] for r in rows),
        "total_received": combine_formatted_quantities(r["stock_received"] for r in rows),
    }
