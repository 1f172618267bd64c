# Overview: Service-layer operations for stock control; encapsulates business logic and database work.

# backend/stockbook/services/inventory_service.py

"""
Stock Invariants & Units (authoritative)

Units:
- Every stored quantity is an integer count of lines.
- Quantities arrive and leave as carton/line strings ("2C3L") formatted with
  the product's lines_per_carton; costs arrive per carton and are stored per line.

Stock model:
- Stock is ledger-derived from StockMovement rows plus SaleItem rows; there is
  no mutable on-hand field.
- StockMovement.quantity is signed: received/adjustment_in add,
  sold/adjustment_out subtract.
- available = SUM(StockMovement.quantity) - SUM(SaleItem.quantity), across all
  payment types.

Business invariants:
- No movement or sale may make available stock negative. The check runs while
  the product row is locked, in the same transaction as the write.
- RECEIVE rows are the FIFO cost batches and must carry a unit cost.
- ADJUST rows never carry a cost and are never FIFO batches.
- Received and adjustment rows can be corrected or deleted; a received batch
  that sales have drawn from keeps its cost and date and cannot be deleted.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import (
    Product,
    StockMovement,
    CostAllocation,
    Sale,
    SaleItem,
    MOVEMENT_RECEIVED,
    MOVEMENT_SOLD,
    MOVEMENT_ADJUSTMENT_IN,
    MOVEMENT_ADJUSTMENT_OUT,
)
from ..errors import StockbookError, InsufficientStockError, ParseError
from ..time_utils import normalize_datetime, day_range, to_utc_z
from .quantity_codec import (
    format_carton_line,
    parse_carton_line_format,
    price_per_carton,
    price_per_line,
)
from .concurrency import begin_immediate, lock_products, run_with_retry


def _get_product(product_id: int, *, require_active: bool = False, lock: bool = False) -> Product:
    if lock:
        product = lock_products([product_id]).get(product_id)
    else:
        product = db.session.get(Product, product_id)
    if product is None:
        raise StockbookError("Product not found", details={"product_id": product_id})
    if require_active and not product.is_active:
        raise StockbookError("Product is inactive", details={"product_id": product_id})
    return product


def _lines_from_input(value, lines_per_carton: int) -> int:
    """Accept an int line count or a carton/line string."""
    if isinstance(value, str):
        return parse_carton_line_format(value, lines_per_carton)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ParseError("quantity must be a carton/line string or an integer", details={"input": value})
    return value


def get_movement_total(product_id: int, as_of: datetime | None = None) -> int:
    """Signed sum of all stock movements for a product."""
    q = db.session.query(func.coalesce(func.sum(StockMovement.quantity), 0)).filter(
        StockMovement.product_id == product_id,
    )
    if as_of is not None:
        q = q.filter(StockMovement.created_at <= as_of)
    return int(q.scalar() or 0)


def get_sold_through_sales(product_id: int, as_of: datetime | None = None) -> int:
    """Lines sold through sale items, regardless of payment type."""
    q = db.session.query(func.coalesce(func.sum(SaleItem.quantity), 0)).filter(
        SaleItem.product_id == product_id,
    )
    if as_of is not None:
        q = q.join(Sale, Sale.id == SaleItem.sale_id).filter(Sale.created_at <= as_of)
    return int(q.scalar() or 0)


def get_available_stock(product_id: int, as_of: datetime | None = None) -> int:
    return get_movement_total(product_id, as_of=as_of) - get_sold_through_sales(product_id, as_of=as_of)


def ensure_available(product: Product, requested: int, *, available: int | None = None) -> int:
    """
    Raise InsufficientStockError unless `requested` lines can leave stock.

    Call with the product row locked.
    """
    if available is None:
        available = get_available_stock(product.id)
    if available < requested:
        lpc = product.lines_per_carton
        available_display = format_carton_line(available, lpc)
        requested_display = format_carton_line(requested, lpc)
        raise InsufficientStockError(
            f"Insufficient stock for product '{product.name}'. "
            f"Available: {available_display}, Requested: {requested_display}",
            product_id=product.id,
            product_name=product.name,
            available=available,
            requested=requested,
            details={
                "available_display": available_display,
                "requested_display": requested_display,
            },
        )
    return available


def _add_movement(
    product: Product,
    *,
    movement_type: str,
    quantity: int,
    unit_cost: float | None = None,
    notes: str | None = None,
    created_at: datetime | None = None,
) -> StockMovement:
    movement = StockMovement(
        product_id=product.id,
        type=movement_type,
        quantity=quantity,
        unit_cost=unit_cost,
        consumed_quantity=0,
        lines_per_carton=product.lines_per_carton,
        notes=notes,
        created_at=created_at,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def receive_stock(
    *,
    product_id: int,
    quantity,
    unit_cost_per_carton: float | None = None,
    notes: str | None = None,
    received_on=None,
) -> StockMovement:
    """
    Record a received batch.

    quantity is a carton/line string ("5C2L") or an int line count.
    unit_cost_per_carton defaults to the product's cost_price_per_carton.
    """
    def _op():
        begin_immediate()
        product = _get_product(product_id, require_active=True, lock=True)

        lines = _lines_from_input(quantity, product.lines_per_carton)
        if lines <= 0:
            raise StockbookError("Received quantity must be greater than zero", details={"quantity": quantity})

        carton_cost = unit_cost_per_carton
        if carton_cost is None:
            carton_cost = product.cost_price_per_carton
        if carton_cost is None:
            raise StockbookError(
                "Unit cost is required when the product has no cost price",
                details={"product_id": product.id},
            )
        if carton_cost < 0:
            raise StockbookError("Unit cost cannot be negative", details={"unit_cost_per_carton": carton_cost})

        movement = _add_movement(
            product,
            movement_type=MOVEMENT_RECEIVED,
            quantity=lines,
            unit_cost=price_per_line(carton_cost, product.lines_per_carton),
            notes=notes,
            created_at=normalize_datetime(received_on),
        )
        db.session.commit()
        return movement

    return run_with_retry(_op)


def adjust_stock(
    *,
    product_id: int,
    quantity_delta,
    notes: str | None = None,
    occurred_at=None,
) -> StockMovement:
    """
    Correct stock up or down.

    quantity_delta is a signed int line count, or a carton/line string with a
    leading "-" for removals ("-1C2L").
    """
    def _op():
        begin_immediate()
        product = _get_product(product_id, require_active=True, lock=True)

        if isinstance(quantity_delta, str):
            raw = quantity_delta.strip()
            negative = raw.startswith("-")
            lines = parse_carton_line_format(raw.lstrip("-+").strip(), product.lines_per_carton)
            delta = -lines if negative else lines
        elif isinstance(quantity_delta, bool) or not isinstance(quantity_delta, int):
            raise ParseError("quantity_delta must be an integer or carton/line string", details={"input": quantity_delta})
        else:
            delta = quantity_delta

        if delta == 0:
            raise StockbookError("Adjustment quantity cannot be zero")

        if delta < 0:
            ensure_available(product, -delta)

        movement = _add_movement(
            product,
            movement_type=MOVEMENT_ADJUSTMENT_IN if delta > 0 else MOVEMENT_ADJUSTMENT_OUT,
            quantity=delta,
            notes=notes,
            created_at=normalize_datetime(occurred_at),
        )
        db.session.commit()
        return movement

    return run_with_retry(_op)


def record_sold_movement(
    *,
    product_id: int,
    quantity,
    notes: str | None = None,
    occurred_at=None,
) -> StockMovement:
    """Stock-control sale recorded directly against the ledger (no Sale document)."""
    def _op():
        begin_immediate()
        product = _get_product(product_id, require_active=True, lock=True)

        lines = _lines_from_input(quantity, product.lines_per_carton)
        if lines <= 0:
            raise StockbookError("Sold quantity must be greater than zero", details={"quantity": quantity})

        ensure_available(product, lines)

        movement = _add_movement(
            product,
            movement_type=MOVEMENT_SOLD,
            quantity=-lines,
            notes=notes,
            created_at=normalize_datetime(occurred_at),
        )
        db.session.commit()
        return movement

    return run_with_retry(_op)


def _get_movement(movement_id: int) -> StockMovement:
    movement = db.session.get(StockMovement, movement_id)
    if movement is None:
        raise StockbookError("Stock movement not found", details={"movement_id": movement_id})
    return movement


def _is_drawn(movement: StockMovement) -> bool:
    """True once any sale has been costed against this received batch."""
    if movement.type != MOVEMENT_RECEIVED:
        return False
    if movement.consumed_quantity:
        return True
    allocated = (
        db.session.query(func.count(CostAllocation.id))
        .filter(CostAllocation.stock_movement_id == movement.id)
        .scalar()
    )
    return bool(allocated)


def update_movement(
    movement_id: int,
    *,
    quantity=None,
    unit_cost_per_carton: float | None = None,
    notes: str | None = None,
    occurred_at=None,
) -> StockMovement:
    """
    Correct a received or adjustment row.

    quantity is the new magnitude (carton/line string or int lines); the sign
    follows the row's type. Sold rows cannot be edited. A received batch that
    sales have already drawn from keeps its cost and date, and its quantity
    cannot drop below what was drawn. A change that removes stock is checked
    against availability like any other removal.
    """
    def _op():
        begin_immediate()
        movement = _get_movement(movement_id)
        if movement.type == MOVEMENT_SOLD:
            raise StockbookError(
                "Sold movements cannot be edited; delete and re-record instead",
                details={"movement_id": movement.id},
            )
        product = _get_product(movement.product_id, lock=True)
        drawn = _is_drawn(movement)

        if quantity is not None:
            lines = _lines_from_input(quantity, product.lines_per_carton)
            if lines <= 0:
                raise StockbookError("Quantity must be greater than zero", details={"quantity": quantity})
            new_quantity = -lines if movement.type == MOVEMENT_ADJUSTMENT_OUT else lines

            if movement.type == MOVEMENT_RECEIVED and lines < (movement.consumed_quantity or 0):
                lpc = product.lines_per_carton
                raise StockbookError(
                    "Received quantity cannot drop below what sales have already drawn",
                    details={
                        "movement_id": movement.id,
                        "consumed_display": format_carton_line(movement.consumed_quantity, lpc),
                        "requested_display": format_carton_line(lines, lpc),
                    },
                )

            delta = new_quantity - movement.quantity
            if delta < 0:
                ensure_available(product, -delta)
            movement.quantity = new_quantity

        if unit_cost_per_carton is not None:
            if movement.type != MOVEMENT_RECEIVED:
                raise StockbookError("Only received movements carry a cost", details={"movement_id": movement.id})
            if unit_cost_per_carton < 0:
                raise StockbookError(
                    "Unit cost cannot be negative",
                    details={"unit_cost_per_carton": unit_cost_per_carton},
                )
            if drawn:
                raise StockbookError(
                    "Cost of a batch that sales have drawn from cannot change",
                    details={"movement_id": movement.id},
                )
            movement.unit_cost = price_per_line(unit_cost_per_carton, product.lines_per_carton)

        if occurred_at is not None:
            if drawn:
                raise StockbookError(
                    "Date of a batch that sales have drawn from cannot change",
                    details={"movement_id": movement.id},
                )
            movement.created_at = normalize_datetime(occurred_at)

        if notes is not None:
            movement.notes = notes

        db.session.commit()
        return movement

    return run_with_retry(_op)


def delete_movement(movement_id: int) -> None:
    """
    Remove a movement from the ledger.

    Deleting a row that added stock is refused if the stock is no longer there,
    or (for received batches) if any sale has been costed against it.
    """
    def _op():
        begin_immediate()
        movement = _get_movement(movement_id)
        product = _get_product(movement.product_id, lock=True)

        if _is_drawn(movement):
            raise StockbookError(
                "Received batch has been drawn by sales and cannot be deleted",
                details={"movement_id": movement.id, "consumed_quantity": movement.consumed_quantity},
            )
        if movement.quantity > 0:
            ensure_available(product, movement.quantity)

        current_app.logger.info(
            "Deleting %s movement %s of %s lines for product %s",
            movement.type,
            movement.id,
            movement.quantity,
            product.id,
        )
        db.session.delete(movement)
        db.session.commit()

    return run_with_retry(_op)


def movement_to_display(movement: StockMovement, product: Product | None = None) -> dict:
    product = product or movement.product
    lpc = product.lines_per_carton if product is not None else movement.lines_per_carton
    data = movement.to_dict()
    data["product_name"] = product.name if product is not None else None
    data["quantity_display"] = format_carton_line(movement.quantity, lpc)
    data["unit_cost_per_carton"] = (
        price_per_carton(movement.unit_cost, lpc) if movement.unit_cost is not None else None
    )
    if movement.type == MOVEMENT_RECEIVED:
        data["remaining_display"] = format_carton_line(movement.remaining_quantity, lpc)
    return data


def list_movements(
    *,
    product_id: int | None = None,
    start_date=None,
    end_date=None,
    movement_type: str | None = None,
    limit: int = 200,
) -> list[dict]:
    q = db.session.query(StockMovement)
    if product_id is not None:
        _get_product(product_id)
        q = q.filter(StockMovement.product_id == product_id)
    if movement_type is not None:
        q = q.filter(StockMovement.type == movement_type)
    if start_date is not None or end_date is not None:
        lo, hi = day_range(start_date, end_date)
        q = q.filter(StockMovement.created_at >= lo, StockMovement.created_at < hi)

    rows = q.order_by(StockMovement.created_at.desc(), StockMovement.id.desc()).limit(limit).all()
    return [movement_to_display(m) for m in rows]


def get_stock_summary(product_id: int) -> dict:
    product = _get_product(product_id)
    lpc = product.lines_per_carton

    totals = dict(
        db.session.query(StockMovement.type, func.coalesce(func.sum(StockMovement.quantity), 0))
        .filter(StockMovement.product_id == product_id)
        .group_by(StockMovement.type)
        .all()
    )
    received = int(totals.get(MOVEMENT_RECEIVED, 0))
    adjusted_in = int(totals.get(MOVEMENT_ADJUSTMENT_IN, 0))
    adjusted_out = -int(totals.get(MOVEMENT_ADJUSTMENT_OUT, 0))
    sold_direct = -int(totals.get(MOVEMENT_SOLD, 0))
    sold_sales = get_sold_through_sales(product_id)
    available = received + adjusted_in - adjusted_out - sold_direct - sold_sales

    return {
        "product_id": product.id,
        "product_name": product.name,
        "lines_per_carton": lpc,
        "received": received,
        "received_display": format_carton_line(received, lpc),
        "adjusted_in": adjusted_in,
        "adjusted_in_display": format_carton_line(adjusted_in, lpc),
        "adjusted_out": adjusted_out,
        "adjusted_out_display": format_carton_line(adjusted_out, lpc),
        "sold_direct": sold_direct,
        "sold_direct_display": format_carton_line(sold_direct, lpc),
        "sold_through_sales": sold_sales,
        "sold_through_sales_display": format_carton_line(sold_sales, lpc),
        "available": available,
        "available_display": format_carton_line(available, lpc),
        "as_of": to_utc_z(normalize_datetime(None)),
    }
