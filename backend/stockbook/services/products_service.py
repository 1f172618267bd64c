# backend/stockbook/services/products_service.py
"""
Product catalog service.

lines_per_carton rules:
- integer between 1 and MAX_LINES_PER_CARTON (default 8)
- frozen once any stock movement or sale item references the product, since
  stored line counts would otherwise be shown with a different divisor
"""
from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Product, StockMovement, SaleItem
from ..errors import StockbookError, ConfigurationError
from .quantity_codec import format_carton_line, price_per_line
from .inventory_service import get_available_stock

PRODUCT_MUTABLE_FIELDS = {
    "name",
    "description",
    "category",
    "lines_per_carton",
    "cost_price_per_carton",
    "default_selling_price",
    "is_active",
}


def validate_lines_per_carton(value) -> int:
    max_lpc = current_app.config.get("MAX_LINES_PER_CARTON", 8)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError("lines_per_carton must be an integer", details={"lines_per_carton": value})
    if value < 1 or value > max_lpc:
        raise ConfigurationError(
            f"lines_per_carton must be between 1 and {max_lpc}",
            details={"lines_per_carton": value, "max": max_lpc},
        )
    return value


def has_history(product_id: int) -> bool:
    movement = db.session.query(StockMovement.id).filter_by(product_id=product_id).first()
    if movement is not None:
        return True
    item = db.session.query(SaleItem.id).filter_by(product_id=product_id).first()
    return item is not None


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def _check_prices(patch: dict) -> None:
    for key in ("cost_price_per_carton", "default_selling_price"):
        value = patch.get(key)
        if value is not None and value < 0:
            raise StockbookError(f"{key} cannot be negative", details={key: value})


def create_product(
    *,
    name: str,
    lines_per_carton: int = 1,
    description: str | None = None,
    category: str | None = None,
    cost_price_per_carton: float | None = None,
    default_selling_price: float | None = None,
    is_active: bool = True,
) -> Product:
    if not name or not name.strip():
        raise StockbookError("Product name is required")

    patch = {
        "name": name.strip(),
        "description": description,
        "category": category,
        "lines_per_carton": validate_lines_per_carton(lines_per_carton),
        "cost_price_per_carton": cost_price_per_carton,
        "default_selling_price": default_selling_price,
        "is_active": is_active,
    }
    _check_prices(patch)

    product = Product()
    apply_product_patch(product, patch)
    db.session.add(product)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise StockbookError("A product with this name already exists", details={"name": name})
    return product


def update_product(product_id: int, patch: dict) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise StockbookError("Product not found", details={"product_id": product_id})

    unknown = set(patch) - PRODUCT_MUTABLE_FIELDS
    if unknown:
        raise StockbookError("Unknown product fields", details={"fields": sorted(unknown)})

    if "lines_per_carton" in patch:
        new_lpc = validate_lines_per_carton(patch["lines_per_carton"])
        if new_lpc != product.lines_per_carton and has_history(product.id):
            raise ConfigurationError(
                "lines_per_carton cannot change once the product has stock or sales history",
                details={"product_id": product.id, "lines_per_carton": product.lines_per_carton},
            )
    _check_prices(patch)

    apply_product_patch(product, patch)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise StockbookError("A product with this name already exists", details={"name": patch.get("name")})
    return product


def product_to_display(product: Product) -> dict:
    data = product.to_dict()
    available = get_available_stock(product.id)
    data["current_stock"] = available
    data["current_stock_display"] = format_carton_line(available, product.lines_per_carton)
    if product.cost_price_per_carton is not None:
        data["cost_price_per_line"] = price_per_line(product.cost_price_per_carton, product.lines_per_carton)
    return data


def list_products(*, include_inactive: bool = False) -> list[dict]:
    q = db.session.query(Product)
    if not include_inactive:
        q = q.filter(Product.is_active.is_(True))
    products = q.order_by(Product.name.asc(), Product.id.asc()).all()
    return [product_to_display(p) for p in products]
