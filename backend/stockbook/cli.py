# Overview: Flask CLI command groups for bootstrap, stock control, sales, and reports.

# backend/stockbook/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System:
# - python -m flask system init-db
#   Create all tables that do not exist yet.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Products:
# - python -m flask products create --name "Chicken Wings" --lines-per-carton 6 --cost 120 --price 150
# - python -m flask products list [--all]
#
# Stock control (quantities accept carton/line strings such as 2C3L):
# - python -m flask stock receive 1 2C3L --cost 120 [--date 2026-01-05]
# - python -m flask stock adjust 1 -- -1L --notes "damaged"
# - python -m flask stock movements [--product-id 1]
# - python -m flask stock summary 1
# - python -m flask stock edit 7 --quantity 3C --cost 115
# - python -m flask stock delete 7 --yes
#
# Sales:
# - python -m flask sales create --item 1:2C3L:150 --payment cash --paid 380 --customer-name "Walk-in"
# - python -m flask sales show 4
# - python -m flask sales delete 4 --yes
#
# Customers (balances are credit sales plus unpaid partials, less payments):
# - python -m flask customers create --name "Ama Mensah" --phone 0244000000
# - python -m flask customers list [--active-only] [--owing]
# - python -m flask customers show 3
# - python -m flask customers transactions 3
# - python -m flask customers pay 3 150 [--date 2026-01-10]
# - python -m flask customers update 3 --phone 0200000000
# - python -m flask customers toggle 3
# - python -m flask customers update-payment 12 120
# - python -m flask customers delete-payment 12 --yes
# - python -m flask customers collections [--start ...] [--end ...]
#
# Reports (print JSON):
# - python -m flask reports daily [--start 2026-01-01] [--end 2026-01-31]
# - python -m flask reports profit [--start ...] [--end ...]
# - python -m flask reports activity [--start ...] [--end ...]

import json

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .errors import StockbookError
from .services import customers_service, inventory_service, products_service, reporting_service, sales_service


def _echo_json(data) -> None:
    click.echo(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def _fail(exc: StockbookError) -> None:
    current_app.logger.warning("CLI command failed: %s details=%s", exc, exc.details)
    click.echo(f"FAIL {exc}")
    if exc.details:
        _echo_json(exc.details)
    raise SystemExit(1)


@click.group('system')
def system_group():
    """Database bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables."""
    db.create_all()
    click.echo("PASS Tables created")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()
    click.echo("CREATE Creating all tables...")
    db.create_all()
    click.echo("PASS Database reset complete")


@click.group('products')
def products_group():
    """Product catalog commands."""


@products_group.command('create')
@click.option('--name', required=True)
@click.option('--lines-per-carton', default=1, type=int, show_default=True)
@click.option('--cost', 'cost_price_per_carton', type=float, default=None, help='Cost per carton')
@click.option('--price', 'default_selling_price', type=float, default=None, help='Selling price per carton')
@click.option('--category', default=None)
@with_appcontext
def create_product_cmd(name, lines_per_carton, cost_price_per_carton, default_selling_price, category):
    """Create a product."""
    try:
        product = products_service.create_product(
            name=name,
            lines_per_carton=lines_per_carton,
            cost_price_per_carton=cost_price_per_carton,
            default_selling_price=default_selling_price,
            category=category,
        )
    except StockbookError as e:
        _fail(e)
    click.echo(f"PASS Created product: {product.name} (ID: {product.id}, {product.lines_per_carton} lines/carton)")


@products_group.command('list')
@click.option('--all', 'include_inactive', is_flag=True, help='Include inactive products')
@with_appcontext
def list_products_cmd(include_inactive):
    """List products with current stock."""
    symbol = current_app.config.get("CURRENCY_SYMBOL", "")
    for p in products_service.list_products(include_inactive=include_inactive):
        status = "" if p["is_active"] else " (inactive)"
        price = p.get("default_selling_price")
        price_display = f"{symbol}{price:.2f}" if price is not None else "-"
        click.echo(
            f"{p['id']:>4}  {p['name']:<30} {p['current_stock_display']:>10}  "
            f"lpc={p['lines_per_carton']}  {price_display}/carton{status}"
        )


@click.group('stock')
def stock_group():
    """Stock control commands."""


@stock_group.command('receive')
@click.argument('product_id', type=int)
@click.argument('quantity')
@click.option('--cost', 'unit_cost_per_carton', type=float, default=None, help='Cost per carton')
@click.option('--date', 'received_on', default=None, help='YYYY-MM-DD')
@click.option('--notes', default=None)
@with_appcontext
def receive_cmd(product_id, quantity, unit_cost_per_carton, received_on, notes):
    """Receive QUANTITY (e.g. 5C2L) of a product."""
    try:
        movement = inventory_service.receive_stock(
            product_id=product_id,
            quantity=quantity,
            unit_cost_per_carton=unit_cost_per_carton,
            notes=notes,
            received_on=received_on,
        )
    except StockbookError as e:
        _fail(e)
    _echo_json(inventory_service.movement_to_display(movement))


@stock_group.command('adjust')
@click.argument('product_id', type=int)
@click.argument('quantity_delta')
@click.option('--notes', default=None)
@with_appcontext
def adjust_cmd(product_id, quantity_delta, notes):
    """Adjust stock by QUANTITY_DELTA (prefix with - to remove)."""
    try:
        movement = inventory_service.adjust_stock(
            product_id=product_id,
            quantity_delta=quantity_delta,
            notes=notes,
        )
    except StockbookError as e:
        _fail(e)
    _echo_json(inventory_service.movement_to_display(movement))


@stock_group.command('movements')
@click.option('--product-id', type=int, default=None)
@click.option('--start', default=None)
@click.option('--end', default=None)
@click.option('--limit', type=int, default=50, show_default=True)
@with_appcontext
def movements_cmd(product_id, start, end, limit):
    """List recent stock movements."""
    try:
        rows = inventory_service.list_movements(
            product_id=product_id, start_date=start, end_date=end, limit=limit
        )
    except StockbookError as e:
        _fail(e)
    for m in rows:
        click.echo(f"{m['created_at']}  {m['type']:<15} {m['product_name']:<30} {m['quantity_display']:>10}")


@stock_group.command('summary')
@click.argument('product_id', type=int)
@with_appcontext
def summary_cmd(product_id):
    """Show stock totals for a product."""
    try:
        _echo_json(inventory_service.get_stock_summary(product_id))
    except StockbookError as e:
        _fail(e)


@stock_group.command('edit')
@click.argument('movement_id', type=int)
@click.option('--quantity', default=None, help='New quantity, e.g. 3C1L')
@click.option('--cost', 'unit_cost_per_carton', type=float, default=None, help='Cost per carton (received only)')
@click.option('--date', 'occurred_at', default=None, help='YYYY-MM-DD')
@click.option('--notes', default=None)
@with_appcontext
def edit_movement_cmd(movement_id, quantity, unit_cost_per_carton, occurred_at, notes):
    """Correct a received or adjustment movement."""
    try:
        movement = inventory_service.update_movement(
            movement_id,
            quantity=quantity,
            unit_cost_per_carton=unit_cost_per_carton,
            notes=notes,
            occurred_at=occurred_at,
        )
    except StockbookError as e:
        _fail(e)
    _echo_json(inventory_service.movement_to_display(movement))


@stock_group.command('delete')
@click.argument('movement_id', type=int)
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def delete_movement_cmd(movement_id, yes):
    """Delete a stock movement."""
    if not yes:
        click.confirm(f"WARN Delete movement {movement_id}?", abort=True)
    try:
        inventory_service.delete_movement(movement_id)
    except StockbookError as e:
        _fail(e)
    click.echo(f"PASS Deleted movement {movement_id}")


@click.group('sales')
def sales_group():
    """Sale commands."""


def _parse_item(raw: str) -> dict:
    try:
        product_id, quantity, price = raw.split(":")
        return {
            "product_id": int(product_id),
            "quantity": quantity,
            "unit_selling_price": float(price),
        }
    except ValueError:
        raise click.BadParameter(f"expected PRODUCT_ID:QUANTITY:PRICE_PER_CARTON, got {raw!r}")


@sales_group.command('create')
@click.option('--item', 'raw_items', multiple=True, required=True, help='PRODUCT_ID:QUANTITY:PRICE_PER_CARTON')
@click.option('--payment', 'payment_type', type=click.Choice(['cash', 'credit', 'partial']), required=True)
@click.option('--paid', 'amount_paid', type=float, default=0.0, show_default=True)
@click.option('--customer-id', type=int, default=None)
@click.option('--customer-name', default=None)
@click.option('--date', 'transaction_date', default=None, help='YYYY-MM-DD')
@with_appcontext
def create_sale_cmd(raw_items, payment_type, amount_paid, customer_id, customer_name, transaction_date):
    """Record a sale."""
    items = [_parse_item(raw) for raw in raw_items]
    try:
        sale = sales_service.create_sale(
            items=items,
            payment_type=payment_type,
            amount_paid=amount_paid,
            customer_id=customer_id,
            customer_name=customer_name,
            transaction_date=transaction_date,
        )
    except StockbookError as e:
        _fail(e)
    _echo_json(sales_service.sale_to_display(sale))


@sales_group.command('show')
@click.argument('sale_id', type=int)
@with_appcontext
def show_sale_cmd(sale_id):
    """Show a sale with its items."""
    try:
        _echo_json(sales_service.get_sale(sale_id))
    except StockbookError as e:
        _fail(e)


@sales_group.command('delete')
@click.argument('sale_id', type=int)
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def delete_sale_cmd(sale_id, yes):
    """Delete a sale and release its stock."""
    if not yes:
        click.confirm(f"WARN Delete sale {sale_id}?", abort=True)
    try:
        sales_service.delete_sale(sale_id)
    except StockbookError as e:
        _fail(e)
    click.echo(f"PASS Deleted sale {sale_id}")


@click.group('customers')
def customers_group():
    """Customer and credit collection commands."""


@customers_group.command('create')
@click.option('--name', required=True)
@click.option('--phone', default=None)
@click.option('--email', default=None)
@click.option('--address', default=None)
@with_appcontext
def create_customer_cmd(name, phone, email, address):
    """Register a customer."""
    try:
        customer = customers_service.create_customer(name=name, phone=phone, email=email, address=address)
    except StockbookError as e:
        _fail(e)
    click.echo(f"PASS Created customer: {customer.name} (ID: {customer.id})")


@customers_group.command('update')
@click.argument('customer_id', type=int)
@click.option('--name', default=None)
@click.option('--phone', default=None)
@click.option('--email', default=None)
@click.option('--address', default=None)
@with_appcontext
def update_customer_cmd(customer_id, name, phone, email, address):
    """Change a customer's contact details."""
    patch = {
        k: v
        for k, v in {"name": name, "phone": phone, "email": email, "address": address}.items()
        if v is not None
    }
    try:
        customers_service.update_customer(customer_id, patch)
        _echo_json(customers_service.get_customer(customer_id))
    except StockbookError as e:
        _fail(e)


@customers_group.command('toggle')
@click.argument('customer_id', type=int)
@with_appcontext
def toggle_customer_cmd(customer_id):
    """Activate or deactivate a customer."""
    try:
        customer = customers_service.toggle_customer_status(customer_id)
    except StockbookError as e:
        _fail(e)
    click.echo(f"PASS {customer.name} is now {'active' if customer.is_active else 'inactive'}")


@customers_group.command('list')
@click.option('--active-only', is_flag=True, help='Hide inactive customers')
@click.option('--owing', 'owing_only', is_flag=True, help='Only customers with a balance')
@with_appcontext
def list_customers_cmd(active_only, owing_only):
    """List customers with outstanding balances."""
    symbol = current_app.config.get("CURRENCY_SYMBOL", "")
    rows = customers_service.list_customers(include_inactive=not active_only, owing_only=owing_only)
    for c in rows:
        status = "" if c["is_active"] else " (inactive)"
        click.echo(
            f"{c['id']:>4}  {c['name']:<30} {symbol}{c['outstanding_balance']:>10.2f}  "
            f"{c['debt_status']}{status}"
        )


@customers_group.command('show')
@click.argument('customer_id', type=int)
@with_appcontext
def show_customer_cmd(customer_id):
    """Show a customer's balance summary."""
    try:
        _echo_json(customers_service.get_transaction_summary(customer_id))
    except StockbookError as e:
        _fail(e)


@customers_group.command('transactions')
@click.argument('customer_id', type=int)
@with_appcontext
def customer_transactions_cmd(customer_id):
    """Credit sales and payments with running balance, newest first."""
    try:
        _echo_json(customers_service.customer_transactions(customer_id))
    except StockbookError as e:
        _fail(e)


@customers_group.command('pay')
@click.argument('customer_id', type=int)
@click.argument('amount', type=float)
@click.option('--date', 'collected_on', default=None, help='YYYY-MM-DD')
@click.option('--notes', default=None)
@with_appcontext
def pay_cmd(customer_id, amount, collected_on, notes):
    """Record a payment against a customer's debt."""
    try:
        collection = customers_service.record_collection(
            customer_id=customer_id,
            amount=amount,
            collected_on=collected_on,
            notes=notes,
        )
        balance = customers_service.get_outstanding_balance(customer_id)
    except StockbookError as e:
        _fail(e)
    click.echo(f"PASS Recorded payment {collection.id} of {collection.amount_collected:.2f}; balance {balance:.2f}")


@customers_group.command('update-payment')
@click.argument('payment_id', type=int)
@click.argument('amount', type=float)
@click.option('--date', 'collected_on', default=None, help='YYYY-MM-DD')
@click.option('--notes', default=None)
@with_appcontext
def update_payment_cmd(payment_id, amount, collected_on, notes):
    """Change a recorded payment."""
    try:
        collection = customers_service.update_collection(
            payment_id,
            amount=amount,
            collected_on=collected_on,
            notes=notes,
        )
    except StockbookError as e:
        _fail(e)
    _echo_json(collection.to_dict())


@customers_group.command('delete-payment')
@click.argument('payment_id', type=int)
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def delete_payment_cmd(payment_id, yes):
    """Delete a recorded payment."""
    if not yes:
        click.confirm(f"WARN Delete payment {payment_id}?", abort=True)
    try:
        customers_service.delete_collection(payment_id)
    except StockbookError as e:
        _fail(e)
    click.echo(f"PASS Deleted payment {payment_id}")


@customers_group.command('collections')
@click.option('--start', default=None)
@click.option('--end', default=None)
@click.option('--customer-id', type=int, default=None)
@with_appcontext
def collections_cmd(start, end, customer_id):
    """List payments received in a date range (default today)."""
    try:
        rows = customers_service.list_collections(start_date=start, end_date=end, customer_id=customer_id)
    except StockbookError as e:
        _fail(e)
    for c in rows:
        click.echo(f"{c['collected_at']}  {c['id']:>5}  {c['customer']:<30} {c['amount_collected']:>10.2f}")


@click.group('reports')
def reports_group():
    """Report commands (JSON output)."""


def _report(fn, start, end):
    try:
        _echo_json(fn(start, end))
    except reporting_service.ReportError as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)


@reports_group.command('daily')
@click.option('--start', default=None)
@click.option('--end', default=None)
@with_appcontext
def daily_cmd(start, end):
    """Daily sales report."""
    _report(reporting_service.daily_sales_report, start, end)


@reports_group.command('profit')
@click.option('--start', default=None)
@click.option('--end', default=None)
@with_appcontext
def profit_cmd(start, end):
    """Profit analysis."""
    _report(reporting_service.profit_analysis, start, end)


@reports_group.command('activity')
@click.option('--start', default=None)
@click.option('--end', default=None)
@with_appcontext
def activity_cmd(start, end):
    """Stock activity summary."""
    _report(reporting_service.stock_activity_summary, start, end)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(products_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(sales_group)
    app.cli.add_command(customers_group)
    app.cli.add_command(reports_group)
