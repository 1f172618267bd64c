from datetime import datetime

import pytest

from stockbook.errors import InsufficientStockError, ParseError, StockbookError
from stockbook.models import (
    MOVEMENT_ADJUSTMENT_IN,
    MOVEMENT_ADJUSTMENT_OUT,
    MOVEMENT_RECEIVED,
    MOVEMENT_SOLD,
    StockMovement,
)
from stockbook.services import inventory_service, sales_service


class TestReceiveStock:
    def test_carton_line_quantity_and_cost_per_line(self, make_product):
        product = make_product(lines_per_carton=6)

        movement = inventory_service.receive_stock(
            product_id=product.id, quantity="5C2L", unit_cost_per_carton=120.0
        )

        assert movement.type == MOVEMENT_RECEIVED
        assert movement.quantity == 32
        assert movement.unit_cost == pytest.approx(20.0)
        assert movement.lines_per_carton == 6
        assert inventory_service.get_available_stock(product.id) == 32

    def test_cost_defaults_to_product_cost(self, make_product):
        product = make_product(lines_per_carton=4, cost_price_per_carton=40.0)

        movement = inventory_service.receive_stock(product_id=product.id, quantity="1C")

        assert movement.unit_cost == pytest.approx(10.0)

    def test_cost_is_required(self, make_product):
        product = make_product(lines_per_carton=4)

        with pytest.raises(StockbookError):
            inventory_service.receive_stock(product_id=product.id, quantity="1C")

    def test_backdated_receipt_is_noon_of_that_day(self, make_product):
        product = make_product(lines_per_carton=4)

        movement = inventory_service.receive_stock(
            product_id=product.id, quantity=3, unit_cost_per_carton=4.0, received_on="2026-01-05"
        )

        assert movement.created_at == datetime.fromisoformat("2026-01-05T12:00:00")

    @pytest.mark.parametrize("quantity", [0, "0", "0C0L"])
    def test_zero_quantity_rejected(self, make_product, quantity):
        product = make_product(lines_per_carton=4)

        with pytest.raises(StockbookError):
            inventory_service.receive_stock(product_id=product.id, quantity=quantity, unit_cost_per_carton=4.0)

    def test_malformed_quantity(self, make_product):
        product = make_product(lines_per_carton=4)

        with pytest.raises(ParseError):
            inventory_service.receive_stock(product_id=product.id, quantity="two cartons", unit_cost_per_carton=4.0)

    def test_negative_cost_rejected(self, make_product):
        product = make_product(lines_per_carton=4)

        with pytest.raises(StockbookError):
            inventory_service.receive_stock(product_id=product.id, quantity=3, unit_cost_per_carton=-1.0)

    def test_unknown_product(self, db_session):
        with pytest.raises(StockbookError):
            inventory_service.receive_stock(product_id=404, quantity=3, unit_cost_per_carton=1.0)


class TestAdjustStock:
    def test_adjust_in_and_out(self, make_product, receive):
        product = make_product(lines_per_carton=6)
        receive(product, "2C", 60.0)

        up = inventory_service.adjust_stock(product_id=product.id, quantity_delta="1C", notes="found")
        down = inventory_service.adjust_stock(product_id=product.id, quantity_delta="-1C2L", notes="damaged")

        assert (up.type, up.quantity) == (MOVEMENT_ADJUSTMENT_IN, 6)
        assert (down.type, down.quantity) == (MOVEMENT_ADJUSTMENT_OUT, -8)
        assert up.unit_cost is None
        assert inventory_service.get_available_stock(product.id) == 10

    def test_integer_delta(self, make_product, receive):
        product = make_product(lines_per_carton=6)
        receive(product, "1C", 60.0)

        inventory_service.adjust_stock(product_id=product.id, quantity_delta=-4)

        assert inventory_service.get_available_stock(product.id) == 2

    def test_cannot_remove_more_than_available(self, make_product, receive):
        product = make_product(lines_per_carton=6)
        receive(product, "1C", 60.0)

        with pytest.raises(InsufficientStockError) as exc_info:
            inventory_service.adjust_stock(product_id=product.id, quantity_delta="-1C1L")

        assert exc_info.value.details["requested_display"] == "1C1L"
        assert inventory_service.get_available_stock(product.id) == 6

    def test_zero_delta(self, make_product):
        product = make_product(lines_per_carton=6)

        with pytest.raises(StockbookError):
            inventory_service.adjust_stock(product_id=product.id, quantity_delta=0)


class TestRecordSoldMovement:
    def test_reduces_available(self, make_product, receive):
        product = make_product(lines_per_carton=6)
        receive(product, "2C", 60.0)

        movement = inventory_service.record_sold_movement(product_id=product.id, quantity="1C3L")

        assert movement.type == MOVEMENT_SOLD
        assert movement.quantity == -9
        assert inventory_service.get_available_stock(product.id) == 3

    def test_cannot_oversell(self, make_product, receive):
        product = make_product(lines_per_carton=6)
        receive(product, "1C", 60.0)

        with pytest.raises(InsufficientStockError):
            inventory_service.record_sold_movement(product_id=product.id, quantity="1C1L")


class TestUpdateMovement:
    def test_correct_received_quantity_and_cost(self, make_product, receive):
        product = make_product(lines_per_carton=6)
        batch = receive(product, "2C", 60.0, on="2026-01-01")

        movement = inventory_service.update_movement(
            batch.id, quantity="3C", unit_cost_per_carton=72.0, occurred_at="2026-01-02", notes="recount"
        )

        assert movement.quantity == 18
        assert movement.unit_cost == pytest.approx(12.0)
        assert movement.created_at == datetime(2026, 1, 2, 12, 0)
        assert movement.notes == "recount"
        assert inventory_service.get_available_stock(product.id) == 18

    def test_shrinking_a_receipt_is_checked_against_availability(self, make_product, receive):
        product = make_product(lines_per_carton=6)
        batch = receive(product, "2C", 60.0)
        inventory_service.record_sold_movement(product_id=product.id, quantity="1C")

        with pytest.raises(InsufficientStockError) as exc_info:
            inventory_service.update_movement(batch.id, quantity="5L")

        assert exc_info.value.details["requested_display"] == "1C1L"
        assert inventory_service.get_available_stock(product.id) == 6

    def test_drawn_batch_keeps_cost_date_and_drawn_lines(self, make_product, receive):
        product = make_product(lines_per_carton=6)
        batch = receive(product, "2C", 60.0, on="2026-01-01")
        sales_service.create_sale(
            items=[{"product_id": product.id, "quantity": "1C", "unit_selling_price": 90.0}],
            payment_type="cash",
            amount_paid=90.0,
            customer_name="Walk-in",
        )

        with pytest.raises(StockbookError):
            inventory_service.update_movement(batch.id, unit_cost_per_carton=30.0)
        with pytest.raises(StockbookError):
            inventory_service.update_movement(batch.id, occurred_at="2026-01-05")
        with pytest.raises(StockbookError) as exc_info:
            inventory_service.update_movement(batch.id, quantity="5L")
        assert exc_info.value.details["consumed_display"] == "1C"

        movement = inventory_service.update_movement(batch.id, quantity="3C", notes="late delivery")
        assert movement.quantity == 18
        assert movement.unit_cost == pytest.approx(10.0)
        assert inventory_service.get_available_stock(product.id) == 12

    def test_adjustment_keeps_its_sign(self, make_product, receive):
        product = make_product(lines_per_carton=6)
        receive(product, "2C", 60.0)
        down = inventory_service.adjust_stock(product_id=product.id, quantity_delta="-1C")

        movement = inventory_service.update_movement(down.id, quantity="1C3L")
        assert movement.quantity == -9
        assert inventory_service.get_available_stock(product.id) == 3

        with pytest.raises(InsufficientStockError):
            inventory_service.update_movement(down.id, quantity="2C1L")

    def test_adjustment_has_no_cost(self, make_product, receive):
        product = make_product(lines_per_carton=6)
        receive(product, "1C", 60.0)
        up = inventory_service.adjust_stock(product_id=product.id, quantity_delta="2L")

        with pytest.raises(StockbookError):
            inventory_service.update_movement(up.id, unit_cost_per_carton=10.0)

    def test_sold_rows_cannot_be_edited(self, make_product, receive):
        product = make_product(lines_per_carton=6)
        receive(product, "1C", 60.0)
        sold = inventory_service.record_sold_movement(product_id=product.id, quantity="2L")

        with pytest.raises(StockbookError):
            inventory_service.update_movement(sold.id, quantity="1L")

    def test_missing_movement(self, db_session):
        with pytest.raises(StockbookError):
            inventory_service.update_movement(999, notes="x")


class TestDeleteMovement:
    def test_delete_adjustment_out_restores_stock(self, db_session, make_product, receive):
        product = make_product(lines_per_carton=6)
        receive(product, "1C", 60.0)
        down = inventory_service.adjust_stock(product_id=product.id, quantity_delta="-2L")

        inventory_service.delete_movement(down.id)

        assert db_session.get(StockMovement, down.id) is None
        assert inventory_service.get_available_stock(product.id) == 6

    def test_cannot_delete_stock_that_has_left(self, make_product, receive):
        product = make_product(lines_per_carton=6)
        receive(product, "1C", 60.0)
        up = inventory_service.adjust_stock(product_id=product.id, quantity_delta="3L")
        inventory_service.record_sold_movement(product_id=product.id, quantity="1C1L")

        with pytest.raises(InsufficientStockError):
            inventory_service.delete_movement(up.id)
        assert inventory_service.get_available_stock(product.id) == 2

    def test_drawn_batch_cannot_be_deleted(self, db_session, make_product, receive):
        product = make_product(lines_per_carton=6)
        first = receive(product, "1C", 60.0, on="2026-01-01")
        second = receive(product, "1C", 66.0, on="2026-01-02")
        sales_service.create_sale(
            items=[{"product_id": product.id, "quantity": "3L", "unit_selling_price": 90.0}],
            payment_type="cash",
            amount_paid=45.0,
            customer_name="Walk-in",
        )

        with pytest.raises(StockbookError):
            inventory_service.delete_movement(first.id)

        inventory_service.delete_movement(second.id)
        assert db_session.get(StockMovement, first.id) is not None
        assert inventory_service.get_available_stock(product.id) == 3

    def test_missing_movement(self, db_session):
        with pytest.raises(StockbookError):
            inventory_service.delete_movement(999)


class TestAvailability:
    def test_ledger_minus_sale_items(self, make_product, receive, customer):
        product = make_product(lines_per_carton=6)
        receive(product, "3C", 60.0, on="2026-01-01")
        inventory_service.adjust_stock(product_id=product.id, quantity_delta="-2L", occurred_at="2026-01-02")
        sales_service.create_sale(
            items=[{"product_id": product.id, "quantity": "1C", "unit_selling_price": 120.0}],
            payment_type="credit",
            amount_paid=0,
            customer_id=customer.id,
            transaction_date="2026-01-03",
        )

        assert inventory_service.get_movement_total(product.id) == 16
        assert inventory_service.get_sold_through_sales(product.id) == 6
        assert inventory_service.get_available_stock(product.id) == 10
        assert inventory_service.get_available_stock(product.id, as_of=datetime.fromisoformat("2026-01-02T23:59:59")) == 16
        assert inventory_service.get_available_stock(product.id, as_of=datetime.fromisoformat("2026-01-01T23:59:59")) == 18

    def test_stock_summary(self, make_product, receive):
        product = make_product(lines_per_carton=6)
        receive(product, "3C", 60.0)
        inventory_service.adjust_stock(product_id=product.id, quantity_delta="1L")
        inventory_service.adjust_stock(product_id=product.id, quantity_delta="-3L")
        inventory_service.record_sold_movement(product_id=product.id, quantity="1C")
        sales_service.create_sale(
            items=[{"product_id": product.id, "quantity": 2, "unit_selling_price": 60.0}],
            payment_type="cash",
            amount_paid=20.0,
            customer_name="Walk-in",
        )

        summary = inventory_service.get_stock_summary(product.id)

        assert summary["received_display"] == "3C"
        assert summary["adjusted_in"] == 1
        assert summary["adjusted_out"] == 3
        assert summary["sold_direct_display"] == "1C"
        assert summary["sold_through_sales"] == 2
        assert summary["available"] == 8
        assert summary["available_display"] == "1C2L"
        assert summary["available"] == inventory_service.get_available_stock(product.id)


class TestListMovements:
    def test_filters_and_display(self, make_product, receive):
        wings = make_product(lines_per_carton=6)
        oil = make_product(lines_per_carton=1)
        receive(wings, "2C", 60.0, on="2026-01-01")
        receive(oil, 5, 3.0, on="2026-01-02")
        inventory_service.adjust_stock(product_id=wings.id, quantity_delta="-1L", occurred_at="2026-01-03")

        everything = inventory_service.list_movements()
        assert [m["type"] for m in everything] == [
            MOVEMENT_ADJUSTMENT_OUT,
            MOVEMENT_RECEIVED,
            MOVEMENT_RECEIVED,
        ]

        wings_rows = inventory_service.list_movements(product_id=wings.id)
        assert [m["quantity_display"] for m in wings_rows] == ["-1L", "2C"]
        received = wings_rows[1]
        assert received["unit_cost_per_carton"] == pytest.approx(60.0)
        assert received["remaining_display"] == "2C"

        on_second = inventory_service.list_movements(start_date="2026-01-02", end_date="2026-01-02")
        assert [m["product_id"] for m in on_second] == [oil.id]

        only_adjustments = inventory_service.list_movements(movement_type=MOVEMENT_ADJUSTMENT_OUT)
        assert len(only_adjustments) == 1
