import pytest

from stockbook.services import inventory_service, reporting_service, sales_service


@pytest.fixture
def trading_day(make_product, receive, customer):
    """One cash, one partial and one credit sale on 2026-02-02, plus a cash sale the day after."""
    wings = make_product(name="Wings", lines_per_carton=6)
    oil = make_product(name="Oil", lines_per_carton=1)
    receive(wings, "5C", 60.0, on="2026-02-01")
    receive(oil, 10, 5.0, on="2026-02-01")

    sales_service.create_sale(
        items=[{"product_id": wings.id, "quantity": "2C", "unit_selling_price": 120.0}],
        payment_type="cash",
        amount_paid=240.0,
        customer_name="Walk-in",
        transaction_date="2026-02-02",
    )
    sales_service.create_sale(
        items=[{"product_id": wings.id, "quantity": "1C3L", "unit_selling_price": 120.0}],
        payment_type="partial",
        amount_paid=120.0,
        customer_id=customer.id,
        transaction_date="2026-02-02",
    )
    sales_service.create_sale(
        items=[{"product_id": oil.id, "quantity": 4, "unit_selling_price": 8.0}],
        payment_type="credit",
        amount_paid=0,
        customer_id=customer.id,
        transaction_date="2026-02-02",
    )
    sales_service.create_sale(
        items=[{"product_id": oil.id, "quantity": 1, "unit_selling_price": 8.0}],
        payment_type="cash",
        amount_paid=8.0,
        customer_name="Walk-in",
        transaction_date="2026-02-03",
    )
    return wings, oil


class TestDailySalesReport:
    def test_totals(self, trading_day):
        report = reporting_service.daily_sales_report("2026-02-02", "2026-02-02")
        summary = report["summary"]

        assert report["start_date"] == report["end_date"] == "2026-02-02"
        # Cash collected includes what was paid on partial sales
        assert summary["cash_total"] == pytest.approx(360.0)
        assert summary["credit_total"] == pytest.approx(32.0)
        assert summary["grand_total"] == pytest.approx(392.0)
        assert summary["cash_transactions"] == 2
        assert summary["credit_transactions"] == 1
        assert summary["total_partial_products_amount"] == pytest.approx(180.0)
        assert summary["total_partial_products_amount_paid"] == pytest.approx(120.0)

    def test_per_product_quantities(self, trading_day):
        report = reporting_service.daily_sales_report("2026-02-02")

        assert [(p["product"], p["qty"]) for p in report["products_bought"]] == [("Wings", "2C")]
        assert [(p["product"], p["qty"]) for p in report["credited_products"]] == [("Oil", "4")]
        partial = report["partial_products"][0]
        assert partial["qty"] == "1C3L"
        assert partial["amount_paid"] == pytest.approx(120.0)

    def test_total_products_sold_uses_unit_unaware_sum(self, trading_day):
        summary = reporting_service.daily_sales_report("2026-02-02")["summary"]

        assert summary["total_products_bought"] == "2C"
        assert summary["total_credited_products"] == "4"
        assert summary["total_partial_products"] == "1C3L"
        # "4" (oil lines) is counted as cartons by the legacy sum
        assert summary["total_products_sold"] == "7C 3L"

    def test_range_spans_days(self, trading_day):
        summary = reporting_service.daily_sales_report("2026-02-02", "2026-02-03")["summary"]

        assert summary["cash_total"] == pytest.approx(368.0)
        assert summary["cash_transactions"] == 3

    def test_end_date_alone_is_a_single_day(self, trading_day):
        report = reporting_service.daily_sales_report(end_date="2026-02-02")

        assert report["start_date"] == report["end_date"] == "2026-02-02"
        assert report["summary"]["grand_total"] == pytest.approx(392.0)

    def test_empty_day(self, db_session):
        summary = reporting_service.daily_sales_report("2026-02-10")["summary"]

        assert summary["grand_total"] == 0
        assert summary["total_products_sold"] == "0"

    def test_end_before_start(self, db_session):
        with pytest.raises(reporting_service.ReportError):
            reporting_service.daily_sales_report("2026-02-03", "2026-02-01")


class TestProfitAnalysis:
    def test_per_product_profit(self, trading_day):
        report = reporting_service.profit_analysis("2026-02-02")

        rows = {r["product"]: r for r in report["total_product_sales"]}
        wings = rows["Wings"]
        assert wings["units_sold"] == "3C3L"
        assert wings["cost_price"] == pytest.approx(60.0)
        assert wings["selling_price"] == pytest.approx(120.0)
        assert wings["total_cost"] == pytest.approx(210.0)
        assert wings["total_amount"] == pytest.approx(420.0)
        assert wings["profit"] == pytest.approx(210.0)
        assert rows["Oil"]["profit"] == pytest.approx(12.0)
        assert report["total_product_sales_totals"]["profit"] == pytest.approx(222.0)
        assert report["excluded_count"] == 0

    def test_paid_sales_are_cash_only(self, trading_day):
        report = reporting_service.profit_analysis("2026-02-02")

        assert [(r["product"], r["units_sold"]) for r in report["paid_product_sales"]] == [("Wings", "2C")]
        assert report["paid_product_sales_totals"]["profit"] == pytest.approx(120.0)

    def test_uncosted_items_are_excluded(self, app, monkeypatch, make_product):
        monkeypatch.setitem(app.config, "ZERO_COST_FALLBACK", True)
        product = make_product(lines_per_carton=1)
        inventory_service.adjust_stock(product_id=product.id, quantity_delta=3, occurred_at="2026-02-01")
        sales_service.create_sale(
            items=[{"product_id": product.id, "quantity": 2, "unit_selling_price": 5.0}],
            payment_type="cash",
            amount_paid=10.0,
            customer_name="Walk-in",
            transaction_date="2026-02-02",
        )

        report = reporting_service.profit_analysis("2026-02-02")

        assert report["total_product_sales"] == []
        assert report["excluded_count"] == 1


class TestStockActivitySummary:
    def test_opening_movements_and_closing(self, make_product, receive, customer):
        wings = make_product(name="Wings", lines_per_carton=6)
        receive(wings, "2C", 60.0, on="2026-01-01")
        sales_service.create_sale(
            items=[{"product_id": wings.id, "quantity": "1C", "unit_selling_price": 120.0}],
            payment_type="cash",
            amount_paid=120.0,
            customer_name="Walk-in",
            transaction_date="2026-01-02",
        )
        receive(wings, "1C", 60.0, on="2026-01-03")
        inventory_service.adjust_stock(product_id=wings.id, quantity_delta="-1L", occurred_at="2026-01-03")
        sales_service.create_sale(
            items=[{"product_id": wings.id, "quantity": "2L", "unit_selling_price": 120.0}],
            payment_type="credit",
            amount_paid=0,
            customer_id=customer.id,
            transaction_date="2026-01-03",
        )

        report = reporting_service.stock_activity_summary("2026-01-03", "2026-01-03")
        row = report["products"][0]

        assert row["opening_stock"] == "1C"
        assert row["stock_received"] == "1C"
        assert row["adjustments_out"] == "1L"
        assert row["total_available"] == "1C5L"
        assert row["cash_sales"] == "0"
        assert row["credit_sales"] == "2L"
        assert row["total_sales"] == "2L"
        assert row["remaining_stock"] == "1C3L"
        assert row["remaining_stock_lines"] == inventory_service.get_available_stock(wings.id)

    def test_totals_across_products(self, trading_day):
        report = reporting_service.stock_activity_summary("2026-02-01", "2026-02-03")

        assert [r["product"] for r in report["products"]] == ["Oil", "Wings"]
        assert report["total_received"] == "10 + 5C"
        assert report["total_sales"] == "5 + 3C3L"
