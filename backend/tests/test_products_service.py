import pytest

from stockbook.errors import ConfigurationError, StockbookError
from stockbook.services import products_service


class TestCreateProduct:
    def test_create(self, db_session):
        product = products_service.create_product(
            name="  Chicken Wings ",
            lines_per_carton=6,
            cost_price_per_carton=120.0,
            default_selling_price=150.0,
        )

        assert product.id is not None
        assert product.name == "Chicken Wings"
        assert product.is_active is True

    @pytest.mark.parametrize("lpc", [0, 9, -1, "6", 2.5])
    def test_lines_per_carton_bounds(self, db_session, lpc):
        with pytest.raises(ConfigurationError):
            products_service.create_product(name="Bad", lines_per_carton=lpc)

    def test_max_lines_per_carton_is_configurable(self, app, monkeypatch, db_session):
        monkeypatch.setitem(app.config, "MAX_LINES_PER_CARTON", 12)

        product = products_service.create_product(name="Eggs", lines_per_carton=12)

        assert product.lines_per_carton == 12

    def test_duplicate_name(self, make_product):
        make_product(name="Rice")

        with pytest.raises(StockbookError):
            make_product(name="Rice")

    def test_name_required(self, db_session):
        with pytest.raises(StockbookError):
            products_service.create_product(name="  ")

    def test_negative_price(self, db_session):
        with pytest.raises(StockbookError):
            products_service.create_product(name="Oil", default_selling_price=-5)


class TestUpdateProduct:
    def test_patch_fields(self, make_product):
        product = make_product(lines_per_carton=6)

        updated = products_service.update_product(
            product.id, {"default_selling_price": 99.0, "category": "Frozen"}
        )

        assert updated.default_selling_price == 99.0
        assert updated.category == "Frozen"

    def test_unknown_field(self, make_product):
        product = make_product()

        with pytest.raises(StockbookError):
            products_service.update_product(product.id, {"stock": 10})

    def test_lines_per_carton_can_change_before_history(self, make_product):
        product = make_product(lines_per_carton=6)

        updated = products_service.update_product(product.id, {"lines_per_carton": 4})

        assert updated.lines_per_carton == 4

    def test_lines_per_carton_frozen_after_history(self, make_product, receive):
        product = make_product(lines_per_carton=6)
        receive(product, "1C", 60.0)

        with pytest.raises(ConfigurationError):
            products_service.update_product(product.id, {"lines_per_carton": 4})

        # Same value is not a change
        products_service.update_product(product.id, {"lines_per_carton": 6})

    def test_missing_product(self, db_session):
        with pytest.raises(StockbookError):
            products_service.update_product(9999, {"name": "x"})


class TestListProducts:
    def test_display_includes_stock(self, make_product, receive):
        product = make_product(name="Wings", lines_per_carton=6, cost_price_per_carton=120.0)
        receive(product, "2C3L", 120.0)

        rows = products_service.list_products()

        assert len(rows) == 1
        assert rows[0]["current_stock"] == 15
        assert rows[0]["current_stock_display"] == "2C3L"
        assert rows[0]["cost_price_per_line"] == pytest.approx(20.0)

    def test_inactive_hidden_by_default(self, make_product):
        make_product(name="Active")
        hidden = make_product(name="Retired")
        products_service.update_product(hidden.id, {"is_active": False})

        assert [p["name"] for p in products_service.list_products()] == ["Active"]
        assert [p["name"] for p in products_service.list_products(include_inactive=True)] == ["Active", "Retired"]
