import pytest

from stockbook.errors import ConfigurationError, InsufficientStockError
from stockbook.models import StockMovement
from stockbook.services.cost_allocation_service import (
    Batch,
    DepletingStrategy,
    RecomputeStrategy,
    allocate_cost,
    allocate_fifo,
    get_strategy,
)


class TestAllocateFifo:
    def test_weighted_cost_across_batches(self):
        result = allocate_fifo([Batch(1, 10, 2.0), Batch(2, 5, 3.0)], 12)

        assert result.success is True
        assert result.unit_cost_per_line == pytest.approx(26 / 12)
        assert [(d.movement_id, d.quantity) for d in result.draws] == [(1, 10), (2, 2)]

    def test_stops_at_first_batch_when_it_covers(self):
        result = allocate_fifo([Batch(1, 10, 2.0), Batch(2, 5, 3.0)], 4)

        assert result.unit_cost_per_line == pytest.approx(2.0)
        assert len(result.draws) == 1

    def test_shortfall_is_reported_not_zeroed(self):
        result = allocate_fifo([Batch(1, 10, 2.0), Batch(2, 5, 3.0)], 20)

        assert result.success is False
        assert result.unit_cost_per_line is None
        assert result.shortfall == 5
        assert result.as_tuple() == (None, False)

    def test_no_batches(self):
        result = allocate_fifo([], 3)
        assert result.success is False
        assert result.shortfall == 3

    @pytest.mark.parametrize("qty", [0, -4])
    def test_non_positive_request_rejected(self, qty):
        with pytest.raises(ValueError):
            allocate_fifo([Batch(1, 10, 2.0)], qty)

    def test_raise_for_shortfall(self):
        result = allocate_fifo([Batch(1, 2, 1.0)], 5)
        with pytest.raises(InsufficientStockError) as exc_info:
            result.raise_for_shortfall()
        assert exc_info.value.requested == 5
        assert exc_info.value.available == 2


class TestStrategies:
    def test_batches_follow_received_date_not_insert_order(self, make_product, receive):
        product = make_product(lines_per_carton=1)
        receive(product, 10, 3.0, on="2026-01-05")
        receive(product, 10, 2.0, on="2026-01-01")

        result = allocate_cost(product.id, 4, strategy="recompute")

        assert result.unit_cost_per_line == pytest.approx(2.0)

    def test_same_day_ties_break_by_insert_order(self, make_product, receive):
        product = make_product(lines_per_carton=1)
        receive(product, 3, 1.0, on="2026-01-01T08:00:00")
        receive(product, 3, 4.0, on="2026-01-01T08:00:00")

        result = allocate_cost(product.id, 4, strategy="recompute")

        assert result.unit_cost_per_line == pytest.approx((3 * 1.0 + 1 * 4.0) / 4)

    def test_only_received_movements_are_batches(self, make_product, receive):
        from stockbook.services import inventory_service

        product = make_product(lines_per_carton=1)
        receive(product, 5, 2.0, on="2026-01-01")
        inventory_service.adjust_stock(product_id=product.id, quantity_delta=20, occurred_at="2026-01-01")

        result = allocate_cost(product.id, 8, strategy="depleting")

        assert result.success is False
        assert result.shortfall == 3

    def test_recompute_is_read_only(self, db_session, make_product, receive):
        product = make_product(lines_per_carton=6)
        receive(product, "2C", 6.0, on="2026-01-01")

        first = allocate_cost(product.id, 12, strategy=RecomputeStrategy())
        second = allocate_cost(product.id, 12, strategy=RecomputeStrategy())

        assert first.unit_cost_per_line == second.unit_cost_per_line == pytest.approx(1.0)
        movement = db_session.query(StockMovement).one()
        assert movement.consumed_quantity == 0

    def test_depleting_skips_consumed_lines(self, db_session, make_product, receive):
        product = make_product(lines_per_carton=6)
        batch_a = receive(product, "2C", 6.0, on="2026-01-01")
        receive(product, "1C", 9.0, on="2026-01-02")

        batch_a = db_session.get(StockMovement, batch_a.id)
        batch_a.consumed_quantity = 12
        db_session.commit()

        result = allocate_cost(product.id, 3, strategy=DepletingStrategy())

        assert result.unit_cost_per_line == pytest.approx(1.5)

    def test_default_strategy_from_config(self, app, monkeypatch):
        assert isinstance(get_strategy(), DepletingStrategy)
        monkeypatch.setitem(app.config, "FIFO_COSTING_STRATEGY", "recompute")
        assert isinstance(get_strategy(), RecomputeStrategy)

    def test_unknown_strategy(self, app):
        with pytest.raises(ConfigurationError):
            get_strategy("lifo")
