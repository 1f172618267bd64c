# Overview: FIFO unit-cost allocation over received stock batches.

"""
FIFO costing (authoritative)

Batches:
- A batch is a StockMovement with type='received' and quantity > 0.
- Batches are consumed oldest first: created_at ascending, then id ascending.
- unit_cost on a batch is per line.

Result:
- unit_cost_per_line = sum(used * batch.unit_cost) / quantity_needed.
- If the batches cannot cover quantity_needed the result is unsuccessful and
  carries the shortfall. Callers decide whether to reject the sale or apply
  the zero-cost fallback; the allocator never returns a silent 0.

Strategies:
- recompute: every call walks the full original batch quantities and writes
  nothing. Matches historical figures produced by the legacy system, but
  repeated sales keep drawing on the same oldest batch.
- depleting (default): each batch is walked from quantity - consumed_quantity.
  Committing an allocation advances consumed_quantity and records
  CostAllocation rows so a deleted sale can hand its lines back.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from flask import current_app

from ..extensions import db
from ..models import Product, StockMovement, CostAllocation, SaleItem, MOVEMENT_RECEIVED
from ..errors import ConfigurationError, InsufficientStockError
from .quantity_codec import format_carton_line


STRATEGY_DEPLETING = "depleting"
STRATEGY_RECOMPUTE = "recompute"


@dataclass(frozen=True)
class Batch:
    movement_id: Optional[int]
    quantity: int
    unit_cost: float
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class Draw:
    movement_id: Optional[int]
    quantity: int
    unit_cost: float


@dataclass
class AllocationResult:
    quantity_needed: int
    success: bool
    total_cost: float
    shortfall: int = 0
    draws: list[Draw] = field(default_factory=list)

    @property
    def unit_cost_per_line(self) -> Optional[float]:
        if not self.success:
            return None
        return self.total_cost / self.quantity_needed

    @property
    def covered_quantity(self) -> int:
        return self.quantity_needed - self.shortfall

    def as_tuple(self) -> tuple[Optional[float], bool]:
        return self.unit_cost_per_line, self.success

    def raise_for_shortfall(self, product: Product | None = None) -> None:
        if self.success:
            return
        lpc = product.lines_per_carton if product is not None else 1
        name = product.name if product is not None else None
        raise InsufficientStockError(
            f"Receipt history cannot cost {format_carton_line(self.quantity_needed, lpc)}"
            + (f" of '{name}'" if name else ""),
            product_id=product.id if product is not None else None,
            product_name=name,
            available=self.covered_quantity,
            requested=self.quantity_needed,
            details={"shortfall": self.shortfall, "reason": "fifo_coverage"},
        )


def allocate_fifo(batches: Iterable[Batch], quantity_needed: int) -> AllocationResult:
    """Walk batches in the given order until quantity_needed lines are costed."""
    if quantity_needed is None or int(quantity_needed) <= 0:
        raise ValueError("quantity_needed must be positive")
    quantity_needed = int(quantity_needed)

    remaining = quantity_needed
    total_cost = 0.0
    draws: list[Draw] = []

    for batch in batches:
        if remaining <= 0:
            break
        if batch.quantity <= 0:
            continue
        used = min(batch.quantity, remaining)
        total_cost += used * batch.unit_cost
        remaining -= used
        draws.append(Draw(batch.movement_id, used, batch.unit_cost))

    return AllocationResult(
        quantity_needed=quantity_needed,
        success=remaining <= 0,
        total_cost=total_cost,
        shortfall=max(remaining, 0),
        draws=draws,
    )


def _received_batches_query(product_id: int):
    return (
        db.session.query(StockMovement)
        .filter(
            StockMovement.product_id == product_id,
            StockMovement.type == MOVEMENT_RECEIVED,
            StockMovement.quantity > 0,
        )
        .order_by(StockMovement.created_at.asc(), StockMovement.id.asc())
    )


class RecomputeStrategy:
    name = STRATEGY_RECOMPUTE

    def batches(self, product_id: int) -> list[Batch]:
        return [
            Batch(m.id, int(m.quantity), float(m.unit_cost or 0), m.created_at)
            for m in _received_batches_query(product_id).all()
        ]

    def allocate(self, product_id: int, quantity_needed: int) -> AllocationResult:
        return allocate_fifo(self.batches(product_id), quantity_needed)

    def commit_allocation(self, sale_item: SaleItem, result: AllocationResult) -> None:
        # Read-only projection; nothing to record
        return None

    def release_allocations(self, sale_item: SaleItem) -> int:
        return 0


class DepletingStrategy:
    name = STRATEGY_DEPLETING

    def batches(self, product_id: int) -> list[Batch]:
        rows = _received_batches_query(product_id).filter(
            StockMovement.quantity > StockMovement.consumed_quantity
        )
        return [
            Batch(m.id, m.remaining_quantity, float(m.unit_cost or 0), m.created_at)
            for m in rows.all()
        ]

    def allocate(self, product_id: int, quantity_needed: int) -> AllocationResult:
        return allocate_fifo(self.batches(product_id), quantity_needed)

    def commit_allocation(self, sale_item: SaleItem, result: AllocationResult) -> None:
        """Advance batch consumption for the draws and link them to the sale item."""
        for draw in result.draws:
            movement = db.session.get(StockMovement, draw.movement_id)
            movement.consumed_quantity = int(movement.consumed_quantity or 0) + draw.quantity
            sale_item.allocations.append(
                CostAllocation(
                    stock_movement_id=draw.movement_id,
                    quantity=draw.quantity,
                    unit_cost=draw.unit_cost,
                )
            )

    def release_allocations(self, sale_item: SaleItem) -> int:
        """Hand the sale item's lines back to the batches they came from."""
        released = 0
        for allocation in list(sale_item.allocations):
            movement = db.session.get(StockMovement, allocation.stock_movement_id)
            if movement is not None:
                movement.consumed_quantity = max(
                    int(movement.consumed_quantity or 0) - allocation.quantity, 0
                )
            released += allocation.quantity
        return released


_STRATEGIES = {
    STRATEGY_DEPLETING: DepletingStrategy,
    STRATEGY_RECOMPUTE: RecomputeStrategy,
}


def get_strategy(name: str | None = None):
    """Resolve a strategy by name, defaulting to FIFO_COSTING_STRATEGY."""
    if name is None:
        name = current_app.config.get("FIFO_COSTING_STRATEGY", STRATEGY_DEPLETING)
    if not isinstance(name, str):
        return name
    try:
        return _STRATEGIES[name.strip().lower()]()
    except KeyError:
        raise ConfigurationError(
            f"Unknown FIFO costing strategy: {name!r}",
            details={"strategy": name, "allowed": sorted(_STRATEGIES)},
        ) from None


def allocate_cost(product_id: int, quantity_needed: int, strategy=None) -> AllocationResult:
    """
    FIFO unit cost for selling quantity_needed lines of a product.

    Read-only: committing the draws is the caller's job (see commit_allocation).
    """
    return get_strategy(strategy).allocate(product_id, quantity_needed)
