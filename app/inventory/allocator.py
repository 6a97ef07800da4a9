"""
app/inventory/allocator.py
--------------------------
Stock allocation: which batches of a product can be sold right now.

Batches are offered oldest intake first so that older stock rotates out
naturally. The list is advisory: it fixes which batch a cart line draws
from, but the authoritative check-and-decrement happens at commit time
(see app/billing/committer.py).
"""
from __future__ import annotations
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import List, Optional

from app import db
from app.inventory.models import Product, StockBatch


@dataclass(frozen=True)
class BatchSnapshot:
    """Read-only copy of a batch as the cashier saw it when selecting."""
    batch_id:           int
    product_id:         int
    product_name:       str
    unit_price:         Decimal
    warranty_months:    int
    remaining_quantity: int
    intake_date:        date


def list_available_batches(product_id: int) -> List[StockBatch]:
    """Batches with stock left, ordered by intake date (then id) ascending."""
    return (
        StockBatch.query
        .filter(StockBatch.product_id == product_id)
        .filter(StockBatch.remaining_quantity > 0)
        .order_by(StockBatch.intake_date.asc(), StockBatch.id.asc())
        .all()
    )


def auto_select_batch(batches: List[StockBatch]) -> Optional[StockBatch]:
    """A lone eligible batch can be picked for the operator."""
    if len(batches) == 1:
        return batches[0]
    return None


def batch_snapshot(batch: StockBatch) -> BatchSnapshot:
    return BatchSnapshot(
        batch_id           = batch.id,
        product_id         = batch.product_id,
        product_name       = batch.product.name,
        unit_price         = Decimal(str(batch.unit_price)),
        warranty_months    = batch.warranty_months,
        remaining_quantity = batch.remaining_quantity,
        intake_date        = batch.intake_date,
    )


def get_product(product_id: int) -> Optional[Product]:
    return db.session.get(Product, product_id)
