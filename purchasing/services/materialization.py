from datetime import datetime
from typing import List
from uuid import UUID

from purchasing.models.order import PurchaseOrder
from purchasing.models.stock_item import StockItem
from purchasing.stores.base import StockItemStore


def build_stock_items(
    order: PurchaseOrder,
    stock_id: UUID,
    claim: UUID,
    now: datetime,
) -> List[StockItem]:
    """One stock lot per order line, priced at the line's unit cost."""
    return [
        StockItem(
            stock_id=stock_id,
            product_id=item.product_id,
            price=item.unit_cost,
            quantity=item.quantity,
            expire_at=item.expiration_date,
            source_order_id=order.id,
            source_claim=claim,
            created_at=now,
        )
        for item in order.items
    ]


async def materialize_order(
    store: StockItemStore,
    order: PurchaseOrder,
    stock_id: UUID,
    claim: UUID,
    now: datetime,
) -> List[StockItem]:
    """
    Submit the order's lines to the stock item store as one batch, tagged
    with the verification claim that owns them so a rollback removes only
    this batch. The store's insert_many is all-or-nothing, so on error no
    lot remains.
    """
    items = build_stock_items(order, stock_id, claim, now)
    return await store.insert_many(items)
