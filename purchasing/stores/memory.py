"""
In-process stores, selected with STORE_BACKEND=memory.

Every read returns a deep copy so callers cannot mutate stored state
without going through ``replace``.
"""

import asyncio
from collections import Counter
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
from uuid import UUID

from purchasing.core.exceptions import DuplicateOrderNumber, StoreFailure
from purchasing.models.order import OrderStatus, PurchaseOrder
from purchasing.models.stock_item import StockItem
from purchasing.stores.base import OrderQuery, PageRequest, Stores


def _sort_key(field: str):
    def key(order: PurchaseOrder):
        value = getattr(order, field)
        return value.value if isinstance(value, OrderStatus) else value
    return key


class MemoryOrderStore:
    def __init__(self):
        self._orders: Dict[UUID, PurchaseOrder] = {}
        self._lock = asyncio.Lock()

    async def insert(self, order: PurchaseOrder) -> None:
        async with self._lock:
            if any(o.order_number == order.order_number for o in self._orders.values()):
                raise DuplicateOrderNumber(f"Order number {order.order_number} already exists")
            self._orders[order.id] = order.model_copy(deep=True)

    async def get(self, order_id: UUID) -> Optional[PurchaseOrder]:
        order = self._orders.get(order_id)
        return order.model_copy(deep=True) if order else None

    async def replace(self, order: PurchaseOrder, expected_revision: int) -> bool:
        async with self._lock:
            current = self._orders.get(order.id)
            if current is None or current.revision != expected_revision:
                return False
            self._orders[order.id] = order.model_copy(deep=True)
            return True

    async def find(self, query: OrderQuery, page: PageRequest) -> Tuple[List[PurchaseOrder], int]:
        matched = [o for o in self._orders.values() if query.matches(o)]
        matched.sort(key=_sort_key(page.sort_field), reverse=page.descending)
        window = matched[page.skip:page.skip + page.limit]
        return [o.model_copy(deep=True) for o in window], len(matched)

    async def find_all(self, query: OrderQuery) -> List[PurchaseOrder]:
        return [o.model_copy(deep=True) for o in self._orders.values() if query.matches(o)]

    async def count_by_status(self, query: OrderQuery) -> Dict[OrderStatus, int]:
        return dict(Counter(o.status for o in self._orders.values() if query.matches(o)))

    async def sum_paid_between(self, start: datetime, end: datetime, query: OrderQuery) -> float:
        return sum(
            o.total_amount
            for o in self._orders.values()
            if query.matches(o)
            and o.status == OrderStatus.PAID
            and o.paid_date is not None
            and start <= o.paid_date < end
        )


class MemoryStockItemStore:
    def __init__(self):
        self._items: Dict[UUID, StockItem] = {}
        self._lock = asyncio.Lock()
        # Tests flip this to simulate a failing bulk insert
        self.fail_inserts = False

    async def insert_many(self, items: Sequence[StockItem]) -> List[StockItem]:
        async with self._lock:
            if self.fail_inserts:
                raise StoreFailure("Stock item insert failed")
            if any(item.id in self._items for item in items):
                raise StoreFailure("Duplicate stock item id in batch")
            for item in items:
                self._items[item.id] = item.model_copy(deep=True)
            return [item.model_copy(deep=True) for item in items]

    async def _delete_where(self, matches) -> int:
        async with self._lock:
            doomed = [i for i, item in self._items.items() if matches(item)]
            for item_id in doomed:
                del self._items[item_id]
            return len(doomed)

    async def delete_for_claim(self, claim: UUID) -> int:
        return await self._delete_where(lambda item: item.source_claim == claim)

    async def delete_for_order(self, order_id: UUID, keep_claim: Optional[UUID] = None) -> int:
        return await self._delete_where(
            lambda item: item.source_order_id == order_id
            and (keep_claim is None or item.source_claim != keep_claim)
        )

    async def find(
        self,
        stock_id: Optional[UUID],
        product_id: Optional[UUID],
        skip: int,
        limit: int,
    ) -> Tuple[List[StockItem], int]:
        matched = [
            item
            for item in self._items.values()
            if (stock_id is None or item.stock_id == stock_id)
            and (product_id is None or item.product_id == product_id)
        ]
        matched.sort(key=lambda item: item.created_at, reverse=True)
        return [i.model_copy(deep=True) for i in matched[skip:skip + limit]], len(matched)


class MemoryCatalogStore:
    """
    Reference data for order validation. A permissive catalogue accepts
    any id, which is how the memory backend runs without seeded data.
    """

    def __init__(self, permissive: bool = False):
        self.permissive = permissive
        self.suppliers: Dict[UUID, bool] = {}
        self.stocks: set = set()
        self.products: set = set()

    def add_supplier(self, supplier_id: UUID, is_active: bool = True) -> UUID:
        self.suppliers[supplier_id] = is_active
        return supplier_id

    def add_stock(self, stock_id: UUID) -> UUID:
        self.stocks.add(stock_id)
        return stock_id

    def add_product(self, product_id: UUID) -> UUID:
        self.products.add(product_id)
        return product_id

    async def supplier_active(self, supplier_id: UUID) -> Optional[bool]:
        if self.permissive:
            return self.suppliers.get(supplier_id, True)
        return self.suppliers.get(supplier_id)

    async def stock_exists(self, stock_id: UUID) -> bool:
        return self.permissive or stock_id in self.stocks

    async def missing_products(self, product_ids: Iterable[UUID]) -> List[UUID]:
        if self.permissive:
            return []
        return [pid for pid in dict.fromkeys(product_ids) if pid not in self.products]


def build_memory_stores(permissive_catalog: bool = False) -> Stores:
    return Stores(
        orders=MemoryOrderStore(),
        stock_items=MemoryStockItemStore(),
        catalog=MemoryCatalogStore(permissive=permissive_catalog),
    )
