"""
Storage contracts used by the order services.

The services never talk to a database directly: they go through an
OrderStore, a StockItemStore and a CatalogStore. ``purchasing.stores.mongo``
implements them on Beanie documents, ``purchasing.stores.memory`` keeps
everything in process.
"""

from dataclasses import dataclass, replace
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, FrozenSet, Iterable, List, Optional, Protocol, Sequence, Tuple
from uuid import UUID

from purchasing.models.order import OrderStatus, PurchaseOrder
from purchasing.models.stock_item import StockItem

# API sort keys -> model attribute
SORT_FIELDS = {
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "totalAmount": "total_amount",
    "orderNumber": "order_number",
    "status": "status",
}


@dataclass(frozen=True)
class OrderQuery:
    statuses: FrozenSet[OrderStatus] = frozenset()
    staff_id: Optional[UUID] = None
    supplier_ids: FrozenSet[UUID] = frozenset()
    search: Optional[str] = None
    created_from: Optional[datetime] = None    # inclusive
    created_before: Optional[datetime] = None  # exclusive

    @property
    def is_filtered(self) -> bool:
        """True when the caller narrowed the set beyond its own access scope."""
        return bool(
            self.statuses
            or self.supplier_ids
            or self.search
            or self.created_from
            or self.created_before
        )

    def scoped_to(self, staff_id: UUID) -> "OrderQuery":
        return replace(self, staff_id=staff_id)

    def matches(self, order: PurchaseOrder) -> bool:
        if self.statuses and order.status not in self.statuses:
            return False
        if self.staff_id is not None and order.staff_id != self.staff_id:
            return False
        if self.supplier_ids and order.supplier_id not in self.supplier_ids:
            return False
        if self.search:
            needle = self.search.lower()
            haystack = [order.order_number, order.notes or ""]
            if not any(needle in value.lower() for value in haystack):
                return False
        if self.created_from and order.created_at < self.created_from:
            return False
        if self.created_before and order.created_at >= self.created_before:
            return False
        return True


def day_bounds(date_from: Optional[date], date_to: Optional[date]) -> Tuple[Optional[datetime], Optional[datetime]]:
    """Turn an inclusive calendar-day range into [start, end) UTC datetimes."""
    start = datetime.combine(date_from, time.min, tzinfo=timezone.utc) if date_from else None
    end = (
        datetime.combine(date_to + timedelta(days=1), time.min, tzinfo=timezone.utc)
        if date_to
        else None
    )
    return start, end


@dataclass(frozen=True)
class PageRequest:
    page: int = 1
    limit: int = 10
    sort_by: str = "createdAt"
    descending: bool = True

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit

    @property
    def sort_field(self) -> str:
        return SORT_FIELDS.get(self.sort_by, "created_at")


class OrderStore(Protocol):
    async def insert(self, order: PurchaseOrder) -> None:
        """Persist a new order. Raises DuplicateOrderNumber on a taken number."""

    async def get(self, order_id: UUID) -> Optional[PurchaseOrder]:
        ...

    async def replace(self, order: PurchaseOrder, expected_revision: int) -> bool:
        """
        Overwrite the stored order only if its revision still equals
        ``expected_revision``. Returns False when another write got there first.
        """

    async def find(self, query: OrderQuery, page: PageRequest) -> Tuple[List[PurchaseOrder], int]:
        ...

    async def find_all(self, query: OrderQuery) -> List[PurchaseOrder]:
        ...

    async def count_by_status(self, query: OrderQuery) -> Dict[OrderStatus, int]:
        ...

    async def sum_paid_between(self, start: datetime, end: datetime, query: OrderQuery) -> float:
        """Sum of total_amount over paid orders with paid_date in [start, end)."""


class StockItemStore(Protocol):
    async def insert_many(self, items: Sequence[StockItem]) -> List[StockItem]:
        """All-or-nothing insert: on failure nothing from the batch remains."""

    async def delete_for_claim(self, claim: UUID) -> int:
        """Remove the lots one verification claim created."""

    async def delete_for_order(self, order_id: UUID, keep_claim: Optional[UUID] = None) -> int:
        """Remove an order's lots, except those created by ``keep_claim``."""

    async def find(
        self,
        stock_id: Optional[UUID],
        product_id: Optional[UUID],
        skip: int,
        limit: int,
    ) -> Tuple[List[StockItem], int]:
        ...


class CatalogStore(Protocol):
    async def supplier_active(self, supplier_id: UUID) -> Optional[bool]:
        """None when the supplier does not exist."""

    async def stock_exists(self, stock_id: UUID) -> bool:
        ...

    async def missing_products(self, product_ids: Iterable[UUID]) -> List[UUID]:
        ...


@dataclass
class Stores:
    orders: OrderStore
    stock_items: StockItemStore
    catalog: CatalogStore
