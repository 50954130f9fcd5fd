"""
MongoDB stores built on the Beanie documents in ``purchasing.models``.

The order write path is a compare-and-set on the ``revision`` field: the
update only matches when the stored revision is the one the caller read.
"""

import logging
import re
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
from uuid import UUID

from beanie.operators import In, Set
from pymongo.errors import DuplicateKeyError, PyMongoError

from purchasing.core.exceptions import DuplicateOrderNumber, StoreFailure
from purchasing.models.order import OrderStatus, PurchaseOrder, PurchaseOrderDocument
from purchasing.models.product import ProductDocument
from purchasing.models.stock import StockDocument
from purchasing.models.stock_item import StockItem, StockItemDocument
from purchasing.models.supplier import SupplierDocument
from purchasing.stores.base import OrderQuery, PageRequest, Stores

logger = logging.getLogger(__name__)


def order_filter(query: OrderQuery) -> dict:
    f: dict = {}
    if query.statuses:
        f["status"] = {"$in": [s.value for s in query.statuses]}
    if query.staff_id is not None:
        f["staff_id"] = query.staff_id
    if query.supplier_ids:
        f["supplier_id"] = {"$in": list(query.supplier_ids)}
    if query.search:
        pattern = {"$regex": re.escape(query.search), "$options": "i"}
        f["$or"] = [{"order_number": pattern}, {"notes": pattern}]
    if query.created_from or query.created_before:
        f["created_at"] = {}
        if query.created_from:
            f["created_at"]["$gte"] = query.created_from
        if query.created_before:
            f["created_at"]["$lt"] = query.created_before
    return f


def _to_order(doc: PurchaseOrderDocument) -> PurchaseOrder:
    return PurchaseOrder.model_validate(doc.model_dump(exclude={"revision_id"}))


class MongoOrderStore:
    async def insert(self, order: PurchaseOrder) -> None:
        try:
            await PurchaseOrderDocument(**order.model_dump()).insert()
        except DuplicateKeyError as e:
            raise DuplicateOrderNumber(f"Order number {order.order_number} already exists") from e
        except PyMongoError as e:
            logger.error("Order insert failed: %s", e)
            raise StoreFailure(f"Could not save order: {e}") from e

    async def get(self, order_id: UUID) -> Optional[PurchaseOrder]:
        try:
            doc = await PurchaseOrderDocument.get(order_id)
        except PyMongoError as e:
            raise StoreFailure(f"Could not load order: {e}") from e
        return _to_order(doc) if doc else None

    async def replace(self, order: PurchaseOrder, expected_revision: int) -> bool:
        payload = order.model_dump(exclude={"id"})
        try:
            result = await PurchaseOrderDocument.find_one(
                PurchaseOrderDocument.id == order.id,
                PurchaseOrderDocument.revision == expected_revision,
            ).update(Set(payload))
        except PyMongoError as e:
            logger.error("Order %s update failed: %s", order.order_number, e)
            raise StoreFailure(f"Could not save order: {e}") from e
        return result is not None and result.matched_count == 1

    async def find(self, query: OrderQuery, page: PageRequest) -> Tuple[List[PurchaseOrder], int]:
        f = order_filter(query)
        direction = "-" if page.descending else ""
        try:
            docs = await (
                PurchaseOrderDocument.find(f)
                .sort(f"{direction}{page.sort_field}")
                .skip(page.skip)
                .limit(page.limit)
                .to_list()
            )
            total = await PurchaseOrderDocument.find(f).count()
        except PyMongoError as e:
            raise StoreFailure(f"Could not list orders: {e}") from e
        return [_to_order(d) for d in docs], total

    async def find_all(self, query: OrderQuery) -> List[PurchaseOrder]:
        try:
            docs = await PurchaseOrderDocument.find(order_filter(query)).to_list()
        except PyMongoError as e:
            raise StoreFailure(f"Could not list orders: {e}") from e
        return [_to_order(d) for d in docs]

    async def count_by_status(self, query: OrderQuery) -> Dict[OrderStatus, int]:
        pipeline = [
            {"$match": order_filter(query)},
            {"$group": {"_id": "$status", "count": {"$sum": 1}}},
        ]
        try:
            rows = await PurchaseOrderDocument.aggregate(pipeline).to_list()
        except PyMongoError as e:
            raise StoreFailure(f"Could not compute order stats: {e}") from e
        return {OrderStatus(row["_id"]): row["count"] for row in rows}

    async def sum_paid_between(self, start: datetime, end: datetime, query: OrderQuery) -> float:
        match = order_filter(query)
        match["status"] = OrderStatus.PAID.value
        match["paid_date"] = {"$gte": start, "$lt": end}
        pipeline = [
            {"$match": match},
            {"$group": {"_id": None, "total": {"$sum": "$total_amount"}}},
        ]
        try:
            rows = await PurchaseOrderDocument.aggregate(pipeline).to_list()
        except PyMongoError as e:
            raise StoreFailure(f"Could not compute order stats: {e}") from e
        return rows[0]["total"] if rows else 0.0


class MongoStockItemStore:
    async def insert_many(self, items: Sequence[StockItem]) -> List[StockItem]:
        docs = [StockItemDocument(**item.model_dump()) for item in items]
        try:
            await StockItemDocument.insert_many(docs)
        except PyMongoError as e:
            # insert_many may have written part of the batch before failing
            ids = [item.id for item in items]
            logger.warning("Stock item batch failed, removing %d partial inserts", len(ids))
            try:
                await StockItemDocument.find(In(StockItemDocument.id, ids)).delete()
            except PyMongoError as cleanup_error:
                logger.error("Could not remove partial stock item batch %s: %s", ids, cleanup_error)
            raise StoreFailure(f"Could not create stock items: {e}") from e
        return list(items)

    async def _delete(self, f: dict) -> int:
        try:
            result = await StockItemDocument.find(f).delete()
        except PyMongoError as e:
            raise StoreFailure(f"Could not delete stock items: {e}") from e
        return result.deleted_count if result else 0

    async def delete_for_claim(self, claim: UUID) -> int:
        return await self._delete({"source_claim": claim})

    async def delete_for_order(self, order_id: UUID, keep_claim: Optional[UUID] = None) -> int:
        f: dict = {"source_order_id": order_id}
        if keep_claim is not None:
            f["source_claim"] = {"$ne": keep_claim}
        return await self._delete(f)

    async def find(
        self,
        stock_id: Optional[UUID],
        product_id: Optional[UUID],
        skip: int,
        limit: int,
    ) -> Tuple[List[StockItem], int]:
        f: dict = {}
        if stock_id is not None:
            f["stock_id"] = stock_id
        if product_id is not None:
            f["product_id"] = product_id
        try:
            docs = await StockItemDocument.find(f).sort("-created_at").skip(skip).limit(limit).to_list()
            total = await StockItemDocument.find(f).count()
        except PyMongoError as e:
            raise StoreFailure(f"Could not list stock items: {e}") from e
        items = [StockItem.model_validate(d.model_dump(exclude={"revision_id"})) for d in docs]
        return items, total


class MongoCatalogStore:
    async def supplier_active(self, supplier_id: UUID) -> Optional[bool]:
        try:
            supplier = await SupplierDocument.get(supplier_id)
        except PyMongoError as e:
            raise StoreFailure(f"Could not load supplier: {e}") from e
        return supplier.is_active if supplier else None

    async def stock_exists(self, stock_id: UUID) -> bool:
        try:
            stock = await StockDocument.get(stock_id)
        except PyMongoError as e:
            raise StoreFailure(f"Could not load stock: {e}") from e
        return stock is not None

    async def missing_products(self, product_ids: Iterable[UUID]) -> List[UUID]:
        wanted = list(dict.fromkeys(product_ids))
        try:
            found = await ProductDocument.find({"_id": {"$in": wanted}}).to_list()
        except PyMongoError as e:
            raise StoreFailure(f"Could not load products: {e}") from e
        found_ids = {p.id for p in found}
        return [pid for pid in wanted if pid not in found_ids]


def build_mongo_stores() -> Stores:
    return Stores(
        orders=MongoOrderStore(),
        stock_items=MongoStockItemStore(),
        catalog=MongoCatalogStore(),
    )
