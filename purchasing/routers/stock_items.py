import logging
import math
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from purchasing.core.exceptions import NotFound
from purchasing.dependencies.auth import get_admin_actor, get_current_actor
from purchasing.dependencies.services import get_stores
from purchasing.models.order import utcnow
from purchasing.models.stock_item import StockItem
from purchasing.models.user import Actor
from purchasing.schemas.stock_item import (
    StockItemBulkCreate,
    StockItemBulkResponse,
    StockItemListResponse,
    StockItemResponse,
)
from purchasing.stores.base import Stores

logger = logging.getLogger(__name__)

router = APIRouter()


# ==========================================
# 1. BULK CREATE STOCK ITEMS
# ==========================================
@router.post("/bulk", response_model=StockItemBulkResponse, status_code=status.HTTP_201_CREATED)
async def bulk_create_stock_items(
    data: StockItemBulkCreate,
    actor: Actor = Depends(get_admin_actor),
    stores: Stores = Depends(get_stores),
):
    """
    Book several lots into one stock at once. Either every lot is saved or
    none is.
    """
    if not await stores.catalog.stock_exists(data.stock_id):
        raise NotFound("Stock not found")

    missing = await stores.catalog.missing_products(item.product for item in data.items)
    if missing:
        raise NotFound(f"Product not found: {', '.join(str(pid) for pid in missing)}")

    now = utcnow()
    created = await stores.stock_items.insert_many([
        StockItem(
            stock_id=data.stock_id,
            product_id=item.product,
            price=item.price,
            quantity=item.quantity,
            expire_at=item.expire_at,
            created_at=now,
        )
        for item in data.items
    ])
    logger.info("Stock %s: %d stock items added by %s", data.stock_id, len(created), actor.user_id)

    return StockItemBulkResponse(
        message=f"{len(created)} stock items created",
        stock_items=[StockItemResponse.from_item(item) for item in created],
        count=len(created),
    )


# ==========================================
# 2. LIST STOCK ITEMS
# ==========================================
@router.get("", response_model=StockItemListResponse)
async def list_stock_items(
    stock: Optional[UUID] = None,
    product: Optional[UUID] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
    stores: Stores = Depends(get_stores),
):
    items, total = await stores.stock_items.find(stock, product, (page - 1) * limit, limit)
    return StockItemListResponse(
        stock_items=[StockItemResponse.from_item(item) for item in items],
        total=total,
        pages=math.ceil(total / limit),
    )
