from typing import List, Optional
from pydantic import Field
from uuid import UUID
from datetime import datetime

from purchasing.models.stock_item import StockItem
from purchasing.schemas.order import CamelModel


class StockItemInput(CamelModel):
    product: UUID
    price: float = Field(ge=0)
    quantity: float = Field(ge=0)
    expire_at: Optional[datetime] = None


class StockItemBulkCreate(CamelModel):
    stock_id: UUID
    items: List[StockItemInput] = Field(min_length=1)


class StockItemResponse(CamelModel):
    id: UUID
    stock: UUID
    product: UUID
    price: float
    quantity: float
    expire_at: Optional[datetime] = None
    source_order: Optional[UUID] = None
    created_at: datetime

    @classmethod
    def from_item(cls, item: StockItem) -> "StockItemResponse":
        return cls(
            id=item.id,
            stock=item.stock_id,
            product=item.product_id,
            price=item.price,
            quantity=item.quantity,
            expire_at=item.expire_at,
            source_order=item.source_order_id,
            created_at=item.created_at,
        )


class StockItemBulkResponse(CamelModel):
    message: str
    stock_items: List[StockItemResponse]
    count: int


class StockItemListResponse(CamelModel):
    stock_items: List[StockItemResponse]
    total: int
    pages: int
