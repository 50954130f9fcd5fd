from typing import Optional, Annotated
from beanie import Document, Indexed
from pydantic import BaseModel, Field
from uuid import UUID, uuid4
from datetime import datetime

from purchasing.models.order import utcnow


class StockItem(BaseModel):
    """
    One lot of a product sitting in a specific warehouse (stock).
    Verified purchase orders turn each of their lines into one of these.
    """
    id: UUID = Field(default_factory=uuid4)
    stock_id: UUID
    product_id: UUID
    price: float = Field(ge=0)
    quantity: float = Field(ge=0)
    expire_at: Optional[datetime] = None

    # Set when the lot came from an order's verification
    source_order_id: Optional[UUID] = None
    # Verification claim that created the lot
    source_claim: Optional[UUID] = None
    created_at: datetime = Field(default_factory=utcnow)


class StockItemDocument(Document):
    id: UUID = Field(default_factory=uuid4)
    stock_id: Annotated[UUID, Indexed()]
    product_id: Annotated[UUID, Indexed()]
    price: float
    quantity: float
    expire_at: Optional[datetime] = None

    source_order_id: Annotated[Optional[UUID], Indexed()] = None
    source_claim: Annotated[Optional[UUID], Indexed()] = None
    created_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "stock_items"
