from beanie import Document
from pydantic import Field
from typing import Optional
from uuid import UUID, uuid4
from datetime import datetime

from purchasing.models.order import utcnow


class ProductDocument(Document):
    """
    Catalogue entry. Products are maintained by the catalogue service;
    orders only check that the ids they reference exist.
    """
    id: UUID = Field(default_factory=uuid4)

    name: str = Field(...)
    barcode: Optional[str] = None
    unit: str = "unit"                 # e.g. "kg", "L", "box"
    min_qty: float = Field(default=0)  # Alert trigger level
    image_url: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "products"
