from beanie import Document
from pydantic import Field
from uuid import UUID, uuid4
from datetime import datetime

from purchasing.models.order import utcnow


class StockDocument(Document):
    """A warehouse (cold room, dry store, ...) holding stock items."""
    id: UUID = Field(default_factory=uuid4)

    name: str
    description: str = ""
    location: str = ""

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "stocks"
