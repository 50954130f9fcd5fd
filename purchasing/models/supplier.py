from beanie import Document
from pydantic import Field, EmailStr
from typing import Optional
from uuid import UUID, uuid4
from datetime import datetime

from purchasing.models.order import utcnow


class SupplierDocument(Document):
    id: UUID = Field(default_factory=uuid4)

    # Company Details
    name: str = Field(...)
    contact_person: Optional[str] = None

    # Contact Info
    email: Optional[EmailStr] = None
    phone: str = Field(...)
    address: Optional[str] = None
    city: Optional[str] = None

    # Status
    is_active: bool = True

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "suppliers"
