from typing import Annotated, List, Optional
from datetime import datetime, timezone
from enum import Enum
from beanie import Document, Indexed
from pydantic import BaseModel, Field, model_validator
from uuid import UUID, uuid4


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderStatus(str, Enum):
    NOT_ASSIGNED = "not_assigned"      # Created by an admin, nobody buying yet
    ASSIGNED = "assigned"              # A staff member goes to the supplier
    PENDING_REVIEW = "pending_review"  # Receipt uploaded, waiting for admin check
    VERIFIED = "verified"              # Goods are in a warehouse as stock items
    PAID = "paid"                      # Supplier paid (terminal)
    CANCELED = "canceled"              # Dropped before verification (terminal)

    @classmethod
    def _missing_(cls, value):
        # Older clients send "not assigned" with a space
        if isinstance(value, str):
            normalized = value.strip().lower().replace(" ", "_")
            for member in cls:
                if member.value == normalized:
                    return member
        return None


TERMINAL_STATUSES = frozenset({OrderStatus.PAID, OrderStatus.CANCELED})


class OrderItem(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    product_id: UUID
    quantity: float = Field(gt=0)
    unit_cost: float = Field(ge=0)
    expiration_date: Optional[datetime] = None

    # Lot tracking, filled from quantity when the line is created or edited
    remaining_quantity: float = 0
    is_expired: bool = False
    expired_quantity: float = 0

    @property
    def line_total(self) -> float:
        return self.quantity * self.unit_cost


class StatusHistoryEntry(BaseModel):
    from_status: Optional[OrderStatus] = None
    to_status: OrderStatus
    at: datetime
    by: Optional[UUID] = None


class VerificationLock(BaseModel):
    token: UUID
    acquired_at: datetime
    by: Optional[UUID] = None


def compute_total(items: List[OrderItem]) -> float:
    return sum(item.line_total for item in items)


class PurchaseOrder(BaseModel):
    """
    A purchase request to a supplier, moved through the approval workflow.

    This is the storage-independent shape the services work with; the Mongo
    store maps it onto PurchaseOrderDocument.
    """
    id: UUID = Field(default_factory=uuid4)
    order_number: str
    supplier_id: UUID
    staff_id: Optional[UUID] = None
    items: List[OrderItem] = Field(min_length=1)

    status: OrderStatus = OrderStatus.NOT_ASSIGNED
    status_history: List[StatusHistoryEntry] = Field(default_factory=list)
    total_amount: float = 0

    receipt_ref: Optional[str] = None  # the "bon"
    notes: Optional[str] = None
    expected_date: Optional[datetime] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    # Workflow timestamps, each set the first time the order enters the stage
    assigned_date: Optional[datetime] = None
    pending_review_date: Optional[datetime] = None
    verified_date: Optional[datetime] = None
    paid_date: Optional[datetime] = None
    canceled_date: Optional[datetime] = None

    # Concurrency control
    revision: int = 0
    verification_lock: Optional[VerificationLock] = None

    @model_validator(mode="after")
    def _sync_total(self):
        self.total_amount = compute_total(self.items)
        return self

    def recompute_total(self) -> float:
        self.total_amount = compute_total(self.items)
        return self.total_amount

    def append_note(self, text: Optional[str]) -> None:
        if not text or not text.strip():
            return
        self.notes = f"{self.notes}\n{text.strip()}" if self.notes else text.strip()

    def item_by_id(self, item_id: UUID) -> Optional[OrderItem]:
        return next((item for item in self.items if item.id == item_id), None)


class PurchaseOrderDocument(Document):
    id: UUID = Field(default_factory=uuid4)
    order_number: Annotated[str, Indexed(unique=True)]
    supplier_id: Annotated[UUID, Indexed()]
    staff_id: Annotated[Optional[UUID], Indexed()] = None
    items: List[OrderItem]

    status: Annotated[OrderStatus, Indexed()] = OrderStatus.NOT_ASSIGNED
    status_history: List[StatusHistoryEntry] = Field(default_factory=list)
    total_amount: float = 0

    receipt_ref: Optional[str] = None
    notes: Optional[str] = None
    expected_date: Optional[datetime] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    assigned_date: Optional[datetime] = None
    pending_review_date: Optional[datetime] = None
    verified_date: Optional[datetime] = None
    paid_date: Optional[datetime] = None
    canceled_date: Optional[datetime] = None

    revision: int = 0
    verification_lock: Optional[VerificationLock] = None

    class Settings:
        name = "purchase_orders"
