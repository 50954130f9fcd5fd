from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel
from uuid import UUID
from datetime import datetime

from purchasing.models.order import OrderStatus, PurchaseOrder
from purchasing.services.stats import AnalyticsReport, OrderStats


class CamelModel(BaseModel):
    """JSON in and out of the order API uses camelCase keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Input for Creating an Order
class OrderItemInput(CamelModel):
    product_id: UUID
    quantity: float = Field(gt=0)
    unit_cost: float = Field(ge=0)
    expiration_date: Optional[datetime] = None


class OrderCreateSchema(CamelModel):
    supplier_id: UUID
    items: List[OrderItemInput] = Field(min_length=1)
    notes: Optional[str] = None
    expected_date: Optional[datetime] = None


# Input for the workflow endpoints
class AssignOrderSchema(CamelModel):
    staff_id: Optional[UUID] = None


class ItemUpdateInput(CamelModel):
    item_id: UUID
    quantity: float = Field(gt=0)
    unit_cost: float = Field(ge=0)
    expiration_date: Optional[datetime] = None


# The review form sends itemsUpdates as a JSON string next to the file
ItemUpdatesAdapter = TypeAdapter(List[ItemUpdateInput])


class VerifyOrderSchema(CamelModel):
    stock_id: Optional[UUID] = None


class OrderUpdateSchema(CamelModel):
    status: Optional[OrderStatus] = None
    notes: Optional[str] = None
    canceled_date: Optional[datetime] = None
    expected_date: Optional[datetime] = None


# Response schemas
class OrderItemResponse(CamelModel):
    id: UUID
    product_id: UUID
    quantity: float
    unit_cost: float
    expiration_date: Optional[datetime] = None
    remaining_quantity: float
    is_expired: bool
    expired_quantity: float


class StatusHistoryResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_: Optional[OrderStatus] = Field(default=None, alias="from")
    to: OrderStatus
    at: datetime
    by: Optional[UUID] = None


class OrderResponse(CamelModel):
    id: UUID
    order_number: str
    supplier_id: UUID
    staff_id: Optional[UUID] = None
    items: List[OrderItemResponse]
    status: OrderStatus
    status_history: List[StatusHistoryResponse]
    total_amount: float
    receipt_ref: Optional[str] = Field(default=None, alias="bon")
    notes: Optional[str] = None
    expected_date: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    assigned_date: Optional[datetime] = None
    pending_review_date: Optional[datetime] = None
    verified_date: Optional[datetime] = None
    paid_date: Optional[datetime] = None
    canceled_date: Optional[datetime] = None

    @classmethod
    def from_order(cls, order: PurchaseOrder) -> "OrderResponse":
        data = order.model_dump(exclude={"status_history", "revision", "verification_lock"})
        history = [
            StatusHistoryResponse(from_=e.from_status, to=e.to_status, at=e.at, by=e.by)
            for e in order.status_history
        ]
        return cls(**data, status_history=history)


class OrderEnvelope(BaseModel):
    message: Optional[str] = None
    order: OrderResponse


class VerifyOrderResponse(CamelModel):
    message: str
    order: OrderResponse
    stock_items_count: int


class OrderListResponse(BaseModel):
    orders: List[OrderResponse]
    total: int
    pages: int


class OrderStatsResponse(CamelModel):
    not_assigned_orders: int
    assigned_orders: int
    pending_review_orders: int
    verified_orders: int
    paid_orders: int
    total_value: float

    @classmethod
    def from_stats(cls, stats: OrderStats) -> "OrderStatsResponse":
        return cls(
            not_assigned_orders=stats.not_assigned,
            assigned_orders=stats.assigned,
            pending_review_orders=stats.pending_review,
            verified_orders=stats.verified,
            paid_orders=stats.paid,
            total_value=stats.total_value,
        )


class StatusCounts(CamelModel):
    total_orders: int
    not_assigned_orders: int = 0
    assigned_orders: int = 0
    pending_review_orders: int = 0
    verified_orders: int = 0
    paid_orders: int = 0


class AnalyticsSummary(StatusCounts):
    total_spent: float


class PeriodBucketResponse(StatusCounts):
    period_label: str
    total_spent: float


class OrderAnalyticsResponse(CamelModel):
    summary: AnalyticsSummary
    period: str
    data: List[PeriodBucketResponse]

    @classmethod
    def from_report(cls, report: AnalyticsReport) -> "OrderAnalyticsResponse":
        def counts(by_status) -> dict:
            return {
                "not_assigned_orders": by_status.get(OrderStatus.NOT_ASSIGNED, 0),
                "assigned_orders": by_status.get(OrderStatus.ASSIGNED, 0),
                "pending_review_orders": by_status.get(OrderStatus.PENDING_REVIEW, 0),
                "verified_orders": by_status.get(OrderStatus.VERIFIED, 0),
                "paid_orders": by_status.get(OrderStatus.PAID, 0),
            }

        return cls(
            summary=AnalyticsSummary(
                total_orders=report.total_orders,
                total_spent=report.total_spent,
                **counts(report.counts),
            ),
            period=report.period,
            data=[
                PeriodBucketResponse(
                    period_label=bucket.label,
                    total_orders=bucket.total_orders,
                    total_spent=round(bucket.total_spent, 2),
                    **counts(bucket.counts),
                )
                for bucket in report.buckets
            ],
        )
