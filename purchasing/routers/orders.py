from datetime import date
from typing import FrozenSet, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from pydantic import ValidationError

from purchasing.core.exceptions import PreconditionFailed
from purchasing.dependencies.auth import get_admin_actor, get_current_actor
from purchasing.dependencies.services import get_lifecycle, get_stats
from purchasing.models.order import OrderStatus
from purchasing.models.user import Actor
from purchasing.schemas.order import (
    AssignOrderSchema,
    ItemUpdatesAdapter,
    OrderAnalyticsResponse,
    OrderCreateSchema,
    OrderEnvelope,
    OrderListResponse,
    OrderResponse,
    OrderStatsResponse,
    OrderUpdateSchema,
    VerifyOrderResponse,
    VerifyOrderSchema,
)
from purchasing.services.lifecycle import OrderLifecycle
from purchasing.services.receipts import ReceiptUpload
from purchasing.services.stats import OrderStatsService, paid_window
from purchasing.stores.base import SORT_FIELDS, OrderQuery, PageRequest, day_bounds

router = APIRouter()


def _split(raw: Optional[str]) -> list:
    if not raw:
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


def _parse_statuses(raw: Optional[str]) -> FrozenSet[OrderStatus]:
    try:
        return frozenset(OrderStatus(value) for value in _split(raw))
    except ValueError:
        raise PreconditionFailed(f"Invalid status filter: {raw}")


def _parse_ids(raw: Optional[str]) -> FrozenSet[UUID]:
    try:
        return frozenset(UUID(value) for value in _split(raw))
    except ValueError:
        raise PreconditionFailed(f"Invalid supplier id list: {raw}")


def _build_query(
    status_filter: Optional[str],
    supplier_ids: Optional[str],
    search: Optional[str],
    date_from: Optional[date],
    date_to: Optional[date],
    staff_id: Optional[UUID] = None,
) -> OrderQuery:
    created_from, created_before = day_bounds(date_from, date_to)
    return OrderQuery(
        statuses=_parse_statuses(status_filter),
        staff_id=staff_id,
        supplier_ids=_parse_ids(supplier_ids),
        search=search.strip() if search and search.strip() else None,
        created_from=created_from,
        created_before=created_before,
    )


# ==========================================
# 1. CREATE PURCHASE ORDER
# ==========================================
@router.post("", response_model=OrderEnvelope, status_code=status.HTTP_201_CREATED)
async def create_order(
    data: OrderCreateSchema,
    actor: Actor = Depends(get_admin_actor),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    """
    Create a purchase order in 'not_assigned'.
    The total is computed from the lines; a client-sent total is ignored.
    """
    order = await lifecycle.create(data, actor)
    return OrderEnvelope(message="Purchase order created", order=OrderResponse.from_order(order))


# ==========================================
# 2. LIST PURCHASE ORDERS
# ==========================================
@router.get("", response_model=OrderListResponse)
async def list_orders(
    status_filter: Optional[str] = Query(None, alias="status"),
    staff_id: Optional[UUID] = Query(None, alias="staffId"),
    supplier_ids: Optional[str] = Query(None, alias="supplierIds"),
    order_number: Optional[str] = Query(None, alias="orderNumber"),
    search: Optional[str] = None,
    date_from: Optional[date] = Query(None, alias="dateFrom"),
    date_to: Optional[date] = Query(None, alias="dateTo"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort_by: str = Query("createdAt", alias="sortBy"),
    order: str = Query("desc", pattern="^(asc|desc)$"),
    actor: Actor = Depends(get_current_actor),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    """
    Staff only see orders assigned to them; staffId is honoured for admins.
    """
    if sort_by not in SORT_FIELDS:
        raise PreconditionFailed(f"Cannot sort by '{sort_by}'")

    query = _build_query(status_filter, supplier_ids, search or order_number, date_from, date_to, staff_id)
    result = await lifecycle.list(
        query,
        PageRequest(page=page, limit=limit, sort_by=sort_by, descending=order == "desc"),
        actor,
    )
    return OrderListResponse(
        orders=[OrderResponse.from_order(o) for o in result.orders],
        total=result.total,
        pages=result.pages,
    )


# ==========================================
# 3. DASHBOARD STATS
# ==========================================
@router.get("/stats", response_model=OrderStatsResponse)
async def order_stats(
    status_filter: Optional[str] = Query(None, alias="status"),
    supplier_ids: Optional[str] = Query(None, alias="supplierIds"),
    search: Optional[str] = None,
    date_from: Optional[date] = Query(None, alias="dateFrom"),
    date_to: Optional[date] = Query(None, alias="dateTo"),
    paid_from: Optional[date] = Query(None, alias="paidFrom"),
    paid_to: Optional[date] = Query(None, alias="paidTo"),
    actor: Actor = Depends(get_current_actor),
    stats: OrderStatsService = Depends(get_stats),
):
    """
    Counts per status plus the value of orders paid this month, or paid
    within paidFrom..paidTo when given. Any filter switches to the filtered
    computation over the matching orders.
    """
    query = _build_query(status_filter, supplier_ids, search, date_from, date_to)
    result = await stats.stats_for(actor, query, paid_window(paid_from, paid_to))
    return OrderStatsResponse.from_stats(result)


# ==========================================
# 4. PERIOD ANALYTICS
# ==========================================
@router.get("/analytics", response_model=OrderAnalyticsResponse)
async def order_analytics(
    period: str = "month",
    actor: Actor = Depends(get_current_actor),
    stats: OrderStatsService = Depends(get_stats),
):
    report = await stats.analytics(actor, period)
    return OrderAnalyticsResponse.from_report(report)


# ==========================================
# 5. GET SINGLE PURCHASE ORDER
# ==========================================
@router.get("/{order_id}", response_model=OrderEnvelope)
async def get_order(
    order_id: UUID,
    actor: Actor = Depends(get_current_actor),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    order = await lifecycle.get(order_id, actor)
    return OrderEnvelope(order=OrderResponse.from_order(order))


# ==========================================
# 6. ASSIGN TO STAFF
# ==========================================
@router.post("/{order_id}/assign", response_model=OrderEnvelope)
async def assign_order(
    order_id: UUID,
    data: AssignOrderSchema,
    actor: Actor = Depends(get_current_actor),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    order = await lifecycle.assign(order_id, data.staff_id, actor)
    return OrderEnvelope(message="Order assigned", order=OrderResponse.from_order(order))


# ==========================================
# 7. SUBMIT FOR REVIEW (RECEIPT UPLOAD)
# ==========================================
@router.post("/{order_id}/review", response_model=OrderEnvelope)
async def submit_for_review(
    order_id: UUID,
    receipt: Optional[UploadFile] = File(None),
    items_updates: Optional[str] = Form(None, alias="itemsUpdates"),
    actor: Actor = Depends(get_current_actor),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    """
    The assigned staff member attaches the supplier's receipt (bon) and may
    correct quantities and unit costs of the lines they actually bought.
    """
    updates = []
    if items_updates and items_updates.strip():
        try:
            updates = ItemUpdatesAdapter.validate_json(items_updates)
        except ValidationError:
            raise PreconditionFailed("itemsUpdates must be a JSON list of {itemId, quantity, unitCost}")

    upload = None
    if receipt is not None:
        upload = ReceiptUpload(
            filename=receipt.filename or "",
            content_type=receipt.content_type or "",
            data=await receipt.read(),
        )

    order = await lifecycle.submit_for_review(order_id, actor, upload, updates)
    return OrderEnvelope(message="Order submitted for review", order=OrderResponse.from_order(order))


# ==========================================
# 8. VERIFY (CREATES STOCK ITEMS)
# ==========================================
@router.post("/{order_id}/verify", response_model=VerifyOrderResponse)
async def verify_order(
    order_id: UUID,
    data: VerifyOrderSchema,
    actor: Actor = Depends(get_current_actor),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    """
    Admin checks the receipt and books the goods into a stock.
    One stock item is created per order line.
    """
    result = await lifecycle.verify(order_id, data.stock_id, actor)
    return VerifyOrderResponse(
        message=f"Order verified, {result.stock_items_count} stock items created",
        order=OrderResponse.from_order(result.order),
        stock_items_count=result.stock_items_count,
    )


# ==========================================
# 9. UPDATE (PAY / CANCEL / NOTES)
# ==========================================
@router.put("/{order_id}", response_model=OrderEnvelope)
async def update_order(
    order_id: UUID,
    data: OrderUpdateSchema,
    actor: Actor = Depends(get_current_actor),
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
):
    order = await lifecycle.update(order_id, data, actor)
    return OrderEnvelope(message="Order updated", order=OrderResponse.from_order(order))
