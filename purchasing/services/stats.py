"""
Dashboard numbers for purchase orders.

Two modes produce the same OrderStats shape:

- global: counted by the store (``OrderStatsService.global_stats``), one
  aggregation per figure, nothing paged to the client;
- filtered: computed from an order list the caller already narrowed
  (``summarize_orders``), so the "filtered" and "global" cards agree.

``period_breakdown`` backs the analytics endpoint (orders per week, month
or year).
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from purchasing.core.exceptions import PreconditionFailed
from purchasing.models.order import OrderStatus, PurchaseOrder, utcnow
from purchasing.models.user import Actor
from purchasing.stores.base import OrderQuery, OrderStore, day_bounds

PERIOD_LIMITS = {"week": 8, "month": 12, "year": 5}


@dataclass(frozen=True)
class OrderStats:
    not_assigned: int = 0
    assigned: int = 0
    pending_review: int = 0
    verified: int = 0
    paid: int = 0
    total_value: float = 0.0


def month_bounds(now: datetime) -> Tuple[datetime, datetime]:
    """[first instant of now's month, first instant of the next month)"""
    start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


def paid_window(paid_from: Optional[date], paid_to: Optional[date]) -> Optional[Tuple[datetime, datetime]]:
    """Inclusive paid-date day range for the value card. An open side is unbounded."""
    if paid_from is None and paid_to is None:
        return None
    if paid_from and paid_to and paid_from > paid_to:
        raise PreconditionFailed("paidFrom must not be after paidTo")
    start, end = day_bounds(paid_from, paid_to)
    return (
        start or datetime(1970, 1, 1, tzinfo=timezone.utc),
        end or datetime.max.replace(tzinfo=timezone.utc),
    )


def _build_stats(counts: Mapping[OrderStatus, int], total_value: float) -> OrderStats:
    return OrderStats(
        not_assigned=counts.get(OrderStatus.NOT_ASSIGNED, 0),
        assigned=counts.get(OrderStatus.ASSIGNED, 0),
        pending_review=counts.get(OrderStatus.PENDING_REVIEW, 0),
        verified=counts.get(OrderStatus.VERIFIED, 0),
        paid=counts.get(OrderStatus.PAID, 0),
        total_value=round(total_value, 2),
    )


def summarize_orders(
    orders: Iterable[PurchaseOrder],
    now: datetime,
    paid_between: Optional[Tuple[datetime, datetime]] = None,
) -> OrderStats:
    start, end = paid_between or month_bounds(now)
    counts: Counter = Counter()
    total_value = 0.0
    for order in orders:
        counts[order.status] += 1
        if (
            order.status == OrderStatus.PAID
            and order.paid_date is not None
            and start <= order.paid_date < end
        ):
            total_value += order.total_amount
    return _build_stats(counts, total_value)


@dataclass
class PeriodBucket:
    label: str
    total_orders: int = 0
    total_spent: float = 0.0
    counts: Dict[OrderStatus, int] = field(default_factory=dict)


@dataclass
class AnalyticsReport:
    period: str
    total_orders: int
    counts: Dict[OrderStatus, int]
    total_spent: float
    buckets: List[PeriodBucket]


def _period_key(moment: datetime, period: str) -> Tuple[Tuple[int, ...], str]:
    if period == "week":
        iso_year, iso_week, _ = moment.isocalendar()
        return (iso_year, iso_week), f"{iso_year}-W{iso_week:02d}"
    if period == "month":
        return (moment.year, moment.month), f"{moment.year}-{moment.month:02d}"
    return (moment.year,), str(moment.year)


def period_breakdown(orders: Iterable[PurchaseOrder], period: str) -> List[PeriodBucket]:
    """Most recent buckets by created_at (8 weeks, 12 months or 5 years), oldest first."""
    if period not in PERIOD_LIMITS:
        raise PreconditionFailed("Invalid period. Use 'week', 'month' or 'year'")

    buckets: Dict[Tuple[int, ...], PeriodBucket] = {}
    for order in orders:
        key, label = _period_key(order.created_at, period)
        bucket = buckets.setdefault(key, PeriodBucket(label=label))
        bucket.total_orders += 1
        bucket.counts[order.status] = bucket.counts.get(order.status, 0) + 1
        if order.status == OrderStatus.PAID:
            bucket.total_spent += order.total_amount

    recent = sorted(buckets)[-PERIOD_LIMITS[period]:]
    return [buckets[key] for key in recent]


class OrderStatsService:
    def __init__(self, store: OrderStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    async def global_stats(
        self,
        scope: OrderQuery = OrderQuery(),
        paid_between: Optional[Tuple[datetime, datetime]] = None,
    ) -> OrderStats:
        start, end = paid_between or month_bounds(self.clock())
        counts = await self.store.count_by_status(scope)
        total_value = await self.store.sum_paid_between(start, end, scope)
        return _build_stats(counts, total_value)

    async def stats_for(
        self,
        actor: Actor,
        query: OrderQuery = OrderQuery(),
        paid_between: Optional[Tuple[datetime, datetime]] = None,
    ) -> OrderStats:
        """Staff only ever see their own orders; filters switch to the list mode."""
        scope = query if actor.is_admin else query.scoped_to(actor.user_id)
        if query.is_filtered:
            orders = await self.store.find_all(scope)
            return summarize_orders(orders, self.clock(), paid_between)
        return await self.global_stats(scope, paid_between)

    async def analytics(self, actor: Actor, period: str = "month") -> AnalyticsReport:
        if period not in PERIOD_LIMITS:
            raise PreconditionFailed("Invalid period. Use 'week', 'month' or 'year'")
        scope = OrderQuery() if actor.is_admin else OrderQuery(staff_id=actor.user_id)
        orders = await self.store.find_all(scope)
        counts = Counter(order.status for order in orders)
        total_spent = sum(o.total_amount for o in orders if o.status == OrderStatus.PAID)
        return AnalyticsReport(
            period=period,
            total_orders=len(orders),
            counts=dict(counts),
            total_spent=round(total_spent, 2),
            buckets=period_breakdown(orders, period),
        )
