"""
Transition handlers for purchase orders.

Each handler reads the order, asks the workflow to authorize the move,
applies the side effects on a copy and writes it back with a compare-and-set
on ``revision``. A concurrent writer therefore loses with TransitionConflict
and the stored order is left as the winner wrote it.

Verification additionally claims the order (``verification_lock``) before
creating stock items, so at most one request materializes stock for an order.
"""

import logging
import math
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence
from uuid import UUID, uuid4

from purchasing.core.exceptions import (
    DuplicateOrderNumber,
    Forbidden,
    InvalidTransition,
    NotFound,
    OrderNotFound,
    PreconditionFailed,
    StoreFailure,
    TransitionConflict,
)
from purchasing.models.order import (
    OrderItem,
    OrderStatus,
    PurchaseOrder,
    VerificationLock,
    utcnow,
)
from purchasing.models.user import Actor
from purchasing.schemas.order import ItemUpdateInput, OrderCreateSchema, OrderUpdateSchema
from purchasing.services.materialization import materialize_order
from purchasing.services.receipts import ReceiptStorage, ReceiptUpload
from purchasing.services.workflow import (
    TransitionContext,
    apply_transition,
    authorize_transition,
    lock_is_active,
    record_status,
)
from purchasing.stores.base import OrderQuery, PageRequest, Stores

logger = logging.getLogger(__name__)

ORDER_NUMBER_ATTEMPTS = 5


def generate_order_number(now: datetime) -> str:
    """ORD-YYYYMMDD-NNNN"""
    return f"ORD-{now:%Y%m%d}-{random.randint(1000, 9999)}"


@dataclass
class OrderPage:
    orders: List[PurchaseOrder]
    total: int
    pages: int


@dataclass
class VerificationResult:
    order: PurchaseOrder
    stock_items_count: int


class OrderLifecycle:
    def __init__(
        self,
        stores: Stores,
        receipts: ReceiptStorage,
        clock: Callable[[], datetime] = utcnow,
        verify_lock_ttl: timedelta = timedelta(minutes=5),
    ):
        self.orders = stores.orders
        self.stock_items = stores.stock_items
        self.catalog = stores.catalog
        self.receipts = receipts
        self.clock = clock
        self.verify_lock_ttl = verify_lock_ttl

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def _load(self, order_id: UUID) -> PurchaseOrder:
        order = await self.orders.get(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    async def get(self, order_id: UUID, actor: Actor) -> PurchaseOrder:
        order = await self._load(order_id)
        if not actor.is_admin and order.staff_id != actor.user_id:
            raise Forbidden("You can't access this order")
        return order

    async def list(self, query: OrderQuery, page: PageRequest, actor: Actor) -> OrderPage:
        if page.page < 1 or page.limit < 1:
            raise PreconditionFailed("Page and limit must be > 0")
        scope = query if actor.is_admin else query.scoped_to(actor.user_id)
        orders, total = await self.orders.find(scope, page)
        return OrderPage(orders=orders, total=total, pages=math.ceil(total / page.limit))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _commit(self, order: PurchaseOrder, expected_revision: int) -> PurchaseOrder:
        order.revision = expected_revision + 1
        order.updated_at = self.clock()
        if not await self.orders.replace(order, expected_revision):
            logger.warning(
                "Order %s changed concurrently (expected revision %d)",
                order.order_number,
                expected_revision,
            )
            raise TransitionConflict("Order was modified by another request, reload and retry")
        return order

    def _log_transition(self, order: PurchaseOrder, actor: Actor) -> None:
        entry = order.status_history[-1]
        logger.info(
            "Order %s: %s -> %s by %s",
            order.order_number,
            entry.from_status.value if entry.from_status else None,
            entry.to_status.value,
            actor.user_id,
        )

    async def create(self, data: OrderCreateSchema, actor: Actor) -> PurchaseOrder:
        if not actor.is_admin:
            raise Forbidden("Access Denied: only admins can create orders")

        supplier_active = await self.catalog.supplier_active(data.supplier_id)
        if supplier_active is None:
            raise NotFound("Supplier not found")
        if not supplier_active:
            raise PreconditionFailed("Cannot create an order for an inactive supplier")

        missing = await self.catalog.missing_products(item.product_id for item in data.items)
        if missing:
            raise NotFound(f"Product not found: {', '.join(str(pid) for pid in missing)}")

        now = self.clock()
        items = [
            OrderItem(
                product_id=item.product_id,
                quantity=item.quantity,
                unit_cost=item.unit_cost,
                expiration_date=item.expiration_date,
                remaining_quantity=item.quantity,
            )
            for item in data.items
        ]

        for _ in range(ORDER_NUMBER_ATTEMPTS):
            order = PurchaseOrder(
                order_number=generate_order_number(now),
                supplier_id=data.supplier_id,
                items=items,
                notes=data.notes,
                expected_date=data.expected_date,
                created_at=now,
                updated_at=now,
            )
            record_status(order, None, OrderStatus.NOT_ASSIGNED, now, actor.user_id)
            try:
                await self.orders.insert(order)
            except DuplicateOrderNumber:
                logger.warning("Order number %s taken, drawing another", order.order_number)
                continue
            self._log_transition(order, actor)
            return order

        raise DuplicateOrderNumber("Could not allocate a unique order number, retry")

    async def assign(self, order_id: UUID, staff_id: Optional[UUID], actor: Actor) -> PurchaseOrder:
        order = await self._load(order_id)
        now = self.clock()
        rule = authorize_transition(
            order,
            OrderStatus.ASSIGNED,
            actor,
            TransitionContext(staff_id=staff_id),
            now,
            self.verify_lock_ttl,
        )

        expected = order.revision
        order.staff_id = staff_id
        apply_transition(order, rule, actor, now)
        await self._commit(order, expected)
        self._log_transition(order, actor)
        return order

    async def submit_for_review(
        self,
        order_id: UUID,
        actor: Actor,
        receipt: Optional[ReceiptUpload],
        item_updates: Sequence[ItemUpdateInput] = (),
    ) -> PurchaseOrder:
        order = await self._load(order_id)
        now = self.clock()
        rule = authorize_transition(
            order,
            OrderStatus.PENDING_REVIEW,
            actor,
            TransitionContext(receipt_ref=receipt.filename if receipt and receipt.data else None),
            now,
            self.verify_lock_ttl,
        )
        self.receipts.validate(receipt)

        # Check every update before touching anything
        for update in item_updates:
            if order.item_by_id(update.item_id) is None:
                raise PreconditionFailed(f"Invalid order item id: {update.item_id}")

        expected = order.revision
        previous_receipt = order.receipt_ref
        for update in item_updates:
            item = order.item_by_id(update.item_id)
            item.quantity = update.quantity
            item.unit_cost = update.unit_cost
            item.remaining_quantity = update.quantity
            if update.expiration_date is not None:
                item.expiration_date = update.expiration_date
        order.recompute_total()

        order.receipt_ref = await self.receipts.save(receipt)
        apply_transition(order, rule, actor, now)
        try:
            await self._commit(order, expected)
        except Exception:
            await self.receipts.delete(order.receipt_ref)
            raise

        if previous_receipt and previous_receipt != order.receipt_ref:
            await self.receipts.delete(previous_receipt)

        self._log_transition(order, actor)
        return order

    async def verify(self, order_id: UUID, stock_id: Optional[UUID], actor: Actor) -> VerificationResult:
        order = await self._load(order_id)
        now = self.clock()
        rule = authorize_transition(
            order,
            OrderStatus.VERIFIED,
            actor,
            TransitionContext(receipt_ref=order.receipt_ref, warehouse_id=stock_id),
            now,
            self.verify_lock_ttl,
        )
        if not await self.catalog.stock_exists(stock_id):
            raise NotFound("Stock not found")

        # 1. Claim the order so no other request materializes it
        took_over = order.verification_lock is not None
        claim = uuid4()
        claimed = order.model_copy(deep=True)
        claimed.verification_lock = VerificationLock(token=claim, acquired_at=now, by=actor.user_id)
        await self._commit(claimed, order.revision)

        if took_over:
            removed = await self.stock_items.delete_for_order(order.id, keep_claim=claim)
            logger.warning(
                "Order %s: took over an expired verification claim, removed %d stock items",
                order.order_number,
                removed,
            )

        # A slower request may have taken the claim over in the meantime
        current = await self.orders.get(order.id)
        if current is None or current.revision != claimed.revision:
            raise TransitionConflict("Verification claim was taken over by another request")

        # 2. Create the stock items, all or nothing, tagged with our claim
        try:
            created = await materialize_order(self.stock_items, claimed, stock_id, claim, now)
        except Exception:
            logger.error("Order %s: stock materialization failed, releasing claim", order.order_number)
            await self._release_claim(claimed)
            raise

        # 3. Mark verified; undo our own stock items if that write fails
        verified = claimed.model_copy(deep=True)
        verified.verification_lock = None
        apply_transition(verified, rule, actor, now)
        try:
            await self._commit(verified, claimed.revision)
        except Exception:
            removed = await self.stock_items.delete_for_claim(claim)
            logger.warning(
                "Order %s: verify write failed, rolled back %d stock items",
                order.order_number,
                removed,
            )
            await self._release_claim(claimed)
            raise

        if took_over:
            await self._sweep_stale_claims(verified, claim)

        self._log_transition(verified, actor)
        return VerificationResult(order=verified, stock_items_count=len(created))

    async def _sweep_stale_claims(self, verified: PurchaseOrder, claim: UUID) -> None:
        """Remove lots a taken-over claim inserted after our takeover cleanup."""
        try:
            stray = await self.stock_items.delete_for_order(verified.id, keep_claim=claim)
        except StoreFailure as e:
            logger.error("Order %s: could not sweep stale claim stock items: %s", verified.order_number, e)
            return
        if stray:
            logger.warning("Order %s: removed %d stock items from a stale claim", verified.order_number, stray)

    async def _release_claim(self, claimed: PurchaseOrder) -> None:
        released = claimed.model_copy(deep=True)
        released.verification_lock = None
        try:
            await self._commit(released, claimed.revision)
        except TransitionConflict:
            # Someone else already moved past our claim
            logger.warning("Order %s: claim was already released", claimed.order_number)

    async def mark_paid(self, order_id: UUID, actor: Actor) -> PurchaseOrder:
        order = await self._load(order_id)
        now = self.clock()
        rule = authorize_transition(
            order, OrderStatus.PAID, actor, TransitionContext(), now, self.verify_lock_ttl
        )
        expected = order.revision
        apply_transition(order, rule, actor, now)
        await self._commit(order, expected)
        self._log_transition(order, actor)
        return order

    async def cancel(
        self,
        order_id: UUID,
        actor: Actor,
        reason: Optional[str] = None,
        canceled_date: Optional[datetime] = None,
    ) -> PurchaseOrder:
        order = await self._load(order_id)
        now = self.clock()
        rule = authorize_transition(
            order, OrderStatus.CANCELED, actor, TransitionContext(), now, self.verify_lock_ttl
        )
        expected = order.revision
        order.append_note(reason)
        apply_transition(order, rule, actor, now, stage_time=canceled_date)
        await self._commit(order, expected)
        self._log_transition(order, actor)
        return order

    async def update(self, order_id: UUID, changes: OrderUpdateSchema, actor: Actor) -> PurchaseOrder:
        """
        Partial update behind PUT /orders/{id}.

        Status can only move to paid or canceled here; the other stages have
        their own endpoints because they carry their own inputs. Notes and
        expectedDate ride along in the same write as the status change.
        """
        order = await self._load(order_id)
        now = self.clock()
        edits = changes.notes is not None or "expected_date" in changes.model_fields_set

        rule = None
        if changes.status in (OrderStatus.PAID, OrderStatus.CANCELED):
            rule = authorize_transition(
                order, changes.status, actor, TransitionContext(), now, self.verify_lock_ttl
            )
        elif changes.status is not None:
            if order.status == changes.status:
                raise InvalidTransition(
                    f"Order is already '{order.status.value}'",
                    current=order.status.value,
                    requested=changes.status.value,
                )
            raise InvalidTransition(
                f"Use the dedicated endpoint to move an order to '{changes.status.value}'",
                current=order.status.value,
                requested=changes.status.value,
            )
        else:
            if not actor.is_admin and order.staff_id != actor.user_id:
                raise Forbidden("You can't access this order")
            if not edits:
                return order
            if not actor.is_admin:
                raise Forbidden("Access Denied: only admins can edit orders")
            if lock_is_active(order, now, self.verify_lock_ttl):
                raise TransitionConflict("Order is being verified, try again shortly")

        expected = order.revision
        order.append_note(changes.notes)
        if "expected_date" in changes.model_fields_set:
            order.expected_date = changes.expected_date
        if rule is not None:
            stage_time = changes.canceled_date if changes.status == OrderStatus.CANCELED else None
            apply_transition(order, rule, actor, now, stage_time=stage_time)

        await self._commit(order, expected)
        if rule is not None:
            self._log_transition(order, actor)
        return order
