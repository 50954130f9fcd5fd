r"""
Purchase order status workflow.

    not_assigned -> assigned -> pending_review -> verified -> paid
         \______________\______________\
                                        -> canceled

Every allowed move is one row of TRANSITION_RULES. Handlers call
``authorize_transition`` once per request before writing anything, then
``apply_transition`` to stamp the stage date and append the history entry.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import FrozenSet, Optional, Tuple
from uuid import UUID

from purchasing.core.exceptions import Forbidden, InvalidTransition, PreconditionFailed, TransitionConflict
from purchasing.models.order import OrderStatus, PurchaseOrder, StatusHistoryEntry, TERMINAL_STATUSES
from purchasing.models.user import Actor, UserRole

# Preconditions a rule can demand
NEEDS_STAFF = "staff"
NEEDS_RECEIPT = "receipt"
NEEDS_WAREHOUSE = "warehouse"


@dataclass(frozen=True)
class TransitionRule:
    sources: FrozenSet[OrderStatus]
    target: OrderStatus
    roles: FrozenSet[UserRole]
    owner_only: FrozenSet[UserRole] = frozenset()  # roles limited to their own orders
    requires: Tuple[str, ...] = ()
    stage_field: Optional[str] = None


TRANSITION_RULES: Tuple[TransitionRule, ...] = (
    TransitionRule(
        sources=frozenset({OrderStatus.NOT_ASSIGNED}),
        target=OrderStatus.ASSIGNED,
        roles=frozenset({UserRole.ADMIN}),
        requires=(NEEDS_STAFF,),
        stage_field="assigned_date",
    ),
    TransitionRule(
        sources=frozenset({OrderStatus.ASSIGNED}),
        target=OrderStatus.PENDING_REVIEW,
        roles=frozenset({UserRole.STAFF, UserRole.ADMIN}),
        owner_only=frozenset({UserRole.STAFF}),
        requires=(NEEDS_RECEIPT,),
        stage_field="pending_review_date",
    ),
    TransitionRule(
        sources=frozenset({OrderStatus.PENDING_REVIEW}),
        target=OrderStatus.VERIFIED,
        roles=frozenset({UserRole.ADMIN}),
        requires=(NEEDS_RECEIPT, NEEDS_WAREHOUSE),
        stage_field="verified_date",
    ),
    TransitionRule(
        sources=frozenset({OrderStatus.VERIFIED}),
        target=OrderStatus.PAID,
        roles=frozenset({UserRole.ADMIN}),
        stage_field="paid_date",
    ),
    TransitionRule(
        sources=frozenset({OrderStatus.NOT_ASSIGNED, OrderStatus.ASSIGNED, OrderStatus.PENDING_REVIEW}),
        target=OrderStatus.CANCELED,
        roles=frozenset({UserRole.ADMIN}),
        stage_field="canceled_date",
    ),
)


@dataclass(frozen=True)
class TransitionContext:
    """What the request brings along for the rule's preconditions."""
    staff_id: Optional[UUID] = None
    receipt_ref: Optional[str] = None
    warehouse_id: Optional[UUID] = None


_PRECONDITION_MESSAGES = {
    NEEDS_STAFF: "Staff ID is required",
    NEEDS_RECEIPT: "Receipt (bon) is required",
    NEEDS_WAREHOUSE: "A destination stock must be selected",
}


def find_rule(current: OrderStatus, requested: OrderStatus) -> Optional[TransitionRule]:
    for rule in TRANSITION_RULES:
        if rule.target == requested and current in rule.sources:
            return rule
    return None


def check_transition(current: OrderStatus, requested: OrderStatus, role: UserRole) -> TransitionRule:
    """
    Decide on the status pair and the role alone.
    Raises InvalidTransition for a pair outside the table (whatever the role)
    and Forbidden when the role may not perform an allowed pair.
    """
    if current == requested:
        raise InvalidTransition(
            f"Order is already '{current.value}'",
            current=current.value,
            requested=requested.value,
        )
    if current in TERMINAL_STATUSES:
        raise InvalidTransition(
            f"Order is '{current.value}' and can no longer change status",
            current=current.value,
            requested=requested.value,
        )
    rule = find_rule(current, requested)
    if rule is None:
        raise InvalidTransition(
            f"Cannot move order from '{current.value}' to '{requested.value}'",
            current=current.value,
            requested=requested.value,
        )
    if role not in rule.roles:
        raise Forbidden(f"Access Denied: {role.value} cannot move an order to '{requested.value}'")
    return rule


def lock_is_active(order: PurchaseOrder, now: datetime, ttl: timedelta) -> bool:
    lock = order.verification_lock
    return lock is not None and now - lock.acquired_at < ttl


def authorize_transition(
    order: PurchaseOrder,
    requested: OrderStatus,
    actor: Actor,
    context: TransitionContext,
    now: datetime,
    lock_ttl: timedelta,
) -> TransitionRule:
    if lock_is_active(order, now, lock_ttl):
        raise TransitionConflict(
            "Order is being verified, try again shortly",
            current=order.status.value,
            requested=requested.value,
        )

    rule = check_transition(order.status, requested, actor.role)

    if actor.role in rule.owner_only and order.staff_id != actor.user_id:
        raise Forbidden("Access Denied: this order is not assigned to you")

    provided = {
        NEEDS_STAFF: context.staff_id is not None,
        NEEDS_RECEIPT: bool(context.receipt_ref and context.receipt_ref.strip()),
        NEEDS_WAREHOUSE: context.warehouse_id is not None,
    }
    for requirement in rule.requires:
        if not provided[requirement]:
            raise PreconditionFailed(_PRECONDITION_MESSAGES[requirement])

    return rule


def record_status(
    order: PurchaseOrder,
    from_status: Optional[OrderStatus],
    to_status: OrderStatus,
    at: datetime,
    by: Optional[UUID],
) -> None:
    order.status_history.append(
        StatusHistoryEntry(from_status=from_status, to_status=to_status, at=at, by=by)
    )


def apply_transition(
    order: PurchaseOrder,
    rule: TransitionRule,
    actor: Actor,
    now: datetime,
    stage_time: Optional[datetime] = None,
) -> None:
    """Move the order to ``rule.target`` and record the side effects in place."""
    previous = order.status
    order.status = rule.target
    if rule.stage_field and getattr(order, rule.stage_field) is None:
        setattr(order, rule.stage_field, stage_time or now)
    record_status(order, previous, rule.target, now, actor.user_id)
