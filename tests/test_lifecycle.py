from datetime import datetime, timezone
from pathlib import Path
from uuid import uuid4

import pytest

from purchasing.core.exceptions import (
    Forbidden,
    InvalidTransition,
    NotFound,
    OrderNotFound,
    PreconditionFailed,
    TransitionConflict,
)
from purchasing.models.order import OrderStatus
from purchasing.schemas.order import ItemUpdateInput, OrderCreateSchema, OrderItemInput, OrderUpdateSchema
from purchasing.stores.base import OrderQuery, PageRequest

from conftest import NOW, receipt_upload


def _total_matches_lines(order):
    return order.total_amount == pytest.approx(sum(i.quantity * i.unit_cost for i in order.items))


# ==========================================
# CREATE
# ==========================================
async def test_create_starts_not_assigned_with_one_history_entry(lifecycle, catalog, admin):
    data = OrderCreateSchema(
        supplier_id=catalog.supplier_id,
        items=[
            OrderItemInput(product_id=catalog.product_ids[0], quantity=10, unit_cost=2.5),
            OrderItemInput(product_id=catalog.product_ids[1], quantity=3, unit_cost=4),
        ],
    )

    order = await lifecycle.create(data, admin)

    assert order.status == OrderStatus.NOT_ASSIGNED
    assert order.order_number.startswith("ORD-20240315-")
    assert order.total_amount == 37.0
    assert [i.remaining_quantity for i in order.items] == [10, 3]
    assert len(order.status_history) == 1
    assert order.status_history[0].from_status is None
    assert order.status_history[0].to_status == OrderStatus.NOT_ASSIGNED
    assert order.created_at == NOW


async def test_create_is_admin_only(lifecycle, catalog, staff):
    data = OrderCreateSchema(
        supplier_id=catalog.supplier_id,
        items=[OrderItemInput(product_id=catalog.product_ids[0], quantity=1, unit_cost=1)],
    )
    with pytest.raises(Forbidden):
        await lifecycle.create(data, staff)


async def test_create_checks_supplier_and_products(lifecycle, catalog, admin):
    line = OrderItemInput(product_id=catalog.product_ids[0], quantity=1, unit_cost=1)

    with pytest.raises(NotFound):
        await lifecycle.create(OrderCreateSchema(supplier_id=uuid4(), items=[line]), admin)

    with pytest.raises(PreconditionFailed):
        await lifecycle.create(OrderCreateSchema(supplier_id=catalog.inactive_supplier_id, items=[line]), admin)

    unknown = OrderItemInput(product_id=uuid4(), quantity=1, unit_cost=1)
    with pytest.raises(NotFound, match="Product not found"):
        await lifecycle.create(OrderCreateSchema(supplier_id=catalog.supplier_id, items=[line, unknown]), admin)


# ==========================================
# HAPPY PATH
# ==========================================
async def test_full_workflow_to_verified(lifecycle, stores, catalog, admin, staff):
    order = await lifecycle.create(
        OrderCreateSchema(
            supplier_id=catalog.supplier_id,
            items=[OrderItemInput(product_id=catalog.product_ids[0], quantity=10, unit_cost=2.5)],
        ),
        admin,
    )
    order = await lifecycle.assign(order.id, staff.user_id, admin)
    assert order.staff_id == staff.user_id
    assert order.assigned_date == NOW

    order = await lifecycle.submit_for_review(order.id, staff, receipt_upload("r.png", "image/png"))
    assert order.receipt_ref.startswith("/uploads/orders/")
    assert order.receipt_ref.endswith(".png")

    result = await lifecycle.verify(order.id, catalog.stock_id, admin)
    order = result.order

    assert order.status == OrderStatus.VERIFIED
    assert order.total_amount == 25.0
    assert order.verification_lock is None
    assert result.stock_items_count == 1

    items, total = await stores.stock_items.find(catalog.stock_id, None, 0, 10)
    assert total == 1
    item = items[0]
    assert (item.product_id, item.stock_id, item.quantity, item.price) == (
        catalog.product_ids[0],
        catalog.stock_id,
        10,
        2.5,
    )
    assert item.source_order_id == order.id

    # creation plus the three transitions
    history = [(e.from_status, e.to_status) for e in order.status_history]
    assert history == [
        (None, OrderStatus.NOT_ASSIGNED),
        (OrderStatus.NOT_ASSIGNED, OrderStatus.ASSIGNED),
        (OrderStatus.ASSIGNED, OrderStatus.PENDING_REVIEW),
        (OrderStatus.PENDING_REVIEW, OrderStatus.VERIFIED),
    ]


async def test_every_commit_bumps_revision(make_order, lifecycle, admin):
    order = await make_order(OrderStatus.VERIFIED)
    stored = await lifecycle.get(order.id, admin)
    # assign, review, claim, verify
    assert stored.revision == 4


# ==========================================
# TERMINAL STATES
# ==========================================
async def test_cancel_of_paid_order_is_rejected(make_order, lifecycle, admin):
    order = await make_order(OrderStatus.PAID)

    with pytest.raises(InvalidTransition):
        await lifecycle.cancel(order.id, admin, "too late")

    stored = await lifecycle.get(order.id, admin)
    assert stored.status == OrderStatus.PAID
    assert stored.revision == order.revision


@pytest.mark.parametrize("terminal", [OrderStatus.PAID, OrderStatus.CANCELED])
async def test_terminal_orders_reject_status_changes(make_order, lifecycle, admin, staff, catalog, terminal):
    order = await make_order(terminal)

    attempts = [
        lifecycle.assign(order.id, staff.user_id, admin),
        lifecycle.submit_for_review(order.id, admin, receipt_upload()),
        lifecycle.verify(order.id, catalog.stock_id, admin),
        lifecycle.mark_paid(order.id, admin),
        lifecycle.cancel(order.id, admin),
    ]
    for attempt in attempts:
        with pytest.raises(InvalidTransition):
            await attempt

    stored = await lifecycle.get(order.id, admin)
    assert stored.status == terminal


async def test_cancel_appends_reason_and_keeps_client_date(make_order, lifecycle, admin, clock):
    order = await make_order(OrderStatus.ASSIGNED, notes="Call before delivery")
    when = datetime(2024, 3, 14, 9, 30, tzinfo=timezone.utc)

    order = await lifecycle.cancel(order.id, admin, "Supplier out of stock", canceled_date=when)

    assert order.status == OrderStatus.CANCELED
    assert order.notes == "Call before delivery\nSupplier out of stock"
    assert order.canceled_date == when
    assert order.status_history[-1].at == clock.now


# ==========================================
# OWNERSHIP AND PRECONDITIONS
# ==========================================
async def test_staff_cannot_submit_someone_elses_order(make_order, lifecycle, other_staff, admin):
    order = await make_order(OrderStatus.ASSIGNED)

    with pytest.raises(Forbidden):
        await lifecycle.submit_for_review(order.id, other_staff, receipt_upload())

    stored = await lifecycle.get(order.id, admin)
    assert stored.status == OrderStatus.ASSIGNED


async def test_staff_only_reads_own_orders(make_order, lifecycle, staff, other_staff):
    order = await make_order(OrderStatus.ASSIGNED)

    assert (await lifecycle.get(order.id, staff)).id == order.id
    with pytest.raises(Forbidden):
        await lifecycle.get(order.id, other_staff)


async def test_unknown_order(lifecycle, admin):
    with pytest.raises(OrderNotFound):
        await lifecycle.get(uuid4(), admin)


async def test_review_requires_a_receipt(make_order, lifecycle, staff, admin):
    order = await make_order(OrderStatus.ASSIGNED)

    with pytest.raises(PreconditionFailed):
        await lifecycle.submit_for_review(order.id, staff, None)
    with pytest.raises(PreconditionFailed):
        await lifecycle.submit_for_review(order.id, staff, receipt_upload(data=b""))
    with pytest.raises(PreconditionFailed, match="image or a PDF"):
        await lifecycle.submit_for_review(order.id, staff, receipt_upload("bon.exe", "application/x-msdownload"))

    stored = await lifecycle.get(order.id, admin)
    assert stored.status == OrderStatus.ASSIGNED
    assert stored.receipt_ref is None


async def test_verify_requires_a_known_stock(make_order, lifecycle, admin):
    order = await make_order(OrderStatus.PENDING_REVIEW)

    with pytest.raises(PreconditionFailed):
        await lifecycle.verify(order.id, None, admin)
    with pytest.raises(NotFound, match="Stock not found"):
        await lifecycle.verify(order.id, uuid4(), admin)

    stored = await lifecycle.get(order.id, admin)
    assert stored.status == OrderStatus.PENDING_REVIEW
    assert stored.verification_lock is None


async def test_review_item_updates_recompute_total(make_order, lifecycle, staff):
    order = await make_order(OrderStatus.ASSIGNED, lines=((10, 2.5), (4, 1)))
    first = order.items[0]

    order = await lifecycle.submit_for_review(
        order.id,
        staff,
        receipt_upload(),
        [ItemUpdateInput(item_id=first.id, quantity=8, unit_cost=3)],
    )

    assert order.items[0].quantity == 8
    assert order.items[0].remaining_quantity == 8
    assert order.total_amount == 28.0
    assert _total_matches_lines(order)


async def test_review_rejects_unknown_item_ids(make_order, lifecycle, staff, admin):
    order = await make_order(OrderStatus.ASSIGNED)

    with pytest.raises(PreconditionFailed, match="Invalid order item id"):
        await lifecycle.submit_for_review(
            order.id,
            staff,
            receipt_upload(),
            [ItemUpdateInput(item_id=uuid4(), quantity=1, unit_cost=1)],
        )

    stored = await lifecycle.get(order.id, admin)
    assert stored.total_amount == 25.0
    assert stored.status == OrderStatus.ASSIGNED


async def test_receipt_file_is_written(make_order, lifecycle, receipts, staff):
    order = await make_order(OrderStatus.ASSIGNED)
    order = await lifecycle.submit_for_review(order.id, staff, receipt_upload())

    key = order.receipt_ref.rsplit("/", 1)[-1]
    assert Path(receipts.directory, key).read_bytes() == receipt_upload().data


# ==========================================
# CONCURRENCY
# ==========================================
async def test_stale_revision_is_rejected_and_order_unchanged(make_order, lifecycle, stores, admin):
    order = await make_order(OrderStatus.NOT_ASSIGNED)
    stale = await stores.orders.get(order.id)

    await lifecycle.cancel(order.id, admin, "first writer")

    stale.notes = "second writer"
    with pytest.raises(TransitionConflict):
        await lifecycle._commit(stale, stale.revision)

    stored = await lifecycle.get(order.id, admin)
    assert stored.status == OrderStatus.CANCELED
    assert stored.notes == "first writer"


# ==========================================
# UPDATE (PUT)
# ==========================================
async def test_update_routes_status_changes(make_order, lifecycle, admin):
    verified = await make_order(OrderStatus.VERIFIED)
    paid = await lifecycle.update(verified.id, OrderUpdateSchema(status=OrderStatus.PAID), admin)
    assert paid.status == OrderStatus.PAID
    assert paid.paid_date is not None

    assigned = await make_order(OrderStatus.ASSIGNED)
    canceled = await lifecycle.update(
        assigned.id, OrderUpdateSchema(status=OrderStatus.CANCELED, notes="duplicate"), admin
    )
    assert canceled.status == OrderStatus.CANCELED
    assert canceled.notes == "duplicate"


async def test_update_refuses_workflow_steps(make_order, lifecycle, admin):
    order = await make_order(OrderStatus.ASSIGNED)
    with pytest.raises(InvalidTransition, match="dedicated endpoint"):
        await lifecycle.update(order.id, OrderUpdateSchema(status=OrderStatus.VERIFIED), admin)


async def test_update_notes_on_terminal_order(make_order, lifecycle, admin):
    order = await make_order(OrderStatus.PAID)
    updated = await lifecycle.update(order.id, OrderUpdateSchema(notes="Invoice filed"), admin)
    assert updated.status == OrderStatus.PAID
    assert updated.notes == "Invoice filed"
    assert updated.revision == order.revision + 1


async def test_staff_cannot_edit_notes(make_order, lifecycle, staff):
    order = await make_order(OrderStatus.ASSIGNED)
    with pytest.raises(Forbidden):
        await lifecycle.update(order.id, OrderUpdateSchema(notes="mine"), staff)


async def test_status_and_notes_land_in_one_write(make_order, lifecycle, admin):
    order = await make_order(OrderStatus.VERIFIED)
    expected = datetime(2024, 4, 1, tzinfo=timezone.utc)

    paid = await lifecycle.update(
        order.id, OrderUpdateSchema(status=OrderStatus.PAID, notes="wire sent", expected_date=expected), admin
    )

    assert paid.revision == order.revision + 1
    assert paid.status == OrderStatus.PAID
    assert paid.notes == "wire sent"
    assert paid.expected_date == expected


async def test_lost_paid_write_keeps_notes_out(make_order, lifecycle, stores, admin, monkeypatch):
    order = await make_order(OrderStatus.VERIFIED)

    async def lose(candidate, expected_revision):
        return False

    monkeypatch.setattr(stores.orders, "replace", lose)

    with pytest.raises(TransitionConflict):
        await lifecycle.update(order.id, OrderUpdateSchema(status=OrderStatus.PAID, notes="wire sent"), admin)

    stored = await stores.orders.get(order.id)
    assert stored.status == OrderStatus.VERIFIED
    assert stored.notes is None
    assert stored.revision == order.revision


@pytest.mark.parametrize(
    "changes",
    [OrderUpdateSchema(), OrderUpdateSchema(canceled_date=NOW)],
    ids=["empty", "canceled-date-only"],
)
async def test_empty_update_checks_access(make_order, lifecycle, staff, other_staff, changes):
    order = await make_order(OrderStatus.ASSIGNED)

    with pytest.raises(Forbidden):
        await lifecycle.update(order.id, changes, other_staff)

    mine = await lifecycle.update(order.id, changes, staff)
    assert mine.id == order.id
    assert mine.revision == order.revision


# ==========================================
# LISTING
# ==========================================
async def test_list_scopes_staff_and_pages(make_order, lifecycle, admin, staff, other_staff):
    for _ in range(3):
        await make_order(OrderStatus.ASSIGNED)
    await make_order(OrderStatus.NOT_ASSIGNED)

    everything = await lifecycle.list(OrderQuery(), PageRequest(page=1, limit=2), admin)
    assert everything.total == 4
    assert everything.pages == 2
    assert len(everything.orders) == 2

    mine = await lifecycle.list(OrderQuery(), PageRequest(limit=10), staff)
    assert mine.total == 3
    assert all(o.staff_id == staff.user_id for o in mine.orders)

    # staff cannot widen the scope to someone else
    theirs = await lifecycle.list(OrderQuery(staff_id=staff.user_id), PageRequest(), other_staff)
    assert theirs.total == 0


async def test_list_filters_by_status_and_search(make_order, lifecycle, admin):
    await make_order(OrderStatus.ASSIGNED, notes="urgent tomatoes")
    await make_order(OrderStatus.NOT_ASSIGNED)

    assigned = await lifecycle.list(OrderQuery(statuses=frozenset({OrderStatus.ASSIGNED})), PageRequest(), admin)
    assert assigned.total == 1

    found = await lifecycle.list(OrderQuery(search="TOMATO"), PageRequest(), admin)
    assert found.total == 1
    assert found.orders[0].notes == "urgent tomatoes"
