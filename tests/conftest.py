import os

os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("STORE_BACKEND", "memory")

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List
from uuid import UUID, uuid4

import pytest
from fastapi.testclient import TestClient

from purchasing.core.security import create_user_token
from purchasing.main import create_app
from purchasing.models.order import OrderStatus
from purchasing.models.user import Actor, UserRole
from purchasing.schemas.order import OrderCreateSchema, OrderItemInput
from purchasing.services.lifecycle import OrderLifecycle
from purchasing.services.receipts import ReceiptStorage, ReceiptUpload
from purchasing.services.stats import OrderStatsService
from purchasing.stores.memory import build_memory_stores

NOW = datetime(2024, 3, 15, 10, 0, tzinfo=timezone.utc)
JPEG_BYTES = b"\xff\xd8\xff\xe0fake-jpeg-body"


class FixedClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@dataclass
class Catalog:
    supplier_id: UUID
    inactive_supplier_id: UUID
    stock_id: UUID
    product_ids: List[UUID] = field(default_factory=list)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def stores():
    return build_memory_stores()


@pytest.fixture
def catalog(stores) -> Catalog:
    cat = stores.catalog
    return Catalog(
        supplier_id=cat.add_supplier(uuid4()),
        inactive_supplier_id=cat.add_supplier(uuid4(), is_active=False),
        stock_id=cat.add_stock(uuid4()),
        product_ids=[cat.add_product(uuid4()) for _ in range(3)],
    )


@pytest.fixture
def receipts(tmp_path):
    return ReceiptStorage(str(tmp_path / "receipts"), "/uploads/orders", max_bytes=1024 * 1024)


@pytest.fixture
def lifecycle(stores, receipts, clock):
    return OrderLifecycle(stores, receipts, clock=clock, verify_lock_ttl=timedelta(minutes=5))


@pytest.fixture
def stats_service(stores, clock):
    return OrderStatsService(stores.orders, clock=clock)


@pytest.fixture
def admin():
    return Actor(user_id=uuid4(), role=UserRole.ADMIN)


@pytest.fixture
def staff():
    return Actor(user_id=uuid4(), role=UserRole.STAFF)


@pytest.fixture
def other_staff():
    return Actor(user_id=uuid4(), role=UserRole.STAFF)


def receipt_upload(name: str = "bon.jpg", content_type: str = "image/jpeg", data: bytes = JPEG_BYTES):
    return ReceiptUpload(filename=name, content_type=content_type, data=data)


@pytest.fixture
def make_order(lifecycle, catalog, admin, staff):
    """
    Create an order and walk it to ``status`` through the real handlers.
    Lines are (quantity, unit_cost) pairs on the catalogue products.
    """

    async def _make(status=OrderStatus.NOT_ASSIGNED, lines=((10, 2.5),), notes=None):
        data = OrderCreateSchema(
            supplier_id=catalog.supplier_id,
            items=[
                OrderItemInput(product_id=catalog.product_ids[i % len(catalog.product_ids)], quantity=q, unit_cost=c)
                for i, (q, c) in enumerate(lines)
            ],
            notes=notes,
        )
        order = await lifecycle.create(data, admin)
        if status == OrderStatus.NOT_ASSIGNED:
            return order
        if status == OrderStatus.CANCELED:
            return await lifecycle.cancel(order.id, admin, "no longer needed")

        order = await lifecycle.assign(order.id, staff.user_id, admin)
        if status == OrderStatus.ASSIGNED:
            return order

        order = await lifecycle.submit_for_review(order.id, staff, receipt_upload())
        if status == OrderStatus.PENDING_REVIEW:
            return order

        order = (await lifecycle.verify(order.id, catalog.stock_id, admin)).order
        if status == OrderStatus.VERIFIED:
            return order

        return await lifecycle.mark_paid(order.id, admin)

    return _make


# --------------------------------------------------------------------------
# API fixtures
# --------------------------------------------------------------------------

@pytest.fixture
def client(stores, catalog, receipts):
    app = create_app(stores=stores, receipts=receipts)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def admin_headers(admin):
    return {"Authorization": f"Bearer {create_user_token(admin.user_id, is_admin=True)}"}


@pytest.fixture
def staff_headers(staff):
    return {"Authorization": f"Bearer {create_user_token(staff.user_id)}"}


@pytest.fixture
def other_staff_headers(other_staff):
    return {"Authorization": f"Bearer {create_user_token(other_staff.user_id)}"}
