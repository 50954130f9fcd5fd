import asyncio
from uuid import uuid4

from purchasing.core.config import settings
from purchasing.core.database import init_db
from purchasing.core.security import create_user_token
from purchasing.models.product import ProductDocument
from purchasing.models.stock import StockDocument
from purchasing.models.supplier import SupplierDocument


async def seed_data():
    print(f"Connecting to DB: {settings.DATABASE_NAME}...")
    client = await init_db(settings)

    # 1. Reference data the order workflow checks against
    stock = StockDocument(name="Main Store", description="Dry goods", location="Back of house")
    await stock.insert()

    supplier = SupplierDocument(
        name="Fresh Farm Produce",
        contact_person="Order Desk",
        phone="+000000000",
        city="Casablanca",
    )
    await supplier.insert()

    products = [
        ProductDocument(name="Tomatoes", unit="kg", min_qty=5),
        ProductDocument(name="Olive Oil", unit="L", min_qty=2),
        ProductDocument(name="Flour", unit="kg", min_qty=10),
    ]
    for product in products:
        await product.insert()

    # 2. Dev tokens (login lives in the auth service)
    admin_id = uuid4()
    staff_id = uuid4()

    print("\nSUCCESS! Reference data created.")
    print("------------------------------------------")
    print(f"Stock:    {stock.id}")
    print(f"Supplier: {supplier.id}")
    for product in products:
        print(f"Product:  {product.id} ({product.name})")
    print("------------------------------------------")
    print(f"Admin {admin_id} token:\n{create_user_token(admin_id, is_admin=True)}\n")
    print(f"Staff {staff_id} token:\n{create_user_token(staff_id)}")
    print("------------------------------------------")

    client.close()


if __name__ == "__main__":
    asyncio.run(seed_data())
