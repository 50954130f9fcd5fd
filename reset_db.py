import asyncio

from purchasing.core.config import settings
from purchasing.core.database import init_db
from purchasing.models.order import PurchaseOrderDocument
from purchasing.models.stock_item import StockItemDocument


async def reset_orders():
    print("connecting to database...")
    client = await init_db(settings)

    print("Deleting ALL purchase orders and stock items...")
    orders = await PurchaseOrderDocument.delete_all()
    items = await StockItemDocument.delete_all()
    print(f"  orders removed:      {orders.deleted_count if orders else 0}")
    print(f"  stock items removed: {items.deleted_count if items else 0}")

    client.close()
    print("Database is clean! You can now run 'python seed.py'.")


if __name__ == "__main__":
    asyncio.run(reset_orders())
