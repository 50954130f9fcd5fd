import logging

from motor.motor_asyncio import AsyncIOMotorClient
from beanie import init_beanie

from purchasing.core.config import Settings
from purchasing.models.order import PurchaseOrderDocument
from purchasing.models.stock_item import StockItemDocument
from purchasing.models.stock import StockDocument
from purchasing.models.product import ProductDocument
from purchasing.models.supplier import SupplierDocument

logger = logging.getLogger(__name__)

DOCUMENT_MODELS = [
    PurchaseOrderDocument,
    StockItemDocument,
    StockDocument,
    ProductDocument,
    SupplierDocument,
]


async def init_db(settings: Settings) -> AsyncIOMotorClient:
    """
    Connect to MongoDB and initialize Beanie.

    The client is returned to the caller (the app lifespan or a script),
    which owns it and must close it on shutdown.
    """
    # tz_aware so stage dates compare with the service clock;
    # standard UUID encoding so raw filters on UUID fields match Beanie's writes
    client = AsyncIOMotorClient(
        settings.MONGODB_URL,
        tz_aware=True,
        uuidRepresentation="standard",
    )

    await init_beanie(
        database=client[settings.DATABASE_NAME],
        document_models=DOCUMENT_MODELS,
    )

    logger.info("Beanie initialized with database: %s", settings.DATABASE_NAME)
    return client
