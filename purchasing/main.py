import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from purchasing.core.config import settings
from purchasing.core.database import init_db
from purchasing.core.exceptions import PurchasingError
from purchasing.core.logging import configure_logging
from purchasing.routers import orders, stock_items
from purchasing.services.lifecycle import OrderLifecycle
from purchasing.services.receipts import ReceiptStorage
from purchasing.services.stats import OrderStatsService
from purchasing.stores.base import Stores
from purchasing.stores.memory import build_memory_stores
from purchasing.stores.mongo import build_mongo_stores

logger = logging.getLogger(__name__)


def create_app(stores: Optional[Stores] = None, receipts: Optional[ReceiptStorage] = None) -> FastAPI:
    """
    Build the API. Passing ``stores`` skips the database connection, which is
    how the tests run the app against the memory stores.
    """

    # ---------------------------------------------------------
    # 1. LIFESPAN MANAGER
    # ---------------------------------------------------------
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # --- STARTUP ---
        configure_logging(settings.LOG_LEVEL)
        logger.info("Initialization started (store backend: %s)", settings.STORE_BACKEND)

        client = None
        active_stores = stores
        if active_stores is None:
            if settings.STORE_BACKEND == "memory":
                active_stores = build_memory_stores(permissive_catalog=True)
            else:
                client = await init_db(settings)
                active_stores = build_mongo_stores()
                logger.info("Connected to database '%s'", settings.DATABASE_NAME)

        receipt_storage = receipts or ReceiptStorage(
            settings.UPLOAD_DIR,
            settings.UPLOAD_URL_PREFIX,
            settings.MAX_RECEIPT_BYTES,
        )
        app.state.stores = active_stores
        app.state.lifecycle = OrderLifecycle(
            active_stores,
            receipt_storage,
            verify_lock_ttl=timedelta(seconds=settings.VERIFY_LOCK_TTL_SECONDS),
        )
        app.state.stats = OrderStatsService(active_stores.orders)

        yield

        # --- SHUTDOWN ---
        if client is not None:
            client.close()
        logger.info("System shutting down")

    # ---------------------------------------------------------
    # 2. APP INITIALIZATION
    # ---------------------------------------------------------
    app = FastAPI(
        title=settings.APP_NAME,
        lifespan=lifespan,
        debug=settings.DEBUG,
        description="Purchase order workflow: assignment, receipt review, verification into stock, payment",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---------------------------------------------------------
    # 3. ERROR SHAPE
    # ---------------------------------------------------------
    @app.exception_handler(PurchasingError)
    async def purchasing_error_handler(request: Request, exc: PurchasingError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "message": exc.message},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "message": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        problems = [
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=422,
            content={"success": False, "message": "; ".join(problems)},
        )

    # ---------------------------------------------------------
    # 4. BASIC ROUTES (Health Checks)
    # ---------------------------------------------------------
    @app.get("/", tags=["System"])
    async def root():
        return {
            "system": settings.APP_NAME,
            "status": "Online",
            "documentation": "/docs",
        }

    @app.get("/health", tags=["System"])
    async def health_check():
        return {"status": "ok", "storeBackend": "custom" if stores else settings.STORE_BACKEND}

    # ---------------------------------------------------------
    # 5. ROUTER REGISTRATION
    # ---------------------------------------------------------
    app.include_router(orders.router, prefix="/orders", tags=["Purchase Orders"])
    app.include_router(stock_items.router, prefix="/stock-items", tags=["Stock Items"])

    # Receipts saved by ReceiptStorage are served back from their URL
    app.mount(
        settings.UPLOAD_URL_PREFIX,
        StaticFiles(directory=settings.UPLOAD_DIR, check_dir=False),
        name="receipts",
    )

    return app


app = create_app()
