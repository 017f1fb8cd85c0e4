# erp_agent/main.py
import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import Optional
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from erp_agent.api.api import api_router
from erp_agent.core.config import Settings, settings as default_settings
from erp_agent.core.exceptions import AgentError, ProductNotFoundError
from erp_agent.core.logging import setup_logging
from erp_agent.database import Store
from erp_agent.services.change_detector import ChangeDetector
from erp_agent.services.cursor_store import CursorStore
from erp_agent.services.order_ingestor import OrderIngestor
from erp_agent.services.stock_query import StockQuery
from erp_agent.services.sync_publisher import SyncPublisher
from erp_agent.tasks.sync_loop import ChangeSyncLoop

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    setup_logging(level=settings.LOG_LEVEL, log_file=settings.LOG_FILE)

    store = Store.from_settings(settings)
    # HTTP сервер поднимается сразу, база подключается в фоне с повторами
    connect_task = asyncio.create_task(store.connect())

    publisher = SyncPublisher(
        url=settings.SITE_URL,
        token=settings.SYNC_TOKEN,
        timeout=settings.SYNC_TIMEOUT
    )
    await publisher.connect()

    sync_loop = ChangeSyncLoop(
        store=store,
        cursor_store=CursorStore(settings.CURSOR_FILE, bootstrap_seconds=settings.CURSOR_BOOTSTRAP_SECONDS),
        detector=ChangeDetector(store.session_factory),
        publisher=publisher,
        interval=settings.SYNC_INTERVAL
    )

    app.state.store = store
    app.state.stock_query = StockQuery(store.session_factory, store=store)
    app.state.order_ingestor = OrderIngestor.from_settings(store.session_factory, settings, store=store)
    app.state.sync_loop = sync_loop

    if settings.SYNC_ENABLED:
        sync_loop.start()
    logger.info(f"{settings.PROJECT_NAME} started on port {settings.PORT}")

    try:
        yield
    finally:
        await sync_loop.stop()
        connect_task.cancel()
        with suppress(asyncio.CancelledError):
            await connect_task
        await publisher.disconnect()
        await store.dispose()

def register_exception_handlers(app: FastAPI) -> None:
    """Ошибки агента -> структурированный JSON без трассировок"""

    @app.exception_handler(AgentError)
    async def agent_error_handler(request: Request, exc: AgentError):
        content = {"error": exc.title, "detail": str(exc)}
        if isinstance(exc, ProductNotFoundError):
            content["sku"] = exc.sku
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        )
        return JSONResponse(status_code=400, content={"error": "Invalid request", "detail": problems})

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        error = "Access denied" if exc.status_code == 401 else "Request failed"
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": error, "detail": exc.detail},
            headers=getattr(exc, "headers", None)
        )

def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or default_settings

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="ERP <-> e-commerce integration agent",
        version=settings.VERSION,
        lifespan=lifespan
    )
    app.state.settings = settings

    register_exception_handlers(app)
    app.include_router(api_router)
    return app

app = create_app()

def run():
    import uvicorn
    uvicorn.run(app, host=default_settings.HOST, port=default_settings.PORT)

if __name__ == "__main__":
    run()
