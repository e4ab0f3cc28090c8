import logging
import sys
from contextlib import asynccontextmanager
from fastapi import FastAPI

from order_lifecycle.presentation.api import router
from order_lifecycle.application.order_state import OrderTrackerRegistry
from order_lifecycle.config import settings

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Управление жизненным циклом приложения"""
    app.state.trackers = OrderTrackerRegistry()
    logger.info(f"Backend магазина: {settings.API_BASE_URL}")
    if not settings.NOTIFICATIONS_ENABLED:
        logger.info("NOTIFICATIONS_BASE_URL не задан, уведомления отключены")

    yield

    logger.info("Приложение останавливается...")


app = FastAPI(
    title="Order Lifecycle Service",
    description="Жизненный цикл заказов и сверка с доставкой",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    return {"message": "Order Lifecycle Service работает"}


@app.get("/health")
async def health():
    return {"status": "healthy", "notifications": "enabled" if settings.NOTIFICATIONS_ENABLED else "disabled"}
