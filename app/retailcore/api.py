from fastapi import APIRouter

from app.retailcore.core.config import settings
from app.retailcore.routers.health import router as health_router
from app.retailcore.routers.metrics import router as metrics_router
from app.retailcore.routers.payments import router as payments_router
from app.retailcore.routers.pos_sales import router as pos_sales_router
from app.retailcore.routers.pricing import router as pricing_router
from app.retailcore.routers.reconciliation import router as reconciliation_router
from app.retailcore.routers.stock_requests import router as stock_requests_router

api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(pricing_router, tags=["pricing"])
api_router.include_router(pos_sales_router, tags=["pos-sales"])
api_router.include_router(payments_router, tags=["payments"])
api_router.include_router(stock_requests_router, tags=["stock-requests"])
api_router.include_router(reconciliation_router, tags=["reconciliation"])
if settings.METRICS_ENABLED:
    api_router.include_router(metrics_router, tags=["ops"])
