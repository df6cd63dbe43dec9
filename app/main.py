from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.retailcore.api import api_router
from app.retailcore.core.config import settings
from app.retailcore.core.errors import setup_exception_handlers
from app.retailcore.core.logging import configure_logging
from app.retailcore.db.session import SessionLocal
from app.retailcore.middleware.observability import ObservabilityMiddleware
from app.retailcore.services.mpesa import MpesaGateway
from app.retailcore.services.orchestrator import PaymentOrchestrator
from app.retailcore.services.payment_gateway import PaymentGateway


def create_app(gateway: PaymentGateway | None = None) -> FastAPI:
    configure_logging()
    gateway = gateway or MpesaGateway.from_settings(settings)
    orchestrator = PaymentOrchestrator.from_settings(SessionLocal, gateway, settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await orchestrator.shutdown()
        if isinstance(gateway, MpesaGateway):
            await gateway.aclose()

    app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)
    app.state.settings = settings
    app.state.orchestrator = orchestrator
    app.add_middleware(ObservabilityMiddleware)
    setup_exception_handlers(app)
    app.include_router(api_router)
    return app


app = create_app()
