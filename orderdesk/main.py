from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import FastAPI

from orderdesk import stripe_service
from orderdesk.checkout import CheckoutInitiator
from orderdesk.config import Settings, get_settings
from orderdesk.exceptions import register_exception_handlers
from orderdesk.log import CorrelationIdMiddleware, configure_logging
from orderdesk.numbering import OrderNumberService
from orderdesk.orders import OrderAdmin
from orderdesk.reconciliation import ReconciliationEngine
from orderdesk.routes import admin_router, router
from orderdesk.stores import Backend, build_backend


@dataclass
class Services:
    checkout: CheckoutInitiator
    engine: ReconciliationEngine
    orders: OrderAdmin


def build_services(backend: Backend, settings: Settings) -> Services:
    numbering = OrderNumberService(backend.orders, backend.counters)
    return Services(
        checkout=CheckoutInitiator(backend.payments, settings),
        engine=ReconciliationEngine(
            backend.payments,
            backend.orders,
            numbering,
            service_days=settings.service_days,
        ),
        orders=OrderAdmin(backend.orders),
    )


def create_app(settings: Settings | None = None, backend: Backend | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    stripe_service.configure(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # storage is chosen once, here; nothing below branches on it
        if app.state.services is None:
            app.state.services = build_services(build_backend(settings), settings)
        yield

    app = FastAPI(title="Orderdesk Checkout Service", lifespan=lifespan)
    app.state.settings = settings
    app.state.services = build_services(backend, settings) if backend is not None else None

    app.add_middleware(CorrelationIdMiddleware)
    register_exception_handlers(app)
    app.include_router(router)
    app.include_router(admin_router)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
