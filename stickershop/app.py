# stickershop/app.py
import logging
from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from .config import Config
from .database.database import Database
from .handlers import ROUTERS
from .models.result import ErrorKind, ServiceError
from .services.checkout_service import CheckoutService
from .services.credit_service import CreditService
from .services.discount_service import DiscountService
from .services.order_service import OrderService
from .services.payment_service import PaymentService, StripeClient
from .services.pricing_service import PricingService
from .services.shipping_service import EasyPostClient, ShippingService

logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    ErrorKind.NOT_CONFIGURED: 503,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.VALIDATION_FAILED: 422,
    ErrorKind.UPSTREAM_FAILURE: 502,
}

class Services:
    """Every service the routes need, wired once at startup"""

    def __init__(self, db, discounts, credits, orders, payments, shipping, pricing, checkout):
        self.db = db
        self.discounts = discounts
        self.credits = credits
        self.orders = orders
        self.payments = payments
        self.shipping = shipping
        self.pricing = pricing
        self.checkout = checkout

def build_services(db: Optional[Database] = None) -> Services:
    db = db or Database()
    discounts = DiscountService(db)
    credits = CreditService(db)
    orders = OrderService(db)
    stripe = StripeClient()
    return Services(
        db=db,
        discounts=discounts,
        credits=credits,
        orders=orders,
        payments=PaymentService(orders, discounts, credits, stripe),
        shipping=ShippingService(EasyPostClient(), orders),
        pricing=PricingService(),
        checkout=CheckoutService(discounts, credits, orders, stripe, Config.FRONTEND_URL),
    )

async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    status = STATUS_BY_KIND.get(exc.kind, 500)
    if status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=status,
        content={"success": False, "error": exc.message, "errorKind": exc.kind.value}
    )

def create_app(services: Optional[Services] = None) -> FastAPI:
    services = services or build_services()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db = services.db
        if getattr(db, "dsn", None) and not db.is_ready:
            await db.connect()
        else:
            logger.warning("Database not connected at startup, database-backed routes will fail")
        yield
        if getattr(db, "dsn", None) and db.is_ready:
            await db.close()

    app = FastAPI(title="Sticker Shop API", lifespan=lifespan)
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[Config.FRONTEND_URL],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ServiceError, service_error_handler)

    for router in ROUTERS:
        app.include_router(router)

    return app
