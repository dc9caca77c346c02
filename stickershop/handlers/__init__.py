# stickershop/handlers/__init__.py
"""HTTP route handlers"""
from .health_handler import router as health_router
from .webhook_handlers import router as webhook_router
from .discount_handlers import router as discount_router
from .credit_handlers import router as credit_router
from .checkout_handler import router as checkout_router
from .order_handlers import router as order_router
from .shipping_handlers import router as shipping_router
from .pricing_handler import router as pricing_router
from .admin_handlers import router as admin_router

ROUTERS = [
    health_router,
    webhook_router,
    discount_router,
    credit_router,
    checkout_router,
    order_router,
    shipping_router,
    pricing_router,
    admin_router,
]

__all__ = [
    'ROUTERS',
    'health_router',
    'webhook_router',
    'discount_router',
    'credit_router',
    'checkout_router',
    'order_router',
    'shipping_router',
    'pricing_router',
    'admin_router',
]
