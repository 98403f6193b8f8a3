from fastapi import APIRouter

from .v1.endpoints import cart, health, observability, orders, payments, rewards, shop, staff

api_router = APIRouter()

v1_router = APIRouter(prefix="/api/v1")
v1_router.include_router(cart.router)
v1_router.include_router(orders.router)
v1_router.include_router(rewards.router)
v1_router.include_router(shop.router)
v1_router.include_router(staff.router)
v1_router.include_router(observability.router)

api_router.include_router(health.router)
api_router.include_router(payments.router)
api_router.include_router(v1_router)
