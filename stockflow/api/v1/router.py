from fastapi import APIRouter

from stockflow.api.v1.endpoints import (
    inventory,
    orders,
    planning,
)


api_router = APIRouter(prefix="/api/v1")

api_router.include_router(
    inventory.router,
    prefix="/inventory",
    tags=["Inventory"]
)
api_router.include_router(
    orders.router,
    prefix="/orders",
    tags=["Orders"]
)
api_router.include_router(
    planning.router,
    prefix="/planning",
    tags=["Planning"]
)
