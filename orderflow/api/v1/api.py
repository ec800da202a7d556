"""API v1 router composition."""

from fastapi import APIRouter

from orderflow.api.v1.endpoints import orders, partners, realtime

api_router: APIRouter = APIRouter()
api_router.include_router(orders.router, prefix="/orders", tags=["orders"])
api_router.include_router(partners.router, prefix="/partners", tags=["partners"])
api_router.include_router(realtime.router, tags=["realtime"])
