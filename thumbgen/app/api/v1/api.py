"""
Main API router that includes all endpoint routers.
"""
from fastapi import APIRouter

from thumbgen.app.api.v1.endpoints import (
    health,
    credits_api,
    receipts_api,
)


api_router = APIRouter()

# Include all endpoint routers
api_router.include_router(health.router, prefix="/health", tags=["health"])
api_router.include_router(credits_api.router, prefix="/credits", tags=["credits"])
api_router.include_router(receipts_api.router, prefix="/receipts", tags=["purchase"])
