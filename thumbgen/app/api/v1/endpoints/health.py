"""
Health check endpoints.
"""
from fastapi import APIRouter
from typing import Dict, Any

from thumbgen.core.config.general_config import settings

router = APIRouter()


@router.get("/")
async def health_check() -> Dict[str, Any]:
    """
    Health check endpoint.
    """
    return {
        "status": "healthy",
        "message": "Service is running",
        "service": "thumbgen-api"
    }


@router.get("/detailed")
async def detailed_health_check() -> Dict[str, Any]:
    """
    Detailed health check endpoint.
    """
    return {
        "status": "healthy",
        "message": "Service is running",
        "service": "thumbgen-api",
        "version": settings.VERSION,
        "environment": "development" if settings.DEBUG else "production"
    }
