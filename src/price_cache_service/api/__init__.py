"""API router definitions for the price cache service."""

from fastapi import APIRouter

from .routes import router as prices_router

api_router = APIRouter()
api_router.include_router(prices_router, prefix="/v1", tags=["prices"])

__all__ = ["api_router"]
