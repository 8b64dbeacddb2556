"""Main API routes for Refactor Gateway."""

from fastapi import APIRouter

from .account import router as account_router
from .billing import router as billing_router
from .generation import router as generation_router
from .keys import router as keys_router

# Main API router
router = APIRouter()

# Include sub-routers
router.include_router(generation_router, tags=["generation"])
router.include_router(keys_router, tags=["keys"])
router.include_router(account_router, tags=["account"])
router.include_router(billing_router, tags=["billing"])


@router.get("/health", tags=["health"])
async def api_health():
    return {"status": "healthy"}
