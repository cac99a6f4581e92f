"""API Routes module"""
from fastapi import APIRouter

from .workflows import router as workflows_router
from .expenses import router as expenses_router
from .approvals import router as approvals_router

# Main API router
api_router = APIRouter()

api_router.include_router(workflows_router, prefix="/workflows", tags=["Workflows"])
api_router.include_router(expenses_router, prefix="/expenses", tags=["Expenses"])
api_router.include_router(approvals_router, prefix="/approvals", tags=["Approvals"])

__all__ = ["api_router"]
