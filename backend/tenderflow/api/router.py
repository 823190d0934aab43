"""Master API router — mounts all sub-routers."""

from __future__ import annotations

from fastapi import APIRouter

from tenderflow.api.batch import router as batch_router
from tenderflow.api.system import router as system_router

api_router = APIRouter(prefix="/api", redirect_slashes=False)

api_router.include_router(batch_router, prefix="/batch", tags=["Batch Generation"])
api_router.include_router(system_router, tags=["System"])
