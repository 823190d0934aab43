"""TenderFlow — FastAPI application entry point.

Mounts the API routes, configures CORS for the browser front end, and closes
the shared workflow HTTP client on shutdown.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tenderflow.api.router import api_router
from tenderflow.config import get_settings
from tenderflow.deps import get_workflow_client

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: log configuration on startup, release HTTP client on shutdown."""
    logger.info("TenderFlow starting up...")
    logger.info("Workflow backend: %s", settings.WORKFLOW_BASE_URL)
    logger.info("Progress backend: %s", settings.PROGRESS_BACKEND)
    if not settings.WORKFLOW_API_KEY:
        logger.warning("WORKFLOW_API_KEY is not set; requests must supply api_key")

    yield

    await get_workflow_client().aclose()
    logger.info("TenderFlow shut down")


app = FastAPI(
    title=settings.APP_NAME,
    description="Resumable, streaming batch generation of tender proposals",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok", "app": settings.APP_NAME}
